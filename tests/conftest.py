"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (ledger, split, approval, merge queue, API).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ["SCHEDULER_ENABLED"] = "false"

import hashlib
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_engine.common.constants import (
    BalanceCategory,
    DurationType,
    LeaveType,
    PayrollPeriodStatus,
    SplitOption,
    UserRole,
)
from leave_engine.config import settings
from leave_engine.database import Base, get_db
from leave_engine.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import leave_engine.auth.models  # noqa: F401
import leave_engine.core_hr.models  # noqa: F401
import leave_engine.leave.models  # noqa: F401
import leave_engine.attendance.models  # noqa: F401
import leave_engine.payroll.models  # noqa: F401
import leave_engine.common.audit  # noqa: F401
import leave_engine.merge_queue.models  # noqa: F401
import leave_engine.jobs.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and gen_random_uuid() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

# Monday..Friday used by most tests (no holidays seeded unless a test does)
MON = date(2026, 3, 2)
TUE = date(2026, 3, 3)
WED = date(2026, 3, 4)
THU = date(2026, 3, 5)
FRI = date(2026, 3, 6)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_engine.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


@pytest.fixture
def session_factory() -> async_sessionmaker:
    """Factory bound to the test engine, for code that opens its own sessions."""
    return TestSessionFactory


# ── Model factories ─────────────────────────────────────────────────

def _make_department(
    *,
    name: str = "Engineering",
    code: Optional[str] = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        code=code or f"D-{uuid.uuid4().hex[:6].upper()}",
        is_active=True,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def _make_employee(
    *,
    email: Optional[str] = None,
    first_name: str = "Test",
    last_name: str = "User",
    department_id: Optional[uuid.UUID] = None,
    reporting_manager_id: Optional[uuid.UUID] = None,
    date_of_joining: date = date(2024, 1, 15),
) -> dict:
    return dict(
        id=uuid.uuid4(),
        employee_code=f"CF-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        email=email or f"{uuid.uuid4().hex[:8]}@creativefuel.io",
        department_id=department_id,
        reporting_manager_id=reporting_manager_id,
        date_of_joining=date_of_joining,
        is_active=True,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


async def seed_department(db: AsyncSession, **kwargs):
    from leave_engine.core_hr.models import Department

    dept = Department(**_make_department(**kwargs))
    db.add(dept)
    await db.commit()
    return dept


async def seed_employee(
    db: AsyncSession,
    *,
    department_id: Optional[uuid.UUID] = None,
    reporting_manager_id: Optional[uuid.UUID] = None,
    first_name: str = "Test",
    monthly_salary: Optional[Decimal] = Decimal("44000"),
    contracted_monthly_hours: Decimal = Decimal("176"),
    date_of_joining: date = date(2024, 1, 15),
):
    """Employee plus an active contract (hourly 250.00, 8.00 h/day by default)."""
    from leave_engine.core_hr.models import Employee
    from leave_engine.payroll.models import EmployeeContract

    employee = Employee(
        **_make_employee(
            first_name=first_name,
            department_id=department_id,
            reporting_manager_id=reporting_manager_id,
            date_of_joining=date_of_joining,
        )
    )
    db.add(employee)
    await db.flush()
    if monthly_salary is not None:
        db.add(
            EmployeeContract(
                employee_id=employee.id,
                monthly_salary=monthly_salary,
                contracted_monthly_hours=contracted_monthly_hours,
                effective_from=date(2024, 1, 1),
                is_active=True,
            )
        )
    await db.commit()
    return employee


async def seed_balance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    *,
    year: int = 2026,
    paid: Decimal = Decimal("24"),
    sick: Decimal = Decimal("7"),
    carried_forward: Decimal = Decimal("0"),
):
    from leave_engine.leave.models import LeaveBalance

    balance = LeaveBalance(
        employee_id=employee_id,
        year=year,
        total_allocated_paid_days=paid,
        total_allocated_sick_days=sick,
        carried_forward_days=carried_forward,
    )
    db.add(balance)
    await db.commit()
    return balance


def assert_balance_invariant(balance) -> None:
    """available = allocated (+ carried forward) - used - pending, never negative."""
    from leave_engine.leave.balance import BalanceLedger

    paid = (
        balance.total_allocated_paid_days
        + balance.carried_forward_days
        - balance.used_paid_days
        - balance.pending_paid_days
    )
    sick = balance.total_allocated_sick_days - balance.used_sick_days - balance.pending_sick_days
    assert balance.available_paid_days == paid >= 0
    assert balance.available_sick_days == sick >= 0
    assert BalanceLedger.available(balance, BalanceCategory.paid) == paid
    assert min(
        balance.used_paid_days,
        balance.used_sick_days,
        balance.used_unpaid_days,
        balance.pending_paid_days,
        balance.pending_sick_days,
    ) >= 0


async def seed_closed_period(db: AsyncSession, start: date, end: date, code: str):
    from leave_engine.payroll.models import PayrollPeriod

    period = PayrollPeriod(
        period_code=code,
        start_date=start,
        end_date=end,
        status=PayrollPeriodStatus.closed,
        closed_at=datetime.now(timezone.utc),
    )
    db.add(period)
    await db.commit()
    return period


async def submit_leave(
    db: AsyncSession,
    employee,
    from_date: date = MON,
    to_date: date = FRI,
    *,
    leave_type: LeaveType = LeaveType.paid,
    split_option: SplitOption = SplitOption.proceed,
    duration_type: DurationType = DurationType.full_day,
):
    """Submit through LeaveService and return the LeaveRequestOut."""
    from leave_engine.leave.schemas import LeaveSubmitRequest
    from leave_engine.leave.service import LeaveService

    response = await LeaveService.submit(
        db,
        employee.id,
        LeaveSubmitRequest(
            leave_type=leave_type,
            from_date=from_date,
            to_date=to_date,
            duration_type=duration_type,
            split_option=split_option,
        ),
    )
    return response.request


def acting(employee, role: UserRole = UserRole.employee):
    """ActingAs for *employee* (what the router hands to the core)."""
    from leave_engine.auth.dependencies import ActingAs

    return ActingAs(
        employee_id=employee.id,
        role=role,
        department_id=employee.department_id,
    )


# ── Auth helpers ────────────────────────────────────────────────────

TOKEN_TTL = timedelta(hours=8)


def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + TOKEN_TTL
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def auth_headers_for(
    db: AsyncSession,
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
) -> dict[str, str]:
    """Bearer auth headers with a valid session persisted in the DB."""
    from leave_engine.auth.models import UserSession

    token = create_access_token(employee_id, role)
    db.add(
        UserSession(
            id=uuid.uuid4(),
            employee_id=employee_id,
            token_hash=hashlib.sha256(token.encode()).hexdigest(),
            expires_at=datetime.now(timezone.utc) + TOKEN_TTL,
            is_revoked=False,
            created_at=datetime.now(timezone.utc),
        )
    )
    await db.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def test_department(db):
    return await seed_department(db)


@pytest.fixture
async def test_employee(db, test_department):
    """Active employee with a contract and a 2026 balance (24 paid / 7 sick)."""
    employee = await seed_employee(db, department_id=test_department.id)
    await seed_balance(db, employee.id)
    return employee


@pytest.fixture
async def test_manager(db, test_department):
    return await seed_employee(db, department_id=test_department.id, first_name="Manager")
