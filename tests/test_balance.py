"""Balance ledger tests: reserve / release / finalize / restore / revalidate."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import BalanceCategory, DurationType, LeaveType, SegmentType
from leave_engine.common.exceptions import BalanceConflict
from leave_engine.database import unit_of_work
from leave_engine.leave.balance import BalanceLedger
from leave_engine.leave.lifecycle import LeaveLifecycle
from leave_engine.leave.schemas import SegmentPlan
from tests.conftest import (
    FRI,
    MON,
    WED,
    assert_balance_invariant,
    seed_balance,
    seed_employee,
    submit_leave,
)

PAID = BalanceCategory.paid


async def _balance(db: AsyncSession, employee_id):
    """Fresh balance row; every read also checks the ledger invariant."""
    balance = await BalanceLedger.get_balance(db, employee_id, 2026)
    assert_balance_invariant(balance)
    return balance


def _plan(segment_type: SegmentType, days: int, start: date = MON, end: date = FRI) -> SegmentPlan:
    return SegmentPlan(
        segment_type=segment_type,
        start_date=start,
        end_date=end,
        duration_type=DurationType.full_day,
        duration_days=Decimal(days),
        duration_hours=Decimal(days * 8),
        hourly_rate=Decimal("250.00"),
        payroll_deduction=Decimal("0"),
    )


async def _draft(db: AsyncSession, employee, plans):
    async with unit_of_work(db):
        request = await LeaveLifecycle.create_request(
            db,
            employee,
            leave_type=LeaveType.paid,
            from_date=plans[0].start_date,
            to_date=plans[-1].end_date,
            duration_type=DurationType.full_day,
            segments=plans,
            actor_id=employee.id,
            requested_days=sum((p.duration_days for p in plans), Decimal("0")),
        )
    return await LeaveLifecycle.get_request(db, request.id)


# ═════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════


class TestBalanceReads:

    async def test_get_or_init_uses_defaults(self, db: AsyncSession):
        emp = await seed_employee(db)
        balance = await BalanceLedger.get_or_init(db, emp.id, 2026)
        assert_balance_invariant(balance)
        assert balance.total_allocated_paid_days == Decimal("24")
        assert balance.total_allocated_sick_days == Decimal("7")
        assert BalanceLedger.available(balance, PAID) == Decimal("24")

    async def test_carried_forward_counts_for_paid_only(self, db: AsyncSession):
        emp = await seed_employee(db)
        await seed_balance(db, emp.id, paid=Decimal("10"), sick=Decimal("5"), carried_forward=Decimal("3"))
        balance = await _balance(db, emp.id)
        assert BalanceLedger.available(balance, PAID) == Decimal("13")
        assert BalanceLedger.available(balance, BalanceCategory.sick) == Decimal("5")
        assert BalanceLedger.available(balance, BalanceCategory.unpaid) is None

    async def test_has_available_ignores_untracked(self, db: AsyncSession):
        emp = await seed_employee(db)
        await seed_balance(db, emp.id, paid=Decimal("1"))
        assert await BalanceLedger.has_available(db, emp.id, PAID, Decimal("1"), 2026)
        assert not await BalanceLedger.has_available(db, emp.id, PAID, Decimal("2"), 2026)
        assert await BalanceLedger.has_available(db, emp.id, None, Decimal("50"), 2026)


# ═════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════


class TestReserve:

    async def test_submit_moves_available_to_pending(self, db: AsyncSession, test_employee):
        await submit_leave(db, test_employee)

        balance = await _balance(db, test_employee.id)
        assert balance.pending_paid_days == Decimal("5")
        assert balance.used_paid_days == Decimal("0")
        assert balance.available_paid_days == Decimal("19")

    async def test_reserve_is_idempotent(self, db: AsyncSession, test_employee):
        out = await submit_leave(db, test_employee)
        request = await LeaveLifecycle.get_request(db, out.id)

        async with unit_of_work(db):
            moved = await BalanceLedger.reserve(db, test_employee.id, request.segments, 2026)
        assert moved == {}
        balance = await _balance(db, test_employee.id)
        assert balance.pending_paid_days == Decimal("5")

    async def test_shortfall_raises_and_moves_nothing(self, db: AsyncSession):
        emp = await seed_employee(db)
        emp_id = emp.id
        await seed_balance(db, emp.id, paid=Decimal("2"))
        request = await _draft(db, emp, [_plan(SegmentType.paid, 5)])

        with pytest.raises(BalanceConflict) as exc:
            async with unit_of_work(db):
                await BalanceLedger.reserve(db, emp_id, request.segments, 2026)

        shortfalls = exc.value.errors["shortfalls"]
        assert len(shortfalls) == 1
        assert shortfalls[0]["category"] == "paid"
        balance = await _balance(db, emp_id)
        assert balance.pending_paid_days == Decimal("0")

    async def test_unpaid_segments_are_not_reserved(self, db: AsyncSession):
        emp = await seed_employee(db)
        await seed_balance(db, emp.id)
        request = await _draft(db, emp, [_plan(SegmentType.unpaid, 5)])

        async with unit_of_work(db):
            moved = await BalanceLedger.reserve(db, emp.id, request.segments, 2026)
        assert moved == {}
        assert request.segments[0].balance_reserved is False
        balance = await _balance(db, emp.id)
        assert balance.pending_paid_days == Decimal("0")


class TestReleaseFinalizeRestore:

    async def test_release_returns_pending(self, db: AsyncSession, test_employee):
        out = await submit_leave(db, test_employee)
        request = await LeaveLifecycle.get_request(db, out.id)

        async with unit_of_work(db):
            moved = await BalanceLedger.release(db, test_employee.id, request.segments, 2026)
        assert moved == {PAID: Decimal("5")}

        async with unit_of_work(db):
            again = await BalanceLedger.release(db, test_employee.id, request.segments, 2026)
        assert again == {}

        balance = await _balance(db, test_employee.id)
        assert balance.pending_paid_days == Decimal("0")
        assert BalanceLedger.available(balance, PAID) == Decimal("24")

    async def test_finalize_is_a_single_debit(self, db: AsyncSession, test_employee):
        """reserve + finalize leaves available where reserve put it."""
        out = await submit_leave(db, test_employee)
        request = await LeaveLifecycle.get_request(db, out.id)

        async with unit_of_work(db):
            await BalanceLedger.finalize(db, test_employee.id, request.segments, 2026)
        async with unit_of_work(db):
            again = await BalanceLedger.finalize(db, test_employee.id, request.segments, 2026)
        assert again == {}

        balance = await _balance(db, test_employee.id)
        assert balance.used_paid_days == Decimal("5")
        assert balance.pending_paid_days == Decimal("0")
        assert BalanceLedger.available(balance, PAID) == Decimal("19")
        assert request.segments[0].balance_debited is True
        assert request.segments[0].balance_reserved is False

    async def test_finalize_unpaid_posts_used_unpaid(self, db: AsyncSession):
        emp = await seed_employee(db)
        await seed_balance(db, emp.id)
        request = await _draft(db, emp, [_plan(SegmentType.unpaid, 3, MON, WED)])

        async with unit_of_work(db):
            moved = await BalanceLedger.finalize(db, emp.id, request.segments, 2026)
        assert moved == {BalanceCategory.unpaid: Decimal("3")}
        balance = await _balance(db, emp.id)
        assert balance.used_unpaid_days == Decimal("3")
        assert BalanceLedger.available(balance, PAID) == Decimal("24")

    async def test_restore_undoes_finalize(self, db: AsyncSession, test_employee):
        out = await submit_leave(db, test_employee)
        request = await LeaveLifecycle.get_request(db, out.id)
        async with unit_of_work(db):
            await BalanceLedger.finalize(db, test_employee.id, request.segments, 2026)
        async with unit_of_work(db):
            moved = await BalanceLedger.restore(db, test_employee.id, request.segments, 2026)
        assert moved == {PAID: Decimal("5")}

        balance = await _balance(db, test_employee.id)
        assert balance.used_paid_days == Decimal("0")
        assert BalanceLedger.available(balance, PAID) == Decimal("24")


class TestRevalidate:

    async def test_untouched_reservation_passes(self, db: AsyncSession):
        emp = await seed_employee(db)
        await seed_balance(db, emp.id, paid=Decimal("5"))
        out = await submit_leave(db, emp)
        request = await LeaveLifecycle.get_request(db, out.id)

        shortfalls = await BalanceLedger.revalidate(db, emp.id, request.segments, 2026)
        assert shortfalls == []

    async def test_consumed_balance_reports_shortfall(self, db: AsyncSession):
        """A released reservation whose days went to another request no longer fits."""
        emp = await seed_employee(db)
        await seed_balance(db, emp.id, paid=Decimal("5"))
        first = await LeaveLifecycle.get_request(db, (await submit_leave(db, emp)).id)
        async with unit_of_work(db):
            await BalanceLedger.release(db, emp.id, first.segments, 2026)

        await submit_leave(db, emp, date(2026, 3, 9), date(2026, 3, 11))

        shortfalls = await BalanceLedger.revalidate(db, emp.id, first.segments, 2026)
        assert len(shortfalls) == 1
        assert shortfalls[0].available == Decimal("2")
        assert shortfalls[0].required == Decimal("5")
        balance = await _balance(db, emp.id)
        assert balance.pending_paid_days == Decimal("3")
