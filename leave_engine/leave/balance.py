"""Balance ledger — the only code that mutates ``leave_balances``.

Bookkeeping model::

    available = allocated (+ carried forward, paid only) - used - pending

``available_*`` are generated columns, so the formula always holds; the
ledger's job is to keep ``available`` non-negative and to move each
segment's days through the columns exactly once:

* reserve   — submission:  available → pending
* release   — rejection:   pending → available
* finalize  — approval:    pending → used   (available untouched, so a
              reserve followed by a finalize is a single debit)
* restore   — cancellation of approved leave: used → available

Each segment carries ``balance_reserved`` / ``balance_debited`` flags, so
every operation is idempotent against what is already persisted: re-running
it after a retry moves nothing twice.

All methods expect to run inside the caller's ``unit_of_work``; they lock
the balance row, flush, and leave the commit to the caller.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import SEGMENT_CATEGORY, BalanceCategory
from leave_engine.common.exceptions import BalanceConflict
from leave_engine.config import settings
from leave_engine.leave.models import LeaveBalance, LeaveSegment
from leave_engine.leave.schemas import BalanceShortfall

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# category → (used column, pending column); unpaid has no pending/available
_COLUMNS: dict[BalanceCategory, tuple[str, Optional[str]]] = {
    BalanceCategory.paid: ("used_paid_days", "pending_paid_days"),
    BalanceCategory.sick: ("used_sick_days", "pending_sick_days"),
    BalanceCategory.unpaid: ("used_unpaid_days", None),
}


def _d(value) -> Decimal:
    return Decimal(value if value is not None else 0)


class BalanceLedger:
    """Static ledger operations over ``LeaveBalance`` rows."""

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    def available(balance: LeaveBalance, category: BalanceCategory) -> Optional[Decimal]:
        """Available days for *category* (None for the untracked unpaid bucket).

        Computed from the stored columns rather than the generated ones so it
        is correct between a mutation and the next refresh.
        """
        if category == BalanceCategory.paid:
            return (
                _d(balance.total_allocated_paid_days)
                + _d(balance.carried_forward_days)
                - _d(balance.used_paid_days)
                - _d(balance.pending_paid_days)
            )
        if category == BalanceCategory.sick:
            return (
                _d(balance.total_allocated_sick_days)
                - _d(balance.used_sick_days)
                - _d(balance.pending_sick_days)
            )
        return None

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        query = select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.year == year,
        ).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_or_init(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        *,
        for_update: bool = False,
    ) -> LeaveBalance:
        """Existing balance for (employee, year), or a fresh one with default allocations."""
        balance = await BalanceLedger.get_balance(db, employee_id, year, for_update=for_update)
        if balance is not None:
            return balance

        balance = LeaveBalance(
            employee_id=employee_id,
            year=year,
            total_allocated_paid_days=Decimal(settings.DEFAULT_PAID_LEAVE_DAYS),
            total_allocated_sick_days=Decimal(settings.DEFAULT_SICK_LEAVE_DAYS),
        )
        db.add(balance)
        await db.flush()
        await db.refresh(balance)
        logger.info("Initialised %s leave balance for employee %s", year, employee_id)
        return balance

    @staticmethod
    async def has_available(
        db: AsyncSession,
        employee_id: uuid.UUID,
        category: Optional[BalanceCategory],
        days: Decimal,
        year: int,
    ) -> bool:
        """True when *category* can cover *days* (untracked categories always can)."""
        if category is None or category == BalanceCategory.unpaid:
            return True
        balance = await BalanceLedger.get_or_init(db, employee_id, year)
        return BalanceLedger.available(balance, category) >= days

    # ── Mutations ───────────────────────────────────────────────────

    @staticmethod
    async def reserve(
        db: AsyncSession,
        employee_id: uuid.UUID,
        segments: Sequence[LeaveSegment],
        year: int,
    ) -> dict[BalanceCategory, Decimal]:
        """Hold paid/sick days of not-yet-reserved *segments* as pending."""
        balance = await BalanceLedger.get_or_init(db, employee_id, year, for_update=True)
        moved: dict[BalanceCategory, Decimal] = defaultdict(lambda: ZERO)
        shortfalls: list[BalanceShortfall] = []

        for segment, category in BalanceLedger._tracked(segments, {BalanceCategory.paid, BalanceCategory.sick}):
            if segment.balance_reserved or segment.balance_debited:
                continue
            days = _d(segment.duration_days)
            available = BalanceLedger.available(balance, category)
            if available < days:
                shortfalls.append(BalanceLedger._shortfall(segment, category, available, days))
                continue
            _, pending_col = _COLUMNS[category]
            setattr(balance, pending_col, _d(getattr(balance, pending_col)) + days)
            segment.balance_reserved = True
            moved[category] += days

        if shortfalls:
            raise BalanceConflict([s.model_dump(mode="json") for s in shortfalls])
        await BalanceLedger._touch(db, balance)
        return dict(moved)

    @staticmethod
    async def release(
        db: AsyncSession,
        employee_id: uuid.UUID,
        segments: Sequence[LeaveSegment],
        year: int,
    ) -> dict[BalanceCategory, Decimal]:
        """Return the pending days of still-reserved *segments* to available."""
        reserved = [s for s in segments if s.balance_reserved]
        if not reserved:
            return {}
        balance = await BalanceLedger.get_or_init(db, employee_id, year, for_update=True)
        moved: dict[BalanceCategory, Decimal] = defaultdict(lambda: ZERO)

        for segment, category in BalanceLedger._tracked(reserved, {BalanceCategory.paid, BalanceCategory.sick}):
            days = _d(segment.duration_days)
            _, pending_col = _COLUMNS[category]
            setattr(balance, pending_col, max(ZERO, _d(getattr(balance, pending_col)) - days))
            segment.balance_reserved = False
            moved[category] += days

        await BalanceLedger._touch(db, balance)
        return dict(moved)

    @staticmethod
    async def finalize(
        db: AsyncSession,
        employee_id: uuid.UUID,
        segments: Sequence[LeaveSegment],
        year: int,
    ) -> dict[BalanceCategory, Decimal]:
        """Post approved *segments* to used_* (one debit per segment, ever)."""
        balance = await BalanceLedger.get_or_init(db, employee_id, year, for_update=True)
        moved: dict[BalanceCategory, Decimal] = defaultdict(lambda: ZERO)
        shortfalls: list[BalanceShortfall] = []

        for segment, category in BalanceLedger._tracked(segments, set(BalanceCategory)):
            if segment.balance_debited:
                continue
            days = _d(segment.duration_days)
            used_col, pending_col = _COLUMNS[category]

            if pending_col is not None:
                if segment.balance_reserved:
                    setattr(balance, pending_col, max(ZERO, _d(getattr(balance, pending_col)) - days))
                    segment.balance_reserved = False
                else:
                    available = BalanceLedger.available(balance, category)
                    if available < days:
                        shortfalls.append(
                            BalanceLedger._shortfall(segment, category, available, days)
                        )
                        continue

            setattr(balance, used_col, _d(getattr(balance, used_col)) + days)
            segment.balance_debited = True
            moved[category] += days

        if shortfalls:
            raise BalanceConflict([s.model_dump(mode="json") for s in shortfalls])
        await BalanceLedger._touch(db, balance)
        return dict(moved)

    @staticmethod
    async def restore(
        db: AsyncSession,
        employee_id: uuid.UUID,
        segments: Sequence[LeaveSegment],
        year: int,
    ) -> dict[BalanceCategory, Decimal]:
        """Undo a finalize for debited *segments* (approved leave cancelled)."""
        debited = [s for s in segments if s.balance_debited]
        if not debited:
            return {}
        balance = await BalanceLedger.get_or_init(db, employee_id, year, for_update=True)
        moved: dict[BalanceCategory, Decimal] = defaultdict(lambda: ZERO)

        for segment, category in BalanceLedger._tracked(debited, set(BalanceCategory)):
            days = _d(segment.duration_days)
            used_col, _ = _COLUMNS[category]
            setattr(balance, used_col, max(ZERO, _d(getattr(balance, used_col)) - days))
            segment.balance_debited = False
            moved[category] += days

        await BalanceLedger._touch(db, balance)
        return dict(moved)

    # ── Re-validation ───────────────────────────────────────────────

    @staticmethod
    async def revalidate(
        db: AsyncSession,
        employee_id: uuid.UUID,
        segments: Sequence[LeaveSegment],
        year: int,
    ) -> list[BalanceShortfall]:
        """Check the *current* balance still covers *segments*.

        A segment's own reservation counts toward its coverage, so an
        untouched submitted request always passes; what fails is a request
        whose reservation was released or whose balance was consumed
        elsewhere. Never raises for a shortfall; the caller decides.
        """
        balance = await BalanceLedger.get_or_init(db, employee_id, year, for_update=True)
        shortfalls: list[BalanceShortfall] = []
        by_category: dict[BalanceCategory, list[LeaveSegment]] = defaultdict(list)
        for segment, category in BalanceLedger._tracked(segments, {BalanceCategory.paid, BalanceCategory.sick}):
            if not segment.balance_debited:
                by_category[category].append(segment)

        for category, members in by_category.items():
            _, pending_col = _COLUMNS[category]
            reserved = sum((_d(s.duration_days) for s in members if s.balance_reserved), ZERO)
            headroom = min(_d(getattr(balance, pending_col)), reserved)
            headroom += max(ZERO, BalanceLedger.available(balance, category))
            for segment in members:
                days = _d(segment.duration_days)
                if days <= headroom:
                    headroom -= days
                else:
                    shortfalls.append(BalanceLedger._shortfall(segment, category, headroom, days))
                    headroom = ZERO

        if shortfalls:
            logger.warning(
                "Balance revalidation for %s/%s found %d shortfall(s)",
                employee_id, year, len(shortfalls),
            )
        return shortfalls

    # ── Internals ───────────────────────────────────────────────────

    @staticmethod
    def _tracked(
        segments: Iterable[LeaveSegment],
        categories: set[BalanceCategory],
    ) -> Iterable[tuple[LeaveSegment, BalanceCategory]]:
        for segment in segments:
            category = SEGMENT_CATEGORY.get(segment.segment_type)
            if category in categories:
                yield segment, category

    @staticmethod
    def _shortfall(
        segment: LeaveSegment,
        category: BalanceCategory,
        available: Decimal,
        required: Decimal,
    ) -> BalanceShortfall:
        return BalanceShortfall(
            segment_id=segment.id,
            segment_type=segment.segment_type,
            category=category,
            available=max(ZERO, available),
            required=required,
        )

    @staticmethod
    async def _touch(db: AsyncSession, balance: LeaveBalance) -> None:
        balance.last_updated = datetime.now(timezone.utc)
        await db.flush()
        await db.refresh(balance)
