"""Payroll-facing services: contract rates and the closed-period adjustment queue.

The leave engine never computes gross/net pay. It needs two things from
payroll: the hourly rate that prices a leave hour, and somewhere to put a
deduction whose pay period has already been closed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import PayrollAdjustmentStatus, PayrollPeriodStatus
from leave_engine.common.exceptions import NotFoundException, StateConflict
from leave_engine.common.pagination import PaginatedResponse, PaginationParams, paginate
from leave_engine.config import settings
from leave_engine.database import unit_of_work
from leave_engine.leave.models import LeaveSegment
from leave_engine.payroll.models import EmployeeContract, PayrollAdjustment, PayrollPeriod
from leave_engine.payroll.schemas import PayrollAdjustmentOut

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def money(value: Decimal) -> Decimal:
    """Round to 2 dp, half-up (currency and hour figures)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ContractRates:
    """Rates derived from an employee's active contract."""

    contract_id: uuid.UUID
    monthly_salary: Decimal
    contracted_monthly_hours: Decimal
    hourly_rate: Decimal
    standard_hours_per_day: Decimal


# ═════════════════════════════════════════════════════════════════════
# Contract lookup
# ═════════════════════════════════════════════════════════════════════


class ContractService:

    @staticmethod
    async def get_active_contract(
        db: AsyncSession,
        employee_id: uuid.UUID,
        on_date: Optional[date] = None,
    ) -> EmployeeContract:
        """Active contract covering *on_date* (today when omitted)."""
        on_date = on_date or date.today()
        result = await db.execute(
            select(EmployeeContract)
            .where(
                EmployeeContract.employee_id == employee_id,
                EmployeeContract.is_active.is_(True),
                EmployeeContract.effective_from <= on_date,
                or_(
                    EmployeeContract.effective_to.is_(None),
                    EmployeeContract.effective_to >= on_date,
                ),
            )
            .order_by(EmployeeContract.effective_from.desc())
        )
        contract = result.scalars().first()
        if contract is None:
            raise NotFoundException("EmployeeContract", employee_id)
        return contract

    @staticmethod
    def rates_for(contract: EmployeeContract) -> ContractRates:
        hours = Decimal(contract.contracted_monthly_hours)
        salary = Decimal(contract.monthly_salary)
        return ContractRates(
            contract_id=contract.id,
            monthly_salary=salary,
            contracted_monthly_hours=hours,
            hourly_rate=money(salary / hours),
            standard_hours_per_day=hours / settings.WORKING_DAYS_PER_MONTH,
        )

    @staticmethod
    async def get_rates(
        db: AsyncSession,
        employee_id: uuid.UUID,
        on_date: Optional[date] = None,
    ) -> ContractRates:
        contract = await ContractService.get_active_contract(db, employee_id, on_date)
        return ContractService.rates_for(contract)


# ═════════════════════════════════════════════════════════════════════
# Payroll periods / adjustment queue
# ═════════════════════════════════════════════════════════════════════


class PayrollService:

    @staticmethod
    async def find_closed_period(
        db: AsyncSession,
        start: date,
        end: date,
    ) -> Optional[PayrollPeriod]:
        """Earliest Closed period overlapping [start, end], if any."""
        result = await db.execute(
            select(PayrollPeriod)
            .where(
                PayrollPeriod.status == PayrollPeriodStatus.closed,
                PayrollPeriod.start_date <= end,
                PayrollPeriod.end_date >= start,
            )
            .order_by(PayrollPeriod.start_date)
        )
        return result.scalars().first()

    @staticmethod
    async def queue_adjustment(
        db: AsyncSession,
        segment: LeaveSegment,
        employee_id: uuid.UUID,
        period: PayrollPeriod,
    ) -> PayrollAdjustment:
        """Queue *segment*'s deduction against a closed *period*."""
        adjustment = PayrollAdjustment(
            employee_id=employee_id,
            leave_request_id=segment.leave_request_id,
            leave_segment_id=segment.id,
            period_code=period.period_code,
            amount=money(segment.payroll_deduction),
            reason=(
                f"Unpaid leave {segment.start_date.isoformat()} to "
                f"{segment.end_date.isoformat()} approved after payroll "
                f"period {period.period_code} closed"
            ),
            status=PayrollAdjustmentStatus.pending,
        )
        db.add(adjustment)
        segment.payroll_processed = True
        await db.flush()
        logger.info(
            "Queued payroll adjustment %s for segment %s (%s %s)",
            adjustment.id, segment.id, period.period_code, adjustment.amount,
        )
        return adjustment

    @staticmethod
    async def cancel_for_segments(
        db: AsyncSession,
        segment_ids: list[uuid.UUID],
    ) -> int:
        """Cancel still-pending adjustments raised by *segment_ids*."""
        if not segment_ids:
            return 0
        result = await db.execute(
            select(PayrollAdjustment).where(
                PayrollAdjustment.leave_segment_id.in_(segment_ids),
                PayrollAdjustment.status == PayrollAdjustmentStatus.pending,
            )
        )
        adjustments = result.scalars().all()
        for adjustment in adjustments:
            adjustment.status = PayrollAdjustmentStatus.cancelled
            adjustment.notes = "Leave cancelled before processing"
        await db.flush()
        return len(adjustments)

    # ── HR queue operations ─────────────────────────────────────────

    @staticmethod
    async def list_adjustments(
        db: AsyncSession,
        params: PaginationParams,
        *,
        status: Optional[PayrollAdjustmentStatus] = None,
        period_code: Optional[str] = None,
        employee_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        query = select(PayrollAdjustment)
        if status is not None:
            query = query.where(PayrollAdjustment.status == status)
        if period_code is not None:
            query = query.where(PayrollAdjustment.period_code == period_code)
        if employee_id is not None:
            query = query.where(PayrollAdjustment.employee_id == employee_id)
        query = query.order_by(PayrollAdjustment.created_at.desc())
        return await paginate(
            db, query, params, transform=PayrollAdjustmentOut.model_validate,
        )

    @staticmethod
    async def resolve_adjustment(
        db: AsyncSession,
        adjustment_id: uuid.UUID,
        actor_id: uuid.UUID,
        *,
        new_status: PayrollAdjustmentStatus,
        notes: Optional[str] = None,
    ) -> PayrollAdjustmentOut:
        """Mark a pending adjustment processed or cancelled."""
        async with unit_of_work(db):
            adjustment = await db.get(PayrollAdjustment, adjustment_id, with_for_update=True)
            if adjustment is None:
                raise NotFoundException("PayrollAdjustment", adjustment_id)
            if adjustment.status != PayrollAdjustmentStatus.pending:
                raise StateConflict(
                    f"Payroll adjustment is already {adjustment.status.value}."
                )
            adjustment.status = new_status
            adjustment.processed_by = actor_id
            adjustment.processed_at = datetime.now(timezone.utc)
            if notes:
                adjustment.notes = notes
            await db.flush()
            out = PayrollAdjustmentOut.model_validate(adjustment)
        logger.info("Payroll adjustment %s marked %s", adjustment_id, new_status.value)
        return out
