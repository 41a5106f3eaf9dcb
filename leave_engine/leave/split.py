"""Auto-split calculator: shape a leave request into paid/alternate segments.

The pure part (``plan_segments``) works on a calendar, a rate pair and an
available balance, so it is tested without a database. ``calculate`` loads
those inputs; ``apply_option`` turns an analysis plus the employee's chosen
split option into the segments and status that submission persists.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.calendar import HolidayCalendar
from leave_engine.common.constants import (
    DEDUCTIBLE_SEGMENT_TYPES,
    LEAVE_TYPE_SEGMENTS,
    DurationType,
    LeaveRequestStatus,
    LeaveType,
    SegmentType,
    SplitOption,
)
from leave_engine.common.exceptions import ValidationException
from leave_engine.leave.balance import BalanceLedger
from leave_engine.leave.schemas import (
    LeaveCalculateRequest,
    SegmentPlan,
    SplitAnalysis,
    SplitRationale,
)
from leave_engine.payroll.service import ContractService, money

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HALF = Decimal("0.5")


def _fmt(days: Decimal) -> str:
    """Render a day count without trailing zeros (``2``, ``1.5``)."""
    return format(days.normalize(), "f")


class AutoSplitCalculator:

    # ── Pure planning ───────────────────────────────────────────────

    @staticmethod
    def day_unit(
        duration_type: DurationType,
        custom_hours: Optional[Decimal],
        standard_hours_per_day: Decimal,
    ) -> Decimal:
        """Fraction of a day each working day of the range counts for."""
        if duration_type == DurationType.half_day:
            return HALF
        if duration_type == DurationType.custom_hours:
            if custom_hours is None or custom_hours <= 0:
                raise ValidationException({"custom_hours": ["must be positive for custom_hours leave"]})
            if custom_hours > standard_hours_per_day:
                raise ValidationException({
                    "custom_hours": [
                        f"cannot exceed the standard working day ({money(standard_hours_per_day)} hours)"
                    ],
                })
            return Decimal(custom_hours) / standard_hours_per_day
        return Decimal("1")

    @staticmethod
    def _segment(
        segment_type: SegmentType,
        start: date,
        end: date,
        working_days: int,
        unit: Decimal,
        duration_type: DurationType,
        hourly_rate: Decimal,
        standard_hours_per_day: Decimal,
        custom_hours: Optional[Decimal],
    ) -> SegmentPlan:
        if duration_type == DurationType.custom_hours:
            hours = money(Decimal(custom_hours) * working_days)
        else:
            hours = money(standard_hours_per_day * unit * working_days)
        deduction = ZERO
        if segment_type in DEDUCTIBLE_SEGMENT_TYPES:
            deduction = money(hourly_rate * hours)
        return SegmentPlan(
            segment_type=segment_type,
            start_date=start,
            end_date=end,
            duration_type=duration_type,
            duration_days=(unit * working_days).quantize(Decimal("0.1")),
            duration_hours=hours,
            hourly_rate=hourly_rate,
            payroll_deduction=deduction,
        )

    @staticmethod
    def plan_segments(
        calendar: HolidayCalendar,
        leave_type: LeaveType,
        from_date: date,
        to_date: date,
        duration_type: DurationType,
        available: Optional[Decimal],
        hourly_rate: Decimal,
        standard_hours_per_day: Decimal,
        custom_hours: Optional[Decimal] = None,
    ) -> SplitAnalysis:
        """Compute the segment plan for a request against *available* days.

        Raises:
            ValidationException: inverted range, no working days, or an
                invalid custom-hours request.
        """
        if from_date > to_date:
            raise ValidationException({"to_date": ["must be on or after from_date"]})
        if duration_type == DurationType.custom_hours and from_date != to_date:
            raise ValidationException(
                {"duration_type": ["custom_hours leave must cover a single day"]}
            )

        working_days = calendar.count_working_days(from_date, to_date)
        if working_days == 0:
            raise ValidationException(
                {"from_date": ["The selected range contains no working days"]}
            )

        unit = AutoSplitCalculator.day_unit(duration_type, custom_hours, standard_hours_per_day)
        requested = (unit * working_days).quantize(Decimal("0.1"))
        primary, alternate, category = LEAVE_TYPE_SEGMENTS[leave_type]

        def build(segment_type: SegmentType, start: date, end: date, days: int) -> SegmentPlan:
            return AutoSplitCalculator._segment(
                segment_type, start, end, days, unit, duration_type,
                hourly_rate, standard_hours_per_day, custom_hours,
            )

        base = dict(
            leave_type=leave_type,
            balance_category=category,
            available_days=available,
            requested_days=requested,
            hourly_rate=hourly_rate,
            standard_hours_per_day=standard_hours_per_day,
        )

        if alternate is None or available is None or available >= requested:
            return SplitAnalysis(
                needs_split=False,
                segments=[build(primary, from_date, to_date, working_days)],
                **base,
            )

        paid_working_days = max(0, math.floor(max(available, ZERO) / unit))
        paid_days = (unit * paid_working_days).quantize(Decimal("0.1"))
        unpaid_days = requested - paid_days
        warning = (
            f"You requested {_fmt(requested)} paid days but only "
            f"{_fmt(max(available, ZERO))} remain. The request will be split into "
            f"paid: {_fmt(paid_days)} days and unpaid: {_fmt(unpaid_days)} days."
        )

        if paid_working_days == 0:
            segments = [build(alternate, from_date, to_date, working_days)]
        else:
            boundary = calendar.nth_working_day(from_date, paid_working_days)
            segments = [
                build(primary, from_date, boundary, paid_working_days),
                build(
                    alternate, boundary + timedelta(days=1), to_date,
                    working_days - paid_working_days,
                ),
            ]

        return SplitAnalysis(needs_split=True, segments=segments, warning=warning, **base)

    # ── Database-backed entry points ────────────────────────────────

    @staticmethod
    async def calculate(
        db: AsyncSession,
        employee_id: uuid.UUID,
        payload: LeaveCalculateRequest,
    ) -> SplitAnalysis:
        """Load calendar, contract rates and balance, then plan the request."""
        if payload.from_date.year != payload.to_date.year:
            raise ValidationException(
                {"to_date": ["Leave cannot span two calendar years; submit one request per year"]}
            )

        calendar = await HolidayCalendar.load(db, payload.from_date, payload.to_date)
        rates = await ContractService.get_rates(db, employee_id, payload.from_date)
        _, _, category = LEAVE_TYPE_SEGMENTS[payload.leave_type]

        available: Optional[Decimal] = None
        if category is not None:
            balance = await BalanceLedger.get_or_init(db, employee_id, payload.from_date.year)
            available = BalanceLedger.available(balance, category)

        analysis = AutoSplitCalculator.plan_segments(
            calendar,
            payload.leave_type,
            payload.from_date,
            payload.to_date,
            payload.duration_type,
            available,
            rates.hourly_rate,
            rates.standard_hours_per_day,
            payload.custom_hours,
        )
        if analysis.needs_split:
            logger.info(
                "Leave for %s needs split: requested=%s available=%s",
                employee_id, analysis.requested_days, analysis.available_days,
            )
        return analysis

    @staticmethod
    def apply_option(
        analysis: SplitAnalysis,
        option: SplitOption,
    ) -> tuple[list[SegmentPlan], LeaveRequestStatus, Optional[SplitRationale]]:
        """Resolve the employee's split choice into (segments, status, rationale)."""
        if not analysis.needs_split:
            return list(analysis.segments), LeaveRequestStatus.submitted, None

        primary, alternate, _ = LEAVE_TYPE_SEGMENTS[analysis.leave_type]
        paid = [s for s in analysis.segments if s.segment_type == primary]
        paid_days = sum((s.duration_days for s in paid), ZERO)
        rationale = SplitRationale(
            option=option,
            available_days=max(analysis.available_days or ZERO, ZERO),
            requested_days=analysis.requested_days,
            paid_days=paid_days,
            unpaid_days=analysis.requested_days - paid_days,
            boundary_date=paid[0].end_date if paid else None,
            warning=analysis.warning,
        )

        if option == SplitOption.proceed:
            return list(analysis.segments), LeaveRequestStatus.submitted_auto_split, rationale

        if option == SplitOption.override:
            return list(analysis.segments), LeaveRequestStatus.needs_override, rationale

        if option == SplitOption.convert_unpaid:
            first, last = analysis.segments[0], analysis.segments[-1]
            hours = sum((s.duration_hours for s in analysis.segments), ZERO)
            deduction = ZERO
            if alternate in DEDUCTIBLE_SEGMENT_TYPES:
                deduction = money(analysis.hourly_rate * hours)
            whole = SegmentPlan(
                segment_type=alternate,
                start_date=first.start_date,
                end_date=last.end_date,
                duration_type=first.duration_type,
                duration_days=analysis.requested_days,
                duration_hours=hours,
                hourly_rate=analysis.hourly_rate,
                payroll_deduction=deduction,
            )
            return [whole], LeaveRequestStatus.submitted, rationale

        # SplitOption.reduce
        if not paid:
            raise ValidationException({
                "split_option": [
                    "No paid balance remains; choose convert_unpaid or override instead of reduce"
                ],
            })
        return paid, LeaveRequestStatus.submitted, rationale
