"""Attendance service layer — day-level status written and read by the leave engine.

Business logic:
  - Approved leave marks each working day ``on_leave`` (or ``half_day``)
  - Cancelling approved leave puts back whatever status the day had before
  - Department and employee hour averages feed the impact analysis
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.calendar import HolidayCalendar
from leave_engine.attendance.models import LEAVE_SOURCE, AttendanceRecord
from leave_engine.common.constants import AttendanceStatus, DurationType
from leave_engine.core_hr.models import Employee
from leave_engine.leave.models import LeaveSegment
from leave_engine.leave.schemas import AttendanceSnapshot

logger = logging.getLogger(__name__)

DEFAULT_DAILY_HOURS = Decimal("8")
WORKED_STATUSES = (AttendanceStatus.present, AttendanceStatus.half_day)


class AttendanceService:
    """Async attendance operations used by approval, cancellation and impact."""

    # ── Writes ──────────────────────────────────────────────────────

    @staticmethod
    async def mark_leave(
        db: AsyncSession,
        employee_id: uuid.UUID,
        segment: LeaveSegment,
        calendar: HolidayCalendar,
    ) -> list[date]:
        """Upsert a leave row for every working day of *segment*.

        Existing rows keep their prior status in ``previous_status`` so a
        later cancellation can restore it.
        """
        status = (
            AttendanceStatus.half_day
            if segment.duration_type == DurationType.half_day
            else AttendanceStatus.on_leave
        )
        days = calendar.working_days(segment.start_date, segment.end_date)
        if not days:
            return []

        result = await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.attendance_date.in_(days),
            )
        )
        existing = {r.attendance_date: r for r in result.scalars().all()}

        for day in days:
            record = existing.get(day)
            if record is None:
                db.add(
                    AttendanceRecord(
                        employee_id=employee_id,
                        attendance_date=day,
                        status=status,
                        source=LEAVE_SOURCE,
                        leave_segment_id=segment.id,
                        remarks=f"Leave ({segment.segment_type.value})",
                    )
                )
                continue
            if record.source != LEAVE_SOURCE:
                record.previous_status = record.status
            record.status = status
            record.source = LEAVE_SOURCE
            record.leave_segment_id = segment.id
            record.remarks = f"Leave ({segment.segment_type.value})"

        await db.flush()
        logger.info(
            "Marked %d day(s) %s for employee %s (segment %s)",
            len(days), status.value, employee_id, segment.id,
        )
        return days

    @staticmethod
    async def clear_leave(
        db: AsyncSession,
        segment_ids: Sequence[uuid.UUID],
    ) -> int:
        """Undo ``mark_leave`` for *segment_ids*; returns the rows touched."""
        if not segment_ids:
            return 0
        result = await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.leave_segment_id.in_(list(segment_ids)),
                AttendanceRecord.source == LEAVE_SOURCE,
            )
        )
        records = result.scalars().all()
        for record in records:
            if record.previous_status is None:
                await db.delete(record)
                continue
            record.status = record.previous_status
            record.previous_status = None
            record.source = "system"
            record.leave_segment_id = None
            record.remarks = "Leave cancelled"
        await db.flush()
        return len(records)

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def average_daily_hours(
        db: AsyncSession,
        department_id: uuid.UUID | None,
        until: date,
        days: int = 30,
    ) -> Decimal:
        """Average worked hours per attendance day in a department (8 if unknown)."""
        if department_id is None:
            return DEFAULT_DAILY_HOURS
        since = until - timedelta(days=days)
        result = await db.execute(
            select(func.avg(AttendanceRecord.total_work_minutes))
            .join(Employee, Employee.id == AttendanceRecord.employee_id)
            .where(
                Employee.department_id == department_id,
                AttendanceRecord.attendance_date >= since,
                AttendanceRecord.attendance_date <= until,
                AttendanceRecord.status.in_(WORKED_STATUSES),
                AttendanceRecord.total_work_minutes.is_not(None),
            )
        )
        avg_minutes = result.scalar_one_or_none()
        if not avg_minutes:
            return DEFAULT_DAILY_HOURS
        return (Decimal(str(avg_minutes)) / 60).quantize(Decimal("0.01"))

    @staticmethod
    async def snapshot(
        db: AsyncSession,
        employee_id: uuid.UUID,
        today: date,
    ) -> AttendanceSnapshot:
        """Present days and average hours over 30 days, absences over 7."""
        month_start = today - timedelta(days=30)
        week_start = today - timedelta(days=7)

        worked = await db.execute(
            select(
                func.count(AttendanceRecord.id),
                func.avg(AttendanceRecord.total_work_minutes),
            ).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.attendance_date >= month_start,
                AttendanceRecord.attendance_date <= today,
                AttendanceRecord.status.in_(WORKED_STATUSES),
            )
        )
        present_days, avg_minutes = worked.one()

        absences = await db.execute(
            select(func.count(AttendanceRecord.id)).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.attendance_date >= week_start,
                AttendanceRecord.attendance_date <= today,
                AttendanceRecord.status == AttendanceStatus.absent,
            )
        )

        avg_hours = Decimal("0.00")
        if avg_minutes:
            avg_hours = (Decimal(str(avg_minutes)) / 60).quantize(Decimal("0.01"))
        return AttendanceSnapshot(
            present_days_last_30=present_days or 0,
            avg_hours_last_30=avg_hours,
            absences_last_7=absences.scalar_one() or 0,
        )
