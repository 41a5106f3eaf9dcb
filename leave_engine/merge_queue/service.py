"""Merge queue service — reconciliation of days with no attendance and no leave.

Business logic:
  - Daily detection for yesterday (working days only), idempotent per employee/date
  - Escalation of entries left pending for more than a week
  - Employee confirm / ignore, HR mark-as-leave (auto-approved)
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.calendar import HolidayCalendar
from leave_engine.attendance.models import AttendanceRecord
from leave_engine.common.audit import BalanceAdjustedRecord, SubmittedRecord, record_audit
from leave_engine.common.constants import (
    LEAVE_TYPE_SEGMENTS,
    AttendanceStatus,
    DurationType,
    LeaveRequestStatus,
    LeaveType,
    MergeQueueStatus,
    SegmentStatus,
)
from leave_engine.common.exceptions import NotFoundException, StateConflict
from leave_engine.common.pagination import PaginatedResponse, PaginationParams, paginate
from leave_engine.config import settings
from leave_engine.core_hr.models import Employee
from leave_engine.database import unit_of_work
from leave_engine.leave.approval import ApprovalWorkflow
from leave_engine.leave.balance import BalanceLedger
from leave_engine.leave.lifecycle import LeaveLifecycle
from leave_engine.leave.models import LeaveRequest, LeaveSegment
from leave_engine.leave.service import LeaveService
from leave_engine.leave.split import AutoSplitCalculator
from leave_engine.merge_queue.models import MergeQueueEntry
from leave_engine.merge_queue.schemas import MergeQueueEntryOut, ReconciliationResult
from leave_engine.payroll.service import ContractService

if TYPE_CHECKING:
    from leave_engine.auth.dependencies import ActingAs

logger = logging.getLogger(__name__)

REASON_NO_RECORD = "No attendance record found for this date"
REASON_ABSENT = "Marked absent - would you like to mark as leave?"


def _insert_for(db: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


class MergeQueueService:

    # ── Detection / escalation ──────────────────────────────────────

    @staticmethod
    async def detect_missing_days(db: AsyncSession, target_date: date) -> int:
        """Queue *target_date* for active employees with nothing on record.

        Returns the number of new entries; existing (employee, date) entries
        are left alone, so re-running the same date creates nothing.
        """
        calendar = await HolidayCalendar.load(db, target_date, target_date)
        if not calendar.is_working_day(target_date):
            logger.info("Reconciliation skipped for non-working day %s", target_date)
            return 0

        employees = (
            await db.execute(
                select(Employee.id).where(
                    Employee.is_active.is_(True),
                    Employee.date_of_joining <= target_date,
                )
            )
        ).scalars().all()
        if not employees:
            return 0

        attendance = dict(
            (
                await db.execute(
                    select(AttendanceRecord.employee_id, AttendanceRecord.status).where(
                        AttendanceRecord.attendance_date == target_date,
                    )
                )
            ).all()
        )
        on_leave = set(
            (
                await db.execute(
                    select(LeaveRequest.employee_id)
                    .join(LeaveSegment, LeaveSegment.leave_request_id == LeaveRequest.id)
                    .where(
                        LeaveRequest.status.not_in(
                            [LeaveRequestStatus.cancelled, LeaveRequestStatus.rejected]
                        ),
                        LeaveSegment.status.in_([SegmentStatus.pending, SegmentStatus.approved]),
                        LeaveSegment.start_date <= target_date,
                        LeaveSegment.end_date >= target_date,
                    )
                )
            ).scalars().all()
        )

        insert = _insert_for(db)
        created = 0
        for employee_id in employees:
            if employee_id in on_leave:
                continue
            status = attendance.get(employee_id)
            if status is None:
                reason = REASON_NO_RECORD
            elif status == AttendanceStatus.absent:
                reason = REASON_ABSENT
            else:
                continue
            result = await db.execute(
                insert(MergeQueueEntry.__table__)
                .values(employee_id=employee_id, entry_date=target_date, reason=reason)
                .on_conflict_do_nothing(index_elements=["employee_id", "entry_date"])
            )
            created += result.rowcount or 0

        logger.info("Merge queue: %d new entr(ies) for %s", created, target_date)
        return created

    @staticmethod
    async def escalate_stale_entries(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """Flag pending entries older than the escalation window for HR."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=settings.MERGE_QUEUE_ESCALATION_DAYS)
        result = await db.execute(
            update(MergeQueueEntry)
            .where(
                MergeQueueEntry.status == MergeQueueStatus.pending,
                MergeQueueEntry.escalated.is_(False),
                MergeQueueEntry.created_at < cutoff,
            )
            .values(escalated=True, escalated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.warning("Merge queue: escalated %d stale entr(ies)", result.rowcount)
        return result.rowcount or 0

    @staticmethod
    async def run_daily_reconciliation(
        db: AsyncSession,
        run_date: Optional[date] = None,
    ) -> ReconciliationResult:
        """Detect yesterday's gaps, then escalate stale entries, in one transaction."""
        run_date = run_date or date.today()
        target = run_date - timedelta(days=1)
        async with unit_of_work(db):
            created = await MergeQueueService.detect_missing_days(db, target)
            escalated = await MergeQueueService.escalate_stale_entries(db)
        return ReconciliationResult(
            run_date=run_date,
            target_date=target,
            created=created,
            escalated=escalated,
        )

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def get_entry(
        db: AsyncSession,
        entry_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> MergeQueueEntry:
        query = select(MergeQueueEntry).where(MergeQueueEntry.id == entry_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        entry = (await db.execute(query)).scalars().first()
        if entry is None:
            raise NotFoundException("MergeQueueEntry", entry_id)
        return entry

    @staticmethod
    async def list_my_entries(
        db: AsyncSession,
        employee_id: uuid.UUID,
        status: Optional[MergeQueueStatus] = None,
    ) -> list[MergeQueueEntryOut]:
        query = select(MergeQueueEntry).where(MergeQueueEntry.employee_id == employee_id)
        if status is not None:
            query = query.where(MergeQueueEntry.status == status)
        result = await db.execute(query.order_by(MergeQueueEntry.entry_date.desc()))
        return [MergeQueueEntryOut.model_validate(e) for e in result.scalars().all()]

    @staticmethod
    async def list_all(
        db: AsyncSession,
        params: PaginationParams,
        *,
        status: Optional[MergeQueueStatus] = None,
        department_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        escalated: Optional[bool] = None,
    ) -> PaginatedResponse:
        query = select(MergeQueueEntry)
        if department_id is not None:
            query = query.join(Employee, Employee.id == MergeQueueEntry.employee_id).where(
                Employee.department_id == department_id
            )
        if status is not None:
            query = query.where(MergeQueueEntry.status == status)
        if from_date is not None:
            query = query.where(MergeQueueEntry.entry_date >= from_date)
        if to_date is not None:
            query = query.where(MergeQueueEntry.entry_date <= to_date)
        if escalated is not None:
            query = query.where(MergeQueueEntry.escalated.is_(escalated))
        query = query.order_by(
            MergeQueueEntry.escalated.desc(),
            MergeQueueEntry.entry_date.desc(),
            MergeQueueEntry.id,
        )
        return await paginate(db, query, params, transform=MergeQueueEntryOut.model_validate)

    # ── Actions ─────────────────────────────────────────────────────

    @staticmethod
    async def _pending_entry(db: AsyncSession, entry_id: uuid.UUID) -> MergeQueueEntry:
        entry = await MergeQueueService.get_entry(db, entry_id, for_update=True)
        if entry.status != MergeQueueStatus.pending:
            raise StateConflict(f"Merge queue entry is already {entry.status.value}.")
        return entry

    @staticmethod
    async def _create_day_request(
        db: AsyncSession,
        entry: MergeQueueEntry,
        leave_type: LeaveType,
        actor_id: uuid.UUID,
        reason: Optional[str],
    ) -> LeaveRequest:
        """One-day full-day request for *entry*, falling back to unpaid without balance."""
        day = entry.entry_date
        employee = await db.get(Employee, entry.employee_id)
        if employee is None:
            raise NotFoundException("Employee", entry.employee_id)
        await LeaveService.check_overlap(db, employee.id, day, day)

        _, _, category = LEAVE_TYPE_SEGMENTS[leave_type]
        if not await BalanceLedger.has_available(db, employee.id, category, Decimal("1"), day.year):
            logger.info(
                "No %s balance for %s on %s; recording as unpaid", leave_type.value, employee.id, day,
            )
            leave_type = LeaveType.unpaid

        calendar = await HolidayCalendar.load(db, day, day)
        rates = await ContractService.get_rates(db, employee.id, day)
        analysis = AutoSplitCalculator.plan_segments(
            calendar,
            leave_type,
            day,
            day,
            DurationType.full_day,
            None,
            rates.hourly_rate,
            rates.standard_hours_per_day,
        )

        request = await LeaveLifecycle.create_request(
            db,
            employee,
            leave_type=leave_type,
            from_date=day,
            to_date=day,
            duration_type=DurationType.full_day,
            segments=analysis.segments,
            actor_id=actor_id,
            requested_days=analysis.requested_days,
            reason=reason or entry.reason,
        )
        await LeaveLifecycle.transition(
            db,
            request,
            LeaveRequestStatus.submitted,
            actor_id=actor_id,
            record=SubmittedRecord(
                from_status=LeaveRequestStatus.draft,
                segment_count=len(request.segments),
            ),
            comment="Created from merge queue",
        )
        reserved = await BalanceLedger.reserve(db, employee.id, request.segments, day.year)
        if reserved:
            await record_audit(
                db,
                leave_request_id=request.id,
                actor_id=actor_id,
                record=BalanceAdjustedRecord(operation="reserve", year=day.year, days=reserved),
            )
        return request

    @staticmethod
    def _close(
        entry: MergeQueueEntry,
        status: MergeQueueStatus,
        actor_id: uuid.UUID,
        request: Optional[LeaveRequest] = None,
    ) -> None:
        entry.status = status
        entry.processed_by = actor_id
        entry.processed_at = datetime.now(timezone.utc)
        if request is not None:
            entry.leave_request_id = request.id

    @staticmethod
    async def confirm(
        db: AsyncSession,
        entry_id: uuid.UUID,
        actor: "ActingAs",
        leave_type: LeaveType,
        reason: Optional[str] = None,
    ) -> MergeQueueEntryOut:
        """Employee classifies the day as leave; the request goes to review."""
        async with unit_of_work(db):
            entry = await MergeQueueService._pending_entry(db, entry_id)
            request = await MergeQueueService._create_day_request(
                db, entry, leave_type, actor.employee_id, reason,
            )
            MergeQueueService._close(entry, MergeQueueStatus.confirmed, actor.employee_id, request)
            await db.flush()
            out = MergeQueueEntryOut.model_validate(entry)
        logger.info("Merge queue entry %s confirmed as %s", entry_id, request.reference_number)
        return out

    @staticmethod
    async def ignore(
        db: AsyncSession,
        entry_id: uuid.UUID,
        actor: "ActingAs",
    ) -> MergeQueueEntryOut:
        async with unit_of_work(db):
            entry = await MergeQueueService._pending_entry(db, entry_id)
            MergeQueueService._close(entry, MergeQueueStatus.ignored, actor.employee_id)
            await db.flush()
            out = MergeQueueEntryOut.model_validate(entry)
        return out

    @staticmethod
    async def mark_as_leave(
        db: AsyncSession,
        entry_id: uuid.UUID,
        actor: "ActingAs",
        leave_type: LeaveType,
        reason: Optional[str] = None,
    ) -> MergeQueueEntryOut:
        """HR records the day as leave and approves it in the same transaction."""
        async with unit_of_work(db):
            entry = await MergeQueueService._pending_entry(db, entry_id)
            request = await MergeQueueService._create_day_request(
                db, entry, leave_type, actor.employee_id, reason,
            )
            await ApprovalWorkflow._approve_in_transaction(
                db,
                request,
                actor.employee_id,
                comment="Marked as leave from merge queue",
                manager_approved=True,
                enforce_workload=False,
            )
            MergeQueueService._close(entry, MergeQueueStatus.processed, actor.employee_id, request)
            await db.flush()
            out = MergeQueueEntryOut.model_validate(entry)
        logger.info(
            "Merge queue entry %s marked as leave (%s) by %s",
            entry_id, request.reference_number, actor.employee_id,
        )
        return out
