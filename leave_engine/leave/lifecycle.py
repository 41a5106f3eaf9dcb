"""Leave request state machine.

Request status changes go through ``LeaveLifecycle.transition`` only: it
checks the edge against ``ALLOWED_TRANSITIONS``, applies the change as a
compare-and-swap on ``version`` and writes the audit entry for it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from leave_engine.common.audit import AuditRecord, CreatedRecord, record_audit
from leave_engine.common.constants import (
    DurationType,
    LeaveRequestStatus,
    LeaveType,
    SegmentStatus,
)
from leave_engine.common.exceptions import NotFoundException, StateConflict
from leave_engine.core_hr.models import Employee
from leave_engine.leave.models import LeaveReferenceSequence, LeaveRequest, LeaveSegment
from leave_engine.leave.schemas import SegmentPlan, SplitRationale

logger = logging.getLogger(__name__)

S = LeaveRequestStatus

REVIEW_STATES: frozenset[LeaveRequestStatus] = frozenset(
    {S.submitted, S.submitted_auto_split, S.needs_override, S.partially_approved}
)
TERMINAL_STATES: frozenset[LeaveRequestStatus] = frozenset({S.rejected, S.cancelled})

ALLOWED_TRANSITIONS: dict[LeaveRequestStatus, frozenset[LeaveRequestStatus]] = {
    S.draft: frozenset({S.submitted, S.cancelled}),
    S.submitted: frozenset({
        S.submitted, S.submitted_auto_split, S.needs_override, S.pending_info,
        S.approved, S.partially_approved, S.rejected, S.cancelled,
    }),
    S.pending_info: frozenset({S.submitted, S.cancelled}),
    S.submitted_auto_split: frozenset({
        S.submitted_auto_split, S.approved, S.partially_approved, S.rejected, S.cancelled,
    }),
    S.needs_override: frozenset({
        S.needs_override, S.approved, S.partially_approved, S.rejected, S.cancelled,
    }),
    S.partially_approved: frozenset({S.partially_approved, S.approved, S.cancelled}),
    S.approved: frozenset({S.cancelled}),
    S.rejected: frozenset(),
    S.cancelled: frozenset(),
}


def can_transition(from_status: LeaveRequestStatus, to_status: LeaveRequestStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def _reference(year: int, number: int) -> str:
    return f"LR-{year}-{number:04d}"


class LeaveLifecycle:

    @staticmethod
    async def get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> LeaveRequest:
        """Load a request with its segments, refreshing any cached copy."""
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(selectinload(LeaveRequest.segments))
            .execution_options(populate_existing=True)
        )
        request = result.scalars().first()
        if request is None:
            raise NotFoundException("LeaveRequest", request_id)
        return request

    @staticmethod
    async def transition(
        db: AsyncSession,
        request: LeaveRequest,
        to_status: LeaveRequestStatus,
        *,
        actor_id: Optional[uuid.UUID],
        record: AuditRecord,
        comment: Optional[str] = None,
        expected_version: Optional[int] = None,
        values: Optional[dict[str, Any]] = None,
    ) -> LeaveRequest:
        """Move *request* to *to_status* with an atomic version check.

        ``UPDATE leave_requests ... WHERE id = :id AND version = :expected``;
        anything other than one affected row means another writer got there
        first and raises ``StateConflict``. Extra column ``values`` are
        written in the same statement.
        """
        from_status = request.status
        if not can_transition(from_status, to_status):
            raise StateConflict(
                f"Cannot move leave request {request.reference_number} "
                f"from {from_status.value} to {to_status.value}."
            )

        expected = expected_version if expected_version is not None else request.version
        now = datetime.now(timezone.utc)
        changes: dict[str, Any] = {
            "status": to_status,
            "last_modified_by": actor_id,
            "last_modified": now,
            **(values or {}),
        }
        result = await db.execute(
            update(LeaveRequest)
            .where(LeaveRequest.id == request.id, LeaveRequest.version == expected)
            .values(version=LeaveRequest.version + 1, **changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Version conflict on %s (expected v%s)", request.reference_number, expected,
            )
            raise StateConflict(
                f"Leave request {request.reference_number} was modified concurrently; "
                f"reload and retry."
            )

        set_committed_value(request, "version", expected + 1)
        for key, value in changes.items():
            set_committed_value(request, key, value)

        await record_audit(
            db,
            leave_request_id=request.id,
            record=record,
            actor_id=actor_id,
            comment=comment,
        )
        logger.info(
            "Leave request %s: %s -> %s (v%s)",
            request.reference_number, from_status.value, to_status.value, request.version,
        )
        return request

    @staticmethod
    def derive_status(
        current: LeaveRequestStatus,
        segments: Sequence[LeaveSegment],
    ) -> LeaveRequestStatus:
        """Request status implied by its live (non-cancelled) segment statuses."""
        statuses = [s.status for s in segments if s.status != SegmentStatus.cancelled]
        if not statuses:
            return current
        if all(st == SegmentStatus.approved for st in statuses):
            return S.approved
        if all(st == SegmentStatus.rejected for st in statuses):
            return S.rejected
        if any(st == SegmentStatus.approved for st in statuses):
            return S.partially_approved
        return current

    @staticmethod
    async def _highest_issued(db: AsyncSession, year: int) -> int:
        result = await db.execute(
            select(func.max(LeaveRequest.reference_number)).where(
                LeaveRequest.reference_number.like(f"LR-{year}-%")
            )
        )
        latest = result.scalar_one_or_none()
        return int(latest.rsplit("-", 1)[1]) if latest else 0

    @staticmethod
    async def next_reference_number(db: AsyncSession, year: int) -> str:
        """The number the next submission in *year* will get; nothing is reserved."""
        sequence = await db.get(LeaveReferenceSequence, year, populate_existing=True)
        if sequence is not None:
            last = sequence.last_number
        else:
            last = await LeaveLifecycle._highest_issued(db, year)
        return _reference(year, last + 1)

    @staticmethod
    async def allocate_reference_number(db: AsyncSession, year: int) -> str:
        """Issue the next ``LR-{year}-NNNN`` under a row lock on the year's sequence.

        The sequence row is created on first use, seeded from numbers already
        issued. Concurrent submitters queue on ``SELECT ... FOR UPDATE`` until
        the holder's transaction ends.
        """
        insert = sqlite.insert if db.get_bind().dialect.name == "sqlite" else postgresql.insert
        await db.execute(
            insert(LeaveReferenceSequence.__table__)
            .values(year=year, last_number=await LeaveLifecycle._highest_issued(db, year))
            .on_conflict_do_nothing(index_elements=["year"])
        )
        result = await db.execute(
            select(LeaveReferenceSequence)
            .where(LeaveReferenceSequence.year == year)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        sequence = result.scalars().one()
        sequence.last_number += 1
        sequence.updated_at = datetime.now(timezone.utc)
        await db.flush()
        return _reference(year, sequence.last_number)

    @staticmethod
    async def create_request(
        db: AsyncSession,
        employee: Employee,
        *,
        leave_type: LeaveType,
        from_date: date,
        to_date: date,
        duration_type: DurationType,
        segments: Sequence[SegmentPlan],
        actor_id: uuid.UUID,
        requested_days: Decimal,
        reason: Optional[str] = None,
        contact_info: Optional[str] = None,
        attachments: Optional[list[str]] = None,
        rationale: Optional[SplitRationale] = None,
    ) -> LeaveRequest:
        """Persist a draft request and its segments (sequence in date order)."""
        if not segments:
            raise StateConflict("A leave request needs at least one segment.")

        request = LeaveRequest(
            reference_number=await LeaveLifecycle.allocate_reference_number(db, from_date.year),
            employee_id=employee.id,
            department_id=employee.department_id,
            manager_id=employee.reporting_manager_id,
            leave_type=leave_type,
            from_date=from_date,
            to_date=to_date,
            duration_type=duration_type,
            status=S.draft,
            reason=reason,
            contact_info=contact_info,
            attachments=list(attachments or []),
            is_auto_split=len(segments) == 2,
            split_rationale=rationale.model_dump(mode="json") if rationale else None,
            version=1,
            last_modified_by=actor_id,
        )
        ordered = sorted(segments, key=lambda plan: plan.start_date)
        request.segments = [
            LeaveSegment(
                sequence=index,
                segment_type=plan.segment_type,
                start_date=plan.start_date,
                end_date=plan.end_date,
                duration_type=plan.duration_type,
                duration_days=plan.duration_days,
                duration_hours=plan.duration_hours,
                hourly_rate=plan.hourly_rate,
                payroll_deduction=plan.payroll_deduction,
                status=SegmentStatus.pending,
            )
            for index, plan in enumerate(ordered, start=1)
        ]
        db.add(request)
        await db.flush()

        await record_audit(
            db,
            leave_request_id=request.id,
            actor_id=actor_id,
            record=CreatedRecord(
                leave_type=leave_type,
                from_date=from_date,
                to_date=to_date,
                duration_type=duration_type,
                requested_days=requested_days,
            ),
        )
        return request
