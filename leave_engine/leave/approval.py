"""Approval workflow — review actions on a submitted leave request.

Every public operation opens exactly one unit of work: the revalidation,
segment updates, payroll/attendance side effects, the versioned status
transition and the ledger movement commit together or not at all.

Role checks happen at the router; this module only refuses to act without
an acting identity.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.calendar import HolidayCalendar
from leave_engine.attendance.service import AttendanceService
from leave_engine.common.audit import (
    ApprovedRecord,
    AttendanceUpdatedRecord,
    BalanceAdjustedRecord,
    CancelledRecord,
    InfoProvidedRecord,
    InfoRequestedRecord,
    PartiallyApprovedRecord,
    PayrollProcessedRecord,
    RejectedRecord,
    record_audit,
)
from leave_engine.common.constants import (
    DEDUCTIBLE_SEGMENT_TYPES,
    AttendanceStatus,
    DurationType,
    LeaveRequestStatus,
    SegmentStatus,
)
from leave_engine.common.exceptions import (
    BalanceConflict,
    ForbiddenException,
    ManagerApprovalRequired,
    StateConflict,
    ValidationException,
)
from leave_engine.database import unit_of_work
from leave_engine.leave.balance import BalanceLedger
from leave_engine.leave.impact import ImpactAnalysis
from leave_engine.leave.lifecycle import REVIEW_STATES, TERMINAL_STATES, LeaveLifecycle
from leave_engine.leave.models import LeaveRequest, LeaveSegment
from leave_engine.leave.schemas import ApprovalOutcome
from leave_engine.payroll.service import PayrollService

if TYPE_CHECKING:
    from leave_engine.auth.dependencies import ActingAs

logger = logging.getLogger(__name__)

S = LeaveRequestStatus


def _require_actor(actor: Optional["ActingAs"]) -> "ActingAs":
    if actor is None:
        raise ForbiddenException("No acting identity was supplied for this operation.")
    return actor


def _total(days: dict) -> Decimal:
    return sum(days.values(), Decimal("0"))


class ApprovalWorkflow:

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _resolve_targets(
        request: LeaveRequest,
        segment_ids: Optional[Sequence[uuid.UUID]],
    ) -> list[LeaveSegment]:
        """Pending segments to act on; explicit ids must belong to *request*."""
        if segment_ids:
            by_id = {s.id: s for s in request.segments}
            unknown = [str(sid) for sid in segment_ids if sid not in by_id]
            if unknown:
                raise ValidationException(
                    {"segment_ids": [f"Segment {sid} is not part of this request" for sid in unknown]}
                )
            targets = [by_id[sid] for sid in dict.fromkeys(segment_ids)]
            not_pending = [s for s in targets if s.status != SegmentStatus.pending]
            if not_pending:
                raise StateConflict(
                    f"Segment {not_pending[0].id} is already {not_pending[0].status.value}."
                )
        else:
            targets = [s for s in request.segments if s.status == SegmentStatus.pending]
        if not targets:
            raise StateConflict(
                f"Leave request {request.reference_number} has no pending segments."
            )
        return targets

    @staticmethod
    def _check_reviewable(request: LeaveRequest, expected_version: Optional[int]) -> None:
        if request.status == S.approved:
            raise StateConflict(
                f"Leave request {request.reference_number} is already approved."
            )
        if request.status not in REVIEW_STATES:
            raise StateConflict(
                f"Leave request {request.reference_number} is {request.status.value} "
                f"and cannot be reviewed."
            )
        if expected_version is not None and expected_version != request.version:
            raise StateConflict(
                f"Leave request {request.reference_number} is at version "
                f"{request.version}, not {expected_version}; reload and retry."
            )

    # ── Approve ─────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Optional["ActingAs"],
        *,
        segment_ids: Optional[Sequence[uuid.UUID]] = None,
        comment: Optional[str] = None,
        create_ooo: bool = False,
        notify_team: bool = False,
        manager_approved: bool = False,
        expected_version: Optional[int] = None,
    ) -> ApprovalOutcome:
        """Approve pending segments (all by default) of a request under review.

        Raises:
            StateConflict: already approved, not under review, stale version,
                or a concurrent writer won the version check.
            BalanceConflict: the current balance no longer covers a segment.
            ManagerApprovalRequired: workload risk needs explicit sign-off.
        """
        actor = _require_actor(actor)
        async with unit_of_work(db):
            request = await LeaveLifecycle.get_request(db, request_id)
            outcome = await ApprovalWorkflow._approve_in_transaction(
                db,
                request,
                actor.employee_id,
                segment_ids=segment_ids,
                comment=comment,
                create_ooo=create_ooo,
                notify_team=notify_team,
                manager_approved=manager_approved,
                expected_version=expected_version,
            )
        logger.info(
            "Leave request %s approved by %s -> %s",
            request.reference_number, actor.employee_id, outcome.status.value,
        )
        return outcome

    @staticmethod
    async def _approve_in_transaction(
        db: AsyncSession,
        request: LeaveRequest,
        actor_id: uuid.UUID,
        *,
        segment_ids: Optional[Sequence[uuid.UUID]] = None,
        comment: Optional[str] = None,
        create_ooo: bool = False,
        notify_team: bool = False,
        manager_approved: bool = False,
        expected_version: Optional[int] = None,
        enforce_workload: bool = True,
    ) -> ApprovalOutcome:
        ApprovalWorkflow._check_reviewable(request, expected_version)
        expected = request.version
        targets = ApprovalWorkflow._resolve_targets(request, segment_ids)
        year = request.from_date.year

        shortfalls = await BalanceLedger.revalidate(db, request.employee_id, targets, year)
        if shortfalls:
            raise BalanceConflict([s.model_dump(mode="json") for s in shortfalls])

        if enforce_workload:
            risk = await ImpactAnalysis.assess_workload(db, request)
            needs_signoff = risk.requires_manager_approval or request.status == S.needs_override
            if needs_signoff and not manager_approved:
                logger.warning(
                    "Approval of %s blocked pending manager sign-off (risk %s)",
                    request.reference_number, risk.risk_score,
                )
                raise ManagerApprovalRequired(risk.model_dump(mode="json"))

        calendar = await HolidayCalendar.load(db, request.from_date, request.to_date)
        now = datetime.now(timezone.utc)
        adjustment_ids: list[uuid.UUID] = []
        attendance_dates = []

        for segment in targets:
            segment.status = SegmentStatus.approved
            segment.approved_by = actor_id
            segment.approved_at = now

            if (
                segment.segment_type in DEDUCTIBLE_SEGMENT_TYPES
                and Decimal(segment.payroll_deduction) > 0
                and not segment.payroll_processed
            ):
                period = await PayrollService.find_closed_period(
                    db, segment.start_date, segment.end_date,
                )
                if period is not None:
                    adjustment = await PayrollService.queue_adjustment(
                        db, segment, request.employee_id, period,
                    )
                    adjustment_ids.append(adjustment.id)
                    await record_audit(
                        db,
                        leave_request_id=request.id,
                        leave_segment_id=segment.id,
                        actor_id=actor_id,
                        record=PayrollProcessedRecord(
                            adjustment_id=adjustment.id,
                            period_code=period.period_code,
                            amount=adjustment.amount,
                        ),
                    )

            marked = await AttendanceService.mark_leave(
                db, request.employee_id, segment, calendar,
            )
            if marked:
                attendance_dates.extend(marked)
                await record_audit(
                    db,
                    leave_request_id=request.id,
                    leave_segment_id=segment.id,
                    actor_id=actor_id,
                    record=AttendanceUpdatedRecord(
                        dates=marked,
                        status=(
                            AttendanceStatus.half_day.value
                            if segment.duration_type == DurationType.half_day
                            else AttendanceStatus.on_leave.value
                        ),
                    ),
                )

            await record_audit(
                db,
                leave_request_id=request.id,
                leave_segment_id=segment.id,
                actor_id=actor_id,
                comment=comment,
                record=ApprovedRecord(
                    segment_type=segment.segment_type,
                    duration_days=segment.duration_days,
                    approved_segments=1,
                    manager_approved=manager_approved,
                    create_ooo=create_ooo,
                    notify_team=notify_team,
                ),
            )

        new_status = LeaveLifecycle.derive_status(request.status, request.segments)
        if new_status == S.approved:
            record = ApprovedRecord(
                approved_segments=len(targets),
                manager_approved=manager_approved,
                create_ooo=create_ooo,
                notify_team=notify_team,
            )
            values = {"approved_by": actor_id, "approved_at": now}
        else:
            record = ApprovalWorkflow._partial_record(request)
            values = {}
        await LeaveLifecycle.transition(
            db,
            request,
            new_status,
            actor_id=actor_id,
            record=record,
            comment=comment,
            expected_version=expected,
            values=values,
        )

        moved = await BalanceLedger.finalize(db, request.employee_id, targets, year)
        if moved:
            await record_audit(
                db,
                leave_request_id=request.id,
                actor_id=actor_id,
                record=BalanceAdjustedRecord(operation="finalize", year=year, days=moved),
            )

        return ApprovalOutcome(
            request_id=request.id,
            status=request.status,
            version=request.version,
            approved_segment_ids=[s.id for s in targets],
            payroll_adjustment_ids=adjustment_ids,
            attendance_dates=sorted(attendance_dates),
        )

    @staticmethod
    def _partial_record(request: LeaveRequest) -> PartiallyApprovedRecord:
        counts = {status: 0 for status in SegmentStatus}
        for segment in request.segments:
            counts[segment.status] += 1
        return PartiallyApprovedRecord(
            approved_segments=counts[SegmentStatus.approved],
            rejected_segments=counts[SegmentStatus.rejected],
            pending_segments=counts[SegmentStatus.pending],
        )

    # ── Reject ──────────────────────────────────────────────────────

    @staticmethod
    async def reject(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Optional["ActingAs"],
        *,
        reason: str,
        segment_ids: Optional[Sequence[uuid.UUID]] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalOutcome:
        """Reject pending segments and hand their reserved days back."""
        actor = _require_actor(actor)
        async with unit_of_work(db):
            request = await LeaveLifecycle.get_request(db, request_id)
            ApprovalWorkflow._check_reviewable(request, expected_version)
            expected = request.version
            targets = ApprovalWorkflow._resolve_targets(request, segment_ids)
            year = request.from_date.year
            now = datetime.now(timezone.utc)

            for segment in targets:
                segment.status = SegmentStatus.rejected
                segment.rejected_by = actor.employee_id
                segment.rejected_at = now
                segment.rejection_reason = reason
                await record_audit(
                    db,
                    leave_request_id=request.id,
                    leave_segment_id=segment.id,
                    actor_id=actor.employee_id,
                    record=RejectedRecord(
                        reason=reason,
                        segment_type=segment.segment_type,
                        duration_days=segment.duration_days,
                    ),
                )

            released = await BalanceLedger.release(db, request.employee_id, targets, year)
            if released:
                await record_audit(
                    db,
                    leave_request_id=request.id,
                    actor_id=actor.employee_id,
                    record=BalanceAdjustedRecord(operation="release", year=year, days=released),
                )

            new_status = LeaveLifecycle.derive_status(request.status, request.segments)
            values = {}
            if new_status == S.rejected:
                values = {
                    "rejected_by": actor.employee_id,
                    "rejected_at": now,
                    "rejection_reason": reason,
                }
            record = (
                ApprovalWorkflow._partial_record(request)
                if new_status == S.partially_approved
                else RejectedRecord(reason=reason)
            )
            await LeaveLifecycle.transition(
                db,
                request,
                new_status,
                actor_id=actor.employee_id,
                record=record,
                comment=reason,
                expected_version=expected,
                values=values,
            )

        logger.info(
            "Leave request %s rejected by %s -> %s",
            request.reference_number, actor.employee_id, request.status.value,
        )
        return ApprovalOutcome(
            request_id=request.id,
            status=request.status,
            version=request.version,
            rejected_segment_ids=[s.id for s in targets],
        )

    # ── Clarification loop ──────────────────────────────────────────

    @staticmethod
    async def request_info(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Optional["ActingAs"],
        question: str,
    ) -> LeaveRequest:
        """Reviewer asks for clarification: submitted -> pending_info."""
        actor = _require_actor(actor)
        async with unit_of_work(db):
            request = await LeaveLifecycle.get_request(db, request_id)
            await LeaveLifecycle.transition(
                db,
                request,
                S.pending_info,
                actor_id=actor.employee_id,
                record=InfoRequestedRecord(question=question),
                comment=question,
                values={"info_request": question},
            )
        return request

    @staticmethod
    async def resubmit(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Optional["ActingAs"],
        response: str,
    ) -> LeaveRequest:
        """Employee answers the reviewer: pending_info -> submitted."""
        actor = _require_actor(actor)
        async with unit_of_work(db):
            request = await LeaveLifecycle.get_request(db, request_id)
            await LeaveLifecycle.transition(
                db,
                request,
                S.submitted,
                actor_id=actor.employee_id,
                record=InfoProvidedRecord(response=response),
                comment=response,
            )
        return request

    # ── Cancel ──────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Optional["ActingAs"],
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        """Cancel a live request and unwind every ledger, payroll and attendance effect."""
        actor = _require_actor(actor)
        async with unit_of_work(db):
            request = await LeaveLifecycle.get_request(db, request_id)
            if request.status in TERMINAL_STATES:
                raise StateConflict(
                    f"Leave request {request.reference_number} is already "
                    f"{request.status.value}."
                )
            from_status = request.status
            year = request.from_date.year
            live = [
                s for s in request.segments
                if s.status in (SegmentStatus.pending, SegmentStatus.approved)
            ]
            approved_ids = [s.id for s in live if s.status == SegmentStatus.approved]

            released = await BalanceLedger.release(db, request.employee_id, live, year)
            restored = await BalanceLedger.restore(db, request.employee_id, live, year)
            for operation, days in (("release", released), ("restore", restored)):
                if days:
                    await record_audit(
                        db,
                        leave_request_id=request.id,
                        actor_id=actor.employee_id,
                        record=BalanceAdjustedRecord(operation=operation, year=year, days=days),
                    )

            await PayrollService.cancel_for_segments(db, approved_ids)
            await AttendanceService.clear_leave(db, approved_ids)
            for segment in live:
                segment.status = SegmentStatus.cancelled

            await LeaveLifecycle.transition(
                db,
                request,
                S.cancelled,
                actor_id=actor.employee_id,
                record=CancelledRecord(
                    from_status=from_status,
                    released_days=_total(released),
                    restored_days=_total(restored),
                ),
                comment=reason,
                values={"cancelled_at": datetime.now(timezone.utc)},
            )

        logger.info(
            "Leave request %s cancelled by %s (was %s)",
            request.reference_number, actor.employee_id, from_status.value,
        )
        return request
