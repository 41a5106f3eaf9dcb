"""Leave service layer — calculation, submission and read models.

Business logic:
  - Balance snapshot + auto-split analysis without persistence
  - Submission: overlap check, split option, draft → submitted transitions, reservation
  - Request detail with its audit trail, paginated listings, balance lookup

Review actions (approve / reject / info / cancel) live in ``approval.py``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_engine.common.audit import (
    AuditLogEntry,
    AutoSplitRecord,
    BalanceAdjustedRecord,
    OverrideRequestedRecord,
    SubmittedRecord,
    record_audit,
)
from leave_engine.common.constants import LeaveRequestStatus, SegmentStatus
from leave_engine.common.exceptions import NotFoundException, ValidationException
from leave_engine.common.pagination import PaginatedResponse, PaginationParams, paginate
from leave_engine.core_hr.models import Employee
from leave_engine.database import unit_of_work
from leave_engine.leave.balance import BalanceLedger
from leave_engine.leave.lifecycle import LeaveLifecycle
from leave_engine.leave.models import LeaveRequest, LeaveSegment
from leave_engine.leave.schemas import (
    AuditEntryOut,
    LeaveBalanceOut,
    LeaveCalculateRequest,
    LeaveCalculateResponse,
    LeaveRequestDetail,
    LeaveRequestOut,
    LeaveSubmitRequest,
    LeaveSubmitResponse,
)
from leave_engine.leave.split import AutoSplitCalculator

logger = logging.getLogger(__name__)

S = LeaveRequestStatus


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: calculate, submit, read."""

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    async def _get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def check_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
    ) -> None:
        result = await db.execute(
            select(func.count(LeaveSegment.id))
            .join(LeaveRequest, LeaveRequest.id == LeaveSegment.leave_request_id)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.not_in([S.cancelled, S.rejected]),
                LeaveSegment.status.in_([SegmentStatus.pending, SegmentStatus.approved]),
                LeaveSegment.start_date <= to_date,
                LeaveSegment.end_date >= from_date,
            )
        )
        if result.scalar_one() > 0:
            raise ValidationException(
                {"dates": [
                    "You already have a pending or approved leave request "
                    "overlapping with these dates."
                ]}
            )

    # ── Calculate ───────────────────────────────────────────────────

    @staticmethod
    async def calculate(
        db: AsyncSession,
        employee_id: uuid.UUID,
        payload: LeaveCalculateRequest,
    ) -> LeaveCalculateResponse:
        """Balance snapshot plus split analysis; nothing about the request is stored."""
        analysis = await AutoSplitCalculator.calculate(db, employee_id, payload)
        balance = await BalanceLedger.get_or_init(db, employee_id, payload.from_date.year)
        return LeaveCalculateResponse(
            balance=LeaveBalanceOut.model_validate(balance),
            analysis=analysis,
        )

    # ── Submit ──────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        payload: LeaveSubmitRequest,
    ) -> LeaveSubmitResponse:
        """Create a request from the chosen split option and reserve its paid days.

        Status path: ``draft → submitted`` and, for a split, on to
        ``submitted_auto_split`` (proceed) or ``needs_override`` (override).
        """
        async with unit_of_work(db):
            employee = await LeaveService._get_employee(db, employee_id)
            await LeaveService.check_overlap(db, employee_id, payload.from_date, payload.to_date)

            analysis = await AutoSplitCalculator.calculate(db, employee_id, payload)
            segments, status, rationale = AutoSplitCalculator.apply_option(
                analysis, payload.split_option,
            )
            # reduce drops the unpaid tail, so the stored range ends with the last segment
            to_date = max(plan.end_date for plan in segments)

            request = await LeaveLifecycle.create_request(
                db,
                employee,
                leave_type=payload.leave_type,
                from_date=payload.from_date,
                to_date=to_date,
                duration_type=payload.duration_type,
                segments=segments,
                actor_id=employee_id,
                requested_days=analysis.requested_days,
                reason=payload.reason,
                contact_info=payload.contact_info,
                attachments=payload.attachments,
                rationale=rationale,
            )
            await LeaveLifecycle.transition(
                db,
                request,
                S.submitted,
                actor_id=employee_id,
                record=SubmittedRecord(
                    from_status=S.draft,
                    split_option=payload.split_option if analysis.needs_split else None,
                    segment_count=len(segments),
                ),
            )

            if status == S.submitted_auto_split:
                await LeaveLifecycle.transition(
                    db,
                    request,
                    status,
                    actor_id=employee_id,
                    record=AutoSplitRecord(
                        available_days=rationale.available_days,
                        requested_days=rationale.requested_days,
                        paid_days=rationale.paid_days,
                        unpaid_days=rationale.unpaid_days,
                        boundary_date=rationale.boundary_date,
                    ),
                    comment=analysis.warning,
                )
            elif status == S.needs_override:
                await LeaveLifecycle.transition(
                    db,
                    request,
                    status,
                    actor_id=employee_id,
                    record=OverrideRequestedRecord(
                        available_days=rationale.available_days,
                        requested_days=rationale.requested_days,
                    ),
                    comment=analysis.warning,
                )

            year = payload.from_date.year
            reserved = await BalanceLedger.reserve(db, employee_id, request.segments, year)
            if reserved:
                await record_audit(
                    db,
                    leave_request_id=request.id,
                    actor_id=employee_id,
                    record=BalanceAdjustedRecord(operation="reserve", year=year, days=reserved),
                )
            out = LeaveRequestOut.model_validate(request)

        logger.info(
            "Leave request %s submitted by %s (%s, %d segment(s))",
            out.reference_number, employee_id, out.status.value, len(out.segments),
        )
        return LeaveSubmitResponse(request=out, analysis=analysis)

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def get_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequestDetail:
        request = await LeaveLifecycle.get_request(db, request_id)
        result = await db.execute(
            select(AuditLogEntry)
            .where(AuditLogEntry.leave_request_id == request_id)
            .order_by(AuditLogEntry.created_at, AuditLogEntry.id)
        )
        detail = LeaveRequestDetail.model_validate(request)
        detail.audit_trail = [AuditEntryOut.model_validate(e) for e in result.scalars().all()]
        return detail

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        params: PaginationParams,
        *,
        employee_id: Optional[uuid.UUID] = None,
        department_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveRequestStatus] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> PaginatedResponse:
        query = select(LeaveRequest)
        if employee_id is not None:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if department_id is not None:
            query = query.where(LeaveRequest.department_id == department_id)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        if from_date is not None:
            query = query.where(LeaveRequest.to_date >= from_date)
        if to_date is not None:
            query = query.where(LeaveRequest.from_date <= to_date)
        query = query.order_by(LeaveRequest.created_at.desc(), LeaveRequest.reference_number.desc())
        return await paginate(
            db,
            query,
            params,
            transform=LeaveRequestOut.model_validate,
            options=[selectinload(LeaveRequest.segments)],
        )

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> LeaveBalanceOut:
        year = year or date.today().year
        await LeaveService._get_employee(db, employee_id)
        balance = await BalanceLedger.get_or_init(db, employee_id, year)
        return LeaveBalanceOut.model_validate(balance)
