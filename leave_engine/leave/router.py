"""Leave router — calculate, submit, review actions, impact, balances.

All endpoints require authentication. Reviewer endpoints enforce role checks
here; ownership checks load the request first and compare identities.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.dependencies import (
    ActingAs,
    ensure_self_or_hr,
    get_acting_user,
    require_role,
)
from leave_engine.common.constants import LeaveRequestStatus, UserRole
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.common.pagination import PaginatedResponse, PaginationParams
from leave_engine.database import get_db
from leave_engine.leave.approval import ApprovalWorkflow
from leave_engine.leave.impact import ImpactAnalysis
from leave_engine.leave.lifecycle import LeaveLifecycle
from leave_engine.leave.models import LeaveRequest
from leave_engine.leave.schemas import (
    ApprovalOutcome,
    ImpactReport,
    LeaveApproveRequest,
    LeaveBalanceOut,
    LeaveCalculateRequest,
    LeaveCalculateResponse,
    LeaveCancelRequest,
    LeaveInfoRequest,
    LeaveRejectRequest,
    LeaveRequestDetail,
    LeaveRequestOut,
    LeaveResubmitRequest,
    LeaveSubmitRequest,
    LeaveSubmitResponse,
)
from leave_engine.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])

_reviewer = require_role(UserRole.manager, UserRole.hr_admin, UserRole.system_admin)


def _ensure_can_review(actor: ActingAs, request: LeaveRequest) -> None:
    """Managers review their own reports or department; never their own leave."""
    if request.employee_id == actor.employee_id:
        raise ForbiddenException("You cannot review your own leave request.")
    if actor.is_hr:
        return
    if request.manager_id != actor.employee_id and (
        actor.department_id is None or request.department_id != actor.department_id
    ):
        raise ForbiddenException("This leave request is outside your team.")


async def _load_for_review(db: AsyncSession, request_id: uuid.UUID, actor: ActingAs) -> LeaveRequest:
    request = await LeaveLifecycle.get_request(db, request_id)
    _ensure_can_review(actor, request)
    return request


# ── POST /calculate ─────────────────────────────────────────────────

@router.post("/calculate", response_model=LeaveCalculateResponse)
async def calculate_leave(
    body: LeaveCalculateRequest,
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Preview balance and auto-split for a date range. Nothing is stored."""
    return await LeaveService.calculate(db, actor.employee_id, body)


# ── POST /submit ────────────────────────────────────────────────────

@router.post("/submit", response_model=LeaveSubmitResponse, status_code=201)
async def submit_leave(
    body: LeaveSubmitRequest,
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Submit a leave request; paid days are reserved immediately."""
    return await LeaveService.submit(db, actor.employee_id, body)


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=PaginatedResponse[LeaveRequestOut])
async def list_requests(
    scope: Literal["my", "team", "all"] = Query("my"),
    status: Optional[LeaveRequestStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    params: PaginationParams = Depends(),
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """List leave requests: own (default), department (managers) or all (HR)."""
    department_id = None
    if scope == "my":
        employee_id = actor.employee_id
    elif scope == "team":
        if not actor.is_reviewer:
            raise ForbiddenException("Team listing requires a reviewer role.")
        if not actor.is_hr:
            department_id = actor.department_id
    elif not actor.is_hr:
        raise ForbiddenException("Listing all requests requires an HR role.")

    return await LeaveService.list_requests(
        db,
        params,
        employee_id=employee_id,
        department_id=department_id,
        status=status,
        from_date=from_date,
        to_date=to_date,
    )


# ── GET /balance/{employee_id} ──────────────────────────────────────

@router.get("/balance/{employee_id}", response_model=LeaveBalanceOut)
async def get_balance(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Balance for one employee and year (self, or HR)."""
    ensure_self_or_hr(actor, employee_id)
    return await LeaveService.get_balance(db, employee_id, year)


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestDetail)
async def get_request(
    request_id: uuid.UUID,
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Request detail with segments and audit trail (owner or reviewer)."""
    request = await LeaveLifecycle.get_request(db, request_id)
    if request.employee_id != actor.employee_id:
        if not actor.is_reviewer:
            raise ForbiddenException("You can only view your own leave requests.")
        _ensure_can_review(actor, request)
    return await LeaveService.get_request(db, request_id)


# ── GET /{id}/impact ────────────────────────────────────────────────

@router.get("/{request_id}/impact", response_model=ImpactReport)
async def get_impact(
    request_id: uuid.UUID,
    actor: ActingAs = Depends(_reviewer),
    db: AsyncSession = Depends(get_db),
):
    """Workload, productivity and payroll impact of a request."""
    await _load_for_review(db, request_id, actor)
    return await ImpactAnalysis.analyze(db, request_id)


# ── POST /{id}/approve ──────────────────────────────────────────────

@router.post("/{request_id}/approve", response_model=ApprovalOutcome)
async def approve_leave(
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    actor: ActingAs = Depends(_reviewer),
    db: AsyncSession = Depends(get_db),
):
    """Approve all (or the given) pending segments. Finalizes the balance."""
    await _load_for_review(db, request_id, actor)
    return await ApprovalWorkflow.approve(
        db,
        request_id,
        actor,
        segment_ids=body.segment_ids,
        comment=body.comment,
        create_ooo=body.create_ooo,
        notify_team=body.notify_team,
        manager_approved=body.manager_approved,
        expected_version=body.expected_version,
    )


# ── POST /{id}/reject ───────────────────────────────────────────────

@router.post("/{request_id}/reject", response_model=ApprovalOutcome)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    actor: ActingAs = Depends(_reviewer),
    db: AsyncSession = Depends(get_db),
):
    """Reject all (or the given) pending segments. Releases the reservation."""
    await _load_for_review(db, request_id, actor)
    return await ApprovalWorkflow.reject(
        db,
        request_id,
        actor,
        reason=body.reason,
        segment_ids=body.segment_ids,
        expected_version=body.expected_version,
    )


# ── POST /{id}/request-info ─────────────────────────────────────────

@router.post("/{request_id}/request-info", response_model=LeaveRequestOut)
async def request_info(
    request_id: uuid.UUID,
    body: LeaveInfoRequest,
    actor: ActingAs = Depends(_reviewer),
    db: AsyncSession = Depends(get_db),
):
    """Ask the employee for more information before deciding."""
    await _load_for_review(db, request_id, actor)
    request = await ApprovalWorkflow.request_info(db, request_id, actor, body.question)
    return LeaveRequestOut.model_validate(request)


# ── POST /{id}/resubmit ─────────────────────────────────────────────

@router.post("/{request_id}/resubmit", response_model=LeaveRequestOut)
async def resubmit_leave(
    request_id: uuid.UUID,
    body: LeaveResubmitRequest,
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Answer an info request and send the request back for review."""
    request = await LeaveLifecycle.get_request(db, request_id)
    if request.employee_id != actor.employee_id:
        raise ForbiddenException("Only the requester can resubmit a leave request.")
    request = await ApprovalWorkflow.resubmit(db, request_id, actor, body.response)
    return LeaveRequestOut.model_validate(request)


# ── POST /{id}/cancel ───────────────────────────────────────────────

@router.post("/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a request (owner or HR). Balance and attendance are restored."""
    request = await LeaveLifecycle.get_request(db, request_id)
    ensure_self_or_hr(actor, request.employee_id)
    request = await ApprovalWorkflow.cancel(db, request_id, actor, body.reason)
    return LeaveRequestOut.model_validate(request)
