"""Merge queue router — employee triage, HR listing/marking, manual run."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.dependencies import ActingAs, get_acting_user, require_role
from leave_engine.common.constants import MergeQueueStatus, UserRole
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.common.pagination import PaginatedResponse, PaginationParams
from leave_engine.common.rate_limit import MANUAL_JOB_TRIGGER_LIMIT, limiter
from leave_engine.database import get_db
from leave_engine.jobs.reconciliation import run_reconciliation_job
from leave_engine.merge_queue.schemas import (
    MergeQueueConfirm,
    MergeQueueEntryOut,
    ReconciliationResult,
)
from leave_engine.merge_queue.service import MergeQueueService

router = APIRouter(prefix="", tags=["merge-queue"])

_hr = require_role(UserRole.hr_admin, UserRole.system_admin)


async def _ensure_owner(db: AsyncSession, entry_id: uuid.UUID, actor: ActingAs) -> None:
    entry = await MergeQueueService.get_entry(db, entry_id)
    if entry.employee_id != actor.employee_id:
        raise ForbiddenException("You can only act on your own merge queue entries.")


# ── GET /my-entries ─────────────────────────────────────────────────

@router.get("/my-entries", response_model=list[MergeQueueEntryOut])
async def my_entries(
    status: Optional[MergeQueueStatus] = Query(None),
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Unclassified days flagged for the authenticated employee."""
    return await MergeQueueService.list_my_entries(db, actor.employee_id, status)


# ── GET /all ────────────────────────────────────────────────────────

@router.get("/all", response_model=PaginatedResponse[MergeQueueEntryOut])
async def all_entries(
    status: Optional[MergeQueueStatus] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    escalated: Optional[bool] = Query(None),
    params: PaginationParams = Depends(),
    actor: ActingAs = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    """HR view of the queue; escalated entries first."""
    return await MergeQueueService.list_all(
        db,
        params,
        status=status,
        department_id=department_id,
        from_date=from_date,
        to_date=to_date,
        escalated=escalated,
    )


# ── POST /run ───────────────────────────────────────────────────────

@router.post("/run", response_model=ReconciliationResult)
@limiter.limit(MANUAL_JOB_TRIGGER_LIMIT)
async def run_reconciliation(
    request: Request,
    run_date: Optional[date] = Query(None, description="Defaults to today; yesterday is reconciled"),
    actor: ActingAs = Depends(_hr),
):
    """Trigger the reconciliation job now (same lease as the scheduled run)."""
    return await run_reconciliation_job(run_date)


# ── POST /{id}/confirm ──────────────────────────────────────────────

@router.post("/{entry_id}/confirm", response_model=MergeQueueEntryOut)
async def confirm_entry(
    entry_id: uuid.UUID,
    body: MergeQueueConfirm,
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Classify the day as leave; a one-day request is submitted for review."""
    await _ensure_owner(db, entry_id, actor)
    return await MergeQueueService.confirm(db, entry_id, actor, body.leave_type, body.reason)


# ── POST /{id}/ignore ───────────────────────────────────────────────

@router.post("/{entry_id}/ignore", response_model=MergeQueueEntryOut)
async def ignore_entry(
    entry_id: uuid.UUID,
    actor: ActingAs = Depends(get_acting_user),
    db: AsyncSession = Depends(get_db),
):
    """Dismiss the entry (e.g. the employee was working but forgot to punch)."""
    await _ensure_owner(db, entry_id, actor)
    return await MergeQueueService.ignore(db, entry_id, actor)


# ── POST /{id}/mark-as-leave ────────────────────────────────────────

@router.post("/{entry_id}/mark-as-leave", response_model=MergeQueueEntryOut)
async def mark_as_leave(
    entry_id: uuid.UUID,
    body: MergeQueueConfirm,
    actor: ActingAs = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    """HR records the day as leave and approves it in one step."""
    return await MergeQueueService.mark_as_leave(db, entry_id, actor, body.leave_type, body.reason)
