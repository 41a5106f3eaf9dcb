"""Payroll router — HR queue of adjustments for closed payroll periods."""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.dependencies import ActingAs, require_role
from leave_engine.common.constants import PayrollAdjustmentStatus, UserRole
from leave_engine.common.pagination import PaginatedResponse, PaginationParams
from leave_engine.database import get_db
from leave_engine.payroll.schemas import PayrollAdjustmentOut, PayrollAdjustmentResolve
from leave_engine.payroll.service import PayrollService

router = APIRouter(prefix="", tags=["payroll"])

_hr = require_role(UserRole.hr_admin, UserRole.system_admin)


@router.get("/adjustments", response_model=PaginatedResponse[PayrollAdjustmentOut])
async def list_adjustments(
    status: Optional[PayrollAdjustmentStatus] = Query(PayrollAdjustmentStatus.pending),
    period_code: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
    employee_id: Optional[uuid.UUID] = Query(None),
    params: PaginationParams = Depends(),
    actor: ActingAs = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    """Adjustments queued against closed periods (pending by default)."""
    return await PayrollService.list_adjustments(
        db, params, status=status, period_code=period_code, employee_id=employee_id,
    )


@router.post("/adjustments/{adjustment_id}/process", response_model=PayrollAdjustmentOut)
async def process_adjustment(
    adjustment_id: uuid.UUID,
    body: PayrollAdjustmentResolve,
    actor: ActingAs = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    return await PayrollService.resolve_adjustment(
        db,
        adjustment_id,
        actor.employee_id,
        new_status=PayrollAdjustmentStatus.processed,
        notes=body.notes,
    )


@router.post("/adjustments/{adjustment_id}/cancel", response_model=PayrollAdjustmentOut)
async def cancel_adjustment(
    adjustment_id: uuid.UUID,
    body: PayrollAdjustmentResolve,
    actor: ActingAs = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    return await PayrollService.resolve_adjustment(
        db,
        adjustment_id,
        actor.employee_id,
        new_status=PayrollAdjustmentStatus.cancelled,
        notes=body.notes,
    )
