"""Merge queue Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_engine.common.constants import LeaveType, MergeQueueStatus


class MergeQueueEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    entry_date: date
    reason: str
    status: MergeQueueStatus
    leave_request_id: Optional[uuid.UUID] = None
    processed_by: Optional[uuid.UUID] = None
    processed_at: Optional[datetime] = None
    escalated: bool = False
    escalated_at: Optional[datetime] = None
    created_at: datetime


class MergeQueueConfirm(BaseModel):
    """Body for confirm / mark-as-leave."""

    leave_type: LeaveType = LeaveType.paid
    reason: Optional[str] = Field(default=None, max_length=1000)


class ReconciliationResult(BaseModel):
    run_date: date
    target_date: date
    skipped: bool = False
    skip_reason: Optional[str] = None
    created: int = 0
    escalated: int = 0
