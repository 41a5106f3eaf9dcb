"""Payroll Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_engine.common.constants import PayrollAdjustmentStatus


class PayrollAdjustmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_request_id: uuid.UUID
    leave_segment_id: uuid.UUID
    period_code: str
    amount: Decimal
    reason: Optional[str] = None
    status: PayrollAdjustmentStatus
    processed_by: Optional[uuid.UUID] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime


class PayrollAdjustmentResolve(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=1000)
