"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Request / *Create → request bodies (write)
  - *Out / *Response    → response bodies (read)
  - *Brief              → compact embedded representations
  - plain names         → value objects passed between services
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leave_engine.common.constants import (
    AuditAction,
    BalanceCategory,
    DurationType,
    LeaveRequestStatus,
    LeaveType,
    RiskLevel,
    SegmentStatus,
    SegmentType,
    SplitOption,
)
from leave_engine.common.exceptions import BALANCE_CONFLICT_ACTION


# ═════════════════════════════════════════════════════════════════════
# Split analysis (value objects)
# ═════════════════════════════════════════════════════════════════════


class SegmentPlan(BaseModel):
    """A segment as computed by the splitter, before it is persisted."""

    segment_type: SegmentType
    start_date: date
    end_date: date
    duration_type: DurationType = DurationType.full_day
    duration_days: Decimal
    duration_hours: Decimal
    hourly_rate: Decimal
    payroll_deduction: Decimal = Decimal("0")


class SplitAnalysis(BaseModel):
    """Outcome of AutoSplitCalculator.calculate (never persisted as-is)."""

    leave_type: LeaveType
    balance_category: Optional[BalanceCategory] = None
    needs_split: bool
    available_days: Optional[Decimal] = None
    requested_days: Decimal
    segments: list[SegmentPlan]
    warning: Optional[str] = None
    hourly_rate: Decimal
    standard_hours_per_day: Decimal


class SplitRationale(BaseModel):
    """Why a request was split; stored on LeaveRequest.split_rationale."""

    option: SplitOption
    available_days: Decimal
    requested_days: Decimal
    paid_days: Decimal
    unpaid_days: Decimal
    boundary_date: Optional[date] = None
    warning: Optional[str] = None


class BalanceShortfall(BaseModel):
    """One segment the current balance can no longer cover."""

    segment_id: uuid.UUID
    segment_type: SegmentType
    category: BalanceCategory
    available: Decimal
    required: Decimal
    action: str = BALANCE_CONFLICT_ACTION


# ═════════════════════════════════════════════════════════════════════
# Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance snapshot with generated available columns."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    year: int
    total_allocated_paid_days: Decimal
    total_allocated_sick_days: Decimal
    carried_forward_days: Decimal
    used_paid_days: Decimal
    used_sick_days: Decimal
    used_unpaid_days: Decimal
    pending_paid_days: Decimal
    pending_sick_days: Decimal
    available_paid_days: Decimal
    available_sick_days: Decimal
    last_updated: Optional[datetime] = None


# ═════════════════════════════════════════════════════════════════════
# Calculate / submit
# ═════════════════════════════════════════════════════════════════════


class LeaveCalculateRequest(BaseModel):
    """Body for POST /calculate (no persistence)."""

    leave_type: LeaveType
    from_date: date
    to_date: date
    duration_type: DurationType = DurationType.full_day
    custom_hours: Optional[Decimal] = Field(default=None, gt=0, le=24)

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveCalculateRequest":
        if self.to_date < self.from_date:
            raise ValueError("to_date must be on or after from_date")
        if self.duration_type == DurationType.custom_hours and self.custom_hours is None:
            raise ValueError("custom_hours is required when duration_type is custom_hours")
        return self


class LeaveSubmitRequest(LeaveCalculateRequest):
    """Body for POST /submit."""

    reason: Optional[str] = Field(default=None, max_length=2000)
    contact_info: Optional[str] = Field(default=None, max_length=255)
    attachments: list[str] = Field(default_factory=list)
    split_option: SplitOption = SplitOption.proceed


class LeaveCalculateResponse(BaseModel):
    balance: LeaveBalanceOut
    analysis: SplitAnalysis


# ═════════════════════════════════════════════════════════════════════
# Requests / segments (read)
# ═════════════════════════════════════════════════════════════════════


class LeaveSegmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sequence: int
    segment_type: SegmentType
    start_date: date
    end_date: date
    duration_type: DurationType
    duration_days: Decimal
    duration_hours: Decimal
    hourly_rate: Decimal
    payroll_deduction: Decimal
    status: SegmentStatus
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference_number: str
    employee_id: uuid.UUID
    department_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    leave_type: LeaveType
    from_date: date
    to_date: date
    duration_type: DurationType
    status: LeaveRequestStatus
    reason: Optional[str] = None
    contact_info: Optional[str] = None
    attachments: list[str] = Field(default_factory=list)
    is_auto_split: bool = False
    split_rationale: Optional[SplitRationale] = None
    info_request: Optional[str] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    version: int
    created_at: datetime
    segments: list[LeaveSegmentOut] = Field(default_factory=list)


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_segment_id: Optional[uuid.UUID] = None
    actor_id: Optional[uuid.UUID] = None
    action: AuditAction
    comment: Optional[str] = None
    details: dict
    created_at: datetime


class LeaveRequestDetail(LeaveRequestOut):
    audit_trail: list[AuditEntryOut] = Field(default_factory=list)


class LeaveSubmitResponse(BaseModel):
    request: LeaveRequestOut
    analysis: SplitAnalysis


# ═════════════════════════════════════════════════════════════════════
# Review actions
# ═════════════════════════════════════════════════════════════════════


class LeaveApproveRequest(BaseModel):
    segment_ids: Optional[list[uuid.UUID]] = None
    comment: Optional[str] = Field(default=None, max_length=1000)
    create_ooo: bool = False
    notify_team: bool = False
    manager_approved: bool = False
    expected_version: Optional[int] = Field(default=None, ge=1)


class LeaveRejectRequest(BaseModel):
    segment_ids: Optional[list[uuid.UUID]] = None
    reason: str = Field(..., min_length=1, max_length=1000)
    expected_version: Optional[int] = Field(default=None, ge=1)


class LeaveInfoRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=1000)


class LeaveResubmitRequest(BaseModel):
    response: str = Field(..., min_length=1, max_length=2000)


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ApprovalOutcome(BaseModel):
    request_id: uuid.UUID
    status: LeaveRequestStatus
    version: int
    approved_segment_ids: list[uuid.UUID] = Field(default_factory=list)
    rejected_segment_ids: list[uuid.UUID] = Field(default_factory=list)
    payroll_adjustment_ids: list[uuid.UUID] = Field(default_factory=list)
    attendance_dates: list[date] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Impact analysis
# ═════════════════════════════════════════════════════════════════════


class CriticalTaskBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    deadline: date
    priority: str


class WorkloadRisk(BaseModel):
    risk_score: float
    risk_level: RiskLevel
    team_off_count: int
    team_size: int
    critical_role_adjustment: int = 0
    manager_adjustment: int = 0
    critical_tasks: list[CriticalTaskBrief] = Field(default_factory=list)
    requires_manager_approval: bool


class ProductivityImpact(BaseModel):
    avg_hours_per_employee: Decimal
    overlapping_day_count: int
    productivity_loss_hours: Decimal


class PayrollImpactLine(BaseModel):
    segment_id: uuid.UUID
    segment_type: SegmentType
    duration_days: Decimal
    duration_hours: Decimal
    payroll_deduction: Decimal


class PayrollImpact(BaseModel):
    total_deduction: Decimal
    currency: str
    paid_days: Decimal
    unpaid_days: Decimal
    segments: list[PayrollImpactLine] = Field(default_factory=list)


class TeamConflict(BaseModel):
    employee_id: uuid.UUID
    employee_name: str
    start_date: date
    end_date: date
    segment_status: SegmentStatus


class AlternativeWindow(BaseModel):
    start_date: date
    end_date: date
    conflicts: int
    score: int


class LeaveHistoryLine(BaseModel):
    leave_type: LeaveType
    requests: int
    approved: int
    total_days: Decimal
    approval_rate: float


class AttendanceSnapshot(BaseModel):
    present_days_last_30: int
    avg_hours_last_30: Decimal
    absences_last_7: int


class ImpactReport(BaseModel):
    request_id: uuid.UUID
    workload: WorkloadRisk
    productivity: ProductivityImpact
    payroll: PayrollImpact
    conflicts: list[TeamConflict] = Field(default_factory=list)
    alternatives: list[AlternativeWindow] = Field(default_factory=list)
    leave_history: list[LeaveHistoryLine] = Field(default_factory=list)
    attendance: AttendanceSnapshot
