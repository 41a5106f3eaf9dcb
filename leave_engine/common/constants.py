"""Enums and constants for the leave engine — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


REVIEWER_ROLES: tuple[UserRole, ...] = (
    UserRole.manager,
    UserRole.hr_admin,
    UserRole.system_admin,
)
HR_ROLES: tuple[UserRole, ...] = (UserRole.hr_admin, UserRole.system_admin)


# ── Leave requests ──────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    """What the employee asks for; mapped onto segment types by the splitter."""

    paid = "paid"
    sick = "sick"
    unpaid = "unpaid"
    maternity = "maternity"
    paternity = "paternity"
    comp_off = "comp_off"
    other = "other"


class SegmentType(str, enum.Enum):
    paid = "paid"
    unpaid = "unpaid"
    sick_paid = "sick_paid"
    sick_unpaid = "sick_unpaid"
    maternity_paid = "maternity_paid"
    paternity_paid = "paternity_paid"
    compensatory_off = "compensatory_off"
    other = "other"


class DurationType(str, enum.Enum):
    full_day = "full_day"
    half_day = "half_day"
    custom_hours = "custom_hours"


class LeaveRequestStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    pending_info = "pending_info"
    submitted_auto_split = "submitted_auto_split"
    needs_override = "needs_override"
    approved = "approved"
    partially_approved = "partially_approved"
    rejected = "rejected"
    cancelled = "cancelled"


class SegmentStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class SplitOption(str, enum.Enum):
    proceed = "proceed"
    convert_unpaid = "convert_unpaid"
    reduce = "reduce"
    override = "override"


class BalanceCategory(str, enum.Enum):
    paid = "paid"
    sick = "sick"
    unpaid = "unpaid"


class AuditAction(str, enum.Enum):
    created = "created"
    submitted = "submitted"
    auto_split = "auto_split"
    override_requested = "override_requested"
    info_requested = "info_requested"
    info_provided = "info_provided"
    approved = "approved"
    partially_approved = "partially_approved"
    rejected = "rejected"
    cancelled = "cancelled"
    balance_adjusted = "balance_adjusted"
    payroll_processed = "payroll_processed"
    attendance_updated = "attendance_updated"


class RiskLevel(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


# Requested type → (primary segment, alternate segment, balance category)
LEAVE_TYPE_SEGMENTS: dict[LeaveType, tuple[SegmentType, SegmentType | None, BalanceCategory | None]] = {
    LeaveType.paid: (SegmentType.paid, SegmentType.unpaid, BalanceCategory.paid),
    LeaveType.sick: (SegmentType.sick_paid, SegmentType.sick_unpaid, BalanceCategory.sick),
    LeaveType.unpaid: (SegmentType.unpaid, None, None),
    LeaveType.maternity: (SegmentType.maternity_paid, None, None),
    LeaveType.paternity: (SegmentType.paternity_paid, None, None),
    LeaveType.comp_off: (SegmentType.compensatory_off, None, None),
    LeaveType.other: (SegmentType.other, None, None),
}

SEGMENT_CATEGORY: dict[SegmentType, BalanceCategory] = {
    SegmentType.paid: BalanceCategory.paid,
    SegmentType.sick_paid: BalanceCategory.sick,
    SegmentType.unpaid: BalanceCategory.unpaid,
    SegmentType.sick_unpaid: BalanceCategory.unpaid,
}

# Segment types that cost the employee salary
DEDUCTIBLE_SEGMENT_TYPES: frozenset[SegmentType] = frozenset(
    {SegmentType.unpaid, SegmentType.sick_unpaid, SegmentType.other}
)


# ── Payroll ─────────────────────────────────────────────────────────

class PayrollPeriodStatus(str, enum.Enum):
    open = "open"
    processing = "processing"
    closed = "closed"
    archived = "archived"


class PayrollAdjustmentStatus(str, enum.Enum):
    pending = "pending"
    processed = "processed"
    cancelled = "cancelled"


# ── Attendance ──────────────────────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    present = "present"
    absent = "absent"
    half_day = "half_day"
    weekend = "weekend"
    holiday = "holiday"
    on_leave = "on_leave"


class TaskStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


# ── Merge queue ─────────────────────────────────────────────────────

class MergeQueueStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    ignored = "ignored"
    processed = "processed"


# ── Misc constants ──────────────────────────────────────────────────

TIMEZONE = "Asia/Kolkata"
WEEKEND_DAYS = frozenset({5, 6})   # Saturday, Sunday
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
