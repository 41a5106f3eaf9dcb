"""Common module — shared utilities for the leave engine."""

from leave_engine.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    TIMEZONE,
    AuditAction,
    BalanceCategory,
    DurationType,
    LeaveRequestStatus,
    LeaveType,
    MergeQueueStatus,
    PayrollAdjustmentStatus,
    SegmentStatus,
    SegmentType,
    SplitOption,
    UserRole,
)
from leave_engine.common.exceptions import (
    AppException,
    BalanceConflict,
    ForbiddenException,
    ManagerApprovalRequired,
    NotFoundException,
    StateConflict,
    ValidationException,
    register_exception_handlers,
)
from leave_engine.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Constants / Enums
    "AuditAction",
    "BalanceCategory",
    "DurationType",
    "LeaveRequestStatus",
    "LeaveType",
    "MergeQueueStatus",
    "PayrollAdjustmentStatus",
    "SegmentStatus",
    "SegmentType",
    "SplitOption",
    "UserRole",
    "TIMEZONE",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "BalanceConflict",
    "ForbiddenException",
    "ManagerApprovalRequired",
    "NotFoundException",
    "StateConflict",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
