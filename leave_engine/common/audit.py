"""Append-only leave audit log: model, typed metadata records, async helper.

Every lifecycle transition and every ledger/payroll/attendance side effect
writes one ``AuditLogEntry`` in the same transaction as the business change.
Metadata is not a free-form dict: each action kind has its own pydantic
record, and the union below is discriminated on ``action`` so a reader can
always parse a stored row back into the right class.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

import sqlalchemy as sa
from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.common.constants import (
    AuditAction,
    BalanceCategory,
    DurationType,
    LeaveRequestStatus,
    LeaveType,
    SegmentType,
    SplitOption,
)
from leave_engine.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# Typed metadata records (one per action)
# ═════════════════════════════════════════════════════════════════════


class CreatedRecord(BaseModel):
    action: Literal["created"] = "created"
    leave_type: LeaveType
    from_date: date
    to_date: date
    duration_type: DurationType
    requested_days: Decimal


class SubmittedRecord(BaseModel):
    action: Literal["submitted"] = "submitted"
    from_status: LeaveRequestStatus
    split_option: Optional[SplitOption] = None
    segment_count: int


class AutoSplitRecord(BaseModel):
    action: Literal["auto_split"] = "auto_split"
    available_days: Decimal
    requested_days: Decimal
    paid_days: Decimal
    unpaid_days: Decimal
    boundary_date: Optional[date] = None


class OverrideRequestedRecord(BaseModel):
    action: Literal["override_requested"] = "override_requested"
    available_days: Decimal
    requested_days: Decimal


class InfoRequestedRecord(BaseModel):
    action: Literal["info_requested"] = "info_requested"
    question: str


class InfoProvidedRecord(BaseModel):
    action: Literal["info_provided"] = "info_provided"
    response: str


class ApprovedRecord(BaseModel):
    action: Literal["approved"] = "approved"
    segment_type: Optional[SegmentType] = None
    duration_days: Optional[Decimal] = None
    approved_segments: int = 0
    manager_approved: bool = False
    create_ooo: bool = False
    notify_team: bool = False


class PartiallyApprovedRecord(BaseModel):
    action: Literal["partially_approved"] = "partially_approved"
    approved_segments: int
    rejected_segments: int
    pending_segments: int


class RejectedRecord(BaseModel):
    action: Literal["rejected"] = "rejected"
    reason: str
    segment_type: Optional[SegmentType] = None
    duration_days: Optional[Decimal] = None


class CancelledRecord(BaseModel):
    action: Literal["cancelled"] = "cancelled"
    from_status: LeaveRequestStatus
    released_days: Decimal = Decimal("0")
    restored_days: Decimal = Decimal("0")


class BalanceAdjustedRecord(BaseModel):
    action: Literal["balance_adjusted"] = "balance_adjusted"
    operation: Literal["reserve", "release", "finalize", "restore"]
    year: int
    days: dict[BalanceCategory, Decimal]


class PayrollProcessedRecord(BaseModel):
    action: Literal["payroll_processed"] = "payroll_processed"
    adjustment_id: uuid.UUID
    period_code: str
    amount: Decimal


class AttendanceUpdatedRecord(BaseModel):
    action: Literal["attendance_updated"] = "attendance_updated"
    dates: list[date]
    status: str


AuditRecord = Annotated[
    Union[
        CreatedRecord,
        SubmittedRecord,
        AutoSplitRecord,
        OverrideRequestedRecord,
        InfoRequestedRecord,
        InfoProvidedRecord,
        ApprovedRecord,
        PartiallyApprovedRecord,
        RejectedRecord,
        CancelledRecord,
        BalanceAdjustedRecord,
        PayrollProcessedRecord,
        AttendanceUpdatedRecord,
    ],
    Field(discriminator="action"),
]

_record_adapter: TypeAdapter[AuditRecord] = TypeAdapter(AuditRecord)


def parse_audit_record(data: dict) -> AuditRecord:
    """Rebuild the typed record stored in ``AuditLogEntry.details``."""
    return _record_adapter.validate_python(data)


# ═════════════════════════════════════════════════════════════════════
# Immutable audit table
# ═════════════════════════════════════════════════════════════════════


class AuditLogEntry(Base):
    """Immutable trail of every leave request transition and side effect."""

    __tablename__ = "leave_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id"), nullable=False,
    )
    leave_segment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_segments.id"),
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    action: Mapped[AuditAction] = mapped_column(
        sa.Enum(AuditAction, name="leave_audit_action", create_type=False),
        nullable=False,
    )
    comment: Mapped[Optional[str]] = mapped_column(sa.Text)
    details: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        server_default=sa.func.now(),
    )

    __table_args__ = (
        sa.Index("ix_leave_audit_request", "leave_request_id"),
        sa.Index("ix_leave_audit_action", "action"),
    )

    @property
    def record(self) -> AuditRecord:
        return parse_audit_record(self.details)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.action} request={self.leave_request_id} by {self.actor_id}>"


# ── Helper to create an entry ───────────────────────────────────────

async def record_audit(
    session: AsyncSession,
    *,
    leave_request_id: uuid.UUID,
    record: AuditRecord,
    actor_id: Optional[uuid.UUID] = None,
    leave_segment_id: Optional[uuid.UUID] = None,
    comment: Optional[str] = None,
) -> AuditLogEntry:
    """
    Create and flush an audit entry inside the caller's transaction.

    Args:
        session: Async SQLAlchemy session.
        leave_request_id: Request the entry belongs to.
        record: Typed metadata; its ``action`` becomes the entry's action.
        actor_id: Employee performing the action (None for system jobs).
        leave_segment_id: Segment, when the action targets one.
        comment: Free-text reviewer/employee comment.
    """
    entry = AuditLogEntry(
        leave_request_id=leave_request_id,
        leave_segment_id=leave_segment_id,
        actor_id=actor_id,
        action=AuditAction(record.action),
        comment=comment,
        details=record.model_dump(mode="json"),
    )
    session.add(entry)
    await session.flush()
    return entry
