"""Leave ORM models: LeaveBalance, LeaveRequest, LeaveSegment."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import (
    DurationType,
    LeaveRequestStatus,
    LeaveType,
    SegmentStatus,
    SegmentType,
)
from leave_engine.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveBalance(Base):
    """One row per employee per calendar year; mutated only by BalanceLedger."""

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "year", name="uq_leave_balance_emp_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_allocated_paid_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, server_default=sa.text("24")
    )
    total_allocated_sick_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, server_default=sa.text("7")
    )
    carried_forward_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    used_paid_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    used_sick_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    used_unpaid_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    pending_paid_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    pending_sick_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0"), server_default=sa.text("0")
    )
    # available_* are GENERATED ALWAYS columns — read-only in ORM
    available_paid_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1),
        sa.Computed(
            "total_allocated_paid_days + carried_forward_days"
            " - used_paid_days - pending_paid_days"
        ),
    )
    available_sick_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1),
        sa.Computed("total_allocated_sick_days - used_sick_days - pending_sick_days"),
    )
    last_updated: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    # Relationships
    employee: Mapped["leave_engine.core_hr.models.Employee"] = relationship()

    def __repr__(self) -> str:
        return f"<LeaveBalance {self.employee_id} {self.year}>"


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    reference_number: Mapped[str] = mapped_column(
        sa.String(20), unique=True, nullable=False
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id")
    )
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="requested_leave_type", create_type=False),
        nullable=False,
    )
    from_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    to_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    duration_type: Mapped[DurationType] = mapped_column(
        sa.Enum(DurationType, name="leave_duration_type", create_type=False),
        nullable=False,
        default=DurationType.full_day,
    )
    status: Mapped[LeaveRequestStatus] = mapped_column(
        sa.Enum(LeaveRequestStatus, name="leave_request_status", create_type=False),
        nullable=False,
        default=LeaveRequestStatus.draft,
        server_default="draft",
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    contact_info: Mapped[Optional[str]] = mapped_column(sa.String(255))
    attachments: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    is_auto_split: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("FALSE")
    )
    # SplitRationale.model_dump(mode="json"); typed access via LeaveRequest.rationale
    split_rationale: Mapped[Optional[dict]] = mapped_column(JSONB)
    info_request: Mapped[Optional[str]] = mapped_column(sa.Text)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    version: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=1, server_default=sa.text("1")
    )
    last_modified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    last_modified: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    __table_args__ = (
        sa.Index("ix_leave_requests_employee_status", "employee_id", "status"),
        sa.Index("ix_leave_requests_department", "department_id"),
    )

    # Relationships
    employee: Mapped["leave_engine.core_hr.models.Employee"] = relationship(
        foreign_keys=[employee_id]
    )
    segments: Mapped[list[LeaveSegment]] = relationship(
        back_populates="leave_request",
        order_by="LeaveSegment.sequence",
        cascade="all, delete-orphan",
    )

    @property
    def rationale(self):
        """Typed view of ``split_rationale`` (None when the request was not split)."""
        from leave_engine.leave.schemas import SplitRationale

        if self.split_rationale is None:
            return None
        return SplitRationale.model_validate(self.split_rationale)

    def __repr__(self) -> str:
        return f"<LeaveRequest {self.reference_number} {self.status}>"


class LeaveSegment(Base):
    __tablename__ = "leave_segments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    segment_type: Mapped[SegmentType] = mapped_column(
        sa.Enum(SegmentType, name="leave_segment_type", create_type=False),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    duration_type: Mapped[DurationType] = mapped_column(
        sa.Enum(DurationType, name="leave_duration_type", create_type=False),
        nullable=False,
        default=DurationType.full_day,
    )
    duration_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    duration_hours: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(
        sa.Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    payroll_deduction: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    status: Mapped[SegmentStatus] = mapped_column(
        sa.Enum(SegmentStatus, name="leave_segment_status", create_type=False),
        nullable=False,
        default=SegmentStatus.pending,
        server_default="pending",
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    # Ledger bookkeeping: days currently held in pending_* / posted to used_*
    balance_reserved: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("FALSE")
    )
    balance_debited: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("FALSE")
    )
    payroll_processed: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("FALSE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    __table_args__ = (
        sa.Index("ix_leave_segments_request", "leave_request_id"),
        sa.Index("ix_leave_segments_dates", "start_date", "end_date"),
        sa.CheckConstraint("start_date <= end_date", name="ck_leave_segment_dates"),
    )

    # Relationships
    leave_request: Mapped[LeaveRequest] = relationship(back_populates="segments")

    def __repr__(self) -> str:
        return (
            f"<LeaveSegment {self.segment_type} {self.start_date}..{self.end_date}"
            f" {self.status}>"
        )


class LeaveReferenceSequence(Base):
    """Last issued ``LR-{year}-NNNN`` number; the row is locked while allocating."""

    __tablename__ = "leave_reference_sequences"

    year: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=False)
    last_number: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    def __repr__(self) -> str:
        return f"<LeaveReferenceSequence {self.year} at {self.last_number}>"
