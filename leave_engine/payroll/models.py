"""Payroll ORM models: EmployeeContract, PayrollPeriod, PayrollAdjustment."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import PayrollAdjustmentStatus, PayrollPeriodStatus
from leave_engine.database import Base


class EmployeeContract(Base):
    """Salary terms used to price leave hours (one active row per employee)."""

    __tablename__ = "employee_contracts"
    __table_args__ = (
        sa.Index(
            "uq_employee_contracts_one_active",
            "employee_id",
            unique=True,
            postgresql_where=sa.text("is_active"),
            sqlite_where=sa.text("is_active"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    monthly_salary: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False)
    contracted_monthly_hours: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), nullable=False, server_default=sa.text("160")
    )
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    employee: Mapped["leave_engine.core_hr.models.Employee"] = relationship()


class PayrollPeriod(Base):
    __tablename__ = "payroll_periods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    period_code: Mapped[str] = mapped_column(sa.String(7), unique=True, nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[PayrollPeriodStatus] = mapped_column(
        sa.Enum(PayrollPeriodStatus, name="payroll_period_status", create_type=False),
        default=PayrollPeriodStatus.open,
        server_default="open",
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )


class PayrollAdjustment(Base):
    """Deduction that missed a closed payroll run and needs manual processing."""

    __tablename__ = "payroll_adjustments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id"), nullable=False
    )
    leave_segment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_segments.id"), nullable=False
    )
    period_code: Mapped[str] = mapped_column(sa.String(7), nullable=False)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[PayrollAdjustmentStatus] = mapped_column(
        sa.Enum(
            PayrollAdjustmentStatus,
            name="payroll_adjustment_status",
            create_type=False,
        ),
        default=PayrollAdjustmentStatus.pending,
        server_default="pending",
    )
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=sa.func.now(),
    )

    __table_args__ = (
        sa.Index("ix_payroll_adjustments_status", "status"),
        sa.Index("ix_payroll_adjustments_employee", "employee_id"),
    )
