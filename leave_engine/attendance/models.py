"""Attendance ORM models: PublicHoliday, AttendanceRecord.

Check-in/out capture lives outside this service; the leave engine reads the
day-level status and writes ``on_leave`` / ``half_day`` rows when leave is
approved.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import AttendanceStatus
from leave_engine.database import Base

# AttendanceRecord.source for rows written by leave approval
LEAVE_SOURCE = "leave"


class PublicHoliday(Base):
    __tablename__ = "public_holidays"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    holiday_date: Mapped[date] = mapped_column(sa.Date, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<PublicHoliday {self.holiday_date} {self.name!r}>"


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "attendance_date", name="uq_attendance_emp_date"
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
    attendance_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        sa.Enum(AttendanceStatus, name="attendance_status", create_type=False),
        nullable=False,
        default=AttendanceStatus.absent,
    )
    total_work_minutes: Mapped[Optional[int]] = mapped_column(sa.Integer)
    source: Mapped[str] = mapped_column(sa.String(50), default="system")
    leave_segment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_segments.id")
    )
    previous_status: Mapped[Optional[AttendanceStatus]] = mapped_column(
        sa.Enum(AttendanceStatus, name="attendance_status", create_type=False)
    )
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    employee: Mapped["leave_engine.core_hr.models.Employee"] = relationship()
