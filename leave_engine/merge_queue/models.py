"""Merge queue ORM model: days with neither attendance nor leave on record."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import MergeQueueStatus
from leave_engine.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MergeQueueEntry(Base):
    """One unexplained working day for one employee."""

    __tablename__ = "merge_queue_entries"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "entry_date", name="uq_merge_queue_emp_date"),
        sa.Index("ix_merge_queue_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    entry_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[MergeQueueStatus] = mapped_column(
        sa.Enum(MergeQueueStatus, name="merge_queue_status", create_type=False),
        nullable=False,
        default=MergeQueueStatus.pending,
        server_default="pending",
    )
    leave_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id")
    )
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    escalated: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("FALSE")
    )
    escalated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    # Relationships
    employee: Mapped["leave_engine.core_hr.models.Employee"] = relationship(
        foreign_keys=[employee_id]
    )

    def __repr__(self) -> str:
        return f"<MergeQueueEntry {self.employee_id} {self.entry_date} {self.status}>"
