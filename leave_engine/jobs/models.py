"""Job lease table: keeps a scheduled job single-instance across processes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.database import Base


class JobLock(Base):
    __tablename__ = "job_locks"

    job_name: Mapped[str] = mapped_column(sa.String(100), primary_key=True)
    holder: Mapped[Optional[str]] = mapped_column(sa.String(255))
    locked_until: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_run_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<JobLock {self.job_name} held by {self.holder} until {self.locked_until}>"
