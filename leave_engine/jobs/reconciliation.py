"""Daily merge-queue reconciliation job, guarded by a database lease.

APScheduler's ``max_instances=1`` only covers one process; the ``job_locks``
row covers every process sharing the database. A run that finds the lease
held by someone else logs and returns without touching the queue.
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_engine.config import settings
from leave_engine.database import async_session_factory
from leave_engine.jobs.models import JobLock
from leave_engine.merge_queue.schemas import ReconciliationResult
from leave_engine.merge_queue.service import MergeQueueService

logger = logging.getLogger(__name__)

RECONCILIATION_JOB = "merge_queue_reconciliation"


def _holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


async def acquire_lease(db: AsyncSession, job_name: str, holder: str) -> bool:
    """Take the lease for *job_name* if it is free or expired; commits."""
    now = datetime.now(timezone.utc)
    until = now + timedelta(minutes=settings.JOB_LOCK_TTL_MINUTES)
    insert = sqlite.insert if db.get_bind().dialect.name == "sqlite" else postgresql.insert

    created = await db.execute(
        insert(JobLock.__table__)
        .values(job_name=job_name, holder=holder, locked_until=until)
        .on_conflict_do_nothing(index_elements=["job_name"])
    )
    acquired = created.rowcount == 1
    if not acquired:
        taken = await db.execute(
            update(JobLock)
            .where(
                JobLock.job_name == job_name,
                or_(JobLock.locked_until.is_(None), JobLock.locked_until < now),
            )
            .values(holder=holder, locked_until=until)
            .execution_options(synchronize_session=False)
        )
        acquired = taken.rowcount == 1
    await db.commit()
    return acquired


async def release_lease(db: AsyncSession, job_name: str, holder: str) -> None:
    await db.execute(
        update(JobLock)
        .where(JobLock.job_name == job_name, JobLock.holder == holder)
        .values(locked_until=None, last_run_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def run_reconciliation_job(
    run_date: Optional[date] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> ReconciliationResult:
    """One reconciliation pass: lease, detect + escalate, release."""
    run_date = run_date or date.today()
    holder = _holder_id()

    async with session_factory() as db:
        if not await acquire_lease(db, RECONCILIATION_JOB, holder):
            logger.warning("Reconciliation for %s skipped: lease held elsewhere", run_date)
            return ReconciliationResult(
                run_date=run_date,
                target_date=run_date - timedelta(days=1),
                skipped=True,
                skip_reason="lease-held",
            )
        try:
            result = await MergeQueueService.run_daily_reconciliation(db, run_date)
        finally:
            await release_lease(db, RECONCILIATION_JOB, holder)

    logger.info(
        "Reconciliation for %s done: %d created, %d escalated",
        result.target_date, result.created, result.escalated,
    )
    return result
