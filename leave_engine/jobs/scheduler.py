"""
APScheduler configuration for the leave engine.

One cron job: the daily merge-queue reconciliation. The scheduler lives for
the FastAPI process (started and stopped from the app lifespan) and can be
disabled with ``SCHEDULER_ENABLED=false``, e.g. for tests or for API
replicas that should not run jobs.
"""

import logging
from datetime import datetime

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from leave_engine.common.constants import TIMEZONE
from leave_engine.config import settings
from leave_engine.jobs.reconciliation import RECONCILIATION_JOB, run_reconciliation_job

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Collapse missed runs into one
    'max_instances': 1,  # Never overlap a run with itself
    'misfire_grace_time': 3600,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=TIMEZONE,
)


async def reconciliation_tick():
    """Scheduler entry point; failures are logged, the schedule keeps running."""
    try:
        await run_reconciliation_job()
    except Exception:
        logger.exception("Job '%s' failed", RECONCILIATION_JOB)


def start_scheduler():
    """Register jobs and start the scheduler (no-op if already running)."""
    if scheduler.running:
        return

    scheduler.add_job(
        reconciliation_tick,
        'cron',
        hour=settings.RECONCILIATION_HOUR,
        minute=settings.RECONCILIATION_MINUTE,
        id=RECONCILIATION_JOB,
        name='Merge queue reconciliation',
        replace_existing=True,
    )
    if settings.RUN_RECONCILIATION_ON_STARTUP:
        scheduler.add_job(
            reconciliation_tick,
            'date',
            run_date=datetime.now(scheduler.timezone),
            id=f"{RECONCILIATION_JOB}_startup",
            name='Merge queue reconciliation (startup)',
            replace_existing=True,
        )

    scheduler.start()
    logger.info("Background job scheduler started")
    for job in scheduler.get_jobs():
        logger.info("Scheduled job: %s - next run: %s", job.name, job.next_run_time)


def shutdown_scheduler():
    """Stop the scheduler, waiting for a running job to finish."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Status of all scheduled jobs."""
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
