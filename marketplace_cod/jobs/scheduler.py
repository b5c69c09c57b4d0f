"""
APScheduler Configuration

Background job scheduler for the settlement jobs in
marketplace_cod.jobs.settlement_jobs:

- release_held_earnings      every hour
- generate_cod_daily_report  daily at 01:00
- process_vendor_payouts     weekly, Monday 02:00
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from marketplace_cod.config import settings

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
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 300,
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_settlement_job(job_name: str):
    """
    Wrapper called by APScheduler.

    Looks the job up by name so the scheduled callable stays importable
    and failures are logged instead of killing the scheduler.
    """
    from marketplace_cod.jobs import settlement_jobs

    try:
        result = await getattr(settlement_jobs, job_name)()
        logger.info(f"Job '{job_name}' completed: {result}")
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def register_jobs():
    """Add the settlement jobs to the scheduler."""
    # Release earnings past their hold period every hour
    scheduler.add_job(
        run_settlement_job,
        'interval',
        hours=1,
        args=['release_held_earnings'],
        id='release_held_earnings',
        name='Release Held Earnings',
        replace_existing=True,
    )

    # Reconcile yesterday's COD cash at 01:00
    scheduler.add_job(
        run_settlement_job,
        'cron',
        hour=1,
        minute=0,
        args=['generate_cod_daily_report'],
        id='generate_cod_daily_report',
        name='COD Daily Reconciliation',
        replace_existing=True,
    )

    # Automatic vendor payouts, Monday 02:00
    scheduler.add_job(
        run_settlement_job,
        'cron',
        day_of_week='mon',
        hour=2,
        minute=0,
        args=['process_vendor_payouts'],
        id='process_vendor_payouts',
        name='Process Vendor Payouts',
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler."""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled by SCHEDULER_ENABLED")
        return

    if not scheduler.running:
        register_jobs()
        scheduler.start()
        logger.info("Settlement job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Settlement job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
