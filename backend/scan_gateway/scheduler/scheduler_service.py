from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor
from loguru import logger
from typing import Optional

from scan_gateway.config import settings
from scan_gateway.scheduler.jobs import (
    aggregate_yesterday_metrics_job,
    refresh_today_metrics_job,
    cleanup_expired_cache_job,
    cleanup_old_metrics_job,
    cleanup_expired_shares_job,
    delete_old_scans_job,
    cleanup_usage_counters_job,
)


# (function, trigger, id, name)
SYSTEM_JOBS = [
    (aggregate_yesterday_metrics_job, CronTrigger(hour=0, minute=30, timezone='UTC'),
     'aggregate_daily_metrics', 'Aggregate Yesterday Metrics'),
    (refresh_today_metrics_job, CronTrigger(minute=5, timezone='UTC'),
     'refresh_today_metrics', 'Refresh Today Metrics'),
    (cleanup_expired_cache_job, CronTrigger(hour=3, minute=0, timezone='UTC'),
     'cleanup_cache', 'Cleanup Expired Cache'),
    (cleanup_old_metrics_job, CronTrigger(hour=3, minute=15, timezone='UTC'),
     'cleanup_metrics', 'Cleanup Old Metrics'),
    (cleanup_expired_shares_job, CronTrigger(hour=3, minute=30, timezone='UTC'),
     'cleanup_shares', 'Cleanup Expired Shares'),
    (delete_old_scans_job, CronTrigger(hour=3, minute=45, timezone='UTC'),
     'cleanup_scans', 'Delete Old Scans'),
    (cleanup_usage_counters_job, CronTrigger(hour=4, minute=0, timezone='UTC'),
     'cleanup_usage_counters', 'Cleanup Usage Counters'),
]


class SchedulerService:
    """Service for managing the APScheduler instance and maintenance jobs"""

    def __init__(self):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False

    def initialize(self):
        """Initialize the scheduler"""
        if self.scheduler:
            logger.warning("Scheduler already initialized")
            return

        logger.info("Initializing APScheduler...")

        jobstores = {
            'default': SQLAlchemyJobStore(url=settings.SCHEDULER_DB_URL)
        }

        executors = {
            'default': ThreadPoolExecutor(max_workers=settings.MAX_JOB_WORKERS)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple pending executions into one
            'max_instances': 1,  # Only one instance of a job at a time
            'misfire_grace_time': 300  # 5 minutes grace period
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

        logger.info("Scheduler initialized successfully")

    def start(self):
        """Start the scheduler and register the maintenance jobs"""
        if not self.scheduler:
            raise RuntimeError("Scheduler not initialized. Call initialize() first.")

        if self.is_running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting scheduler...")
        self.scheduler.start()
        self.is_running = True

        self._add_system_jobs()

        logger.info("Scheduler started successfully")

    def shutdown(self):
        """Shutdown the scheduler"""
        if not self.scheduler or not self.is_running:
            return

        logger.info("Shutting down scheduler...")
        self.scheduler.shutdown(wait=True)
        self.is_running = False
        logger.info("Scheduler shut down successfully")

    def _add_system_jobs(self):
        for func, trigger, job_id, name in SYSTEM_JOBS:
            self.scheduler.add_job(
                func,
                trigger=trigger,
                id=job_id,
                name=name,
                replace_existing=True
            )

        logger.info(f"Added {len(SYSTEM_JOBS)} system jobs")

    def get_all_jobs(self) -> list[dict]:
        """
        Get information about all scheduled jobs

        Returns:
            List of job info dicts
        """
        if not self.scheduler:
            return []

        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]


# Singleton instance
scheduler_service = SchedulerService()
