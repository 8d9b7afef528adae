"""Background scheduler for periodic sync"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.models import SyncConfig
from app.models.base import SessionLocal
from app.services.errors import SyncAlreadyRunningError
from app.services.run_sync import SyncOptions, SyncRunner, sync_runner
from app.services.sync_types import SyncDirection

logger = logging.getLogger(__name__)

JOB_PREFIX = "sync_tenant_"


class SyncScheduler:
    """Scheduler for periodic tenant synchronization"""

    def __init__(self, runner: Optional[SyncRunner] = None, session_factory=SessionLocal):
        self.scheduler = BackgroundScheduler()
        self.runner = runner or sync_runner
        self.session_factory = session_factory
        # Best-effort in-memory index of jobs we created.
        # APScheduler itself is the source of truth (see get_job()).
        self.jobs = {}

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Sync scheduler started")

        self.schedule_all_tenants()

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")

    def schedule_all_tenants(self):
        """Schedule sync jobs for every tenant with scheduling enabled"""
        db = self.session_factory()
        try:
            enabled = db.query(SyncConfig).filter(SyncConfig.schedule_enabled == True).all()  # noqa: E712
            enabled_ids = {c.tenant_id for c in enabled}

            # If this is ever re-run, reconcile existing jobs too.
            for job_id in list(self.jobs.keys()):
                tenant_id = job_id[len(JOB_PREFIX):]
                if tenant_id not in enabled_ids:
                    self.unschedule_tenant(tenant_id)

            for config in enabled:
                self.schedule_tenant(config)
        finally:
            db.close()

    def apply_config(self, config: SyncConfig):
        """Reschedule or unschedule a tenant after its config was saved"""
        if not self.scheduler.running:
            return
        if config.schedule_enabled:
            self.schedule_tenant(config)
        else:
            self.unschedule_tenant(config.tenant_id)

    @staticmethod
    def _trigger_for(config: SyncConfig):
        """Trigger and a readable description for a tenant's schedule"""
        schedule_type = config.schedule_type or "interval"
        minute = 0 if config.schedule_minute is None else config.schedule_minute
        hour = 8 if config.schedule_hour is None else config.schedule_hour
        if schedule_type == "daily":
            return CronTrigger(hour=hour, minute=minute, timezone="UTC"), f"daily at {hour:02d}:{minute:02d} UTC"
        if schedule_type == "hourly":
            return CronTrigger(minute=minute, timezone="UTC"), f"hourly at :{minute:02d}"
        interval_minutes = config.sync_interval_minutes or settings.default_sync_interval_minutes
        return IntervalTrigger(minutes=interval_minutes), f"every {interval_minutes} minutes"

    def schedule_tenant(self, config: SyncConfig):
        """Schedule sync job for a specific tenant"""
        tenant_id = config.tenant_id
        job_id = f"{JOB_PREFIX}{tenant_id}"
        trigger, description = self._trigger_for(config)

        # Remove existing job if it exists (don't rely solely on self.jobs)
        existing = self.scheduler.get_job(job_id)
        if existing is not None:
            self.scheduler.remove_job(job_id)

        self.scheduler.add_job(
            func=self._sync_tenant_job,
            trigger=trigger,
            id=job_id,
            args=[tenant_id],
            replace_existing=True,
        )
        self.jobs[job_id] = True
        logger.info(f"Scheduled sync for tenant {tenant_id} {description}")

    def unschedule_tenant(self, tenant_id: str):
        """Remove sync job for a tenant"""
        job_id = f"{JOB_PREFIX}{tenant_id}"
        try:
            existing = self.scheduler.get_job(job_id)
            if existing is not None:
                self.scheduler.remove_job(job_id)
            self.jobs.pop(job_id, None)
            logger.info(f"Unscheduled sync for tenant {tenant_id}")
        except Exception as e:
            logger.error(f"Failed to unschedule tenant {tenant_id}: {e}")

    def _saved_direction(self, tenant_id: str) -> SyncDirection:
        db = self.session_factory()
        try:
            config = db.query(SyncConfig).filter(SyncConfig.tenant_id == tenant_id).first()
            saved = config.sync_direction if config is not None else None
        finally:
            db.close()
        try:
            return SyncDirection(saved or SyncDirection.BOTH.value)
        except ValueError:
            logger.warning(f"Unknown saved direction '{saved}' for tenant {tenant_id}, using both")
            return SyncDirection.BOTH

    def _sync_tenant_job(self, tenant_id: str):
        """Job function to sync a tenant"""
        try:
            logger.info(f"Running scheduled sync for tenant {tenant_id}")
            options = SyncOptions(direction=self._saved_direction(tenant_id))
            result = self.runner.run(tenant_id, options)
            logger.info(f"Scheduled sync completed for tenant {tenant_id}: {result.counts()}")
        except SyncAlreadyRunningError:
            logger.info(f"Skipping scheduled sync for tenant {tenant_id}: a run is already in progress")
        except Exception as e:
            logger.error(f"Scheduled sync failed for tenant {tenant_id}: {e}")


# Global scheduler instance
scheduler = SyncScheduler()
