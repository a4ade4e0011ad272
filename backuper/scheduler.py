"""
APScheduler configuration and backup scheduling for Backuper.

Manages:
- The recurring backup job (cron expression from configuration)
- The immediate run at startup and manual "run now" triggers
- Single-flight execution: never two backup runs at the same time
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from backuper.backup.executor import BackupRun
from backuper.backup.storage import S3Storage
from backuper.config import ConfigurationError
from backuper.notification import BackupFailure, build_notifiers


logger = logging.getLogger(__name__)

JOB_ID = 'backup'


class SchedulerError(Exception):
    """Raised when the backup job cannot be scheduled or triggered."""
    pass


class BackupScheduler:
    """
    Owns the recurring trigger and the lifecycle of backup runs.

    Every run, scheduled or manual, goes through the same lock, so at most
    one BackupRun is active at any time. A scheduled tick that finds a run
    in progress is skipped.
    """

    def __init__(
        self,
        schedule: str,
        run_factory: Callable[[], BackupRun],
        notifier,
        timezone_name: str = 'UTC',
        misfire_grace_time: int = 300
    ):
        """
        Initialize backup scheduler.

        Args:
            schedule: 5-field crontab expression
            run_factory: Callable returning a fresh BackupRun per trigger
            notifier: MultiNotifier used when a run fails outside its own handling
            timezone_name: Timezone the cron expression is evaluated in
            misfire_grace_time: Seconds a late tick may still run
        """
        self.schedule = schedule
        self.run_factory = run_factory
        self.notifier = notifier
        self.timezone_name = timezone_name

        self.last_run = None
        self.current_run = None
        self._run_lock = threading.Lock()
        self._started = False
        self._stopped = False

        job_defaults = {
            'coalesce': True,  # Combine multiple pending ticks into one
            'max_instances': 1,  # Only one backup at a time
            'misfire_grace_time': misfire_grace_time
        }

        try:
            self.scheduler = BackgroundScheduler(
                executors={'default': ThreadPoolExecutor(max_workers=1)},
                job_defaults=job_defaults,
                timezone=timezone_name
            )
        except (KeyError, ValueError) as e:
            # Unknown zone names raise KeyError subclasses from zoneinfo and pytz
            raise ConfigurationError(f"invalid scheduler timezone {timezone_name!r}: {e}")

    @classmethod
    def from_settings(cls, settings, temp_dir: str, timezone_name: str = 'UTC') -> 'BackupScheduler':
        """
        Wire storage, notifiers and runs from loaded settings.

        Raises:
            ConfigurationError: If no notification channel is configured or
                the timezone is unknown
            StorageError: If the storage client cannot be created or the
                bucket is not reachable
        """
        storage = S3Storage.from_settings(settings.cloudflare)
        storage.test_connection()
        logger.info(f"Object storage ready (bucket: {settings.cloudflare.bucket})")

        notifier = build_notifiers(settings)

        def run_factory():
            return BackupRun.from_settings(settings, storage, notifier, temp_dir)

        return cls(
            schedule=settings.backup.schedule,
            run_factory=run_factory,
            notifier=notifier,
            timezone_name=timezone_name
        )

    @property
    def state(self) -> str:
        if self._stopped:
            return 'stopped'
        if self._run_lock.locked():
            return 'running'
        return 'idle'

    def start(self):
        """
        Register the recurring backup job and start the scheduler.

        The job's first run is due immediately, so a backup starts right
        away instead of waiting for the first cron boundary.

        Raises:
            SchedulerError: If the cron expression is invalid or the
                scheduler was already stopped
        """
        if self._stopped:
            raise SchedulerError("Scheduler has been stopped")

        try:
            trigger = CronTrigger.from_crontab(self.schedule, timezone=self.timezone_name)
        except ValueError as e:
            raise SchedulerError(f"failed to schedule backup: {e}")

        self.scheduler.add_job(
            func=self._scheduled_run,
            trigger=trigger,
            id=JOB_ID,
            name='Backup',
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc)
        )

        if not self.scheduler.running:
            self.scheduler.start()
        self._started = True

        logger.info(f"Backup scheduler started with schedule: {self.schedule}")

    def stop(self):
        """
        Stop the recurring trigger.

        A run already in progress is not interrupted; this call waits for
        it to finish. Calling stop() more than once is harmless.
        """
        if self._stopped:
            return
        self._stopped = True

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        logger.info("Backup scheduler stopped")

    def run_once(self) -> BackupRun:
        """
        Execute one backup synchronously, outside the recurring trigger.

        Blocks while another run is in progress.

        Returns:
            The completed BackupRun

        Raises:
            Exception: Whatever made the run fail
        """
        with self._run_lock:
            return self._execute()

    def trigger_now(self):
        """
        Queue an immediate run of the scheduled job.

        Goes through APScheduler, so it is skipped rather than overlapped
        if a run is already active.

        Raises:
            SchedulerError: If the scheduler is not running
        """
        if self._stopped or not self.scheduler.running or self.scheduler.get_job(JOB_ID) is None:
            raise SchedulerError("Scheduler is not running")

        self.scheduler.modify_job(JOB_ID, next_run_time=datetime.now(timezone.utc))
        logger.info("Manually triggered backup run")

    def _scheduled_run(self):
        """Entry point for APScheduler ticks."""
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Previous backup still running, skipping this trigger")
            return

        try:
            self._execute()
        except Exception as e:
            # Already reported; the next tick runs unaffected
            logger.error(f"Scheduled backup failed: {e}")
        finally:
            self._run_lock.release()

    def _execute(self) -> BackupRun:
        """
        Run one backup and make sure a failure is notified exactly once.

        BackupRun notifies its own archive and upload failures. Anything
        else escaping it is reported here.
        """
        run = None
        try:
            run = self.run_factory()
            self.current_run = run
            return run.execute()
        except Exception as e:
            if run is None or not run.failure_notified:
                logger.exception(f"Backup run failed unexpectedly: {e}")
                error = self.notifier.broadcast(BackupFailure(cause=str(e)))
                if error is not None:
                    logger.warning(f"Failed to send failure notification: {error}")
                if run is not None:
                    run.failure_notified = True
            raise
        finally:
            self.current_run = None
            if run is not None:
                self.last_run = run

    def next_run_time(self) -> Optional[datetime]:
        if not self._started or self._stopped:
            return None
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def get_status(self) -> dict:
        """
        Get scheduler state for the status endpoint.

        Returns:
            Dict with state, schedule, next run and last run summary
        """
        next_run = self.next_run_time()
        current = self.current_run
        return {
            'state': self.state,
            'started': self._started,
            'schedule': self.schedule,
            'timezone': self.timezone_name,
            'next_run': next_run.isoformat() if next_run else None,
            'current_run': current.to_dict() if current else None,
            'last_run': self.last_run.to_dict() if self.last_run else None
        }
