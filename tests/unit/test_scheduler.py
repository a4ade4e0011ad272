"""
Unit tests for the backup scheduler (backuper/scheduler.py).

Tests APScheduler configuration, single-flight execution and failure reporting.
"""

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from backuper.backup.executor import BackupRun
from backuper.backup.compression import ArchiveError
from backuper.backup.retention import RetentionPolicy
from backuper.backup.storage import StorageError
from backuper.config import ConfigurationError
from backuper.notification import MultiNotifier
from backuper.scheduler import BackupScheduler, SchedulerError, JOB_ID
from conftest import FakeStorage


class StubRun:
    """Minimal run object for driving the scheduler."""

    def __init__(self, on_execute=None, error=None, failure_notified=False):
        self.on_execute = on_execute
        self.error = error
        self.failure_notified = failure_notified
        self.executed = False

    def execute(self):
        self.executed = True
        if self.on_execute:
            self.on_execute()
        if self.error:
            raise self.error
        return self

    def to_dict(self):
        return {'status': 'failed' if self.error else 'success'}


def make_scheduler(notifier, run_factory=None, schedule='0 2 * * *'):
    return BackupScheduler(
        schedule=schedule,
        run_factory=run_factory or (lambda: StubRun()),
        notifier=notifier
    )


class TestSchedulerInitialization:
    """Test scheduler configuration."""

    @patch('backuper.scheduler.BackgroundScheduler')
    def test_init_configures_apscheduler(self, mock_scheduler_class, notifier):
        make_scheduler(notifier)

        call_kwargs = mock_scheduler_class.call_args[1]
        assert call_kwargs['timezone'] == 'UTC'
        assert call_kwargs['job_defaults'] == {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 300
        }
        assert 'default' in call_kwargs['executors']

    def test_initial_state(self, mock_scheduler, notifier):
        sched = make_scheduler(notifier)

        assert sched.state == 'idle'
        assert sched.last_run is None
        assert sched.next_run_time() is None

    @patch('backuper.scheduler.S3Storage')
    def test_from_settings(self, mock_storage_class, mock_scheduler, settings, tmp_path):
        sched = BackupScheduler.from_settings(settings, str(tmp_path), timezone_name='Europe/Berlin')

        mock_storage_class.from_settings.assert_called_once_with(settings.cloudflare)
        mock_storage_class.from_settings.return_value.test_connection.assert_called_once()
        assert sched.schedule == '0 2 * * *'
        assert sched.timezone_name == 'Europe/Berlin'

        run = sched.run_factory()
        assert isinstance(run, BackupRun)
        assert run.name_prefix == 'nightly'
        assert run.retention == RetentionPolicy(name_prefix='nightly', keep_count=2)
        assert run.temp_dir == str(tmp_path)

    @patch('backuper.scheduler.S3Storage')
    def test_from_settings_unreachable_bucket(self, mock_storage_class, mock_scheduler, settings, tmp_path):
        mock_storage_class.from_settings.return_value.test_connection.side_effect = StorageError(
            "Bucket does not exist: test-bucket"
        )

        with pytest.raises(StorageError, match="Bucket does not exist"):
            BackupScheduler.from_settings(settings, str(tmp_path))

    def test_unknown_timezone(self, notifier):
        with pytest.raises(ConfigurationError, match="invalid scheduler timezone"):
            BackupScheduler(
                schedule='0 2 * * *',
                run_factory=StubRun,
                notifier=notifier,
                timezone_name='Mars/Olympus_Mons'
            )


class TestSchedulerLifecycle:
    """Test start/stop operations."""

    def test_start_adds_job_due_now(self, mock_scheduler, notifier):
        sched = make_scheduler(notifier)
        before = datetime.now(timezone.utc)

        sched.start()

        mock_scheduler.add_job.assert_called_once()
        kwargs = mock_scheduler.add_job.call_args[1]
        assert kwargs['id'] == JOB_ID
        assert kwargs['replace_existing'] is True
        assert kwargs['func'] == sched._scheduled_run
        assert kwargs['next_run_time'] >= before
        mock_scheduler.start.assert_called_once()

    def test_start_does_not_restart_running_scheduler(self, mock_scheduler, notifier):
        mock_scheduler.running = True
        sched = make_scheduler(notifier)

        sched.start()

        mock_scheduler.start.assert_not_called()

    @pytest.mark.parametrize("schedule", ['not a cron', '* * *', '61 * * * *'])
    def test_start_with_invalid_schedule(self, mock_scheduler, notifier, schedule):
        sched = make_scheduler(notifier, schedule=schedule)

        with pytest.raises(SchedulerError, match="failed to schedule backup"):
            sched.start()

        mock_scheduler.add_job.assert_not_called()

    def test_stop(self, mock_scheduler, notifier):
        mock_scheduler.running = True
        sched = make_scheduler(notifier)

        sched.stop()

        mock_scheduler.shutdown.assert_called_once_with(wait=True)
        assert sched.state == 'stopped'

    def test_stop_is_idempotent(self, mock_scheduler, notifier):
        mock_scheduler.running = True
        sched = make_scheduler(notifier)

        sched.stop()
        sched.stop()

        mock_scheduler.shutdown.assert_called_once()

    def test_start_after_stop_fails(self, mock_scheduler, notifier):
        sched = make_scheduler(notifier)
        sched.stop()

        with pytest.raises(SchedulerError):
            sched.start()


class TestTriggerNow:
    """Test manual triggers."""

    def test_trigger_now_when_not_running(self, mock_scheduler, notifier):
        sched = make_scheduler(notifier)

        with pytest.raises(SchedulerError, match="not running"):
            sched.trigger_now()

        mock_scheduler.modify_job.assert_not_called()

    def test_trigger_now_moves_next_run(self, mock_scheduler, notifier):
        mock_scheduler.running = True
        mock_scheduler.get_job.return_value = MagicMock()
        sched = make_scheduler(notifier)

        sched.trigger_now()

        args, kwargs = mock_scheduler.modify_job.call_args
        assert args == (JOB_ID,)
        assert kwargs['next_run_time'].tzinfo is not None

    def test_trigger_now_after_stop(self, mock_scheduler, notifier):
        mock_scheduler.running = True
        mock_scheduler.get_job.return_value = MagicMock()
        sched = make_scheduler(notifier)
        sched.stop()

        with pytest.raises(SchedulerError):
            sched.trigger_now()


class TestRunExecution:
    """Test run_once, scheduled ticks and failure reporting."""

    def test_run_once_returns_run(self, mock_scheduler, notifier, channel):
        run = StubRun()
        sched = make_scheduler(notifier, run_factory=lambda: run)

        assert sched.run_once() is run
        assert run.executed
        assert sched.last_run is run
        assert sched.current_run is None
        assert channel.events == []

    def test_state_is_running_during_run(self, mock_scheduler, notifier):
        seen = []
        sched = make_scheduler(notifier, run_factory=lambda: StubRun(on_execute=lambda: seen.append(sched.state)))

        sched.run_once()

        assert seen == ['running']
        assert sched.state == 'idle'

    def test_failure_already_reported_by_run_is_not_repeated(self, mock_scheduler, notifier, channel):
        run = StubRun(error=ArchiveError('folder missing'), failure_notified=True)
        sched = make_scheduler(notifier, run_factory=lambda: run)

        with pytest.raises(ArchiveError):
            sched.run_once()

        assert channel.events == []
        assert sched.last_run is run

    def test_unexpected_failure_is_reported_once(self, mock_scheduler, notifier, channel):
        run = StubRun(error=KeyError('boom'))
        sched = make_scheduler(notifier, run_factory=lambda: run)

        with pytest.raises(KeyError):
            sched.run_once()

        assert channel.kinds() == ['failure']
        assert run.failure_notified is True

    def test_run_factory_failure_is_reported(self, mock_scheduler, notifier, channel):
        def broken_factory():
            raise OSError('temp dir gone')

        sched = make_scheduler(notifier, run_factory=broken_factory)

        with pytest.raises(OSError):
            sched.run_once()

        assert channel.events == [('failure', 'temp dir gone')]
        assert sched.last_run is None

    def test_archive_failure_with_real_run_notifies_once(self, mock_scheduler, notifier, channel, tmp_path):
        staging = tmp_path / 'staging'
        staging.mkdir()

        def factory():
            return BackupRun(
                folders=[str(tmp_path / 'missing')],
                name_prefix='nightly',
                storage=FakeStorage(),
                notifier=notifier,
                temp_dir=str(staging)
            )

        sched = make_scheduler(notifier, run_factory=factory)

        with pytest.raises(ArchiveError):
            sched.run_once()

        assert channel.kinds() == ['failure']
        assert sched.last_run.status == 'failed'

    def test_unexpected_failure_with_real_run_notifies_once(self, mock_scheduler, notifier, channel, temp_files):
        storage = MagicMock()
        storage.upload.side_effect = KeyError('boom')
        staging = temp_files / 'staging'
        staging.mkdir()

        def factory():
            return BackupRun(
                folders=[str(temp_files / 'source')],
                name_prefix='nightly',
                storage=storage,
                notifier=notifier,
                temp_dir=str(staging)
            )

        sched = make_scheduler(notifier, run_factory=factory)

        with pytest.raises(KeyError):
            sched.run_once()

        assert channel.kinds() == ['failure']

    def test_scheduled_run_swallows_errors(self, mock_scheduler, notifier, channel):
        run = StubRun(error=RuntimeError('boom'))
        sched = make_scheduler(notifier, run_factory=lambda: run)

        sched._scheduled_run()

        assert sched.last_run is run
        assert channel.kinds() == ['failure']
        assert sched.state == 'idle'

    def test_scheduled_run_skips_while_busy(self, mock_scheduler, notifier):
        factory = MagicMock()
        sched = make_scheduler(notifier, run_factory=factory)

        sched._run_lock.acquire()
        try:
            sched._scheduled_run()
        finally:
            sched._run_lock.release()

        factory.assert_not_called()

    def test_scheduled_runs_are_independent(self, mock_scheduler, notifier, channel):
        runs = [StubRun(error=RuntimeError('first')), StubRun()]
        sched = make_scheduler(notifier, run_factory=lambda: runs.pop(0))

        sched._scheduled_run()
        sched._scheduled_run()

        assert sched.last_run.error is None
        assert channel.events == [('failure', 'first')]


class TestGetStatus:

    def test_get_status(self, mock_scheduler, notifier):
        next_run = datetime(2024, 1, 5, 2, 0, tzinfo=timezone.utc)
        job = MagicMock()
        job.next_run_time = next_run
        mock_scheduler.get_job.return_value = job
        sched = make_scheduler(notifier)
        sched.start()
        sched.run_once()

        status = sched.get_status()

        assert status['state'] == 'idle'
        assert status['started'] is True
        assert status['schedule'] == '0 2 * * *'
        assert status['timezone'] == 'UTC'
        assert status['next_run'] == '2024-01-05T02:00:00+00:00'
        assert status['current_run'] is None
        assert status['last_run'] == {'status': 'success'}


class TestSchedulerIntegration:
    """Run the real APScheduler."""

    def test_start_runs_backup_immediately(self, channel):
        done = threading.Event()
        run = StubRun(on_execute=done.set)
        sched = BackupScheduler(
            schedule='0 2 * * *',
            run_factory=lambda: run,
            notifier=MultiNotifier([channel])
        )

        sched.start()
        try:
            assert done.wait(timeout=10)
        finally:
            sched.stop()

        assert sched.last_run is run
        assert sched.state == 'stopped'
        assert sched.next_run_time() is None
