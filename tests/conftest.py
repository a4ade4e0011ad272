"""
Shared pytest fixtures for Backuper tests.

This module provides fixtures for:
- Flask status app and test client
- Backup settings
- In-memory fakes for storage and notification channels
- Mock fixtures for external services (S3)
- Temporary file fixtures
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from backuper import create_app
from backuper.backup.storage import RetentionRecord, S3Storage, StorageError
from backuper.config import (
    Settings,
    CloudFlareSettings,
    DiscordSettings,
    BackupSettings
)
from backuper.notification import Notifier, NotificationDeliveryError, MultiNotifier


PUBLIC_URL = 'https://backups.example.com'


class FakeStorage:
    """
    In-memory stand-in for S3Storage.

    Records every call in ``calls`` so tests can assert on ordering.
    Uploaded archives become listable records, newer than anything seeded.
    """

    def __init__(self, records=None, fail_on_delete=(), list_error=None, upload_error=None):
        self.records = list(records or [])
        self.fail_on_delete = set(fail_on_delete)
        self.list_error = list_error
        self.upload_error = upload_error
        self.calls = []

    def upload(self, local_path, deadline=None):
        name = os.path.basename(local_path)
        self.calls.append(('upload', name))
        if self.upload_error:
            raise self.upload_error
        newest = max((r.last_modified for r in self.records), default=datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.records.append(RetentionRecord(
            name=name,
            last_modified=newest + timedelta(hours=1),
            size=os.path.getsize(local_path)
        ))
        return self.public_url(name)

    def list_objects(self, prefix, deadline=None):
        self.calls.append(('list', prefix))
        if self.list_error:
            raise self.list_error
        return [r for r in self.records if r.name.startswith(prefix)]

    def delete(self, name, deadline=None):
        self.calls.append(('delete', name))
        if name in self.fail_on_delete:
            raise StorageError(f"Delete failed: {name}")
        self.records = [r for r in self.records if r.name != name]

    def public_url(self, name):
        return f"{PUBLIC_URL}/{name}"

    @property
    def names(self):
        return [r.name for r in self.records]


class RecordingNotifier(Notifier):
    """Notification channel that records events instead of sending them."""

    def __init__(self, name='recording', fail=False):
        self.name = name
        self.fail = fail
        self.events = []

    def _record(self, event):
        self.events.append(event)
        if self.fail:
            raise NotificationDeliveryError(f"{self.name} is down")

    def notify_success(self, file_name, file_url, file_size):
        self._record(('success', file_name, file_url, file_size))

    def notify_failure(self, cause):
        self._record(('failure', cause))

    def notify_deletion(self, file_name, file_url):
        self._record(('deletion', file_name, file_url))

    def kinds(self):
        return [event[0] for event in self.events]


def make_record(name, day, size=100):
    """RetentionRecord for a 2024-01-<day> archive."""
    return RetentionRecord(
        name=name,
        last_modified=datetime(2024, 1, day, tzinfo=timezone.utc),
        size=size
    )


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def channel():
    return RecordingNotifier()


@pytest.fixture
def notifier(channel):
    """MultiNotifier with a single recording channel."""
    return MultiNotifier([channel])


@pytest.fixture
def settings(tmp_path):
    """
    Valid settings for a single-folder backup.
    """
    folder = tmp_path / 'data'
    folder.mkdir()
    (folder / 'file1.txt').write_text('Content 1')

    return Settings(
        cloudflare=CloudFlareSettings(
            uri=PUBLIC_URL,
            bucket='test-bucket',
            access_key_id='test_access_key',
            secret_key='test_secret_key',
            account_id='test-account'
        ),
        discord=DiscordSettings(webhook_url='https://discord.example.com/api/webhooks/1/abc'),
        backup=BackupSettings(
            schedule='0 2 * * *',
            folders=[str(folder)],
            name_prefix='nightly',
            retention_limit=2
        )
    )


@pytest.fixture
def temp_files(tmp_path):
    """
    Create two source folders with nested files.

    Creates:
    - source/test_file1.txt
    - source/nested/test_file2.txt
    - other/test_file3.log
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'test_file1.txt').write_text('Test content 1')
    nested = source / 'nested'
    nested.mkdir()
    (nested / 'test_file2.txt').write_text('Nested test content')

    other = tmp_path / 'other'
    other.mkdir()
    (other / 'test_file3.log').write_text('Test log content')

    return tmp_path


@pytest.fixture
def staging_dir(tmp_path):
    """Empty directory used as the run's temp dir."""
    staging = tmp_path / 'staging'
    staging.mkdir()
    return staging


@pytest.fixture
def mock_s3():
    """
    Mock S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region and yields
    (boto3 resource, S3Storage pointed at it).
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')

        storage = S3Storage(
            access_key='test_access_key',
            secret_key='test_secret_key',
            bucket_name='test-bucket',
            public_url=PUBLIC_URL,
            region='us-east-1'
        )

        yield s3, storage


@pytest.fixture
def app():
    """Status app with a mocked backup scheduler."""
    backup_scheduler = MagicMock()
    app = create_app('testing', backup_scheduler=backup_scheduler)
    app.config.update({'TESTING': True})
    yield app


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('backuper.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.get_job.return_value = None

        yield scheduler_instance
