"""
Backup run - orchestrates one complete backup cycle.

Workflow:
1. Create archive from the configured folders (temp directory)
2. Upload archive to object storage (time-boxed)
3. Enforce retention policy (time-boxed, failures are not fatal)
4. Notify: one Success or Failure, then one Deletion per removed archive
5. Remove the local archive, whatever happened above
"""

import logging
import os
from datetime import datetime
from typing import Callable, List, Optional

from backuper.notification import BackupSuccess, BackupFailure, BackupDeletion
from .compression import create_archive, generate_archive_filename, get_archive_size, ArchiveError
from .retention import RetentionManager, RetentionPolicy, RetentionError
from .storage import Deadline, StorageError, StorageTimeout


logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_TIMEOUT = 10 * 60
DEFAULT_RETENTION_TIMEOUT = 2 * 60


class UploadError(Exception):
    """Raised when the archive cannot be uploaded."""
    pass


class UploadTimeout(UploadError):
    """Raised when the upload exceeds its time budget."""
    pass


class BackupRun:
    """
    One execution of the archive -> upload -> retention -> notify pipeline.

    A run is used once: create it, call execute(), then read its fields.
    """

    def __init__(
        self,
        folders: List[str],
        name_prefix: str,
        storage,
        notifier,
        temp_dir: str,
        retention_limit: int = 0,
        upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT,
        retention_timeout: float = DEFAULT_RETENTION_TIMEOUT,
        archiver: Callable[[List[str], str], str] = create_archive,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize backup run.

        Args:
            folders: Directories to archive
            name_prefix: Series prefix used for archive names and retention
            storage: Storage handler (upload, delete, list_objects, public_url)
            notifier: MultiNotifier used for lifecycle events
            temp_dir: Directory where the archive is staged
            retention_limit: Archives to keep; 0 disables retention
            upload_timeout: Upload time budget in seconds
            retention_timeout: Retention time budget in seconds
            archiver: Archive encoder, create_archive(folders, destination)
            clock: Source of the run timestamp
        """
        self.folders = list(folders)
        self.name_prefix = name_prefix
        self.retention = RetentionPolicy(name_prefix=name_prefix, keep_count=retention_limit)
        self.storage = storage
        self.notifier = notifier
        self.temp_dir = temp_dir
        self.upload_timeout = upload_timeout
        self.retention_timeout = retention_timeout
        self._archiver = archiver
        self._clock = clock or datetime.now

        self.status = 'pending'
        self.triggered_at = None
        self.completed_at = None
        self.archive_path = None
        self.archive_name = None
        self.archive_size = None
        self.uploaded_url = None
        self.deleted = []
        self.error = None
        self.retention_error = None
        self.failure_notified = False

    @classmethod
    def from_settings(cls, settings, storage, notifier, temp_dir: str) -> 'BackupRun':
        backup = settings.backup
        return cls(
            folders=backup.folders,
            name_prefix=backup.name_prefix,
            storage=storage,
            notifier=notifier,
            temp_dir=temp_dir,
            retention_limit=backup.retention_limit,
            upload_timeout=backup.upload_timeout,
            retention_timeout=backup.retention_timeout
        )

    def execute(self) -> 'BackupRun':
        """
        Execute the backup run.

        Returns:
            This run, with status 'success'

        Raises:
            ArchiveError: Archive creation failed (Failure already notified)
            UploadError: Upload failed or timed out (Failure already notified)
            Exception: Anything unexpected; failure_notified stays False so
                the caller can report it
        """
        if self.status != 'pending':
            raise RuntimeError("A BackupRun can only be executed once")

        self.triggered_at = self._clock()
        self.status = 'running'
        self.archive_name = generate_archive_filename(self.name_prefix, self.triggered_at)
        # Owned by this run from here on, removed in the finally block below
        self.archive_path = os.path.join(self.temp_dir, self.archive_name)

        logger.info(f"Starting backup process: {self.archive_name}")

        try:
            try:
                self._create_archive()
                self._upload()
            except (ArchiveError, UploadError) as e:
                self._mark_failed(e)
                logger.error(f"Backup failed: {e}")
                self._notify(BackupFailure(cause=str(e)))
                self.failure_notified = True
                raise
            except Exception as e:
                self._mark_failed(e)
                raise

            self._enforce_retention()

            self.status = 'success'
            self.completed_at = self._clock()

            logger.info("Sending success notification...")
            self._notify(BackupSuccess(
                name=self.archive_name,
                url=self.uploaded_url,
                size=self.archive_size
            ))
            for name in self.deleted:
                self._notify(BackupDeletion(name=name, url=self.storage.public_url(name)))

            logger.info("Backup completed successfully!")
            return self

        finally:
            self._cleanup()

    def _create_archive(self):
        """Create the archive and record its size."""
        logger.info(f"Creating archive from {len(self.folders)} folder(s)...")
        self._archiver(self.folders, self.archive_path)
        self.archive_size = get_archive_size(self.archive_path)
        logger.info(f"Archive created: {self.archive_name} (size: {self.archive_size} bytes)")

    def _upload(self):
        """Upload the archive within the upload time budget."""
        logger.info("Uploading archive...")
        deadline = Deadline(self.upload_timeout, operation='upload')

        try:
            self.uploaded_url = self.storage.upload(self.archive_path, deadline)
        except StorageTimeout as e:
            raise UploadTimeout(f"failed to upload: {e}")
        except StorageError as e:
            raise UploadError(f"failed to upload: {e}")

        logger.info(f"Upload successful: {self.uploaded_url}")

    def _enforce_retention(self):
        """Delete surplus archives; errors are logged and kept on the run."""
        if not self.retention.enabled:
            return

        logger.info(f"Checking for old backups to delete (retention limit: {self.retention.keep_count})...")
        deadline = Deadline(self.retention_timeout, operation='retention cleanup')
        manager = RetentionManager(self.storage)

        try:
            self.deleted = manager.enforce_policy(self.retention, deadline)
        except RetentionError as e:
            self.deleted = e.deleted
            self.retention_error = str(e)
            logger.error(f"Failed to cleanup old backups: {e}")
            return

        if self.deleted:
            logger.info(f"Deleted {len(self.deleted)} old backup(s)")
        else:
            logger.info("No old backups to delete")

    def _notify(self, event):
        error = self.notifier.broadcast(event)
        if error is not None:
            logger.warning(f"Failed to deliver {event.kind} notification to at least one channel: {error}")

    def _mark_failed(self, error: Exception):
        self.status = 'failed'
        self.error = str(error)
        self.completed_at = self._clock()

    def _cleanup(self):
        """Remove the local archive and any partial file left next to it."""
        for path in (self.archive_path, f"{self.archive_path}.partial"):
            if path and os.path.exists(path):
                try:
                    os.remove(path)
                    logger.debug(f"Removed local archive: {path}")
                except OSError as e:
                    logger.warning(f"Failed to remove local archive {path}: {e}")

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'triggered_at': self.triggered_at.isoformat() if self.triggered_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'archive_name': self.archive_name,
            'archive_size': self.archive_size,
            'uploaded_url': self.uploaded_url,
            'deleted': list(self.deleted),
            'error': self.error,
            'retention_error': self.retention_error
        }
