"""
Backup module for Backuper.

This module handles the core backup functionality including:
- Archive creation
- Storage (S3-compatible, Cloudflare R2)
- Run orchestration
- Retention policy enforcement
"""

from .executor import BackupRun, UploadError, UploadTimeout
from .compression import create_archive, generate_archive_filename, ArchiveError
from .storage import S3Storage, Deadline, RetentionRecord, StorageError, StorageTimeout
from .retention import RetentionManager, RetentionPolicy, RetentionError, select_eviction_set

__all__ = [
    'BackupRun',
    'UploadError',
    'UploadTimeout',
    'create_archive',
    'generate_archive_filename',
    'ArchiveError',
    'S3Storage',
    'Deadline',
    'RetentionRecord',
    'StorageError',
    'StorageTimeout',
    'RetentionManager',
    'RetentionPolicy',
    'RetentionError',
    'select_eviction_set'
]
