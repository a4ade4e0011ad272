"""
Retention policy enforcement for backups.

Keeps at most N of the most recent archives of a series (all objects that
share a name prefix) and deletes the surplus, oldest first.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .storage import Deadline, RetentionRecord, StorageError


logger = logging.getLogger(__name__)


class RetentionError(Exception):
    """
    Raised when retention enforcement fails.

    Attributes:
        deleted: Names removed before the failure, in deletion order
    """

    def __init__(self, message: str, deleted: Optional[List[str]] = None):
        super().__init__(message)
        self.deleted = list(deleted or [])


@dataclass(frozen=True)
class RetentionPolicy:
    name_prefix: str
    keep_count: int

    @property
    def enabled(self) -> bool:
        return self.keep_count > 0


def select_eviction_set(records: List[RetentionRecord], keep_count: int) -> List[RetentionRecord]:
    """
    Pick the records to delete so that only the newest keep_count remain.

    Records are ordered by last_modified ascending; sorted() is stable, so
    records with equal timestamps keep their listing order.

    Args:
        records: Stored objects of one series, in listing order
        keep_count: Number of most recent records to keep

    Returns:
        Records to delete, oldest first
    """
    if keep_count <= 0 or len(records) <= keep_count:
        return []

    ordered = sorted(records, key=lambda record: record.last_modified)
    return ordered[:len(ordered) - keep_count]


class RetentionManager:
    """
    Enforces "keep at most N most recent objects matching a prefix".
    """

    def __init__(self, storage):
        """
        Initialize retention manager.

        Args:
            storage: Storage handler providing list_objects() and delete()
        """
        self.storage = storage

    def enforce(self, prefix: str, keep_count: int, deadline: Optional[Deadline] = None) -> List[str]:
        """
        Delete the oldest archives of a series beyond keep_count.

        Deletion is sequential and stops at the first failure; objects
        deleted before it stay deleted.

        Args:
            prefix: Series name prefix
            keep_count: Archives to keep; 0 or negative disables enforcement
            deadline: Optional time budget shared by all storage calls

        Returns:
            Names of deleted objects, oldest first

        Raises:
            RetentionError: If listing or a deletion fails; ``deleted``
                holds the names removed before the failure
        """
        if keep_count <= 0:
            return []

        try:
            records = self.storage.list_objects(prefix, deadline)
        except StorageError as e:
            raise RetentionError(f"failed to list files for cleanup: {e}")

        to_delete = select_eviction_set(records, keep_count)
        logger.info(
            f"Retention for '{prefix}': {len(records)} stored, keeping {keep_count}, "
            f"{len(to_delete)} to delete"
        )

        deleted = []
        for record in to_delete:
            try:
                self.storage.delete(record.name, deadline)
            except StorageError as e:
                logger.error(f"Failed to delete {record.name}: {e}")
                raise RetentionError(f"failed to delete file {record.name}: {e}", deleted=deleted)

            deleted.append(record.name)
            logger.info(f"Deleted old backup: {record.name}")

        return deleted

    def enforce_policy(self, policy: RetentionPolicy, deadline: Optional[Deadline] = None) -> List[str]:
        return self.enforce(policy.name_prefix, policy.keep_count, deadline)
