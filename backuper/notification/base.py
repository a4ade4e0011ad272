"""
Notification events and the channel interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class NotificationDeliveryError(Exception):
    """Raised when a channel fails to deliver a message."""
    pass


class Notifier(ABC):
    """
    A single notification channel.

    Each method formats and sends one message and raises
    NotificationDeliveryError if the transport or the remote end fails.
    """

    name = 'notifier'

    @abstractmethod
    def notify_success(self, file_name: str, file_url: str, file_size: int):
        """Report a successful backup."""

    @abstractmethod
    def notify_failure(self, cause: str):
        """Report a failed backup."""

    @abstractmethod
    def notify_deletion(self, file_name: str, file_url: str):
        """Report an archive removed by the retention policy."""


@dataclass(frozen=True)
class BackupSuccess:
    name: str
    url: str
    size: int

    kind = 'success'

    def deliver(self, notifier: Notifier):
        notifier.notify_success(self.name, self.url, self.size)


@dataclass(frozen=True)
class BackupFailure:
    cause: str

    kind = 'failure'

    def deliver(self, notifier: Notifier):
        notifier.notify_failure(self.cause)


@dataclass(frozen=True)
class BackupDeletion:
    name: str
    url: str

    kind = 'deletion'

    def deliver(self, notifier: Notifier):
        notifier.notify_deletion(self.name, self.url)


def format_file_size(size: int) -> str:
    """
    Render a byte count in binary units.

    Examples: 512 -> '512 B', 1536 -> '1.5 KB', 1048576 -> '1.0 MB'
    """
    unit = 1024
    if size < unit:
        return f"{size} B"

    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit

    return f"{size / div:.1f} {'KMGTPE'[exp]}B"
