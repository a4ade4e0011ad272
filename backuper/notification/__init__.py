"""
Notification channels for backup lifecycle events.
"""

from .base import (
    Notifier,
    NotificationDeliveryError,
    BackupSuccess,
    BackupFailure,
    BackupDeletion,
    format_file_size
)
from .discord import DiscordNotifier
from .telegram import TelegramNotifier
from .multi import MultiNotifier, build_notifiers

__all__ = [
    'Notifier',
    'NotificationDeliveryError',
    'BackupSuccess',
    'BackupFailure',
    'BackupDeletion',
    'format_file_size',
    'DiscordNotifier',
    'TelegramNotifier',
    'MultiNotifier',
    'build_notifiers'
]
