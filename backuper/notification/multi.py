"""
Fan-out of backup events to every configured channel.
"""

import logging
from typing import List, Optional

from backuper.config import ConfigurationError
from .base import Notifier, NotificationDeliveryError
from .discord import DiscordNotifier
from .telegram import TelegramNotifier


logger = logging.getLogger(__name__)


class MultiNotifier:
    """
    Delivers each event to all channels, in registration order.

    A failing channel is logged and skipped; it never prevents delivery
    to the channels after it.
    """

    def __init__(self, notifiers: List[Notifier]):
        if not notifiers:
            raise ConfigurationError("No notification methods configured")
        self.notifiers = list(notifiers)

    def broadcast(self, event) -> Optional[NotificationDeliveryError]:
        """
        Send an event to every channel.

        Args:
            event: BackupSuccess, BackupFailure or BackupDeletion

        Returns:
            The last delivery error, or None if every channel succeeded.
            It only signals that something failed, not which channel.
        """
        last_error = None

        for notifier in self.notifiers:
            try:
                event.deliver(notifier)
            except NotificationDeliveryError as e:
                logger.error(f"Failed to send {event.kind} notification via {notifier.name}: {e}")
                last_error = e
            except Exception as e:
                logger.exception(f"Unexpected error sending {event.kind} notification via {notifier.name}")
                last_error = NotificationDeliveryError(f"{notifier.name}: {e}")

        return last_error


def build_notifiers(settings) -> MultiNotifier:
    """
    Create the channel fan-out from loaded settings.

    Args:
        settings: Settings instance

    Raises:
        ConfigurationError: If no channel is configured
    """
    notifiers = []

    if settings.discord.webhook_url:
        notifiers.append(DiscordNotifier(settings.discord.webhook_url))
        logger.info("Discord notifier initialized")

    if settings.telegram.bot_token and settings.telegram.chat_id:
        notifiers.append(TelegramNotifier(settings.telegram.bot_token, settings.telegram.chat_id))
        logger.info("Telegram notifier initialized")

    return MultiNotifier(notifiers)
