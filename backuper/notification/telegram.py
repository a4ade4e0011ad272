"""
Telegram bot notifications.
"""

import httpx

from .base import Notifier, NotificationDeliveryError, format_file_size


API_URL = 'https://api.telegram.org/bot{token}/sendMessage'
DEFAULT_TIMEOUT = 10.0


class TelegramNotifier(Notifier):
    """
    Sends backup events to a Telegram chat as Markdown messages.
    """

    name = 'telegram'

    def __init__(self, bot_token: str, chat_id: str, timeout: float = DEFAULT_TIMEOUT):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout

    def notify_success(self, file_name: str, file_url: str, file_size: int):
        self._send_message(
            "✅ *Backup Successful*\n\n"
            "A new backup has been created and uploaded successfully!\n\n"
            f"*File Name:* `{file_name}`\n"
            f"*File Size:* {format_file_size(file_size)}\n"
            f"*Download Link:* [Click here]({file_url})"
        )

    def notify_failure(self, cause: str):
        self._send_message(
            "❌ *Backup Failed*\n\n"
            "The backup process encountered an error.\n\n"
            f"*Error:* `{cause}`"
        )

    def notify_deletion(self, file_name: str, file_url: str):
        self._send_message(
            "🗑️ *Old Backup Deleted*\n\n"
            "An old backup has been automatically deleted due to retention limit.\n\n"
            f"*Deleted File:* `{file_name}`\n"
            f"*Previous Download Link:* `{file_url}`"
        )

    def _send_message(self, text: str):
        payload = {
            'chat_id': self.chat_id,
            'text': text,
            'parse_mode': 'Markdown',
        }

        try:
            response = httpx.post(API_URL.format(token=self.bot_token), json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationDeliveryError(
                f"Telegram API returned status code: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            # The request URL embeds the bot token, keep it out of the message
            raise NotificationDeliveryError(f"Failed to send Telegram message: {type(e).__name__}") from e
