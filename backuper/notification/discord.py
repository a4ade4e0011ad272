"""
Discord webhook notifications.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx

from .base import Notifier, NotificationDeliveryError, format_file_size


COLOR_SUCCESS = 3066993   # Green
COLOR_FAILURE = 15158332  # Red
COLOR_DELETION = 16776960  # Yellow

DEFAULT_TIMEOUT = 10.0


class DiscordNotifier(Notifier):
    """
    Sends backup events to a Discord channel as webhook embeds.
    """

    name = 'discord'

    def __init__(self, webhook_url: str, timeout: float = DEFAULT_TIMEOUT):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def notify_success(self, file_name: str, file_url: str, file_size: int):
        self._send_embed(
            title='✅ Backup Successful',
            description='A new backup has been created and uploaded successfully!',
            color=COLOR_SUCCESS,
            fields=[
                {'name': 'File Name', 'value': file_name, 'inline': False},
                {'name': 'File Size', 'value': format_file_size(file_size), 'inline': True},
                {'name': 'Download Link', 'value': f'[Click here to download]({file_url})', 'inline': False},
            ]
        )

    def notify_failure(self, cause: str):
        self._send_embed(
            title='❌ Backup Failed',
            description='The backup process encountered an error.',
            color=COLOR_FAILURE,
            fields=[
                {'name': 'Error', 'value': cause, 'inline': False},
            ]
        )

    def notify_deletion(self, file_name: str, file_url: str):
        self._send_embed(
            title='🗑️ Old Backup Deleted',
            description='An old backup has been automatically deleted due to retention limit.',
            color=COLOR_DELETION,
            fields=[
                {'name': 'Deleted File', 'value': file_name, 'inline': False},
                {'name': 'Previous Download Link', 'value': f'`{file_url}`', 'inline': False},
            ]
        )

    def _send_embed(self, title: str, description: str, color: int, fields: List[Dict[str, Any]]):
        embed = {
            'title': title,
            'description': description,
            'color': color,
            'fields': fields,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
        self._post({'embeds': [embed]})

    def _post(self, payload: Dict[str, Any]):
        try:
            response = httpx.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationDeliveryError(
                f"Discord webhook returned status code: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Failed to send Discord webhook: {e}") from e
