"""
Outbound notifications via a webhook.

Account messages (verification and reset tokens) and critical security
alerts are posted as JSON to ``NOTIFIER_WEBHOOK_URL``; a separate mailer or
paging system delivers them. Uses fire-and-forget pattern - failures are
logged but don't block requests.
"""

import asyncio
import threading
from typing import Any, Protocol

import httpx
from loguru import logger

from models.config import Settings
from models.notification_types import NotificationType

log = logger.bind(component="notifier")


class Notifier(Protocol):
    """Capability the services depend on for outbound messages."""

    @property
    def is_configured(self) -> bool: ...

    def notify(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None: ...


class NotificationService:
    """
    Webhook notifier.

    All methods are fire-and-forget: they log failures but never raise
    exceptions or block the calling code. When no webhook is configured,
    notifications are only logged.
    """

    def __init__(self, settings: Settings):
        self.webhook_url = settings.NOTIFIER_WEBHOOK_URL
        self.auth_token = settings.NOTIFIER_AUTH_TOKEN

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    async def _send_async(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """
        Post one notification.

        Returns:
            True if sent successfully, False otherwise
        """
        headers: dict[str, str] = {"X-Priority": notification_type.default_priority}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        body = {
            "type": notification_type.name.lower(),
            "channel": notification_type.channel,
            "title": title,
            "message": message,
            "data": data or {},
        }

        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.post(
                    self.webhook_url, headers=headers, json=body
                )
                response.raise_for_status()
                log.info(f"Notification sent: {notification_type.name} {title}")
                return True
        except httpx.TimeoutException:
            log.warning(f"Notifier timeout sending {notification_type.name}: {title}")
            return False
        except httpx.HTTPStatusError as e:
            log.warning(
                f"Notifier HTTP error {e.response.status_code} for {notification_type.name}"
            )
            return False
        except httpx.HTTPError as e:
            log.warning(f"Notifier error sending {notification_type.name}: {e}")
            return False

    def notify(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        """
        Send notification without blocking (fire-and-forget).

        Safe to call from the event loop, request threadpool or scheduler
        threads.
        """
        if not self.is_configured:
            log.info(f"Notifier not configured, skipping {notification_type.name}: {title}")
            return

        coro = self._send_async(notification_type, title, message, data)
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(coro)
        except RuntimeError:
            # Sync caller (threadpool or scheduler): run on a daemon thread
            threading.Thread(target=asyncio.run, args=(coro,), daemon=True).start()
