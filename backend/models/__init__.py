"""Models package - settings, Pydantic schemas, domain exceptions and policy tables."""

from .notification_types import NotificationConfig, NotificationType

__all__ = [
    "NotificationConfig",
    "NotificationType",
]
