"""Notification type definitions for account messages and security alerts."""

from enum import Enum
from typing import NamedTuple


class NotificationConfig(NamedTuple):
    """Configuration for a notification type."""

    channel: str
    default_priority: str  # low, default, high, max


class NotificationType(Enum):
    """
    Notification types with their delivery channel and default priority.

    The webhook receiver routes on ``channel``: account messages go to the
    mailer, security messages to the on-call channel.
    """

    EMAIL_VERIFICATION = NotificationConfig("account", "default")
    PASSWORD_RESET = NotificationConfig("account", "high")
    PASSWORD_CHANGED = NotificationConfig("account", "default")
    SECURITY_ALERT = NotificationConfig("security", "max")
    PRIVACY_REQUEST_COMPLETED = NotificationConfig("account", "default")

    @property
    def channel(self) -> str:
        return self.value.channel

    @property
    def default_priority(self) -> str:
        return self.value.default_priority
