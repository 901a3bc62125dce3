"""Tests for NotificationService."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from models.notification_types import NotificationType
from services.notification_service import NotificationService


@pytest.fixture
def webhook_settings(test_settings):
    return test_settings.model_copy(
        update={"NOTIFIER_WEBHOOK_URL": "http://notifier:8080/hook", "NOTIFIER_AUTH_TOKEN": ""}
    )


class TestNotificationType:
    """Test NotificationType enum."""

    def test_security_alert_properties(self) -> None:
        assert NotificationType.SECURITY_ALERT.channel == "security"
        assert NotificationType.SECURITY_ALERT.default_priority == "max"

    def test_account_messages_use_account_channel(self) -> None:
        for ntype in (
            NotificationType.EMAIL_VERIFICATION,
            NotificationType.PASSWORD_RESET,
            NotificationType.PASSWORD_CHANGED,
            NotificationType.PRIVACY_REQUEST_COMPLETED,
        ):
            assert ntype.channel == "account"

    def test_all_types_have_valid_priority(self) -> None:
        valid_priorities = {"low", "default", "high", "max"}
        for ntype in NotificationType:
            assert (
                ntype.default_priority in valid_priorities
            ), f"{ntype.name} has invalid priority: {ntype.default_priority}"


class TestNotificationService:
    """Test notification service functionality."""

    def test_not_configured_without_url(self, test_settings) -> None:
        service = NotificationService(test_settings)
        assert service.is_configured is False

    def test_notify_unconfigured_is_noop(self, test_settings) -> None:
        """Nothing is posted when no webhook is configured."""
        service = NotificationService(test_settings)
        with patch("httpx.AsyncClient") as mock_client:
            service.notify(NotificationType.SECURITY_ALERT, "Title", "Message")
            mock_client.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_async_success(self, webhook_settings) -> None:
        service = NotificationService(webhook_settings)
        with patch("httpx.AsyncClient") as mock_client:
            mock_response = AsyncMock()
            mock_response.raise_for_status = Mock()  # Sync method, not async
            mock_post = AsyncMock(return_value=mock_response)
            mock_client.return_value.__aenter__.return_value.post = mock_post

            result = await service._send_async(
                NotificationType.PASSWORD_RESET,
                "Reset your password",
                "Use the token",
                {"email": "user@example.com", "token": "abc"},
            )
            assert result is True

            call_args, call_kwargs = mock_post.call_args
            assert call_args[0] == "http://notifier:8080/hook"
            assert call_kwargs["json"]["type"] == "password_reset"
            assert call_kwargs["json"]["channel"] == "account"
            assert call_kwargs["json"]["data"]["token"] == "abc"
            assert call_kwargs["headers"]["X-Priority"] == "high"
            assert "Authorization" not in call_kwargs["headers"]

    @pytest.mark.asyncio
    async def test_send_async_with_auth_token(self, webhook_settings) -> None:
        settings = webhook_settings.model_copy(update={"NOTIFIER_AUTH_TOKEN": "secret-token"})
        service = NotificationService(settings)
        with patch("httpx.AsyncClient") as mock_client:
            mock_response = AsyncMock()
            mock_response.raise_for_status = Mock()
            mock_post = AsyncMock(return_value=mock_response)
            mock_client.return_value.__aenter__.return_value.post = mock_post

            await service._send_async(NotificationType.SECURITY_ALERT, "Alert", "Message")

            call_kwargs = mock_post.call_args[1]
            assert call_kwargs["headers"]["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_send_async_timeout(self, webhook_settings) -> None:
        service = NotificationService(webhook_settings)
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                side_effect=httpx.TimeoutException("timeout")
            )
            result = await service._send_async(NotificationType.SECURITY_ALERT, "Alert", "Message")
            assert result is False

    @pytest.mark.asyncio
    async def test_send_async_http_error(self, webhook_settings) -> None:
        service = NotificationService(webhook_settings)
        with patch("httpx.AsyncClient") as mock_client:
            mock_response = AsyncMock()
            mock_response.status_code = 500
            mock_response.raise_for_status = Mock(
                side_effect=httpx.HTTPStatusError(
                    "Server error", request=Mock(), response=mock_response
                )
            )
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=mock_response
            )
            result = await service._send_async(NotificationType.SECURITY_ALERT, "Alert", "Message")
            assert result is False

    @pytest.mark.asyncio
    async def test_notify_inside_event_loop_schedules_task(self, webhook_settings) -> None:
        service = NotificationService(webhook_settings)
        with patch.object(service, "_send_async", new=AsyncMock(return_value=True)) as send:
            service.notify(NotificationType.SECURITY_ALERT, "Alert", "Message")
            # Let the scheduled task run
            await asyncio.sleep(0)
            send.assert_awaited_once()
