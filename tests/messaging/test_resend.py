"""Tests for the resend coordinator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from bot_notifier.bot_settings import BotSettings
from bot_notifier.errors import InternalError, NotFoundError, ValidationError
from bot_notifier.messaging.channels.telegram import TelegramAPIError
from bot_notifier.messaging.models import (
    DeliveryLogEntry,
    DeliveryStatus,
    NotificationContext,
)
from bot_notifier.messaging.resend import ResendCoordinator

# ============================================================================
# Fixtures
# ============================================================================


def make_entry(
    log_id: str = "log-1",
    status: DeliveryStatus = DeliveryStatus.FAILURE,
    message: str = "Pembayaran dikonfirmasi",
    **context_kwargs,
) -> DeliveryLogEntry:
    context_kwargs.setdefault("event_type", "Payment confirmation")
    return DeliveryLogEntry(
        id=log_id,
        channel="telegram",
        status=status,
        message=message,
        context=NotificationContext(**context_kwargs),
        error="Bad Request" if status is DeliveryStatus.FAILURE else None,
    )


@pytest.fixture
def settings_provider() -> MagicMock:
    provider = MagicMock()
    provider.get = AsyncMock(
        return_value=BotSettings(
            bot_token=SecretStr("123:abc"),
            default_chat_id="-100",
            templates={"payment-confirmation": "CHANGED {{customerName}}"},
        )
    )
    return provider


@pytest.fixture
def mock_channel() -> MagicMock:
    channel = MagicMock()
    channel.name = "telegram"
    channel.send_message = AsyncMock(return_value=1)
    return channel


@pytest.fixture
def mock_store() -> MagicMock:
    store = MagicMock()
    store.get_by_id = AsyncMock(return_value=make_entry())
    store.list_resends = AsyncMock(return_value=[])
    store.append = AsyncMock(return_value="log-2")
    return store


@pytest.fixture
def coordinator(
    settings_provider: MagicMock, mock_channel: MagicMock, mock_store: MagicMock
) -> ResendCoordinator:
    return ResendCoordinator(settings_provider, mock_channel, mock_store)


# ============================================================================
# Tests
# ============================================================================


class TestResend:
    """Tests for ResendCoordinator.resend."""

    @pytest.mark.asyncio
    async def test_resends_stored_text_verbatim(
        self,
        coordinator: ResendCoordinator,
        mock_channel: MagicMock,
        mock_store: MagicMock,
    ) -> None:
        result = await coordinator.resend("log-1")

        assert result.delivered is True
        assert result.log_id == "log-2"
        mock_channel.send_message.assert_awaited_once_with(
            "123:abc", "-100", "Pembayaran dikonfirmasi", parse_mode="Markdown"
        )

    @pytest.mark.asyncio
    async def test_new_entry_labelled_as_resend(
        self, coordinator: ResendCoordinator, mock_store: MagicMock
    ) -> None:
        await coordinator.resend("log-1")

        _, status, message, context, _ = mock_store.append.call_args.args
        assert status is DeliveryStatus.SUCCESS
        assert message == "Pembayaran dikonfirmasi"
        assert context.resend_of == "log-1"
        assert context.event_type == "Payment confirmation (resend)"

    @pytest.mark.asyncio
    async def test_original_entry_untouched(
        self, coordinator: ResendCoordinator, mock_store: MagicMock
    ) -> None:
        original = mock_store.get_by_id.return_value

        await coordinator.resend("log-1")

        assert original.status is DeliveryStatus.FAILURE
        mock_store.append.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stored_destination_preferred(
        self,
        coordinator: ResendCoordinator,
        mock_channel: MagicMock,
        mock_store: MagicMock,
    ) -> None:
        mock_store.get_by_id.return_value = make_entry(chat_id="777")

        await coordinator.resend("log-1")

        assert mock_channel.send_message.call_args.args[1] == "777"

    @pytest.mark.asyncio
    async def test_resend_of_resend_keeps_root_and_single_label(
        self, coordinator: ResendCoordinator, mock_store: MagicMock
    ) -> None:
        mock_store.get_by_id.return_value = make_entry(
            log_id="log-3",
            event_type="Payment confirmation (resend)",
            resend_of="log-1",
        )

        await coordinator.resend("log-3")

        mock_store.list_resends.assert_awaited_once_with("telegram", "log-1")
        context = mock_store.append.call_args.args[3]
        assert context.resend_of == "log-1"
        assert context.event_type == "Payment confirmation (resend)"

    @pytest.mark.asyncio
    async def test_empty_id_rejected(
        self, coordinator: ResendCoordinator, mock_store: MagicMock
    ) -> None:
        with pytest.raises(ValidationError):
            await coordinator.resend("  ")
        mock_store.get_by_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_id(
        self, coordinator: ResendCoordinator, mock_store: MagicMock
    ) -> None:
        mock_store.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await coordinator.resend("missing")
        mock_store.append.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_entry_refused(
        self,
        coordinator: ResendCoordinator,
        mock_channel: MagicMock,
        mock_store: MagicMock,
    ) -> None:
        mock_store.get_by_id.return_value = make_entry(status=DeliveryStatus.SUCCESS)

        with pytest.raises(ValidationError, match="already delivered"):
            await coordinator.resend("log-1")

        mock_channel.send_message.assert_not_called()
        mock_store.append.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_resent_successfully_refused(
        self,
        coordinator: ResendCoordinator,
        mock_channel: MagicMock,
        mock_store: MagicMock,
    ) -> None:
        mock_store.list_resends.return_value = [
            make_entry(log_id="log-2", status=DeliveryStatus.SUCCESS, resend_of="log-1")
        ]

        with pytest.raises(ValidationError, match="already resent"):
            await coordinator.resend("log-1")

        mock_channel.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_resend_refused(
        self,
        coordinator: ResendCoordinator,
        mock_channel: MagicMock,
    ) -> None:
        sending = asyncio.Event()
        release = asyncio.Event()

        async def slow_send(*_args, **_kwargs) -> int:
            sending.set()
            await release.wait()
            return 1

        mock_channel.send_message.side_effect = slow_send
        first = asyncio.create_task(coordinator.resend("log-1"))
        await sending.wait()

        with pytest.raises(ValidationError, match="already in progress"):
            await coordinator.resend("log-1")

        release.set()
        result = await first
        assert result.delivered is True
        mock_channel.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reservation_released_after_failure(
        self,
        coordinator: ResendCoordinator,
        mock_channel: MagicMock,
    ) -> None:
        mock_channel.send_message.side_effect = [TelegramAPIError("Forbidden"), 1]

        with pytest.raises(InternalError):
            await coordinator.resend("log-1")
        result = await coordinator.resend("log-1")

        assert result.delivered is True

    @pytest.mark.asyncio
    async def test_failed_resends_do_not_block(
        self, coordinator: ResendCoordinator, mock_store: MagicMock
    ) -> None:
        mock_store.list_resends.return_value = [
            make_entry(log_id="log-2", status=DeliveryStatus.FAILURE, resend_of="log-1")
        ]

        result = await coordinator.resend("log-1")

        assert result.delivered is True

    @pytest.mark.asyncio
    async def test_empty_message_refused(
        self, coordinator: ResendCoordinator, mock_store: MagicMock
    ) -> None:
        mock_store.get_by_id.return_value = make_entry(message="")

        with pytest.raises(ValidationError, match="no message text"):
            await coordinator.resend("log-1")

    @pytest.mark.asyncio
    async def test_not_configured_refused_without_entry(
        self,
        coordinator: ResendCoordinator,
        settings_provider: MagicMock,
        mock_channel: MagicMock,
        mock_store: MagicMock,
    ) -> None:
        settings_provider.get.return_value = BotSettings(default_chat_id="-100")

        with pytest.raises(ValidationError, match="not configured"):
            await coordinator.resend("log-1")

        mock_channel.send_message.assert_not_called()
        mock_store.append.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_failure_records_new_failure(
        self,
        coordinator: ResendCoordinator,
        mock_channel: MagicMock,
        mock_store: MagicMock,
    ) -> None:
        mock_channel.send_message.side_effect = TelegramAPIError("Forbidden", error_code=403)

        with pytest.raises(InternalError, match="Failed to resend notification: Forbidden"):
            await coordinator.resend("log-1")

        _, status, _, context, error = mock_store.append.call_args.args
        assert status is DeliveryStatus.FAILURE
        assert context.resend_of == "log-1"
        assert error == "Forbidden"
