"""Tests for inbound webhook parsing and command routing."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from bot_notifier.bot_settings import BotSettings
from bot_notifier.errors import InternalError, ValidationError
from bot_notifier.messaging.router import (
    DEFAULT_ECHO_TEMPLATE,
    START_REPLY_TEMPLATE,
    WebhookRouter,
    parse_inbound,
)

# ============================================================================
# Fixtures
# ============================================================================


def make_message(text: str | None = "hello", **overrides) -> dict:
    message = {
        "message_id": 10,
        "from": {"id": 7, "is_bot": False, "first_name": "Budi", "username": "budi"},
        "chat": {"id": 7, "first_name": "Budi", "type": "private"},
        "date": 1700000000,
    }
    if text is not None:
        message["text"] = text
    message.update(overrides)
    return message


@pytest.fixture
def mock_dispatcher() -> MagicMock:
    dispatcher = MagicMock()
    dispatcher.send = AsyncMock()
    return dispatcher


@pytest.fixture
def settings_provider() -> MagicMock:
    provider = MagicMock()
    provider.get = AsyncMock(
        return_value=BotSettings(bot_token=SecretStr("t"), default_chat_id="-100")
    )
    return provider


@pytest.fixture
def router(mock_dispatcher: MagicMock, settings_provider: MagicMock) -> WebhookRouter:
    return WebhookRouter(mock_dispatcher, settings_provider)


# ============================================================================
# parse_inbound Tests
# ============================================================================


class TestParseInbound:
    """Tests for webhook payload validation."""

    def test_bare_message(self) -> None:
        message = parse_inbound(json.dumps(make_message()).encode())
        assert message is not None
        assert message.text == "hello"
        assert message.sender.first_name == "Budi"
        assert message.chat.id == 7

    def test_full_update(self) -> None:
        message = parse_inbound({"update_id": 1, "message": make_message("hi")})
        assert message is not None
        assert message.text == "hi"

    def test_edited_message_update(self) -> None:
        message = parse_inbound({"update_id": 1, "edited_message": make_message("edit")})
        assert message is not None
        assert message.text == "edit"

    def test_update_without_message(self) -> None:
        assert parse_inbound({"update_id": 1, "callback_query": {}}) is None

    def test_unknown_fields_ignored(self) -> None:
        message = parse_inbound(make_message(entities=[{"type": "bot_command"}]))
        assert message is not None

    def test_invalid_json(self) -> None:
        with pytest.raises(ValidationError, match="not valid JSON"):
            parse_inbound(b"{not json")

    def test_non_object(self) -> None:
        with pytest.raises(ValidationError, match="JSON object"):
            parse_inbound("[1, 2]")

    @pytest.mark.parametrize("missing", ["message_id", "from", "chat", "date"])
    def test_missing_required_field(self, missing: str) -> None:
        payload = make_message()
        del payload[missing]

        with pytest.raises(ValidationError) as exc_info:
            parse_inbound(payload)

        locs = [err["loc"] for err in exc_info.value.context["errors"]]
        assert any(loc.startswith(missing) for loc in locs)

    def test_wrong_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_inbound(make_message(message_id="10"))

    def test_chat_requires_first_name(self) -> None:
        payload = make_message()
        del payload["chat"]["first_name"]

        with pytest.raises(ValidationError):
            parse_inbound(payload)


# ============================================================================
# WebhookRouter Tests
# ============================================================================


class TestWebhookRouter:
    """Tests for WebhookRouter.handle_inbound."""

    @pytest.mark.asyncio
    async def test_start_command(self, router: WebhookRouter, mock_dispatcher: MagicMock) -> None:
        assert await router.handle_inbound(make_message("  /start  ")) is True

        template_key, data, context = mock_dispatcher.send.call_args.args
        assert template_key == START_REPLY_TEMPLATE
        assert data == {"name": "Budi"}
        assert context.event_type == "Reply /start"
        assert context.chat_id == "7"

    @pytest.mark.asyncio
    async def test_other_text_is_echoed(
        self, router: WebhookRouter, mock_dispatcher: MagicMock
    ) -> None:
        await router.handle_inbound(make_message("what time is it?"))

        template_key, data, context = mock_dispatcher.send.call_args.args
        assert template_key == DEFAULT_ECHO_TEMPLATE
        assert data == {"message": "what time is it?"}
        assert context.event_type == "Auto reply"
        assert context.metadata == {"message_id": 10, "sender_id": 7}

    @pytest.mark.asyncio
    async def test_start_with_argument_is_echoed(
        self, router: WebhookRouter, mock_dispatcher: MagicMock
    ) -> None:
        await router.handle_inbound(make_message("/start now"))
        assert mock_dispatcher.send.call_args.args[0] == DEFAULT_ECHO_TEMPLATE

    @pytest.mark.asyncio
    async def test_reply_goes_to_origin_chat(
        self, router: WebhookRouter, mock_dispatcher: MagicMock
    ) -> None:
        payload = make_message(chat={"id": -555, "first_name": "Group", "type": "group"})

        await router.handle_inbound(payload)

        assert mock_dispatcher.send.call_args.args[2].chat_id == "-555"

    @pytest.mark.asyncio
    async def test_untrusted_text_is_escaped(
        self, router: WebhookRouter, mock_dispatcher: MagicMock
    ) -> None:
        await router.handle_inbound(make_message("*bold* [link]"))
        assert mock_dispatcher.send.call_args.args[1] == {"message": "\\*bold\\* \\[link]"}

    @pytest.mark.asyncio
    async def test_escaping_follows_parse_mode(
        self,
        router: WebhookRouter,
        settings_provider: MagicMock,
        mock_dispatcher: MagicMock,
    ) -> None:
        settings_provider.get.return_value = BotSettings(parse_mode="HTML")

        await router.handle_inbound(make_message("<b>hi</b>"))

        assert mock_dispatcher.send.call_args.args[1] == {"message": "&lt;b&gt;hi&lt;/b&gt;"}

    @pytest.mark.asyncio
    async def test_non_text_message_ignored(
        self, router: WebhookRouter, mock_dispatcher: MagicMock
    ) -> None:
        assert await router.handle_inbound(make_message(None, sticker={"file_id": "x"})) is True
        mock_dispatcher.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_payload_raises(
        self, router: WebhookRouter, mock_dispatcher: MagicMock
    ) -> None:
        with pytest.raises(ValidationError):
            await router.handle_inbound(b"{}")
        mock_dispatcher.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_delivery_failure_propagates(
        self, router: WebhookRouter, mock_dispatcher: MagicMock
    ) -> None:
        mock_dispatcher.send.side_effect = InternalError("Failed", service="telegram")

        with pytest.raises(InternalError):
            await router.handle_inbound(make_message("hi"))
