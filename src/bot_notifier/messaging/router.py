"""Inbound webhook ingestion and command routing.

Replies always go back to the chat the message came from, never to the
configured default destination.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from bot_notifier.errors import ValidationError
from bot_notifier.messaging.models import InboundMessage, InboundUpdate, NotificationContext
from bot_notifier.messaging.templates import escape_markup
from bot_notifier.metrics import INBOUND_UPDATES_TOTAL

if TYPE_CHECKING:
    from bot_notifier.bot_settings import SettingsProvider
    from bot_notifier.messaging.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

START_COMMAND = "/start"
START_REPLY_TEMPLATE = "start-reply"
DEFAULT_ECHO_TEMPLATE = "default-echo"


def parse_inbound(raw: bytes | str | dict[str, Any]) -> InboundMessage | None:
    """Parse a webhook body into the message to act on.

    Accepts a full update (``update_id`` plus ``message`` or
    ``edited_message``) or a bare message object.

    Returns:
        The message, or None for an update that carries no message.

    Raises:
        ValidationError: If the body is not JSON or violates the schema.
    """
    if isinstance(raw, dict):
        payload = raw
    else:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError("Webhook body is not valid JSON") from e

    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    try:
        if "update_id" in payload:
            return InboundUpdate.model_validate(payload, strict=True).effective_message
        return InboundMessage.model_validate(payload, strict=True)
    except PydanticValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid webhook payload", context={"errors": errors}) from e


class WebhookRouter:
    """Validates inbound messages and dispatches the matching reply."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        settings_provider: SettingsProvider,
    ) -> None:
        self.dispatcher = dispatcher
        self.settings_provider = settings_provider

    async def handle_inbound(self, raw: bytes | str | dict[str, Any]) -> bool:
        """Process one webhook delivery.

        Returns:
            True once the update is acknowledged; non-text messages are
            acknowledged without a reply.

        Raises:
            ValidationError: If the payload is malformed.
            InternalError: If the reply could not be delivered.
        """
        try:
            message = parse_inbound(raw)
        except ValidationError:
            INBOUND_UPDATES_TOTAL.labels(outcome="invalid").inc()
            raise

        if message is None or message.text is None:
            INBOUND_UPDATES_TOTAL.labels(outcome="ignored").inc()
            logger.info("Ignoring inbound update without text")
            return True

        settings = await self.settings_provider.get()
        parse_mode = settings.parse_mode

        if message.text.strip() == START_COMMAND:
            template_key = START_REPLY_TEMPLATE
            data = {"name": escape_markup(message.sender.first_name, parse_mode)}
            event_type = "Reply /start"
        else:
            template_key = DEFAULT_ECHO_TEMPLATE
            data = {"message": escape_markup(message.text, parse_mode)}
            event_type = "Auto reply"

        context = NotificationContext(
            event_type=event_type,
            chat_id=str(message.chat.id),
            metadata={"message_id": message.message_id, "sender_id": message.sender.id},
        )
        logger.info(
            "Inbound message %s from chat %s routed to %s",
            message.message_id,
            message.chat.id,
            template_key,
        )
        await self.dispatcher.send(template_key, data, context)
        INBOUND_UPDATES_TOTAL.labels(outcome="replied").inc()
        return True
