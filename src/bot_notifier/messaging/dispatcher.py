"""Notification dispatcher: render, deliver, and audit one message.

Failure policy:

- Token or destination not configured: no network call is made, a
  ``failure`` entry is written, and the call returns normally. Callers
  treat notifications as best-effort, so unconfigured messaging must not
  break their own flow.
- Transport failure after a real attempt: a ``failure`` entry is written
  and :class:`~bot_notifier.errors.InternalError` is raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from bot_notifier.errors import InternalError, ValidationError
from bot_notifier.messaging.channels.telegram import TelegramAPIError
from bot_notifier.messaging.models import DeliveryStatus, NotificationContext
from bot_notifier.messaging.templates import bound_message, escape_markup, render
from bot_notifier.metrics import DELIVERIES_TOTAL, DELIVERY_LATENCY

if TYPE_CHECKING:
    from bot_notifier.bot_settings import BotSettings, SettingsProvider
    from bot_notifier.messaging.channels.telegram import TelegramChannel
    from bot_notifier.storage.base import AuditLogStore

logger = logging.getLogger(__name__)

CHANNEL_NAME = "telegram"
NOT_CONFIGURED = "Bot token or destination chat ID is not configured"

TEST_NOTIFICATION_TEMPLATE = "test-notification"
PAYMENT_CONFIRMATION_TEMPLATE = "payment-confirmation"


@dataclass
class DispatchResult:
    """Outcome of one dispatch that did not raise."""

    log_id: str
    delivered: bool
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "logId": self.log_id,
            "delivered": self.delivered,
            "error": self.error,
        }


async def record_attempt(
    store: AuditLogStore,
    status: DeliveryStatus,
    message: str,
    context: NotificationContext,
    error: str | None = None,
) -> str:
    """Append an audit entry for one attempt.

    The write is shielded so it completes even if the request that
    triggered it is cancelled.
    """
    log_id = await asyncio.shield(store.append(CHANNEL_NAME, status, message, context, error))
    DELIVERIES_TOTAL.labels(channel=CHANNEL_NAME, status=status.value).inc()
    return log_id


async def deliver(
    channel: TelegramChannel,
    store: AuditLogStore,
    settings: BotSettings,
    destination: str,
    text: str,
    context: NotificationContext,
) -> DispatchResult:
    """Send already-rendered text and audit the outcome.

    Raises:
        InternalError: If the transport call fails. The failure is
            recorded before raising.
    """
    action = "resend" if context.is_resend else "send"
    started = time.monotonic()
    try:
        await channel.send_message(
            settings.token, destination, text, parse_mode=settings.parse_mode
        )
    except TelegramAPIError as e:
        description = e.description
    except Exception as e:
        logger.exception("Unexpected error during Telegram %s", action)
        description = str(e) or type(e).__name__
    else:
        DELIVERY_LATENCY.labels(channel=CHANNEL_NAME).observe(time.monotonic() - started)
        log_id = await record_attempt(store, DeliveryStatus.SUCCESS, text, context)
        logger.info("Delivered %s notification (%s)", context.event_type, log_id)
        return DispatchResult(log_id=log_id, delivered=True)

    DELIVERY_LATENCY.labels(channel=CHANNEL_NAME).observe(time.monotonic() - started)
    logger.error(
        "Failed to %s %s notification: %s", action, context.event_type, description
    )
    log_id = await record_attempt(store, DeliveryStatus.FAILURE, text, context, description)
    raise InternalError(
        f"Failed to {action} notification: {description}",
        service=channel.name,
        context={"log_id": log_id},
    )


def format_amount(amount: int | float | Decimal) -> str:
    """Format an amount with '.' thousands and ',' decimal separators."""
    value = Decimal(str(amount))
    whole, _, fraction = f"{value:,.2f}".partition(".")
    whole = whole.replace(",", ".")
    fraction = fraction.rstrip("0")
    return f"{whole},{fraction}" if fraction else whole


class NotificationDispatcher:
    """Resolves destination, renders, delivers and audits notifications."""

    def __init__(
        self,
        settings_provider: SettingsProvider,
        channel: TelegramChannel,
        audit_store: AuditLogStore,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            settings_provider: Source of a fresh settings snapshot per call.
            channel: Outbound transport.
            audit_store: Delivery audit log.
        """
        self.settings_provider = settings_provider
        self.channel = channel
        self.audit_store = audit_store

    async def send(
        self,
        template_key: str,
        data: Mapping[str, Any],
        context: NotificationContext,
    ) -> DispatchResult:
        """Render the template for ``template_key`` and deliver it.

        Args:
            template_key: Key of the template in bot settings.
            data: Values bound into the template.
            context: Audit context; ``chat_id`` overrides the default destination.

        Returns:
            DispatchResult. ``delivered`` is False when messaging is not
            configured; that case does not raise.

        Raises:
            ValidationError: If the template text is empty.
            InternalError: If the transport call fails.
        """
        settings = await self.settings_provider.get()
        destination = context.chat_id or settings.default_chat_id
        template = settings.template(template_key)

        if not settings.token or not destination:
            text = bound_message(render(template, data)) if template.strip() else ""
            logger.warning("Skipping %s notification: %s", context.event_type, NOT_CONFIGURED)
            log_id = await record_attempt(
                self.audit_store, DeliveryStatus.FAILURE, text, context, NOT_CONFIGURED
            )
            return DispatchResult(log_id=log_id, delivered=False, error=NOT_CONFIGURED)

        if not template.strip():
            raise ValidationError(
                f"Notification template '{template_key}' must not be empty",
                context={"template_key": template_key},
            )

        text = bound_message(render(template, data))
        return await deliver(self.channel, self.audit_store, settings, destination, text, context)

    async def send_test_notification(self) -> DispatchResult:
        """Send the test message to the default destination."""
        settings = await self.settings_provider.get()
        context = NotificationContext(
            event_type="Test notification",
            chat_id=settings.default_chat_id or None,
        )
        return await self.send(
            TEST_NOTIFICATION_TEMPLATE, {"chatId": settings.default_chat_id}, context
        )

    async def send_payment_confirmation(
        self,
        *,
        customer_name: str | None,
        customer_telegram: str | None,
        total_amount: int | float | Decimal,
        order_ids: Sequence[str],
    ) -> DispatchResult | None:
        """Notify the default destination that orders were paid.

        Customer fields and order ids are escaped for the configured
        markup mode before binding.

        Returns:
            None when payment-confirmation notifications are disabled,
            otherwise the dispatch result.
        """
        settings = await self.settings_provider.get()
        if not settings.notify_on_payment_confirmation:
            logger.debug("Payment confirmation notifications disabled, skipping")
            return None

        def escape(text: str) -> str:
            return escape_markup(text, settings.parse_mode)

        data = {
            "customerName": escape(customer_name or "N/A"),
            "customerTelegram": escape((customer_telegram or "").lstrip("@") or "N/A"),
            "totalAmount": escape(format_amount(total_amount)),
            "orderCount": len(order_ids),
            "orderIds": [escape(order_id) for order_id in order_ids],
        }
        context = NotificationContext(
            event_type="Payment confirmation",
            metadata={"order_ids": list(order_ids)},
        )
        return await self.send(PAYMENT_CONFIRMATION_TEMPLATE, data, context)
