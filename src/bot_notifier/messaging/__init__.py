"""Messaging layer - inbound routing, rendering, delivery and resend."""

from bot_notifier.messaging.channels.telegram import (
    BotProfile,
    SlidingWindowRateLimiter,
    TelegramAPIError,
    TelegramChannel,
)
from bot_notifier.messaging.dispatcher import DispatchResult, NotificationDispatcher
from bot_notifier.messaging.models import (
    DeliveryLogEntry,
    DeliveryStatus,
    InboundMessage,
    InboundUpdate,
    NotificationContext,
)
from bot_notifier.messaging.resend import ResendCoordinator
from bot_notifier.messaging.router import WebhookRouter
from bot_notifier.messaging.templates import render

__all__ = [
    "BotProfile",
    "DeliveryLogEntry",
    "DeliveryStatus",
    "DispatchResult",
    "InboundMessage",
    "InboundUpdate",
    "NotificationContext",
    "NotificationDispatcher",
    "ResendCoordinator",
    "SlidingWindowRateLimiter",
    "TelegramAPIError",
    "TelegramChannel",
    "WebhookRouter",
    "render",
]
