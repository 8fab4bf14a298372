"""Outbound chat transport implementations."""

from bot_notifier.messaging.channels.telegram import TelegramAPIError, TelegramChannel

__all__ = [
    "TelegramAPIError",
    "TelegramChannel",
]
