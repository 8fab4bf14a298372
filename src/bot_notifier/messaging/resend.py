"""Re-delivery of previously failed notifications."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bot_notifier.errors import NotFoundError, ValidationError
from bot_notifier.messaging.dispatcher import CHANNEL_NAME, DispatchResult, deliver
from bot_notifier.metrics import RESENDS_TOTAL

if TYPE_CHECKING:
    from bot_notifier.bot_settings import SettingsProvider
    from bot_notifier.messaging.channels.telegram import TelegramChannel
    from bot_notifier.messaging.models import DeliveryLogEntry
    from bot_notifier.storage.base import AuditLogStore

logger = logging.getLogger(__name__)


class ResendCoordinator:
    """Re-sends the stored text of a failed audit entry.

    The stored text is delivered verbatim, never re-rendered, so edits to
    a template after the original attempt do not change what is resent.
    The destination falls back to the current default when the original
    context had no override.

    Resends of the same original are serialized by an in-process
    reservation, so a second concurrent request is refused instead of
    delivering twice. The reservation is per process; replicas sharing
    one audit store are not coordinated.
    """

    def __init__(
        self,
        settings_provider: SettingsProvider,
        channel: TelegramChannel,
        audit_store: AuditLogStore,
    ) -> None:
        self.settings_provider = settings_provider
        self.channel = channel
        self.audit_store = audit_store
        self._in_flight: set[str] = set()

    async def resend(self, log_id: str) -> DispatchResult:
        """Re-deliver the entry ``log_id``.

        Returns:
            DispatchResult of the new attempt.

        Raises:
            ValidationError: If the id is empty, the entry (or its original)
                was already delivered or is being resent, or messaging is
                not configured.
            NotFoundError: If no entry has this id.
            InternalError: If the new attempt fails. The failure is
                recorded as a new entry before raising.
        """
        log_id = (log_id or "").strip()
        if not log_id:
            raise ValidationError("Log ID is required to resend a notification")

        entry = await self.audit_store.get_by_id(CHANNEL_NAME, log_id)
        if entry is None:
            RESENDS_TOTAL.labels(outcome="not_found").inc()
            raise NotFoundError(f"Log entry {log_id} was not found", context={"log_id": log_id})

        if entry.is_success:
            RESENDS_TOTAL.labels(outcome="refused").inc()
            raise ValidationError(
                "Notification was already delivered successfully",
                context={"log_id": log_id},
            )

        if not entry.message.strip():
            RESENDS_TOTAL.labels(outcome="refused").inc()
            raise ValidationError(
                "Log entry has no message text to resend", context={"log_id": log_id}
            )

        original_id = entry.context.resend_of or entry.id
        if original_id in self._in_flight:
            RESENDS_TOTAL.labels(outcome="refused").inc()
            raise ValidationError(
                "A resend of this notification is already in progress",
                context={"log_id": log_id, "original_id": original_id},
            )

        self._in_flight.add(original_id)
        try:
            return await self._resend_reserved(log_id, original_id, entry)
        finally:
            self._in_flight.discard(original_id)

    async def _resend_reserved(
        self, log_id: str, original_id: str, entry: DeliveryLogEntry
    ) -> DispatchResult:
        resends = await self.audit_store.list_resends(CHANNEL_NAME, original_id)
        if any(r.is_success for r in resends):
            RESENDS_TOTAL.labels(outcome="refused").inc()
            raise ValidationError(
                "Notification was already resent successfully",
                context={"log_id": log_id, "original_id": original_id},
            )

        settings = await self.settings_provider.get()
        destination = entry.context.chat_id or settings.default_chat_id
        if not settings.token or not destination:
            RESENDS_TOTAL.labels(outcome="refused").inc()
            raise ValidationError("Bot token or destination chat ID is not configured")

        logger.info("Resending notification %s to chat %s", log_id, destination)
        context = entry.context.as_resend_of(original_id)
        try:
            result = await deliver(
                self.channel, self.audit_store, settings, destination, entry.message, context
            )
        except Exception:
            RESENDS_TOTAL.labels(outcome="failed").inc()
            raise

        RESENDS_TOTAL.labels(outcome="delivered").inc()
        return result
