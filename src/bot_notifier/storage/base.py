"""Audit log store contract."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from bot_notifier.messaging.models import (
        DeliveryLogEntry,
        DeliveryStatus,
        NotificationContext,
    )


class AuditLogStore(Protocol):
    """Append-only store of delivery attempts.

    No update or delete operation is exposed. Implementations serialize
    their own writes.
    """

    async def append(
        self,
        channel: str,
        status: DeliveryStatus,
        message: str,
        context: NotificationContext,
        error: str | None = None,
    ) -> str:
        """Record one delivery attempt and return its generated id."""
        ...

    async def get_by_id(self, channel: str, log_id: str) -> DeliveryLogEntry | None:
        """Return the entry with this id, or None."""
        ...

    async def list_recent(self, channel: str, limit: int = 50) -> list[DeliveryLogEntry]:
        """Return the newest entries first."""
        ...

    async def list_resends(self, channel: str, log_id: str) -> list[DeliveryLogEntry]:
        """Return entries recorded as resends of ``log_id``."""
        ...
