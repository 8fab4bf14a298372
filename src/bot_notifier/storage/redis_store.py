"""Redis-backed delivery audit log.

Entries are JSON records indexed by time per channel, with a secondary
index from an original entry to its resends.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from bot_notifier.messaging.models import (
    DeliveryLogEntry,
    DeliveryStatus,
    NotificationContext,
)

logger = logging.getLogger(__name__)


class RedisAuditLogStore:
    """Append-only audit log stored in Redis."""

    KEY_PREFIX = "audit"

    def __init__(self, redis: Any, *, retention_days: int | None = None) -> None:
        """Initialize the store.

        Args:
            redis: Redis client (async).
            retention_days: Optional TTL for entries. None keeps them forever.
        """
        self.redis = redis
        self.retention_days = retention_days
        self._retention_ttl = retention_days * 86400 if retention_days else None

    def _entry_key(self, channel: str, log_id: str) -> str:
        return f"{self.KEY_PREFIX}:{channel}:entry:{log_id}"

    def _time_index_key(self, channel: str) -> str:
        return f"{self.KEY_PREFIX}:{channel}:index:time"

    def _resend_index_key(self, channel: str, log_id: str) -> str:
        return f"{self.KEY_PREFIX}:{channel}:resends:{log_id}"

    async def append(
        self,
        channel: str,
        status: DeliveryStatus,
        message: str,
        context: NotificationContext,
        error: str | None = None,
    ) -> str:
        log_id = str(uuid.uuid4())
        entry = DeliveryLogEntry(
            id=log_id,
            channel=channel,
            status=status,
            message=message,
            context=context,
            error=error,
            created_at=datetime.now(UTC),
        )
        score = entry.created_at.timestamp()

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(
                self._entry_key(channel, log_id),
                json.dumps(entry.to_dict()),
                ex=self._retention_ttl,
            )
            pipe.zadd(self._time_index_key(channel), {log_id: score})
            if context.resend_of:
                resend_key = self._resend_index_key(channel, context.resend_of)
                pipe.zadd(resend_key, {log_id: score})
                if self._retention_ttl:
                    pipe.expire(resend_key, self._retention_ttl)
            await pipe.execute()

        logger.debug("Recorded %s %s entry %s", channel, status.value, log_id)
        return log_id

    async def get_by_id(self, channel: str, log_id: str) -> DeliveryLogEntry | None:
        data = await self.redis.get(self._entry_key(channel, log_id))
        if not data:
            return None
        return DeliveryLogEntry.from_dict(json.loads(data))

    async def _load(self, channel: str, ids: list[bytes | str]) -> list[DeliveryLogEntry]:
        entries = []
        for raw_id in ids:
            log_id = raw_id.decode() if isinstance(raw_id, bytes) else raw_id
            entry = await self.get_by_id(channel, log_id)
            # Index members can outlive entries that expired via retention.
            if entry:
                entries.append(entry)
        return entries

    async def list_recent(self, channel: str, limit: int = 50) -> list[DeliveryLogEntry]:
        if limit <= 0:
            return []
        ids = await self.redis.zrevrange(self._time_index_key(channel), 0, limit - 1)
        return await self._load(channel, ids)

    async def list_resends(self, channel: str, log_id: str) -> list[DeliveryLogEntry]:
        ids = await self.redis.zrange(self._resend_index_key(channel, log_id), 0, -1)
        return await self._load(channel, ids)
