"""Storage layer - delivery audit log backends."""

from bot_notifier.storage.base import AuditLogStore
from bot_notifier.storage.redis_store import RedisAuditLogStore
from bot_notifier.storage.sql_store import SqlAuditLogStore

__all__ = [
    "AuditLogStore",
    "RedisAuditLogStore",
    "SqlAuditLogStore",
]
