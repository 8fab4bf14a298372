"""Tests for the Redis audit log store."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from bot_notifier.messaging.models import DeliveryStatus, NotificationContext
from bot_notifier.storage.redis_store import RedisAuditLogStore

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mock_pipeline() -> MagicMock:
    """Create a mock Redis pipeline usable as an async context manager."""
    pipe = MagicMock()
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=None)
    pipe.execute = AsyncMock(return_value=[])
    return pipe


@pytest.fixture
def mock_redis(mock_pipeline: MagicMock) -> MagicMock:
    """Create a mock async Redis client."""
    redis = MagicMock()
    redis.pipeline.return_value = mock_pipeline
    redis.get = AsyncMock(return_value=None)
    redis.zrevrange = AsyncMock(return_value=[])
    redis.zrange = AsyncMock(return_value=[])
    return redis


def stored_record(log_id: str, status: str = "failure", **context) -> bytes:
    context.setdefault("event_type", "Auto reply")
    return json.dumps(
        {
            "id": log_id,
            "channel": "telegram",
            "status": status,
            "message": "hi",
            "context": context,
            "error": None,
            "created_at": "2024-05-01T12:00:00+00:00",
        }
    ).encode()


# ============================================================================
# Tests
# ============================================================================


class TestAppend:
    """Tests for RedisAuditLogStore.append."""

    @pytest.mark.asyncio
    async def test_writes_record_and_time_index(
        self, mock_redis: MagicMock, mock_pipeline: MagicMock
    ) -> None:
        store = RedisAuditLogStore(mock_redis)

        log_id = await store.append(
            "telegram",
            DeliveryStatus.FAILURE,
            "hi",
            NotificationContext(event_type="Auto reply", chat_id="7"),
            "Bad Request",
        )

        mock_redis.pipeline.assert_called_once_with(transaction=True)
        key, payload = mock_pipeline.set.call_args.args
        assert key == f"audit:telegram:entry:{log_id}"
        record = json.loads(payload)
        assert record["status"] == "failure"
        assert record["error"] == "Bad Request"
        assert record["context"]["chat_id"] == "7"
        assert mock_pipeline.set.call_args.kwargs["ex"] is None

        zadd_key, members = mock_pipeline.zadd.call_args.args
        assert zadd_key == "audit:telegram:index:time"
        assert log_id in members
        mock_pipeline.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, mock_redis: MagicMock) -> None:
        store = RedisAuditLogStore(mock_redis)
        context = NotificationContext(event_type="x")

        ids = {
            await store.append("telegram", DeliveryStatus.SUCCESS, "hi", context)
            for _ in range(5)
        }

        assert len(ids) == 5

    @pytest.mark.asyncio
    async def test_resend_indexed_under_original(
        self, mock_redis: MagicMock, mock_pipeline: MagicMock
    ) -> None:
        store = RedisAuditLogStore(mock_redis, retention_days=7)
        context = NotificationContext(event_type="x").as_resend_of("log-1")

        log_id = await store.append("telegram", DeliveryStatus.SUCCESS, "hi", context)

        zadd_keys = [c.args[0] for c in mock_pipeline.zadd.call_args_list]
        assert zadd_keys == ["audit:telegram:index:time", "audit:telegram:resends:log-1"]
        assert log_id in mock_pipeline.zadd.call_args_list[1].args[1]
        assert mock_pipeline.set.call_args.kwargs["ex"] == 7 * 86400
        mock_pipeline.expire.assert_called_once_with("audit:telegram:resends:log-1", 7 * 86400)


class TestReads:
    """Tests for lookups and listings."""

    @pytest.mark.asyncio
    async def test_get_by_id(self, mock_redis: MagicMock) -> None:
        mock_redis.get.return_value = stored_record("log-1", chat_id="7")
        store = RedisAuditLogStore(mock_redis)

        entry = await store.get_by_id("telegram", "log-1")

        assert entry is not None
        assert entry.id == "log-1"
        assert entry.status is DeliveryStatus.FAILURE
        assert entry.context.chat_id == "7"
        mock_redis.get.assert_awaited_once_with("audit:telegram:entry:log-1")

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, mock_redis: MagicMock) -> None:
        store = RedisAuditLogStore(mock_redis)
        assert await store.get_by_id("telegram", "nope") is None

    @pytest.mark.asyncio
    async def test_list_recent_newest_first(self, mock_redis: MagicMock) -> None:
        records = {
            "audit:telegram:entry:b": stored_record("b"),
            "audit:telegram:entry:a": stored_record("a"),
        }
        mock_redis.zrevrange.return_value = [b"b", b"a", b"expired"]
        mock_redis.get.side_effect = lambda key: records.get(key)
        store = RedisAuditLogStore(mock_redis)

        entries = await store.list_recent("telegram", limit=3)

        assert [e.id for e in entries] == ["b", "a"]
        mock_redis.zrevrange.assert_awaited_once_with("audit:telegram:index:time", 0, 2)

    @pytest.mark.asyncio
    async def test_list_recent_zero_limit(self, mock_redis: MagicMock) -> None:
        store = RedisAuditLogStore(mock_redis)
        assert await store.list_recent("telegram", limit=0) == []
        mock_redis.zrevrange.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_resends(self, mock_redis: MagicMock) -> None:
        mock_redis.zrange.return_value = ["r1"]
        mock_redis.get.return_value = stored_record("r1", "success", resend_of="log-1")
        store = RedisAuditLogStore(mock_redis)

        resends = await store.list_resends("telegram", "log-1")

        assert len(resends) == 1
        assert resends[0].is_success
        assert resends[0].context.resend_of == "log-1"
        mock_redis.zrange.assert_awaited_once_with("audit:telegram:resends:log-1", 0, -1)
