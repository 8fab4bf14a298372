"""Repository implementation of the audit log on SQLAlchemy."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from bot_notifier.messaging.models import (
    DeliveryLogEntry,
    DeliveryStatus,
    NotificationContext,
)
from bot_notifier.storage.models import Base, DeliveryLogModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

logger = logging.getLogger(__name__)


def _to_entry(model: DeliveryLogModel) -> DeliveryLogEntry:
    created_at = model.created_at
    # SQLite drops tzinfo on the way back out.
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return DeliveryLogEntry(
        id=model.id,
        channel=model.channel,
        status=DeliveryStatus(model.status),
        message=model.message,
        context=NotificationContext.from_dict(model.context),
        error=model.error,
        created_at=created_at,
    )


class SqlAuditLogStore:
    """Append-only audit log stored in the ``delivery_logs`` table.

    Each operation opens its own session, so one store instance can be
    shared by concurrent requests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory producing async sessions.
            engine: Engine to dispose on close, when the store owns it.
        """
        self.session_factory = session_factory
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> SqlAuditLogStore:
        """Create a store that owns an engine for the given URL."""
        engine = create_async_engine(url, pool_pre_ping=True)
        return cls(async_sessionmaker(engine, expire_on_commit=False), engine=engine)

    async def init_schema(self) -> None:
        """Create the audit table if it does not exist."""
        if self.engine is None:
            raise RuntimeError("init_schema requires a store created with an engine")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    async def append(
        self,
        channel: str,
        status: DeliveryStatus,
        message: str,
        context: NotificationContext,
        error: str | None = None,
    ) -> str:
        log_id = str(uuid.uuid4())
        model = DeliveryLogModel(
            id=log_id,
            channel=channel,
            status=status.value,
            message=message,
            context=context.to_dict(),
            error=error,
            resend_of=context.resend_of,
            created_at=datetime.now(UTC),
        )
        async with self.session_factory() as session:
            session.add(model)
            await session.commit()

        logger.debug("Recorded %s %s entry %s", channel, status.value, log_id)
        return log_id

    async def get_by_id(self, channel: str, log_id: str) -> DeliveryLogEntry | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeliveryLogModel).where(
                    DeliveryLogModel.id == log_id,
                    DeliveryLogModel.channel == channel,
                )
            )
            model = result.scalar_one_or_none()
            return _to_entry(model) if model else None

    async def list_recent(self, channel: str, limit: int = 50) -> list[DeliveryLogEntry]:
        if limit <= 0:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeliveryLogModel)
                .where(DeliveryLogModel.channel == channel)
                .order_by(DeliveryLogModel.created_at.desc())
                .limit(limit)
            )
            return [_to_entry(m) for m in result.scalars().all()]

    async def list_resends(self, channel: str, log_id: str) -> list[DeliveryLogEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeliveryLogModel)
                .where(
                    DeliveryLogModel.channel == channel,
                    DeliveryLogModel.resend_of == log_id,
                )
                .order_by(DeliveryLogModel.created_at)
            )
            return [_to_entry(m) for m in result.scalars().all()]
