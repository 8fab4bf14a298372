"""Data models for the messaging pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

RESEND_LABEL = " (resend)"


# ============================================================================
# Inbound webhook payloads
# ============================================================================


class InboundUser(BaseModel):
    """Sender of an inbound message."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    is_bot: bool
    first_name: str
    username: str | None = None


class InboundChat(BaseModel):
    """Chat an inbound message was posted in."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    first_name: str
    type: str
    username: str | None = None


class InboundMessage(BaseModel):
    """One chat message delivered by the platform webhook.

    Lives only for the duration of one request and is never persisted.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    message_id: int
    sender: InboundUser = Field(alias="from")
    chat: InboundChat
    date: int
    text: str | None = None


class InboundUpdate(BaseModel):
    """Top-level bot update wrapping a message."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    update_id: int
    message: InboundMessage | None = None
    edited_message: InboundMessage | None = None

    @property
    def effective_message(self) -> InboundMessage | None:
        """The message to act on, if the update carries one."""
        return self.message or self.edited_message


# ============================================================================
# Delivery audit
# ============================================================================


class DeliveryStatus(str, Enum):
    """Outcome of one delivery attempt."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class NotificationContext:
    """Per-call metadata carried alongside a send or resend.

    Attributes:
        event_type: Human-readable label for the audit trail.
        chat_id: Destination override; takes precedence over the default
            destination from bot settings when set.
        resend_of: Id of the original entry when this attempt is a resend.
        metadata: Free-form caller data (e.g. order ids).
    """

    event_type: str
    chat_id: str | None = None
    resend_of: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_resend(self) -> bool:
        return self.resend_of is not None

    def as_resend_of(self, log_id: str) -> NotificationContext:
        """Copy of this context labelled as a resend of ``log_id``."""
        event_type = self.event_type
        if not event_type.endswith(RESEND_LABEL):
            event_type = f"{event_type}{RESEND_LABEL}"
        return replace(self, event_type=event_type, resend_of=log_id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for storage."""
        return {
            "event_type": self.event_type,
            "chat_id": self.chat_id,
            "resend_of": self.resend_of,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> NotificationContext:
        """Deserialize from dictionary."""
        data = data or {}
        chat_id = data.get("chat_id")
        return cls(
            event_type=str(data.get("event_type", "")),
            chat_id=str(chat_id) if chat_id not in (None, "") else None,
            resend_of=data.get("resend_of"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class DeliveryLogEntry:
    """Immutable record of one delivery attempt.

    Attributes:
        id: Generated unique identifier.
        channel: Delivery channel name (e.g. "telegram").
        status: Outcome of the attempt.
        message: The exact rendered text that was attempted.
        context: Notification context of the attempt.
        error: Upstream or diagnostic error description on failure.
        created_at: Server timestamp of the attempt.
    """

    id: str
    channel: str
    status: DeliveryStatus
    message: str
    context: NotificationContext
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_success(self) -> bool:
        return self.status is DeliveryStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for storage."""
        return {
            "id": self.id,
            "channel": self.channel,
            "status": self.status.value,
            "message": self.message,
            "context": self.context.to_dict(),
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeliveryLogEntry:
        """Deserialize from dictionary."""
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        elif created_at is None:
            created_at = datetime.now(UTC)

        return cls(
            id=data["id"],
            channel=data["channel"],
            status=DeliveryStatus(data["status"]),
            message=data.get("message", ""),
            context=NotificationContext.from_dict(data.get("context")),
            error=data.get("error"),
            created_at=created_at,
        )
