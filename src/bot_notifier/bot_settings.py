"""Operator-editable bot settings and the providers that supply them.

A ``BotSettings`` value is an immutable snapshot. Providers build a new
snapshot on every ``get()`` call; nothing here caches settings between
operations, because an operator may change them between a send and a
later resend.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic import ValidationError as PydanticValidationError

from bot_notifier.config import ParseMode, TelegramSettings
from bot_notifier.errors import ValidationError

logger = logging.getLogger(__name__)

# Fields an operator may change through a mutable provider.
EDITABLE_FIELDS = frozenset(
    {
        "bot_token",
        "default_chat_id",
        "webhook_secret",
        "templates",
        "notify_on_payment_confirmation",
        "manual_webhook_url",
        "parse_mode",
    }
)


class BotSettings(BaseModel):
    """Snapshot of the bot configuration used for one operation."""

    model_config = ConfigDict(frozen=True)

    bot_token: SecretStr = SecretStr("")
    default_chat_id: str = ""
    webhook_secret: SecretStr = SecretStr("")
    templates: dict[str, str] = Field(default_factory=dict)
    notify_on_payment_confirmation: bool = False
    manual_webhook_url: str | None = None
    parse_mode: ParseMode = "Markdown"

    @classmethod
    def from_telegram_settings(cls, settings: TelegramSettings) -> BotSettings:
        """Build a snapshot from environment-backed Telegram settings."""
        return cls(
            bot_token=settings.bot_token,
            default_chat_id=settings.chat_id,
            webhook_secret=settings.webhook_secret,
            templates=settings.merged_templates(),
            notify_on_payment_confirmation=settings.notify_on_payment_confirmation,
            manual_webhook_url=settings.webhook_url,
            parse_mode=settings.parse_mode,
        )

    @property
    def token(self) -> str:
        """Plain bot token, empty when not configured."""
        return self.bot_token.get_secret_value()

    def template(self, key: str) -> str:
        """Template text for a key, empty when the key is unknown."""
        return self.templates.get(key, "")

    def redacted(self) -> dict[str, Any]:
        """Settings as a dict with secrets masked."""
        return {
            "bot_token": "(set)" if self.token else "(not set)",
            "default_chat_id": self.default_chat_id,
            "webhook_secret": "(set)" if self.webhook_secret.get_secret_value() else "(not set)",
            "templates": dict(self.templates),
            "notify_on_payment_confirmation": self.notify_on_payment_confirmation,
            "manual_webhook_url": self.manual_webhook_url,
            "parse_mode": self.parse_mode,
        }


class SettingsProvider(Protocol):
    """Supplies a fresh ``BotSettings`` snapshot per call."""

    async def get(self) -> BotSettings:
        """Return the current settings."""
        ...


@runtime_checkable
class MutableSettingsProvider(SettingsProvider, Protocol):
    """A settings provider that also accepts operator changes."""

    async def update(self, changes: dict[str, Any]) -> BotSettings:
        """Apply changes and return the resulting settings."""
        ...


class EnvSettingsProvider:
    """Reads bot settings from the environment on every call."""

    async def get(self) -> BotSettings:
        return BotSettings.from_telegram_settings(TelegramSettings())


class RedisSettingsProvider:
    """Reads bot settings from a Redis hash, overlaid on env defaults.

    Hash fields hold plain strings; ``templates`` is a JSON object and
    ``notify_on_payment_confirmation`` is ``"1"`` or ``"0"``.
    """

    DEFAULT_KEY = "bot:settings"

    def __init__(
        self,
        redis: Any,
        *,
        defaults: SettingsProvider | None = None,
        key: str = DEFAULT_KEY,
    ) -> None:
        """Initialize the provider.

        Args:
            redis: Redis client (async).
            defaults: Provider for values absent from the hash.
            key: Redis hash key.
        """
        self.redis = redis
        self.defaults = defaults or EnvSettingsProvider()
        self.key = key

    async def get(self) -> BotSettings:
        base = await self.defaults.get()
        raw = await self.redis.hgetall(self.key)
        if not raw:
            return base

        stored = _decode_hash(raw)
        values = base.model_dump()
        for name, value in stored.items():
            if name not in EDITABLE_FIELDS:
                continue
            if name == "templates":
                try:
                    values["templates"] = {**base.templates, **json.loads(value)}
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed templates in %s", self.key)
            elif name == "notify_on_payment_confirmation":
                values[name] = value == "1"
            elif name == "manual_webhook_url":
                values[name] = value or None
            else:
                values[name] = value

        try:
            return BotSettings.model_validate(values)
        except PydanticValidationError as e:
            defaults = base.model_dump()
            for err in e.errors():
                name = str(err["loc"][0])
                logger.warning("Ignoring invalid %s in %s: %s", name, self.key, err["msg"])
                values[name] = defaults[name]
            return BotSettings.model_validate(values)

    async def update(self, changes: dict[str, Any]) -> BotSettings:
        """Validate and persist operator changes.

        Args:
            changes: Mapping of editable field name to new value.

        Returns:
            The settings snapshot after the update.

        Raises:
            ValidationError: If a field is unknown or a value is invalid.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown settings field(s): {', '.join(sorted(unknown))}"
            )

        current = await self.get()
        merged = {**current.model_dump(), **changes}
        try:
            updated = BotSettings.model_validate(merged)
        except PydanticValidationError as e:
            errors = [
                {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError("Invalid bot settings", context={"errors": errors}) from e

        mapping: dict[str, str] = {}
        for name in changes:
            if name == "templates":
                mapping[name] = json.dumps(updated.templates)
            elif name == "notify_on_payment_confirmation":
                mapping[name] = "1" if updated.notify_on_payment_confirmation else "0"
            elif name in ("bot_token", "webhook_secret"):
                mapping[name] = getattr(updated, name).get_secret_value()
            else:
                mapping[name] = getattr(updated, name) or ""
        await self.redis.hset(self.key, mapping=mapping)

        logger.info("Updated bot settings fields: %s", ", ".join(sorted(mapping)))
        return updated


def _decode_hash(raw: dict[bytes | str, bytes | str]) -> dict[str, str]:
    decoded: dict[str, str] = {}
    for k, v in raw.items():
        key = k.decode() if isinstance(k, bytes) else k
        decoded[key] = v.decode() if isinstance(v, bytes) else v
    return decoded
