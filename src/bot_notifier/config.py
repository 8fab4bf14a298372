"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
bot notifier service, loading and validating environment variables
at startup.

Process settings are loaded once. Operator-editable bot settings
(token, destination, templates) are re-read on every operation through
a settings provider, see ``bot_notifier.bot_settings``.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ParseMode = Literal["Markdown", "MarkdownV2", "HTML"]

DEFAULT_TEMPLATES: dict[str, str] = {
    "start-reply": "Halo {{name}}! Bot aktif dan siap menerima perintah.",
    "default-echo": (
        'Terima kasih atas pesan Anda, "{{message}}". '
        "Tim kami akan segera merespons jika diperlukan."
    ),
    "test-notification": (
        "✅ Ini adalah pesan tes. Konfigurasi bot dengan ID obrolan "
        "`{{chatId}}` sudah benar!"
    ),
    "payment-confirmation": (
        "*Pembayaran dikonfirmasi*\n"
        "Pelanggan: {{customerName}} (@{{customerTelegram}})\n"
        "Jumlah pesanan: {{orderCount}}\n"
        "Total: Rp {{totalAmount}}\n"
        "Pesanan: {{#each orderIds}}{{this}} {{/each}}"
    ),
}


class TelegramSettings(BaseSettings):
    """Telegram bot settings.

    The operator-editable fields double as the defaults for
    ``BotSettings`` snapshots.
    """

    model_config = SettingsConfigDict(
        env_prefix="TELEGRAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    bot_token: SecretStr = Field(
        default=SecretStr(""),
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_id: str = Field(
        default="",
        alias="TELEGRAM_CHAT_ID",
        description="Default destination chat ID for notifications",
    )
    webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        alias="TELEGRAM_WEBHOOK_SECRET",
        description="Secret token expected on inbound webhook requests",
    )
    templates: dict[str, str] = Field(
        default_factory=dict,
        alias="TELEGRAM_TEMPLATES",
        description="JSON object of template key to template text",
    )
    notify_on_payment_confirmation: bool = Field(
        default=False,
        alias="TELEGRAM_NOTIFY_ON_PAYMENT_CONFIRMATION",
        description="Send a notification when an order payment is confirmed",
    )
    webhook_url: str | None = Field(
        default=None,
        alias="TELEGRAM_WEBHOOK_URL",
        description="Manual webhook URL to register with Telegram",
    )
    parse_mode: ParseMode = Field(
        default="Markdown",
        alias="TELEGRAM_PARSE_MODE",
        description="Markup mode for outgoing messages",
    )
    api_base_url: str = Field(
        default="https://api.telegram.org",
        alias="TELEGRAM_API_BASE_URL",
        description="Telegram Bot API base URL",
    )
    request_timeout: float = Field(
        default=10.0,
        alias="TELEGRAM_REQUEST_TIMEOUT",
        description="Timeout in seconds for every Bot API request",
        gt=0,
    )
    rate_limit_per_minute: int = Field(
        default=20,
        alias="TELEGRAM_RATE_LIMIT_PER_MINUTE",
        description="Maximum outbound Bot API requests per rolling minute",
        ge=1,
    )
    max_retries: int = Field(
        default=3,
        alias="TELEGRAM_MAX_RETRIES",
        description="Retries after a 429 response within one delivery attempt",
        ge=0,
    )

    @field_validator("webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: str | None) -> str | None:
        """Telegram only delivers webhooks to HTTPS endpoints."""
        if not v:
            return None
        if not v.startswith("https://"):
            raise ValueError("TELEGRAM_WEBHOOK_URL must be an https:// URL")
        return v

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, v: str) -> str:
        """Validate Bot API base URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("TELEGRAM_API_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are fully configured."""
        return bool(self.bot_token.get_secret_value()) and bool(self.chat_id)

    def merged_templates(self) -> dict[str, str]:
        """Built-in templates overlaid with the configured ones."""
        return {**DEFAULT_TEMPLATES, **self.templates}


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class DatabaseSettings(BaseSettings):
    """Database connection settings for the SQL audit log."""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    url: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="PostgreSQL (asyncpg) or SQLite (aiosqlite) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate database URL format."""
        if v is None:
            return v
        if not v.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must use postgresql+asyncpg:// or sqlite+aiosqlite://"
            )
        return v


class Settings(BaseSettings):
    """Main application settings.

    Example:
        ```python
        from bot_notifier.config import get_settings

        settings = get_settings()
        print(settings.telegram.chat_id)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    audit_backend: Literal["redis", "database"] = Field(
        default="redis",
        alias="AUDIT_BACKEND",
        description="Where delivery audit entries are stored",
    )
    settings_backend: Literal["env", "redis"] = Field(
        default="env",
        alias="SETTINGS_BACKEND",
        description="Where operator-editable bot settings are read from",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    http_host: str = Field(
        default="0.0.0.0",
        alias="HTTP_HOST",
        description="Interface the HTTP server binds to",
    )
    http_port: int = Field(
        default=8080,
        alias="HTTP_PORT",
        description="HTTP port for webhook and admin endpoints",
        ge=1,
        le=65535,
    )

    @model_validator(mode="after")
    def validate_audit_backend(self) -> Settings:
        """The database audit backend needs a database URL."""
        if self.audit_backend == "database" and not self.database.url:
            raise ValueError("AUDIT_BACKEND=database requires DATABASE_URL")
        return self

    @property
    def uses_redis(self) -> bool:
        """Whether any configured backend needs a Redis connection."""
        return self.audit_backend == "redis" or self.settings_backend == "redis"

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "telegram_bot_token": "(set)" if self.telegram.bot_token.get_secret_value() else "(not set)",
            "telegram_chat_id": self.telegram.chat_id or "(not set)",
            "telegram_webhook_secret": (
                "(set)" if self.telegram.webhook_secret.get_secret_value() else "(not set)"
            ),
            "telegram_webhook_url": self.telegram.webhook_url or "(not set)",
            "telegram_request_timeout": str(self.telegram.request_timeout),
            "redis_url": self._redact_url(self.redis.url),
            "database_url": self._redact_url(self.database.url) if self.database.url else "(not set)",
            "audit_backend": self.audit_backend,
            "settings_backend": self.settings_backend,
            "log_level": self.log_level,
            "http": f"{self.http_host}:{self.http_port}",
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
