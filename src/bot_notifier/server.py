"""HTTP surface: webhook receiver, admin actions, health and metrics.

Each request is handled in its own task by aiohttp. Components are
stateless across requests apart from the settings provider, the audit
store and the transport's rate limiter.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from aiohttp import web
from prometheus_client import generate_latest
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis

from bot_notifier import __version__
from bot_notifier.bot_settings import (
    EnvSettingsProvider,
    MutableSettingsProvider,
    RedisSettingsProvider,
    SettingsProvider,
)
from bot_notifier.config import Settings
from bot_notifier.errors import (
    InternalError,
    NotFoundError,
    NotifierError,
    UnauthorizedError,
    ValidationError,
)
from bot_notifier.messaging.channels.telegram import TelegramAPIError, TelegramChannel
from bot_notifier.messaging.dispatcher import CHANNEL_NAME, NotificationDispatcher
from bot_notifier.messaging.resend import ResendCoordinator
from bot_notifier.messaging.router import WebhookRouter
from bot_notifier.storage.base import AuditLogStore
from bot_notifier.storage.redis_store import RedisAuditLogStore
from bot_notifier.storage.sql_store import SqlAuditLogStore

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
DEFAULT_LOG_LIMIT = 50
MAX_LOG_LIMIT = 500


@dataclass
class Components:
    """Wired messaging components shared by all request handlers."""

    settings_provider: SettingsProvider
    channel: TelegramChannel
    audit_store: AuditLogStore
    dispatcher: NotificationDispatcher
    router: WebhookRouter
    resend: ResendCoordinator
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    @classmethod
    def wire(
        cls,
        settings_provider: SettingsProvider,
        channel: TelegramChannel,
        audit_store: AuditLogStore,
    ) -> Components:
        """Build the dispatcher, router and resend coordinator."""
        dispatcher = NotificationDispatcher(settings_provider, channel, audit_store)
        return cls(
            settings_provider=settings_provider,
            channel=channel,
            audit_store=audit_store,
            dispatcher=dispatcher,
            router=WebhookRouter(dispatcher, settings_provider),
            resend=ResendCoordinator(settings_provider, channel, audit_store),
        )

    async def close(self) -> None:
        for closer in self.closers:
            try:
                await closer()
            except Exception as e:
                logger.error("Error closing component: %s", e)


COMPONENTS_KEY = web.AppKey("components", Components)


async def build_components(settings: Settings) -> Components:
    """Create the storage backends, transport and messaging components."""
    closers: list[Callable[[], Awaitable[None]]] = []

    redis: Redis | None = None
    if settings.uses_redis:
        redis = Redis.from_url(settings.redis.url)
        closers.append(redis.aclose)

    settings_provider: SettingsProvider
    if settings.settings_backend == "redis" and redis is not None:
        settings_provider = RedisSettingsProvider(redis, defaults=EnvSettingsProvider())
    else:
        settings_provider = EnvSettingsProvider()

    audit_store: AuditLogStore
    if settings.audit_backend == "database" and settings.database.url:
        sql_store = SqlAuditLogStore.from_url(settings.database.url)
        await sql_store.init_schema()
        closers.append(sql_store.close)
        audit_store = sql_store
    else:
        audit_store = RedisAuditLogStore(redis)

    channel = TelegramChannel(
        api_base=settings.telegram.api_base_url,
        rate_limit_per_minute=settings.telegram.rate_limit_per_minute,
        max_retries=settings.telegram.max_retries,
        timeout=settings.telegram.request_timeout,
    )

    components = Components.wire(settings_provider, channel, audit_store)
    components.closers.extend(closers)
    logger.info(
        "Components ready (audit=%s, settings=%s)",
        settings.audit_backend,
        settings.settings_backend,
    )
    return components


# ============================================================================
# Request helpers
# ============================================================================


class PaymentConfirmationRequest(BaseModel):
    """Body of the order-completed notification hook."""

    model_config = ConfigDict(populate_by_name=True)

    customer_name: str | None = Field(default=None, alias="customerName")
    customer_telegram: str | None = Field(default=None, alias="customerTelegram")
    total_amount: Decimal = Field(alias="totalAmount", ge=0)
    order_ids: list[str] = Field(alias="orderIds", min_length=1)


async def _read_json(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _components(request: web.Request) -> Components:
    return request.app[COMPONENTS_KEY]


def _map_transport_error(e: TelegramAPIError, action: str) -> NotifierError:
    if e.is_unauthorized:
        return ValidationError(f"Invalid bot token: {e.description}")
    return InternalError(f"Failed to {action}: {e.description}", service=CHANNEL_NAME)


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Render structured errors as a JSON envelope."""
    try:
        return await handler(request)
    except NotifierError as e:
        if e.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e)
        else:
            logger.info("%s %s rejected: %s", request.method, request.path, e.message)
        body: dict[str, Any] = {"error": e.to_dict()}
        if "errors" in e.context:
            body["error"]["details"] = e.context["errors"]
        return web.json_response(body, status=e.status_code)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response(
            {
                "error": {
                    "code": 500,
                    "type": "E_INTERNAL_SERVER",
                    "message": "Internal server error",
                }
            },
            status=500,
        )


# ============================================================================
# Handlers
# ============================================================================


async def handle_webhook(request: web.Request) -> web.Response:
    """Receive one update from the chat platform."""
    components = _components(request)
    settings = await components.settings_provider.get()
    expected = settings.webhook_secret.get_secret_value()
    if expected:
        provided = request.headers.get(SECRET_HEADER, "")
        if not hmac.compare_digest(provided.encode(), expected.encode()):
            raise UnauthorizedError("Invalid webhook secret token")

    raw = await request.read()
    await components.router.handle_inbound(raw)
    return web.json_response({"ok": True})


async def handle_webhook_ping(_request: web.Request) -> web.Response:
    return web.Response(text="OK. Webhook is active.")


async def handle_verify_token(request: web.Request) -> web.Response:
    body = await _read_json(request)
    token = str(body.get("token") or "").strip()
    if not token:
        raise ValidationError("Bot token is required")

    try:
        profile = await _components(request).channel.get_me(token)
    except TelegramAPIError as e:
        raise _map_transport_error(e, "verify bot token") from e
    return web.json_response({"ok": True, "bot": profile.to_dict()})


async def handle_test_notification(request: web.Request) -> web.Response:
    result = await _components(request).dispatcher.send_test_notification()
    return web.json_response({"ok": result.delivered, **result.to_dict()})


async def handle_resend(request: web.Request) -> web.Response:
    body = await _read_json(request)
    log_id = str(body.get("logId") or "").strip()
    if not log_id:
        raise ValidationError("Log ID is required")

    result = await _components(request).resend.resend(log_id)
    return web.json_response(
        {
            "ok": True,
            "message": f"Notification {log_id} resent successfully",
            **result.to_dict(),
        }
    )


async def handle_list_logs(request: web.Request) -> web.Response:
    raw_limit = request.query.get("limit", str(DEFAULT_LOG_LIMIT))
    try:
        limit = int(raw_limit)
    except ValueError as e:
        raise ValidationError("limit must be an integer") from e
    if not 1 <= limit <= MAX_LOG_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LOG_LIMIT}")

    entries = await _components(request).audit_store.list_recent(CHANNEL_NAME, limit)
    return web.json_response({"data": [e.to_dict() for e in entries], "meta": {"limit": limit}})


async def handle_get_log(request: web.Request) -> web.Response:
    log_id = request.match_info["log_id"]
    entry = await _components(request).audit_store.get_by_id(CHANNEL_NAME, log_id)
    if entry is None:
        raise NotFoundError(f"Log entry {log_id} was not found")
    return web.json_response({"data": entry.to_dict()})


async def handle_register_webhook(request: web.Request) -> web.Response:
    components = _components(request)
    body = await _read_json(request)
    settings = await components.settings_provider.get()

    url = str(body.get("url") or settings.manual_webhook_url or "").strip()
    if not url:
        raise ValidationError("Webhook URL is required")
    if not url.startswith("https://"):
        raise ValidationError("Webhook URL must use https://")
    if not settings.token:
        raise ValidationError("Bot token is not configured")

    secret = settings.webhook_secret.get_secret_value() or None
    try:
        await components.channel.set_webhook(settings.token, url, secret_token=secret)
    except TelegramAPIError as e:
        raise _map_transport_error(e, "register webhook") from e
    return web.json_response({"ok": True, "url": url})


async def handle_get_settings(request: web.Request) -> web.Response:
    settings = await _components(request).settings_provider.get()
    return web.json_response({"data": settings.redacted()})


async def handle_update_settings(request: web.Request) -> web.Response:
    provider = _components(request).settings_provider
    if not isinstance(provider, MutableSettingsProvider):
        raise ValidationError("Bot settings are read-only with the current settings backend")

    changes = await _read_json(request)
    if not changes:
        raise ValidationError("No settings to update")
    updated = await provider.update(changes)
    return web.json_response({"data": updated.redacted()})


async def handle_payment_confirmation(request: web.Request) -> web.Response:
    body = await _read_json(request)
    try:
        payload = PaymentConfirmationRequest.model_validate(body)
    except PydanticValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid payment confirmation", context={"errors": errors}) from e

    result = await _components(request).dispatcher.send_payment_confirmation(
        customer_name=payload.customer_name,
        customer_telegram=payload.customer_telegram,
        total_amount=payload.total_amount,
        order_ids=payload.order_ids,
    )
    if result is None:
        return web.json_response({"ok": True, "sent": False})
    return web.json_response({"ok": result.delivered, "sent": True, **result.to_dict()})


async def handle_health(_request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "version": __version__})


async def handle_live(_request: web.Request) -> web.Response:
    return web.json_response({"live": True})


async def handle_metrics(_request: web.Request) -> web.Response:
    """Prometheus text exposition."""
    return web.Response(body=generate_latest(), content_type="text/plain", charset="utf-8")


def create_app(components: Components) -> web.Application:
    """Create the aiohttp application around wired components."""
    app = web.Application(middlewares=[error_middleware])
    app[COMPONENTS_KEY] = components

    app.router.add_post("/telegram/webhook", handle_webhook)
    app.router.add_get("/telegram/webhook", handle_webhook_ping)
    app.router.add_post("/telegram/webhook/register", handle_register_webhook)
    app.router.add_post("/telegram/verify-token", handle_verify_token)
    app.router.add_post("/telegram/test-notification", handle_test_notification)
    app.router.add_post("/telegram/resend", handle_resend)
    app.router.add_get("/telegram/logs", handle_list_logs)
    app.router.add_get("/telegram/logs/{log_id}", handle_get_log)
    app.router.add_get("/telegram/settings", handle_get_settings)
    app.router.add_put("/telegram/settings", handle_update_settings)
    app.router.add_post("/notifications/payment-confirmation", handle_payment_confirmation)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/live", handle_live)
    app.router.add_get("/metrics", handle_metrics)
    return app


class NotifierServer:
    """Runs the HTTP application until stopped.

    Example:
        ```python
        server = NotifierServer(get_settings())
        await server.start()
        ...
        await server.stop()
        ```
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._components: Components | None = None
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Build components and start listening."""
        if self._runner:
            logger.warning("HTTP server already running")
            return

        self._components = await build_components(self.settings)
        app = create_app(self._components)
        self._runner = web.AppRunner(app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.settings.http_host, self.settings.http_port)
        await site.start()
        logger.info(
            "HTTP server started on %s:%d", self.settings.http_host, self.settings.http_port
        )

    async def stop(self) -> None:
        """Stop the HTTP server and close storage connections."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")
        if self._components:
            await self._components.close()
            self._components = None
