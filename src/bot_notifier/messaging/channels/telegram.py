"""Telegram Bot API channel implementation."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.telegram.org"
DEFAULT_RATE_LIMIT_PER_MINUTE = 20
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 3


class TelegramAPIError(Exception):
    """Raised when a Bot API call fails.

    Attributes:
        description: Provider error description, or the local failure reason.
        error_code: Provider error code, None for network failures.
        retry_after: Seconds the provider asked us to wait, for 429 responses.
    """

    def __init__(
        self,
        description: str,
        *,
        error_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(description)
        self.description = description
        self.error_code = error_code
        self.retry_after = retry_after

    @property
    def is_unauthorized(self) -> bool:
        """True when the provider rejected the bot token."""
        return self.error_code in (401, 404)


@dataclass(frozen=True)
class BotProfile:
    """Bot identity returned by ``getMe``."""

    id: int
    is_bot: bool
    first_name: str
    username: str | None = None
    can_join_groups: bool | None = None
    can_read_all_group_messages: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BotProfile:
        """Create a BotProfile from a ``getMe`` result."""
        return cls(
            id=int(data["id"]),
            is_bot=bool(data.get("is_bot", True)),
            first_name=str(data.get("first_name", "")),
            username=data.get("username"),
            can_join_groups=data.get("can_join_groups"),
            can_read_all_group_messages=data.get("can_read_all_group_messages"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "is_bot": self.is_bot,
            "first_name": self.first_name,
            "username": self.username,
            "can_join_groups": self.can_join_groups,
            "can_read_all_group_messages": self.can_read_all_group_messages,
        }


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per rolling ``window_seconds``.

    Callers over the limit are delayed until the oldest request in the
    window expires.
    """

    def __init__(self, max_requests: int, window_seconds: float = 60.0) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests: Requests allowed per window.
            window_seconds: Length of the rolling window.
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._request_times: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        while self._request_times and now - self._request_times[0] >= self.window_seconds:
            self._request_times.popleft()

    async def acquire(self) -> None:
        """Wait until a request slot is available, then take it."""
        async with self._lock:
            while True:
                now = time.monotonic()
                self._evict(now)
                if len(self._request_times) < self.max_requests:
                    self._request_times.append(now)
                    return
                wait_time = self.window_seconds - (now - self._request_times[0])
                logger.debug("Telegram rate limit hit, waiting %.2fs", wait_time)
                await asyncio.sleep(max(wait_time, 0.0))

    @property
    def in_window(self) -> int:
        """Number of requests currently counted in the window."""
        self._evict(time.monotonic())
        return len(self._request_times)


class TelegramChannel:
    """Telegram Bot API client used for all outbound calls.

    The bot token is passed per call because it comes from the settings
    snapshot of the calling operation. Every request is bounded by
    ``timeout`` and goes through a shared sliding-window limiter.
    """

    name = "telegram"

    def __init__(
        self,
        *,
        api_base: str = DEFAULT_API_BASE,
        rate_limit_per_minute: int = DEFAULT_RATE_LIMIT_PER_MINUTE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize Telegram channel.

        Args:
            api_base: Bot API base URL.
            rate_limit_per_minute: Maximum requests per rolling minute.
            max_retries: Retries after a 429 response within one call.
            timeout: HTTP request timeout in seconds.
        """
        self.api_base = api_base.rstrip("/")
        self.rate_limit_per_minute = rate_limit_per_minute
        self.max_retries = max_retries
        self.timeout = timeout
        self.limiter = SlidingWindowRateLimiter(rate_limit_per_minute, 60.0)

    def _method_url(self, token: str, method: str) -> str:
        return f"{self.api_base}/bot{token}/{method}"

    async def _call(self, token: str, method: str, payload: dict[str, Any]) -> Any:
        """Call a Bot API method and return its ``result``.

        Raises:
            TelegramAPIError: On a non-ok response, timeout or network error,
                or when 429 responses persist past ``max_retries``.
        """
        url = self._method_url(token, method)

        for attempt in range(self.max_retries + 1):
            await self.limiter.acquire()
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload)
                    result = response.json()
            except httpx.TimeoutException as e:
                logger.warning("Telegram %s timed out after %.1fs", method, self.timeout)
                raise TelegramAPIError(f"Request timed out after {self.timeout}s") from e
            except httpx.HTTPError as e:
                logger.error("Telegram %s transport error: %s", method, e)
                raise TelegramAPIError(f"Transport error: {e}") from e
            except ValueError as e:
                raise TelegramAPIError("Malformed response from Telegram API") from e

            if result.get("ok"):
                return result.get("result")

            error_code = result.get("error_code")
            description = result.get("description", "Unknown error")

            if error_code == 429:
                retry_after = float((result.get("parameters") or {}).get("retry_after", 1))
                if attempt < self.max_retries:
                    logger.warning(
                        "Telegram rate limited on %s, retry after %ss", method, retry_after
                    )
                    await asyncio.sleep(retry_after)
                    continue
                raise TelegramAPIError(description, error_code=429, retry_after=retry_after)

            logger.error("Telegram API error on %s: %s - %s", method, error_code, description)
            raise TelegramAPIError(description, error_code=error_code)

        # max_retries >= 0 means the loop always returns or raises
        raise TelegramAPIError("Telegram API call was not attempted")

    async def send_message(
        self,
        token: str,
        chat_id: str,
        text: str,
        *,
        parse_mode: str | None = "Markdown",
    ) -> int | None:
        """Send a text message.

        Args:
            token: Bot token.
            chat_id: Destination chat ID.
            text: Message text.
            parse_mode: Markup mode, or None for plain text.

        Returns:
            The provider's message id, when reported.
        """
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        result = await self._call(token, "sendMessage", payload)
        logger.info("Telegram message delivered to chat %s", chat_id)
        if isinstance(result, dict) and "message_id" in result:
            return int(result["message_id"])
        return None

    async def get_me(self, token: str) -> BotProfile:
        """Fetch the bot profile, which also verifies the token."""
        result = await self._call(token, "getMe", {})
        return BotProfile.from_dict(result)

    async def set_webhook(self, token: str, url: str, *, secret_token: str | None = None) -> bool:
        """Register the webhook URL the platform should post updates to."""
        payload: dict[str, Any] = {"url": url, "allowed_updates": ["message", "edited_message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        result = await self._call(token, "setWebhook", payload)
        logger.info("Telegram webhook registered at %s", url)
        return bool(result)
