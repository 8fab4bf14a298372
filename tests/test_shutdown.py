"""Tests for graceful shutdown handling."""

import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock

import pytest

from bot_notifier.shutdown import GracefulShutdown


class TestGracefulShutdown:
    """Tests for GracefulShutdown."""

    def test_initial_state(self) -> None:
        shutdown = GracefulShutdown()
        assert shutdown.is_shutdown_requested is False

    @pytest.mark.asyncio
    async def test_request_shutdown_releases_wait(self) -> None:
        shutdown = GracefulShutdown()

        async with shutdown:
            waiter = asyncio.create_task(shutdown.wait())
            await asyncio.sleep(0)
            shutdown.request_shutdown()
            await asyncio.wait_for(waiter, timeout=1.0)

        assert shutdown.is_shutdown_requested is True

    @pytest.mark.asyncio
    async def test_wait_after_request_returns_immediately(self) -> None:
        shutdown = GracefulShutdown()
        shutdown.request_shutdown()
        await asyncio.wait_for(shutdown.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_signal_sets_shutdown(self) -> None:
        shutdown = GracefulShutdown()

        async with shutdown:
            shutdown._handle_signal(signal.SIGTERM)
            await asyncio.wait_for(shutdown.wait(), timeout=1.0)

        assert shutdown.is_shutdown_requested is True

    @pytest.mark.asyncio
    async def test_second_signal_forces_exit(self) -> None:
        shutdown = GracefulShutdown()

        async with shutdown:
            shutdown._handle_signal(signal.SIGINT)
            with pytest.raises(SystemExit) as exc_info:
                shutdown._handle_signal(signal.SIGINT)

        assert exc_info.value.code == 128 + signal.SIGINT.value

    @pytest.mark.asyncio
    async def test_cleanup_callbacks_run_on_exit(self) -> None:
        shutdown = GracefulShutdown()
        sync_cb = MagicMock()
        async_cb = AsyncMock()
        failing_cb = MagicMock(side_effect=RuntimeError("boom"))

        async with shutdown:
            shutdown.register_cleanup(failing_cb)
            shutdown.register_cleanup(sync_cb)
            shutdown.register_cleanup(async_cb)

        failing_cb.assert_called_once()
        sync_cb.assert_called_once()
        async_cb.assert_awaited_once()
