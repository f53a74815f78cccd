"""Signal handling and ordered cleanup for the monitor service.

Usage:
    ```python
    async with GracefulShutdown(timeout=30.0) as shutdown:
        shutdown.register_cleanup(pipeline.stop)
        await pipeline.start()
        await shutdown.wait()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from contextlib import suppress
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT = 30.0

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)

CleanupCallback = Callable[[], Any]


class GracefulShutdown:
    """Traps SIGTERM/SIGINT and runs cleanup callbacks on exit.

    The first signal sets the shutdown event; a second one exits the
    process immediately. Cleanup callbacks run in reverse registration
    order, each bounded by what is left of the shutdown timeout.
    """

    def __init__(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        """Initialize the shutdown handler.

        Args:
            timeout: Total seconds allowed for cleanup callbacks.
        """
        self._timeout = timeout
        self._event: asyncio.Event | None = None
        self._requested = False
        self._force_exit_requested = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._fallback_handlers: dict[signal.Signals, Any] = {}
        self._cleanup_callbacks: list[CleanupCallback] = []

    @property
    def timeout(self) -> float:
        """Cleanup timeout in seconds."""
        return self._timeout

    @property
    def is_shutdown_requested(self) -> bool:
        return self._requested

    @property
    def is_force_exit_requested(self) -> bool:
        return self._force_exit_requested

    def _ensure_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._requested:
                self._event.set()
        return self._event

    def register_cleanup(self, callback: CleanupCallback) -> None:
        """Register a sync or async callable to run on shutdown."""
        self._cleanup_callbacks.append(callback)

    def request_shutdown(self) -> None:
        """Request shutdown from application code."""
        if self._requested:
            return
        self._requested = True
        logger.info("Shutdown requested")
        if self._event is not None:
            self._event.set()

    async def wait(self) -> None:
        """Block until shutdown is requested."""
        await self._ensure_event().wait()

    def install_signal_handlers(self) -> None:
        """Trap shutdown signals on the running loop."""
        self._loop = asyncio.get_running_loop()
        self._ensure_event()
        for sig in SHUTDOWN_SIGNALS:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
            except NotImplementedError:
                # Event loops without add_signal_handler (Windows)
                self._fallback_handlers[sig] = signal.signal(sig, self._handle_signal_sync)
            except (ValueError, OSError) as e:
                logger.warning("Could not install handler for %s: %s", sig.name, e)
        logger.debug("Signal handlers installed")

    def remove_signal_handlers(self) -> None:
        """Restore default signal handling."""
        if self._loop is not None:
            for sig in SHUTDOWN_SIGNALS:
                with suppress(ValueError, OSError, NotImplementedError):
                    self._loop.remove_signal_handler(sig)
        for sig, original in self._fallback_handlers.items():
            with suppress(ValueError, OSError):
                signal.signal(sig, original)
        self._fallback_handlers.clear()
        logger.debug("Signal handlers removed")

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._requested:
            self._force_exit_requested = True
            logger.warning("Received %s again, forcing exit", sig.name)
            sys.exit(128 + sig.value)
        logger.info("Received %s, shutting down", sig.name)
        self.request_shutdown()

    def _handle_signal_sync(self, sig: int, _frame: FrameType | None) -> None:
        self._handle_signal(signal.Signals(sig))

    async def run_cleanup_callbacks(self) -> None:
        """Run cleanup callbacks, newest first, within the timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while self._cleanup_callbacks:
            callback = self._cleanup_callbacks.pop()
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.error(
                    "Shutdown timeout exceeded, %d cleanup callbacks skipped",
                    len(self._cleanup_callbacks) + 1,
                )
                self._cleanup_callbacks.clear()
                return
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await asyncio.wait_for(result, timeout=remaining)
            except TimeoutError:
                logger.error("Cleanup callback %r timed out", callback)
            except Exception as e:
                logger.error("Cleanup callback %r failed: %s", callback, e)

    async def __aenter__(self) -> GracefulShutdown:
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: object) -> None:
        self.remove_signal_handlers()
        await self.run_cleanup_callbacks()
