"""Fixed-interval ticker driving an async callback."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any
import structlog

log = structlog.get_logger(__name__)


class Ticker:
    """Runs ``callback`` every ``interval_ms`` until stopped.

    A slow callback delays the next tick rather than overlapping it. Errors
    raised by the callback are logged and the loop keeps going.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        interval_ms: int,
        name: str = "ticker",
        run_immediately: bool = False,
    ) -> None:
        self._callback = callback
        self.interval_ms = interval_ms
        self.name = name
        self.run_immediately = run_immediately
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.ticks = 0

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop on the running event loop. No-op if already running."""
        if self.is_running():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        log.info("ticker_started", ticker=self.name, interval_ms=self.interval_ms)

    def stop(self) -> None:
        if not self.is_running():
            return
        self._stop_event.set()
        self._task.cancel()  # type: ignore[union-attr]
        self._task = None
        log.info("ticker_stopped", ticker=self.name, ticks=self.ticks)

    def set_interval(self, interval_ms: int) -> None:
        """Change the interval, restarting the loop if it is running."""
        self.interval_ms = interval_ms
        if self.is_running():
            self.stop()
            self.start()

    async def _run(self) -> None:
        if self.run_immediately:
            await self._fire()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_ms / 1000)
                break
            except TimeoutError:
                pass
            await self._fire()

    async def _fire(self) -> None:
        self.ticks += 1
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("ticker_callback_error", ticker=self.name, error=str(e))
