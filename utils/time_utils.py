"""Clocks, epoch-millisecond helpers and quiet-hours handling."""

import asyncio
import time
from datetime import UTC, datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Time source for schedulers and caches. Times are epoch milliseconds."""

    def now_ms(self) -> int: ...

    async def sleep_ms(self, ms: float) -> None: ...


class SystemClock:
    """Wall-clock time and real sleeps."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    async def sleep_ms(self, ms: float) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000)


class ManualClock:
    """Clock that only moves when told to. Sleeping advances it instantly."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now = start_ms
        self.slept_ms: list[float] = []

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: float) -> None:
        self._now += int(ms)

    def set(self, ms: int) -> None:
        self._now = ms

    async def sleep_ms(self, ms: float) -> None:
        self.slept_ms.append(ms)
        if ms > 0:
            self.advance(ms)
        await asyncio.sleep(0)


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


def from_ms(ms: int | None) -> datetime | None:
    """Epoch milliseconds to an aware UTC datetime."""
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def to_ms(dt: datetime | None) -> int | None:
    """Aware (or naive UTC) datetime to epoch milliseconds."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def next_send_time(
    now: int,
    tz_name: str,
    quiet_start: int = 22,
    quiet_end: int = 8,
) -> int:
    """Defer ``now`` to ``quiet_end`` o'clock local time if inside quiet hours."""
    local = datetime.fromtimestamp(now / 1000, tz=ZoneInfo(tz_name))
    hour = local.hour
    if quiet_start > quiet_end:
        in_quiet = hour >= quiet_start or hour < quiet_end
    else:
        in_quiet = quiet_start <= hour < quiet_end
    if not in_quiet:
        return now

    target = local.replace(hour=quiet_end, minute=0, second=0, microsecond=0)
    if target <= local:
        target += timedelta(days=1)
    return int(target.timestamp() * 1000)


def format_duration(ms: int) -> str:
    """Human-readable uptime string."""
    seconds = ms // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"
