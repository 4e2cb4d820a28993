"""Rolling-window throughput limiter for recipient deliveries."""

from collections import deque
from config.constants import RATE_WINDOW_MS
from utils.time_utils import Clock, SystemClock


class ThroughputLimiter:
    """Counts delivered recipients over a rolling window.

    Never blocks: the scheduler asks how much budget is left and backs off
    itself when it runs out.
    """

    def __init__(
        self,
        limit: int,
        window_ms: int = RATE_WINDOW_MS,
        clock: Clock | None = None,
    ) -> None:
        self.limit = limit
        self.window_ms = window_ms
        self._clock = clock or SystemClock()
        self._events: deque[tuple[int, int]] = deque()  # (timestamp, recipient count)
        self._used = 0
        self.hits = 0

    def _evict(self) -> None:
        cutoff = self._clock.now_ms() - self.window_ms
        while self._events and self._events[0][0] <= cutoff:
            _, count = self._events.popleft()
            self._used -= count

    def used(self) -> int:
        self._evict()
        return self._used

    def remaining(self) -> int:
        return max(0, self.limit - self.used())

    def can_send(self, count: int = 1) -> bool:
        """True if ``count`` more recipients fit into the current window."""
        if count <= self.remaining():
            return True
        self.hits += 1
        return False

    def record(self, count: int) -> None:
        if count <= 0:
            return
        self._events.append((self._clock.now_ms(), count))
        self._used += count

    def get_usage(self) -> dict[str, int]:
        return {"used": self.used(), "limit": self.limit, "hits": self.hits}
