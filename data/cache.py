"""In-memory TTL store."""

from typing import Any
from utils.time_utils import Clock, SystemClock


class TTLCache:
    """In-memory map with per-key TTL.

    Expired entries are hidden from reads immediately but only released by
    ``cleanup()``, which owners call on their own schedule.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._store: dict[str, tuple[Any, int]] = {}

    def get(self, key: str) -> Any | None:
        """Get a cached value, or None if expired/missing."""
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock.now_ms() >= expires_at:
            return None
        return value

    def set(self, key: str, value: Any, ttl_ms: int) -> None:
        """Set a value with TTL in milliseconds."""
        self._store[key] = (value, self._clock.now_ms() + ttl_ms)

    def contains(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        """Remove a key."""
        self._store.pop(key, None)

    def clear(self) -> None:
        """Clear all entries."""
        self._store.clear()

    def cleanup(self) -> int:
        """Remove expired entries. Returns count of removed entries."""
        now = self._clock.now_ms()
        expired = [k for k, (_, exp) in self._store.items() if now >= exp]
        for k in expired:
            del self._store[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)
