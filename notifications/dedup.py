"""Deduplication cache for dispatch requests."""

from dataclasses import dataclass
import structlog
from data.cache import TTLCache
from utils.time_utils import Clock, SystemClock

log = structlog.get_logger(__name__)

DEFAULT_DEDUP_TTL_MS = 3_600_000  # 1 hour


@dataclass(frozen=True)
class DeduplicationEntry:
    key: str
    task_id: str
    inserted_at: int


class DeduplicationCache:
    """Remembers dedup keys of accepted tasks until their TTL passes."""

    def __init__(
        self,
        ttl_ms: int = DEFAULT_DEDUP_TTL_MS,
        clock: Clock | None = None,
        store: TTLCache | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._ttl_ms = ttl_ms
        self._store = store or TTLCache(self._clock)

    def is_duplicate(self, key: str) -> bool:
        return self._store.contains(key)

    def accept(self, key: str, task_id: str) -> bool:
        """Store ``key`` and return True, or return False if it is still live."""
        existing = self._store.get(key)
        if existing is not None:
            log.warning("duplicate_rejected", key=key, original_task=existing.task_id)
            return False
        entry = DeduplicationEntry(key=key, task_id=task_id, inserted_at=self._clock.now_ms())
        self._store.set(key, entry, self._ttl_ms)
        return True

    def get(self, key: str) -> DeduplicationEntry | None:
        return self._store.get(key)

    def sweep(self) -> int:
        """Evict expired keys. Returns how many were removed."""
        removed = self._store.cleanup()
        if removed:
            log.debug("dedup_swept", removed=removed, remaining=len(self._store))
        return removed

    def __len__(self) -> int:
        return len(self._store)
