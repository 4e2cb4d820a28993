"""User segmentation: resolve segments and order recipients by value."""

from dataclasses import dataclass
import structlog
from config.constants import (
    ACTIVE_WITHIN_DAYS,
    INACTIVE_AFTER_DAYS,
    SEGMENT_ORDER,
    Segment,
)
from data.cache import TTLCache
from notifications.config import DispatchConfig, SegmentPolicy
from storage.models import UserProfile
from storage.stores import UserProfileStore
from utils.formatting import mask_user_id
from utils.time_utils import Clock, SystemClock

log = structlog.get_logger(__name__)

_DAY_MS = 86_400_000


@dataclass
class SegmentedUsers:
    ordered_user_ids: list[str]
    primary_segment: Segment
    distribution: dict[Segment, int]


def coerce_segment(value: object, default: Segment = Segment.REGULAR) -> Segment:
    """Map a loose segment name to a Segment, falling back to ``default``."""
    if isinstance(value, Segment):
        return value
    try:
        return Segment(str(value))
    except ValueError:
        return default


class UserSegmentation:
    """Resolves users to segments through the profile store, with a TTL cache."""

    def __init__(
        self,
        profile_store: UserProfileStore,
        config: DispatchConfig | None = None,
        clock: Clock | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self._store = profile_store
        self._config = config or DispatchConfig()
        self._clock = clock or SystemClock()
        self._cache = cache or TTLCache(self._clock)

    async def resolve_segment(self, user_id: str) -> Segment:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached

        try:
            profile = await self._store.get_profile(user_id)
        except Exception as e:
            log.error("profile_lookup_failed", user_id=mask_user_id(user_id), error=str(e))
            return Segment.REGULAR

        segment = self._classify(profile)
        self._cache.set(user_id, segment, self._config.profile_cache_ttl_ms)
        return segment

    def _classify(self, profile: UserProfile | None) -> Segment:
        if profile is None:
            return Segment.REGULAR
        if profile.segment is not None:
            return coerce_segment(profile.segment)
        if profile.last_activity is None:
            return Segment.REGULAR

        idle_days = (self._clock.now_ms() - profile.last_activity) / _DAY_MS
        if idle_days <= ACTIVE_WITHIN_DAYS:
            return Segment.ACTIVE
        if idle_days > INACTIVE_AFTER_DAYS:
            return Segment.INACTIVE
        return Segment.REGULAR

    async def segment_users(
        self,
        user_ids: list[str],
        requested_segment: Segment | str = Segment.REGULAR,
    ) -> SegmentedUsers:
        """Bucket users by segment and concatenate buckets vip-first."""
        requested = coerce_segment(requested_segment)
        buckets: dict[Segment, list[str]] = {s: [] for s in SEGMENT_ORDER}
        seen: set[str] = set()
        for user_id in user_ids:
            if user_id in seen:
                continue
            seen.add(user_id)
            buckets[await self.resolve_segment(user_id)].append(user_id)

        primary = requested
        best = len(buckets[requested])
        for segment in SEGMENT_ORDER:
            if len(buckets[segment]) > best:
                primary = segment
                best = len(buckets[segment])

        ordered = [u for segment in SEGMENT_ORDER for u in buckets[segment]]
        return SegmentedUsers(
            ordered_user_ids=ordered,
            primary_segment=primary,
            distribution={s: len(buckets[s]) for s in SEGMENT_ORDER},
        )

    def policy_for(self, segment: Segment) -> SegmentPolicy:
        return self._config.segments[segment]

    def cleanup(self) -> int:
        return self._cache.cleanup()

    def cached_profiles(self) -> int:
        return len(self._cache)
