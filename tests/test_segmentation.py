"""Tests for notifications/segmentation.py: segment resolution and ordering."""

import pytest
from unittest.mock import AsyncMock
from config.constants import Priority, Segment
from notifications.segmentation import UserSegmentation, coerce_segment
from storage.models import UserProfile
from storage.stores import InMemoryProfileStore

DAY = 86_400_000


class TestResolveSegment:
    async def test_explicit_segment(self, profile_store, clock):
        seg = UserSegmentation(profile_store, clock=clock)
        assert await seg.resolve_segment("vip1") == Segment.VIP

    async def test_missing_profile_is_regular(self, profile_store, clock):
        seg = UserSegmentation(profile_store, clock=clock)
        assert await seg.resolve_segment("nobody") == Segment.REGULAR

    async def test_derived_from_activity(self, clock):
        now = clock.now_ms()
        store = InMemoryProfileStore([
            UserProfile(id="recent", last_activity=now - 2 * DAY),
            UserProfile(id="middle", last_activity=now - 15 * DAY),
            UserProfile(id="stale", last_activity=now - 45 * DAY),
            UserProfile(id="unknown"),
        ])
        seg = UserSegmentation(store, clock=clock)
        assert await seg.resolve_segment("recent") == Segment.ACTIVE
        assert await seg.resolve_segment("middle") == Segment.REGULAR
        assert await seg.resolve_segment("stale") == Segment.INACTIVE
        assert await seg.resolve_segment("unknown") == Segment.REGULAR

    async def test_lookup_error_defaults_to_regular(self, clock):
        store = AsyncMock()
        store.get_profile.side_effect = RuntimeError("db down")
        seg = UserSegmentation(store, clock=clock)
        assert await seg.resolve_segment("u1") == Segment.REGULAR

    async def test_profiles_cached(self, profile_store, clock):
        seg = UserSegmentation(profile_store, clock=clock)
        await seg.resolve_segment("vip1")
        await seg.resolve_segment("vip1")
        assert profile_store.lookups == 1
        assert seg.cached_profiles() == 1

    async def test_cache_expires(self, profile_store, clock):
        seg = UserSegmentation(profile_store, clock=clock)
        await seg.resolve_segment("vip1")
        clock.advance(300_000)
        await seg.resolve_segment("vip1")
        assert profile_store.lookups == 2
        assert seg.cleanup() == 0  # re-set on the second lookup


class TestSegmentUsers:
    async def test_vip_first_ordering(self, profile_store, clock):
        seg = UserSegmentation(profile_store, clock=clock)
        result = await seg.segment_users(["inactive1", "regular1", "vip1", "active1"])
        assert result.ordered_user_ids == ["vip1", "active1", "regular1", "inactive1"]
        assert result.distribution[Segment.VIP] == 1

    async def test_duplicates_removed(self, profile_store, clock):
        seg = UserSegmentation(profile_store, clock=clock)
        result = await seg.segment_users(["vip1", "vip1", "regular1"])
        assert result.ordered_user_ids == ["vip1", "regular1"]

    async def test_primary_is_largest_bucket(self, clock):
        store = InMemoryProfileStore([
            UserProfile(id=f"i{n}", segment=Segment.INACTIVE) for n in range(3)
        ] + [UserProfile(id="v1", segment=Segment.VIP)])
        seg = UserSegmentation(store, clock=clock)
        result = await seg.segment_users(["v1", "i0", "i1", "i2"], Segment.VIP)
        assert result.primary_segment == Segment.INACTIVE

    async def test_tie_goes_to_requested(self, profile_store, clock):
        seg = UserSegmentation(profile_store, clock=clock)
        result = await seg.segment_users(["vip1", "inactive1"], Segment.INACTIVE)
        assert result.primary_segment == Segment.INACTIVE

    async def test_empty_input(self, profile_store, clock):
        seg = UserSegmentation(profile_store, clock=clock)
        result = await seg.segment_users([], "active")
        assert result.ordered_user_ids == []
        assert result.primary_segment == Segment.ACTIVE


class TestPolicy:
    def test_policy_for_segment(self, profile_store):
        seg = UserSegmentation(profile_store)
        assert seg.policy_for(Segment.VIP).priority == Priority.CRITICAL
        assert seg.policy_for(Segment.INACTIVE).batch_size == 500

    def test_coerce_segment(self):
        assert coerce_segment("vip") == Segment.VIP
        assert coerce_segment("gold") == Segment.REGULAR
        assert coerce_segment(Segment.ACTIVE) == Segment.ACTIVE
