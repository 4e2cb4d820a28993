"""Tests for notifications/dispatcher.py."""

import pytest
from config.constants import AlertType, Priority, Segment
from notifications.batch_scheduler import BatchScheduler
from notifications.config import DispatchConfig
from notifications.dispatcher import NotificationDispatcher, price_alert_dedup_key
from notifications.errors import ValidationError
from notifications.segmentation import UserSegmentation
from notifications.types import TextMessage
from storage.models import AlertRule
from utils.time_utils import ManualClock

# 2023-11-14 22:13:20 UTC is 06:13 in Asia/Taipei, inside quiet hours
NIGHT_MS = 1_700_000_000_000
DAY_MS = NIGHT_MS + 4 * 3_600_000


def make_dispatcher(gateway, profile_store, clock, config=None, rule_store=None):
    config = config or DispatchConfig(messages_per_minute=100_000)
    scheduler = BatchScheduler(gateway, UserSegmentation(profile_store, config, clock), config, clock)
    return NotificationDispatcher(
        scheduler, gateway, profile_store, clock, critical_volatility_pct=20, rule_store=rule_store
    )


@pytest.fixture
def clock():
    return ManualClock(DAY_MS)


@pytest.fixture
def dispatcher(gateway, profile_store, clock):
    return make_dispatcher(gateway, profile_store, clock)


def alert(**overrides):
    data = {"symbol": "BTCUSDT", "current_price": 45000.0, "target_price": 44000.0,
            "alert_type": "price_above", "change_percent": 2.5}
    data.update(overrides)
    return data


class TestPriceAlertDedupKey:
    def test_symbol_and_user(self):
        assert price_alert_dedup_key({"symbol": "btcusdt"}, "user42") == "alert:BTCUSDT:user42"

    def test_rule_firing_appended(self):
        key = price_alert_dedup_key({"symbol": "ETHUSDT", "alert_id": "a1", "trigger_count": 2}, "u")
        assert key == "alert:ETHUSDT:u:a1:2"


class TestPriceAlerts:
    async def test_duplicate_within_ttl(self, dispatcher):
        first = await dispatcher.send_price_alert(alert(), "user42")
        second = await dispatcher.send_price_alert(alert(), "user42")
        assert first.success is True
        assert second.success is False
        assert second.reason == "duplicate_message"
        assert dispatcher.stats["duplicates"] == 1

    async def test_accepted_after_ttl(self, dispatcher, clock):
        await dispatcher.send_price_alert(alert(), "user42")
        clock.advance(3_600_000)
        ack = await dispatcher.send_price_alert(alert(), "user42")
        assert ack.success is True

    @pytest.mark.parametrize("data,expected", [
        ({"urgency": "critical", "change_percent": 1}, Priority.CRITICAL),
        ({"change_percent": 25}, Priority.CRITICAL),
        ({"change_percent": -21}, Priority.CRITICAL),
        ({"change_percent": 20}, Priority.HIGH),
        ({"change_percent": "NaN"}, Priority.HIGH),
        ({}, Priority.HIGH),
    ])
    def test_priority(self, dispatcher, data, expected):
        assert dispatcher.determine_price_alert_priority(data) == expected

    async def test_critical_alert_queued_as_critical(self, dispatcher):
        await dispatcher.send_price_alert(alert(change_percent=30), "user42")
        tasks = dispatcher._scheduler.queue.tasks(Priority.CRITICAL)
        assert len(tasks) == 1
        assert tasks[0].recipient_ids == ["user42"]
        assert tasks[0].metadata["notification_type"] == "price_alert"

    async def test_fallback_when_queue_full(self, gateway, profile_store, clock):
        d = make_dispatcher(gateway, profile_store, clock, DispatchConfig(max_queue_size=1))
        await d.send_announcement("filler", ["u1"])
        ack = await d.send_price_alert(alert(), "user42")
        assert ack.success is True
        assert ack.fallback is True
        assert ack.reason == "fallback_send"
        assert gateway.single[0][0] == "user42"
        assert isinstance(gateway.single[0][1], TextMessage)
        assert "BTCUSDT" in gateway.single[0][1].text
        assert d.stats["fallback_sends"] == 1
        assert d._scheduler.metrics.fallback_sends == 1

    async def test_fallback_send_failure_reported(self, gateway, profile_store, clock):
        d = make_dispatcher(gateway, profile_store, clock, DispatchConfig(max_queue_size=1))
        gateway.single_success = False
        await d.send_announcement("filler", ["u1"])
        ack = await d.send_price_alert(alert(), "user42")
        assert ack.success is False
        assert ack.fallback is True


class TestWelcome:
    async def test_high_priority_and_dedup(self, dispatcher):
        ack = await dispatcher.send_welcome({"username": "Ann"}, "new-user")
        assert ack.success is True
        assert len(dispatcher._scheduler.queue.tasks(Priority.HIGH)) == 1
        again = await dispatcher.send_welcome({"username": "Ann"}, "new-user")
        assert again.reason == "duplicate_message"

    async def test_fallback_uses_alt_text(self, gateway, profile_store, clock):
        d = make_dispatcher(gateway, profile_store, clock, DispatchConfig(max_queue_size=1))
        await d.send_announcement("filler", ["u1"])
        ack = await d.send_welcome({"platform": "Notifier"}, "new-user")
        assert ack.fallback is True
        assert gateway.single[0][1] == TextMessage("Welcome to Notifier")


class TestBroadcasts:
    async def test_market_update_to_everyone(self, dispatcher):
        ack = await dispatcher.send_market_update({"total_market_cap": 2.1e12})
        assert ack.success is True
        task = dispatcher._scheduler.queue.tasks(Priority.MEDIUM)[0]
        assert sorted(task.recipient_ids) == ["active1", "inactive1", "regular1", "vip1"]

    async def test_market_update_dedup_by_minute(self, dispatcher):
        data = {"timestamp": DAY_MS}
        assert (await dispatcher.send_market_update(data)).success is True
        assert (await dispatcher.send_market_update(data)).reason == "duplicate_message"
        later = await dispatcher.send_market_update({"timestamp": DAY_MS + 60_000})
        assert later.success is True

    async def test_ai_analysis_defaults_to_active(self, dispatcher):
        await dispatcher.send_ai_analysis({"symbol": "ETHUSDT", "trend": "bullish", "summary": "Up"})
        task = dispatcher._scheduler.queue.tasks(Priority.MEDIUM)[0]
        assert task.recipient_ids == ["active1"]

    async def test_announcement_priority_string(self, dispatcher):
        ack = await dispatcher.send_announcement({"title": "Maintenance", "message": "Tonight"}, "all", "high")
        assert ack.success is True
        assert len(dispatcher._scheduler.queue.tasks(Priority.HIGH)) == 1

    async def test_announcement_defaults_to_high(self, dispatcher):
        ack = await dispatcher.send_announcement("Scheduled maintenance", ["u1"])
        assert ack.success is True
        assert len(dispatcher._scheduler.queue.tasks(Priority.HIGH)) == 1

    async def test_unknown_selector_has_no_targets(self, dispatcher):
        ack = await dispatcher.send_market_update({}, "whales")
        assert ack.success is False
        assert ack.reason == "no_target_users"

    async def test_queue_full_returns_ack(self, gateway, profile_store, clock):
        d = make_dispatcher(gateway, profile_store, clock, DispatchConfig(max_queue_size=1))
        await d.send_announcement("filler", ["u1"])
        ack = await d.send_announcement("second", ["u2"])
        assert ack.success is False
        assert ack.reason == "queue_full"
        assert gateway.single == []

    async def test_invalid_content_raises(self, dispatcher):
        with pytest.raises(ValidationError):
            await dispatcher.send_announcement("", ["u1"])
        assert dispatcher.stats["rejected"] == 1


class TestTargets:
    async def test_explicit_list(self, dispatcher):
        assert await dispatcher.resolve_targets(["a", "b"]) == (["a", "b"], Segment.REGULAR)

    async def test_segment_name(self, dispatcher):
        assert await dispatcher.resolve_targets("vip") == (["vip1"], Segment.VIP)

    async def test_all(self, dispatcher):
        ids, _ = await dispatcher.resolve_targets("all")
        assert len(ids) == 4

    async def test_unknown(self, dispatcher):
        assert await dispatcher.resolve_targets("nobody") == ([], Segment.REGULAR)

    async def test_alert_users(self, gateway, profile_store, clock, rule_store):
        rule_store.add(AlertRule(id="a1", user_id="alice", symbol="BTCUSDT", alert_type=AlertType.PRICE_ABOVE))
        rule_store.add(AlertRule(id="a2", user_id="alice", symbol="ETHUSDT", alert_type=AlertType.PRICE_BELOW))
        rule_store.add(AlertRule(id="b1", user_id="bob", symbol="BTCUSDT", alert_type=AlertType.PRICE_ABOVE))
        rule_store.add(AlertRule(
            id="c1", user_id="carol", symbol="BTCUSDT", alert_type=AlertType.PRICE_ABOVE, enabled=False
        ))
        d = make_dispatcher(gateway, profile_store, clock, rule_store=rule_store)
        assert await d.resolve_targets("alert_users") == (["alice", "bob"], Segment.ACTIVE)

    async def test_alert_users_without_rule_store(self, dispatcher):
        ack = await dispatcher.send_announcement("Feature update", "alert_users")
        assert ack.reason == "no_target_users"


class TestQuietHours:
    @pytest.fixture
    def night(self, gateway, profile_store):
        return make_dispatcher(gateway, profile_store, ManualClock(NIGHT_MS))

    async def test_medium_broadcast_deferred_to_morning(self, night):
        ack = await night.send_market_update({})
        task = night._scheduler.queue.tasks(Priority.MEDIUM)[0]
        # 06:13:20 -> 08:00:00 local
        assert task.scheduled_at == NIGHT_MS + 6_400_000
        assert ack.estimated_delay_ms == 6_400_000

    async def test_vip_audience_not_deferred(self, night):
        await night.send_market_update({}, "vip")
        task = night._scheduler.queue.tasks(Priority.MEDIUM)[0]
        assert task.scheduled_at == NIGHT_MS

    async def test_high_priority_not_deferred(self, night):
        await night.send_announcement("Outage", "all", Priority.HIGH)
        task = night._scheduler.queue.tasks(Priority.HIGH)[0]
        assert task.scheduled_at == NIGHT_MS

    async def test_daytime_not_deferred(self, dispatcher):
        await dispatcher.send_market_update({})
        task = dispatcher._scheduler.queue.tasks(Priority.MEDIUM)[0]
        assert task.scheduled_at == DAY_MS


class TestStatistics:
    async def test_report(self, dispatcher, clock):
        await dispatcher.send_price_alert(alert(), "user42")
        await dispatcher.send_price_alert(alert(), "user42")
        await dispatcher.send_market_update({}, "vip")
        clock.advance(90_000)

        report = dispatcher.get_statistics_report()
        assert report["requests"]["total"] == 3
        assert report["requests"]["accepted"] == 2
        assert report["requests"]["duplicates"] == 1
        assert report["requests"]["success_rate"] == pytest.approx(66.67)
        assert report["by_type"] == {"price_alert": 1, "market_update": 1}
        assert report["by_priority"] == {"high": 1, "medium": 1}
        assert report["uptime"] == "1m 30s"
        assert "total_sent" in report["delivery"]
