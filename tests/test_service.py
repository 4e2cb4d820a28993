"""Tests for service/control.py: wiring and the operational surface."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from config.constants import AlertType, Priority
from data.market import MarketSnapshot
from notifications.config import DispatchConfig
from notifications.errors import ConfigurationError, ServiceStateError
from notifications.events import BaseObserver
from notifications.types import FlexMessage
from service.control import NotificationService
from service.main import TerminalFailureLogger
from storage.models import AlertRule


@pytest.fixture
def market():
    m = MagicMock()
    m.get_current_price = AsyncMock(
        return_value=MarketSnapshot("BTCUSDT", price=50_000.0, volume=10.0, price_change_percent=3.0)
    )
    return m


@pytest.fixture
def service(gateway, profile_store, rule_store, market, config, clock):
    return NotificationService(gateway, profile_store, rule_store, market, config, clock=clock)


class TestNotificationService:
    async def test_start_and_stop(self, service):
        service.start()
        assert service.is_running()
        assert service.scheduler.is_running()
        assert service.monitor.is_running()
        service.stop()
        assert not service.is_running()
        assert not service.scheduler.is_running()
        assert not service.monitor.is_running()

    async def test_manual_check_requires_running(self, service):
        with pytest.raises(ServiceStateError):
            await service.manual_check()

    def test_set_check_interval(self, service):
        with pytest.raises(ConfigurationError):
            service.set_check_interval(1_000)
        service.set_check_interval(120_000)
        assert service.monitor.check_interval_ms == 120_000

    def test_status(self, service):
        status = service.get_status()
        assert status["running"] is False
        assert set(status) == {"running", "uptime_ms", "scheduler", "monitor", "dispatcher"}

    async def test_triggered_alert_reaches_gateway(self, service, rule_store, gateway):
        rule_store.add(AlertRule(
            id="a1", user_id="vip1", symbol="BTCUSDT",
            alert_type=AlertType.PRICE_ABOVE, target_price=48_000,
        ))
        summary = await service.monitor.perform_check()
        assert summary["triggered"] == 1

        await service.scheduler.tick()
        assert gateway.batches == [["vip1"]]
        assert gateway.single == []
        assert service.get_status()["dispatcher"]["by_type"] == {"price_alert": 1}

    async def test_same_firing_not_sent_twice(self, service, rule_store, gateway):
        rule = AlertRule(
            id="a1", user_id="vip1", symbol="BTCUSDT",
            alert_type=AlertType.PRICE_ABOVE, target_price=48_000,
        )
        await service.dispatcher.send_price_alert({"symbol": "BTCUSDT", "alert_id": "a1", "trigger_count": 1}, "vip1")
        rule_store.add(rule)
        await service.monitor.perform_check()
        await service.scheduler.tick()
        assert gateway.batches == [["vip1"]]
        assert service.dispatcher.stats["duplicates"] == 1

    async def test_observers_receive_events(self, service):
        class Seen(BaseObserver):
            def __init__(self):
                self.completed = []

            def on_task_completed(self, completion):
                self.completed.append(completion)

        seen = Seen()
        service.subscribe(seen)
        await service.dispatcher.send_announcement({"title": "Hello"}, ["u1"], "high")
        await service.scheduler.tick()
        assert len(seen.completed) == 1
        assert seen.completed[0].success is True

    async def test_announcement_payload_is_flex(self, service, gateway):
        await service.dispatcher.send_announcement({"title": "Hello", "message": "World"}, ["u1"], "high")
        task = service.scheduler.queue.tasks(Priority.HIGH)[0]
        assert isinstance(task.message, FlexMessage)
        await service.scheduler.tick()
        assert gateway.batches == [["u1"]]


class TestTerminalFailureLogger:
    def test_handles_failure(self):
        failure = MagicMock(task_id="t1", recipient_ids=["a"], attempts=4, last_error="HTTP 503")
        TerminalFailureLogger().on_terminal_failure(failure)


def test_default_config_is_valid(gateway, profile_store, rule_store, market):
    service = NotificationService(gateway, profile_store, rule_store, market, DispatchConfig())
    assert service.config.messages_per_minute == 1000
