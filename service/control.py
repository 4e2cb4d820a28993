"""Composition root and operational control surface."""

from typing import Any
import structlog
from data.market import MarketDataProvider
from notifications.batch_scheduler import BatchScheduler
from notifications.config import DispatchConfig
from notifications.dispatcher import NotificationDispatcher
from notifications.events import DispatchObserver
from notifications.gateway import MessagingGateway
from notifications.segmentation import UserSegmentation
from scheduler.alert_monitor import AlertTriggerMonitor
from scheduler.jobs import DEFAULT_CHECK_INTERVAL_MS
from storage.stores import AlertRuleStore, UserProfileStore
from utils.time_utils import Clock, SystemClock, format_duration

log = structlog.get_logger(__name__)


class NotificationService:
    """Owns the scheduler, dispatcher and alert monitor and runs them together."""

    def __init__(
        self,
        gateway: MessagingGateway,
        profile_store: UserProfileStore,
        rule_store: AlertRuleStore,
        market_data: MarketDataProvider,
        config: DispatchConfig | None = None,
        check_interval_ms: int = DEFAULT_CHECK_INTERVAL_MS,
        clock: Clock | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self.config = config or DispatchConfig()
        self.segmentation = UserSegmentation(profile_store, self.config, self._clock)
        self.scheduler = BatchScheduler(gateway, self.segmentation, self.config, self._clock)
        self.dispatcher = NotificationDispatcher(
            self.scheduler, gateway, profile_store, self._clock, rule_store=rule_store
        )
        self.monitor = AlertTriggerMonitor(
            rule_store, market_data, self.dispatcher, check_interval_ms, self._clock
        )
        self._started_at: int | None = None

    def subscribe(self, observer: DispatchObserver) -> None:
        self.scheduler.hub.subscribe(observer)

    def is_running(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        if self.is_running():
            return
        self.scheduler.start()
        self.monitor.start()
        self._started_at = self._clock.now_ms()
        log.info("notification_service_started")

    def stop(self) -> None:
        if not self.is_running():
            return
        self.monitor.stop()
        self.scheduler.stop()
        uptime = self._clock.now_ms() - self._started_at  # type: ignore[operator]
        self._started_at = None
        log.info("notification_service_stopped", uptime=format_duration(uptime))

    async def manual_check(self) -> dict[str, int]:
        """Force one alert monitor pass. Raises ServiceStateError when stopped."""
        return await self.monitor.manual_check()

    def set_check_interval(self, interval_ms: int) -> None:
        """Raises ConfigurationError below the 10 s minimum."""
        self.monitor.set_check_interval(interval_ms)

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_running(),
            "uptime_ms": self._clock.now_ms() - self._started_at if self._started_at else 0,
            "scheduler": self.scheduler.get_status(),
            "monitor": self.monitor.get_status(),
            "dispatcher": self.dispatcher.get_statistics_report(),
        }
