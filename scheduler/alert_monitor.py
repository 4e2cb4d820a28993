"""Alert trigger monitor: poll market data and fire matching alert rules."""

from collections import defaultdict
from enum import Enum
from typing import Any, Protocol
import structlog
from config.constants import AlertType
from data.market import MarketDataProvider, MarketSnapshot
from notifications.errors import ConfigurationError, ServiceStateError
from notifications.types import DispatchAck
from scheduler.jobs import DEFAULT_CHECK_INTERVAL_MS, MIN_CHECK_INTERVAL_MS
from scheduler.ticker import Ticker
from storage.models import AlertRule
from storage.stores import AlertRuleStore
from utils.formatting import mask_user_id, safe_number
from utils.time_utils import Clock, SystemClock

log = structlog.get_logger(__name__)


class MonitorState(str, Enum):
    IDLE = "idle"
    FETCHING_MARKET_DATA = "fetching_market_data"
    EVALUATING = "evaluating"


class RuleOutcome(str, Enum):
    NO_TRIGGER = "no_trigger"
    TRIGGERED = "triggered"


class PriceAlertSender(Protocol):
    async def send_price_alert(self, alert_data: dict[str, Any], user_id: str) -> DispatchAck: ...


def check_trigger_condition(rule: AlertRule, snapshot: MarketSnapshot) -> bool:
    """Evaluate the rule's predicate against a snapshot."""
    if rule.alert_type == AlertType.PRICE_ABOVE:
        return rule.target_price is not None and snapshot.price >= rule.target_price
    if rule.alert_type == AlertType.PRICE_BELOW:
        return rule.target_price is not None and snapshot.price <= rule.target_price
    if rule.alert_type == AlertType.PERCENT_CHANGE:
        if rule.percent_change is None:
            return False
        return abs(snapshot.price_change_percent) >= abs(rule.percent_change)
    if rule.alert_type == AlertType.VOLUME_SPIKE:
        if not rule.baseline_volume or not rule.volume_multiplier:
            return False
        return snapshot.volume >= rule.baseline_volume * rule.volume_multiplier
    return False


def determine_alert_urgency(rule: AlertRule, snapshot: MarketSnapshot) -> str:
    """``critical``, ``high`` or ``normal`` from the size of the move."""
    change = abs(snapshot.price_change_percent)
    if change > 20:
        return "critical"
    if change > 10:
        return "high"
    if rule.alert_type in (AlertType.PRICE_ABOVE, AlertType.PRICE_BELOW) and rule.target_price:
        deviation = abs((snapshot.price - rule.target_price) / rule.target_price * 100)
        if deviation > 5:
            return "high"
    return "normal"


def _empty_stats() -> dict[str, Any]:
    return {
        "checks_performed": 0,
        "alerts_triggered": 0,
        "notifications_sent": 0,
        "errors": 0,
        "last_check": None,
    }


class AlertTriggerMonitor:
    """Periodically evaluates active alert rules.

    Rules are grouped by symbol so each symbol is fetched once per pass. A
    failing symbol or rule is logged and skipped; the rest of the pass goes on.
    """

    def __init__(
        self,
        rule_store: AlertRuleStore,
        market_data: MarketDataProvider,
        dispatcher: PriceAlertSender,
        check_interval_ms: int = DEFAULT_CHECK_INTERVAL_MS,
        clock: Clock | None = None,
    ) -> None:
        if check_interval_ms < MIN_CHECK_INTERVAL_MS:
            raise ConfigurationError(f"check interval must be at least {MIN_CHECK_INTERVAL_MS} ms")
        self._rules = rule_store
        self._market = market_data
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self.state = MonitorState.IDLE
        self.stats = _empty_stats()
        self.last_snapshots: dict[str, MarketSnapshot] = {}
        self._started_at: int | None = None
        self._ticker = Ticker(self.perform_check, check_interval_ms, name="alert_monitor", run_immediately=True)

    @property
    def check_interval_ms(self) -> int:
        return self._ticker.interval_ms

    def is_running(self) -> bool:
        return self._ticker.is_running()

    def start(self) -> None:
        if self.is_running():
            log.warning("alert_monitor_already_running")
            return
        self._started_at = self._clock.now_ms()
        self._ticker.start()
        log.info("alert_monitor_started", interval_ms=self.check_interval_ms)

    def stop(self) -> None:
        if not self.is_running():
            return
        self._ticker.stop()
        self.state = MonitorState.IDLE
        log.info("alert_monitor_stopped", checks=self.stats["checks_performed"])

    async def manual_check(self) -> dict[str, int]:
        if not self.is_running():
            raise ServiceStateError("alert monitor is not running")
        log.info("alert_monitor_manual_check")
        return await self.perform_check()

    def set_check_interval(self, interval_ms: int) -> None:
        if interval_ms < MIN_CHECK_INTERVAL_MS:
            raise ConfigurationError(f"check interval must be at least {MIN_CHECK_INTERVAL_MS} ms")
        old = self.check_interval_ms
        self._ticker.set_interval(interval_ms)
        log.info("alert_monitor_interval_changed", old_interval_ms=old, new_interval_ms=interval_ms)

    def reset_stats(self) -> None:
        self.stats = _empty_stats()
        log.info("alert_monitor_stats_reset")

    def clear_cache(self) -> None:
        self.last_snapshots.clear()

    def get_status(self) -> dict[str, Any]:
        now = self._clock.now_ms()
        last_check = self.stats["last_check"]
        return {
            "running": self.is_running(),
            "state": self.state.value,
            "check_interval_ms": self.check_interval_ms,
            "uptime_ms": now - self._started_at if self.is_running() and self._started_at else 0,
            "last_check_ago_ms": now - last_check if last_check else None,
            "tracked_symbols": len(self.last_snapshots),
            "stats": dict(self.stats),
        }

    async def perform_check(self) -> dict[str, int]:
        """Run one monitoring pass. Returns per-pass counters."""
        self.stats["checks_performed"] += 1
        self.stats["last_check"] = self._clock.now_ms()
        summary = {"rules": 0, "symbols": 0, "triggered": 0, "failed_symbols": 0}

        try:
            rules = await self._rules.find_active_alerts()
        except Exception as e:
            self.stats["errors"] += 1
            log.error("alert_rules_fetch_failed", error=str(e))
            return summary
        if not rules:
            return summary

        by_symbol: dict[str, list[AlertRule]] = defaultdict(list)
        for rule in rules:
            by_symbol[rule.symbol].append(rule)
        summary["rules"] = len(rules)
        summary["symbols"] = len(by_symbol)

        try:
            for symbol, symbol_rules in by_symbol.items():
                self.state = MonitorState.FETCHING_MARKET_DATA
                try:
                    snapshot = await self._market.get_current_price(symbol)
                except Exception as e:
                    self.stats["errors"] += 1
                    summary["failed_symbols"] += 1
                    log.warning("market_data_fetch_failed", symbol=symbol, error=str(e))
                    continue
                self.last_snapshots[symbol] = snapshot

                self.state = MonitorState.EVALUATING
                for rule in symbol_rules:
                    try:
                        if await self.evaluate_rule(rule, snapshot) == RuleOutcome.TRIGGERED:
                            summary["triggered"] += 1
                    except Exception as e:
                        self.stats["errors"] += 1
                        log.error("alert_rule_evaluation_failed", alert_id=rule.id, error=str(e))
        finally:
            self.state = MonitorState.IDLE

        log.info("alert_check_completed", **summary)
        return summary

    async def evaluate_rule(self, rule: AlertRule, snapshot: MarketSnapshot) -> RuleOutcome:
        now = self._clock.now_ms()
        reason = rule.cannot_trigger_reason(now)
        if reason is not None:
            log.debug("alert_rule_skipped", alert_id=rule.id, reason=reason)
            return RuleOutcome.NO_TRIGGER
        if not check_trigger_condition(rule, snapshot):
            return RuleOutcome.NO_TRIGGER

        rule.trigger(snapshot, now)
        await self._rules.record_trigger(rule)
        self.stats["alerts_triggered"] += 1
        log.info(
            "alert_triggered",
            alert_id=rule.id,
            symbol=rule.symbol,
            alert_type=rule.alert_type.value,
            price=snapshot.price,
            user_id=mask_user_id(rule.user_id),
        )

        alert_data = {
            "alert_id": rule.id,
            "symbol": rule.symbol,
            "alert_type": rule.alert_type.value,
            "current_price": snapshot.price,
            "target_price": rule.target_price,
            "percent_change": rule.percent_change,
            "change_percent": safe_number(snapshot.price_change_percent),
            "volume": snapshot.volume,
            "trigger_count": rule.trigger_count,
            "triggered_at": now,
            "urgency": determine_alert_urgency(rule, snapshot),
        }
        try:
            ack = await self._dispatcher.send_price_alert(alert_data, rule.user_id)
        except Exception as e:
            # the trigger is already recorded, so this firing has no notification
            self.stats["errors"] += 1
            log.error(
                "alert_triggered_without_notification",
                alert_id=rule.id,
                trigger_count=rule.trigger_count,
                user_id=mask_user_id(rule.user_id),
                error=str(e),
            )
            return RuleOutcome.TRIGGERED
        if ack.success:
            self.stats["notifications_sent"] += 1
        else:
            log.warning("alert_notification_not_queued", alert_id=rule.id, reason=ack.reason, error=ack.error)
        return RuleOutcome.TRIGGERED
