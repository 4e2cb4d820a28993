"""Records read from the alert rule and user profile stores."""

from dataclasses import dataclass, field
from typing import Any
from config.constants import AlertStatus, AlertType, Segment
from data.market import MarketSnapshot
from utils.time_utils import now_ms


@dataclass
class TriggerRecord:
    triggered_at: int
    price: float
    price_change_percent: float
    volume: float


@dataclass
class AlertRule:
    """A user-defined condition over market data."""
    id: str
    user_id: str
    symbol: str
    alert_type: AlertType
    target_price: float | None = None
    percent_change: float | None = None
    volume_multiplier: float | None = None
    baseline_volume: float | None = None  # volume when the rule was created
    status: AlertStatus = AlertStatus.ACTIVE
    enabled: bool = True
    max_triggers: int = 1
    cooldown_minutes: float = 5
    last_triggered_at: int | None = None
    trigger_count: int = 0
    expires_at: int | None = None
    history: list[TriggerRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.symbol = self.symbol.upper()
        self.alert_type = AlertType(self.alert_type)
        self.status = AlertStatus(self.status)

    def is_active(self, now: int | None = None) -> bool:
        now = now_ms() if now is None else now
        if self.status != AlertStatus.ACTIVE or not self.enabled:
            return False
        return self.expires_at is None or self.expires_at > now

    def can_trigger(self, now: int | None = None) -> bool:
        return self.cannot_trigger_reason(now) is None

    def cannot_trigger_reason(self, now: int | None = None) -> str | None:
        """Why the rule cannot fire right now, or None if it can."""
        now = now_ms() if now is None else now
        if not self.is_active(now):
            return "not_active"
        if self.trigger_count >= self.max_triggers:
            return "max_triggers_reached"
        if self.last_triggered_at is not None:
            if now - self.last_triggered_at < self.cooldown_minutes * 60_000:
                return "cooldown"
        return None

    def trigger(self, snapshot: MarketSnapshot, now: int | None = None) -> TriggerRecord:
        """Record a firing against ``snapshot``."""
        now = now_ms() if now is None else now
        record = TriggerRecord(
            triggered_at=now,
            price=snapshot.price,
            price_change_percent=snapshot.price_change_percent,
            volume=snapshot.volume,
        )
        self.history.append(record)
        self.trigger_count += 1
        self.last_triggered_at = now
        if self.trigger_count >= self.max_triggers:
            self.status = AlertStatus.TRIGGERED
            self.enabled = False
        return record

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> "AlertRule":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            symbol=row["symbol"],
            alert_type=row["alert_type"],
            target_price=row.get("target_price"),
            percent_change=row.get("percent_change"),
            volume_multiplier=row.get("volume_multiplier"),
            baseline_volume=row.get("baseline_volume"),
            status=row.get("status", AlertStatus.ACTIVE),
            enabled=row.get("enabled", True),
            max_triggers=row.get("max_triggers") or 1,
            cooldown_minutes=row.get("cooldown_minutes") or 0,
            last_triggered_at=row.get("last_triggered_at"),
            trigger_count=row.get("trigger_count") or 0,
            expires_at=row.get("expires_at"),
        )


@dataclass
class UserProfile:
    id: str
    segment: Segment | None = None
    last_activity: int | None = None
    preferences: dict[str, Any] = field(default_factory=dict)
