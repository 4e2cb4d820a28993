"""Turn domain events into dispatch requests for the batch scheduler."""

from collections import Counter
from typing import Any
import structlog
from config.constants import NotificationType, Priority, Segment
from config.settings import settings
from notifications.batch_scheduler import BatchScheduler
from notifications.errors import QueueFullError, ValidationError
from notifications.formatter import (
    format_ai_analysis,
    format_announcement,
    format_market_summary,
    format_price_alert,
    format_price_alert_text,
    format_welcome,
)
from notifications.gateway import MessagingGateway
from notifications.types import DispatchAck, Message, NotificationRequest, TextMessage, content_hash
from storage.stores import AlertRuleStore, UserProfileStore
from utils.formatting import mask_user_id, safe_number
from utils.retry import sanitize_error
from utils.time_utils import Clock, SystemClock, format_duration, next_send_time

log = structlog.get_logger(__name__)

TargetSelector = str | list[str]

# Selector for every user who owns an active alert rule
ALERT_USERS = "alert_users"


def price_alert_dedup_key(alert_data: dict[str, Any], user_id: str) -> str:
    """``alert:{symbol}:{user}``, narrowed to one firing when the rule is known."""
    key = f"alert:{str(alert_data.get('symbol', '')).upper()}:{user_id}"
    if alert_data.get("alert_id"):
        key += f":{alert_data['alert_id']}:{alert_data.get('trigger_count', 0)}"
    return key


class NotificationDispatcher:
    """Facade over the batch scheduler.

    Each ``send_*`` call picks priority, audience and template, builds a dedup
    key and submits. Calls return a DispatchAck straight away; delivery
    happens later on the scheduler's tick.
    """

    def __init__(
        self,
        scheduler: BatchScheduler,
        gateway: MessagingGateway,
        profile_store: UserProfileStore,
        clock: Clock | None = None,
        critical_volatility_pct: float | None = None,
        rule_store: AlertRuleStore | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._gateway = gateway
        self._profiles = profile_store
        self._rules = rule_store
        self._clock = clock or SystemClock()
        self._critical_pct = (
            critical_volatility_pct if critical_volatility_pct is not None
            else settings.critical_volatility_pct
        )
        self._started_at = self._clock.now_ms()
        self.stats: dict[str, Any] = {
            "total_requests": 0,
            "accepted": 0,
            "duplicates": 0,
            "rejected": 0,
            "fallback_sends": 0,
            "by_type": Counter(),
            "by_priority": Counter(),
            "by_segment": Counter(),
        }

    # -- public API --

    async def send_price_alert(self, alert_data: dict[str, Any], user_id: str) -> DispatchAck:
        priority = self.determine_price_alert_priority(alert_data)
        request = NotificationRequest(
            user_ids=[user_id],
            message=format_price_alert(alert_data),
            priority=priority,
            segment=Segment.ACTIVE,
            dedup_key=price_alert_dedup_key(alert_data, user_id),
            metadata={
                "notification_type": NotificationType.PRICE_ALERT.value,
                "symbol": alert_data.get("symbol"),
                "alert_id": alert_data.get("alert_id"),
            },
        )
        return await self._submit(
            NotificationType.PRICE_ALERT,
            request,
            fallback=(user_id, format_price_alert_text(alert_data)),
        )

    async def send_market_update(
        self,
        data: dict[str, Any],
        target_selector: TargetSelector = "all",
    ) -> DispatchAck:
        user_ids, segment = await self.resolve_targets(target_selector)
        bucket = int(safe_number(data.get("timestamp"), self._clock.now_ms())) // 60_000
        return await self._submit_broadcast(
            NotificationType.MARKET_UPDATE,
            format_market_summary(data),
            user_ids,
            segment,
            Priority.MEDIUM,
            dedup_key=f"market_update:{bucket}:{content_hash(str(target_selector))}",
        )

    async def send_ai_analysis(
        self,
        data: dict[str, Any],
        target_selector: TargetSelector = Segment.ACTIVE.value,
    ) -> DispatchAck:
        user_ids, segment = await self.resolve_targets(target_selector)
        fingerprint = content_hash(f"{data.get('symbol')}:{data.get('trend')}:{data.get('summary')}")
        return await self._submit_broadcast(
            NotificationType.AI_ANALYSIS,
            format_ai_analysis(data),
            user_ids,
            segment,
            Priority.MEDIUM,
            dedup_key=f"ai_analysis:{fingerprint}:{content_hash(str(target_selector))}",
        )

    async def send_announcement(
        self,
        content: dict[str, Any] | str,
        target_selector: TargetSelector = "all",
        priority: Priority | str = Priority.HIGH,
    ) -> DispatchAck:
        user_ids, segment = await self.resolve_targets(target_selector)
        return await self._submit_broadcast(
            NotificationType.ANNOUNCEMENT,
            format_announcement(content),
            user_ids,
            segment,
            Priority(priority),
            dedup_key=f"announcement:{content_hash(repr(content) + str(target_selector))}",
        )

    async def send_welcome(self, user_data: dict[str, Any], user_id: str) -> DispatchAck:
        message = format_welcome(user_data)
        request = NotificationRequest(
            user_ids=[user_id],
            message=message,
            priority=Priority.HIGH,
            segment=Segment.ACTIVE,
            dedup_key=f"welcome:{user_id}",
            metadata={"notification_type": NotificationType.WELCOME.value},
        )
        return await self._submit(
            NotificationType.WELCOME,
            request,
            fallback=(user_id, TextMessage(message.alt_text)),
        )

    def determine_price_alert_priority(self, alert_data: dict[str, Any]) -> Priority:
        """High by default; critical for critical urgency or extreme volatility."""
        if alert_data.get("urgency") == "critical":
            return Priority.CRITICAL
        if abs(safe_number(alert_data.get("change_percent"))) > self._critical_pct:
            return Priority.CRITICAL
        return Priority.HIGH

    async def resolve_targets(self, selector: TargetSelector) -> tuple[list[str], Segment]:
        """Resolve an explicit id list, ``"all"``, ``"alert_users"`` or a segment
        name to user ids."""
        if isinstance(selector, list):
            return list(selector), Segment.REGULAR
        if selector == "all":
            return await self._profiles.find_user_ids(), Segment.REGULAR
        if selector == ALERT_USERS:
            if self._rules is None:
                log.warning("alert_users_unavailable")
                return [], Segment.REGULAR
            return await self._rules.find_alert_user_ids(), Segment.ACTIVE
        try:
            segment = Segment(selector)
        except ValueError:
            log.warning("unknown_target_selector", selector=selector)
            return [], Segment.REGULAR
        return await self._profiles.find_user_ids(segment), segment

    # -- submission --

    async def _submit_broadcast(
        self,
        notification_type: NotificationType,
        message: Message,
        user_ids: list[str],
        segment: Segment,
        priority: Priority,
        dedup_key: str,
    ) -> DispatchAck:
        if not user_ids:
            self.stats["total_requests"] += 1
            self.stats["rejected"] += 1
            log.info("dispatch_no_targets", type=notification_type.value)
            return DispatchAck(success=False, reason="no_target_users")

        request = NotificationRequest(
            user_ids=user_ids,
            message=message,
            priority=priority,
            segment=segment,
            dedup_key=dedup_key,
            scheduled_at=self._send_time(priority, segment),
            metadata={"notification_type": notification_type.value},
        )
        return await self._submit(notification_type, request)

    def _send_time(self, priority: Priority, segment: Segment) -> int | None:
        """Defer non-urgent broadcasts out of quiet hours. VIPs are never deferred."""
        if priority in (Priority.CRITICAL, Priority.HIGH) or segment == Segment.VIP:
            return None
        now = self._clock.now_ms()
        send_at = next_send_time(now, settings.timezone, settings.quiet_hours_start, settings.quiet_hours_end)
        return send_at if send_at > now else None

    async def _submit(
        self,
        notification_type: NotificationType,
        request: NotificationRequest,
        fallback: tuple[str, TextMessage] | None = None,
    ) -> DispatchAck:
        self.stats["total_requests"] += 1
        try:
            ack = await self._scheduler.submit(request)
        except ValidationError:
            self.stats["rejected"] += 1
            raise
        except Exception as e:
            error = sanitize_error(str(e))
            if fallback is None:
                self.stats["rejected"] += 1
                reason = "queue_full" if isinstance(e, QueueFullError) else "dispatch_error"
                log.error("dispatch_failed", type=notification_type.value, reason=reason, error=error)
                return DispatchAck(success=False, reason=reason, error=error)
            return await self._fallback_send(notification_type, *fallback, error=error)

        if ack.success:
            self.stats["accepted"] += 1
            self.stats["by_type"][notification_type.value] += 1
            self.stats["by_priority"][request.priority.value] += 1
            self.stats["by_segment"][request.segment.value] += 1
        elif ack.reason == "duplicate_message":
            self.stats["duplicates"] += 1
        else:
            self.stats["rejected"] += 1
        return ack

    async def _fallback_send(
        self,
        notification_type: NotificationType,
        user_id: str,
        message: TextMessage,
        error: str,
    ) -> DispatchAck:
        """Direct single push that bypasses the batching layer."""
        log.warning(
            "dispatch_fallback",
            type=notification_type.value,
            user_id=mask_user_id(user_id),
            error=error,
        )
        self.stats["fallback_sends"] += 1
        self._scheduler.metrics.record_fallback()
        result = await self._gateway.push_one(user_id, message)
        return DispatchAck(
            success=result.success,
            reason="fallback_send",
            error=result.error or error,
            fallback=True,
        )

    # -- reporting --

    def get_statistics_report(self) -> dict[str, Any]:
        total = self.stats["total_requests"]
        uptime_ms = self._clock.now_ms() - self._started_at
        return {
            "requests": {
                "total": total,
                "accepted": self.stats["accepted"],
                "duplicates": self.stats["duplicates"],
                "rejected": self.stats["rejected"],
                "fallback_sends": self.stats["fallback_sends"],
                "success_rate": round(self.stats["accepted"] / total * 100, 2) if total else 0.0,
            },
            "by_type": dict(self.stats["by_type"]),
            "by_priority": dict(self.stats["by_priority"]),
            "by_segment": dict(self.stats["by_segment"]),
            "delivery": self._scheduler.metrics.snapshot(),
            "uptime": format_duration(uptime_ms),
        }
