"""Store interfaces used by the core, with in-memory implementations."""

from typing import Protocol
from config.constants import Segment
from storage.models import AlertRule, UserProfile


class AlertRuleStore(Protocol):
    async def find_active_alerts(self) -> list[AlertRule]: ...

    async def find_alert_user_ids(self) -> list[str]: ...

    async def record_trigger(self, rule: AlertRule) -> None: ...


class UserProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    async def find_user_ids(self, segment: Segment | None = None) -> list[str]: ...


class InMemoryAlertRuleStore:
    """Rule store kept in process memory (local runs and tests)."""

    def __init__(self, rules: list[AlertRule] | None = None) -> None:
        self._rules: dict[str, AlertRule] = {r.id: r for r in rules or []}
        self.recorded: list[str] = []

    def add(self, rule: AlertRule) -> None:
        self._rules[rule.id] = rule

    async def find_active_alerts(self) -> list[AlertRule]:
        return [r for r in self._rules.values() if r.is_active()]

    async def find_alert_user_ids(self) -> list[str]:
        return list(dict.fromkeys(r.user_id for r in self._rules.values() if r.is_active()))

    async def record_trigger(self, rule: AlertRule) -> None:
        self._rules[rule.id] = rule
        self.recorded.append(rule.id)


class InMemoryProfileStore:
    """Profile store kept in process memory (local runs and tests)."""

    def __init__(self, profiles: list[UserProfile] | None = None) -> None:
        self._profiles: dict[str, UserProfile] = {p.id: p for p in profiles or []}
        self.lookups = 0

    def add(self, profile: UserProfile) -> None:
        self._profiles[profile.id] = profile

    async def get_profile(self, user_id: str) -> UserProfile | None:
        self.lookups += 1
        return self._profiles.get(user_id)

    async def find_user_ids(self, segment: Segment | None = None) -> list[str]:
        return [
            p.id for p in self._profiles.values()
            if segment is None or p.segment == segment
        ]
