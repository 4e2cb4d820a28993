"""Dispatch engine configuration."""

from dataclasses import dataclass, field
from config.constants import (
    GATEWAY_MAX_RECIPIENTS,
    PRIORITY_POLICIES,
    SEGMENT_POLICIES,
    Priority,
    Segment,
)
from config.settings import Settings
from notifications.errors import ConfigurationError


@dataclass(frozen=True)
class PriorityPolicy:
    weight: int
    max_delay_ms: int


@dataclass(frozen=True)
class SegmentPolicy:
    priority: Priority
    batch_size: int


def _default_priorities() -> dict[Priority, PriorityPolicy]:
    return {p: PriorityPolicy(**cfg) for p, cfg in PRIORITY_POLICIES.items()}


def _default_segments() -> dict[Segment, SegmentPolicy]:
    return {s: SegmentPolicy(**cfg) for s, cfg in SEGMENT_POLICIES.items()}


@dataclass
class DispatchConfig:
    max_batch_size: int = 500
    optimal_batch_size: int = 500
    min_batch_size: int = 50
    messages_per_minute: int = 1000
    messages_per_second: int = 50
    max_retries: int = 3
    retry_delay_ms: int = 1000
    exponential_backoff: bool = True
    max_queue_size: int = 10_000
    dedup_ttl_ms: int = 3_600_000
    profile_cache_ttl_ms: int = 300_000
    gateway_timeout_ms: int = 10_000
    tick_interval_ms: int = 1000
    max_tasks_per_tick: int = 20
    priorities: dict[Priority, PriorityPolicy] = field(default_factory=_default_priorities)
    segments: dict[Segment, SegmentPolicy] = field(default_factory=_default_segments)

    @classmethod
    def from_settings(cls, s: Settings) -> "DispatchConfig":
        config = cls(
            max_batch_size=s.max_batch_size,
            optimal_batch_size=s.optimal_batch_size,
            min_batch_size=s.min_batch_size,
            messages_per_minute=s.messages_per_minute,
            messages_per_second=s.messages_per_second,
            max_retries=s.max_retries,
            retry_delay_ms=s.retry_delay_ms,
            exponential_backoff=s.exponential_backoff,
            max_queue_size=s.max_queue_size,
            dedup_ttl_ms=s.dedup_ttl_seconds * 1000,
            profile_cache_ttl_ms=s.profile_cache_ttl_seconds * 1000,
            gateway_timeout_ms=int(s.gateway_timeout_seconds * 1000),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ConfigurationError on inconsistent values."""
        if self.min_batch_size < 1:
            raise ConfigurationError("min_batch_size must be at least 1")
        if self.min_batch_size > self.max_batch_size:
            raise ConfigurationError("min_batch_size cannot exceed max_batch_size")
        if self.max_batch_size > GATEWAY_MAX_RECIPIENTS:
            raise ConfigurationError(
                f"max_batch_size cannot exceed gateway cap of {GATEWAY_MAX_RECIPIENTS}"
            )
        if self.messages_per_second < 1:
            raise ConfigurationError("messages_per_second must be positive")
        if self.messages_per_minute < self.max_batch_size:
            raise ConfigurationError("messages_per_minute must allow at least one full chunk")
        if self.max_retries < 0 or self.retry_delay_ms < 0:
            raise ConfigurationError("retry settings cannot be negative")
        for priority in Priority:
            policy = self.priorities.get(priority)
            if policy is None:
                raise ConfigurationError(f"missing policy for priority {priority.value}")
            if policy.weight < 1 or policy.max_delay_ms < 0:
                raise ConfigurationError(f"invalid policy for priority {priority.value}")
        for segment in Segment:
            if segment not in self.segments:
                raise ConfigurationError(f"missing policy for segment {segment.value}")
            if self.segments[segment].batch_size < 1:
                raise ConfigurationError(f"invalid policy for segment {segment.value}")

    def chunk_size(self, priority: Priority) -> int:
        """Priority-derived chunk size, clamped to [min, max] batch size."""
        weight = self.priorities[priority].weight
        size = self.optimal_batch_size // weight
        return max(self.min_batch_size, min(self.max_batch_size, size))
