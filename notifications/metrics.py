"""Process-lifetime delivery counters."""

from typing import Any
from notifications.rate_limiter import ThroughputLimiter

# Smoothing factor for the moving average of chunk latency
LATENCY_ALPHA = 0.2


class DispatchMetrics:
    def __init__(self, limiter: ThroughputLimiter) -> None:
        self._limiter = limiter
        self.total_sent = 0
        self.total_errors = 0
        self.tasks_processed = 0
        self.tasks_failed = 0
        self.chunks_sent = 0
        self.chunks_failed = 0
        self.fallback_sends = 0
        self.average_latency_ms = 0.0

    def record_chunk(self, sent: int, failed: int, latency_ms: float) -> None:
        self.total_sent += sent
        self.total_errors += failed
        if failed:
            self.chunks_failed += 1
        else:
            self.chunks_sent += 1
        if self.chunks_sent + self.chunks_failed == 1:
            self.average_latency_ms = float(latency_ms)
        else:
            self.average_latency_ms += LATENCY_ALPHA * (latency_ms - self.average_latency_ms)

    def record_task(self, success: bool) -> None:
        self.tasks_processed += 1
        if not success:
            self.tasks_failed += 1

    def record_fallback(self) -> None:
        self.fallback_sends += 1

    @property
    def rate_limit_hits(self) -> int:
        return self._limiter.hits

    @property
    def throughput_per_minute(self) -> int:
        return self._limiter.used()

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_sent": self.total_sent,
            "total_errors": self.total_errors,
            "tasks_processed": self.tasks_processed,
            "tasks_failed": self.tasks_failed,
            "chunks_sent": self.chunks_sent,
            "chunks_failed": self.chunks_failed,
            "fallback_sends": self.fallback_sends,
            "rate_limit_hits": self.rate_limit_hits,
            "throughput_per_minute": self.throughput_per_minute,
            "average_latency_ms": round(self.average_latency_ms, 1),
        }
