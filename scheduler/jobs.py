"""Intervals for the periodic jobs (milliseconds)."""

DISPATCH_TICK_INTERVAL_MS = 1_000       # batch scheduler drain
CACHE_SWEEP_INTERVAL_MS = 60_000        # dedup + profile cache eviction
DEFAULT_CHECK_INTERVAL_MS = 60_000      # alert monitor
MIN_CHECK_INTERVAL_MS = 10_000
