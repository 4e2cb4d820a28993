"""Dispatch engine error taxonomy."""


class DispatchError(Exception):
    """Base class for dispatch engine errors."""


class ValidationError(DispatchError):
    """Message content could not be repaired into a valid structure."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors) or "invalid message")


class GatewayError(DispatchError):
    """Push provider or network failure."""

    def __init__(self, message: str, status: int | None = None, retryable: bool = True) -> None:
        self.status = status
        self.retryable = retryable
        super().__init__(message)


class RateLimitBackpressure(DispatchError):
    """Minute budget exhausted. Internal to the scheduler; the tick is skipped."""

    def __init__(self, used: int, limit: int) -> None:
        self.used = used
        self.limit = limit
        super().__init__(f"throughput budget exhausted ({used}/{limit})")


class ConfigurationError(DispatchError):
    """Invalid operational parameter."""


class QueueFullError(DispatchError):
    """The batching layer is at capacity."""


class ServiceStateError(DispatchError):
    """Operation needs the service in another state (e.g. running)."""
