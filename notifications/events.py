"""Typed completion events and the observer fan-out."""

from dataclasses import dataclass, field
from typing import Protocol
import structlog
from notifications.types import NotificationTask

log = structlog.get_logger(__name__)


@dataclass
class TaskCompletion:
    """One processing pass over a task finished (some chunks may have failed)."""
    task_id: str
    success: bool
    total_chunks: int
    successful_chunks: int
    failed_chunks: int
    sent_count: int
    latency_ms: int
    retry_count: int
    retry_scheduled: bool = False


@dataclass
class TerminalFailure:
    """Retries exhausted; delivery to these recipients is abandoned."""
    task_id: str
    recipient_ids: list[str]
    attempts: int
    last_error: str | None
    priority: str
    metadata: dict = field(default_factory=dict)


class DispatchObserver(Protocol):
    def on_task_queued(self, task: NotificationTask) -> None: ...

    def on_task_completed(self, completion: TaskCompletion) -> None: ...

    def on_terminal_failure(self, failure: TerminalFailure) -> None: ...


class BaseObserver:
    """No-op observer; subclass and override what you need."""

    def on_task_queued(self, task: NotificationTask) -> None:
        pass

    def on_task_completed(self, completion: TaskCompletion) -> None:
        pass

    def on_terminal_failure(self, failure: TerminalFailure) -> None:
        pass


class EventHub:
    """Fans events out to registered observers.

    An observer that raises is logged and skipped so one faulty consumer
    cannot stall the scheduler.
    """

    def __init__(self) -> None:
        self._observers: list[DispatchObserver] = []

    def subscribe(self, observer: DispatchObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: DispatchObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def task_queued(self, task: NotificationTask) -> None:
        for observer in list(self._observers):
            try:
                observer.on_task_queued(task)
            except Exception as e:
                log.error("observer_error", hook="task_queued", error=str(e))

    def task_completed(self, completion: TaskCompletion) -> None:
        for observer in list(self._observers):
            try:
                observer.on_task_completed(completion)
            except Exception as e:
                log.error("observer_error", hook="task_completed", error=str(e))

    def terminal_failure(self, failure: TerminalFailure) -> None:
        for observer in list(self._observers):
            try:
                observer.on_terminal_failure(failure)
            except Exception as e:
                log.error("observer_error", hook="terminal_failure", error=str(e))
