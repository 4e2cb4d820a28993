"""Retry controller: reschedule failed recipients with backoff."""

import dataclasses
import structlog
from notifications.config import DispatchConfig
from notifications.events import EventHub, TerminalFailure
from notifications.queue import PriorityQueueSet
from notifications.types import NotificationTask
from utils.time_utils import Clock, SystemClock

log = structlog.get_logger(__name__)


class RetryController:
    """Turns chunk failures into a retry task or a terminal failure.

    A retry task keeps the original task id and carries only the recipients
    that failed, so delivered recipients are never sent twice.
    """

    def __init__(
        self,
        queue: PriorityQueueSet,
        hub: EventHub,
        config: DispatchConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._queue = queue
        self._hub = hub
        self._config = config or DispatchConfig()
        self._clock = clock or SystemClock()
        self.retries_scheduled = 0
        self.terminal_failures = 0

    def backoff_delay(self, retry_count: int) -> int:
        """Delay before attempt ``retry_count`` (1-based)."""
        if not self._config.exponential_backoff:
            return self._config.retry_delay_ms
        return self._config.retry_delay_ms * 2 ** (retry_count - 1)

    def schedule_retry(
        self,
        task: NotificationTask,
        failed_recipient_ids: list[str],
        last_error: str | None = None,
    ) -> NotificationTask | None:
        """Enqueue a retry for ``failed_recipient_ids``.

        Returns the retry task, or None when retries are exhausted and a
        TerminalFailure has been emitted instead.
        """
        if not failed_recipient_ids:
            return None

        retry_count = task.retry_count + 1
        if retry_count > self._config.max_retries:
            self.terminal_failures += 1
            log.error(
                "task_retries_exhausted",
                task_id=task.id,
                recipients=len(failed_recipient_ids),
                attempts=retry_count,
                error=last_error,
            )
            self._hub.terminal_failure(TerminalFailure(
                task_id=task.id,
                recipient_ids=list(failed_recipient_ids),
                attempts=retry_count,
                last_error=last_error,
                priority=task.priority.value,
                metadata=dict(task.metadata),
            ))
            return None

        delay = self.backoff_delay(retry_count)
        metadata = dict(task.metadata)
        metadata["last_error"] = last_error
        metadata.setdefault("original_recipient_count", len(task.recipient_ids))
        retry_task = dataclasses.replace(
            task,
            recipient_ids=list(failed_recipient_ids),
            retry_count=retry_count,
            scheduled_at=self._clock.now_ms() + delay,
            batch_size=min(task.batch_size, len(failed_recipient_ids)),
            metadata=metadata,
        )
        self._queue.enqueue(retry_task)
        self.retries_scheduled += 1
        log.info(
            "retry_scheduled",
            task_id=task.id,
            retry_count=retry_count,
            recipients=len(failed_recipient_ids),
            delay_ms=delay,
        )
        return retry_task
