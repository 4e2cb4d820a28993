"""Per-priority task queues ordered by scheduled send time."""

import bisect
from config.constants import PRIORITY_ORDER, Priority
from notifications.types import NotificationTask


def _send_time(task: NotificationTask) -> int:
    return task.scheduled_at


class PriorityQueueSet:
    """Four queues (critical, high, medium, low), each sorted ascending by
    ``scheduled_at``. Tasks with equal times keep insertion order."""

    def __init__(self) -> None:
        self._queues: dict[Priority, list[NotificationTask]] = {p: [] for p in PRIORITY_ORDER}

    def enqueue(self, task: NotificationTask) -> None:
        bisect.insort_right(self._queues[task.priority], task, key=_send_time)

    def requeue_front(self, task: NotificationTask) -> None:
        """Put a task back ahead of others with the same send time."""
        bisect.insort_left(self._queues[task.priority], task, key=_send_time)

    def peek(self, priority: Priority) -> NotificationTask | None:
        queue = self._queues[priority]
        return queue[0] if queue else None

    def pop(self, priority: Priority) -> NotificationTask | None:
        queue = self._queues[priority]
        return queue.pop(0) if queue else None

    def remove(self, task_id: str) -> int:
        """Remove every queued task with ``task_id``. Returns the count removed."""
        removed = 0
        for priority, queue in self._queues.items():
            kept = [t for t in queue if t.id != task_id]
            removed += len(queue) - len(kept)
            self._queues[priority] = kept
        return removed

    def position(self, task_id: str) -> int:
        """1-based position across queues in priority order, -1 if absent."""
        position = 1
        for priority in PRIORITY_ORDER:
            for task in self._queues[priority]:
                if task.id == task_id:
                    return position
                position += 1
        return -1

    def tasks(self, priority: Priority) -> list[NotificationTask]:
        return list(self._queues[priority])

    def sizes(self) -> dict[str, int]:
        return {p.value: len(self._queues[p]) for p in PRIORITY_ORDER}

    def clear(self) -> int:
        count = len(self)
        for queue in self._queues.values():
            queue.clear()
        return count

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())
