"""Batch scheduler: queues dispatch tasks and drains them in rate-limited chunks.

One cooperative loop owns the queues. Each tick picks due tasks by fairness
and priority, splits recipients into chunks and pushes them through the
gateway, pacing between chunks and tasks. Failed chunks go to the retry
controller; delivered recipients are never resent.
"""

import asyncio
import dataclasses
import uuid
from typing import Any
import structlog
from config.constants import CHUNK_DELAY_MS, DELAY_ESTIMATE_FACTOR, MIN_PACING_DELAY_MS, PRIORITY_ORDER, Priority
from notifications.config import DispatchConfig
from notifications.dedup import DeduplicationCache
from notifications.errors import QueueFullError, RateLimitBackpressure
from notifications.events import EventHub, TaskCompletion
from notifications.gateway import MessagingGateway
from notifications.metrics import DispatchMetrics
from notifications.optimizer import ContentOptimizer
from notifications.queue import PriorityQueueSet
from notifications.rate_limiter import ThroughputLimiter
from notifications.retry import RetryController
from notifications.segmentation import UserSegmentation
from notifications.types import (
    BatchOptions,
    BatchResult,
    ChunkResult,
    DispatchAck,
    NotificationRequest,
    NotificationTask,
)
from scheduler.jobs import CACHE_SWEEP_INTERVAL_MS
from scheduler.ticker import Ticker
from utils.retry import sanitize_error
from utils.time_utils import Clock, SystemClock

log = structlog.get_logger(__name__)


def new_task_id(now: int) -> str:
    return f"batch_{now}_{uuid.uuid4().hex[:9]}"


def chunked(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchScheduler:
    def __init__(
        self,
        gateway: MessagingGateway,
        segmentation: UserSegmentation,
        config: DispatchConfig | None = None,
        clock: Clock | None = None,
        optimizer: ContentOptimizer | None = None,
        dedup: DeduplicationCache | None = None,
        hub: EventHub | None = None,
    ) -> None:
        self._gateway = gateway
        self._segmentation = segmentation
        self.config = config or DispatchConfig()
        self.config.validate()
        self._clock = clock or SystemClock()
        self._optimizer = optimizer or ContentOptimizer()
        self._dedup = dedup or DeduplicationCache(self.config.dedup_ttl_ms, self._clock)
        self.hub = hub or EventHub()

        self._queue = PriorityQueueSet()
        self._limiter = ThroughputLimiter(self.config.messages_per_minute, clock=self._clock)
        self.metrics = DispatchMetrics(self._limiter)
        self._retry = RetryController(self._queue, self.hub, self.config, self._clock)

        self._ticker = Ticker(self.tick, self.config.tick_interval_ms, name="batch_scheduler")
        self._sweeper = Ticker(self.sweep, CACHE_SWEEP_INTERVAL_MS, name="cache_sweeper")
        self._processing = False
        self._paused = False
        self._started_at: int | None = None

    @property
    def queue(self) -> PriorityQueueSet:
        return self._queue

    @property
    def limiter(self) -> ThroughputLimiter:
        return self._limiter

    @property
    def pacing_delay_ms(self) -> int:
        """Pause between tasks derived from the per-second budget."""
        return max(1000 // self.config.messages_per_second, MIN_PACING_DELAY_MS)

    # -- lifecycle --

    def start(self) -> None:
        self._ticker.start()
        self._sweeper.start()
        self._started_at = self._clock.now_ms()
        log.info("batch_scheduler_started", tick_interval_ms=self.config.tick_interval_ms)

    def stop(self) -> None:
        self._ticker.stop()
        self._sweeper.stop()
        log.info("batch_scheduler_stopped", queued=len(self._queue))

    def is_running(self) -> bool:
        return self._ticker.is_running()

    def pause(self) -> None:
        self._paused = True
        log.info("batch_scheduler_paused")

    def resume(self) -> None:
        self._paused = False
        log.info("batch_scheduler_resumed")

    def clear_queue(self) -> int:
        cleared = self._queue.clear()
        log.warning("queue_cleared", tasks=cleared)
        return cleared

    def cancel(self, task_id: str) -> bool:
        """Drop a queued task (and any pending retry of it). In-flight chunks still go out."""
        removed = self._queue.remove(task_id)
        if removed:
            log.info("task_cancelled", task_id=task_id)
        return removed > 0

    # -- submission --

    async def submit(self, request: NotificationRequest) -> DispatchAck:
        """Accept a request into the queues and acknowledge immediately.

        Raises ValidationError for unrepairable content and QueueFullError
        when the queues are at capacity.
        """
        key = request.dedup_key
        if key and self._dedup.is_duplicate(key):
            log.info("duplicate_message", dedup_key=key)
            return DispatchAck(success=False, reason="duplicate_message")

        if len(self._queue) >= self.config.max_queue_size:
            raise QueueFullError(f"queue at capacity ({self.config.max_queue_size} tasks)")

        message = self._optimizer.optimize(request.message)
        segmented = await self._segmentation.segment_users(request.user_ids, request.segment)
        recipients = segmented.ordered_user_ids
        if not recipients:
            return DispatchAck(success=False, reason="no_target_users")

        policy = self._segmentation.policy_for(segmented.primary_segment)
        priority = request.priority if request.priority is not None else policy.priority
        now = self._clock.now_ms()
        task_id = new_task_id(now)
        if key and not self._dedup.accept(key, task_id):
            return DispatchAck(success=False, reason="duplicate_message")

        task = NotificationTask(
            id=task_id,
            recipient_ids=recipients,
            message=message,
            priority=priority,
            segment=segmented.primary_segment,
            scheduled_at=request.scheduled_at if request.scheduled_at is not None else now,
            batch_size=min(self.config.chunk_size(priority), policy.batch_size, len(recipients)),
            metadata={
                **request.metadata,
                "created_at": now,
                "original_recipient_count": len(recipients),
                "segment_distribution": {s.value: n for s, n in segmented.distribution.items()},
            },
        )
        self._queue.enqueue(task)
        self.hub.task_queued(task)

        position = self._queue.position(task_id)
        delay = self.estimate_delay(task)
        log.info(
            "task_queued",
            task_id=task_id,
            priority=task.priority.value,
            segment=task.segment.value,
            recipients=len(recipients),
            position=position,
        )
        return DispatchAck(success=True, task_id=task_id, queue_position=position, estimated_delay_ms=delay)

    def estimate_delay(self, task: NotificationTask) -> int:
        """Rough wait until ``task`` starts sending."""
        now = self._clock.now_ms()
        wait = max(0, task.scheduled_at - now)
        ahead = max(0, self._queue.position(task.id) - 1)
        per_task = max(self.metrics.average_latency_ms, self.pacing_delay_ms)
        return int(wait + ahead * per_task * DELAY_ESTIMATE_FACTOR[task.priority])

    # -- draining --

    async def tick(self) -> int:
        """Process due tasks. Returns how many tasks were picked up."""
        if self._processing or self._paused:
            return 0
        self._processing = True
        processed = 0
        try:
            while processed < self.config.max_tasks_per_tick:
                if self._select_priority(self._clock.now_ms()) is None:
                    break
                try:
                    self._check_budget()
                except RateLimitBackpressure as e:
                    log.warning("rate_limit_backpressure", used=e.used, limit=e.limit)
                    break
                if processed:
                    await self._clock.sleep_ms(self.pacing_delay_ms)
                # cancel, clear_queue and submit can run during the pause
                priority = self._select_priority(self._clock.now_ms())
                task = self._queue.pop(priority) if priority is not None else None
                if task is None:
                    break
                processed += 1
                if not await self._process_task(task):
                    break
        finally:
            self._processing = False
        return processed

    def _check_budget(self) -> None:
        if not self._limiter.can_send(1):
            raise RateLimitBackpressure(self._limiter.used(), self._limiter.limit)

    def _select_priority(self, now: int) -> Priority | None:
        """Pick the queue to serve: overdue heads first, then by priority."""
        best: Priority | None = None
        best_key: tuple[int, int] | None = None
        for priority in PRIORITY_ORDER:
            head = self._queue.peek(priority)
            if head is None or head.scheduled_at > now:
                continue
            overdue = now - head.scheduled_at > self.config.priorities[priority].max_delay_ms
            key = (0 if overdue else 1, priority.rank)
            if best_key is None or key < best_key:
                best, best_key = priority, key
        return best

    async def _process_task(self, task: NotificationTask) -> bool:
        """Send every chunk of ``task``.

        Returns False if the minute budget ran out and the unsent remainder
        was put back at the front of its queue.
        """
        started = self._clock.now_ms()
        size = max(1, min(task.batch_size, self.config.max_batch_size, self._gateway.max_recipients))
        chunks = chunked(task.recipient_ids, size)
        results: list[ChunkResult] = []
        completed = True

        for index, chunk in enumerate(chunks):
            if not self._limiter.can_send(len(chunk)):
                remainder = [r for c in chunks[index:] for r in c]
                self._queue.requeue_front(dataclasses.replace(task, recipient_ids=remainder))
                log.info("task_deferred", task_id=task.id, remaining_recipients=len(remainder))
                completed = False
                break
            if index:
                await self._clock.sleep_ms(CHUNK_DELAY_MS[task.priority])
            results.append(await self._send_chunk(task, chunk, index))

        failed_ids = [r for result in results for r in result.failed_recipient_ids]
        last_error = next((r.error for r in reversed(results) if r.error), None)
        retry_task = None
        if failed_ids:
            retry_task = self._retry.schedule_retry(task, failed_ids, last_error)

        if not completed:
            return False

        successful = sum(1 for r in results if r.success)
        completion = TaskCompletion(
            task_id=task.id,
            success=not failed_ids,
            total_chunks=len(results),
            successful_chunks=successful,
            failed_chunks=len(results) - successful,
            sent_count=len(task.recipient_ids) - len(failed_ids),
            latency_ms=self._clock.now_ms() - started,
            retry_count=task.retry_count,
            retry_scheduled=retry_task is not None,
        )
        self.metrics.record_task(completion.success)
        log.info(
            "task_processed",
            task_id=task.id,
            priority=task.priority.value,
            chunks=completion.total_chunks,
            failed_chunks=completion.failed_chunks,
            sent=completion.sent_count,
            retry_count=task.retry_count,
        )
        self.hub.task_completed(completion)
        return True

    async def _send_chunk(self, task: NotificationTask, chunk: list[str], index: int) -> ChunkResult:
        options = BatchOptions(
            notification_type=task.metadata.get("notification_type"),
            task_id=task.id,
            chunk_index=index,
        )
        self._limiter.record(len(chunk))
        started = self._clock.now_ms()
        try:
            result = await asyncio.wait_for(
                self._gateway.push_batch(chunk, task.message, options),
                timeout=self.config.gateway_timeout_ms / 1000,
            )
        except TimeoutError:
            result = BatchResult(success=False, error="gateway timeout")
        except Exception as e:
            result = BatchResult(success=False, error=sanitize_error(str(e)))

        members = set(chunk)
        if result.success:
            failed = [r for r in result.failed_recipient_ids if r in members]
        else:
            failed = [r for r in result.failed_recipient_ids if r in members] or list(chunk)
        if failed:
            log.warning(
                "chunk_failed",
                task_id=task.id,
                chunk=index,
                failed=len(failed),
                error=result.error,
            )
        self.metrics.record_chunk(len(chunk) - len(failed), len(failed), self._clock.now_ms() - started)
        return ChunkResult(
            index=index,
            recipient_ids=chunk,
            success=not failed,
            failed_recipient_ids=failed,
            error=result.error,
        )

    # -- housekeeping --

    async def sweep(self) -> dict[str, int]:
        """Evict expired dedup keys and cached profiles."""
        swept = {
            "dedup": self._dedup.sweep(),
            "profiles": self._segmentation.cleanup(),
        }
        return swept

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_running(),
            "paused": self._paused,
            "processing": self._processing,
            "started_at": self._started_at,
            "queue_sizes": self._queue.sizes(),
            "queued_tasks": len(self._queue),
            "dedup_entries": len(self._dedup),
            "cached_profiles": self._segmentation.cached_profiles(),
            "retries_scheduled": self._retry.retries_scheduled,
            "terminal_failures": self._retry.terminal_failures,
            "rate_limit": self._limiter.get_usage(),
            "metrics": self.metrics.snapshot(),
        }
