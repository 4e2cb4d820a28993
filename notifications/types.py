"""Message variants, dispatch requests and task records."""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Literal
from config.constants import DEFAULT_ALT_TEXT, Priority, Segment


@dataclass(frozen=True)
class TextMessage:
    """Plain text push message."""
    text: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class FlexMessage:
    """Structured rich message: a bubble or carousel container."""
    contents: dict[str, Any]
    alt_text: str = DEFAULT_ALT_TEXT
    kind: Literal["flex"] = "flex"


Message = TextMessage | FlexMessage


def content_hash(value: str) -> str:
    """16-char hex hash for dedup keys."""
    return hashlib.sha256(value.encode()).hexdigest()[:16]


@dataclass
class NotificationRequest:
    """A dispatch request handed to the batch scheduler."""
    user_ids: list[str]
    message: Message
    priority: Priority | None = None  # None: the primary segment's priority
    segment: Segment = Segment.REGULAR
    dedup_key: str | None = None
    scheduled_at: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationTask:
    """A queued unit of delivery work."""
    id: str
    recipient_ids: list[str]
    message: Message
    priority: Priority
    segment: Segment
    scheduled_at: int
    batch_size: int
    retry_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SendResult:
    success: bool
    recipient_id: str
    message_id: str | None = None
    error: str | None = None


@dataclass
class BatchResult:
    """Outcome of one ``push_batch`` call.

    ``failed_recipient_ids`` narrows a failure to part of the chunk; when a
    failed result leaves it empty, the whole chunk is treated as failed.
    """
    success: bool
    sent_count: int = 0
    failed_recipient_ids: list[str] = field(default_factory=list)
    error: str | None = None
    request_id: str | None = None


@dataclass
class BatchOptions:
    notification_type: str | None = None
    task_id: str | None = None
    chunk_index: int = 0


@dataclass
class ChunkResult:
    index: int
    recipient_ids: list[str]
    success: bool
    failed_recipient_ids: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class DispatchAck:
    """Immediate acknowledgment of a dispatch call."""
    success: bool
    task_id: str | None = None
    queue_position: int = -1
    estimated_delay_ms: int = 0
    reason: str | None = None
    error: str | None = None
    fallback: bool = False
