"""Messaging gateway interface and the LINE Messaging API adapter."""

from typing import Any, Protocol
import aiohttp
import structlog
from config.constants import GATEWAY_MAX_RECIPIENTS
from config.settings import settings
from notifications.errors import GatewayError
from notifications.types import BatchOptions, BatchResult, FlexMessage, Message, SendResult, TextMessage
from utils.formatting import mask_user_id
from utils.retry import sanitize_error

log = structlog.get_logger(__name__)

# Status codes worth another attempt
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class MessagingGateway(Protocol):
    """Push channel. Callers never pass more than ``max_recipients`` ids."""

    max_recipients: int

    async def push_one(self, recipient_id: str, message: Message) -> SendResult: ...

    async def push_batch(
        self,
        recipient_ids: list[str],
        message: Message,
        options: BatchOptions | None = None,
    ) -> BatchResult: ...


def to_wire(message: Message) -> dict[str, Any]:
    """Convert a message variant to the LINE message object."""
    match message:
        case TextMessage(text=text):
            return {"type": "text", "text": text}
        case FlexMessage(contents=contents, alt_text=alt_text):
            return {"type": "flex", "altText": alt_text, "contents": contents}
    raise TypeError(f"unsupported message type: {type(message).__name__}")


class LineMessagingGateway:
    """LINE push (single user) and multicast (up to 500 users) endpoints."""

    max_recipients = GATEWAY_MAX_RECIPIENTS

    def __init__(
        self,
        access_token: str | None = None,
        api_url: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._token = access_token if access_token is not None else settings.line_channel_access_token
        self._api_url = (api_url or settings.line_api_url).rstrip("/")
        self._timeout = timeout_seconds or settings.gateway_timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                },
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _post(self, path: str, payload: dict[str, Any]) -> str | None:
        """POST to the API. Returns the request id, raises GatewayError on failure."""
        session = await self.get_session()
        try:
            async with session.post(f"{self._api_url}{path}", json=payload) as resp:
                request_id = resp.headers.get("X-Line-Request-Id")
                if resp.status == 200:
                    return request_id
                body = await resp.text()
                raise GatewayError(
                    f"HTTP {resp.status} from {path}: {body[:200]}",
                    status=resp.status,
                    retryable=resp.status in RETRYABLE_STATUSES,
                )
        except aiohttp.ClientError as e:
            raise GatewayError(f"{path} request failed: {e}") from e

    async def push_one(self, recipient_id: str, message: Message) -> SendResult:
        try:
            request_id = await self._post(
                "/message/push", {"to": recipient_id, "messages": [to_wire(message)]}
            )
        except GatewayError as e:
            error = sanitize_error(str(e))
            log.error("push_failed", user_id=mask_user_id(recipient_id), status=e.status, error=error)
            return SendResult(success=False, recipient_id=recipient_id, error=error)
        return SendResult(success=True, recipient_id=recipient_id, message_id=request_id)

    async def push_batch(
        self,
        recipient_ids: list[str],
        message: Message,
        options: BatchOptions | None = None,
    ) -> BatchResult:
        if len(recipient_ids) > self.max_recipients:
            raise GatewayError(
                f"multicast supports at most {self.max_recipients} recipients",
                retryable=False,
            )
        options = options or BatchOptions()
        try:
            request_id = await self._post(
                "/message/multicast", {"to": recipient_ids, "messages": [to_wire(message)]}
            )
        except GatewayError as e:
            error = sanitize_error(str(e))
            log.error(
                "multicast_failed",
                task_id=options.task_id,
                chunk=options.chunk_index,
                recipients=len(recipient_ids),
                status=e.status,
                error=error,
            )
            return BatchResult(success=False, failed_recipient_ids=list(recipient_ids), error=error)

        log.debug(
            "multicast_sent",
            task_id=options.task_id,
            chunk=options.chunk_index,
            recipients=len(recipient_ids),
            notification_type=options.notification_type,
        )
        return BatchResult(success=True, sent_count=len(recipient_ids), request_id=request_id)
