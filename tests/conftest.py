"""Shared test fixtures for the dispatch engine test suite."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from config.constants import Segment
from notifications.config import DispatchConfig
from notifications.types import BatchResult, SendResult
from storage.models import UserProfile
from storage.stores import InMemoryAlertRuleStore, InMemoryProfileStore
from utils.time_utils import ManualClock


# ── Database Pool Mock ──


class FakeRecord(dict):
    """Mimics asyncpg.Record: supports both dict-style and attribute access."""
    def __getattr__(self, key):
        try:
            return self[key]
        except KeyError:
            raise AttributeError(key)


class FakeConnection:
    """Mock asyncpg connection with configurable return values."""

    def __init__(self):
        self.execute_results: list[str] = ["UPDATE 1"]
        self.fetch_results: list[list[dict]] = [[]]
        self.fetchrow_result: dict | None = None
        self.fetchval_result: int | None = 1
        self._execute_calls: list[tuple] = []
        self._fetch_calls: list[tuple] = []
        self._fetchrow_calls: list[tuple] = []

    async def execute(self, query, *args):
        self._execute_calls.append((query, args))
        return self.execute_results[0] if self.execute_results else "UPDATE 0"

    async def fetch(self, query, *args):
        self._fetch_calls.append((query, args))
        result = self.fetch_results.pop(0) if self.fetch_results else []
        return [FakeRecord(r) for r in result]

    async def fetchrow(self, query, *args):
        self._fetchrow_calls.append((query, args))
        return FakeRecord(self.fetchrow_result) if self.fetchrow_result else None

    async def fetchval(self, query, *args):
        return self.fetchval_result

    def transaction(self):
        return FakeTransaction()


class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class FakePool:
    """Mock asyncpg.Pool that yields a FakeConnection."""

    def __init__(self):
        self.conn = FakeConnection()

    def acquire(self):
        return FakePoolContext(self.conn)


class FakePoolContext:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def fake_pool():
    """Provide a mock database pool."""
    return FakePool()


@pytest.fixture
def fake_conn(fake_pool):
    """Direct access to the underlying FakeConnection."""
    return fake_pool.conn


# ── Messaging Gateway Fake ──


class FakeGateway:
    """Records every push. ``fail_calls`` holds 0-based push_batch call indexes
    that fail; ``partial_failures`` maps a call index to the ids it rejects."""

    max_recipients = 500

    def __init__(self):
        self.batches: list[list[str]] = []
        self.single: list[tuple[str, object]] = []
        self.fail_calls: set[int] = set()
        self.partial_failures: dict[int, list[str]] = {}
        self.raise_calls: dict[int, Exception] = {}
        self.fail_all = False
        self.single_success = True

    @property
    def sent_ids(self) -> list[str]:
        return [r for batch in self.batches for r in batch]

    async def push_one(self, recipient_id, message):
        self.single.append((recipient_id, message))
        if not self.single_success:
            return SendResult(success=False, recipient_id=recipient_id, error="HTTP 500")
        return SendResult(success=True, recipient_id=recipient_id, message_id="req-1")

    async def push_batch(self, recipient_ids, message, options=None):
        index = len(self.batches)
        self.batches.append(list(recipient_ids))
        if index in self.raise_calls:
            raise self.raise_calls[index]
        if self.fail_all or index in self.fail_calls:
            return BatchResult(success=False, error="HTTP 503")
        if index in self.partial_failures:
            failed = self.partial_failures[index]
            return BatchResult(
                success=False,
                sent_count=len(recipient_ids) - len(failed),
                failed_recipient_ids=failed,
                error="partial failure",
            )
        return BatchResult(success=True, sent_count=len(recipient_ids))


@pytest.fixture
def gateway():
    return FakeGateway()


# ── Clock and configuration ──


@pytest.fixture
def clock():
    """Manual clock; sleeps advance it instantly."""
    return ManualClock()


@pytest.fixture
def config():
    """Default dispatch config with a budget large enough for bulk tests."""
    return DispatchConfig(messages_per_minute=100_000)


# ── Stores ──


@pytest.fixture
def profile_store():
    return InMemoryProfileStore([
        UserProfile(id="vip1", segment=Segment.VIP),
        UserProfile(id="active1", segment=Segment.ACTIVE),
        UserProfile(id="regular1", segment=Segment.REGULAR),
        UserProfile(id="inactive1", segment=Segment.INACTIVE),
    ])


@pytest.fixture
def rule_store():
    return InMemoryAlertRuleStore()


# ── Notification Dispatcher Mock ──


@pytest.fixture
def mock_dispatcher():
    """Mock NotificationDispatcher."""
    d = MagicMock()
    d.send_price_alert = AsyncMock(return_value=MagicMock(success=True, reason=None, error=None))
    return d
