"""
Shared fixtures: an in-memory async Redis double, an in-memory DuckDB and
fast component settings.
"""

import json
from typing import Any, Dict, List, Optional, Set

import duckdb
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from order_engine.common.config import (
    ExecutionConfig,
    LoggingConfig,
    QueueConfig,
    QuoteConfig,
    Settings,
    WorkerConfig,
)
from order_engine.common.database import ensure_schema
from order_engine.common.logging import setup_logging
from order_engine.order_router.broadcaster import NotificationBroadcaster
from order_engine.order_router.models import Order
from order_engine.order_router.order_store import DurableOrderStore, OrderStateStore


class FakeRedis:
    """Subset of ``redis.asyncio.Redis`` used by the order store (decoded responses)."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.expiry: Dict[str, float] = {}
        self.sets: Dict[str, Set[str]] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self._check()
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def setex(self, key: str, seconds: int, value: str) -> bool:
        return await self.set(key, value, ex=seconds)

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            self.expiry.pop(key, None)
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        self._check()
        target = self.sets.setdefault(key, set())
        before = len(target)
        target.update(members)
        return len(target) - before

    async def srem(self, key: str, *members: str) -> int:
        self._check()
        target = self.sets.get(key, set())
        before = len(target)
        target.difference_update(members)
        return before - len(target)

    async def smembers(self, key: str) -> Set[str]:
        self._check()
        return set(self.sets.get(key, set()))

    async def sismember(self, key: str, member: str) -> bool:
        self._check()
        return member in self.sets.get(key, set())

    async def aclose(self) -> None:
        self.closed = True


class FakeChannel:
    """Records messages sent by the broadcaster."""

    def __init__(self, open: bool = True, fail: bool = False):
        self.messages: List[str] = []
        self._open = open
        self.fail = fail
        self.closed = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, message: str) -> None:
        if self.fail:
            raise ConnectionResetError("socket reset")
        self.messages.append(message)

    async def close(self) -> None:
        self._open = False
        self.closed = True

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [json.loads(m) for m in self.messages]

    @property
    def statuses(self) -> List[str]:
        return [e["status"] for e in self.events]


@pytest.fixture(scope="session", autouse=True)
def configure_logging(tmp_path_factory):
    log_dir = tmp_path_factory.mktemp("logs")
    setup_logging(Settings(logging=LoggingConfig(log_file=str(log_dir / "test.log"), level="DEBUG")))


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        quotes=QuoteConfig(latency_seconds=0.01, seed=7),
        execution=ExecutionConfig(min_delay_seconds=0.01, max_delay_seconds=0.02, seed=11),
        worker=WorkerConfig(
            build_delay_seconds=0.01,
            max_attempts=3,
            backoff_base_seconds=0.01,
            backoff_max_seconds=0.04,
        ),
        queue=QueueConfig(concurrency=4, rate_limit_max=100, rate_limit_window_seconds=60.0),
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def duckdb_conn():
    conn = duckdb.connect(":memory:")
    ensure_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def durable_store(duckdb_conn) -> DurableOrderStore:
    return DurableOrderStore(duckdb_conn)


@pytest.fixture
def order_store(fake_redis, durable_store, fast_settings) -> OrderStateStore:
    return OrderStateStore(fake_redis, durable_store, fast_settings.redis)


@pytest.fixture
def broadcaster() -> NotificationBroadcaster:
    return NotificationBroadcaster()


@pytest_asyncio.fixture
async def stored_order(order_store):
    order = Order.create("SOL", "USDC", 10)
    await order_store.put(order)
    return order


@pytest.fixture
def channel_factory():
    return FakeChannel
