"""
Order persistence across the ephemeral and durable stores.

Redis holds the live snapshot of every order (``order:<id>``, 24h TTL) plus
the ``orders:active`` index of non-terminal orders. DuckDB keeps one row per
order for history and audit, written by idempotent upsert.
"""

import asyncio
import json
from typing import Any, List, Optional, Set, Tuple

import duckdb
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..common.config import RedisConfig
from ..common.exceptions import DurablePersistenceError, EphemeralPersistenceError, ValidationError
from ..common.logging import get_logger
from ..common.monitoring import PERSISTENCE_ERRORS, increment_counter
from ..common.types import OrderStatus, OrderType
from ..common.utils import from_naive_utc, get_utc_datetime, safe_decimal, to_naive_utc
from .models import Order, OrderUpdate, RoutingDecision

logger = get_logger(__name__)

ORDER_COLUMNS = (
    "order_id", "token_in", "token_out", "amount", "order_type", "status",
    "submitted_at", "completed_at", "failed_at", "failure_reason", "venue_id",
    "execution_price", "execution_amount", "routing_decision", "settlement_ref",
    "attempts",
)

# Identity and submission fields are never rewritten by an upsert
MUTABLE_COLUMNS = (
    "status", "completed_at", "failed_at", "failure_reason", "venue_id",
    "execution_price", "execution_amount", "routing_decision", "settlement_ref",
    "attempts",
)

UPSERT_SQL = f"""
    INSERT INTO orders ({", ".join(ORDER_COLUMNS)}, created_at, updated_at)
    VALUES ({", ".join("?" for _ in ORDER_COLUMNS)}, ?, ?)
    ON CONFLICT (order_id) DO UPDATE SET
        {", ".join(f"{col} = EXCLUDED.{col}" for col in MUTABLE_COLUMNS)},
        updated_at = EXCLUDED.updated_at
"""

SELECT_SQL = f"SELECT {', '.join(ORDER_COLUMNS)} FROM orders"


class DurableOrderStore:
    """DuckDB-backed order history."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    async def archive(self, order: Order) -> None:
        """
        Insert or update the order row keyed by ``order_id``.

        Raises:
            DurablePersistenceError: If the write fails
        """
        params = self._to_row(order)

        def _write() -> None:
            cursor = self.conn.cursor()
            try:
                cursor.execute(UPSERT_SQL, params)
            finally:
                cursor.close()

        try:
            await asyncio.to_thread(_write)
        except Exception as e:
            increment_counter(PERSISTENCE_ERRORS, store="duckdb")
            logger.error("Failed to archive order", order_id=order.order_id, exception=e)
            raise DurablePersistenceError(
                f"Failed to archive order {order.order_id}: {e}",
                error_code="DURABLE_WRITE_FAILED",
                context={"order_id": order.order_id, "status": order.status.value},
            ) from e

        logger.debug("Order archived", order_id=order.order_id, status=order.status.value)

    async def fetch(self, order_id: str) -> Optional[Order]:
        """Load one archived order, or None."""
        rows = await self._query(f"{SELECT_SQL} WHERE order_id = ?", [order_id])
        return self._from_row(rows[0]) if rows else None

    async def fetch_recent(self, limit: int = 50) -> List[Order]:
        """Load the most recently submitted orders."""
        rows = await self._query(f"{SELECT_SQL} ORDER BY submitted_at DESC LIMIT ?", [limit])
        return [self._from_row(row) for row in rows]

    async def _query(self, sql: str, params: List[Any]) -> List[Tuple]:
        def _read() -> List[Tuple]:
            cursor = self.conn.cursor()
            try:
                return cursor.execute(sql, params).fetchall()
            finally:
                cursor.close()

        try:
            return await asyncio.to_thread(_read)
        except Exception as e:
            increment_counter(PERSISTENCE_ERRORS, store="duckdb")
            raise DurablePersistenceError(
                f"Failed to read orders: {e}",
                error_code="DURABLE_READ_FAILED",
            ) from e

    @staticmethod
    def _to_row(order: Order) -> List[Any]:
        now = to_naive_utc(get_utc_datetime())
        return [
            order.order_id,
            order.token_in,
            order.token_out,
            safe_decimal(order.amount),
            order.order_type.value,
            order.status.value,
            to_naive_utc(order.submitted_at),
            to_naive_utc(order.completed_at),
            to_naive_utc(order.failed_at),
            order.failure_reason,
            order.venue_id,
            safe_decimal(order.execution_price),
            safe_decimal(order.execution_amount),
            json.dumps(order.routing_decision.to_dict()) if order.routing_decision else None,
            order.settlement_ref,
            order.attempts,
            now,
            now,
        ]

    @staticmethod
    def _from_row(row: Tuple) -> Order:
        record = dict(zip(ORDER_COLUMNS, row))
        routing = record["routing_decision"]
        if isinstance(routing, str):
            routing = json.loads(routing)

        def _float(value: Any) -> Optional[float]:
            return float(value) if value is not None else None

        return Order(
            order_id=record["order_id"],
            token_in=record["token_in"],
            token_out=record["token_out"],
            amount=float(record["amount"]),
            order_type=OrderType(record["order_type"]),
            status=OrderStatus(record["status"]),
            submitted_at=from_naive_utc(record["submitted_at"]),
            completed_at=from_naive_utc(record["completed_at"]),
            failed_at=from_naive_utc(record["failed_at"]),
            failure_reason=record["failure_reason"],
            venue_id=record["venue_id"],
            execution_price=_float(record["execution_price"]),
            execution_amount=_float(record["execution_amount"]),
            routing_decision=RoutingDecision.from_dict(routing) if routing else None,
            settlement_ref=record["settlement_ref"],
            attempts=record["attempts"] or 0,
        )


class OrderStateStore:
    """
    Coordinates the live Redis snapshot and the durable archive.

    No in-process locking: at most one attempt per order is in flight, so a
    read-merge-write on one key never races with itself.
    """

    def __init__(
        self,
        redis: Redis,
        durable: DurableOrderStore,
        config: Optional[RedisConfig] = None
    ):
        self.redis = redis
        self.durable = durable
        self.config = config or RedisConfig()

    def _key(self, order_id: str) -> str:
        return f"{self.config.order_key_prefix}{order_id}"

    async def put(self, order: Order) -> None:
        """Write the full snapshot with TTL and index it as active."""
        try:
            await self.redis.set(
                self._key(order.order_id),
                order.to_json(),
                ex=self.config.order_ttl_seconds,
            )
            if order.is_terminal:
                await self.redis.srem(self.config.active_orders_key, order.order_id)
            else:
                await self.redis.sadd(self.config.active_orders_key, order.order_id)
        except RedisError as e:
            raise self._ephemeral_error("write", order.order_id, e) from e

    async def get(self, order_id: str) -> Optional[Order]:
        """Return the live snapshot, or None when the key is absent."""
        try:
            payload = await self.redis.get(self._key(order_id))
        except RedisError as e:
            raise self._ephemeral_error("read", order_id, e) from e

        if payload is None:
            return None

        try:
            return Order.from_json(payload)
        except (ValueError, KeyError, ValidationError) as e:
            raise self._ephemeral_error("decode", order_id, e) from e

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        update: Optional[OrderUpdate] = None
    ) -> Optional[Order]:
        """
        Merge ``update`` and ``status`` into the live snapshot.

        ``completed_at`` is stamped on first entry into CONFIRMED and
        ``failed_at`` on first entry into FAILED. A terminal status removes the
        order from the active index. A missing snapshot is logged and skipped.

        Returns:
            The merged order, or None when no snapshot exists
        """
        current = await self.get(order_id)
        if current is None:
            logger.warning("Order snapshot not found, status update skipped",
                           order_id=order_id, status=status.value)
            return None

        merged = (update or OrderUpdate()).apply_to(current, status)

        now = get_utc_datetime()
        if status == OrderStatus.CONFIRMED and merged.completed_at is None:
            merged = OrderUpdate(completed_at=now).apply_to(merged)
        elif status == OrderStatus.FAILED and merged.failed_at is None:
            merged = OrderUpdate(failed_at=now).apply_to(merged)

        try:
            await self.redis.set(
                self._key(order_id),
                merged.to_json(),
                ex=self.config.order_ttl_seconds,
            )
            if status.is_terminal:
                await self.redis.srem(self.config.active_orders_key, order_id)
        except RedisError as e:
            raise self._ephemeral_error("write", order_id, e) from e

        logger.debug("Order snapshot updated", order_id=order_id, status=status.value)
        return merged

    async def archive(self, order: Order) -> None:
        """Upsert the order into the durable store."""
        await self.durable.archive(order)

    async def active_order_ids(self) -> Set[str]:
        """Identifiers of all non-terminal orders."""
        try:
            return set(await self.redis.smembers(self.config.active_orders_key))
        except RedisError as e:
            raise self._ephemeral_error("read", self.config.active_orders_key, e) from e

    async def lookup(self, order_id: str) -> Optional[Order]:
        """Live snapshot first, durable record as fallback."""
        order = await self.get(order_id)
        if order is not None:
            return order
        return await self.durable.fetch(order_id)

    def _ephemeral_error(self, operation: str, order_id: str, error: Exception) -> EphemeralPersistenceError:
        increment_counter(PERSISTENCE_ERRORS, store="redis")
        return EphemeralPersistenceError(
            f"Redis {operation} failed for {order_id}: {error}",
            error_code=f"EPHEMERAL_{operation.upper()}_FAILED",
            context={"order_id": order_id},
        )
