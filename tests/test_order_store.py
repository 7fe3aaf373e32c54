import pytest

from order_engine.common.exceptions import DurablePersistenceError, EphemeralPersistenceError
from order_engine.common.types import OrderStatus, RoutingRule, Venue
from order_engine.order_router.models import Order, OrderUpdate, Quote, RoutingDecision

pytestmark = pytest.mark.asyncio


def _decision() -> RoutingDecision:
    quotes = {
        Venue.RAYDIUM: Quote(Venue.RAYDIUM, rate=100.0, fee=0.025, net_rate=99.75, amount_out=997.5, liquidity=2e6),
        Venue.METEORA: Quote(Venue.METEORA, rate=99.0, fee=0.04, net_rate=98.604, amount_out=986.04, liquidity=1e6),
    }
    return RoutingDecision(Venue.RAYDIUM, quotes, "RAYDIUM offers better net rate", RoutingRule.NET_RATE)


async def test_put_then_get_round_trips(order_store, fake_redis):
    order = Order.create("SOL", "USDC", 10)
    await order_store.put(order)

    assert await order_store.get(order.order_id) == order
    assert fake_redis.expiry[f"order:{order.order_id}"] == 86400
    assert order.order_id in await order_store.active_order_ids()


async def test_get_missing_returns_none(order_store):
    assert await order_store.get("order_0_missing0") is None


async def test_update_missing_order_is_skipped(order_store, fake_redis):
    result = await order_store.update_status("order_0_missing0", OrderStatus.ROUTING)

    assert result is None
    assert fake_redis.values == {}


async def test_update_merges_partial_fields(order_store, stored_order):
    decision = _decision()
    await order_store.update_status(
        stored_order.order_id,
        OrderStatus.ROUTING,
        OrderUpdate(routing_decision=decision, venue_id="RAYDIUM"),
    )
    updated = await order_store.update_status(
        stored_order.order_id,
        OrderStatus.BUILDING,
        OrderUpdate(settlement_ref="f" * 64),
    )

    assert updated.status == OrderStatus.BUILDING
    assert updated.routing_decision == decision
    assert updated.venue_id == "RAYDIUM"
    assert updated.settlement_ref == "f" * 64
    assert await order_store.get(stored_order.order_id) == updated


async def test_terminal_status_leaves_active_index(order_store, stored_order):
    confirmed = await order_store.update_status(stored_order.order_id, OrderStatus.CONFIRMED)

    assert confirmed.completed_at is not None
    assert confirmed.failed_at is None
    assert stored_order.order_id not in await order_store.active_order_ids()


async def test_failed_at_is_set_once(order_store, stored_order):
    first = await order_store.update_status(stored_order.order_id, OrderStatus.FAILED)
    second = await order_store.update_status(
        stored_order.order_id, OrderStatus.FAILED, OrderUpdate(failure_reason="again")
    )

    assert first.failed_at is not None
    assert second.failed_at == first.failed_at
    assert second.failure_reason == "again"


async def test_pending_reset_keeps_order_active(order_store, stored_order):
    await order_store.update_status(stored_order.order_id, OrderStatus.ROUTING)
    reset = await order_store.update_status(
        stored_order.order_id, OrderStatus.PENDING, OrderUpdate(failure_reason="Attempt 1 failed: x", attempts=1)
    )

    assert reset.status == OrderStatus.PENDING
    assert reset.attempts == 1
    assert stored_order.order_id in await order_store.active_order_ids()


async def test_redis_errors_are_tagged(order_store, fake_redis, stored_order):
    fake_redis.fail = True

    with pytest.raises(EphemeralPersistenceError):
        await order_store.get(stored_order.order_id)
    with pytest.raises(EphemeralPersistenceError):
        await order_store.update_status(stored_order.order_id, OrderStatus.ROUTING)


async def test_archive_round_trips_through_duckdb(durable_store):
    order = Order.create("SOL", "USDC", 10.5)
    order = OrderUpdate(
        routing_decision=_decision(),
        venue_id="RAYDIUM",
        settlement_ref="a" * 64,
        execution_price=99.12345678,
        execution_amount=1040.79629619,
        attempts=1,
    ).apply_to(order, OrderStatus.CONFIRMED)

    await durable_store.archive(order)
    loaded = await durable_store.fetch(order.order_id)

    assert loaded.order_id == order.order_id
    assert loaded.status == OrderStatus.CONFIRMED
    assert loaded.amount == 10.5
    assert loaded.submitted_at == order.submitted_at
    assert loaded.execution_price == pytest.approx(order.execution_price, abs=1e-8)
    assert loaded.execution_amount == pytest.approx(order.execution_amount, abs=1e-8)
    assert loaded.routing_decision == order.routing_decision
    assert loaded.settlement_ref == "a" * 64
    assert loaded.attempts == 1


async def test_archive_is_an_idempotent_upsert(durable_store, duckdb_conn):
    order = Order.create("SOL", "USDC", 10)
    await durable_store.archive(order)

    failed = OrderUpdate(failure_reason="Failed after 3 attempt(s): timeout", attempts=3).apply_to(
        order, OrderStatus.FAILED
    )
    await durable_store.archive(failed)
    await durable_store.archive(failed)

    count = duckdb_conn.execute("SELECT count(*) FROM orders WHERE order_id = ?", [order.order_id]).fetchone()[0]
    loaded = await durable_store.fetch(order.order_id)

    assert count == 1
    assert loaded.status == OrderStatus.FAILED
    assert loaded.failure_reason == "Failed after 3 attempt(s): timeout"
    assert loaded.submitted_at == order.submitted_at


async def test_fetch_recent_orders(durable_store):
    for amount in (1, 2, 3):
        await durable_store.archive(Order.create("SOL", "USDC", amount))

    recent = await durable_store.fetch_recent(limit=2)

    assert len(recent) == 2


async def test_archive_errors_are_tagged(durable_store, duckdb_conn):
    duckdb_conn.execute("DROP TABLE orders")

    with pytest.raises(DurablePersistenceError):
        await durable_store.archive(Order.create("SOL", "USDC", 10))


async def test_lookup_falls_back_to_durable_store(order_store):
    order = Order.create("SOL", "USDC", 10)
    await order_store.archive(order)

    found = await order_store.lookup(order.order_id)

    assert found.order_id == order.order_id
