import asyncio
import threading

import pytest

from order_engine.common.types import OrderStatus
from order_engine.order_router.models import StatusEvent

pytestmark = pytest.mark.asyncio

ORDER_ID = "order_1700000000000_abcdef12"


def _event(status=OrderStatus.ROUTING) -> StatusEvent:
    return StatusEvent(order_id=ORDER_ID, status=status, message="Fetching quotes", data={"venue": "RAYDIUM"})


async def test_publish_reaches_every_subscriber(broadcaster, channel_factory):
    channels = [channel_factory() for _ in range(3)]
    for channel in channels:
        broadcaster.subscribe(channel, ORDER_ID)

    event = _event()
    delivered = await broadcaster.publish(ORDER_ID, event)

    assert delivered == 3
    assert all(channel.messages == [event.to_json()] for channel in channels)


async def test_closed_channel_is_removed_and_others_still_receive(broadcaster, channel_factory):
    live = [channel_factory(), channel_factory()]
    closed = channel_factory(open=False)
    for channel in (*live, closed):
        broadcaster.subscribe(channel, ORDER_ID)

    delivered = await broadcaster.publish(ORDER_ID, _event())

    assert delivered == 2
    assert all(len(channel.messages) == 1 for channel in live)
    assert closed.messages == []
    assert broadcaster.subscriber_count(ORDER_ID) == 2


async def test_failing_channel_does_not_fail_publish(broadcaster, channel_factory):
    good = channel_factory()
    bad = channel_factory(fail=True)
    broadcaster.subscribe(good, ORDER_ID)
    broadcaster.subscribe(bad, ORDER_ID)

    delivered = await broadcaster.publish(ORDER_ID, _event())

    assert delivered == 1
    assert broadcaster.subscriber_count(ORDER_ID) == 1
    assert good.statuses == ["routing"]


async def test_publish_without_subscribers_is_noop(broadcaster):
    assert await broadcaster.publish(ORDER_ID, _event()) == 0


async def test_subscribers_only_see_their_order(broadcaster, channel_factory):
    mine = channel_factory()
    other = channel_factory()
    broadcaster.subscribe(mine, ORDER_ID)
    broadcaster.subscribe(other, "order_1700000000001_00000000")

    await broadcaster.publish(ORDER_ID, _event())

    assert len(mine.messages) == 1
    assert other.messages == []


async def test_unsubscribe(broadcaster, channel_factory):
    subscription_id = broadcaster.subscribe(channel_factory(), ORDER_ID)

    assert broadcaster.unsubscribe(subscription_id) is True
    assert broadcaster.unsubscribe(subscription_id) is False
    assert broadcaster.subscriber_count(ORDER_ID) == 0
    assert broadcaster.total_subscriptions == 0


async def test_close_all_closes_channels(broadcaster, channel_factory):
    channels = [channel_factory() for _ in range(3)]
    for index, channel in enumerate(channels):
        broadcaster.subscribe(channel, f"order_1700000000000_0000000{index}")

    await broadcaster.close_all()

    assert all(channel.closed for channel in channels)
    assert broadcaster.total_subscriptions == 0


async def test_close_order_only_touches_that_order(broadcaster, channel_factory):
    mine = channel_factory()
    other = channel_factory()
    broadcaster.subscribe(mine, ORDER_ID)
    broadcaster.subscribe(other, "order_1700000000001_00000000")

    assert await broadcaster.close_order(ORDER_ID) == 1
    assert mine.closed
    assert not other.closed
    assert broadcaster.total_subscriptions == 1


async def test_registry_survives_concurrent_mutation(broadcaster, channel_factory):
    def churn():
        for _ in range(200):
            sid = broadcaster.subscribe(channel_factory(), ORDER_ID)
            broadcaster.unsubscribe(sid)

    threads = [threading.Thread(target=churn) for _ in range(4)]
    for thread in threads:
        thread.start()
    for _ in range(20):
        await broadcaster.publish(ORDER_ID, _event())
        await asyncio.sleep(0)
    for thread in threads:
        thread.join()

    assert broadcaster.total_subscriptions == 0
