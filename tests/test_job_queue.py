import asyncio
import time

import pytest

from order_engine.common.config import QueueConfig, WorkerConfig
from order_engine.common.types import JobState
from order_engine.order_router.job_queue import OrderQueue, SlidingWindowLimiter
from order_engine.order_router.models import Order
from order_engine.order_router.outcomes import Fatal, Ok, Retryable

pytestmark = pytest.mark.asyncio

FAST_WORKER = WorkerConfig(max_attempts=3, backoff_base_seconds=0.01, backoff_max_seconds=0.04)


def _queue(concurrency=2, **worker_overrides) -> OrderQueue:
    worker_config = FAST_WORKER.model_copy(update=worker_overrides)
    return OrderQueue(QueueConfig(concurrency=concurrency), worker_config)


async def test_successful_job_completes_once():
    queue = _queue()
    calls = []

    async def handler(job):
        calls.append(job.attempts_made)
        return Ok(job.job_id)

    order = Order.create("SOL", "USDC", 10)
    await queue.start(handler)
    assert queue.add(order)
    await asyncio.wait_for(queue.join(), timeout=2)
    await queue.stop()

    assert calls == [1]
    assert queue.get_job(order.order_id).state == JobState.COMPLETED


async def test_retryable_outcomes_exhaust_attempts():
    queue = _queue()
    attempts = []

    async def handler(job):
        attempts.append(job.attempts_made)
        return Retryable("venue timeout")

    order = Order.create("SOL", "USDC", 10)
    await queue.start(handler)
    queue.add(order)
    await asyncio.wait_for(queue.join(), timeout=2)
    await asyncio.sleep(0.1)
    await queue.stop()

    job = queue.get_job(order.order_id)
    assert attempts == [1, 2, 3]
    assert job.state == JobState.FAILED
    assert job.last_error == "venue timeout"
    assert queue.get_stats()["retried"] == 2


async def test_fatal_outcome_is_not_retried():
    queue = _queue()
    attempts = []

    async def handler(job):
        attempts.append(job.attempts_made)
        return Fatal("unsupported pair")

    order = Order.create("SOL", "USDC", 10)
    await queue.start(handler)
    queue.add(order)
    await asyncio.wait_for(queue.join(), timeout=2)
    await queue.stop()

    assert attempts == [1]
    assert queue.get_job(order.order_id).state == JobState.FAILED


async def test_handler_exception_is_fatal():
    queue = _queue()

    async def handler(job):
        raise RuntimeError("bug")

    order = Order.create("SOL", "USDC", 10)
    await queue.start(handler)
    queue.add(order)
    await asyncio.wait_for(queue.join(), timeout=2)
    await queue.stop()

    job = queue.get_job(order.order_id)
    assert job.state == JobState.FAILED
    assert job.attempts_made == 1
    assert job.last_error == "bug"


async def test_duplicate_job_rejected_while_in_flight():
    queue = _queue()
    release = asyncio.Event()

    async def handler(job):
        await release.wait()
        return Ok(None)

    order = Order.create("SOL", "USDC", 10)
    await queue.start(handler)

    assert queue.add(order) is True
    await asyncio.sleep(0.01)
    assert queue.add(order) is False

    release.set()
    await asyncio.wait_for(queue.join(), timeout=2)
    await queue.stop()

    assert queue.get_stats()["rejected_duplicates"] == 1


async def test_concurrency_is_bounded():
    queue = _queue(concurrency=3)
    active = 0
    peak = 0

    async def handler(job):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1
        return Ok(None)

    await queue.start(handler)
    for amount in range(1, 11):
        queue.add(Order.create("SOL", "USDC", amount))
    await asyncio.wait_for(queue.join(), timeout=5)
    await queue.stop()

    assert peak == 3
    assert queue.get_stats()["completed"] == 10


async def test_backoff_schedule_is_capped():
    queue = OrderQueue(worker_config=WorkerConfig())

    assert [queue.backoff_delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 8.0]


async def test_limiter_throttles_by_waiting():
    limiter = SlidingWindowLimiter(max_events=2, window_seconds=0.2)

    start = time.monotonic()
    for _ in range(3):
        await limiter.acquire()
    elapsed = time.monotonic() - start

    assert elapsed >= 0.19
