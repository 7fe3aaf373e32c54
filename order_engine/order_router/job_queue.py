"""
In-process job queue for order processing.

Jobs are keyed by order id, so an order never has two attempts in flight.
A fixed pool of consumers takes jobs through a sliding-window admission
limiter; retryable outcomes are re-queued after an exponential backoff.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from ..common.config import QueueConfig, WorkerConfig
from ..common.logging import get_logger
from ..common.monitoring import ORDER_RETRIES, QUEUE_DEPTH, increment_counter, set_gauge
from ..common.types import JobState
from ..common.utils import get_utc_datetime
from .models import Order
from .outcomes import Fatal, Ok, Outcome, Retryable

logger = get_logger(__name__)

UNFINISHED_STATES = (JobState.WAITING, JobState.ACTIVE, JobState.DELAYED)


class SlidingWindowLimiter:
    """Admits at most ``max_events`` per rolling ``window_seconds``; excess callers wait."""

    def __init__(self, max_events: int, window_seconds: float):
        self.max_events = max_events
        self.window_seconds = window_seconds
        self.timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = time.monotonic()
                cutoff = now - self.window_seconds
                while self.timestamps and self.timestamps[0] <= cutoff:
                    self.timestamps.popleft()

                if len(self.timestamps) < self.max_events:
                    self.timestamps.append(now)
                    return

                await asyncio.sleep(self.timestamps[0] + self.window_seconds - now)


@dataclass
class OrderJob:
    """One queued order. ``attempts_made`` counts the attempt in progress."""

    job_id: str
    order: Order
    max_attempts: int
    attempts_made: int = 0
    state: JobState = JobState.WAITING
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=get_utc_datetime)

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made >= self.max_attempts


JobHandler = Callable[[OrderJob], Awaitable[Outcome]]


class OrderQueue:
    """
    Bounded-concurrency, rate-limited job queue with retry and backoff.
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        worker_config: Optional[WorkerConfig] = None
    ):
        self.config = config or QueueConfig()
        self.worker_config = worker_config or WorkerConfig()

        self.limiter = SlidingWindowLimiter(
            self.config.rate_limit_max, self.config.rate_limit_window_seconds
        )

        self._pending: "asyncio.Queue[str]" = asyncio.Queue()
        self._jobs: Dict[str, OrderJob] = {}
        self._delayed: Dict[str, asyncio.Task] = {}
        self._consumers: List[asyncio.Task] = []
        self._handler: Optional[JobHandler] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.running = False

        self.stats = {
            "added": 0,
            "rejected_duplicates": 0,
            "completed": 0,
            "failed": 0,
            "retried": 0,
        }

    def add(self, order: Order) -> bool:
        """
        Enqueue ``order`` under its order id.

        Returns:
            False if a job with the same id is still waiting, active or delayed
        """
        existing = self._jobs.get(order.order_id)
        if existing is not None and existing.state in UNFINISHED_STATES:
            self.stats["rejected_duplicates"] += 1
            logger.warning("Duplicate job rejected", job_id=order.order_id, state=existing.state.value)
            return False

        job = OrderJob(
            job_id=order.order_id,
            order=order,
            max_attempts=self.worker_config.max_attempts,
        )
        self._jobs[job.job_id] = job
        self._pending.put_nowait(job.job_id)
        self.stats["added"] += 1
        self._refresh()

        logger.debug("Job added", job_id=job.job_id)
        return True

    def get_job(self, job_id: str) -> Optional[OrderJob]:
        return self._jobs.get(job_id)

    def backoff_delay(self, attempts_made: int) -> float:
        """Delay before attempt ``attempts_made + 1``."""
        delay = self.worker_config.backoff_base_seconds * (2 ** (attempts_made - 1))
        return min(delay, self.worker_config.backoff_max_seconds)

    async def start(self, handler: JobHandler) -> None:
        """Start the consumer pool."""
        if self.running:
            logger.warning("Order queue already running")
            return

        self._handler = handler
        self.running = True
        self._consumers = [
            asyncio.create_task(self._consume(index))
            for index in range(self.config.concurrency)
        ]
        logger.info("Order queue started", concurrency=self.config.concurrency,
                    rate_limit_max=self.config.rate_limit_max,
                    rate_limit_window_seconds=self.config.rate_limit_window_seconds)

    async def stop(self) -> None:
        """Cancel consumers and pending retry delays."""
        if not self.running:
            return

        self.running = False
        tasks = self._consumers + list(self._delayed.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._consumers = []
        self._delayed.clear()
        logger.info("Order queue stopped", stats=self.get_stats())

    async def join(self) -> None:
        """Wait until no job is waiting, active or delayed."""
        await self._idle.wait()

    async def _consume(self, index: int) -> None:
        while self.running:
            job_id = await self._pending.get()
            try:
                job = self._jobs.get(job_id)
                if job is None or job.state != JobState.WAITING:
                    continue

                await self.limiter.acquire()
                await self._run(job)
            finally:
                self._pending.task_done()

    async def _run(self, job: OrderJob) -> None:
        job.state = JobState.ACTIVE
        job.attempts_made += 1
        self._refresh()

        try:
            outcome = await self._handler(job)
        except Exception as e:
            logger.error("Job handler raised", job_id=job.job_id, attempt=job.attempts_made, exception=e)
            outcome = Fatal(str(e) or type(e).__name__, e)

        if isinstance(outcome, Ok):
            job.state = JobState.COMPLETED
            job.last_error = None
            self.stats["completed"] += 1
            logger.info("Job completed", job_id=job.job_id, attempts=job.attempts_made)

        elif isinstance(outcome, Retryable) and not job.is_final_attempt:
            delay = self.backoff_delay(job.attempts_made)
            job.state = JobState.DELAYED
            job.last_error = outcome.reason
            self.stats["retried"] += 1
            increment_counter(ORDER_RETRIES)
            self._delayed[job.job_id] = asyncio.create_task(self._requeue_after(job, delay))
            logger.info("Job scheduled for retry", job_id=job.job_id,
                        attempt=job.attempts_made, delay_seconds=delay, reason=outcome.reason)

        else:
            job.state = JobState.FAILED
            job.last_error = outcome.reason
            self.stats["failed"] += 1
            logger.warning("Job failed", job_id=job.job_id, attempts=job.attempts_made, reason=outcome.reason)

        self._refresh()

    async def _requeue_after(self, job: OrderJob, delay: float) -> None:
        await asyncio.sleep(delay)
        self._delayed.pop(job.job_id, None)
        job.state = JobState.WAITING
        self._pending.put_nowait(job.job_id)
        self._refresh()

    def _count(self, state: JobState) -> int:
        return sum(1 for job in self._jobs.values() if job.state == state)

    def _refresh(self) -> None:
        counts = {state: self._count(state) for state in JobState}
        for state, count in counts.items():
            set_gauge(QUEUE_DEPTH, count, state=state.value)

        if any(counts[state] for state in UNFINISHED_STATES):
            self._idle.clear()
        else:
            self._idle.set()

    def get_stats(self) -> Dict[str, int]:
        """Get queue statistics."""
        return {
            **self.stats,
            **{state.value: self._count(state) for state in JobState},
        }
