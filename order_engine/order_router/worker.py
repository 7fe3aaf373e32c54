"""
Order worker state machine.

Drives one attempt of an order through routing, building, submission and
confirmation. Every transition is persisted to the live store and pushed to
subscribers; those side effects are best effort and never abort the attempt.
The durable archive of a confirmed order is the exception: if it fails the
attempt is retried.
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Dict, List, Optional, Union

from ..common.config import WorkerConfig
from ..common.exceptions import DurablePersistenceError
from ..common.logging import OrderEventLogger, get_logger
from ..common.monitoring import (
    ERRORS_TOTAL,
    ORDER_TRANSITIONS,
    ORDERS_COMPLETED,
    ORDERS_FAILED,
    increment_counter,
    measure_time,
)
from ..common.types import OrderStatus
from ..common.utils import get_utc_datetime
from .broadcaster import NotificationBroadcaster
from .job_queue import OrderJob
from .lifecycle import OrderLifecycle
from .models import Order, OrderUpdate, SettlementReceipt, StatusEvent
from .order_executor import ExecutionSimulator
from .order_store import OrderStateStore
from .outcomes import Fatal, Ok, Outcome, Retryable, failure_from_exception
from .smart_router import RoutingSelector

logger = get_logger(__name__)
event_logger = OrderEventLogger(__name__)


@dataclass
class AttemptReport:
    """Result of a successful attempt."""

    order: Order
    history: List[OrderStatus]


class OrderWorker:
    """Processes queued orders one attempt at a time."""

    def __init__(
        self,
        router: RoutingSelector,
        executor: ExecutionSimulator,
        store: OrderStateStore,
        broadcaster: NotificationBroadcaster,
        config: Optional[WorkerConfig] = None
    ):
        self.router = router
        self.executor = executor
        self.store = store
        self.broadcaster = broadcaster
        self.config = config or WorkerConfig()

        self.stats = {
            "attempts": 0,
            "confirmed": 0,
            "retried": 0,
            "failed": 0,
        }

    async def process(self, job: OrderJob) -> Outcome:
        """
        Run one attempt for ``job``.

        Returns:
            Ok(AttemptReport) on confirmation, Retryable if another attempt
            should follow, Fatal once the order has terminally failed
        """
        attempt = job.attempts_made
        # Each attempt starts from the submitted order, not from earlier attempts
        order = replace(job.order, status=OrderStatus.PENDING, attempts=attempt, failure_reason=None)
        lifecycle = OrderLifecycle(order.order_id)
        self.stats["attempts"] += 1

        logger.info("Processing order", order_id=order.order_id,
                    attempt=attempt, max_attempts=job.max_attempts)

        async with measure_time("order_attempt"):
            # 1. Routing
            lifecycle.advance(OrderStatus.ROUTING)
            routed = await self._guard(
                self.router.select_best(order.token_in, order.token_out, order.amount)
            )
            if not isinstance(routed, Ok):
                return await self._fail(job, order, lifecycle, routed)

            decision = routed.value
            event_logger.log_routing(
                order.order_id,
                decision.selected_venue.value,
                decision.rule.value,
                decision.reason,
                net_rate=round(decision.best_quote.net_rate, 6),
            )
            order = await self._transition(
                order,
                OrderStatus.ROUTING,
                OrderUpdate(routing_decision=decision, venue_id=decision.selected_venue.value),
                message=decision.reason,
                data={"routingDecision": decision.to_dict()},
            )

            # 2. Building
            lifecycle.advance(OrderStatus.BUILDING)
            order = await self._transition(
                order,
                OrderStatus.BUILDING,
                message="Building transaction",
                data={"venue": decision.selected_venue.value},
            )
            await asyncio.sleep(self.config.build_delay_seconds)

            # 3. Submission
            executed = await self._guard(self.executor.execute(decision.best_quote, order))
            if not isinstance(executed, Ok):
                return await self._fail(job, order, lifecycle, executed)

            receipt: SettlementReceipt = executed.value
            lifecycle.advance(OrderStatus.SUBMITTED)
            order = await self._transition(
                order,
                OrderStatus.SUBMITTED,
                OrderUpdate(settlement_ref=receipt.settlement_ref, venue_id=receipt.venue.value),
                message="Transaction submitted",
                data={"settlementRef": receipt.settlement_ref, "venue": receipt.venue.value},
            )

            # 4. Confirmation: durable first, then live snapshot
            update = OrderUpdate(
                completed_at=get_utc_datetime(),
                execution_price=receipt.price,
                execution_amount=receipt.amount,
                attempts=attempt,
            )
            confirmed = update.apply_to(order, OrderStatus.CONFIRMED)
            try:
                await self.store.archive(confirmed)
            except DurablePersistenceError as e:
                return await self._fail(job, order, lifecycle, Retryable(e.message, e))

            lifecycle.advance(OrderStatus.CONFIRMED)
            order = confirmed
            await self._write_snapshot(order)
            await self._notify(
                order.order_id,
                OrderStatus.CONFIRMED,
                "Order executed successfully",
                {
                    "settlementRef": receipt.settlement_ref,
                    "venue": receipt.venue.value,
                    "executionPrice": receipt.price,
                    "executionAmount": receipt.amount,
                },
            )
            increment_counter(ORDER_TRANSITIONS, status=OrderStatus.CONFIRMED.value)
            event_logger.log_transition(order.order_id, OrderStatus.CONFIRMED.value, attempt)

        event_logger.log_settlement(
            order.order_id,
            receipt.venue.value,
            receipt.settlement_ref,
            receipt.price,
            receipt.amount,
            attempt=attempt,
        )
        increment_counter(ORDERS_COMPLETED, venue=receipt.venue.value)
        self.stats["confirmed"] += 1

        return Ok(AttemptReport(order, lifecycle.history))

    async def _guard(self, step: Awaitable[Any]) -> Outcome:
        """Await a step, turning tagged exceptions into outcomes."""
        try:
            return Ok(await step)
        except Exception as e:
            return failure_from_exception(e)

    async def _transition(
        self,
        order: Order,
        status: OrderStatus,
        update: Optional[OrderUpdate] = None,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> Order:
        """Apply ``update`` locally, then persist and notify (both best effort)."""
        update = update or OrderUpdate()
        order = update.apply_to(order, status)

        await self._persist(order.order_id, status, update)
        await self._notify(order.order_id, status, message, data)

        increment_counter(ORDER_TRANSITIONS, status=status.value)
        event_logger.log_transition(order.order_id, status.value, order.attempts)
        return order

    async def _fail(
        self,
        job: OrderJob,
        order: Order,
        lifecycle: OrderLifecycle,
        failure: Union[Retryable, Fatal]
    ) -> Union[Retryable, Fatal]:
        attempt = job.attempts_made
        will_retry = isinstance(failure, Retryable) and attempt < job.max_attempts
        lifecycle.advance(OrderStatus.FAILED)

        event_logger.log_failure(
            order.order_id,
            failure.reason,
            attempt,
            job.max_attempts,
            will_retry,
            failed_in=lifecycle.history[-2].value,
        )

        if will_retry:
            reason = f"Attempt {attempt} failed: {failure.reason}"
            await self._notify(
                order.order_id,
                OrderStatus.FAILED,
                f"{reason}. Retrying",
                self._failure_data(reason, attempt, job.max_attempts, True),
            )
            # The live snapshot goes back to pending for the next attempt
            await self._write_snapshot(
                replace(job.order, status=OrderStatus.PENDING, attempts=attempt, failure_reason=reason)
            )
            self.stats["retried"] += 1
            return failure

        reason = f"Failed after {attempt} attempt(s): {failure.reason}"
        failed = OrderUpdate(
            failed_at=get_utc_datetime(),
            failure_reason=reason,
            attempts=attempt,
        ).apply_to(order, OrderStatus.FAILED)

        await self._notify(
            order.order_id,
            OrderStatus.FAILED,
            reason,
            self._failure_data(reason, attempt, job.max_attempts, False),
        )
        try:
            await self.store.archive(failed)
        except DurablePersistenceError as e:
            logger.error("Failed order could not be archived", order_id=order.order_id, exception=e)
        await self._write_snapshot(failed)

        kind = "exhausted" if isinstance(failure, Retryable) else "permanent"
        increment_counter(ORDERS_FAILED, kind=kind)
        increment_counter(ORDER_TRANSITIONS, status=OrderStatus.FAILED.value)
        self.stats["failed"] += 1

        return Fatal(reason, failure.error)

    @staticmethod
    def _failure_data(reason: str, attempt: int, max_attempts: int, will_retry: bool) -> Dict[str, Any]:
        return {
            "failureReason": reason,
            "attemptNumber": attempt,
            "maxAttempts": max_attempts,
            "willRetry": will_retry,
        }

    async def _persist(
        self,
        order_id: str,
        status: OrderStatus,
        update: Optional[OrderUpdate] = None
    ) -> None:
        try:
            await self.store.update_status(order_id, status, update)
        except Exception as e:
            increment_counter(ERRORS_TOTAL, component="order_store", error_type=type(e).__name__)
            logger.warning("Live snapshot update failed", order_id=order_id,
                           status=status.value, exception=e)

    async def _write_snapshot(self, order: Order) -> None:
        """Replace the live snapshot with ``order`` as a whole (best effort)."""
        try:
            await self.store.put(order)
        except Exception as e:
            increment_counter(ERRORS_TOTAL, component="order_store", error_type=type(e).__name__)
            logger.warning("Live snapshot write failed", order_id=order.order_id,
                           status=order.status.value, exception=e)

    async def _notify(
        self,
        order_id: str,
        status: OrderStatus,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> None:
        event = StatusEvent(order_id=order_id, status=status, message=message, data=data)
        try:
            await self.broadcaster.publish(order_id, event)
        except Exception as e:
            increment_counter(ERRORS_TOTAL, component="broadcaster", error_type=type(e).__name__)
            logger.warning("Status notification failed", order_id=order_id,
                           status=status.value, exception=e)

    def get_stats(self) -> Dict[str, int]:
        """Get worker statistics."""
        return dict(self.stats)
