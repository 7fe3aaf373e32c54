"""
Order Router composition root.

Builds and owns every processing component:
- Quote engine and routing selector
- Execution simulator
- Live and durable order stores
- Notification broadcaster
- Job queue and order worker
"""

import math
from typing import Any, Dict, List, Optional

import duckdb
from redis.asyncio import Redis

from ..common.config import Settings
from ..common.exceptions import ValidationError
from ..common.logging import get_logger
from ..common.monitoring import ORDERS_SUBMITTED, HealthChecker, increment_counter
from ..common.types import SUPPORTED_ORDER_TYPES, OrderType
from .broadcaster import NotificationBroadcaster
from .job_queue import OrderQueue
from .models import Order
from .order_executor import ExecutionSimulator
from .order_store import DurableOrderStore, OrderStateStore
from .quote_engine import QuoteEngine
from .smart_router import RoutingSelector
from .worker import OrderWorker

logger = get_logger(__name__)


class OrderRouter:
    """
    Main order processing system coordinating all components.

    Nothing here is a module-level singleton: the router is constructed once
    by the entry point and handed to the HTTP layer.
    """

    def __init__(
        self,
        redis: Redis,
        duckdb_conn: duckdb.DuckDBPyConnection,
        app_settings: Optional[Settings] = None
    ):
        """
        Initialize order router.

        Args:
            redis: Client for the live order store
            duckdb_conn: Connection to the durable order store
            app_settings: Application settings
        """
        self.settings = app_settings or Settings()

        # Initialize components
        self.quote_engine = QuoteEngine(self.settings.quotes)
        self.routing_selector = RoutingSelector(self.quote_engine, self.settings.quotes)
        self.executor = ExecutionSimulator(self.settings.execution)
        self.durable_store = DurableOrderStore(duckdb_conn)
        self.store = OrderStateStore(redis, self.durable_store, self.settings.redis)
        self.broadcaster = NotificationBroadcaster()
        self.worker = OrderWorker(
            self.routing_selector,
            self.executor,
            self.store,
            self.broadcaster,
            self.settings.worker,
        )
        self.queue = OrderQueue(self.settings.queue, self.settings.worker)
        self.health_checker = HealthChecker(redis, duckdb_conn, self.settings.monitoring)

        # State
        self.running = False

        logger.info("Order router initialized")

    async def start(self) -> None:
        """Start order router."""
        if self.running:
            logger.warning("Order router already running")
            return

        logger.info("Starting order router")
        self.running = True
        await self.queue.start(self.worker.process)
        logger.info("Order router started")

    async def stop(self) -> None:
        """Stop order router."""
        if not self.running:
            return

        logger.info("Stopping order router")
        self.running = False

        await self.queue.stop()
        await self.broadcaster.close_all()

        logger.info("Order router stopped", stats=self.get_stats())

    async def submit_order(
        self,
        token_in: str,
        token_out: str,
        amount: float,
        order_type: OrderType = OrderType.MARKET
    ) -> Order:
        """
        Accept an order and queue it for processing.

        Args:
            token_in: Token being sold
            token_out: Token being bought
            amount: Amount of token_in to sell
            order_type: Order type; only immediate execution is processed

        Returns:
            The pending order

        Raises:
            ValidationError: If the order cannot be accepted
        """
        details: List[Dict[str, str]] = []
        if not token_in:
            details.append({"field": "tokenIn", "message": "tokenIn is required"})
        if not token_out:
            details.append({"field": "tokenOut", "message": "tokenOut is required"})
        if amount is None or not math.isfinite(amount) or amount <= 0:
            details.append({"field": "amount", "message": "amount must be a finite number greater than 0"})
        if order_type not in SUPPORTED_ORDER_TYPES:
            details.append({
                "field": "orderType",
                "message": f"orderType {order_type.value} is not supported yet",
            })
        if details:
            raise ValidationError("Validation failed", details=details, error_code="INVALID_ORDER")

        order = Order.create(token_in, token_out, amount, order_type)

        await self.store.put(order)
        await self.store.archive(order)

        if not self.queue.add(order):
            raise ValidationError(
                f"Order {order.order_id} is already queued",
                details=[{"field": "orderId", "message": "duplicate order id"}],
                error_code="DUPLICATE_ORDER",
            )

        increment_counter(ORDERS_SUBMITTED, order_type=order_type.value)
        logger.info("Order submitted",
                    order_id=order.order_id,
                    token_in=token_in,
                    token_out=token_out,
                    amount=amount,
                    order_type=order_type.value)

        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Current order state from the live store, else the archive."""
        return await self.store.lookup(order_id)

    def get_stats(self) -> Dict[str, Any]:
        """Get component statistics."""
        return {
            "running": self.running,
            "queue": self.queue.get_stats(),
            "worker": self.worker.get_stats(),
            "routing": self.routing_selector.get_stats(),
            "execution": self.executor.get_stats(),
            "subscriptions": self.broadcaster.total_subscriptions,
        }
