"""
Order Router for multi-venue trade execution.

Order processing pipeline with:
- Concurrent venue quoting and best-execution routing
- Retrying state-machine worker
- Per-order status fan-out
- Live and durable order persistence
"""

from .broadcaster import NotificationBroadcaster
from .job_queue import OrderQueue
from .main import OrderRouter
from .models import Order, OrderUpdate, Quote, RoutingDecision, SettlementReceipt, StatusEvent
from .order_executor import ExecutionSimulator
from .order_store import DurableOrderStore, OrderStateStore
from .quote_engine import QuoteEngine
from .smart_router import RoutingSelector
from .worker import OrderWorker

__all__ = [
    "DurableOrderStore",
    "ExecutionSimulator",
    "NotificationBroadcaster",
    "Order",
    "OrderQueue",
    "OrderRouter",
    "OrderStateStore",
    "OrderUpdate",
    "OrderWorker",
    "Quote",
    "QuoteEngine",
    "RoutingDecision",
    "RoutingSelector",
    "SettlementReceipt",
    "StatusEvent",
]
