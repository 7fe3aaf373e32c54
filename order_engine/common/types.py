"""
Common type definitions for the order execution engine.
"""

from enum import Enum
from typing import Dict, FrozenSet


class Venue(str, Enum):
    """Simulated liquidity venues."""
    RAYDIUM = "RAYDIUM"
    METEORA = "METEORA"


class OrderType(str, Enum):
    """Order types. Only MARKET (immediate execution) is processed."""
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    SNIPER = "SNIPER"


SUPPORTED_ORDER_TYPES: FrozenSet[OrderType] = frozenset({OrderType.MARKET})


class OrderStatus(str, Enum):
    """Order lifecycle states."""
    PENDING = "pending"
    ROUTING = "routing"
    BUILDING = "building"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions may occur."""
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check whether ``target`` is reachable in one step."""
        return target in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.CONFIRMED,
    OrderStatus.FAILED,
    OrderStatus.CANCELLED,
})

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ROUTING, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.ROUTING: frozenset({OrderStatus.BUILDING, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.BUILDING: frozenset({OrderStatus.SUBMITTED, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.SUBMITTED: frozenset({OrderStatus.CONFIRMED, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class RoutingRule(str, Enum):
    """Which selection rule decided a routing attempt."""
    NET_RATE = "net_rate"
    LIQUIDITY = "liquidity"
    DEFAULT = "default"


class JobState(str, Enum):
    """Queue job states."""
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"
