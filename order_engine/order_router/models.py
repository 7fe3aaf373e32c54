"""
Order, quote and event data structures.

Dict forms use camelCase keys; they are what Redis stores and what
subscribers receive. ``to_dict``/``from_dict`` round-trip exactly.
"""

import json
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, Optional

from ..common.types import OrderStatus, OrderType, RoutingRule, Venue
from ..common.utils import format_iso, generate_id, get_utc_datetime, get_utc_timestamp, parse_iso


@dataclass(frozen=True)
class Quote:
    """Price quote from one venue. One per venue per routing attempt."""

    venue: Venue
    rate: float  # quoted base rate, tokenOut per tokenIn before fees
    fee: float  # in tokenIn units
    net_rate: float  # amount_out / amount
    amount_out: float
    liquidity: Optional[float] = None
    quoted_at: datetime = field(default_factory=get_utc_datetime)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue": self.venue.value,
            "rate": self.rate,
            "fee": self.fee,
            "netRate": self.net_rate,
            "amountOut": self.amount_out,
            "liquidity": self.liquidity,
            "quotedAt": format_iso(self.quoted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quote":
        return cls(
            venue=Venue(data["venue"]),
            rate=data["rate"],
            fee=data["fee"],
            net_rate=data["netRate"],
            amount_out=data["amountOut"],
            liquidity=data.get("liquidity"),
            quoted_at=parse_iso(data["quotedAt"]),
        )


@dataclass(frozen=True)
class RoutingDecision:
    """Outcome of one routing attempt. Keeps every venue's quote for audit."""

    selected_venue: Venue
    quotes: Dict[Venue, Quote]
    reason: str
    rule: RoutingRule
    decided_at: datetime = field(default_factory=get_utc_datetime)

    @property
    def best_quote(self) -> Quote:
        return self.quotes[self.selected_venue]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selectedVenue": self.selected_venue.value,
            "quotes": {venue.value: quote.to_dict() for venue, quote in self.quotes.items()},
            "reason": self.reason,
            "rule": self.rule.value,
            "decidedAt": format_iso(self.decided_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoutingDecision":
        return cls(
            selected_venue=Venue(data["selectedVenue"]),
            quotes={Venue(v): Quote.from_dict(q) for v, q in data["quotes"].items()},
            reason=data["reason"],
            rule=RoutingRule(data["rule"]),
            decided_at=parse_iso(data["decidedAt"]),
        )


@dataclass(frozen=True)
class SettlementReceipt:
    """Result of one simulated settlement."""

    success: bool
    settlement_ref: str
    price: float
    amount: float
    venue: Venue
    settled_at: datetime = field(default_factory=get_utc_datetime)


@dataclass(frozen=True)
class OrderUpdate:
    """
    Partial update merged into an order snapshot.

    A field left as None does not touch the snapshot. ``completed_at`` and
    ``failed_at`` are set-once: an existing value on the snapshot wins.
    """

    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    venue_id: Optional[str] = None
    execution_price: Optional[float] = None
    execution_amount: Optional[float] = None
    routing_decision: Optional[RoutingDecision] = None
    settlement_ref: Optional[str] = None
    attempts: Optional[int] = None

    SET_ONCE = ("completed_at", "failed_at")

    def apply_to(self, order: "Order", status: Optional[OrderStatus] = None) -> "Order":
        """Return a copy of ``order`` with this update (and status) merged in."""
        changes: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name in self.SET_ONCE and getattr(order, f.name) is not None:
                continue
            changes[f.name] = value

        if status is not None:
            changes["status"] = status

        return replace(order, **changes)


@dataclass
class Order:
    """Trade order and its execution metadata."""

    order_id: str
    token_in: str
    token_out: str
    amount: float
    order_type: OrderType = OrderType.MARKET
    status: OrderStatus = OrderStatus.PENDING
    submitted_at: datetime = field(default_factory=get_utc_datetime)

    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    venue_id: Optional[str] = None
    execution_price: Optional[float] = None
    execution_amount: Optional[float] = None
    routing_decision: Optional[RoutingDecision] = None
    settlement_ref: Optional[str] = None

    attempts: int = 0

    @classmethod
    def create(
        cls,
        token_in: str,
        token_out: str,
        amount: float,
        order_type: OrderType = OrderType.MARKET
    ) -> "Order":
        """Create a new pending order with a fresh identifier."""
        return cls(
            order_id=generate_id("order"),
            token_in=token_in,
            token_out=token_out,
            amount=float(amount),
            order_type=order_type,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "tokenIn": self.token_in,
            "tokenOut": self.token_out,
            "amount": self.amount,
            "orderType": self.order_type.value,
            "status": self.status.value,
            "submittedAt": format_iso(self.submitted_at),
            "completedAt": format_iso(self.completed_at),
            "failedAt": format_iso(self.failed_at),
            "failureReason": self.failure_reason,
            "venueId": self.venue_id,
            "executionPrice": self.execution_price,
            "executionAmount": self.execution_amount,
            "routingDecision": self.routing_decision.to_dict() if self.routing_decision else None,
            "settlementRef": self.settlement_ref,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        routing = data.get("routingDecision")
        return cls(
            order_id=data["orderId"],
            token_in=data["tokenIn"],
            token_out=data["tokenOut"],
            amount=data["amount"],
            order_type=OrderType(data["orderType"]),
            status=OrderStatus(data["status"]),
            submitted_at=parse_iso(data["submittedAt"]),
            completed_at=parse_iso(data.get("completedAt")),
            failed_at=parse_iso(data.get("failedAt")),
            failure_reason=data.get("failureReason"),
            venue_id=data.get("venueId"),
            execution_price=data.get("executionPrice"),
            execution_amount=data.get("executionAmount"),
            routing_decision=RoutingDecision.from_dict(routing) if routing else None,
            settlement_ref=data.get("settlementRef"),
            attempts=data.get("attempts", 0),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str) -> "Order":
        return cls.from_dict(json.loads(payload))


@dataclass
class StatusEvent:
    """Status frame pushed to subscribers of an order."""

    order_id: str
    status: OrderStatus
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    timestamp: int = field(default_factory=get_utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "orderId": self.order_id,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }
        if self.message is not None:
            payload["message"] = self.message
        if self.data is not None:
            payload["data"] = self.data
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
