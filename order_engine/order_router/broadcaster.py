"""
Per-order status fan-out to live subscriber channels.
"""

import asyncio
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Protocol, Set, Tuple

from ..common.logging import get_logger
from ..common.monitoring import (
    ACTIVE_SUBSCRIPTIONS,
    NOTIFICATIONS_DROPPED,
    NOTIFICATIONS_SENT,
    increment_counter,
    set_gauge,
)
from ..common.utils import get_utc_datetime
from .models import StatusEvent

logger = get_logger(__name__)


class Channel(Protocol):
    """A push channel to one client (e.g. a WebSocket)."""

    @property
    def is_open(self) -> bool: ...

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...


@dataclass
class Subscription:
    subscription_id: str
    order_id: str
    channel: Channel
    connected_at: datetime = field(default_factory=get_utc_datetime)


class NotificationBroadcaster:
    """
    Owns the subscription registry and pushes status events to subscribers.

    Registry mutations are guarded by an internal lock. Sends run outside the
    lock and concurrently; a closed or failing channel is dropped without
    affecting delivery to the others.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._by_order: Dict[str, Set[str]] = {}
        self._subscriptions: Dict[str, Subscription] = {}

    def subscribe(self, channel: Channel, order_id: str) -> str:
        """Register ``channel`` for events of ``order_id``."""
        subscription_id = f"sub_{uuid.uuid4().hex[:12]}"
        subscription = Subscription(subscription_id, order_id, channel)

        with self._lock:
            self._subscriptions[subscription_id] = subscription
            self._by_order.setdefault(order_id, set()).add(subscription_id)
            total = len(self._subscriptions)

        set_gauge(ACTIVE_SUBSCRIPTIONS, total)
        logger.info("Subscriber added", order_id=order_id, subscription_id=subscription_id)
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if it was already gone."""
        with self._lock:
            subscription = self._subscriptions.pop(subscription_id, None)
            if subscription is None:
                return False

            ids = self._by_order.get(subscription.order_id)
            if ids is not None:
                ids.discard(subscription_id)
                if not ids:
                    del self._by_order[subscription.order_id]
            total = len(self._subscriptions)

        set_gauge(ACTIVE_SUBSCRIPTIONS, total)
        logger.info("Subscriber removed", order_id=subscription.order_id, subscription_id=subscription_id)
        return True

    async def publish(self, order_id: str, event: StatusEvent) -> int:
        """
        Send ``event`` to every subscriber of ``order_id``.

        Returns:
            Number of channels the event was delivered to
        """
        targets = self._snapshot(order_id)
        if not targets:
            return 0

        message = event.to_json()
        results = await asyncio.gather(
            *(self._deliver(sub, message) for sub in targets),
            return_exceptions=True,
        )

        delivered = 0
        for sub, result in zip(targets, results):
            if result is True:
                delivered += 1
                continue

            reason = "closed" if result is False else "error"
            if isinstance(result, BaseException):
                logger.warning("Dropping subscriber after send failure",
                               order_id=order_id, subscription_id=sub.subscription_id, exception=result)
            increment_counter(NOTIFICATIONS_DROPPED, reason=reason)
            self.unsubscribe(sub.subscription_id)

        if delivered:
            increment_counter(NOTIFICATIONS_SENT, status=event.status.value)
        return delivered

    async def close_order(self, order_id: str) -> int:
        """Close and drop every channel subscribed to ``order_id``."""
        targets = self._snapshot(order_id)
        await self._close_channels(targets)
        return len(targets)

    async def close_all(self) -> None:
        """Close every channel and empty the registry."""
        with self._lock:
            targets = list(self._subscriptions.values())
        await self._close_channels(targets)
        logger.info("All subscribers closed", count=len(targets))

    def subscriber_count(self, order_id: str) -> int:
        with self._lock:
            return len(self._by_order.get(order_id, ()))

    @property
    def total_subscriptions(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _snapshot(self, order_id: str) -> List[Subscription]:
        with self._lock:
            return [self._subscriptions[sid] for sid in self._by_order.get(order_id, ())]

    @staticmethod
    async def _deliver(subscription: Subscription, message: str) -> bool:
        if not subscription.channel.is_open:
            return False
        await subscription.channel.send(message)
        return True

    async def _close_channels(self, targets: List[Subscription]) -> None:
        results: List[Tuple[Subscription, object]] = list(zip(
            targets,
            await asyncio.gather(*(sub.channel.close() for sub in targets), return_exceptions=True),
        ))
        for sub, result in results:
            if isinstance(result, BaseException):
                logger.warning("Error closing subscriber channel",
                               subscription_id=sub.subscription_id, exception=result)
            self.unsubscribe(sub.subscription_id)
