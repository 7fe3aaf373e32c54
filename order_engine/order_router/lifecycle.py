"""Per-attempt status tracking along the order transition graph."""

from typing import List

from ..common.exceptions import InvalidTransitionError
from ..common.types import OrderStatus


class OrderLifecycle:
    """
    Records the status walk of one processing attempt.

    Every attempt starts at PENDING; each ``advance`` must follow
    ``ALLOWED_TRANSITIONS`` so no state is ever revisited.
    """

    def __init__(self, order_id: str, start: OrderStatus = OrderStatus.PENDING):
        self.order_id = order_id
        self._history: List[OrderStatus] = [start]

    @property
    def current(self) -> OrderStatus:
        return self._history[-1]

    @property
    def history(self) -> List[OrderStatus]:
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return self.current.is_terminal

    def advance(self, target: OrderStatus) -> OrderStatus:
        """Move to ``target`` or raise InvalidTransitionError."""
        if not self.current.can_transition_to(target):
            raise InvalidTransitionError(
                f"Invalid transition {self.current.value} -> {target.value}",
                error_code="INVALID_TRANSITION",
                context={"order_id": self.order_id, "history": [s.value for s in self._history]},
            )
        self._history.append(target)
        return target
