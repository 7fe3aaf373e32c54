"""
Settlement simulation for routed orders.

Stands in for transaction submission and confirmation on the selected venue:
waits a randomized confirmation delay, applies a small slippage to the quoted
net rate and returns a settlement receipt with a synthetic reference.
"""

import asyncio
import time
from collections import deque
from typing import Deque, Dict, Optional

import numpy as np

from ..common.config import ExecutionConfig
from ..common.exceptions import PermanentProcessingError
from ..common.logging import get_logger
from ..common.monitoring import EXECUTION_LATENCY, observe_histogram
from .models import Order, Quote, SettlementReceipt

logger = get_logger(__name__)

SETTLEMENT_REF_LENGTH = 64


class ExecutionSimulator:
    """
    Simulated settlement engine.

    Features:
    - Randomized confirmation delay
    - Bounded slippage against the quoted net rate
    - Synthetic 64-hex settlement references
    """

    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Initialize execution simulator.

        Args:
            config: Execution configuration
            rng: Random generator, seeded from config when omitted
        """
        self.config = config or ExecutionConfig()
        self.rng = rng or np.random.default_rng(self.config.seed)

        # Performance tracking
        self.execution_times: Deque[float] = deque(maxlen=1000)
        self.settled_count = 0

        logger.info("Execution simulator initialized", config=self.config.model_dump())

    async def execute(self, quote: Quote, order: Order) -> SettlementReceipt:
        """
        Settle ``order`` on the venue that produced ``quote``.

        Args:
            quote: Winning quote from routing
            order: Order being executed

        Returns:
            SettlementReceipt with realized price and amount
        """
        if order.amount <= 0:
            raise PermanentProcessingError(
                f"Cannot execute non-positive amount {order.amount}",
                error_code="INVALID_AMOUNT",
                context={"order_id": order.order_id},
            )

        start_time = time.perf_counter()
        logger.info(
            "Executing swap",
            order_id=order.order_id,
            venue=quote.venue.value,
            amount=order.amount,
            token_in=order.token_in,
            token_out=order.token_out,
        )

        delay = float(self.rng.uniform(self.config.min_delay_seconds, self.config.max_delay_seconds))
        await asyncio.sleep(delay)

        slippage = float(self.rng.uniform(-self.config.max_slippage_pct, self.config.max_slippage_pct))
        price = quote.net_rate * (1.0 + slippage)
        amount = order.amount * price

        receipt = SettlementReceipt(
            success=True,
            settlement_ref=self._generate_settlement_ref(),
            price=price,
            amount=amount,
            venue=quote.venue,
        )

        execution_time = time.perf_counter() - start_time
        self.execution_times.append(execution_time)
        self.settled_count += 1
        observe_histogram(EXECUTION_LATENCY, execution_time, venue=quote.venue.value)

        logger.info(
            "Swap executed",
            order_id=order.order_id,
            venue=quote.venue.value,
            settlement_ref=receipt.settlement_ref,
            price=round(price, 6),
            amount=round(amount, 4),
            slippage_pct=round(slippage * 100, 4),
        )

        return receipt

    def _generate_settlement_ref(self) -> str:
        """Generate a 64-hex-character settlement reference."""
        digits = self.rng.integers(0, 16, size=SETTLEMENT_REF_LENGTH)
        return "".join(format(int(d), "x") for d in digits)

    def get_stats(self) -> Dict[str, float]:
        """Get execution statistics."""
        avg_time = float(np.mean(self.execution_times)) if self.execution_times else 0.0
        return {
            "settled_count": self.settled_count,
            "avg_execution_seconds": avg_time,
        }
