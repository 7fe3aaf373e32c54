"""
Simulated venue quotes.

Each venue draws its rate, fee and liquidity from its own sampling bands so
the two venues diverge realistically. A real venue integration must keep the
same ``quote`` contract and a comparable latency.
"""

import asyncio
import time
from typing import List, Optional

import numpy as np

from ..common.config import QuoteConfig
from ..common.exceptions import PermanentProcessingError
from ..common.logging import get_logger
from ..common.monitoring import QUOTE_LATENCY, observe_histogram
from ..common.types import Venue
from .models import Quote

logger = get_logger(__name__)


class QuoteEngine:
    """Produces simulated quotes for a venue, token pair and amount."""

    def __init__(
        self,
        config: Optional[QuoteConfig] = None,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Initialize quote engine.

        Args:
            config: Quote configuration (latency and venue bands)
            rng: Random generator, seeded from config when omitted
        """
        self.config = config or QuoteConfig()
        self.rng = rng or np.random.default_rng(self.config.seed)

    @property
    def venues(self) -> List[Venue]:
        return list(self.config.venues)

    async def quote(
        self,
        venue: Venue,
        token_in: str,
        token_out: str,
        amount: float
    ) -> Quote:
        """
        Fetch a quote from one venue.

        Args:
            venue: Venue to quote
            token_in: Token being sold
            token_out: Token being bought
            amount: Amount of token_in to sell

        Returns:
            Quote with fee, output amount and net rate
        """
        profile = self.config.venues.get(venue)
        if profile is None:
            raise PermanentProcessingError(
                f"Unknown venue {venue}",
                error_code="UNKNOWN_VENUE",
            )
        if amount <= 0:
            raise PermanentProcessingError(
                f"Amount must be positive, got {amount}",
                error_code="INVALID_AMOUNT",
            )

        start_time = time.perf_counter()

        # Simulated network round trip
        await asyncio.sleep(self.config.latency_seconds)

        rate = float(self.rng.uniform(profile.rate_min, profile.rate_max))
        fee_pct = float(self.rng.uniform(profile.fee_min, profile.fee_max))
        liquidity = float(self.rng.uniform(profile.liquidity_min, profile.liquidity_max))

        fee = amount * fee_pct
        amount_out = (amount - fee) * rate
        net_rate = amount_out / amount

        quote = Quote(
            venue=venue,
            rate=rate,
            fee=fee,
            net_rate=net_rate,
            amount_out=amount_out,
            liquidity=liquidity,
        )

        observe_histogram(QUOTE_LATENCY, time.perf_counter() - start_time, venue=venue.value)
        logger.debug(
            "Venue quote",
            venue=venue.value,
            token_in=token_in,
            token_out=token_out,
            amount=amount,
            amount_out=round(amount_out, 4),
            fee=round(fee, 6),
            net_rate=round(net_rate, 6),
        )

        return quote
