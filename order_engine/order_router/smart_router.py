"""
Best-execution routing across venues.

Quotes from every venue are requested together and awaited jointly, so a
routing attempt takes as long as the slowest quote. The winner is picked by:

1. strictly higher net rate;
2. on an exact tie, higher advertised liquidity;
3. otherwise the configured primary venue.
"""

import asyncio
from typing import Dict, Optional, Tuple

from ..common.config import QuoteConfig
from ..common.exceptions import ConfigurationError, PermanentProcessingError
from ..common.logging import get_logger
from ..common.monitoring import ROUTING_DECISIONS, increment_counter, measure_time
from ..common.types import RoutingRule, Venue
from ..common.utils import calculate_percentage_change
from .models import Quote, RoutingDecision
from .quote_engine import QuoteEngine

logger = get_logger(__name__)


def choose_best(
    quotes: Dict[Venue, Quote],
    primary_venue: Venue = Venue.RAYDIUM
) -> Tuple[Venue, RoutingRule, str]:
    """
    Apply the selection rules to a set of quotes.

    Args:
        quotes: One quote per venue
        primary_venue: Venue chosen when rates and liquidity cannot separate quotes

    Returns:
        (selected venue, rule that fired, human-readable rationale)
    """
    if not quotes:
        raise PermanentProcessingError("No quotes to choose from", error_code="NO_QUOTES")

    top_rate = max(q.net_rate for q in quotes.values())
    leaders = [q for q in quotes.values() if q.net_rate == top_rate]

    if len(leaders) == 1:
        best = leaders[0]
        others = [q for q in quotes.values() if q.venue != best.venue]
        if not others:
            return best.venue, RoutingRule.NET_RATE, f"{best.venue.value} was the only venue quoted"

        runner_up = max(others, key=lambda q: q.net_rate)
        advantage = calculate_percentage_change(runner_up.net_rate, best.net_rate)
        reason = (
            f"{best.venue.value} offers better net rate "
            f"({advantage:.2f}% better than {runner_up.venue.value})"
        )
        return best.venue, RoutingRule.NET_RATE, reason

    # Exact tie on net rate
    if all(q.liquidity is not None for q in leaders):
        top_liquidity = max(q.liquidity for q in leaders)
        deepest = [q for q in leaders if q.liquidity == top_liquidity]
        if len(deepest) == 1:
            venue = deepest[0].venue
            return venue, RoutingRule.LIQUIDITY, f"Net rates equal, {venue.value} selected for higher liquidity"

    leader_venues = [q.venue for q in leaders]
    venue = primary_venue if primary_venue in leader_venues else leader_venues[0]
    return venue, RoutingRule.DEFAULT, f"Net rates equal, {venue.value} selected as default"


class RoutingSelector:
    """
    Fetches quotes from all venues concurrently and selects the best one.
    """

    def __init__(
        self,
        quote_engine: QuoteEngine,
        config: Optional[QuoteConfig] = None
    ):
        """
        Initialize routing selector.

        Args:
            quote_engine: Source of venue quotes
            config: Quote configuration (primary venue)
        """
        self.quote_engine = quote_engine
        self.config = config or quote_engine.config

        if self.config.primary_venue not in self.quote_engine.config.venues:
            raise ConfigurationError(
                f"Primary venue {self.config.primary_venue.value} has no quote profile",
                error_code="UNKNOWN_PRIMARY_VENUE",
            )

        self.routing_stats: Dict[str, int] = {
            "decisions": 0,
            **{f"venue_{v.value.lower()}": 0 for v in Venue},
            **{f"rule_{r.value}": 0 for r in RoutingRule},
        }

    async def select_best(
        self,
        token_in: str,
        token_out: str,
        amount: float
    ) -> RoutingDecision:
        """
        Quote every venue and pick the best execution path.

        Args:
            token_in: Token being sold
            token_out: Token being bought
            amount: Amount of token_in to sell

        Returns:
            RoutingDecision carrying the winner and every venue's quote
        """
        venues = self.quote_engine.venues
        logger.info(
            "Fetching venue quotes",
            venues=[v.value for v in venues],
            token_in=token_in,
            token_out=token_out,
            amount=amount,
        )

        async with measure_time("routing"):
            quotes = await asyncio.gather(*(
                self.quote_engine.quote(venue, token_in, token_out, amount)
                for venue in venues
            ))

        by_venue = dict(zip(venues, quotes))
        venue, rule, reason = choose_best(by_venue, self.config.primary_venue)

        decision = RoutingDecision(
            selected_venue=venue,
            quotes=by_venue,
            reason=reason,
            rule=rule,
        )

        self.routing_stats["decisions"] += 1
        self.routing_stats[f"venue_{venue.value.lower()}"] += 1
        self.routing_stats[f"rule_{rule.value}"] += 1
        increment_counter(ROUTING_DECISIONS, venue=venue.value, rule=rule.value)

        logger.debug(
            "Routing decision",
            venue=venue.value,
            rule=rule.value,
            reason=reason,
            net_rate=round(decision.best_quote.net_rate, 6),
            amount_out=round(decision.best_quote.amount_out, 4),
        )

        return decision

    def get_stats(self) -> Dict[str, int]:
        """Get routing statistics."""
        return dict(self.routing_stats)
