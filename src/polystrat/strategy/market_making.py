"""Market-making quote math and candidate selection.

Quotes are recomputed every refresh tick from the current book and the
current inventory skew; nothing here is cached between ticks.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from polystrat.config import MarketMakingConfig
from polystrat.models.market import MarketSnapshot
from polystrat.models.opportunity import (
    OrderSide,
    Opportunity,
    StrategyType,
    TokenLeg,
)
from polystrat.models.orderbook import OrderBook

logger = logging.getLogger(__name__)

MIN_PRICE = 0.01
MAX_PRICE = 0.99
NEUTRAL_MID = 0.5
TICK = 0.01


@dataclass(frozen=True)
class Quote:
    """Two-sided quote on the YES token.

    ``no_bid`` is the equivalent NO-token bid for ``sell``: buying NO at
    ``1 − sell`` and merging with held YES realizes the same price.
    """

    mid: float
    buy: float
    sell: float
    has_market: bool = True
    skewed: bool = False

    @property
    def no_bid(self) -> float:
        return _clamp(round(1.0 - self.sell, 2))

    @property
    def width(self) -> float:
        return self.sell - self.buy


def _clamp(price: float) -> float:
    return min(MAX_PRICE, max(MIN_PRICE, price))


def _tick_down(price: float) -> float:
    return math.floor(price / TICK + 1e-9) * TICK


def _tick_up(price: float) -> float:
    return math.ceil(price / TICK - 1e-9) * TICK


def mid_price(best_bid: float, best_ask: float) -> tuple[float, bool]:
    """(mid, has_market). Zero on either side means no market → neutral 0.5."""
    if best_bid <= 0 or best_ask <= 0:
        return NEUTRAL_MID, False
    return (best_bid + best_ask) / 2.0, True


def compute_quotes(
    best_bid: float,
    best_ask: float,
    spread: float,
    skew: float = 0.0,
    skew_threshold: float = 1.0,
    over_held: Optional[str] = None,
    skew_adjustment: float = 0.02,
) -> Quote:
    """Build buy/sell quotes around the mid.

    Args:
        spread: full quoted width as a fraction of mid (0.02 = 2%).
        skew: current inventory skew in [0, 1].
        over_held: "yes" or "no", the side with more inventory.
        skew_adjustment: base multiplier shift when skewed.

    When ``skew > skew_threshold`` both quotes move away from the
    over-held side, the bid by ``skew_adjustment`` and the ask by half of
    it (YES over-held) or the reverse (NO over-held), so the quote is
    shifted asymmetrically instead of re-centered.
    """
    mid, has_market = mid_price(best_bid, best_ask)
    half = spread / 2.0
    buy = mid * (1.0 - half)
    sell = mid * (1.0 + half)

    skewed = False
    if skew > skew_threshold and over_held in ("yes", "no"):
        skewed = True
        if over_held == "yes":
            buy *= 1.0 - skew_adjustment
            sell *= 1.0 - skew_adjustment / 2.0
        else:
            buy *= 1.0 + skew_adjustment / 2.0
            sell *= 1.0 + skew_adjustment

    return Quote(
        mid=mid,
        buy=_clamp(round(_tick_down(buy), 2)),
        sell=_clamp(round(_tick_up(sell), 2)),
        has_market=has_market,
        skewed=skewed,
    )


def classify_market_making(
    snapshot: MarketSnapshot,
    books: dict[str, OrderBook],
    config: MarketMakingConfig,
) -> Optional[Opportunity]:
    """Pick a binary market worth quoting.

    Requires a two-sided YES book and liquidity/volume above the configured
    floors. Expected profit is one full round trip: ``order_size`` YES bought
    at ``buy`` plus ``order_size`` NO bought at ``1 − sell``, merged for $1.
    """
    if not snapshot.is_binary:
        return None
    if snapshot.liquidity < config.min_liquidity or snapshot.volume < config.min_volume:
        return None

    yes, no = snapshot.outcomes
    book = books.get(yes.token_id)
    if book is None:
        return None

    quote = compute_quotes(book.best_bid, book.best_ask, config.spread)
    if not quote.has_market or quote.buy >= quote.sell:
        return None

    size = config.order_size
    investment = size * (quote.buy + quote.no_bid)
    return Opportunity(
        condition_id=snapshot.condition_id,
        question=snapshot.question,
        strategy_type=StrategyType.MARKET_MAKING,
        price_sum=snapshot.price_sum,
        spread=(1.0 - snapshot.price_sum) * 100.0,
        expected_profit=size * (1.0 - quote.buy - quote.no_bid),
        investment_amount=investment,
        tokens=[
            TokenLeg(yes.token_id, yes.label, quote.buy, size, OrderSide.BUY),
            TokenLeg(no.token_id, no.label, quote.no_bid, size, OrderSide.BUY),
        ],
    )
