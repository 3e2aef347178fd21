"""Sum-to-one arbitrage (LONG / SHORT) over N-outcome markets.

LONG:  Σ prices < 1 − min_spread. Buy every outcome; exactly one redeems
       for $1, so profit = investment × (1 − p) / p.
SHORT: Σ prices > 1 + min_spread. Sell one unit of every outcome (held or
       freshly minted at $1 per set), profit = investment × (p − 1).
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from polystrat.config import ArbitrageConfig
from polystrat.models.market import MarketSnapshot
from polystrat.models.opportunity import (
    OrderSide,
    Opportunity,
    StrategyType,
    TokenLeg,
)
from polystrat.models.orderbook import OrderBook

logger = logging.getLogger(__name__)


def long_profit(price_sum: float, investment: float) -> float:
    """investment × (1 − p) / p."""
    return investment * (1.0 - price_sum) / price_sum


def short_profit(price_sum: float, investment: float) -> float:
    """investment × (p − 1)."""
    return investment * (price_sum - 1.0)


def floor_size(size: float) -> float:
    """CLOB 수량은 소수 2자리까지."""
    return math.floor(size * 100 + 1e-9) / 100


def leg_prices(
    snapshot: MarketSnapshot,
    books: dict[str, OrderBook],
    side: OrderSide,
    use_order_book: bool,
) -> Optional[list[float]]:
    """Executable price per outcome, in outcome order.

    BUY legs use the best ask, SELL legs the best bid. Without order books
    the snapshot's outcome prices are used. Returns None when any leg has
    no market.
    """
    prices = []
    for outcome in snapshot.outcomes:
        if use_order_book:
            book = books.get(outcome.token_id)
            if book is None:
                return None
            price = book.best_ask if side == OrderSide.BUY else book.best_bid
        else:
            price = outcome.price
        if price <= 0:
            return None
        prices.append(price)
    return prices


def classify_long(
    snapshot: MarketSnapshot,
    books: dict[str, OrderBook],
    config: ArbitrageConfig,
) -> Optional[Opportunity]:
    """Σ asks < 1 − min_spread → ARBITRAGE_LONG."""
    use_books = config.use_order_book and bool(books)
    prices = leg_prices(snapshot, books, OrderSide.BUY, use_books)
    if prices is None:
        return None

    price_sum = sum(prices)
    if price_sum >= 1.0 - config.min_spread:
        return None

    investment = config.trade_amount
    shares = floor_size(investment / price_sum)
    if shares <= 0:
        return None

    return Opportunity(
        condition_id=snapshot.condition_id,
        question=snapshot.question,
        strategy_type=StrategyType.ARBITRAGE_LONG,
        price_sum=price_sum,
        spread=(1.0 - price_sum) * 100.0,
        expected_profit=long_profit(price_sum, investment),
        investment_amount=investment,
        tokens=[
            TokenLeg(
                token_id=o.token_id,
                outcome=o.label,
                price=price,
                size=shares,
                side=OrderSide.BUY,
            )
            for o, price in zip(snapshot.outcomes, prices)
        ],
    )


def classify_short(
    snapshot: MarketSnapshot,
    books: dict[str, OrderBook],
    config: ArbitrageConfig,
) -> Optional[Opportunity]:
    """Σ bids > 1 + min_spread → ARBITRAGE_SHORT."""
    use_books = config.use_order_book and bool(books)
    prices = leg_prices(snapshot, books, OrderSide.SELL, use_books)
    if prices is None:
        return None

    price_sum = sum(prices)
    if price_sum <= 1.0 + config.min_spread:
        return None

    investment = config.trade_amount
    shares = floor_size(investment)

    return Opportunity(
        condition_id=snapshot.condition_id,
        question=snapshot.question,
        strategy_type=StrategyType.ARBITRAGE_SHORT,
        price_sum=price_sum,
        spread=(1.0 - price_sum) * 100.0,
        expected_profit=short_profit(price_sum, investment),
        investment_amount=investment,
        tokens=[
            TokenLeg(
                token_id=o.token_id,
                outcome=o.label,
                price=price,
                size=shares,
                side=OrderSide.SELL,
            )
            for o, price in zip(snapshot.outcomes, prices)
        ],
    )


def limit_price(price: float, side: OrderSide, max_slippage: float) -> float:
    """Slippage-bounded limit: price × (1 ± max_slippage), clamped to [0.01, 0.99].

    BUY rounds up and SELL rounds down to the 0.01 tick so the bound is
    never tighter than requested.
    """
    if side == OrderSide.BUY:
        bounded = math.ceil(price * (1.0 + max_slippage) * 100 - 1e-9) / 100
    else:
        bounded = math.floor(price * (1.0 - max_slippage) * 100 + 1e-9) / 100
    return min(0.99, max(0.01, bounded))
