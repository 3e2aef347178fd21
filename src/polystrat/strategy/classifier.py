"""Strategy dispatch: ``classify(strategy_type, snapshot, books, config)``."""

from __future__ import annotations

import logging
from typing import Optional

from polystrat.config import StrategyConfig
from polystrat.models.market import MarketSnapshot
from polystrat.models.opportunity import Opportunity, StrategyType
from polystrat.models.orderbook import OrderBook
from polystrat.strategy.arbitrage import classify_long, classify_short
from polystrat.strategy.market_making import classify_market_making
from polystrat.strategy.mint_split import classify_mint_split

logger = logging.getLogger(__name__)

_CLASSIFIERS = {
    StrategyType.MINT_SPLIT: classify_mint_split,
    StrategyType.ARBITRAGE_LONG: classify_long,
    StrategyType.ARBITRAGE_SHORT: classify_short,
    StrategyType.MARKET_MAKING: classify_market_making,
}


def classify(
    strategy_type: StrategyType,
    snapshot: MarketSnapshot,
    books: Optional[dict[str, OrderBook]],
    config: StrategyConfig,
) -> Optional[Opportunity]:
    """Evaluate one snapshot into zero or one PENDING opportunity. Pure."""
    return _CLASSIFIERS[strategy_type](snapshot, books or {}, config)


def required_book_tokens(
    strategy_type: StrategyType,
    snapshot: MarketSnapshot,
    config: StrategyConfig,
) -> list[str]:
    """Token IDs whose order books the classifier needs for this market."""
    if strategy_type == StrategyType.MINT_SPLIT:
        return snapshot.token_ids
    if strategy_type in (StrategyType.ARBITRAGE_LONG, StrategyType.ARBITRAGE_SHORT):
        return snapshot.token_ids if config.use_order_book else []
    if strategy_type == StrategyType.MARKET_MAKING:
        return snapshot.token_ids[:1] if snapshot.is_binary else []
    return []
