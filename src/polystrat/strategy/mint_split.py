"""Mint-split: mint a full outcome set for $1 and sell every leg into the bids.

Profit is net of slippage: each leg is valued at its size-weighted average
fill price for ``mint_amount`` shares, not at the best bid.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from polystrat.config import MintSplitConfig
from polystrat.models.market import MarketSnapshot
from polystrat.models.opportunity import (
    Confidence,
    OrderSide,
    Opportunity,
    StrategyType,
    TokenLeg,
)
from polystrat.models.orderbook import OrderBook

logger = logging.getLogger(__name__)

# 신뢰도 구간: (최소 레그 유동성 USD 초과, 최대 슬리피지 미만)
HIGH_CONFIDENCE = (500.0, 0.002)
MEDIUM_CONFIDENCE = (200.0, 0.005)


@dataclass(frozen=True)
class FillEstimate:
    """Walking the bids for a fixed sell size."""

    best_price: float
    avg_price: float
    slippage: float  # fraction, (best − avg) / best


def estimate_sell(book: OrderBook, amount: float) -> Optional[FillEstimate]:
    """Consume bid depth for ``amount`` shares.

    Returns:
        FillEstimate, or None when the book cannot absorb the full amount.
    """
    if amount <= 0 or not book.bids:
        return None

    remaining = amount
    proceeds = 0.0
    for level in book.bids:
        take = min(remaining, level.size)
        proceeds += take * level.price
        remaining -= take
        if remaining <= 1e-9:
            break

    if remaining > 1e-9:
        return None

    best = book.best_bid
    avg = proceeds / amount
    return FillEstimate(best_price=best, avg_price=avg, slippage=(best - avg) / best)


def confidence_for(min_leg_liquidity: float, max_slippage: float) -> Confidence:
    if min_leg_liquidity > HIGH_CONFIDENCE[0] and max_slippage < HIGH_CONFIDENCE[1]:
        return Confidence.HIGH
    if min_leg_liquidity > MEDIUM_CONFIDENCE[0] and max_slippage < MEDIUM_CONFIDENCE[1]:
        return Confidence.MEDIUM
    return Confidence.LOW


def classify_mint_split(
    snapshot: MarketSnapshot,
    books: dict[str, OrderBook],
    config: MintSplitConfig,
) -> Optional[Opportunity]:
    """Evaluate one market. None when any rejection rule fires.

    Rejection rules, in order: too few outcomes, missing book, best-bid sum
    not above ``min_price_sum``, a leg that cannot absorb ``mint_amount``,
    a leg slippage above ``max_slippage``, thinnest leg below
    ``min_liquidity``, non-positive expected profit.
    """
    cid = snapshot.condition_id
    if snapshot.outcome_count < config.min_outcomes:
        return None

    leg_books = []
    for outcome in snapshot.outcomes:
        book = books.get(outcome.token_id)
        if book is None or book.best_bid <= 0:
            logger.debug("[MINT] %s: no bids for %s", cid, outcome.label)
            return None
        leg_books.append(book)

    bid_sum = sum(b.best_bid for b in leg_books)
    if bid_sum <= config.min_price_sum:
        return None

    amount = config.mint_amount
    estimates = []
    for outcome, book in zip(snapshot.outcomes, leg_books):
        est = estimate_sell(book, amount)
        if est is None:
            logger.debug("[MINT] %s: insufficient depth on %s for %.2f", cid, outcome.label, amount)
            return None
        if est.slippage > config.max_slippage:
            logger.debug(
                "[MINT] %s: %s slippage %.3f%% > cap %.3f%%",
                cid, outcome.label, est.slippage * 100, config.max_slippage * 100,
            )
            return None
        estimates.append(est)

    min_leg_liquidity = min(b.bid_depth_usd for b in leg_books)
    if min_leg_liquidity < config.min_liquidity:
        return None

    mint_cost = amount
    expected_profit = sum(e.avg_price * amount for e in estimates) - mint_cost
    if expected_profit <= 0:
        return None

    max_slippage = max(e.slippage for e in estimates)
    confidence = confidence_for(min_leg_liquidity, max_slippage)
    logger.info(
        "[MINT] %s: bid sum %.4f, expected $%.4f, max slippage %.3f%%, %s",
        cid, bid_sum, expected_profit, max_slippage * 100, confidence.value,
    )

    return Opportunity(
        condition_id=cid,
        question=snapshot.question,
        strategy_type=StrategyType.MINT_SPLIT,
        price_sum=bid_sum,
        spread=(1.0 - bid_sum) * 100.0,
        expected_profit=expected_profit,
        investment_amount=mint_cost,
        confidence=confidence,
        tokens=[
            TokenLeg(
                token_id=o.token_id,
                outcome=o.label,
                price=e.avg_price,
                size=amount,
                side=OrderSide.SELL,
            )
            for o, e in zip(snapshot.outcomes, estimates)
        ],
    )
