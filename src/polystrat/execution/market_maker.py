"""Market-making refresh loop.

Each tick:
    1. reconcile fills of our resting bids from ``list_open_orders``
    2. merge matched YES/NO pairs once ``min(yes, no) >= merge_threshold``
    3. per market: recompute quotes from the book and the current skew,
       cancel resting bids whose price is stale, place the missing ones

A rejected order on one side is logged and retried on the next tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from polystrat.config import MarketMakingConfig
from polystrat.config_registry import StrategyConfigRegistry
from polystrat.discovery.gamma_client import GammaClient
from polystrat.errors import GatewayError
from polystrat.execution.order_gateway import OpenOrder, OrderGateway
from polystrat.models.opportunity import Opportunity, OrderSide, StrategyType
from polystrat.risk.controller import RiskController
from polystrat.risk.inventory import NO, YES, InventoryManager
from polystrat.strategy.market_making import Quote, compute_quotes
from polystrat.websocket.price_cache import PriceCache

logger = logging.getLogger(__name__)


@dataclass
class RestingOrder:
    order_id: str
    token_id: str
    outcome: str
    price: float
    size: float
    matched: float = 0.0  # shares already booked into inventory


@dataclass
class MakerMarket:
    condition_id: str
    question: str
    yes_token: str
    no_token: str
    resting: dict[str, RestingOrder] = field(default_factory=dict)
    last_quote: Optional[Quote] = None

    def token_for(self, outcome: str) -> str:
        return self.yes_token if outcome == YES else self.no_token


@dataclass
class TickReport:
    markets: int = 0
    placed: int = 0
    rejected: int = 0
    cancelled: int = 0
    filled_shares: float = 0.0
    merged: float = 0.0


class MarketMaker:
    """Owns the quoted markets, their resting orders and the inventory.

    Args:
        gateway: order gateway.
        book_source: anything with ``async get_book(token_id)``.
        inventory: position store updated from fills and merges.
        risk: quote gate (limits, daily loss halt, emergency stop).
        registry: config source, read every tick.
        price_cache: optional streaming cache; used when fresh.
    """

    def __init__(
        self,
        gateway: OrderGateway,
        book_source: GammaClient,
        inventory: InventoryManager,
        risk: RiskController,
        registry: StrategyConfigRegistry,
        price_cache: Optional[PriceCache] = None,
        cache_max_age: float = 5.0,
    ):
        self.gateway = gateway
        self.book_source = book_source
        self.inventory = inventory
        self.risk = risk
        self.registry = registry
        self.price_cache = price_cache
        self.cache_max_age = cache_max_age
        self._markets: dict[str, MakerMarket] = {}

    @property
    def config(self) -> MarketMakingConfig:
        return self.registry.get(StrategyType.MARKET_MAKING)

    @property
    def condition_ids(self) -> list[str]:
        return list(self._markets)

    def token_ids(self) -> list[str]:
        result = []
        for market in self._markets.values():
            result.extend((market.yes_token, market.no_token))
        return result

    def is_enrolled(self, condition_id: str) -> bool:
        return condition_id in self._markets

    def resting_orders(self, condition_id: str) -> list[RestingOrder]:
        market = self._markets.get(condition_id)
        return [RestingOrder(**vars(o)) for o in market.resting.values()] if market else []

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    async def enroll(self, opp: Opportunity) -> tuple[int, int]:
        """Start quoting the opportunity's market and run its first refresh.

        Returns:
            (placed, rejected) order counts for the first refresh.
        """
        if len(opp.tokens) != 2:
            logger.warning("[MM] %s is not binary, not enrolling", opp.condition_id[:12])
            return 0, 0

        market = self._markets.get(opp.condition_id)
        if market is None:
            if len(self._markets) >= self.config.max_markets:
                logger.info("[MM] market cap (%d) reached, not enrolling %s",
                            self.config.max_markets, opp.condition_id[:12])
                return 0, 0
            market = MakerMarket(
                condition_id=opp.condition_id,
                question=opp.question,
                yes_token=opp.tokens[0].token_id,
                no_token=opp.tokens[1].token_id,
            )
            self._markets[opp.condition_id] = market
            logger.info("[MM] enrolled %s: %s", opp.condition_id[:12], opp.question[:60])

        report = TickReport()
        await self._refresh(market, report)
        return report.placed, report.rejected

    async def remove(self, condition_id: str) -> int:
        """Stop quoting one market. Returns cancelled order count.

        Fills matched since the last tick are booked before the orders go.
        """
        if condition_id not in self._markets:
            return 0
        await self._sync_fills()
        market = self._markets.pop(condition_id, None)
        if market is None:
            return 0
        return await self._cancel_all_in(market)

    async def cancel_all(self) -> int:
        """Best-effort cancel of every resting order we own, after booking fills."""
        if self._markets:
            await self._sync_fills()
        cancelled = 0
        for market in list(self._markets.values()):
            cancelled += await self._cancel_all_in(market)
        logger.info("[MM] cancelled %d resting orders", cancelled)
        return cancelled

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> TickReport:
        report = TickReport(markets=len(self._markets))
        if not self._markets:
            return report

        report.filled_shares = await self._sync_fills()

        config = self.config
        for market in list(self._markets.values()):
            try:
                if config.auto_merge:
                    merged = await self.inventory.merge(
                        market.condition_id, self.gateway, config.merge_threshold,
                    )
                    if merged is not None:
                        report.merged += merged.amount
                        self.risk.record_realized(market.condition_id, merged.realized_pnl)
                await self._refresh(market, report)
            except Exception:
                logger.exception("[MM] refresh failed for %s", market.condition_id[:12])

        logger.info(
            "[MM] tick: %d markets, placed=%d rejected=%d cancelled=%d filled=%.2f merged=%.2f",
            report.markets, report.placed, report.rejected, report.cancelled,
            report.filled_shares, report.merged,
        )
        return report

    async def _sync_fills(self) -> float:
        try:
            open_orders = await self.gateway.list_open_orders()
        except GatewayError as e:
            logger.warning("[MM] list_open_orders failed, fills not reconciled: %s", e)
            return 0.0
        return self._reconcile(open_orders)

    def _reconcile(self, open_orders: list[OpenOrder]) -> float:
        """Book new fills. An order missing from the open list was fully filled."""
        by_id = {o.order_id: o for o in open_orders}
        filled_total = 0.0
        for market in self._markets.values():
            for order_id, order in list(market.resting.items()):
                live = by_id.get(order_id)
                matched_now = live.size_matched if live is not None else order.size
                delta = matched_now - order.matched
                if delta > 1e-9:
                    self.inventory.record_fill(
                        market.condition_id, order.outcome, OrderSide.BUY, delta, order.price,
                    )
                    order.matched = matched_now
                    filled_total += delta
                if live is None:
                    del market.resting[order_id]
        return filled_total

    async def _refresh(self, market: MakerMarket, report: TickReport) -> None:
        config = self.config
        global_config = self.registry.global_config
        cid = market.condition_id

        top = await self._top_of_book(market.yes_token)
        if top is None:
            logger.info("[MM] %s: no book, keeping current orders", cid[:12])
            return
        best_bid, best_ask = top

        quote = compute_quotes(
            best_bid,
            best_ask,
            config.spread,
            skew=self.inventory.skew(cid),
            skew_threshold=config.skew_threshold,
            over_held=self.inventory.over_held(cid),
            skew_adjustment=config.skew_adjustment,
        )
        market.last_quote = quote

        desired: dict[str, tuple[float, float]] = {}
        if quote.has_market and quote.buy < quote.sell:
            for outcome, price in ((YES, quote.buy), (NO, quote.no_bid)):
                gate = self.risk.check_quote(
                    cid, outcome, price, config.order_size, config, global_config,
                )
                if gate.approved:
                    desired[outcome] = (price, gate.allowed_size)
                else:
                    logger.info("[MM] %s %s bid suppressed: %s", cid[:12], outcome, "; ".join(gate.reasons))
        else:
            logger.info("[MM] %s: no market (bid=%.2f ask=%.2f), not quoting", cid[:12], best_bid, best_ask)

        # cancel stale
        satisfied: set[str] = set()
        for order_id, order in list(market.resting.items()):
            want = desired.get(order.outcome)
            if want is not None and abs(want[0] - order.price) < 1e-9 and order.outcome not in satisfied:
                satisfied.add(order.outcome)
                continue
            if await self._cancel(market, order_id):
                report.cancelled += 1

        # place missing
        for outcome, (price, size) in desired.items():
            if outcome in satisfied:
                continue
            token_id = market.token_for(outcome)
            try:
                ack = await self.gateway.place_order(token_id, OrderSide.BUY, price, size, "GTC")
            except GatewayError as e:
                report.rejected += 1
                logger.warning("[MM] %s %s bid @ %.2f rejected (retry next tick): %s",
                               cid[:12], outcome, price, e)
                continue
            order = RestingOrder(ack.order_id, token_id, outcome, price, size)
            if ack.filled_size > 0:
                self.inventory.record_fill(cid, outcome, OrderSide.BUY, ack.filled_size, ack.fill_price)
                order.matched = ack.filled_size
            if order.matched < order.size:
                market.resting[ack.order_id] = order
            report.placed += 1

    async def _top_of_book(self, token_id: str) -> Optional[tuple[float, float]]:
        if self.price_cache is not None:
            top = self.price_cache.get(token_id, max_age_secs=self.cache_max_age)
            if top is not None:
                return top.best_bid, top.best_ask
        book = await self.book_source.get_book(token_id)
        if book is None:
            return None
        return book.best_bid, book.best_ask

    async def _cancel(self, market: MakerMarket, order_id: str) -> bool:
        try:
            ok = await self.gateway.cancel_order(order_id)
        except GatewayError as e:
            logger.warning("[MM] cancel %s failed: %s", order_id, e)
            return False
        if ok:
            market.resting.pop(order_id, None)
        return ok

    async def _cancel_all_in(self, market: MakerMarket) -> int:
        cancelled = 0
        for order_id in list(market.resting):
            if await self._cancel(market, order_id):
                cancelled += 1
        return cancelled
