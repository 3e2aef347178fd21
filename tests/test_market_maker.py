"""Tests for the market-making refresh loop."""

from __future__ import annotations

import pytest

from conftest import FakeMarketGateway, make_book
from polystrat.config_registry import StrategyConfigRegistry
from polystrat.execution.market_maker import MarketMaker
from polystrat.execution.order_gateway import DryRunOrderGateway
from polystrat.models.opportunity import Opportunity, OrderSide, StrategyType, TokenLeg
from polystrat.risk.controller import RiskController
from polystrat.risk.inventory import NO, YES, InventoryManager
from polystrat.websocket.price_cache import PriceCache

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mm_opp(condition_id: str = "0xmm") -> Opportunity:
    return Opportunity(
        condition_id=condition_id,
        question="Will the quote fill?",
        strategy_type=StrategyType.MARKET_MAKING,
        price_sum=1.0,
        spread=0.0,
        expected_profit=0.2,
        investment_amount=9.8,
        tokens=[
            TokenLeg(f"{condition_id}-yes", "Yes", 0.49, 10, OrderSide.BUY),
            TokenLeg(f"{condition_id}-no", "No", 0.49, 10, OrderSide.BUY),
        ],
    )


def _book(token_id: str, bid: float = 0.49, ask: float = 0.51):
    return make_book(token_id, bids=[(bid, 500)], asks=[(ask, 500)])


def _make_maker(books=None, registry=None, price_cache=None):
    gw = DryRunOrderGateway()
    books = books if books is not None else {"0xmm-yes": _book("0xmm-yes")}
    source = FakeMarketGateway(books=books)
    registry = registry or StrategyConfigRegistry()
    inventory = InventoryManager()
    risk = RiskController(inventory)
    maker = MarketMaker(gw, source, inventory, risk, registry, price_cache=price_cache)
    return maker, gw, source, inventory, risk


def _order_for(maker: MarketMaker, outcome: str, cid: str = "0xmm"):
    return next(o for o in maker.resting_orders(cid) if o.outcome == outcome)


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


class TestEnroll:
    async def test_places_yes_and_no_bids(self):
        maker, gw, *_ = _make_maker()
        placed, rejected = await maker.enroll(_mm_opp())
        assert (placed, rejected) == (2, 0)
        orders = {o.outcome: o for o in maker.resting_orders("0xmm")}
        assert orders[YES].price == 0.49
        assert orders[NO].price == 0.49
        assert orders[NO].token_id == "0xmm-no"
        assert all(o["order_type"] == "GTC" for o in gw.placed)
        assert all(o["side"] == OrderSide.BUY for o in gw.placed)

    async def test_non_binary_not_enrolled(self):
        maker, *_ = _make_maker()
        opp = _mm_opp()
        opp.tokens.append(TokenLeg("x", "X", 0.3, 10, OrderSide.BUY))
        assert await maker.enroll(opp) == (0, 0)
        assert not maker.is_enrolled("0xmm")

    async def test_market_cap(self):
        registry = StrategyConfigRegistry()
        registry.update(StrategyType.MARKET_MAKING, {"max_markets": 1})
        books = {"0xa-yes": _book("0xa-yes"), "0xb-yes": _book("0xb-yes")}
        maker, *_ = _make_maker(books=books, registry=registry)
        await maker.enroll(_mm_opp("0xa"))
        assert await maker.enroll(_mm_opp("0xb")) == (0, 0)
        assert maker.condition_ids == ["0xa"]

    async def test_one_sided_book_quotes_nothing(self):
        books = {"0xmm-yes": make_book("0xmm-yes", bids=[(0.49, 100)])}
        maker, gw, *_ = _make_maker(books=books)
        assert await maker.enroll(_mm_opp()) == (0, 0)
        assert gw.placed == []

    async def test_token_ids(self):
        maker, *_ = _make_maker()
        await maker.enroll(_mm_opp())
        assert maker.token_ids() == ["0xmm-yes", "0xmm-no"]


# ---------------------------------------------------------------------------
# Tick: fills, skew, stale cancel, rejection retry
# ---------------------------------------------------------------------------


class TestTick:
    async def test_unchanged_quotes_keep_resting_orders(self):
        maker, gw, *_ = _make_maker()
        await maker.enroll(_mm_opp())
        report = await maker.tick()
        assert report.placed == 0
        assert report.cancelled == 0
        assert len(gw.placed) == 2

    async def test_full_fill_booked_and_quotes_skewed(self):
        maker, gw, _, inventory, _ = _make_maker()
        await maker.enroll(_mm_opp())
        gw.simulate_fill(_order_for(maker, YES).order_id)

        report = await maker.tick()

        assert report.filled_shares == pytest.approx(10)
        assert inventory.shares("0xmm", YES) == pytest.approx(10)
        assert inventory.skew("0xmm") == 1.0
        # YES over-held: YES bid lowered, NO bid raised, old NO bid cancelled
        assert _order_for(maker, YES).price == 0.48
        assert _order_for(maker, NO).price == 0.50
        assert report.cancelled == 1

    async def test_partial_fill_booked_once(self):
        maker, gw, _, inventory, _ = _make_maker()
        await maker.enroll(_mm_opp())
        order_id = _order_for(maker, NO).order_id
        gw.simulate_fill(order_id, size=4)

        await maker.tick()
        await maker.tick()

        assert inventory.shares("0xmm", NO) == pytest.approx(4)

    async def test_rejected_side_retried_next_tick(self):
        maker, gw, *_ = _make_maker()
        gw.reject_tokens.add("0xmm-no")
        assert await maker.enroll(_mm_opp()) == (1, 1)
        assert [o.outcome for o in maker.resting_orders("0xmm")] == [YES]

        gw.reject_tokens.clear()
        report = await maker.tick()

        assert report.placed == 1
        assert {o.outcome for o in maker.resting_orders("0xmm")} == {YES, NO}

    async def test_missing_book_keeps_orders(self):
        maker, gw, source, *_ = _make_maker()
        await maker.enroll(_mm_opp())
        source.books.clear()
        report = await maker.tick()
        assert report.cancelled == 0
        assert len(maker.resting_orders("0xmm")) == 2

    async def test_moved_market_requotes(self):
        maker, gw, source, *_ = _make_maker()
        await maker.enroll(_mm_opp())
        source.books["0xmm-yes"] = _book("0xmm-yes", bid=0.59, ask=0.61)
        report = await maker.tick()
        assert report.cancelled == 2
        assert report.placed == 2
        assert _order_for(maker, YES).price == 0.59

    async def test_position_limit_suppresses_side(self):
        registry = StrategyConfigRegistry()
        registry.update(StrategyType.MARKET_MAKING, {"max_position_per_side": 5.0})
        maker, gw, _, inventory, _ = _make_maker(registry=registry)
        inventory.record_fill("0xmm", YES, OrderSide.BUY, 10, 0.5)  # $5 held on YES
        await maker.enroll(_mm_opp())
        outcomes = [o.outcome for o in maker.resting_orders("0xmm")]
        assert outcomes == [NO]

    async def test_emergency_stop_cancels_quotes(self):
        registry = StrategyConfigRegistry()
        maker, gw, *_ = _make_maker(registry=registry)
        await maker.enroll(_mm_opp())
        registry.set_emergency_stop(True)
        report = await maker.tick()
        assert report.cancelled == 2
        assert maker.resting_orders("0xmm") == []


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestAutoMerge:
    async def test_matched_pairs_merged(self):
        registry = StrategyConfigRegistry()
        registry.update(StrategyType.MARKET_MAKING, {"merge_threshold": 5.0})
        maker, gw, _, inventory, risk = _make_maker(registry=registry)
        await maker.enroll(_mm_opp())
        gw.simulate_fill(_order_for(maker, YES).order_id)
        gw.simulate_fill(_order_for(maker, NO).order_id)

        report = await maker.tick()

        assert report.merged == pytest.approx(10)
        assert gw.merges == [("0xmm", 10.0)]
        assert inventory.shares("0xmm", YES) == pytest.approx(0)
        assert inventory.shares("0xmm", NO) == pytest.approx(0)
        assert risk.loss_limiter.current_loss("0xmm") == 0.0

    async def test_auto_merge_off(self):
        registry = StrategyConfigRegistry()
        registry.update(StrategyType.MARKET_MAKING, {"merge_threshold": 5.0, "auto_merge": False})
        maker, gw, *_ = _make_maker(registry=registry)
        await maker.enroll(_mm_opp())
        gw.simulate_fill(_order_for(maker, YES).order_id)
        gw.simulate_fill(_order_for(maker, NO).order_id)
        report = await maker.tick()
        assert report.merged == 0
        assert gw.merges == []


# ---------------------------------------------------------------------------
# Shutdown / price cache
# ---------------------------------------------------------------------------


class TestCancelAndRemove:
    async def test_cancel_all(self):
        maker, gw, *_ = _make_maker()
        await maker.enroll(_mm_opp())
        assert await maker.cancel_all() == 2
        assert gw.open_orders == {}

    async def test_remove_market(self):
        maker, gw, *_ = _make_maker()
        await maker.enroll(_mm_opp())
        assert await maker.remove("0xmm") == 2
        assert not maker.is_enrolled("0xmm")
        assert await maker.remove("0xmm") == 0

    async def test_cancel_all_books_partial_fill_first(self):
        maker, gw, _, inventory, _ = _make_maker()
        await maker.enroll(_mm_opp())
        gw.simulate_fill(_order_for(maker, YES).order_id, size=4.0)

        assert await maker.cancel_all() == 2

        assert inventory.shares("0xmm", YES) == pytest.approx(4.0)
        assert inventory.shares("0xmm", NO) == 0.0
        assert gw.open_orders == {}

    async def test_remove_books_full_fill_and_cancels_rest(self):
        maker, gw, _, inventory, _ = _make_maker()
        await maker.enroll(_mm_opp())
        no_order = _order_for(maker, NO)
        gw.simulate_fill(no_order.order_id)

        assert await maker.remove("0xmm") == 1

        assert inventory.shares("0xmm", NO) == pytest.approx(no_order.size)
        assert inventory.shares("0xmm", YES) == 0.0


class TestPriceCacheSource:
    async def test_fresh_cache_preferred_over_book(self):
        cache = PriceCache(clock=lambda: 100.0)
        cache.update("0xmm-yes", best_bid=0.69, best_ask=0.71)
        maker, _, source, *_ = _make_maker(price_cache=cache)
        await maker.enroll(_mm_opp())
        assert source.book_calls == []
        assert _order_for(maker, YES).price == 0.69

    async def test_stale_cache_falls_back_to_book(self):
        now = [100.0]
        cache = PriceCache(clock=lambda: now[0])
        cache.update("0xmm-yes", best_bid=0.69, best_ask=0.71)
        now[0] = 200.0
        maker, _, source, *_ = _make_maker(price_cache=cache)
        await maker.enroll(_mm_opp())
        assert source.book_calls == ["0xmm-yes"]
        assert _order_for(maker, YES).price == 0.49
