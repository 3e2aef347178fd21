"""Tests for market-making inventory: fills, skew, merge."""

from __future__ import annotations

import pytest

from polystrat.errors import GatewayError
from polystrat.execution.order_gateway import DryRunOrderGateway
from polystrat.models.opportunity import OrderSide
from polystrat.risk.inventory import NO, YES, InventoryManager, MarketInventory


class TestMarketInventory:
    def test_add_and_avg_cost(self):
        inv = MarketInventory("m")
        inv.add(YES, 10, 0.40)
        inv.add(YES, 10, 0.50)
        assert inv.yes_shares == 20
        assert inv.avg_cost(YES) == pytest.approx(0.45)

    def test_remove_realizes_pnl(self):
        inv = MarketInventory("m")
        inv.add(YES, 10, 0.40)
        pnl = inv.remove(YES, 4, 0.50)
        assert pnl == pytest.approx(0.4)
        assert inv.yes_shares == pytest.approx(6)
        assert inv.avg_cost(YES) == pytest.approx(0.40)

    def test_cannot_oversell(self):
        inv = MarketInventory("m")
        inv.add(NO, 5, 0.5)
        with pytest.raises(ValueError):
            inv.remove(NO, 6, 0.5)
        assert inv.no_shares == 5

    def test_unknown_outcome(self):
        with pytest.raises(ValueError):
            MarketInventory("m").add("maybe", 1, 0.5)

    def test_skew(self):
        inv = MarketInventory("m")
        assert inv.skew == 0.0
        inv.add(YES, 30, 0.5)
        inv.add(NO, 10, 0.5)
        assert inv.skew == pytest.approx(0.5)
        assert inv.over_held == YES
        inv.add(NO, 20, 0.5)
        assert inv.skew == 0.0
        assert inv.over_held is None

    def test_apply_merge(self):
        inv = MarketInventory("m")
        inv.add(YES, 60, 0.48)
        inv.add(NO, 50, 0.49)
        pnl = inv.apply_merge(50)
        assert pnl == pytest.approx(50 * (1 - 0.48 - 0.49))
        assert inv.yes_shares == pytest.approx(10)
        assert inv.no_shares == pytest.approx(0)
        assert inv.yes_cost == pytest.approx(10 * 0.48)

    def test_merge_more_than_pairs(self):
        inv = MarketInventory("m")
        inv.add(YES, 10, 0.5)
        inv.add(NO, 5, 0.5)
        with pytest.raises(ValueError):
            inv.apply_merge(6)


class TestInventoryManager:
    def test_record_fill_buy_and_sell(self):
        mgr = InventoryManager()
        assert mgr.record_fill("m", YES, OrderSide.BUY, 10, 0.4) == 0.0
        assert mgr.record_fill("m", YES, OrderSide.SELL, 10, 0.5) == pytest.approx(1.0)
        assert mgr.shares("m", YES) == 0

    def test_zero_fill_ignored(self):
        mgr = InventoryManager()
        mgr.record_fill("m", YES, OrderSide.BUY, 0, 0.4)
        assert mgr.positions() == []

    def test_exposure(self):
        mgr = InventoryManager()
        mgr.record_fill("a", YES, OrderSide.BUY, 10, 0.4)
        mgr.record_fill("b", NO, OrderSide.BUY, 10, 0.3)
        assert mgr.side_exposure("a", YES) == pytest.approx(4.0)
        assert mgr.side_exposure("a", NO) == 0.0
        assert mgr.total_exposure() == pytest.approx(7.0)

    def test_unknown_market_defaults(self):
        mgr = InventoryManager()
        assert mgr.skew("x") == 0.0
        assert mgr.over_held("x") is None
        assert mgr.position("x") == []

    def test_positions_are_views(self):
        mgr = InventoryManager()
        mgr.record_fill("m", YES, OrderSide.BUY, 10, 0.4)
        yes, no = mgr.position("m")
        assert yes.size == 10
        assert yes.avg_cost == pytest.approx(0.4)
        assert no.size == 0
        with pytest.raises(AttributeError):
            yes.size = 0

    def test_mergeable_amount(self):
        mgr = InventoryManager()
        mgr.record_fill("m", YES, OrderSide.BUY, 55.555, 0.5)
        mgr.record_fill("m", NO, OrderSide.BUY, 60, 0.5)
        assert mgr.mergeable_amount("m", 50) == 55.55
        assert mgr.mergeable_amount("m", 60) == 0.0


class TestMerge:
    async def test_merge_reduces_both_sides_by_min(self):
        mgr = InventoryManager()
        mgr.record_fill("m", YES, OrderSide.BUY, 80, 0.48)
        mgr.record_fill("m", NO, OrderSide.BUY, 60, 0.49)
        gw = DryRunOrderGateway()

        result = await mgr.merge("m", gw, threshold=50)

        assert result.amount == 60
        assert result.realized_pnl == pytest.approx(60 * 0.03)
        assert result.tx_hash.startswith("0x")
        assert gw.merges == [("m", 60)]
        assert mgr.shares("m", YES) == pytest.approx(20)
        assert mgr.shares("m", NO) == pytest.approx(0)

    async def test_below_threshold_no_merge(self):
        mgr = InventoryManager()
        mgr.record_fill("m", YES, OrderSide.BUY, 40, 0.5)
        mgr.record_fill("m", NO, OrderSide.BUY, 40, 0.5)
        gw = DryRunOrderGateway()
        assert await mgr.merge("m", gw, threshold=50) is None
        assert gw.merges == []

    async def test_failed_merge_keeps_positions(self):
        mgr = InventoryManager()
        mgr.record_fill("m", YES, OrderSide.BUY, 60, 0.5)
        mgr.record_fill("m", NO, OrderSide.BUY, 60, 0.5)
        gw = DryRunOrderGateway()
        gw.fail_merge = True
        assert await mgr.merge("m", gw, threshold=50) is None
        assert mgr.shares("m", YES) == 60

    async def test_gateway_error_keeps_positions(self):
        class BrokenGateway(DryRunOrderGateway):
            async def merge(self, condition_id, amount):
                raise GatewayError("no settlement adapter")

        mgr = InventoryManager()
        mgr.record_fill("m", YES, OrderSide.BUY, 60, 0.5)
        mgr.record_fill("m", NO, OrderSide.BUY, 60, 0.5)
        assert await mgr.merge("m", BrokenGateway(), threshold=50) is None
        assert mgr.shares("m", NO) == 60
