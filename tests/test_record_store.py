"""Tests for MemoryRecordStore and JsonFileRecordStore."""

from __future__ import annotations

import json

import pytest

from polystrat.models.opportunity import (
    Opportunity,
    OpportunityFilter,
    OpportunityStatus,
    OrderSide,
    StrategyType,
    TokenLeg,
)
from polystrat.models.queue import QueueState, QueueStatus
from polystrat.storage.record_store import JsonFileRecordStore, MemoryRecordStore


def _make_opp(strategy=StrategyType.ARBITRAGE_LONG, profit: float = 1.0) -> Opportunity:
    return Opportunity(
        condition_id="0xstore",
        question="Q?",
        strategy_type=strategy,
        price_sum=0.95,
        spread=5.0,
        expected_profit=profit,
        investment_amount=20.0,
        tokens=[TokenLeg("t", "Yes", 0.45, 10, OrderSide.BUY)],
    )


class TestMemoryRecordStore:
    def test_create_get(self):
        store = MemoryRecordStore()
        opp = _make_opp()
        store.create_opportunity(opp)
        loaded = store.get_opportunity(opp.id)
        assert loaded.id == opp.id
        assert loaded is not opp

    def test_duplicate_create(self):
        store = MemoryRecordStore()
        opp = _make_opp()
        store.create_opportunity(opp)
        with pytest.raises(ValueError):
            store.create_opportunity(opp)

    def test_update_missing(self):
        with pytest.raises(KeyError):
            MemoryRecordStore().update_opportunity(_make_opp())

    def test_stored_copy_is_detached(self):
        store = MemoryRecordStore()
        opp = _make_opp()
        store.create_opportunity(opp)
        opp.error_message = "later"
        assert store.get_opportunity(opp.id).error_message is None

    def test_list_filter(self):
        store = MemoryRecordStore()
        a = _make_opp()
        b = _make_opp(StrategyType.MINT_SPLIT)
        store.create_opportunity(a)
        store.create_opportunity(b)
        result = store.list_opportunities(OpportunityFilter(strategy_type=StrategyType.MINT_SPLIT))
        assert [o.id for o in result] == [b.id]

    def test_stats(self):
        store = MemoryRecordStore()
        a, b = _make_opp(profit=1.0), _make_opp(profit=2.0)
        store.create_opportunity(a)
        store.create_opportunity(b)
        b.status = OpportunityStatus.QUEUED
        b.actual_profit = 1.5
        store.update_opportunity(b)

        stats = store.opportunity_stats()
        assert stats["total"] == 2
        assert stats["pending"] == 1
        assert stats["queued"] == 1
        assert stats["expected_profit"] == pytest.approx(3.0)
        assert stats["actual_profit"] == pytest.approx(1.5)
        assert store.opportunity_stats(StrategyType.MINT_SPLIT)["total"] == 0

    def test_queue_status_and_configs(self):
        store = MemoryRecordStore()
        status = QueueStatus("mint_split", 1, 0, 100, QueueState.RUNNING, 3, 0)
        store.save_queue_status(status)
        assert store.list_queue_status() == [status]

        store.save_strategy_config("global", {"retry_count": 2})
        configs = store.load_strategy_configs()
        configs["global"]["retry_count"] = 99
        assert store.load_strategy_configs()["global"]["retry_count"] == 2


class TestJsonFileRecordStore:
    def test_persist_and_reload(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileRecordStore(path)
        opp = _make_opp()
        store.create_opportunity(opp)
        store.save_strategy_config("mint_split", {"mint_amount": 5.0})

        reloaded = JsonFileRecordStore(path)
        assert reloaded.get_opportunity(opp.id).expected_profit == opp.expected_profit
        assert reloaded.load_strategy_configs() == {"mint_split": {"mint_amount": 5.0}}
        assert not path.with_suffix(".tmp").exists()

    def test_file_is_plain_json(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileRecordStore(path)
        store.create_opportunity(_make_opp())
        data = json.loads(path.read_text())
        assert set(data) == {"opportunities", "queues", "configs"}

    def test_missing_file_starts_fresh(self, tmp_path):
        store = JsonFileRecordStore(tmp_path / "none.json")
        assert store.list_opportunities() == []

    def test_corrupt_file_starts_fresh(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{broken")
        store = JsonFileRecordStore(path)
        assert store.list_opportunities() == []

    def test_empty_file_starts_fresh(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("")
        assert JsonFileRecordStore(path).list_queue_status() == []
