"""Tests for strategy configs, BotConfig and the hot-reloadable registry."""

from __future__ import annotations

import json

import pytest

from polystrat.config import (
    ArbitrageConfig,
    BotConfig,
    GlobalConfig,
    MarketMakingConfig,
    MintSplitConfig,
    ScanConfig,
    default_strategy_config,
    parse_strategy_list,
)
from polystrat.config_registry import StrategyConfigRegistry
from polystrat.errors import ConfigurationError
from polystrat.models.opportunity import Confidence, StrategyType
from polystrat.storage.record_store import MemoryRecordStore


class TestStrategyConfigs:
    def test_defaults_validate(self):
        for st in StrategyType:
            default_strategy_config(st).validate()
        GlobalConfig().validate()

    def test_frozen(self):
        with pytest.raises(AttributeError):
            ArbitrageConfig().min_spread = 0.1

    def test_updated_returns_new_copy(self):
        base = ArbitrageConfig()
        new = base.updated({"min_spread": 0.01})
        assert new.min_spread == 0.01
        assert base.min_spread == 0.005

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError):
            ArbitrageConfig().updated({"nope": 1})

    def test_type_checked(self):
        with pytest.raises(ConfigurationError):
            ArbitrageConfig().updated({"min_spread": "wide"})
        with pytest.raises(ConfigurationError):
            ArbitrageConfig().updated({"use_order_book": 1})

    def test_int_coerced_to_float(self):
        assert ArbitrageConfig().updated({"trade_amount": 20}).trade_amount == 20.0

    def test_integer_field_rejects_fraction(self):
        with pytest.raises(ConfigurationError):
            ScanConfig().updated({"max_pages": 2.7})
        assert ScanConfig().updated({"max_pages": 3.0}).max_pages == 3

    def test_range_validated(self):
        with pytest.raises(ConfigurationError):
            MintSplitConfig().updated({"min_price_sum": 0.99})
        with pytest.raises(ConfigurationError):
            MarketMakingConfig().updated({"spread": 1.5})
        with pytest.raises(ConfigurationError):
            ArbitrageConfig().updated({"trade_amount": 500})

    def test_nested_scan_partial_update(self):
        new = ArbitrageConfig().updated({"scan": {"liquidity_min": 500}})
        assert new.scan.liquidity_min == 500.0
        assert new.scan.page_limit == ScanConfig().page_limit

    def test_confidence_from_string(self):
        cfg = MintSplitConfig().updated({"min_confidence": "high"})
        assert cfg.min_confidence == Confidence.HIGH

    def test_dict_round_trip(self):
        cfg = MintSplitConfig(mint_amount=25.0, min_confidence=Confidence.LOW)
        data = cfg.to_dict()
        assert data["min_confidence"] == "low"
        assert MintSplitConfig.from_dict(data) == cfg

    def test_market_making_scan_floors(self):
        cfg = default_strategy_config(StrategyType.MARKET_MAKING)
        assert cfg.scan.liquidity_min == 1000.0
        assert cfg.scan.volume_min == 5000.0


class TestBotConfig:
    def test_defaults_are_safe(self, monkeypatch):
        for name in ("POLYSTRAT_DRY_RUN", "POLYSTRAT_STRATEGIES", "POLYSTRAT_STATE_FILE"):
            monkeypatch.delenv(name, raising=False)
        cfg = BotConfig.from_env()
        assert cfg.dry_run is True
        assert cfg.strategies == [StrategyType.ARBITRAGE_LONG]
        assert cfg.state_file is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("POLYSTRAT_DRY_RUN", "false")
        monkeypatch.setenv("POLYSTRAT_STRATEGIES", "mint_split, market_making")
        monkeypatch.setenv("POLYSTRAT_STATUS_INTERVAL", "15")
        cfg = BotConfig.from_env()
        assert cfg.dry_run is False
        assert cfg.strategies == [StrategyType.MINT_SPLIT, StrategyType.MARKET_MAKING]
        assert cfg.status_interval == 15.0

    def test_bad_strategy(self, monkeypatch):
        monkeypatch.setenv("POLYSTRAT_STRATEGIES", "moon_shot")
        with pytest.raises(ConfigurationError):
            BotConfig.from_env()

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("POLYSTRAT_CALL_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError):
            BotConfig.from_env()

    def test_parse_strategy_list(self):
        assert parse_strategy_list("ARBITRAGE_SHORT,,") == [StrategyType.ARBITRAGE_SHORT]
        with pytest.raises(ValueError):
            parse_strategy_list("nope")


class TestRegistry:
    def test_defaults_per_strategy(self):
        registry = StrategyConfigRegistry()
        assert isinstance(registry.get(StrategyType.MINT_SPLIT), MintSplitConfig)
        assert isinstance(registry.get(StrategyType.ARBITRAGE_SHORT), ArbitrageConfig)
        assert registry.get(StrategyType.ARBITRAGE_LONG) is not registry.get(
            StrategyType.ARBITRAGE_SHORT,
        )

    def test_update_is_atomic_on_error(self):
        registry = StrategyConfigRegistry()
        before = registry.get(StrategyType.ARBITRAGE_LONG)
        with pytest.raises(ConfigurationError):
            registry.update(StrategyType.ARBITRAGE_LONG, {"min_spread": 0.02, "trade_amount": -1})
        assert registry.get(StrategyType.ARBITRAGE_LONG) is before

    def test_update_affects_one_strategy(self):
        registry = StrategyConfigRegistry()
        registry.update(StrategyType.ARBITRAGE_LONG, {"min_spread": 0.02})
        assert registry.get(StrategyType.ARBITRAGE_LONG).min_spread == 0.02
        assert registry.get(StrategyType.ARBITRAGE_SHORT).min_spread == 0.005

    def test_replace_checks_type(self):
        registry = StrategyConfigRegistry()
        with pytest.raises(ConfigurationError):
            registry.replace(StrategyType.MINT_SPLIT, ArbitrageConfig())
        with pytest.raises(ConfigurationError):
            registry.replace(StrategyType.MINT_SPLIT, MintSplitConfig(mint_amount=-1))

    def test_listeners(self):
        registry = StrategyConfigRegistry()
        seen = []
        unsubscribe = registry.add_listener(lambda key, cfg: seen.append(key))
        registry.set_emergency_stop(True)
        assert registry.emergency_stop
        unsubscribe()
        registry.update(StrategyType.MINT_SPLIT, {"mint_amount": 20})
        assert seen == ["global"]

    def test_failing_listener_does_not_block_update(self):
        registry = StrategyConfigRegistry()

        def broken(key, cfg):
            raise RuntimeError("listener bug")

        registry.add_listener(broken)
        registry.update_global({"queue_max_size": 10})
        assert registry.global_config.queue_max_size == 10

    def test_export_import(self):
        source = StrategyConfigRegistry()
        source.update(StrategyType.MINT_SPLIT, {"mint_amount": 42})
        source.update_global({"retry_count": 7})
        target = StrategyConfigRegistry()
        target.import_json(source.export_json())
        assert target.get(StrategyType.MINT_SPLIT).mint_amount == 42
        assert target.global_config.retry_count == 7

    def test_import_validates_everything_first(self):
        registry = StrategyConfigRegistry()
        doc = {
            "mint_split": {"mint_amount": 42},
            "arbitrage_long": {"min_spread": 5},
        }
        with pytest.raises(ConfigurationError):
            registry.import_json(json.dumps(doc))
        assert registry.get(StrategyType.MINT_SPLIT).mint_amount == 10.0

    def test_import_rejects_garbage(self):
        registry = StrategyConfigRegistry()
        with pytest.raises(ConfigurationError):
            registry.import_json("{not json")
        with pytest.raises(ConfigurationError):
            registry.import_json('{"unknown_strategy": {}}')
        with pytest.raises(ConfigurationError):
            registry.import_json("[1, 2]")

    def test_persisted_and_restored(self):
        store = MemoryRecordStore()
        first = StrategyConfigRegistry(store)
        first.update(StrategyType.ARBITRAGE_SHORT, {"short_allow_mint": False})

        second = StrategyConfigRegistry(store)
        second.load_from_store()
        assert second.get(StrategyType.ARBITRAGE_SHORT).short_allow_mint is False
