"""Tests for MetricsCollector."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from polystrat.models.opportunity import OpportunityStatus, StrategyType
from polystrat.monitoring.metrics import ExecutionMetric, MetricsCollector, StrategyStats

S = OpportunityStatus


class TestStrategyStats:
    def test_empty(self):
        stats = StrategyStats()
        assert stats.win_rate == 0.0
        assert stats.net_pnl == 0.0

    def test_to_dict(self):
        stats = StrategyStats(executions=4, success=3, total_profit=2.0, total_loss=0.5)
        data = stats.to_dict()
        assert data["win_rate"] == pytest.approx(75.0)
        assert data["net_pnl"] == pytest.approx(1.5)
        assert data["last_execution_at"] is None


class TestMetricsCollector:
    def test_counts_per_status(self):
        metrics = MetricsCollector()
        metrics.record(StrategyType.MINT_SPLIT, S.SUCCESS, 0.5)
        metrics.record(StrategyType.MINT_SPLIT, S.PARTIAL, None)
        metrics.record(StrategyType.MINT_SPLIT, S.FAILED, -0.2)
        metrics.record(StrategyType.MINT_SPLIT, S.CANCELLED, None)

        stats = metrics.get_stats(StrategyType.MINT_SPLIT)
        assert stats.executions == 4
        assert (stats.success, stats.partial, stats.failed, stats.cancelled) == (1, 1, 1, 1)
        assert stats.total_profit == pytest.approx(0.5)
        assert stats.total_loss == pytest.approx(0.2)
        assert stats.last_execution_at is not None

    def test_strategies_independent(self):
        metrics = MetricsCollector()
        metrics.record(StrategyType.ARBITRAGE_LONG, S.SUCCESS, 1.0)
        assert metrics.get_stats(StrategyType.ARBITRAGE_SHORT).executions == 0

    def test_get_stats_is_copy(self):
        metrics = MetricsCollector()
        metrics.record(StrategyType.ARBITRAGE_LONG, S.SUCCESS, 1.0)
        metrics.get_stats(StrategyType.ARBITRAGE_LONG).executions = 99
        assert metrics.get_stats(StrategyType.ARBITRAGE_LONG).executions == 1

    def test_record_execution_timestamp(self):
        metrics = MetricsCollector()
        ts = datetime(2026, 5, 1, tzinfo=timezone.utc)
        metrics.record_execution(ExecutionMetric(ts, StrategyType.MARKET_MAKING, S.SUCCESS, 0.0))
        assert metrics.get_stats(StrategyType.MARKET_MAKING).last_execution_at == ts

    def test_summary_and_reset(self):
        metrics = MetricsCollector()
        metrics.record(StrategyType.ARBITRAGE_LONG, S.SUCCESS, 1.0)
        assert set(metrics.summary()) == {"arbitrage_long"}
        metrics.reset()
        assert metrics.summary() == {}
