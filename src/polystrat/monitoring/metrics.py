"""Per-strategy execution metrics.

실행 결과 수집 → 전략별 통계 (실행 수, 성공/부분/실패, 수익/손실).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from polystrat.models.opportunity import OpportunityStatus, StrategyType


@dataclass
class ExecutionMetric:
    """단일 실행 메트릭."""

    timestamp: datetime
    strategy_type: StrategyType
    status: OpportunityStatus
    profit: Optional[float]


@dataclass
class StrategyStats:
    executions: int = 0
    success: int = 0
    partial: int = 0
    failed: int = 0
    cancelled: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    last_execution_at: Optional[datetime] = None

    @property
    def net_pnl(self) -> float:
        return self.total_profit - self.total_loss

    @property
    def win_rate(self) -> float:
        """Success percentage over finished executions."""
        if self.executions == 0:
            return 0.0
        return self.success / self.executions * 100.0

    def to_dict(self) -> dict:
        return {
            "executions": self.executions,
            "success": self.success,
            "partial": self.partial,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "total_profit": self.total_profit,
            "total_loss": self.total_loss,
            "net_pnl": self.net_pnl,
            "win_rate": self.win_rate,
            "last_execution_at": (
                self.last_execution_at.isoformat() if self.last_execution_at else None
            ),
        }


class MetricsCollector:
    """실행 메트릭 수집기."""

    def __init__(self):
        self._stats: dict[StrategyType, StrategyStats] = defaultdict(StrategyStats)

    def record_execution(self, metric: ExecutionMetric) -> None:
        """실행 결과 기록."""
        stats = self._stats[metric.strategy_type]
        stats.executions += 1
        if metric.status == OpportunityStatus.SUCCESS:
            stats.success += 1
        elif metric.status == OpportunityStatus.PARTIAL:
            stats.partial += 1
        elif metric.status == OpportunityStatus.FAILED:
            stats.failed += 1
        elif metric.status == OpportunityStatus.CANCELLED:
            stats.cancelled += 1

        if metric.profit is not None:
            if metric.profit >= 0:
                stats.total_profit += metric.profit
            else:
                stats.total_loss += -metric.profit
        stats.last_execution_at = metric.timestamp

    def record(
        self,
        strategy_type: StrategyType,
        status: OpportunityStatus,
        profit: Optional[float],
    ) -> None:
        self.record_execution(
            ExecutionMetric(datetime.now(tz=timezone.utc), strategy_type, status, profit),
        )

    def get_stats(self, strategy_type: StrategyType) -> StrategyStats:
        """전략별 통계 (복사본)."""
        stats = self._stats.get(strategy_type)
        return StrategyStats(**vars(stats)) if stats else StrategyStats()

    def summary(self) -> dict:
        """All strategies as ``{strategy value: stats dict}``."""
        return {st.value: s.to_dict() for st, s in self._stats.items()}

    def reset(self) -> None:
        """메트릭 초기화."""
        self._stats.clear()
