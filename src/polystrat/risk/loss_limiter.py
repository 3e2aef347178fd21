"""Per-market daily loss limiter - 마켓별 일일 실현 손실 한도."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def _utc_today() -> date:
    """현재 UTC 날짜."""
    return datetime.now(tz=timezone.utc).date()


class MarketLossLimiter:
    """Track daily realized losses per market and halt on breach.

    The loss counter rolls over at UTC midnight, but a halted market
    stays halted until ``reset(condition_id)`` is called.

    Args:
        limit_usd: 마켓당 일일 최대 허용 손실 (USD).
    """

    def __init__(self, limit_usd: float = 50.0):
        self.limit_usd = limit_usd
        self._losses: dict[str, float] = {}
        self._halted: dict[str, str] = {}
        self._last_reset_date: Optional[date] = _utc_today()

    def current_loss(self, condition_id: str) -> float:
        self._maybe_reset_daily()
        return self._losses.get(condition_id, 0.0)

    def record_pnl(self, condition_id: str, pnl: float) -> None:
        """실현 손익 기록. 손실(음수)만 누적."""
        if pnl < 0:
            self.record_loss(condition_id, -pnl)

    def record_loss(self, condition_id: str, amount: float) -> None:
        """손실 기록 (양수 금액)."""
        self._maybe_reset_daily()
        if amount <= 0:
            return
        total = self._losses.get(condition_id, 0.0) + amount
        self._losses[condition_id] = total
        if total > self.limit_usd and condition_id not in self._halted:
            reason = f"Daily loss limit breached: ${total:.2f} > ${self.limit_usd:.2f}"
            self._halted[condition_id] = reason
            logger.warning("[RISK] %s halted: %s", condition_id[:12], reason)

    def is_halted(self, condition_id: str) -> bool:
        return condition_id in self._halted

    def check(self, condition_id: str) -> tuple[bool, Optional[str]]:
        """한도 체크.

        Returns:
            (approved, reason). approved=True이면 호가 가능.
        """
        reason = self._halted.get(condition_id)
        if reason:
            return False, reason
        return True, None

    def reset(self, condition_id: str) -> None:
        """수동 리셋 (운영자)."""
        self._halted.pop(condition_id, None)
        self._losses.pop(condition_id, None)
        logger.info("[RISK] %s loss limiter reset", condition_id[:12])

    def _maybe_reset_daily(self) -> None:
        """자정 경과 시 손실 카운터만 리셋 (halt 유지)."""
        today = _utc_today()
        if self._last_reset_date != today:
            logger.info("New day, resetting daily loss counters")
            self._losses.clear()
            self._last_reset_date = today
