"""Daily trade volume budget - 전략별/전체 일일 거래량 한도."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def _utc_today() -> date:
    return datetime.now(tz=timezone.utc).date()


class DailyVolumeBudget:
    """Per-strategy and global daily notional caps, reset at UTC midnight.

    Args:
        global_limit: 전체 전략 합산 일일 한도 (USD).
    """

    def __init__(self, global_limit: float = 5000.0):
        self.global_limit = global_limit
        self._used: dict[str, float] = {}
        self._last_reset_date: Optional[date] = _utc_today()

    @property
    def total_used(self) -> float:
        self._maybe_reset_daily()
        return sum(self._used.values())

    def used(self, key: str) -> float:
        self._maybe_reset_daily()
        return self._used.get(key, 0.0)

    def check(self, key: str, amount: float, limit: float) -> tuple[bool, Optional[str]]:
        """Returns (approved, reason)."""
        self._maybe_reset_daily()
        used = self._used.get(key, 0.0)
        if used + amount > limit:
            return False, f"{key} daily volume ${used + amount:.2f} > ${limit:.2f}"
        total = sum(self._used.values())
        if total + amount > self.global_limit:
            return False, f"global daily volume ${total + amount:.2f} > ${self.global_limit:.2f}"
        return True, None

    def record(self, key: str, amount: float) -> None:
        self._maybe_reset_daily()
        if amount > 0:
            self._used[key] = self._used.get(key, 0.0) + amount

    def _maybe_reset_daily(self) -> None:
        today = _utc_today()
        if self._last_reset_date != today:
            logger.info("New day, resetting daily volume budget")
            self._used.clear()
            self._last_reset_date = today
