"""Market admission filters applied to normalized snapshots."""

from __future__ import annotations

from polystrat.config import ScanConfig
from polystrat.models.market import MarketSnapshot


class MarketFilter:
    """Static filter methods for MarketSnapshot."""

    @staticmethod
    def has_order_book(snapshot: MarketSnapshot) -> bool:
        """CLOB 오더북이 활성화된 마켓만."""
        return snapshot.enable_order_book

    @staticmethod
    def meets_min_outcomes(snapshot: MarketSnapshot, min_outcomes: int) -> bool:
        return snapshot.outcome_count >= min_outcomes

    @staticmethod
    def meets_min_liquidity(snapshot: MarketSnapshot, min_usd: float) -> bool:
        """최소 유동성 필터."""
        return snapshot.liquidity >= min_usd

    @staticmethod
    def meets_min_volume(snapshot: MarketSnapshot, min_usd: float) -> bool:
        return snapshot.volume >= min_usd

    @staticmethod
    def matches_category(snapshot: MarketSnapshot, category: str) -> bool:
        """빈 category는 전체 허용. 대소문자 무시."""
        if not category:
            return True
        return snapshot.category.lower() == category.lower()

    @classmethod
    def admit(cls, snapshot: MarketSnapshot, config: ScanConfig) -> tuple[bool, str]:
        """All scan filters in order.

        Returns:
            (admitted, reason). reason is empty when admitted.
        """
        if not cls.has_order_book(snapshot):
            return False, "order book disabled"
        if not cls.meets_min_outcomes(snapshot, config.min_outcomes):
            return False, f"outcomes {snapshot.outcome_count} < {config.min_outcomes}"
        if not cls.meets_min_liquidity(snapshot, config.liquidity_min):
            return False, f"liquidity {snapshot.liquidity:.0f} < {config.liquidity_min:.0f}"
        if not cls.meets_min_volume(snapshot, config.volume_min):
            return False, f"volume {snapshot.volume:.0f} < {config.volume_min:.0f}"
        if not cls.matches_category(snapshot, config.category):
            return False, f"category {snapshot.category!r} != {config.category!r}"
        return True, ""
