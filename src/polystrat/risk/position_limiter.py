"""Position size limiter - 마켓 side별/전체 포지션 한도."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class PositionSizeLimiter:
    """Limit market-making exposure per side of a market and in aggregate.

    Args:
        max_per_side: 마켓 한쪽(YES 또는 NO)당 최대 노출 (USD).
        max_total: 전체 마켓 합산 최대 노출 (USD).
    """

    def __init__(
        self,
        max_per_side: float = 100.0,
        max_total: float = 500.0,
    ):
        self.max_per_side = max_per_side
        self.max_total = max_total

    def check(
        self,
        current_side_exposure: float,
        current_total_exposure: float,
        new_order_value: float,
    ) -> tuple[bool, float]:
        """포지션 한도 체크.

        Returns:
            (approved, allowed_value). approved=False면 해당 side 호가 중지.
        """
        if new_order_value <= 0:
            return False, 0.0

        side_room = max(0.0, self.max_per_side - current_side_exposure)
        total_room = max(0.0, self.max_total - current_total_exposure)

        allowed = min(new_order_value, side_room, total_room)

        if allowed <= 0:
            logger.info(
                "Position limit: side_room=$%.2f, total_room=$%.2f",
                side_room, total_room,
            )
            return False, 0.0

        return True, allowed
