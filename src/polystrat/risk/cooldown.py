"""Per-market cooldown - 같은 마켓 재실행 간격 제한."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CooldownManager:
    """Block a (strategy, condition_id) key for ``cooldown_seconds`` after an attempt.

    Args:
        cooldown_seconds: 쿨다운 시간 (초).
        clock: injectable monotonic clock for tests.
    """

    def __init__(
        self,
        cooldown_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock or time.monotonic
        self._last_attempt: dict[str, float] = {}

    def record(self, key: str) -> None:
        """실행 시도 기록."""
        self._last_attempt[key] = self._clock()

    def check(self, key: str) -> tuple[bool, float]:
        """쿨다운 체크.

        Returns:
            (approved, remaining_seconds).
        """
        last = self._last_attempt.get(key)
        if last is None:
            return True, 0.0
        elapsed = self._clock() - last
        if elapsed >= self.cooldown_seconds:
            del self._last_attempt[key]
            return True, 0.0
        return False, self.cooldown_seconds - elapsed
