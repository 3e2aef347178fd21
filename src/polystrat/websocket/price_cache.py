"""In-memory best bid/ask cache fed by the streaming price channel.

WebSocket에서 받은 최신 호가를 저장하고 조회. Single writer: the channel consumer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class TopOfBook:
    """Cached best bid/ask for one token."""

    best_bid: float
    best_ask: float
    bid_size: float = 0.0
    ask_size: float = 0.0
    timestamp: float = 0.0


class PriceCache:
    """token_id → TopOfBook.

    Args:
        clock: injectable ``time.time`` replacement for tests.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._tops: dict[str, TopOfBook] = {}
        self._hits: int = 0
        self._misses: int = 0

    def update(
        self,
        token_id: str,
        best_bid: Optional[float] = None,
        best_ask: Optional[float] = None,
        bid_size: float = 0.0,
        ask_size: float = 0.0,
    ) -> None:
        """호가 업데이트. None인 쪽은 이전 값 유지."""
        prev = self._tops.get(token_id)
        self._tops[token_id] = TopOfBook(
            best_bid=best_bid if best_bid is not None else (prev.best_bid if prev else 0.0),
            best_ask=best_ask if best_ask is not None else (prev.best_ask if prev else 0.0),
            bid_size=bid_size if best_bid is not None else (prev.bid_size if prev else 0.0),
            ask_size=ask_size if best_ask is not None else (prev.ask_size if prev else 0.0),
            timestamp=self._clock(),
        )

    def get(self, token_id: str, max_age_secs: Optional[float] = None) -> Optional[TopOfBook]:
        """Cached top of book, or None when missing or older than ``max_age_secs``."""
        top = self._tops.get(token_id)
        if top is None or (
            max_age_secs is not None and self._clock() - top.timestamp > max_age_secs
        ):
            self._misses += 1
            return None
        self._hits += 1
        return top

    def is_fresh(self, token_id: str, max_age_secs: float = 5.0) -> bool:
        top = self._tops.get(token_id)
        return top is not None and self._clock() - top.timestamp <= max_age_secs

    def clear(self) -> None:
        """캐시 초기화."""
        self._tops.clear()
        self._hits = 0
        self._misses = 0

    @property
    def hit_rate(self) -> float:
        total = self._hits + self._misses
        return self._hits / total if total > 0 else 0.0

    @property
    def stats(self) -> dict:
        return {
            "tokens_cached": len(self._tops),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self.hit_rate, 3),
        }
