"""Order book depth model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookLevel:
    """오더북 한 레벨 (가격 + 수량)."""

    price: float
    size: float  # shares

    @property
    def value_usd(self) -> float:
        return self.price * self.size


@dataclass(frozen=True)
class OrderBook:
    """Depth for one token. Bids sorted high→low, asks low→high."""

    token_id: str
    bids: tuple[BookLevel, ...] = field(default_factory=tuple)
    asks: tuple[BookLevel, ...] = field(default_factory=tuple)

    @property
    def best_bid(self) -> float:
        """Best bid price, 0.0 when the side is empty."""
        return self.bids[0].price if self.bids else 0.0

    @property
    def best_ask(self) -> float:
        """Best ask price, 0.0 when the side is empty."""
        return self.asks[0].price if self.asks else 0.0

    @property
    def bid_depth_usd(self) -> float:
        return sum(lvl.value_usd for lvl in self.bids)

    @property
    def ask_depth_usd(self) -> float:
        return sum(lvl.value_usd for lvl in self.asks)

    @classmethod
    def from_dict(cls, token_id: str, data: dict) -> OrderBook:
        """CLOB ``/book`` 응답 → OrderBook. 잘못된 레벨은 건너뜀."""
        return cls(
            token_id=token_id,
            bids=tuple(sorted(
                _parse_levels(data.get("bids") or []),
                key=lambda lvl: lvl.price,
                reverse=True,
            )),
            asks=tuple(sorted(
                _parse_levels(data.get("asks") or []),
                key=lambda lvl: lvl.price,
            )),
        )


def _parse_levels(raw_levels: list) -> list[BookLevel]:
    levels = []
    for raw in raw_levels:
        try:
            price = float(raw["price"])
            size = float(raw["size"])
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed book level: %r", raw)
            continue
        if price <= 0 or size <= 0:
            continue
        levels.append(BookLevel(price=price, size=size))
    return levels
