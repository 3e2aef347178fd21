"""Shared test fixtures for polystrat."""

from __future__ import annotations

import json

import pytest

from polystrat.config_registry import StrategyConfigRegistry
from polystrat.execution.order_gateway import DryRunOrderGateway
from polystrat.models.market import MarketSnapshot, Outcome
from polystrat.models.orderbook import BookLevel, OrderBook


class FakeMarketGateway:
    """In-process stand-in for GammaClient.

    ``markets`` is served page by page using limit/offset; ``books`` maps
    token_id → OrderBook. ``failed_offsets`` return None like an exhausted
    retry loop would.
    """

    def __init__(self, markets: list[dict] | None = None, books: dict | None = None):
        self.markets = list(markets or [])
        self.books: dict[str, OrderBook] = dict(books or {})
        self.failed_offsets: set[int] = set()
        self.list_calls: list[dict] = []
        self.book_calls: list[str] = []

    async def list_markets(self, **kwargs):
        self.list_calls.append(kwargs)
        offset = kwargs.get("offset", 0)
        limit = kwargs.get("limit", 200)
        if offset in self.failed_offsets:
            return None
        return self.markets[offset:offset + limit]

    async def get_book(self, token_id: str):
        self.book_calls.append(token_id)
        return self.books.get(token_id)


def make_book(token_id: str, bids=(), asks=()) -> OrderBook:
    """``bids``/``asks`` as (price, size) pairs, best first."""
    return OrderBook(
        token_id=token_id,
        bids=tuple(BookLevel(p, s) for p, s in bids),
        asks=tuple(BookLevel(p, s) for p, s in asks),
    )


def make_raw_market(
    condition_id: str = "0xcond1",
    prices=("0.45", "0.50"),
    liquidity: str = "5000",
    volume: str = "10000",
) -> dict:
    """Raw market dict as returned by the Gamma /markets endpoint."""
    n = len(prices)
    labels = ["Yes", "No"] if n == 2 else [f"Outcome {i}" for i in range(n)]
    token_ids = [f"{condition_id}-tok{i}" for i in range(n)]
    return {
        "conditionId": condition_id,
        "question": f"Question for {condition_id}?",
        "outcomes": json.dumps(labels),  # JSON string (Gamma API 특성)
        "outcomePrices": json.dumps(list(prices)),
        "clobTokenIds": json.dumps(token_ids),
        "liquidity": liquidity,
        "volume": volume,
        "enableOrderBook": True,
        "active": True,
        "closed": False,
    }


@pytest.fixture
def binary_snapshot() -> MarketSnapshot:
    """Binary market priced at 0.45 + 0.50 = 0.95."""
    return MarketSnapshot(
        condition_id="0xbinary",
        question="Will it rain tomorrow?",
        outcomes=(
            Outcome("tok_yes", "Yes", 0.45),
            Outcome("tok_no", "No", 0.50),
        ),
        liquidity=5000.0,
        volume=20000.0,
    )


@pytest.fixture
def three_way_snapshot() -> MarketSnapshot:
    """3-outcome market priced at [0.30, 0.30, 0.30]."""
    return MarketSnapshot(
        condition_id="0xthree",
        question="Who wins?",
        outcomes=(
            Outcome("tok_a", "A", 0.30),
            Outcome("tok_b", "B", 0.30),
            Outcome("tok_c", "C", 0.30),
        ),
        liquidity=5000.0,
        volume=20000.0,
    )


@pytest.fixture
def registry() -> StrategyConfigRegistry:
    return StrategyConfigRegistry()


@pytest.fixture
def gateway() -> DryRunOrderGateway:
    return DryRunOrderGateway()


@pytest.fixture
def market_gateway() -> FakeMarketGateway:
    return FakeMarketGateway()
