"""MarketSnapshot model and per-field normalizing parsers for Gamma market records."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from polystrat.errors import MalformedMarketError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outcome:
    """한 아웃컴 토큰 (tokenId, label, price)."""

    token_id: str
    label: str
    price: float


@dataclass(frozen=True)
class MarketSnapshot:
    """Immutable view of one market captured during a scan.

    Superseded by the next snapshot of the same ``condition_id``.
    """

    condition_id: str
    question: str
    outcomes: tuple[Outcome, ...]
    liquidity: float
    volume: float
    enable_order_book: bool = True
    category: str = ""
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(tz=timezone.utc),
    )

    @property
    def price_sum(self) -> float:
        """Sum of outcome prices. 1.0 at fair value."""
        return sum(o.price for o in self.outcomes)

    @property
    def outcome_count(self) -> int:
        return len(self.outcomes)

    @property
    def token_ids(self) -> list[str]:
        return [o.token_id for o in self.outcomes]

    @property
    def is_binary(self) -> bool:
        return len(self.outcomes) == 2


# ---------------------------------------------------------------------------
# Field parsers: each returns a validated value or raises MalformedMarketError
# ---------------------------------------------------------------------------


def parse_json_list(raw: dict, key: str) -> list:
    """Gamma는 리스트를 JSON 문자열로 주기도 함. 문자열/리스트 모두 허용."""
    value = raw.get(key)
    if value is None or value == "":
        raise MalformedMarketError(key, "missing")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, TypeError) as e:
            raise MalformedMarketError(key, f"invalid JSON: {e}") from e
    if not isinstance(value, list):
        raise MalformedMarketError(key, f"expected list, got {type(value).__name__}")
    return value


def parse_price(value: Any, key: str) -> float:
    """Price in [0, 1]. Accepts numeric strings."""
    try:
        price = float(value)
    except (TypeError, ValueError) as e:
        raise MalformedMarketError(key, f"not a number: {value!r}") from e
    if price != price or price < 0.0 or price > 1.0:
        raise MalformedMarketError(key, f"out of range: {price}")
    return price


def parse_amount(raw: dict, *keys: str) -> float:
    """First present numeric field among ``keys``; missing means 0.0."""
    for key in keys:
        value = raw.get(key)
        if value is None or value == "":
            continue
        try:
            amount = float(value)
        except (TypeError, ValueError) as e:
            raise MalformedMarketError(key, f"not a number: {value!r}") from e
        if amount < 0:
            raise MalformedMarketError(key, f"negative: {amount}")
        return amount
    return 0.0


def parse_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "")
    return bool(value)


def parse_outcomes(raw: dict) -> tuple[Outcome, ...]:
    """Build the ordered outcome list.

    Two upstream shapes are accepted:
        - ``tokens: [{token_id, outcome, price}, ...]``
        - parallel ``outcomes`` / ``outcomePrices`` / ``clobTokenIds`` lists

    Raises:
        MalformedMarketError: 길이가 맞지 않거나 토큰 ID/가격이 빠진 경우.
    """
    tokens = raw.get("tokens")
    if isinstance(tokens, list) and tokens:
        outcomes = []
        for i, tok in enumerate(tokens):
            if not isinstance(tok, dict):
                raise MalformedMarketError("tokens", f"entry {i} is not an object")
            token_id = str(tok.get("token_id") or tok.get("tokenId") or "")
            if not token_id:
                raise MalformedMarketError("tokens", f"entry {i} has no token_id")
            outcomes.append(Outcome(
                token_id=token_id,
                label=str(tok.get("outcome", f"Outcome {i}")),
                price=parse_price(tok.get("price"), f"tokens[{i}].price"),
            ))
        return tuple(outcomes)

    prices = parse_json_list(raw, "outcomePrices")
    token_ids = parse_json_list(raw, "clobTokenIds")
    try:
        labels = parse_json_list(raw, "outcomes")
    except MalformedMarketError:
        labels = [f"Outcome {i}" for i in range(len(prices))]

    if not (len(prices) == len(token_ids) == len(labels)):
        raise MalformedMarketError(
            "outcomePrices",
            f"length mismatch: prices={len(prices)} tokens={len(token_ids)} "
            f"labels={len(labels)}",
        )

    outcomes = []
    for i, (label, price, token_id) in enumerate(zip(labels, prices, token_ids)):
        if not token_id:
            raise MalformedMarketError("clobTokenIds", f"entry {i} is empty")
        outcomes.append(Outcome(
            token_id=str(token_id),
            label=str(label),
            price=parse_price(price, f"outcomePrices[{i}]"),
        ))
    return tuple(outcomes)


def parse_market(raw: dict) -> MarketSnapshot:
    """Gamma raw dict → MarketSnapshot.

    Raises:
        MalformedMarketError: on the first field that cannot be normalized.
    """
    if not isinstance(raw, dict):
        raise MalformedMarketError("market", f"expected object, got {type(raw).__name__}")

    condition_id = str(raw.get("conditionId") or raw.get("condition_id") or "")
    if not condition_id:
        raise MalformedMarketError("conditionId", "missing")

    outcomes = parse_outcomes(raw)
    if len(outcomes) < 2:
        raise MalformedMarketError("outcomes", f"need >= 2 outcomes, got {len(outcomes)}")

    return MarketSnapshot(
        condition_id=condition_id,
        question=str(raw.get("question", "")),
        outcomes=outcomes,
        liquidity=parse_amount(raw, "liquidityNum", "liquidity"),
        volume=parse_amount(raw, "volume24hr", "volumeNum", "volume"),
        enable_order_book=parse_bool(raw.get("enableOrderBook"), default=True),
        category=str(raw.get("category") or ""),
    )
