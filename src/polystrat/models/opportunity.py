"""Opportunity, TokenLeg and ExecutionStep data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class StrategyType(Enum):
    """전략 유형. 전략마다 큐 하나, 스캔 루프 하나."""

    MINT_SPLIT = "mint_split"
    ARBITRAGE_LONG = "arbitrage_long"
    ARBITRAGE_SHORT = "arbitrage_short"
    MARKET_MAKING = "market_making"


class OpportunityStatus(Enum):
    PENDING = "pending"
    QUEUED = "queued"
    EXECUTING = "executing"
    PARTIAL = "partial"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_in_flight(self) -> bool:
        return self in (OpportunityStatus.QUEUED, OpportunityStatus.EXECUTING)


TERMINAL_STATUSES = frozenset({
    OpportunityStatus.SUCCESS,
    OpportunityStatus.FAILED,
    OpportunityStatus.PARTIAL,
    OpportunityStatus.EXPIRED,
    OpportunityStatus.CANCELLED,
})


class Confidence(Enum):
    """Liquidity/slippage band. Gates auto-execution."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 2, "medium": 1, "low": 0}[self.value]


class LegStatus(Enum):
    PENDING = "pending"
    FILLED = "filled"
    PARTIAL = "partial"
    FAILED = "failed"


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass
class TokenLeg:
    """한 아웃컴에 대한 주문 레그."""

    token_id: str
    outcome: str
    price: float
    size: float
    side: OrderSide = OrderSide.BUY
    filled: float = 0.0
    fill_price: float = 0.0
    status: LegStatus = LegStatus.PENDING

    @property
    def is_filled(self) -> bool:
        return self.status == LegStatus.FILLED

    def to_dict(self) -> dict:
        return {
            "token_id": self.token_id,
            "outcome": self.outcome,
            "price": self.price,
            "size": self.size,
            "side": self.side.value,
            "filled": self.filled,
            "fill_price": self.fill_price,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TokenLeg:
        return cls(
            token_id=data["token_id"],
            outcome=data["outcome"],
            price=float(data["price"]),
            size=float(data["size"]),
            side=OrderSide(data.get("side", "BUY")),
            filled=float(data.get("filled", 0.0)),
            fill_price=float(data.get("fill_price", 0.0)),
            status=LegStatus(data.get("status", "pending")),
        )


@dataclass
class ExecutionStep:
    """Append-only execution log entry."""

    step: int
    action: str
    status: str  # "success" | "failed" | "skipped"
    timestamp: datetime = field(default_factory=_utc_now)
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "action": self.action,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "tx_hash": self.tx_hash,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ExecutionStep:
        return cls(
            step=int(data["step"]),
            action=data["action"],
            status=data["status"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            tx_hash=data.get("tx_hash"),
            error=data.get("error"),
        )


@dataclass
class Opportunity:
    """감지된 기회 하나. Classifier가 PENDING 상태로 생성.

    ``expected_profit`` is fixed at creation; reassigning it raises
    ``AttributeError``. Status changes go through the lifecycle manager.
    """

    condition_id: str
    question: str
    strategy_type: StrategyType
    price_sum: float
    spread: float            # percent, positive = under-priced
    expected_profit: float
    investment_amount: float
    tokens: list[TokenLeg] = field(default_factory=list)
    confidence: Confidence = Confidence.MEDIUM
    status: OpportunityStatus = OpportunityStatus.PENDING
    actual_profit: Optional[float] = None
    execution_steps: list[ExecutionStep] = field(default_factory=list)
    order_ids: list[str] = field(default_factory=list)
    tx_hashes: list[str] = field(default_factory=list)
    error_message: Optional[str] = None
    retry_count: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utc_now)
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __setattr__(self, name, value):
        if name == "expected_profit" and "expected_profit" in self.__dict__:
            raise AttributeError("expected_profit is immutable after creation")
        super().__setattr__(name, value)

    @property
    def roi_pct(self) -> float:
        if self.investment_amount <= 0:
            return 0.0
        return self.expected_profit / self.investment_amount * 100.0

    def add_step(
        self,
        action: str,
        status: str,
        tx_hash: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ExecutionStep:
        """Append the next execution step (index = current length + 1)."""
        step = ExecutionStep(
            step=len(self.execution_steps) + 1,
            action=action,
            status=status,
            tx_hash=tx_hash,
            error=error,
        )
        self.execution_steps.append(step)
        if tx_hash:
            self.tx_hashes.append(tx_hash)
        return step

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        """JSON-safe dict (enums as values, timestamps ISO-8601)."""
        return {
            "id": self.id,
            "condition_id": self.condition_id,
            "question": self.question,
            "strategy_type": self.strategy_type.value,
            "price_sum": self.price_sum,
            "spread": self.spread,
            "expected_profit": self.expected_profit,
            "actual_profit": self.actual_profit,
            "investment_amount": self.investment_amount,
            "tokens": [t.to_dict() for t in self.tokens],
            "confidence": self.confidence.value,
            "status": self.status.value,
            "execution_steps": [s.to_dict() for s in self.execution_steps],
            "order_ids": list(self.order_ids),
            "tx_hashes": list(self.tx_hashes),
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat(),
            "queued_at": _iso(self.queued_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Opportunity:
        return cls(
            id=data["id"],
            condition_id=data["condition_id"],
            question=data.get("question", ""),
            strategy_type=StrategyType(data["strategy_type"]),
            price_sum=float(data["price_sum"]),
            spread=float(data["spread"]),
            expected_profit=float(data["expected_profit"]),
            actual_profit=data.get("actual_profit"),
            investment_amount=float(data["investment_amount"]),
            tokens=[TokenLeg.from_dict(t) for t in data.get("tokens", [])],
            confidence=Confidence(data.get("confidence", "medium")),
            status=OpportunityStatus(data["status"]),
            execution_steps=[
                ExecutionStep.from_dict(s) for s in data.get("execution_steps", [])
            ],
            order_ids=list(data.get("order_ids", [])),
            tx_hashes=list(data.get("tx_hashes", [])),
            error_message=data.get("error_message"),
            retry_count=int(data.get("retry_count", 0)),
            created_at=datetime.fromisoformat(data["created_at"]),
            queued_at=_parse_iso(data.get("queued_at")),
            started_at=_parse_iso(data.get("started_at")),
            completed_at=_parse_iso(data.get("completed_at")),
        )


@dataclass
class OpportunityFilter:
    """Query filter for ``get_opportunities``. None fields match anything."""

    strategy_type: Optional[StrategyType] = None
    status: Optional[OpportunityStatus] = None
    condition_id: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, opp: Opportunity) -> bool:
        if self.strategy_type is not None and opp.strategy_type != self.strategy_type:
            return False
        if self.status is not None and opp.status != self.status:
            return False
        if self.condition_id is not None and opp.condition_id != self.condition_id:
            return False
        return True


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
