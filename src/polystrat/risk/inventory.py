"""Market-making inventory: YES/NO shares and cost basis per market.

Positions change only on confirmed fills and confirmed merges. Skew is
always computed from the current shares.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from polystrat.errors import GatewayError
from polystrat.execution.order_gateway import OrderGateway
from polystrat.models.opportunity import OrderSide

logger = logging.getLogger(__name__)

YES = "yes"
NO = "no"


@dataclass(frozen=True)
class InventoryPosition:
    """Read-only view of one (condition_id, outcome) holding."""

    condition_id: str
    outcome: str
    size: float
    cost_basis: float

    @property
    def avg_cost(self) -> float:
        return self.cost_basis / self.size if self.size > 0 else 0.0


@dataclass(frozen=True)
class MergeResult:
    condition_id: str
    amount: float
    realized_pnl: float
    tx_hash: Optional[str]


class MarketInventory:
    """Track YES/NO position for a single market."""

    def __init__(self, condition_id: str):
        self.condition_id = condition_id
        self.yes_shares: float = 0.0
        self.no_shares: float = 0.0
        self.yes_cost: float = 0.0   # total USD spent on YES
        self.no_cost: float = 0.0    # total USD spent on NO

    def add(self, outcome: str, shares: float, price: float) -> None:
        """매수 체결 기록."""
        if shares < 0:
            raise ValueError(f"shares must be non-negative: {shares}")
        if price < 0:
            raise ValueError(f"price must be non-negative: {price}")
        if outcome == YES:
            self.yes_shares += shares
            self.yes_cost += shares * price
        elif outcome == NO:
            self.no_shares += shares
            self.no_cost += shares * price
        else:
            raise ValueError(f"unknown outcome: {outcome!r}")

    def remove(self, outcome: str, shares: float, price: float) -> float:
        """매도 체결 기록.

        Returns:
            realized PnL = shares × (price − avg cost).

        Raises:
            ValueError: selling more than held (sizes never go negative).
        """
        if shares < 0:
            raise ValueError(f"shares must be non-negative: {shares}")
        held = self.shares(outcome)
        if shares > held + 1e-9:
            raise ValueError(f"cannot sell {shares} {outcome}, only {held} held")
        avg = self.avg_cost(outcome)
        shares = min(shares, held)
        if outcome == YES:
            self.yes_shares = max(0.0, self.yes_shares - shares)
            self.yes_cost = max(0.0, self.yes_cost - shares * avg)
        else:
            self.no_shares = max(0.0, self.no_shares - shares)
            self.no_cost = max(0.0, self.no_cost - shares * avg)
        return shares * (price - avg)

    def shares(self, outcome: str) -> float:
        return self.yes_shares if outcome == YES else self.no_shares

    def cost(self, outcome: str) -> float:
        return self.yes_cost if outcome == YES else self.no_cost

    def avg_cost(self, outcome: str) -> float:
        shares = self.shares(outcome)
        return self.cost(outcome) / shares if shares > 0 else 0.0

    @property
    def skew(self) -> float:
        """|yes − no| / (yes + no). 0 when flat."""
        total = self.yes_shares + self.no_shares
        if total <= 0:
            return 0.0
        return abs(self.yes_shares - self.no_shares) / total

    @property
    def over_held(self) -> Optional[str]:
        if self.yes_shares > self.no_shares:
            return YES
        if self.no_shares > self.yes_shares:
            return NO
        return None

    @property
    def balanced_pairs(self) -> float:
        """매칭된 YES/NO 쌍 수 = min(yes, no)."""
        return min(self.yes_shares, self.no_shares)

    @property
    def total_invested(self) -> float:
        return self.yes_cost + self.no_cost

    def apply_merge(self, amount: float) -> float:
        """Remove ``amount`` matched pairs redeemed for $1 each.

        Returns:
            realized PnL = amount × (1 − avg_yes − avg_no).
        """
        if amount <= 0 or amount > self.balanced_pairs + 1e-9:
            raise ValueError(f"invalid merge amount {amount} (pairs={self.balanced_pairs})")
        amount = min(amount, self.balanced_pairs)
        avg_yes = self.avg_cost(YES)
        avg_no = self.avg_cost(NO)
        self.yes_shares = max(0.0, self.yes_shares - amount)
        self.no_shares = max(0.0, self.no_shares - amount)
        self.yes_cost = max(0.0, self.yes_cost - amount * avg_yes)
        self.no_cost = max(0.0, self.no_cost - amount * avg_no)
        return amount * (1.0 - avg_yes - avg_no)


class InventoryManager:
    """All market-making positions, keyed by condition_id.

    Owned by the market-making strategy; other components read
    ``positions()`` / ``position()`` copies.
    """

    def __init__(self):
        self._markets: dict[str, MarketInventory] = {}

    def _market(self, condition_id: str) -> MarketInventory:
        inv = self._markets.get(condition_id)
        if inv is None:
            inv = MarketInventory(condition_id)
            self._markets[condition_id] = inv
        return inv

    def record_fill(
        self,
        condition_id: str,
        outcome: str,
        side: OrderSide,
        shares: float,
        price: float,
    ) -> float:
        """Apply one confirmed fill. Returns realized PnL (0 for buys)."""
        if shares <= 0:
            return 0.0
        inv = self._market(condition_id)
        if side == OrderSide.BUY:
            inv.add(outcome, shares, price)
            pnl = 0.0
        else:
            pnl = inv.remove(outcome, shares, price)
        logger.info(
            "[INVENTORY] %s %s %s %.2f @ $%.2f → yes=%.2f no=%.2f skew=%.2f",
            condition_id[:12], side.value, outcome, shares, price,
            inv.yes_shares, inv.no_shares, inv.skew,
        )
        return pnl

    def skew(self, condition_id: str) -> float:
        inv = self._markets.get(condition_id)
        return inv.skew if inv else 0.0

    def over_held(self, condition_id: str) -> Optional[str]:
        inv = self._markets.get(condition_id)
        return inv.over_held if inv else None

    def shares(self, condition_id: str, outcome: str) -> float:
        inv = self._markets.get(condition_id)
        return inv.shares(outcome) if inv else 0.0

    def side_exposure(self, condition_id: str, outcome: str) -> float:
        """Cost basis held on one side of one market (USD)."""
        inv = self._markets.get(condition_id)
        return inv.cost(outcome) if inv else 0.0

    def total_exposure(self) -> float:
        """Cost basis across all markets (USD)."""
        return sum(inv.total_invested for inv in self._markets.values())

    def position(self, condition_id: str) -> list[InventoryPosition]:
        inv = self._markets.get(condition_id)
        if inv is None:
            return []
        return [
            InventoryPosition(condition_id, YES, inv.yes_shares, inv.yes_cost),
            InventoryPosition(condition_id, NO, inv.no_shares, inv.no_cost),
        ]

    def positions(self) -> list[InventoryPosition]:
        result = []
        for cid in self._markets:
            result.extend(self.position(cid))
        return result

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def mergeable_amount(self, condition_id: str, threshold: float) -> float:
        """min(yes, no) floored to 0.01 when it reaches ``threshold``, else 0."""
        inv = self._markets.get(condition_id)
        if inv is None:
            return 0.0
        pairs = inv.balanced_pairs
        if pairs < threshold:
            return 0.0
        return math.floor(pairs * 100 + 1e-9) / 100

    async def merge(
        self,
        condition_id: str,
        gateway: OrderGateway,
        threshold: float,
    ) -> Optional[MergeResult]:
        """Redeem matched pairs for collateral once ``min(yes, no) >= threshold``.

        Positions are reduced only after the gateway confirms success.
        Returns None when nothing was merged.
        """
        amount = self.mergeable_amount(condition_id, threshold)
        if amount <= 0:
            return None

        try:
            tx = await gateway.merge(condition_id, amount)
        except GatewayError as e:
            logger.warning("[MERGE] %s merge of %.2f failed: %s", condition_id[:12], amount, e)
            return None
        if not tx.success:
            logger.warning("[MERGE] %s merge of %.2f rejected: %s", condition_id[:12], amount, tx.error)
            return None

        pnl = self._markets[condition_id].apply_merge(amount)
        logger.info(
            "[MERGE] %s merged %.2f pairs, pnl $%.4f, tx=%s",
            condition_id[:12], amount, pnl, tx.tx_hash,
        )
        return MergeResult(condition_id, amount, pnl, tx.tx_hash)
