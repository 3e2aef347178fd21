"""Risk controller - admission gate for opportunities and quote gate for market making."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from polystrat.config import (
    ArbitrageConfig,
    GlobalConfig,
    MarketMakingConfig,
    MintSplitConfig,
    StrategyConfig,
)
from polystrat.models.opportunity import Opportunity, StrategyType
from polystrat.risk.cooldown import CooldownManager
from polystrat.risk.inventory import InventoryManager
from polystrat.risk.loss_limiter import MarketLossLimiter
from polystrat.risk.position_limiter import PositionSizeLimiter
from polystrat.risk.trade_budget import DailyVolumeBudget

logger = logging.getLogger(__name__)


@dataclass
class RiskResult:
    """리스크 체크 결과."""

    approved: bool
    reasons: list[str] = field(default_factory=list)
    allowed_size: float = 0.0


def _per_trade_cap(config: StrategyConfig) -> Optional[float]:
    if isinstance(config, MintSplitConfig):
        return config.max_mint_per_trade
    if isinstance(config, ArbitrageConfig):
        return config.max_trade_per_order
    return None


def _daily_cap(config: StrategyConfig) -> Optional[float]:
    if isinstance(config, MintSplitConfig):
        return config.max_mint_per_day
    if isinstance(config, ArbitrageConfig):
        return config.max_trade_per_day
    return None


class RiskController:
    """Combine all risk checks into single gates.

    Args:
        inventory: market-making inventory (read for exposure).
        global_config: initial global limits; refreshed on every check.
    """

    def __init__(
        self,
        inventory: InventoryManager,
        global_config: Optional[GlobalConfig] = None,
    ):
        global_config = global_config or GlobalConfig()
        self.inventory = inventory
        self.budget = DailyVolumeBudget(global_limit=global_config.max_daily_volume)
        self.cooldown = CooldownManager(cooldown_seconds=global_config.cooldown_seconds)
        self.loss_limiter = MarketLossLimiter()
        self.position_limiter = PositionSizeLimiter()

    @staticmethod
    def cooldown_key(strategy_type: StrategyType, condition_id: str) -> str:
        return f"{strategy_type.value}:{condition_id}"

    # ------------------------------------------------------------------
    # Opportunity admission
    # ------------------------------------------------------------------

    def check_admission(
        self,
        opp: Opportunity,
        config: StrategyConfig,
        global_config: GlobalConfig,
    ) -> RiskResult:
        """전체 리스크 체크 (큐 진입 전).

        Checks: emergency stop, strategy enabled/auto-execute, confidence
        floor, per-trade cap, cooldown, daily volume budget.
        """
        self.budget.global_limit = global_config.max_daily_volume
        self.cooldown.cooldown_seconds = global_config.cooldown_seconds
        reasons: list[str] = []

        if global_config.emergency_stop:
            reasons.append("Emergency stop active")
        if not config.enabled:
            reasons.append(f"{opp.strategy_type.value} disabled")
        if not config.auto_execute:
            reasons.append("auto_execute off (alert only)")

        if isinstance(config, MintSplitConfig):
            if opp.confidence.rank < config.min_confidence.rank:
                reasons.append(
                    f"confidence {opp.confidence.value} < {config.min_confidence.value}",
                )

        cap = _per_trade_cap(config)
        if cap is not None and opp.investment_amount > cap:
            reasons.append(f"trade ${opp.investment_amount:.2f} > per-trade cap ${cap:.2f}")

        ok, remaining = self.cooldown.check(self.cooldown_key(opp.strategy_type, opp.condition_id))
        if not ok:
            reasons.append(f"Cooldown active: {remaining:.0f}s remaining")

        daily = _daily_cap(config)
        if daily is not None:
            ok, reason = self.budget.check(opp.strategy_type.value, opp.investment_amount, daily)
            if not ok:
                reasons.append(reason or "daily budget exhausted")

        if reasons:
            for r in reasons:
                logger.info("[RISK] %s rejected: %s", opp.condition_id[:12], r)
            return RiskResult(approved=False, reasons=reasons)
        return RiskResult(approved=True, allowed_size=opp.investment_amount)

    def record_execution(self, opp: Opportunity) -> None:
        """Start cooldown and consume budget for an attempted execution."""
        self.cooldown.record(self.cooldown_key(opp.strategy_type, opp.condition_id))
        if opp.strategy_type != StrategyType.MARKET_MAKING:
            self.budget.record(opp.strategy_type.value, opp.investment_amount)

    # ------------------------------------------------------------------
    # Market-making quote gate
    # ------------------------------------------------------------------

    def check_quote(
        self,
        condition_id: str,
        outcome: str,
        price: float,
        shares: float,
        config: MarketMakingConfig,
        global_config: GlobalConfig,
    ) -> RiskResult:
        """One bid on one side of one market.

        ``allowed_size`` is in shares and may be smaller than requested
        when only part of the side/aggregate room remains.
        """
        self.loss_limiter.limit_usd = config.max_daily_loss
        self.position_limiter.max_per_side = config.max_position_per_side
        self.position_limiter.max_total = config.max_open_position

        if global_config.emergency_stop:
            return RiskResult(approved=False, reasons=["Emergency stop active"])

        ok, reason = self.loss_limiter.check(condition_id)
        if not ok:
            return RiskResult(approved=False, reasons=[reason or "market halted"])

        ok, allowed_value = self.position_limiter.check(
            current_side_exposure=self.inventory.side_exposure(condition_id, outcome),
            current_total_exposure=self.inventory.total_exposure(),
            new_order_value=price * shares,
        )
        if not ok:
            return RiskResult(
                approved=False,
                reasons=[f"{outcome} position limit reached on {condition_id[:12]}"],
            )

        allowed_shares = math.floor(allowed_value / price * 100 + 1e-9) / 100 if price > 0 else 0.0
        if allowed_shares <= 0:
            return RiskResult(approved=False, reasons=["no room left"])
        return RiskResult(approved=True, allowed_size=allowed_shares)

    def record_realized(self, condition_id: str, pnl: float) -> None:
        self.loss_limiter.record_pnl(condition_id, pnl)
