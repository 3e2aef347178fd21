"""Opportunity executor - one playbook per strategy.

Never raises to the dispatcher except ``TransientGatewayError`` before any
order has been placed (the dispatcher retries those). Every other failure
becomes an ``ExecutionStep`` error and a FAILED/PARTIAL outcome.
Order legs retry transient gateway errors in place before giving up on a leg.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from polystrat.config import ArbitrageConfig, MintSplitConfig
from polystrat.config_registry import StrategyConfigRegistry
from polystrat.errors import GatewayError, TransientGatewayError
from polystrat.execution.order_gateway import OrderAck, OrderGateway
from polystrat.models.opportunity import (
    LegStatus,
    Opportunity,
    OpportunityStatus,
    StrategyType,
    TokenLeg,
)
from polystrat.strategy.arbitrage import limit_price

if TYPE_CHECKING:
    from polystrat.execution.market_maker import MarketMaker

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """실행 결과."""

    status: OpportunityStatus
    actual_profit: Optional[float] = None
    error: Optional[str] = None


def outcome_for_legs(legs: list[TokenLeg], actual_profit: Optional[float]) -> ExecutionResult:
    """Map leg fills to SUCCESS / PARTIAL / FAILED.

    SUCCESS needs every leg filled and a non-negative realized result.
    """
    filled = [leg for leg in legs if leg.filled > 0]
    if not filled:
        return ExecutionResult(OpportunityStatus.FAILED, actual_profit, "no legs filled")
    if len(filled) < len(legs) or not all(leg.is_filled for leg in legs):
        return ExecutionResult(
            OpportunityStatus.PARTIAL, actual_profit,
            f"{sum(1 for leg in legs if leg.is_filled)}/{len(legs)} legs filled",
        )
    if actual_profit is not None and actual_profit < 0:
        return ExecutionResult(
            OpportunityStatus.FAILED, actual_profit,
            f"negative realized result ${actual_profit:.4f}",
        )
    return ExecutionResult(OpportunityStatus.SUCCESS, actual_profit)


class OpportunityExecutor:
    """Turn an EXECUTING opportunity into gateway calls.

    Args:
        gateway: order gateway (live or dry-run).
        registry: strategy config source (read at execution time).
        market_maker: refresh-loop owner for MARKET_MAKING opportunities.
    """

    def __init__(
        self,
        gateway: OrderGateway,
        registry: StrategyConfigRegistry,
        market_maker: Optional[MarketMaker] = None,
    ):
        self.gateway = gateway
        self.registry = registry
        self.market_maker = market_maker

    async def execute(self, opp: Opportunity) -> ExecutionResult:
        logger.info(
            "[EXEC] %s %s %s: expected $%.4f on $%.2f",
            opp.id[:8], opp.strategy_type.value, opp.condition_id[:12],
            opp.expected_profit, opp.investment_amount,
        )
        if opp.strategy_type == StrategyType.MINT_SPLIT:
            return await self._execute_mint_split(opp, self.registry.get(opp.strategy_type))
        if opp.strategy_type in (StrategyType.ARBITRAGE_LONG, StrategyType.ARBITRAGE_SHORT):
            return await self._execute_arbitrage(opp, self.registry.get(opp.strategy_type))
        if opp.strategy_type == StrategyType.MARKET_MAKING:
            return await self._execute_market_making(opp)
        return ExecutionResult(OpportunityStatus.FAILED, error=f"unknown strategy {opp.strategy_type}")

    # ------------------------------------------------------------------
    # MINT_SPLIT: mint, then sell every leg one by one
    # ------------------------------------------------------------------

    async def _execute_mint_split(
        self, opp: Opportunity, config: MintSplitConfig,
    ) -> ExecutionResult:
        mint_cost = opp.investment_amount
        failure = await self._mint(opp, mint_cost)
        if failure is not None:
            return failure

        proceeds = 0.0
        for i, leg in enumerate(opp.tokens):
            if i > 0 and config.sell_delay > 0:
                await asyncio.sleep(config.sell_delay)
            ack, error = await self._place_leg(opp, leg, config.max_slippage)
            self._record_leg(opp, leg, ack, error)
            if ack is not None:
                proceeds += ack.filled_size * ack.fill_price

        opp.actual_profit = proceeds - mint_cost
        result = outcome_for_legs(opp.tokens, opp.actual_profit)
        logger.info(
            "[EXEC] %s mint-split %s: proceeds $%.4f, profit $%.4f",
            opp.id[:8], result.status.value, proceeds, opp.actual_profit,
        )
        return result

    # ------------------------------------------------------------------
    # ARBITRAGE: all legs concurrently
    # ------------------------------------------------------------------

    async def _execute_arbitrage(
        self, opp: Opportunity, config: ArbitrageConfig,
    ) -> ExecutionResult:
        """LONG buys every outcome. SHORT sells every outcome.

        With ``short_allow_mint`` off, SHORT sells tokens already held in the
        wallet. Holdings are not tracked here, so the gateway rejecting a sell
        for insufficient balance is the gate; such legs end FAILED.
        """
        short = opp.strategy_type == StrategyType.ARBITRAGE_SHORT
        if short and config.short_allow_mint:
            failure = await self._mint(opp, opp.investment_amount)
            if failure is not None:
                return failure

        results = await asyncio.gather(
            *(self._place_leg(opp, leg, config.max_slippage) for leg in opp.tokens),
        )
        for leg, (ack, error) in zip(opp.tokens, results):
            self._record_leg(opp, leg, ack, error)

        all_filled = all(leg.is_filled for leg in opp.tokens)
        if all_filled:
            notional = sum(leg.filled * leg.fill_price for leg in opp.tokens)
            if short:
                opp.actual_profit = notional - opp.investment_amount
            else:
                # exactly one outcome redeems for $1 per share
                opp.actual_profit = min(leg.filled for leg in opp.tokens) - notional
        else:
            opp.actual_profit = None

        result = outcome_for_legs(opp.tokens, opp.actual_profit)
        logger.info(
            "[EXEC] %s %s %s: profit %s",
            opp.id[:8], opp.strategy_type.value, result.status.value,
            f"${opp.actual_profit:.4f}" if opp.actual_profit is not None else "n/a",
        )
        return result

    # ------------------------------------------------------------------
    # MARKET_MAKING: enroll into the refresh loop
    # ------------------------------------------------------------------

    async def _execute_market_making(self, opp: Opportunity) -> ExecutionResult:
        if self.market_maker is None:
            opp.add_step("enroll", "failed", error="market maker not running")
            return ExecutionResult(OpportunityStatus.FAILED, error="market maker not running")

        placed, rejected = await self.market_maker.enroll(opp)
        opp.add_step(
            "enroll", "success" if placed else "failed",
            error=None if placed else "no quotes placed",
        )
        if placed and not rejected:
            return ExecutionResult(OpportunityStatus.SUCCESS, actual_profit=0.0)
        if placed:
            return ExecutionResult(
                OpportunityStatus.PARTIAL, actual_profit=0.0,
                error=f"{rejected} quote(s) rejected",
            )
        return ExecutionResult(OpportunityStatus.FAILED, error="no quotes placed")

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _mint(self, opp: Opportunity, amount: float) -> Optional[ExecutionResult]:
        """Mint one full set per unit. Returns a FAILED result, or None on success.

        Raises:
            TransientGatewayError: nothing happened yet, safe to retry.
        """
        try:
            tx = await self.gateway.mint(opp.condition_id, amount, len(opp.tokens))
        except TransientGatewayError as e:
            opp.add_step("mint", "failed", error=f"transient: {e}")
            raise
        except GatewayError as e:
            opp.add_step("mint", "failed", error=str(e))
            return ExecutionResult(OpportunityStatus.FAILED, error=f"mint failed: {e}")

        if not tx.success:
            opp.add_step("mint", "failed", tx_hash=tx.tx_hash, error=tx.error)
            return ExecutionResult(OpportunityStatus.FAILED, error=f"mint failed: {tx.error}")

        opp.add_step("mint", "success", tx_hash=tx.tx_hash)
        logger.info("[EXEC] %s minted %.2f sets, tx=%s", opp.id[:8], amount, tx.tx_hash)
        return None

    async def _place_leg(
        self, opp: Opportunity, leg: TokenLeg, max_slippage: float,
    ) -> tuple[Optional[OrderAck], Optional[str]]:
        """Fill-or-kill order at a slippage-bounded limit. Never raises.

        Transient gateway errors are retried with backoff
        (``retry_base_delay * 2**attempt``) up to ``retry_count`` times.
        """
        price = limit_price(leg.price, leg.side, max_slippage)
        global_config = self.registry.global_config
        attempt = 0
        while True:
            try:
                ack = await self.gateway.place_order(leg.token_id, leg.side, price, leg.size, "FOK")
            except TransientGatewayError as e:
                if attempt >= global_config.retry_count:
                    return None, f"transient, retries exhausted: {e}"
                delay = global_config.retry_base_delay * (2 ** attempt)
                attempt += 1
                opp.add_step(
                    f"retry {leg.side.value.lower()} {leg.outcome}", "retrying",
                    error=f"transient: {e}",
                )
                logger.warning(
                    "[EXEC] %s leg %s transient error (retry %d/%d in %.1fs): %s",
                    opp.id[:8], leg.outcome, attempt, global_config.retry_count, delay, e,
                )
                await asyncio.sleep(delay)
                continue
            except GatewayError as e:
                return None, str(e)
            except Exception as e:
                logger.exception("[EXEC] unexpected error placing %s", leg.token_id[:12])
                return None, f"unexpected: {e}"
            return ack, None

    @staticmethod
    def _record_leg(
        opp: Opportunity,
        leg: TokenLeg,
        ack: Optional[OrderAck],
        error: Optional[str],
    ) -> None:
        action = f"{leg.side.value.lower()} {leg.outcome}"
        if ack is None:
            leg.status = LegStatus.FAILED
            opp.add_step(action, "failed", error=error)
            logger.warning("[EXEC] %s leg %s failed: %s", opp.id[:8], leg.outcome, error)
            return

        opp.order_ids.append(ack.order_id)
        leg.filled = ack.filled_size
        leg.fill_price = ack.fill_price
        if ack.filled_size >= leg.size - 1e-9:
            leg.status = LegStatus.FILLED
        elif ack.filled_size > 0:
            leg.status = LegStatus.PARTIAL
        else:
            leg.status = LegStatus.FAILED
        opp.add_step(
            action,
            "success" if leg.status == LegStatus.FILLED else "failed",
            error=None if leg.status == LegStatus.FILLED else f"filled {ack.filled_size}/{leg.size}",
        )
