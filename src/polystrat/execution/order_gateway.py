"""Order Gateway: order placement, cancellation and CTF mint/merge.

``ClobOrderGateway`` talks to the Polymarket CLOB through py_clob_client
(blocking calls run in a worker thread with a bounded timeout).
``DryRunOrderGateway`` simulates everything in memory.

Errors:
    GatewayError: the venue rejected the call (bad order, insufficient funds).
    TransientGatewayError: timeout / rate limit / connection problem.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import ApiCreds, OrderArgs, OrderType

from polystrat.errors import ConfigurationError, GatewayError, TransientGatewayError
from polystrat.models.opportunity import OrderSide

logger = logging.getLogger(__name__)

CLOB_HOST = "https://clob.polymarket.com"
POLYGON_CHAIN_ID = 137
DEFAULT_CALL_TIMEOUT = 10.0  # seconds

_TRANSIENT_MARKERS = ("429", "rate limit", "timeout", "timed out", "connection", "reset")


@dataclass(frozen=True)
class OrderAck:
    """Result of one accepted order."""

    order_id: str
    filled_size: float
    fill_price: float
    status: str  # "matched" | "live" | ...

    @property
    def is_filled(self) -> bool:
        return self.filled_size > 0


@dataclass(frozen=True)
class TxResult:
    """Opaque settlement outcome (mint / merge)."""

    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class OpenOrder:
    order_id: str
    token_id: str
    side: OrderSide
    price: float
    size: float
    size_matched: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> OpenOrder:
        return cls(
            order_id=str(data.get("id") or data.get("order_id") or ""),
            token_id=str(data.get("asset_id") or data.get("token_id") or ""),
            side=OrderSide(str(data.get("side", "BUY")).upper()),
            price=float(data.get("price", 0) or 0),
            size=float(data.get("original_size") or data.get("size") or 0),
            size_matched=float(data.get("size_matched", 0) or 0),
        )


class OrderGateway:
    """Async order gateway interface."""

    async def place_order(
        self,
        token_id: str,
        side: OrderSide,
        price: float,
        size: float,
        order_type: str = "GTC",
    ) -> OrderAck:
        raise NotImplementedError

    async def cancel_order(self, order_id: str) -> bool:
        raise NotImplementedError

    async def list_open_orders(self) -> list[OpenOrder]:
        raise NotImplementedError

    async def mint(self, condition_id: str, amount: float, outcome_count: int) -> TxResult:
        raise NotImplementedError

    async def merge(self, condition_id: str, amount: float) -> TxResult:
        raise NotImplementedError


class CtfSettlement:
    """On-chain split/merge adapter. Wallet signing lives outside polystrat."""

    async def split(self, condition_id: str, amount: float, outcome_count: int) -> TxResult:
        raise NotImplementedError

    async def merge(self, condition_id: str, amount: float) -> TxResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Live gateway
# ---------------------------------------------------------------------------


class ClobOrderGateway(OrderGateway):
    """py_clob_client-backed gateway.

    Args:
        client: authenticated ClobClient.
        settlement: mint/merge adapter. Without one, mint/merge raise
            ``GatewayError``.
        call_timeout: seconds per upstream call.
    """

    def __init__(
        self,
        client: ClobClient,
        settlement: Optional[CtfSettlement] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ):
        self._client = client
        self._settlement = settlement
        self.call_timeout = call_timeout

    @classmethod
    def from_env(
        cls,
        settlement: Optional[CtfSettlement] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ) -> ClobOrderGateway:
        """env vars로 ClobClient 초기화.

        Raises:
            ConfigurationError: private key or API credentials missing.
        """
        private_key = os.environ.get("POLYMARKET_PRIVATE_KEY", "")
        funder = os.environ.get("POLYMARKET_FUNDER", "")
        api_key = os.environ.get("POLYMARKET_API_KEY", "")
        api_secret = os.environ.get("POLYMARKET_API_SECRET", "")
        api_passphrase = os.environ.get("POLYMARKET_API_PASSPHRASE", "")

        missing = [
            name for name, value in (
                ("POLYMARKET_PRIVATE_KEY", private_key),
                ("POLYMARKET_API_KEY", api_key),
                ("POLYMARKET_API_SECRET", api_secret),
                ("POLYMARKET_API_PASSPHRASE", api_passphrase),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing credentials: {', '.join(missing)}")

        client = ClobClient(
            host=os.environ.get("POLYSTRAT_CLOB_URL", CLOB_HOST),
            chain_id=POLYGON_CHAIN_ID,
            key=private_key,
            signature_type=2,  # POLY_PROXY
            funder=funder or None,
        )
        client.set_api_creds(ApiCreds(
            api_key=api_key,
            api_secret=api_secret,
            api_passphrase=api_passphrase,
        ))
        return cls(client, settlement=settlement, call_timeout=call_timeout)

    async def place_order(
        self,
        token_id: str,
        side: OrderSide,
        price: float,
        size: float,
        order_type: str = "GTC",
    ) -> OrderAck:
        order_args = OrderArgs(
            token_id=token_id,
            price=price,
            size=size,
            side=side.value,
        )
        clob_type = OrderType.FOK if order_type == "FOK" else OrderType.GTC

        def _submit():
            signed = self._client.create_order(order_args)
            return self._client.post_order(signed, clob_type)

        logger.info(
            "[LIVE ORDER] %s %s %.2f @ $%.2f | token=%s",
            order_type, side.value, size, price, token_id[:16],
        )
        response = await self._call(_submit)

        if not isinstance(response, dict):
            raise GatewayError(f"invalid_response_type: {type(response).__name__}")
        if response.get("success") is False or response.get("errorMsg"):
            raise GatewayError(f"order_rejected: {response.get('errorMsg', 'unknown')}")

        order_id = response.get("orderID") or response.get("order_id", "")
        if not order_id:
            raise GatewayError("no_order_id_in_response")

        status = str(response.get("status", "")).lower()
        filled = size if status == "matched" else 0.0
        return OrderAck(order_id=order_id, filled_size=filled, fill_price=price, status=status)

    async def cancel_order(self, order_id: str) -> bool:
        try:
            await self._call(self._client.cancel, order_id=order_id)
        except GatewayError as e:
            logger.warning("[CANCEL] Order %s cancel failed: %s", order_id, e)
            return False
        logger.info("[CANCEL] Order %s cancelled", order_id)
        return True

    async def list_open_orders(self) -> list[OpenOrder]:
        orders = await self._call(self._client.get_orders)
        result = []
        for raw in orders or []:
            try:
                result.append(OpenOrder.from_dict(raw))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed open order %r: %s", raw, e)
        return result

    async def mint(self, condition_id: str, amount: float, outcome_count: int) -> TxResult:
        if self._settlement is None:
            raise GatewayError("mint requires a settlement adapter")
        return await self._with_timeout(
            self._settlement.split(condition_id, amount, outcome_count),
        )

    async def merge(self, condition_id: str, amount: float) -> TxResult:
        if self._settlement is None:
            raise GatewayError("merge requires a settlement adapter")
        return await self._with_timeout(self._settlement.merge(condition_id, amount))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a blocking client call in a thread with a bounded timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs), timeout=self.call_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientGatewayError(f"timeout after {self.call_timeout:.0f}s") from e
        except GatewayError:
            raise
        except Exception as e:
            raise _classify_error(e) from e

    async def _with_timeout(self, coro) -> TxResult:
        try:
            return await asyncio.wait_for(coro, timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise TransientGatewayError(f"timeout after {self.call_timeout:.0f}s") from e


def _classify_error(exc: Exception) -> GatewayError:
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, (ConnectionError, TimeoutError)) or any(
        marker in lowered for marker in _TRANSIENT_MARKERS
    ):
        return TransientGatewayError(message)
    return GatewayError(message)


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


class DryRunOrderGateway(OrderGateway):
    """In-memory simulation. No CLOB calls.

    FOK orders fill immediately at the limit price; GTC orders rest until
    ``simulate_fill`` is called. ``reject_tokens`` makes orders on those
    tokens fail, ``transient_mint_failures`` makes the next N mints time out.
    """

    def __init__(self):
        self.open_orders: dict[str, OpenOrder] = {}
        self.placed: list[dict] = []
        self.cancelled: list[str] = []
        self.mints: list[tuple[str, float, int]] = []
        self.merges: list[tuple[str, float]] = []
        self.reject_tokens: set[str] = set()
        self.fail_mint = False
        self.fail_merge = False
        self.transient_mint_failures = 0
        self._seq = itertools.count(1)

    async def place_order(
        self,
        token_id: str,
        side: OrderSide,
        price: float,
        size: float,
        order_type: str = "GTC",
    ) -> OrderAck:
        if token_id in self.reject_tokens:
            logger.info("[DRY RUN] Rejecting %s %s (simulated)", side.value, token_id[:12])
            raise GatewayError(f"order_rejected: simulated rejection for {token_id}")

        order_id = f"dry-{next(self._seq)}"
        self.placed.append({
            "order_id": order_id,
            "token_id": token_id,
            "side": side,
            "price": price,
            "size": size,
            "order_type": order_type,
        })
        logger.info(
            "[DRY RUN] Would submit: %s %s %.2f shares @ $%.2f",
            side.value, token_id[:12], size, price,
        )
        if order_type == "FOK":
            return OrderAck(order_id=order_id, filled_size=size, fill_price=price, status="matched")

        self.open_orders[order_id] = OpenOrder(
            order_id=order_id, token_id=token_id, side=side, price=price, size=size,
        )
        return OrderAck(order_id=order_id, filled_size=0.0, fill_price=price, status="live")

    async def cancel_order(self, order_id: str) -> bool:
        if self.open_orders.pop(order_id, None) is None:
            return False
        self.cancelled.append(order_id)
        return True

    async def list_open_orders(self) -> list[OpenOrder]:
        return list(self.open_orders.values())

    async def mint(self, condition_id: str, amount: float, outcome_count: int) -> TxResult:
        if self.transient_mint_failures > 0:
            self.transient_mint_failures -= 1
            raise TransientGatewayError("simulated mint timeout")
        if self.fail_mint:
            return TxResult(success=False, error="simulated mint failure")
        self.mints.append((condition_id, amount, outcome_count))
        return TxResult(success=True, tx_hash=f"0x{uuid.uuid4().hex}")

    async def merge(self, condition_id: str, amount: float) -> TxResult:
        if self.fail_merge:
            return TxResult(success=False, error="simulated merge failure")
        self.merges.append((condition_id, amount))
        return TxResult(success=True, tx_hash=f"0x{uuid.uuid4().hex}")

    def simulate_fill(self, order_id: str, size: Optional[float] = None) -> None:
        """Match ``size`` more shares of a resting order; fully filled orders leave the book."""
        order = self.open_orders[order_id]
        matched = min(order.size, order.size_matched + (size if size is not None else order.size))
        if matched >= order.size:
            del self.open_orders[order_id]
        else:
            self.open_orders[order_id] = OpenOrder(
                order_id=order.order_id,
                token_id=order.token_id,
                side=order.side,
                price=order.price,
                size=order.size,
                size_matched=matched,
            )
