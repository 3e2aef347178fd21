"""Market Data Gateway: Gamma market listing + CLOB order book, with retry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from polystrat.models.orderbook import OrderBook

logger = logging.getLogger(__name__)

GAMMA_API_URL = "https://gamma-api.polymarket.com"
CLOB_API_URL = "https://clob.polymarket.com"
DEFAULT_TIMEOUT = 10  # seconds
DEFAULT_MAX_RETRIES = 3


class GammaClient:
    """Async client for the Gamma market API and the CLOB book endpoint.

    Failures never raise: after ``max_retries`` attempts the call returns
    ``None`` so that the caller can skip the page or the market.

    Usage:
        async with GammaClient() as client:
            page = await client.list_markets(limit=200, offset=0)
    """

    def __init__(
        self,
        base_url: str = GAMMA_API_URL,
        clob_url: str = CLOB_API_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        rate_limit_backoff: float = 1.0,
        retry_backoff: float = 0.1,
    ):
        self.base_url = base_url
        self.clob_url = clob_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries
        self.rate_limit_backoff = rate_limit_backoff
        self.retry_backoff = retry_backoff
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self) -> None:
        """Open aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> GammaClient:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_markets(
        self,
        active: bool = True,
        closed: bool = False,
        limit: int = 200,
        offset: int = 0,
        liquidity_min: Optional[float] = None,
        volume_min: Optional[float] = None,
        category: Optional[str] = None,
        tag_id: Optional[str] = None,
    ) -> Optional[list[dict]]:
        """GET /markets - 한 페이지 조회.

        Returns:
            List of raw market dicts (empty when pagination is exhausted),
            or ``None`` when the page could not be fetched after retries.
        """
        url = f"{self.base_url}/markets"
        params = {
            "active": str(active).lower(),
            "closed": str(closed).lower(),
            "limit": str(limit),
            "offset": str(offset),
        }
        if liquidity_min is not None:
            params["liquidity_num_min"] = str(liquidity_min)
        if volume_min is not None:
            params["volume_num_min"] = str(volume_min)
        if category:
            params["category"] = category
        if tag_id is not None:
            params["tag_id"] = str(tag_id)

        data = await self._get_json(url, params)
        if data is None:
            return None
        if not isinstance(data, list):
            logger.warning("Gamma /markets returned %s, expected list", type(data).__name__)
            return None
        return data

    async def get_book(self, token_id: str) -> Optional[OrderBook]:
        """GET CLOB /book - 토큰 오더북. 실패 시 None."""
        url = f"{self.clob_url}/book"
        data = await self._get_json(url, {"token_id": token_id})
        if not isinstance(data, dict):
            return None
        return OrderBook.from_dict(token_id, data)

    # ------------------------------------------------------------------
    # HTTP helper with retry
    # ------------------------------------------------------------------

    async def _get_json(self, url: str, params: dict) -> Any:
        """GET → parsed JSON. 429시 지수 백오프. 실패 시 None 반환 (크래시 방지)."""
        await self.open()
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self._session.get(url, params=params) as resp:
                    if resp.status == 200:
                        return await resp.json()
                    if resp.status == 429:
                        wait = self.rate_limit_backoff * (2 ** (attempt - 1))
                        logger.warning(
                            "API 429 rate limit %s (attempt %d/%d), backing off %.1fs",
                            url, attempt, self.max_retries, wait,
                        )
                        await asyncio.sleep(wait)
                        continue
                    logger.warning(
                        "API %s returned %d (attempt %d/%d)",
                        url, resp.status, attempt, self.max_retries,
                    )
            except Exception as exc:
                logger.warning(
                    "API %s error (attempt %d/%d): %s",
                    url, attempt, self.max_retries, exc,
                )

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_backoff * (2 ** (attempt - 1)))

        logger.warning("API %s gave up after %d attempts", url, self.max_retries)
        return None
