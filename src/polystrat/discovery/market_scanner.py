"""Market scanner - paginates the market gateway into normalized snapshots."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from polystrat.config import ScanConfig
from polystrat.discovery.gamma_client import GammaClient
from polystrat.discovery.market_filter import MarketFilter
from polystrat.errors import MalformedMarketError
from polystrat.models.market import MarketSnapshot, parse_market

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """스캔 1회 결과 요약."""

    snapshots: list[MarketSnapshot] = field(default_factory=list)
    pages_fetched: int = 0
    pages_skipped: int = 0
    malformed: int = 0
    filtered: int = 0
    duration_sec: float = 0.0

    @property
    def total_seen(self) -> int:
        return len(self.snapshots) + self.malformed + self.filtered


class MarketScanner:
    """Pull market pages until exhausted or the page budget is hit.

    Malformed markets are skipped individually. A page that still fails
    after the client's retries is skipped, and the scan moves on to the
    next offset. Overlap protection lives in the ``ScheduledTask`` that
    drives ``scan``.
    """

    def __init__(self, client: GammaClient):
        self.client = client

    async def scan(self, config: ScanConfig) -> ScanResult:
        result = ScanResult()
        started = time.monotonic()
        seen: set[str] = set()

        for page in range(config.max_pages):
            if page > 0 and config.page_delay > 0:
                await asyncio.sleep(config.page_delay)

            offset = page * config.page_limit
            raw_markets = await self.client.list_markets(
                active=config.active_only,
                closed=False,
                limit=config.page_limit,
                offset=offset,
                liquidity_min=config.liquidity_min or None,
                volume_min=config.volume_min or None,
                category=config.category or None,
                tag_id=config.tag_id or None,
            )
            if raw_markets is None:
                result.pages_skipped += 1
                logger.warning("[SCAN] page offset=%d skipped after retries", offset)
                continue

            result.pages_fetched += 1
            if not raw_markets:
                break

            for raw in raw_markets:
                try:
                    snapshot = parse_market(raw)
                except MalformedMarketError as e:
                    result.malformed += 1
                    logger.info(
                        "[SCAN] skip malformed market %s: %s",
                        raw.get("conditionId", "?") if isinstance(raw, dict) else "?", e,
                    )
                    continue

                if snapshot.condition_id in seen:
                    continue
                seen.add(snapshot.condition_id)

                admitted, reason = MarketFilter.admit(snapshot, config)
                if not admitted:
                    result.filtered += 1
                    logger.debug("[SCAN] filtered %s: %s", snapshot.condition_id, reason)
                    continue
                result.snapshots.append(snapshot)

            if len(raw_markets) < config.page_limit:
                break
        else:
            logger.info("[SCAN] page budget (%d) reached", config.max_pages)

        result.duration_sec = time.monotonic() - started
        logger.info(
            "[SCAN] %d markets admitted (%d malformed, %d filtered, %d pages, %d skipped) in %.1fs",
            len(result.snapshots), result.malformed, result.filtered,
            result.pages_fetched, result.pages_skipped, result.duration_sec,
        )
        return result
