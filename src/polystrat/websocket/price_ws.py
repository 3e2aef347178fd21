"""WebSocket producer for Polymarket real-time book updates.

Polymarket CLOB WebSocket에 연결하여 호가 변경을 PriceUpdateChannel로 전달.
Auto-reconnect with exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import websockets

from polystrat.websocket.price_feed import PriceUpdate, PriceUpdateChannel

logger = logging.getLogger(__name__)

WS_URL = "wss://ws-subscriptions-clob.polymarket.com/ws/market"


def _best(levels, reverse: bool) -> tuple[Optional[float], float]:
    """(best price, size) from a list of {price, size} levels."""
    items = []
    for level in levels or []:
        try:
            price = float(level["price"])
            size = float(level.get("size", 0))
        except (KeyError, TypeError, ValueError):
            continue
        if price > 0:
            items.append((price, size))
    if not items:
        return None, 0.0
    items.sort(key=lambda x: x[0], reverse=reverse)
    return items[0]


def parse_message(raw: str) -> list[PriceUpdate]:
    """수신 메시지 → PriceUpdate 목록. 잘못된 메시지는 빈 리스트."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.debug("Malformed message: %s", str(raw)[:100])
        return []

    updates = []
    for msg in data if isinstance(data, list) else [data]:
        if not isinstance(msg, dict):
            continue
        event_type = msg.get("event_type") or msg.get("type")
        asset_id = msg.get("asset_id", "")
        if not asset_id:
            continue

        if event_type == "book":
            best_bid, bid_size = _best(msg.get("bids"), reverse=True)
            best_ask, ask_size = _best(msg.get("asks"), reverse=False)
            if best_bid is None and best_ask is None:
                continue
            updates.append(PriceUpdate(asset_id, best_bid, best_ask, bid_size, ask_size))
        elif event_type == "price_change":
            try:
                best_bid = float(msg["best_bid"]) if msg.get("best_bid") else None
                best_ask = float(msg["best_ask"]) if msg.get("best_ask") else None
            except (TypeError, ValueError):
                continue
            if best_bid is None and best_ask is None:
                continue
            updates.append(PriceUpdate(asset_id, best_bid, best_ask))
    return updates


class PriceWebSocket:
    """Async producer: socket messages → channel.

    Args:
        channel: 업데이트를 넣을 PriceUpdateChannel.
        url: WebSocket 엔드포인트 URL.
        max_reconnect: 연속 재연결 시도 한도.
    """

    def __init__(
        self,
        channel: PriceUpdateChannel,
        url: str = WS_URL,
        max_reconnect: int = 5,
    ):
        self._channel = channel
        self._url = url
        self._max_reconnect = max_reconnect
        self._ws = None
        self._token_ids: set[str] = set()
        self.messages_received = 0

    async def subscribe(self, token_ids: list[str]) -> None:
        """토큰 구독. 연결 전이면 다음 연결 때 구독."""
        new = [t for t in token_ids if t not in self._token_ids]
        self._token_ids.update(token_ids)
        if self._ws is not None and new:
            await self._ws.send(json.dumps({"type": "market", "assets_ids": new}))
            logger.info("Subscribed to %d tokens", len(new))

    async def run(self) -> None:
        """Connect, subscribe and pump messages until cancelled."""
        failures = 0
        while failures < self._max_reconnect:
            try:
                async with websockets.connect(self._url) as ws:
                    self._ws = ws
                    failures = 0
                    logger.info("Connected to %s", self._url)
                    if self._token_ids:
                        await ws.send(json.dumps({
                            "type": "market",
                            "assets_ids": sorted(self._token_ids),
                        }))
                    async for raw in ws:
                        self.messages_received += 1
                        for update in parse_message(raw):
                            self._channel.publish(update)
                logger.info("WebSocket closed by server, reconnecting")
                await asyncio.sleep(1.0)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                failures += 1
                wait = min(30.0, 1.0 * (2 ** (failures - 1)))
                logger.warning(
                    "WebSocket error (%d/%d): %s, reconnecting in %.1fs",
                    failures, self._max_reconnect, exc, wait,
                )
                await asyncio.sleep(wait)
            finally:
                self._ws = None
        logger.error("WebSocket gave up after %d failures", self._max_reconnect)
