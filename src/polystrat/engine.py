"""Strategy engine: wires scanner → classifier → lifecycle → dispatcher.

Each running strategy owns one scan ``ScheduledTask`` (interval read from
its live config). One sweep task expires stale opportunities while any
strategy runs. Market making adds a refresh task driving ``MarketMaker.tick``
and, when enabled, the streaming price feed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from polystrat.config import StrategyConfig
from polystrat.config_registry import StrategyConfigRegistry
from polystrat.discovery.gamma_client import GammaClient
from polystrat.discovery.market_scanner import MarketScanner
from polystrat.errors import ConfigurationError
from polystrat.execution.dispatcher import ExecutionDispatcher
from polystrat.execution.executor import OpportunityExecutor
from polystrat.execution.market_maker import MarketMaker
from polystrat.execution.order_gateway import OrderGateway
from polystrat.lifecycle.manager import LifecycleManager
from polystrat.models.market import MarketSnapshot
from polystrat.models.opportunity import Opportunity, OpportunityFilter, StrategyType
from polystrat.models.queue import QueueStatus
from polystrat.monitoring.metrics import MetricsCollector
from polystrat.risk.controller import RiskController
from polystrat.risk.inventory import InventoryManager
from polystrat.scheduler.task import ScheduledTask
from polystrat.storage.record_store import RecordStore
from polystrat.strategy.classifier import classify, required_book_tokens
from polystrat.websocket.price_cache import PriceCache
from polystrat.websocket.price_feed import PriceFeedConsumer, PriceUpdateChannel
from polystrat.websocket.price_ws import PriceWebSocket

logger = logging.getLogger(__name__)


def _leg_key(opp: Opportunity) -> tuple:
    return tuple((t.token_id, t.side, round(t.price, 6), round(t.size, 6)) for t in opp.tokens)


@dataclass
class StrategyStatus:
    """Operator view of one strategy."""

    strategy_type: StrategyType
    is_running: bool
    counts: dict[str, int]
    last_scan_time: Optional[datetime] = None
    scan_in_progress: bool = False
    queue: Optional[QueueStatus] = None
    metrics: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "strategy_type": self.strategy_type.value,
            "is_running": self.is_running,
            "counts": dict(self.counts),
            "last_scan_time": self.last_scan_time.isoformat() if self.last_scan_time else None,
            "scan_in_progress": self.scan_in_progress,
            "queue": self.queue.to_dict() if self.queue else None,
            "metrics": dict(self.metrics),
        }


class StrategyEngine:
    """Operator-facing facade over the whole pipeline.

    Args:
        market_gateway: market listing + order book source.
        order_gateway: live or dry-run order gateway.
        store: optional record store (opportunities, queue status, configs).
        registry: config registry; a fresh one backed by ``store`` by default.
        stream_prices: run the websocket price feed while market making.
        ws_url: price feed endpoint.
    """

    def __init__(
        self,
        market_gateway: GammaClient,
        order_gateway: OrderGateway,
        store: Optional[RecordStore] = None,
        registry: Optional[StrategyConfigRegistry] = None,
        stream_prices: bool = False,
        ws_url: Optional[str] = None,
    ):
        self.market_gateway = market_gateway
        self.order_gateway = order_gateway
        self.store = store
        self.registry = registry or StrategyConfigRegistry(store)
        global_config = self.registry.global_config

        self.lifecycle = LifecycleManager(store, max_age_minutes=global_config.max_age_minutes)
        self.inventory = InventoryManager()
        self.risk = RiskController(self.inventory, global_config)
        self.price_cache = PriceCache()
        self.market_maker = MarketMaker(
            order_gateway, market_gateway, self.inventory, self.risk,
            self.registry, price_cache=self.price_cache,
        )
        self.executor = OpportunityExecutor(order_gateway, self.registry, self.market_maker)
        self.metrics = MetricsCollector()
        self.dispatcher = ExecutionDispatcher(
            self.lifecycle, self.executor, self.risk, self.registry,
            metrics=self.metrics, store=store,
        )
        self.scanner = MarketScanner(market_gateway)

        self.stream_prices = stream_prices
        self.ws_url = ws_url
        self._price_channel: Optional[PriceUpdateChannel] = None
        self._price_consumer: Optional[PriceFeedConsumer] = None
        self._price_socket: Optional[PriceWebSocket] = None
        self._price_socket_task: Optional[asyncio.Task] = None

        self._scan_tasks: dict[StrategyType, ScheduledTask] = {}
        self._last_scan: dict[StrategyType, datetime] = {}
        self._sweep_task: Optional[ScheduledTask] = None
        self._refresh_task: Optional[ScheduledTask] = None

    # ------------------------------------------------------------------
    # Operator interface
    # ------------------------------------------------------------------

    async def start_strategy(
        self,
        strategy_type: StrategyType,
        config: Optional[StrategyConfig] = None,
    ) -> None:
        """Validate the config and start the strategy's loops.

        Raises:
            ConfigurationError: invalid or disabled config. Nothing is started.
        """
        if self.is_running(strategy_type):
            logger.info("[ENGINE] %s already running", strategy_type.value)
            return
        if config is not None:
            self.registry.replace(strategy_type, config)
        current = self.registry.get(strategy_type)
        current.validate()
        if not current.enabled:
            raise ConfigurationError(f"{strategy_type.value} is disabled")

        self.dispatcher.start(strategy_type)
        task = ScheduledTask(
            f"scan-{strategy_type.value}",
            lambda: self.registry.get(strategy_type).scan_interval,
            lambda: self._scan_cycle(strategy_type),
        )
        self._scan_tasks[strategy_type] = task
        task.start()

        if self._sweep_task is None:
            self._sweep_task = ScheduledTask(
                "sweep",
                lambda: self.registry.global_config.sweep_interval,
                self._sweep,
                run_immediately=False,
            )
            self._sweep_task.start()

        if strategy_type == StrategyType.MARKET_MAKING:
            self._refresh_task = ScheduledTask(
                "mm-refresh",
                lambda: self.registry.get(StrategyType.MARKET_MAKING).refresh_interval,
                self._refresh,
                run_immediately=False,
            )
            self._refresh_task.start()
            if self.stream_prices:
                self._start_price_feed()

        logger.info("[ENGINE] %s started", strategy_type.value)

    async def stop_strategy(self, strategy_type: StrategyType) -> None:
        """Stop timers, let an executing item finish, cancel queued ones."""
        task = self._scan_tasks.pop(strategy_type, None)
        if task is None:
            return
        await task.stop()
        await self.dispatcher.stop(strategy_type)

        if strategy_type == StrategyType.MARKET_MAKING:
            if self._refresh_task is not None:
                await self._refresh_task.stop()
                self._refresh_task = None
            await self.market_maker.cancel_all()
            await self._stop_price_feed()

        if not self._scan_tasks and self._sweep_task is not None:
            await self._sweep_task.stop()
            self._sweep_task = None
        logger.info("[ENGINE] %s stopped", strategy_type.value)

    async def shutdown(self) -> None:
        for strategy_type in list(self._scan_tasks):
            await self.stop_strategy(strategy_type)

    def is_running(self, strategy_type: StrategyType) -> bool:
        return strategy_type in self._scan_tasks

    @property
    def running_strategies(self) -> list[StrategyType]:
        return list(self._scan_tasks)

    def get_status(self, strategy_type: StrategyType) -> StrategyStatus:
        task = self._scan_tasks.get(strategy_type)
        return StrategyStatus(
            strategy_type=strategy_type,
            is_running=task is not None,
            counts=self.lifecycle.counts(strategy_type),
            last_scan_time=self._last_scan.get(strategy_type),
            scan_in_progress=task.in_progress if task else False,
            queue=self.dispatcher.status(strategy_type),
            metrics=self.metrics.get_stats(strategy_type).to_dict(),
        )

    def get_opportunities(self, filter: Optional[OpportunityFilter] = None) -> list[Opportunity]:
        return self.lifecycle.list(filter)

    def update_config(self, strategy_type: StrategyType, partial: dict) -> StrategyConfig:
        return self.registry.update(strategy_type, partial)

    def get_queue_status(self) -> list[QueueStatus]:
        return self.dispatcher.statuses()

    def cancel_opportunity(self, opp_id: str) -> bool:
        return self.lifecycle.cancel(opp_id)

    def set_emergency_stop(self, active: bool) -> None:
        self.registry.set_emergency_stop(active)

    async def trigger_scan(self, strategy_type: StrategyType) -> bool:
        """Run one scan now. False when not running or a scan is in progress."""
        task = self._scan_tasks.get(strategy_type)
        if task is None:
            logger.info("[SCAN] %s not running, trigger ignored", strategy_type.value)
            return False
        return await task.run_once()

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _scan_cycle(self, strategy_type: StrategyType) -> list[Opportunity]:
        config = self.registry.get(strategy_type)
        result = await self.scanner.scan(config.scan)
        semaphore = asyncio.Semaphore(self.registry.global_config.book_concurrency)

        evaluated = await asyncio.gather(
            *(self._evaluate(strategy_type, s, config, semaphore) for s in result.snapshots),
        )
        found = [opp for opp in evaluated if opp is not None]
        registered = [self._register(strategy_type, opp) for opp in found]
        queued = self.dispatcher.submit_batch(registered)

        self._last_scan[strategy_type] = datetime.now(tz=timezone.utc)
        logger.info(
            "[SCAN] %s: %d markets → %d opportunities, %d queued (%.1fs)",
            strategy_type.value, len(result.snapshots), len(found), queued,
            result.duration_sec,
        )
        return registered

    def _register(self, strategy_type: StrategyType, opp: Opportunity) -> Opportunity:
        """One PENDING record per market and strategy.

        An unchanged rescan re-offers the existing record for admission;
        changed legs replace it.
        """
        pending = self.lifecycle.find_pending(strategy_type, opp.condition_id)
        if pending is not None and _leg_key(pending) == _leg_key(opp):
            return pending
        registered = self.lifecycle.register(opp)
        if pending is not None:
            self.lifecycle.supersede(pending.id, registered.id)
        return registered

    async def _evaluate(
        self,
        strategy_type: StrategyType,
        snapshot: MarketSnapshot,
        config: StrategyConfig,
        semaphore: asyncio.Semaphore,
    ) -> Optional[Opportunity]:
        cid = snapshot.condition_id
        if self.lifecycle.is_in_flight(cid):
            return None
        if strategy_type == StrategyType.MARKET_MAKING and self.market_maker.is_enrolled(cid):
            return None
        try:
            books = {}
            for token_id in required_book_tokens(strategy_type, snapshot, config):
                async with semaphore:
                    book = await self.market_gateway.get_book(token_id)
                if book is not None:
                    books[token_id] = book
            return classify(strategy_type, snapshot, books, config)
        except Exception:
            logger.exception("[SCAN] %s: classification failed for %s", strategy_type.value, cid[:12])
            return None

    async def _sweep(self) -> None:
        self.lifecycle.max_age_minutes = self.registry.global_config.max_age_minutes
        self.lifecycle.expire_stale()

    async def _refresh(self) -> None:
        if self._price_socket is not None:
            await self._price_socket.subscribe(self.market_maker.token_ids())
        await self.market_maker.tick()

    # ------------------------------------------------------------------
    # Streaming price feed
    # ------------------------------------------------------------------

    def _start_price_feed(self) -> None:
        self._price_channel = PriceUpdateChannel()
        self._price_consumer = PriceFeedConsumer(self._price_channel, self.price_cache)
        self._price_consumer.start()
        if self.ws_url:
            self._price_socket = PriceWebSocket(self._price_channel, url=self.ws_url)
        else:
            self._price_socket = PriceWebSocket(self._price_channel)
        self._price_socket_task = asyncio.create_task(self._price_socket.run(), name="price-ws")

    async def _stop_price_feed(self) -> None:
        if self._price_socket_task is not None:
            self._price_socket_task.cancel()
            try:
                await self._price_socket_task
            except asyncio.CancelledError:
                pass
            self._price_socket_task = None
        self._price_socket = None
        if self._price_consumer is not None:
            await self._price_consumer.stop()
            self._price_consumer = None
        self._price_channel = None
        self.price_cache.clear()
