"""Execution dispatcher: one bounded FIFO queue + one worker per strategy.

Admission (``submit``) runs capacity → risk → lifecycle checks in that
order; a rejected opportunity stays PENDING and the reason is logged.
Workers execute one item at a time, so a strategy's executions are
serialized. Transient gateway errors are retried with exponential backoff
(``retry_base_delay * 2**attempt``) up to ``retry_count`` times.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from polystrat.config_registry import StrategyConfigRegistry
from polystrat.errors import AdmissionError, TransientGatewayError
from polystrat.execution.executor import ExecutionResult, OpportunityExecutor
from polystrat.lifecycle.manager import LifecycleManager
from polystrat.models.opportunity import Opportunity, OpportunityStatus, StrategyType
from polystrat.models.queue import QueueState, QueueStatus
from polystrat.monitoring.metrics import MetricsCollector
from polystrat.risk.controller import RiskController
from polystrat.storage.record_store import RecordStore
from polystrat.strategy.opportunity import rank_opportunities

logger = logging.getLogger(__name__)

_STOP = None  # worker sentinel


class StrategyQueue:
    """Queue + worker state for one strategy."""

    def __init__(self, strategy_type: StrategyType):
        self.strategy_type = strategy_type
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self.mode = QueueState.RUNNING  # RUNNING | PAUSED | STOPPED
        self.current: Optional[str] = None
        self.processed_count = 0
        self.error_count = 0
        self.worker: Optional[asyncio.Task] = None
        self.resumed = asyncio.Event()
        self.resumed.set()

    @property
    def name(self) -> str:
        return self.strategy_type.value

    @property
    def size(self) -> int:
        return self.queue.qsize()

    @property
    def state(self) -> QueueState:
        if self.mode != QueueState.RUNNING:
            return self.mode
        if self.current is not None or self.size > 0:
            return QueueState.RUNNING
        return QueueState.IDLE


class ExecutionDispatcher:
    """Per-strategy queues in front of the executor.

    Args:
        lifecycle: owner of opportunity status.
        executor: per-opportunity playbooks.
        risk: admission gate.
        registry: live configs (queue size, retries, strategy limits).
        metrics: optional execution metrics sink.
        store: optional record store for ``QueueStatus`` snapshots.
    """

    def __init__(
        self,
        lifecycle: LifecycleManager,
        executor: OpportunityExecutor,
        risk: RiskController,
        registry: StrategyConfigRegistry,
        metrics: Optional[MetricsCollector] = None,
        store: Optional[RecordStore] = None,
    ):
        self.lifecycle = lifecycle
        self.executor = executor
        self.risk = risk
        self.registry = registry
        self.metrics = metrics
        self.store = store
        self._queues: dict[StrategyType, StrategyQueue] = {}

    # ------------------------------------------------------------------
    # Worker control
    # ------------------------------------------------------------------

    def start(self, strategy_type: StrategyType) -> None:
        q = self._queues.get(strategy_type)
        if q is not None and q.worker is not None and not q.worker.done():
            return
        if q is None or q.mode == QueueState.STOPPED:
            q = StrategyQueue(strategy_type)
            self._queues[strategy_type] = q
        q.worker = asyncio.create_task(self._worker(q), name=f"worker-{q.name}")
        logger.info("[DISPATCH] %s worker started", q.name)
        self._publish(q)

    async def stop(self, strategy_type: StrategyType) -> int:
        """Stop one worker after its current item; cancel what is still queued.

        Returns:
            Number of QUEUED opportunities cancelled.
        """
        q = self._queues.get(strategy_type)
        if q is None or q.mode == QueueState.STOPPED:
            return 0
        q.mode = QueueState.STOPPED
        q.resumed.set()

        cancelled = 0
        while True:
            try:
                opp_id = q.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            q.queue.task_done()
            if opp_id is not _STOP and self.lifecycle.cancel(opp_id, "strategy stopped"):
                cancelled += 1
        q.queue.put_nowait(_STOP)

        if q.worker is not None:
            await q.worker
        logger.info("[DISPATCH] %s worker stopped, %d queued cancelled", q.name, cancelled)
        self._publish(q)
        return cancelled

    def pause(self, strategy_type: StrategyType) -> None:
        q = self._queues.get(strategy_type)
        if q is not None and q.mode == QueueState.RUNNING:
            q.mode = QueueState.PAUSED
            q.resumed.clear()
            logger.info("[DISPATCH] %s paused", q.name)
            self._publish(q)

    def resume(self, strategy_type: StrategyType) -> None:
        q = self._queues.get(strategy_type)
        if q is not None and q.mode == QueueState.PAUSED:
            q.mode = QueueState.RUNNING
            q.resumed.set()
            logger.info("[DISPATCH] %s resumed", q.name)
            self._publish(q)

    def is_running(self, strategy_type: StrategyType) -> bool:
        q = self._queues.get(strategy_type)
        return q is not None and q.mode != QueueState.STOPPED

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def submit(self, opp_id: str) -> bool:
        """PENDING → QUEUED when every admission check passes.

        Returns:
            True when queued. False leaves the opportunity PENDING.
        """
        opp = self.lifecycle.get(opp_id)
        if opp is None:
            logger.warning("[DISPATCH] unknown opportunity %s", opp_id)
            return False
        q = self._queues.get(opp.strategy_type)
        if q is None or q.mode == QueueState.STOPPED:
            logger.info("[DISPATCH] %s rejected: %s queue not running", opp_id[:8], opp.strategy_type.value)
            return False

        global_config = self.registry.global_config
        if q.size >= global_config.queue_max_size:
            logger.warning(
                "[DISPATCH] %s rejected: %s queue full (%d/%d)",
                opp_id[:8], q.name, q.size, global_config.queue_max_size,
            )
            return False

        risk = self.risk.check_admission(opp, self.registry.get(opp.strategy_type), global_config)
        if not risk.approved:
            logger.info("[DISPATCH] %s rejected by risk: %s", opp_id[:8], "; ".join(risk.reasons))
            return False

        try:
            self.lifecycle.admit(opp_id)
        except AdmissionError as e:
            logger.info("[DISPATCH] %s rejected: %s", opp_id[:8], e.reason)
            return False

        q.queue.put_nowait(opp_id)
        logger.info(
            "[DISPATCH] %s queued on %s (%d waiting), expected $%.4f",
            opp_id[:8], q.name, q.size, opp.expected_profit,
        )
        self._publish(q)
        return True

    def submit_batch(self, opportunities: list[Opportunity]) -> int:
        """Submit a scan's findings, most profitable first. Returns queued count."""
        queued = 0
        for opp in rank_opportunities(opportunities):
            if self.submit(opp.id):
                queued += 1
        return queued

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, strategy_type: StrategyType) -> Optional[QueueStatus]:
        q = self._queues.get(strategy_type)
        return self._snapshot(q) if q else None

    def statuses(self) -> list[QueueStatus]:
        return [self._snapshot(q) for q in self._queues.values()]

    def _snapshot(self, q: StrategyQueue) -> QueueStatus:
        return QueueStatus(
            name=q.name,
            size=q.size,
            pending=1 if q.current is not None else 0,
            max_size=self.registry.global_config.queue_max_size,
            state=q.state,
            processed_count=q.processed_count,
            error_count=q.error_count,
        )

    def _publish(self, q: StrategyQueue) -> None:
        if self.store is None:
            return
        try:
            self.store.save_queue_status(self._snapshot(q))
        except Exception:
            logger.exception("Failed to persist queue status %s", q.name)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _worker(self, q: StrategyQueue) -> None:
        while True:
            opp_id = await q.queue.get()
            try:
                if opp_id is _STOP:
                    return
                await q.resumed.wait()
                if q.mode == QueueState.STOPPED:
                    self.lifecycle.cancel(opp_id, "strategy stopped")
                    continue
                q.current = opp_id
                self._publish(q)
                await self._process(q, opp_id)
            except Exception:
                q.error_count += 1
                logger.exception("[DISPATCH] %s worker error on %s", q.name, opp_id)
            finally:
                q.current = None
                q.queue.task_done()
                if opp_id is not _STOP:
                    self._publish(q)

    async def _process(self, q: StrategyQueue, opp_id: str) -> None:
        opp = self.lifecycle.start(opp_id)
        if opp is None:
            return  # expired or cancelled while queued

        self.risk.record_execution(opp)
        result = await self._execute_with_retry(opp)
        if result.actual_profit is not None:
            opp.actual_profit = result.actual_profit

        final = self.lifecycle.complete(opp_id, result.status, result.error)
        q.processed_count += 1
        if final == OpportunityStatus.FAILED:
            q.error_count += 1
        if self.metrics is not None:
            self.metrics.record(opp.strategy_type, final, opp.actual_profit)
        logger.info(
            "[DISPATCH] %s %s → %s%s",
            opp_id[:8], q.name, final.value,
            f" ({result.error})" if result.error else "",
        )

    async def _execute_with_retry(self, opp: Opportunity) -> ExecutionResult:
        attempt = 0
        while True:
            try:
                return await self.executor.execute(opp)
            except TransientGatewayError as e:
                global_config = self.registry.global_config
                if attempt >= global_config.retry_count:
                    logger.warning(
                        "[DISPATCH] %s giving up after %d retries: %s",
                        opp.id[:8], attempt, e,
                    )
                    return ExecutionResult(
                        OpportunityStatus.FAILED,
                        error=f"transient error, retries exhausted: {e}",
                    )
                delay = global_config.retry_base_delay * (2 ** attempt)
                attempt += 1
                self.lifecycle.record_retry(opp.id, str(e))
                logger.warning(
                    "[DISPATCH] %s transient error (retry %d/%d in %.1fs): %s",
                    opp.id[:8], attempt, global_config.retry_count, delay, e,
                )
                await asyncio.sleep(delay)
            except Exception as e:
                logger.exception("[DISPATCH] %s unexpected execution error", opp.id[:8])
                return ExecutionResult(OpportunityStatus.FAILED, error=f"unexpected: {e}")
