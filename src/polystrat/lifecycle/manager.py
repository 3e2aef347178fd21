"""Opportunity lifecycle: the only writer of ``Opportunity.status``.

    PENDING ──admit──▶ QUEUED ──start──▶ EXECUTING ──▶ SUCCESS | PARTIAL | FAILED
       │                  │                  │
       └──── sweep ───────┴──▶ EXPIRED       │
       └──── cancel ──────┴──────────────────┴──▶ CANCELLED

At most one opportunity per ``condition_id`` is in flight (QUEUED or
EXECUTING) at any time, across all strategies. Readers only ever receive
deep copies.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from polystrat.errors import AdmissionError, InvalidTransitionError
from polystrat.models.opportunity import (
    Opportunity,
    OpportunityFilter,
    OpportunityStatus,
    StrategyType,
)
from polystrat.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

S = OpportunityStatus

ALLOWED_TRANSITIONS: dict[OpportunityStatus, frozenset[OpportunityStatus]] = {
    S.PENDING: frozenset({S.QUEUED, S.EXPIRED, S.CANCELLED}),
    S.QUEUED: frozenset({S.EXECUTING, S.EXPIRED, S.CANCELLED}),
    S.EXECUTING: frozenset({S.SUCCESS, S.PARTIAL, S.FAILED, S.CANCELLED}),
}

OUTCOME_STATUSES = frozenset({S.SUCCESS, S.PARTIAL, S.FAILED})


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def can_transition(current: OpportunityStatus, new: OpportunityStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


class LifecycleManager:
    """Owns every live opportunity and its state transitions.

    Args:
        store: write-through record store (optional).
        max_age_minutes: PENDING/QUEUED older than this are expired by the sweep.
        max_terminal_in_memory: terminal records kept in memory; older ones
            are dropped from memory only, the store keeps the audit record.
        clock: injectable ``() -> datetime`` for tests.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        max_age_minutes: float = 5.0,
        max_terminal_in_memory: int = 1000,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.max_age_minutes = max_age_minutes
        self.max_terminal_in_memory = max_terminal_in_memory
        self._clock = clock or _utc_now
        self._opportunities: dict[str, Opportunity] = {}
        self._in_flight: dict[str, str] = {}  # condition_id → opportunity id
        self._terminal_order: list[str] = []
        self._finishing: set[str] = set()  # cancelled while executing

    # ------------------------------------------------------------------
    # Creation / admission
    # ------------------------------------------------------------------

    def register(self, opp: Opportunity) -> Opportunity:
        """Take ownership of a freshly classified PENDING opportunity."""
        if opp.status != S.PENDING:
            raise InvalidTransitionError(
                f"New opportunity must be PENDING, got {opp.status.value}",
            )
        if opp.id in self._opportunities:
            raise InvalidTransitionError(f"Opportunity {opp.id} already registered")
        self._opportunities[opp.id] = opp
        if self.store is not None:
            try:
                self.store.create_opportunity(opp)
            except Exception:
                logger.exception("Failed to persist new opportunity %s", opp.id)
        return copy.deepcopy(opp)

    def find_pending(
        self, strategy_type: StrategyType, condition_id: str,
    ) -> Optional[Opportunity]:
        """PENDING opportunity of one strategy for one market, as a copy."""
        for opp in self._opportunities.values():
            if (
                opp.status == S.PENDING
                and opp.strategy_type == strategy_type
                and opp.condition_id == condition_id
            ):
                return copy.deepcopy(opp)
        return None

    def supersede(self, old_id: str, new_id: str) -> bool:
        """PENDING → EXPIRED because a fresher classification replaced it."""
        opp = self._opportunities.get(old_id)
        if opp is None or opp.status != S.PENDING:
            return False
        opp.error_message = f"superseded by {new_id}"
        self._transition(opp, S.EXPIRED)
        logger.info("[LIFECYCLE] %s superseded by %s", old_id, new_id)
        return True

    def is_in_flight(self, condition_id: str) -> bool:
        return condition_id in self._in_flight

    def admit(self, opp_id: str) -> None:
        """PENDING → QUEUED.

        Raises:
            AdmissionError: another opportunity for the same market is
                QUEUED or EXECUTING. The opportunity stays PENDING.
        """
        opp = self._get_live(opp_id)
        holder = self._in_flight.get(opp.condition_id)
        if holder is not None and holder != opp_id:
            raise AdmissionError(
                f"duplicate in flight for {opp.condition_id} (held by {holder})",
            )
        self._transition(opp, S.QUEUED)
        self._in_flight[opp.condition_id] = opp.id

    def start(self, opp_id: str) -> Optional[Opportunity]:
        """QUEUED → EXECUTING, handing the live record to the executor.

        Returns None (and logs) when the opportunity is no longer QUEUED,
        e.g. it was expired or cancelled while waiting in the queue.
        """
        opp = self._opportunities.get(opp_id)
        if opp is None or opp.status != S.QUEUED:
            logger.info(
                "[LIFECYCLE] %s not startable (status=%s)",
                opp_id, opp.status.value if opp else "missing",
            )
            return None
        self._transition(opp, S.EXECUTING)
        return opp

    def complete(
        self,
        opp_id: str,
        status: OpportunityStatus,
        error: Optional[str] = None,
    ) -> OpportunityStatus:
        """EXECUTING → SUCCESS | PARTIAL | FAILED.

        If an operator cancelled the opportunity while it was executing,
        the execution results are still recorded but the status stays
        CANCELLED.

        Returns:
            The final status.
        """
        if status not in OUTCOME_STATUSES:
            raise InvalidTransitionError(f"{status.value} is not an execution outcome")
        opp = self._get_live(opp_id)
        if error:
            opp.error_message = error

        if opp.status == S.CANCELLED:
            self._finishing.discard(opp_id)
            self._release(opp)
            logger.info(
                "[LIFECYCLE] %s finished as %s after cancel; keeping CANCELLED",
                opp_id, status.value,
            )
            self._persist(opp)
            return S.CANCELLED

        self._transition(opp, status)
        return status

    def record_retry(self, opp_id: str, error: str) -> None:
        opp = self._get_live(opp_id)
        opp.retry_count += 1
        opp.error_message = error
        self._persist(opp)

    # ------------------------------------------------------------------
    # Operator actions / sweep
    # ------------------------------------------------------------------

    def cancel(self, opp_id: str, reason: str = "cancelled by operator") -> bool:
        """Any non-terminal → CANCELLED. False when already terminal."""
        opp = self._opportunities.get(opp_id)
        if opp is None or opp.status.is_terminal:
            return False
        opp.error_message = reason
        self._transition(opp, S.CANCELLED)
        logger.info("[LIFECYCLE] %s cancelled: %s", opp_id, reason)
        return True

    def expire_stale(self, now: Optional[datetime] = None) -> list[str]:
        """PENDING/QUEUED older than ``max_age_minutes`` → EXPIRED.

        Returns:
            IDs of the expired opportunities.
        """
        now = now or self._clock()
        cutoff = now - timedelta(minutes=self.max_age_minutes)
        expired = []
        for opp in list(self._opportunities.values()):
            if opp.status not in (S.PENDING, S.QUEUED):
                continue
            if opp.created_at <= cutoff:
                opp.error_message = (
                    f"expired after {self.max_age_minutes:g} min in {opp.status.value}"
                )
                self._transition(opp, S.EXPIRED)
                expired.append(opp.id)
        if expired:
            logger.info("[SWEEP] expired %d stale opportunities", len(expired))
        return expired

    # ------------------------------------------------------------------
    # Read-only accessors (deep copies)
    # ------------------------------------------------------------------

    def get(self, opp_id: str) -> Optional[Opportunity]:
        opp = self._opportunities.get(opp_id)
        return copy.deepcopy(opp) if opp else None

    def list(self, filter: Optional[OpportunityFilter] = None) -> list[Opportunity]:
        filter = filter or OpportunityFilter()
        result = [
            copy.deepcopy(o) for o in self._opportunities.values() if filter.matches(o)
        ]
        result.sort(key=lambda o: o.created_at, reverse=True)
        if filter.limit is not None:
            result = result[: filter.limit]
        return result

    def counts(self, strategy_type: Optional[StrategyType] = None) -> dict[str, int]:
        counts = {status.value: 0 for status in OpportunityStatus}
        for opp in self._opportunities.values():
            if strategy_type is None or opp.strategy_type == strategy_type:
                counts[opp.status.value] += 1
        return counts

    def executing_count(self, condition_id: str) -> int:
        return sum(
            1 for o in self._opportunities.values()
            if o.condition_id == condition_id and o.status == S.EXECUTING
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_live(self, opp_id: str) -> Opportunity:
        opp = self._opportunities.get(opp_id)
        if opp is None:
            raise KeyError(f"Unknown opportunity {opp_id}")
        return opp

    def _transition(self, opp: Opportunity, new: OpportunityStatus) -> None:
        if not can_transition(opp.status, new):
            raise InvalidTransitionError(
                f"{opp.id}: {opp.status.value} → {new.value} not allowed",
            )
        old = opp.status
        opp.status = new
        now = self._clock()
        if new == S.QUEUED:
            opp.queued_at = now
        elif new == S.EXECUTING:
            opp.started_at = now
        elif new.is_terminal:
            opp.completed_at = now
            if old == S.EXECUTING and new == S.CANCELLED:
                # legs still running; the market stays held until complete()
                self._finishing.add(opp.id)
            else:
                self._release(opp)
            self._terminal_order.append(opp.id)

        logger.debug("[LIFECYCLE] %s %s → %s", opp.id, old.value, new.value)
        self._persist(opp)
        self._evict_terminal()

    def _persist(self, opp: Opportunity) -> None:
        if self.store is None:
            return
        try:
            self.store.update_opportunity(opp)
        except Exception:
            logger.exception("Failed to persist opportunity %s", opp.id)

    def _release(self, opp: Opportunity) -> None:
        if self._in_flight.get(opp.condition_id) == opp.id:
            del self._in_flight[opp.condition_id]

    def _evict_terminal(self) -> None:
        excess = len(self._terminal_order) - self.max_terminal_in_memory
        if excess <= 0:
            return
        keep = []
        for opp_id in self._terminal_order:
            if excess > 0 and opp_id not in self._finishing:
                self._opportunities.pop(opp_id, None)
                excess -= 1
            else:
                keep.append(opp_id)
        self._terminal_order = keep
