"""Tests for LifecycleManager: transitions, uniqueness per market, expiry, cancel."""

from __future__ import annotations

from datetime import timedelta

import pytest

from polystrat.errors import AdmissionError, InvalidTransitionError
from polystrat.lifecycle.manager import LifecycleManager, can_transition
from polystrat.models.opportunity import (
    Opportunity,
    OpportunityFilter,
    OpportunityStatus,
    OrderSide,
    StrategyType,
    TokenLeg,
)
from polystrat.storage.record_store import MemoryRecordStore

S = OpportunityStatus


def _make_opp(condition_id: str = "0xabc", strategy=StrategyType.ARBITRAGE_LONG) -> Opportunity:
    return Opportunity(
        condition_id=condition_id,
        question="Q?",
        strategy_type=strategy,
        price_sum=0.95,
        spread=5.0,
        expected_profit=1.0,
        investment_amount=20.0,
        tokens=[TokenLeg("t1", "Yes", 0.45, 10, OrderSide.BUY)],
    )


def _executing(lm: LifecycleManager, condition_id: str = "0xabc") -> Opportunity:
    opp = lm.register(_make_opp(condition_id))
    lm.admit(opp.id)
    lm.start(opp.id)
    return opp


class TestTransitions:
    def test_happy_path(self):
        lm = LifecycleManager()
        opp = lm.register(_make_opp())
        lm.admit(opp.id)
        assert lm.get(opp.id).status == S.QUEUED
        assert lm.get(opp.id).queued_at is not None
        live = lm.start(opp.id)
        assert live.status == S.EXECUTING
        assert lm.complete(opp.id, S.SUCCESS) == S.SUCCESS
        final = lm.get(opp.id)
        assert final.status == S.SUCCESS
        assert final.completed_at is not None

    def test_pending_cannot_jump_to_success(self):
        lm = LifecycleManager()
        opp = lm.register(_make_opp())
        with pytest.raises(InvalidTransitionError):
            lm.complete(opp.id, S.SUCCESS)
        assert lm.get(opp.id).status == S.PENDING

    def test_complete_rejects_non_outcome_status(self):
        lm = LifecycleManager()
        opp = _executing(lm)
        with pytest.raises(InvalidTransitionError):
            lm.complete(opp.id, S.EXPIRED)

    def test_register_requires_pending(self):
        opp = _make_opp()
        opp.status = S.QUEUED
        with pytest.raises(InvalidTransitionError):
            LifecycleManager().register(opp)

    def test_start_returns_none_when_not_queued(self):
        lm = LifecycleManager()
        opp = lm.register(_make_opp())
        assert lm.start(opp.id) is None
        assert lm.start("missing") is None

    def test_terminal_is_final(self):
        for terminal in (S.SUCCESS, S.FAILED, S.PARTIAL, S.EXPIRED, S.CANCELLED):
            for target in S:
                assert not can_transition(terminal, target)

    def test_error_message_recorded(self):
        lm = LifecycleManager()
        opp = _executing(lm)
        lm.complete(opp.id, S.FAILED, "order rejected")
        assert lm.get(opp.id).error_message == "order rejected"

    def test_record_retry(self):
        lm = LifecycleManager()
        opp = _executing(lm)
        lm.record_retry(opp.id, "timeout")
        lm.record_retry(opp.id, "timeout")
        assert lm.get(opp.id).retry_count == 2


class TestUniqueness:
    def test_second_admit_same_market_rejected(self):
        lm = LifecycleManager()
        first = lm.register(_make_opp("0xm"))
        second = lm.register(_make_opp("0xm", StrategyType.MINT_SPLIT))
        lm.admit(first.id)
        with pytest.raises(AdmissionError) as exc:
            lm.admit(second.id)
        assert "0xm" in exc.value.reason
        assert lm.get(second.id).status == S.PENDING

    def test_market_released_after_completion(self):
        lm = LifecycleManager()
        first = _executing(lm, "0xm")
        lm.complete(first.id, S.SUCCESS)
        assert not lm.is_in_flight("0xm")
        second = lm.register(_make_opp("0xm"))
        lm.admit(second.id)
        assert lm.get(second.id).status == S.QUEUED

    def test_other_markets_unaffected(self):
        lm = LifecycleManager()
        a = lm.register(_make_opp("0xa"))
        b = lm.register(_make_opp("0xb"))
        lm.admit(a.id)
        lm.admit(b.id)
        assert lm.is_in_flight("0xa") and lm.is_in_flight("0xb")

    def test_executing_count(self):
        lm = LifecycleManager()
        _executing(lm, "0xm")
        assert lm.executing_count("0xm") == 1
        assert lm.executing_count("0xother") == 0


class TestExpiry:
    def test_pending_and_queued_expire(self):
        lm = LifecycleManager(max_age_minutes=5)
        pending = lm.register(_make_opp("0xa"))
        queued = lm.register(_make_opp("0xb"))
        lm.admit(queued.id)
        later = pending.created_at + timedelta(minutes=6)

        expired = lm.expire_stale(now=later)

        assert set(expired) == {pending.id, queued.id}
        assert lm.get(pending.id).status == S.EXPIRED
        assert "expired" in lm.get(queued.id).error_message
        assert not lm.is_in_flight("0xb")

    def test_fresh_not_expired(self):
        lm = LifecycleManager(max_age_minutes=5)
        opp = lm.register(_make_opp())
        assert lm.expire_stale(now=opp.created_at + timedelta(minutes=4)) == []

    def test_executing_never_expires(self):
        lm = LifecycleManager(max_age_minutes=5)
        opp = _executing(lm)
        assert lm.expire_stale(now=opp.created_at + timedelta(hours=1)) == []
        assert lm.get(opp.id).status == S.EXECUTING

    def test_expired_in_queue_not_startable(self):
        lm = LifecycleManager(max_age_minutes=5)
        opp = lm.register(_make_opp())
        lm.admit(opp.id)
        lm.expire_stale(now=opp.created_at + timedelta(minutes=10))
        assert lm.start(opp.id) is None


class TestPendingPerMarket:
    def test_find_pending_by_strategy_and_market(self):
        lm = LifecycleManager()
        opp = lm.register(_make_opp())
        lm.register(_make_opp("0xother"))
        assert lm.find_pending(StrategyType.ARBITRAGE_LONG, "0xabc").id == opp.id
        assert lm.find_pending(StrategyType.MINT_SPLIT, "0xabc") is None

    def test_queued_is_not_pending(self):
        lm = LifecycleManager()
        opp = lm.register(_make_opp())
        lm.admit(opp.id)
        assert lm.find_pending(StrategyType.ARBITRAGE_LONG, "0xabc") is None

    def test_supersede_expires_old_record(self):
        lm = LifecycleManager()
        old = lm.register(_make_opp())
        new = lm.register(_make_opp())
        assert lm.supersede(old.id, new.id)
        assert lm.get(old.id).status == S.EXPIRED
        assert new.id in lm.get(old.id).error_message
        assert lm.find_pending(StrategyType.ARBITRAGE_LONG, "0xabc").id == new.id

    def test_supersede_only_pending(self):
        lm = LifecycleManager()
        old = _executing(lm)
        assert not lm.supersede(old.id, "newer")
        assert lm.get(old.id).status == S.EXECUTING


class TestCancel:
    def test_cancel_queued(self):
        lm = LifecycleManager()
        opp = lm.register(_make_opp())
        lm.admit(opp.id)
        assert lm.cancel(opp.id, "operator")
        assert lm.get(opp.id).status == S.CANCELLED
        assert not lm.is_in_flight(opp.condition_id)

    def test_cancel_terminal_returns_false(self):
        lm = LifecycleManager()
        opp = _executing(lm)
        lm.complete(opp.id, S.SUCCESS)
        assert not lm.cancel(opp.id)
        assert not lm.cancel("missing")

    def test_cancel_while_executing_keeps_market_held(self):
        lm = LifecycleManager()
        opp = _executing(lm, "0xm")
        assert lm.cancel(opp.id)
        # legs are still in flight
        assert lm.is_in_flight("0xm")
        assert lm.complete(opp.id, S.SUCCESS) == S.CANCELLED
        assert lm.get(opp.id).status == S.CANCELLED
        assert not lm.is_in_flight("0xm")


class TestReaders:
    def test_get_returns_copy(self):
        lm = LifecycleManager()
        opp = lm.register(_make_opp())
        copy = lm.get(opp.id)
        copy.error_message = "tampered"
        copy.tokens[0].filled = 99
        fresh = lm.get(opp.id)
        assert fresh.error_message is None
        assert fresh.tokens[0].filled == 0

    def test_list_filter_and_counts(self):
        lm = LifecycleManager()
        a = lm.register(_make_opp("0xa"))
        lm.register(_make_opp("0xb", StrategyType.MINT_SPLIT))
        lm.admit(a.id)

        queued = lm.list(OpportunityFilter(status=S.QUEUED))
        assert [o.id for o in queued] == [a.id]
        assert len(lm.list(OpportunityFilter(limit=1))) == 1

        counts = lm.counts(StrategyType.ARBITRAGE_LONG)
        assert counts["queued"] == 1
        assert counts["pending"] == 0
        assert lm.counts()["pending"] == 1

    def test_terminal_eviction_from_memory_only(self):
        store = MemoryRecordStore()
        lm = LifecycleManager(store=store, max_terminal_in_memory=2)
        ids = []
        for i in range(4):
            opp = _executing(lm, f"0x{i}")
            lm.complete(opp.id, S.SUCCESS)
            ids.append(opp.id)
        assert lm.get(ids[0]) is None
        assert lm.get(ids[3]) is not None
        assert store.get_opportunity(ids[0]).status == S.SUCCESS


class TestPersistence:
    def test_transitions_written_through(self):
        store = MemoryRecordStore()
        lm = LifecycleManager(store=store)
        opp = _executing(lm)
        lm.complete(opp.id, S.PARTIAL, "one leg failed")
        stored = store.get_opportunity(opp.id)
        assert stored.status == S.PARTIAL
        assert stored.error_message == "one leg failed"

    def test_store_failure_does_not_break_lifecycle(self):
        class BrokenStore(MemoryRecordStore):
            def update_opportunity(self, opp):
                raise OSError("disk full")

        lm = LifecycleManager(store=BrokenStore())
        opp = lm.register(_make_opp())
        lm.admit(opp.id)
        assert lm.get(opp.id).status == S.QUEUED
