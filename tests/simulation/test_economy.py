"""Unit tests for EconomyLedger outcome settlement and bookkeeping."""

from __future__ import annotations

import pytest

from cloudsim.simulation.catalog import TRAFFIC_SPECS, ScoringTable, TrafficType
from cloudsim.simulation.economy import EconomyLedger, EconomyState, Outcome, OutcomeEvent
from cloudsim.simulation.request import FailureReason

pytestmark = pytest.mark.unit


def _ledger(money: float = 0.0) -> EconomyLedger:
    return EconomyLedger(EconomyState(money=money), ScoringTable(), TRAFFIC_SPECS)


def _event(traffic_type: TrafficType, outcome: Outcome, **kw) -> OutcomeEvent:
    return OutcomeEvent(request_id="req-1", traffic_type=traffic_type, outcome=outcome, **kw)


class TestOutcomes:
    def test_completed_write(self):
        ledger = _ledger()
        ledger.state.reputation = 50.0
        deltas = ledger.apply_outcome(_event(TrafficType.WRITE, Outcome.COMPLETED))
        s = ledger.state
        assert s.money == pytest.approx(2.0)
        assert s.score.total == 8
        assert s.score.by_category["database"] == 8
        assert s.reputation == pytest.approx(50.1)
        assert s.requests_processed == 1
        assert deltas == {"money": 2.0, "reputation": pytest.approx(0.1), "score": 8}

    def test_cached_completion_earns_bonus(self):
        ledger = _ledger()
        ledger.apply_outcome(_event(TrafficType.READ, Outcome.COMPLETED, cached=True))
        assert ledger.state.money == pytest.approx(1.5 * 1.5)

    def test_static_scores_storage(self):
        ledger = _ledger()
        ledger.apply_outcome(_event(TrafficType.STATIC, Outcome.COMPLETED))
        assert ledger.state.score.by_category["storage"] == 3

    def test_failure_claws_back_half_score(self):
        ledger = _ledger()
        ledger.apply_outcome(_event(
            TrafficType.STATIC, Outcome.FAILED, reason=FailureReason.NO_ENTRY,
        ))
        s = ledger.state
        assert s.score.total == pytest.approx(-1.5)
        assert s.reputation == 100.0
        assert s.money == 0.0
        assert s.finances.failures_by_reason == {"no_entry": 1}

    def test_malicious_blocked(self):
        ledger = _ledger()
        ledger.apply_outcome(_event(TrafficType.MALICIOUS, Outcome.MALICIOUS_BLOCKED))
        s = ledger.state
        assert s.score.by_category["security"] == 25
        assert s.money == pytest.approx(0.5)
        assert s.finances.blocked == 1

    def test_malicious_passed(self):
        ledger = _ledger()
        ledger.apply_outcome(_event(
            TrafficType.MALICIOUS, Outcome.MALICIOUS_PASSED,
            reason=FailureReason.BYPASSED_FIREWALL,
        ))
        assert ledger.state.reputation == pytest.approx(90.0)
        assert ledger.state.finances.malicious_passed == 1

    def test_custom_scoring_table(self):
        ledger = EconomyLedger(
            EconomyState(), ScoringTable(fail_reputation=-1.0), TRAFFIC_SPECS,
        )
        ledger.apply_outcome(_event(TrafficType.READ, Outcome.FAILED))
        assert ledger.state.reputation == pytest.approx(99.0)


class TestBookkeeping:
    def test_upkeep_itemized(self):
        ledger = _ledger(100.0)
        ledger.debit_upkeep("compute", 0.25)
        ledger.debit_upkeep("compute", 0.25)
        assert ledger.state.money == pytest.approx(99.5)
        assert ledger.state.finances.expenses_by_service["compute"] == pytest.approx(0.5)

    def test_purchase_and_refund(self):
        ledger = _ledger(500.0)
        ledger.debit_purchase(200.0)
        ledger.credit_refund(100.0)
        assert ledger.state.money == 400.0
        assert ledger.state.finances.purchases == 200.0
        assert ledger.state.finances.refunds == 100.0

    def test_can_afford(self):
        ledger = _ledger(50.0)
        assert ledger.can_afford(50.0)
        assert not ledger.can_afford(50.01)

    def test_reputation_clamped_to_max(self):
        ledger = _ledger()
        ledger.apply_outcome(_event(TrafficType.WRITE, Outcome.COMPLETED))
        assert ledger.state.reputation > 100.0
        ledger.clamp_reputation()
        assert ledger.state.reputation == 100.0


class TestFailure:
    def test_reputation_exhausted(self):
        ledger = _ledger()
        ledger.state.reputation = 0.0
        assert ledger.is_failed()

    def test_bankrupt(self):
        ledger = _ledger(-1000.0)
        assert ledger.is_failed()

    def test_in_debt_but_not_bankrupt(self):
        ledger = _ledger(-999.0)
        assert not ledger.is_failed()
