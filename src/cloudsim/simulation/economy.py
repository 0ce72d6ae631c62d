"""EconomyLedger: money, reputation, score and itemized finances.

Request outcomes are not applied where they happen.  Services, the router
and the traffic generator record an ``OutcomeEvent`` on the context; the
ledger settles all pending outcomes in the economy phase of the tick (and
after commands that spawn traffic directly, e.g. a sandbox burst).

Outcome rules:
  MALICIOUS_BLOCKED  security score + block reward
  MALICIOUS_PASSED   large reputation penalty (worst outcome in the game)
  COMPLETED          reward (x cache bonus when served from cache), score,
                     small reputation gain
  FAILED             failure reputation penalty, half the potential score
                     clawed back

Purchases, upgrades, repairs, refunds and upkeep are booked directly by the
operation that causes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .catalog import (
    BANKRUPTCY_THRESHOLD,
    MAX_REPUTATION,
    SCORE_CATEGORIES,
    START_REPUTATION,
    ScoringTable,
    TrafficSpec,
    TrafficType,
)
from .request import FailureReason


class Outcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    MALICIOUS_BLOCKED = "malicious_blocked"
    MALICIOUS_PASSED = "malicious_passed"


@dataclass
class OutcomeEvent:
    """A request resolution waiting to be settled by the ledger."""

    request_id: str
    traffic_type: TrafficType
    outcome: Outcome
    node_id: str | None = None
    reason: FailureReason | None = None
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "type": self.traffic_type.value,
            "outcome": self.outcome.value,
            "node_id": self.node_id,
            "reason": self.reason.value if self.reason else None,
            "cached": self.cached,
        }


@dataclass
class ScoreBoard:
    total: float = 0.0
    by_category: dict[str, float] = field(
        default_factory=lambda: {c: 0.0 for c in SCORE_CATEGORIES}
    )

    def add(self, category: str, points: float) -> None:
        self.total += points
        self.by_category[category] = self.by_category.get(category, 0.0) + points

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, **self.by_category}


@dataclass
class Finances:
    """Itemized accounting for reporting; never read by game logic."""

    income_by_type: dict[str, float] = field(default_factory=dict)
    completed_by_type: dict[str, int] = field(default_factory=dict)
    failures_by_type: dict[str, int] = field(default_factory=dict)
    failures_by_reason: dict[str, int] = field(default_factory=dict)
    expenses_by_service: dict[str, float] = field(default_factory=dict)
    purchases: float = 0.0
    upgrades: float = 0.0
    repairs: float = 0.0
    refunds: float = 0.0
    blocked: int = 0
    malicious_passed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "income_by_type": dict(self.income_by_type),
            "completed_by_type": dict(self.completed_by_type),
            "failures_by_type": dict(self.failures_by_type),
            "failures_by_reason": dict(self.failures_by_reason),
            "expenses_by_service": {k: round(v, 4) for k, v in self.expenses_by_service.items()},
            "purchases": self.purchases,
            "upgrades": self.upgrades,
            "repairs": self.repairs,
            "refunds": self.refunds,
            "blocked": self.blocked,
            "malicious_passed": self.malicious_passed,
        }


@dataclass
class EconomyState:
    money: float = 0.0
    reputation: float = START_REPUTATION
    score: ScoreBoard = field(default_factory=ScoreBoard)
    finances: Finances = field(default_factory=Finances)
    requests_processed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "money": round(self.money, 4),
            "reputation": round(self.reputation, 4),
            "score": self.score.to_dict(),
            "finances": self.finances.to_dict(),
            "requests_processed": self.requests_processed,
        }


def _bump(counter: dict, key: str, amount: float = 1) -> None:
    counter[key] = counter.get(key, 0) + amount


class EconomyLedger:
    """Applies outcome and expense deltas to an EconomyState."""

    def __init__(
        self,
        state: EconomyState,
        scoring: ScoringTable,
        traffic_specs: dict[TrafficType, TrafficSpec],
    ) -> None:
        self.state = state
        self.scoring = scoring
        self._traffic_specs = traffic_specs

    def apply_outcome(self, event: OutcomeEvent) -> dict[str, float]:
        """Settle one outcome.  Returns the money/reputation/score deltas."""
        s = self.state
        pts = self.scoring
        spec = self._traffic_specs[event.traffic_type]
        kind = event.traffic_type.value
        money = rep = score = 0.0

        if event.outcome == Outcome.MALICIOUS_BLOCKED:
            score = pts.malicious_blocked_score
            money = pts.malicious_blocked_reward
            s.score.add("security", score)
            s.finances.blocked += 1
            _bump(s.finances.income_by_type, kind, money)
        elif event.outcome == Outcome.MALICIOUS_PASSED:
            rep = pts.malicious_passed_reputation
            s.finances.malicious_passed += 1
            _bump(s.finances.failures_by_type, kind)
            if event.reason is not None:
                _bump(s.finances.failures_by_reason, event.reason.value)
        elif event.outcome == Outcome.COMPLETED:
            money = spec.reward * (1 + pts.cache_bonus if event.cached else 1)
            score = spec.score
            rep = pts.completed_reputation
            s.score.add(spec.category, score)
            s.requests_processed += 1
            _bump(s.finances.income_by_type, kind, money)
            _bump(s.finances.completed_by_type, kind)
        else:
            rep = pts.fail_reputation
            score = -spec.score / 2
            s.score.total += score
            _bump(s.finances.failures_by_type, kind)
            if event.reason is not None:
                _bump(s.finances.failures_by_reason, event.reason.value)

        s.money += money
        s.reputation += rep
        return {"money": money, "reputation": rep, "score": score}

    # -- Direct debits / credits ----------------------------------------------

    def debit_upkeep(self, service_kind: str, amount: float) -> None:
        self.state.money -= amount
        _bump(self.state.finances.expenses_by_service, service_kind, amount)

    def debit_purchase(self, cost: float) -> None:
        self.state.money -= cost
        self.state.finances.purchases += cost

    def debit_upgrade(self, cost: float) -> None:
        self.state.money -= cost
        self.state.finances.upgrades += cost

    def debit_repair(self, cost: float) -> None:
        self.state.money -= cost
        self.state.finances.repairs += cost

    def credit_refund(self, amount: float) -> None:
        self.state.money += amount
        self.state.finances.refunds += amount

    def can_afford(self, cost: float) -> bool:
        return self.state.money >= cost

    # -- End-of-tick checks ---------------------------------------------------

    def clamp_reputation(self) -> None:
        if self.state.reputation > MAX_REPUTATION:
            self.state.reputation = MAX_REPUTATION

    def is_failed(self) -> bool:
        """Terminal condition: reputation exhausted or bankrupt."""
        return self.state.reputation <= 0 or self.state.money <= BANKRUPTCY_THRESHOLD
