"""SimulationContext: the explicit owner of all mutable simulation state.

There is no module-level game state.  A context bundles the topology,
in-flight requests, economy, difficulty state and the seeded random
source, and is passed by reference into every component.  Independent
contexts never share state, so several simulations (e.g. tests) can run
side by side in one process.

Request resolution helpers (``complete``, ``fail``, ``block``,
``dispatch``) are the only way components finish or move a request.  They
mark the request terminal and queue an ``OutcomeEvent`` that the economy
phase settles through the ledger.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Any

from loguru import logger

from .catalog import (
    CACHE_HIT_RATE,
    NODE_SPECS,
    TRAFFIC_SPECS,
    DifficultyParams,
    NodeKind,
    NodeSpec,
    ScoringTable,
    TrafficSpec,
    TrafficType,
)
from .degradation import DegradationSystem
from .difficulty import DifficultyController, DifficultyState
from .economy import EconomyLedger, EconomyState, Outcome, OutcomeEvent
from .request import FailureReason, RequestEntity, RequestState
from .router import Router
from .topology import TopologyGraph
from .traffic import TrafficGenerator

if TYPE_CHECKING:
    from cloudsim.comms.event_bus import EventBus
    from .service import ServiceNode

_OUTCOME_TOPICS = {
    Outcome.COMPLETED: "request_completed",
    Outcome.FAILED: "request_failed",
    Outcome.MALICIOUS_BLOCKED: "malicious_blocked",
    Outcome.MALICIOUS_PASSED: "malicious_passed",
}


class SimulationContext:
    """All state for one simulation instance."""

    def __init__(
        self,
        seed: int | None = None,
        event_bus: EventBus | None = None,
        scoring: ScoringTable | None = None,
        node_specs: dict[NodeKind, NodeSpec] | None = None,
        traffic_specs: dict[TrafficType, TrafficSpec] | None = None,
        difficulty_params: DifficultyParams | None = None,
        difficulty_state: DifficultyState | None = None,
        cache_hit_rate: float = CACHE_HIT_RATE,
        degradation: bool = True,
        auto_repair: bool = False,
        money: float = 0.0,
    ) -> None:
        self.seed = seed
        self.rng = random.Random(seed)
        self.event_bus = event_bus
        self.scoring = scoring or ScoringTable()
        self.node_specs = node_specs if node_specs is not None else NODE_SPECS
        self.traffic_specs = traffic_specs if traffic_specs is not None else TRAFFIC_SPECS
        self.cache_hit_rate = cache_hit_rate

        self.topology = TopologyGraph(self.node_specs)
        self.requests: dict[str, RequestEntity] = {}
        self.economy = EconomyState(money=money)
        self.ledger = EconomyLedger(self.economy, self.scoring, self.traffic_specs)
        self.difficulty = DifficultyController(self.rng, difficulty_params, difficulty_state)
        self.router = Router(self.topology, self.rng)
        self.traffic = TrafficGenerator(self.rng)
        self.degradation = DegradationSystem(enabled=degradation, auto_repair=auto_repair)

        self.pending_outcomes: list[OutcomeEvent] = []
        self._request_seq = 0

    # -- Derived values -----------------------------------------------------

    @property
    def now(self) -> float:
        """Elapsed simulated seconds."""
        return self.difficulty.state.elapsed

    @property
    def capacity_factor(self) -> float:
        return self.difficulty.capacity_factor

    def next_request_id(self) -> str:
        self._request_seq += 1
        return f"req-{self._request_seq}"

    def publish(self, topic: str, data: dict | None = None) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(topic, data)

    # -- Request resolution -------------------------------------------------

    def dispatch(self, req: RequestEntity, node: ServiceNode, next_id: str) -> None:
        req.send_to(next_id, node.position)

    def complete(self, req: RequestEntity, node_id: str | None) -> None:
        req.terminate(RequestState.COMPLETED, self.now)
        self.pending_outcomes.append(OutcomeEvent(
            request_id=req.request_id, traffic_type=req.traffic_type,
            outcome=Outcome.COMPLETED, node_id=node_id, cached=req.cached,
        ))

    def block(self, req: RequestEntity, node_id: str | None) -> None:
        req.blocked = True
        req.terminate(RequestState.COMPLETED, self.now)
        self.pending_outcomes.append(OutcomeEvent(
            request_id=req.request_id, traffic_type=req.traffic_type,
            outcome=Outcome.MALICIOUS_BLOCKED, node_id=node_id,
        ))

    def fail(self, req: RequestEntity, reason: FailureReason, node_id: str | None) -> None:
        req.terminate(RequestState.FAILED, self.now, reason)
        outcome = (
            Outcome.MALICIOUS_PASSED
            if req.traffic_type == TrafficType.MALICIOUS
            else Outcome.FAILED
        )
        logger.debug(f"{req.request_id} ({req.traffic_type.value}) failed at {node_id}: {reason.value}")
        self.pending_outcomes.append(OutcomeEvent(
            request_id=req.request_id, traffic_type=req.traffic_type,
            outcome=outcome, node_id=node_id, reason=reason,
        ))

    # -- Bookkeeping --------------------------------------------------------

    def settle_outcomes(self) -> list[OutcomeEvent]:
        """Apply every pending outcome through the ledger and publish cues."""
        settled = self.pending_outcomes
        self.pending_outcomes = []
        for event in settled:
            deltas = self.ledger.apply_outcome(event)
            if event.outcome == Outcome.MALICIOUS_PASSED:
                logger.warning(
                    f"Malicious request {event.request_id} passed at {event.node_id}: "
                    f"reputation {deltas['reputation']:+.1f}"
                )
            self.publish(_OUTCOME_TOPICS[event.outcome], {**event.to_dict(), **deltas})
        return settled

    def purge_expired(self) -> int:
        expired = [
            rid for rid, r in self.requests.items()
            if r.is_terminal and r.expires_at is not None and self.now >= r.expires_at
        ]
        for rid in expired:
            del self.requests[rid]
        return len(expired)

    def in_flight(self) -> list[RequestEntity]:
        return [r for r in self.requests.values() if not r.is_terminal]

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed": self.seed,
            "economy": self.economy.to_dict(),
            "difficulty": self.difficulty.state.to_dict(),
            "requests": len(self.requests),
        }
