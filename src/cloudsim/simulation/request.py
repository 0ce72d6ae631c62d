"""RequestEntity: one unit of simulated traffic and its lifecycle.

Lifecycle:

  SPAWNED -> IN_TRANSIT -> QUEUED -> PROCESSING -> IN_TRANSIT (next hop) ...
                                                -> COMPLETED | FAILED

COMPLETED and FAILED are terminal.  A terminal request keeps an
``expires_at`` timestamp (sim seconds) and is swept by the engine once the
clock passes it, so removal is a pure function of elapsed sim time.

Ownership: exactly one component mutates a request at a time.  While
IN_TRANSIT the engine's transit loop owns it; once QUEUED/PROCESSING the
holding ServiceNode owns it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .catalog import TERMINAL_GRACE, TRANSIT_SPEED, TrafficType


class RequestState(str, Enum):
    SPAWNED = "spawned"
    IN_TRANSIT = "in_transit"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({RequestState.COMPLETED, RequestState.FAILED})


class FailureReason(str, Enum):
    NO_ENTRY = "no_entry"
    QUEUE_OVERFLOW = "queue_overflow"
    WRONG_SINK = "wrong_sink"
    UNREACHABLE_SINK = "unreachable_sink"
    NO_CONNECTION = "no_connection"
    BYPASSED_FIREWALL = "bypassed_firewall"
    NODE_REMOVED = "node_removed"


@dataclass
class RequestEntity:
    """A request moving through the service graph."""

    request_id: str
    traffic_type: TrafficType
    origin: tuple[float, float]
    state: RequestState = RequestState.SPAWNED
    target_id: str | None = None
    location_id: str | None = None
    transit_progress: float = 0.0
    cached: bool = False
    blocked: bool = False
    failure_reason: FailureReason | None = None
    expires_at: float | None = None
    hops: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def send_to(self, node_id: str, origin: tuple[float, float]) -> None:
        """Start a hop toward ``node_id`` from ``origin``."""
        self.origin = origin
        self.target_id = node_id
        self.transit_progress = 0.0
        self.state = RequestState.IN_TRANSIT

    def advance_transit(self, dt: float) -> bool:
        """Advance the current hop.  Returns True when the hop completes."""
        if self.state != RequestState.IN_TRANSIT:
            return False
        self.transit_progress = min(1.0, self.transit_progress + dt * TRANSIT_SPEED)
        if self.transit_progress >= 1.0:
            self.location_id = self.target_id
            self.hops += 1
            return True
        return False

    def terminate(
        self,
        state: RequestState,
        now: float,
        reason: FailureReason | None = None,
    ) -> None:
        self.state = state
        self.failure_reason = reason
        self.expires_at = now + TERMINAL_GRACE

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "type": self.traffic_type.value,
            "state": self.state.value,
            "origin": list(self.origin),
            "target_id": self.target_id,
            "location_id": self.location_id,
            "progress": round(self.transit_progress, 3),
            "cached": self.cached,
            "blocked": self.blocked,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
        }
