"""TrafficGenerator: turns a spawn rate and a type mix into requests.

Spawn catch-up: elapsed time is accumulated and the generator loops,
decrementing the accumulator by one spawn interval per request, so a tick
that covers several intervals (3x time scale, traffic bursts) spawns the
right integer count instead of at most one.  This keeps the long-run rate
independent of tick size.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from loguru import logger

from .catalog import TrafficType
from .request import FailureReason, RequestEntity

if TYPE_CHECKING:
    from .context import SimulationContext

# Safety valve: never spawn more than this many requests in a single tick.
MAX_SPAWNS_PER_TICK = 200


def normalize_distribution(weights: dict[TrafficType, float]) -> dict[TrafficType, float]:
    """Return ``weights`` scaled to sum to 1.0, covering every TrafficType.

    Raises ValueError for negative weights or an all-zero mix.
    """
    full = {t: float(weights.get(t, 0.0)) for t in TrafficType}
    if any(w < 0 for w in full.values()):
        raise ValueError("traffic weights must be non-negative")
    total = sum(full.values())
    if total <= 0:
        raise ValueError("traffic weights must not all be zero")
    return {t: w / total for t, w in full.items()}


class TrafficGenerator:
    """Probabilistic request source."""

    def __init__(self, rng: random.Random) -> None:
        self._rng = rng
        self.accumulator = 0.0
        self.spawned = 0

    def due(self, dt: float, rate: float) -> int:
        """Advance the accumulator and return how many requests are due."""
        if rate <= 0:
            return 0
        self.accumulator += dt
        interval = 1.0 / rate
        count = 0
        while self.accumulator >= interval and count < MAX_SPAWNS_PER_TICK:
            self.accumulator -= interval
            count += 1
        if count == MAX_SPAWNS_PER_TICK:
            self.accumulator = 0.0
        return count

    def pick_type(self, distribution: dict[TrafficType, float]) -> TrafficType:
        r = self._rng.random()
        cumulative = 0.0
        last = TrafficType.STATIC
        for traffic_type, weight in distribution.items():
            if weight <= 0:
                continue
            cumulative += weight
            last = traffic_type
            if r < cumulative:
                return traffic_type
        return last

    def spawn(
        self,
        ctx: SimulationContext,
        traffic_type: TrafficType | None = None,
    ) -> RequestEntity:
        """Create one request and launch it toward an entry-adjacent node."""
        if traffic_type is None:
            traffic_type = self.pick_type(ctx.difficulty.state.traffic_distribution)
        entry = ctx.topology.entry
        req = RequestEntity(
            request_id=ctx.next_request_id(),
            traffic_type=traffic_type,
            origin=entry.position,
            location_id=entry.node_id,
        )
        ctx.requests[req.request_id] = req
        self.spawned += 1

        target_id = ctx.router.select_entry(traffic_type)
        if target_id is None:
            logger.debug(f"{req.request_id} ({traffic_type.value}) has no entry connection")
            ctx.fail(req, FailureReason.NO_ENTRY, entry.node_id)
        else:
            req.send_to(target_id, entry.position)
        return req

    def reset(self) -> None:
        self.accumulator = 0.0
        self.spawned = 0
