"""ServiceNode: typed processing unit with a bounded queue and slots.

Per tick, an operational node:

  1. Admission: moves requests from the FIFO queue into free processing
     slots (up to effective capacity).  When the capacity has dropped
     below the occupied slots, the surplus returns to the queue head.
  2. Progress: advances every slot by dt; a slot whose elapsed time
     reaches the processing time is vacated and the request is resolved
     by the node kind's behaviour.

Kind-specific behaviour is table driven (``KIND_BEHAVIOURS``) rather than
switched on in every function:

  intercept  called when a request arrives (router) and on admission;
             returning True consumes the request (firewall block).
  resolve    called when processing finishes; forwards the request to a
             next hop or terminates it.

Upkeep is booked by the engine's economy phase, not here.  Queue admission
on arrival (the overflow drop) is the router's job.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from .catalog import (
    LOAD_BANDS,
    NodeKind,
    NodeSpec,
    QUEUE_LIMIT,
    TrafficType,
)
from .request import FailureReason, RequestEntity, RequestState

if TYPE_CHECKING:
    from .context import SimulationContext


@dataclass
class ProcessingSlot:
    request_id: str
    elapsed_ms: float = 0.0


@dataclass
class ServiceNode:
    """A player-placed node.  Owns its queue and processing slots."""

    node_id: str
    kind: NodeKind
    spec: NodeSpec
    position: tuple[float, float]
    tier: int = 0
    outgoing: list[str] = field(default_factory=list)
    queue: deque[str] = field(default_factory=deque)
    slots: list[ProcessingSlot] = field(default_factory=list)
    health: float = 100.0
    disabled_until: float | None = None
    repairing: bool = False

    # -- Capacity ---------------------------------------------------------

    @property
    def base_capacity(self) -> int:
        return self.spec.capacity_at(self.tier)

    def effective_capacity(self, capacity_factor: float = 1.0) -> int:
        return max(1, int(self.base_capacity * capacity_factor))

    @property
    def processing_ms(self) -> float:
        return self.spec.base_processing_ms

    @property
    def queue_full(self) -> bool:
        return len(self.queue) >= QUEUE_LIMIT

    def load(self, capacity_factor: float = 1.0) -> float:
        cap = self.effective_capacity(capacity_factor)
        return (len(self.slots) + len(self.queue)) / (2 * cap)

    def is_operational(self, now: float) -> bool:
        if self.health <= 0:
            return False
        return self.disabled_until is None or now >= self.disabled_until

    # -- Tick -------------------------------------------------------------

    def tick(self, dt: float, ctx: SimulationContext) -> None:
        if not self.is_operational(ctx.now):
            return
        behaviour = KIND_BEHAVIOURS[self.kind]
        self._admit(ctx, behaviour)

        if not self.slots:
            return
        step_ms = dt * 1000.0
        finished: list[ProcessingSlot] = []
        for slot in self.slots:
            slot.elapsed_ms += step_ms
            if slot.elapsed_ms >= self.processing_ms:
                finished.append(slot)
        if not finished:
            return
        self.slots = [s for s in self.slots if s.elapsed_ms < self.processing_ms]
        for slot in finished:
            req = ctx.requests.get(slot.request_id)
            if req is None or req.is_terminal:
                continue
            ctx.degradation.on_request_processed(self, ctx)
            behaviour.resolve(self, req, ctx)

    def _preempt(self, capacity: int, ctx: SimulationContext) -> None:
        """Return slots above ``capacity`` to the head of the queue.

        The newest slots go back first and restart from zero.  Queue
        entries pushed past the limit fail as overflow, newest first.
        """
        surplus = self.slots[capacity:]
        self.slots = self.slots[:capacity]
        for slot in reversed(surplus):
            req = ctx.requests.get(slot.request_id)
            if req is None or req.is_terminal:
                continue
            req.state = RequestState.QUEUED
            self.queue.appendleft(slot.request_id)
        while len(self.queue) > QUEUE_LIMIT:
            req = ctx.requests.get(self.queue.pop())
            if req is not None and not req.is_terminal:
                ctx.fail(req, FailureReason.QUEUE_OVERFLOW, self.node_id)

    def _admit(self, ctx: SimulationContext, behaviour: KindBehaviour) -> None:
        capacity = self.effective_capacity(ctx.capacity_factor)
        if len(self.slots) > capacity:
            self._preempt(capacity, ctx)
        while len(self.slots) < capacity and self.queue:
            request_id = self.queue.popleft()
            req = ctx.requests.get(request_id)
            if req is None or req.is_terminal:
                continue
            if behaviour.intercept is not None and behaviour.intercept(self, req, ctx):
                continue
            req.state = RequestState.PROCESSING
            self.slots.append(ProcessingSlot(request_id))

    def enqueue(self, req: RequestEntity) -> None:
        self.queue.append(req.request_id)
        req.state = RequestState.QUEUED

    def held_request_ids(self) -> list[str]:
        return list(self.queue) + [s.request_id for s in self.slots]

    def to_dict(self, capacity_factor: float = 1.0, now: float = 0.0) -> dict[str, Any]:
        load = self.load(capacity_factor)
        band = "healthy"
        for threshold, name in LOAD_BANDS:
            if load > threshold:
                band = name
                break
        return {
            "node_id": self.node_id,
            "kind": self.kind.value,
            "name": self.spec.name,
            "position": list(self.position),
            "tier": self.tier,
            "max_tier": self.spec.max_tier,
            "capacity": self.effective_capacity(capacity_factor),
            "queue": len(self.queue),
            "processing": len(self.slots),
            "load": round(load, 3),
            "load_band": band,
            "health": round(self.health, 2),
            "repairing": self.repairing,
            "operational": self.is_operational(now),
            "outgoing": list(self.outgoing),
            "upkeep_per_minute": self.spec.upkeep_per_minute,
        }


# ---------------------------------------------------------------------------
# Kind behaviours
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KindBehaviour:
    resolve: Callable[[ServiceNode, RequestEntity, "SimulationContext"], None]
    intercept: Callable[[ServiceNode, RequestEntity, "SimulationContext"], bool] | None = None


def _connected(node: ServiceNode, ctx: SimulationContext, kinds) -> str | None:
    """First outgoing neighbour (in connection order) whose kind is in ``kinds``."""
    for nid in node.outgoing:
        nxt = ctx.topology.nodes.get(nid)
        if nxt is not None and nxt.kind in kinds:
            return nid
    return None


def _firewall_intercept(node: ServiceNode, req: RequestEntity, ctx: SimulationContext) -> bool:
    if req.traffic_type != TrafficType.MALICIOUS:
        return False
    ctx.block(req, node.node_id)
    return True


def _resolve_forwarder(node: ServiceNode, req: RequestEntity, ctx: SimulationContext) -> None:
    next_id = ctx.router.pick_forward(node)
    if next_id is None:
        ctx.fail(req, FailureReason.NO_CONNECTION, node.node_id)
    else:
        ctx.dispatch(req, node, next_id)


def _resolve_compute(node: ServiceNode, req: RequestEntity, ctx: SimulationContext) -> None:
    if req.traffic_type == TrafficType.MALICIOUS:
        ctx.fail(req, FailureReason.BYPASSED_FIREWALL, node.node_id)
        return
    spec = ctx.traffic_specs[req.traffic_type]
    next_id = None
    if spec.cacheable:
        next_id = _connected(node, ctx, (NodeKind.CACHE,))
    if next_id is None:
        next_id = _connected(node, ctx, spec.sinks)
    if next_id is None:
        ctx.fail(req, FailureReason.UNREACHABLE_SINK, node.node_id)
    else:
        ctx.dispatch(req, node, next_id)


def _resolve_cache(node: ServiceNode, req: RequestEntity, ctx: SimulationContext) -> None:
    if req.traffic_type == TrafficType.MALICIOUS:
        ctx.fail(req, FailureReason.BYPASSED_FIREWALL, node.node_id)
        return
    spec = ctx.traffic_specs[req.traffic_type]
    if spec.cacheable and ctx.rng.random() < ctx.cache_hit_rate:
        req.cached = True
        ctx.complete(req, node.node_id)
        return
    next_id = _connected(node, ctx, spec.sinks)
    if next_id is None:
        ctx.fail(req, FailureReason.UNREACHABLE_SINK, node.node_id)
    else:
        ctx.dispatch(req, node, next_id)


def _resolve_sink(node: ServiceNode, req: RequestEntity, ctx: SimulationContext) -> None:
    if node.kind in ctx.traffic_specs[req.traffic_type].sinks:
        ctx.complete(req, node.node_id)
    else:
        ctx.fail(req, FailureReason.WRONG_SINK, node.node_id)


def _resolve_cdn(node: ServiceNode, req: RequestEntity, ctx: SimulationContext) -> None:
    sinks = ctx.traffic_specs[req.traffic_type].sinks
    if NodeKind.CDN in sinks:
        ctx.complete(req, node.node_id)
        return
    if NodeKind.OBJECT_STORE not in sinks:
        ctx.fail(req, FailureReason.WRONG_SINK, node.node_id)
        return
    # Origin fetch for storage traffic the edge cannot serve itself.
    origin_id = _connected(node, ctx, (NodeKind.OBJECT_STORE,))
    if origin_id is None:
        ctx.fail(req, FailureReason.UNREACHABLE_SINK, node.node_id)
    else:
        ctx.dispatch(req, node, origin_id)


KIND_BEHAVIOURS: dict[NodeKind, KindBehaviour] = {
    NodeKind.FIREWALL: KindBehaviour(_resolve_forwarder, intercept=_firewall_intercept),
    NodeKind.LOAD_BALANCER: KindBehaviour(_resolve_forwarder),
    NodeKind.QUEUE_BUFFER: KindBehaviour(_resolve_forwarder),
    NodeKind.COMPUTE: KindBehaviour(_resolve_compute),
    NodeKind.CACHE: KindBehaviour(_resolve_cache),
    NodeKind.DATABASE: KindBehaviour(_resolve_sink),
    NodeKind.OBJECT_STORE: KindBehaviour(_resolve_sink),
    NodeKind.CDN: KindBehaviour(_resolve_cdn),
}
