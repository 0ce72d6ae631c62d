"""Router: entry selection, forwarding choice and queue admission.

Entry selection (on spawn):
  STATIC traffic prefers a connected CDN, everything else (and STATIC with
  no CDN) prefers a connected FIREWALL; otherwise a uniform random pick
  among entry-adjacent nodes.  No entry connections means the request
  fails on the spot.

Forwarding (FIREWALL / LOAD_BALANCER / QUEUE_BUFFER):
  uniform random pick among the node's existing outgoing connections.
  COMPUTE and CACHE do type-directed selection in ``service.py``.

Admission on arrival:
  a request whose hop completes is appended to the target's queue only if
  the queue holds fewer than QUEUE_LIMIT requests; otherwise it fails with
  QUEUE_OVERFLOW.  This is the only backpressure in the system: overflow
  is a hard drop, producers are never throttled.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from .catalog import NodeKind, TrafficType
from .request import FailureReason, RequestEntity
from .service import KIND_BEHAVIOURS, ServiceNode

if TYPE_CHECKING:
    from .context import SimulationContext
    from .topology import TopologyGraph


class Router:
    """Routing policy.  Randomness comes from the context's seeded RNG."""

    def __init__(self, topology: TopologyGraph, rng: random.Random) -> None:
        self._topology = topology
        self._rng = rng

    def select_entry(self, traffic_type: TrafficType) -> str | None:
        entry_ids = [
            nid for nid in self._topology.entry.outgoing
            if nid in self._topology.nodes
        ]
        if not entry_ids:
            return None
        kinds = {nid: self._topology.nodes[nid].kind for nid in entry_ids}
        if traffic_type == TrafficType.STATIC:
            for nid in entry_ids:
                if kinds[nid] == NodeKind.CDN:
                    return nid
        for nid in entry_ids:
            if kinds[nid] == NodeKind.FIREWALL:
                return nid
        return self._rng.choice(entry_ids)

    def pick_forward(self, node: ServiceNode) -> str | None:
        candidates = [nid for nid in node.outgoing if nid in self._topology.nodes]
        if not candidates:
            return None
        return self._rng.choice(candidates)

    def admit_on_arrival(self, req: RequestEntity, ctx: SimulationContext) -> None:
        """Hand an arrived request to its target node (or fail it)."""
        node = self._topology.nodes.get(req.target_id or "")
        if node is None:
            ctx.fail(req, FailureReason.NODE_REMOVED, req.target_id)
            return
        intercept = KIND_BEHAVIOURS[node.kind].intercept
        if intercept is not None and intercept(node, req, ctx):
            return
        if node.queue_full:
            ctx.fail(req, FailureReason.QUEUE_OVERFLOW, node.node_id)
            return
        node.enqueue(req)
