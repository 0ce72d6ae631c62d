"""TopologyGraph: nodes, directed connections and validity rules.

The graph is the only owner of node/connection existence.  It holds one
fixed Entry node (external ingress, never queued or processed, cannot be
deleted) plus any number of player-placed ServiceNodes.

Every mutating operation returns a ``CommandResult``.  A rejected command
leaves the graph untouched and is logged, never raised.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from .catalog import (
    ENTRY_ID,
    ENTRY_POSITION,
    GRID_TILE,
    MIN_NODE_SPACING,
    NODE_SPECS,
    NodeKind,
    NodeSpec,
    is_valid_connection,
)
from .service import ServiceNode


class RejectReason(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    OCCUPIED_POSITION = "occupied_position"
    SELF_LOOP = "self_loop"
    DUPLICATE = "duplicate"
    INVALID_TOPOLOGY = "invalid_topology"
    UNKNOWN_NODE = "unknown_node"
    UNKNOWN_KIND = "unknown_kind"
    MAX_TIER = "max_tier"
    REPAIR_NOT_NEEDED = "repair_not_needed"
    SANDBOX_ONLY = "sandbox_only"
    INVALID_MIX = "invalid_mix"
    INVALID_RATE = "invalid_rate"
    GAME_OVER = "game_over"
    CORRUPT_SAVE = "corrupt_save"


@dataclass
class CommandResult:
    """Outcome of a command: success flag plus a reason when rejected."""

    ok: bool
    reason: RejectReason | None = None
    node_id: str | None = None
    detail: str = ""

    @classmethod
    def success(cls, node_id: str | None = None, detail: str = "") -> CommandResult:
        return cls(ok=True, node_id=node_id, detail=detail)

    @classmethod
    def reject(cls, reason: RejectReason, detail: str = "") -> CommandResult:
        return cls(ok=False, reason=reason, detail=detail)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "reason": self.reason.value if self.reason else None,
            "node_id": self.node_id,
            "detail": self.detail,
        }


@dataclass
class EntryNode:
    node_id: str = ENTRY_ID
    kind: NodeKind = NodeKind.ENTRY
    position: tuple[float, float] = ENTRY_POSITION
    outgoing: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Connection:
    src: str
    dst: str

    def to_dict(self) -> dict[str, str]:
        return {"from": self.src, "to": self.dst}


def snap_to_grid(position: tuple[float, float]) -> tuple[float, float]:
    return (
        round(position[0] / GRID_TILE) * GRID_TILE,
        round(position[1] / GRID_TILE) * GRID_TILE,
    )


class TopologyGraph:
    """Entry node + service nodes + directed connections."""

    def __init__(self, node_specs: dict[NodeKind, NodeSpec] | None = None) -> None:
        self.node_specs = node_specs if node_specs is not None else NODE_SPECS
        self.entry = EntryNode()
        self.nodes: dict[str, ServiceNode] = {}
        self.connections: list[Connection] = []
        self._next_seq = 1

    # -- Queries ----------------------------------------------------------

    def get(self, node_id: str) -> EntryNode | ServiceNode | None:
        if node_id == self.entry.node_id:
            return self.entry
        return self.nodes.get(node_id)

    def position_of(self, node_id: str) -> tuple[float, float] | None:
        node = self.get(node_id)
        return node.position if node is not None else None

    def is_occupied(self, position: tuple[float, float]) -> bool:
        occupied = [self.entry.position] + [n.position for n in self.nodes.values()]
        return any(
            math.dist(position, p) < MIN_NODE_SPACING for p in occupied
        )

    def has_connection(self, src: str, dst: str) -> bool:
        return Connection(src, dst) in self.connections

    @property
    def next_seq(self) -> int:
        return self._next_seq

    # -- Mutations --------------------------------------------------------

    def add_node(
        self,
        kind: NodeKind,
        position: tuple[float, float],
        funds: float | None = None,
        node_id: str | None = None,
        tier: int = 0,
    ) -> CommandResult:
        """Place a node.  ``funds`` enables the purchase check when given."""
        spec = self.node_specs.get(kind)
        if spec is None:
            logger.debug(f"Rejected node placement: {kind} is not placeable")
            return CommandResult.reject(RejectReason.UNKNOWN_KIND, str(kind))
        if funds is not None and funds < spec.cost:
            logger.debug(f"Rejected {kind.value}: needs ${spec.cost}, have ${funds:.2f}")
            return CommandResult.reject(RejectReason.INSUFFICIENT_FUNDS)
        if self.is_occupied(position):
            logger.debug(f"Rejected {kind.value}: position {position} is occupied")
            return CommandResult.reject(RejectReason.OCCUPIED_POSITION)

        if node_id is None:
            node_id = f"svc-{self._next_seq}"
            self._next_seq += 1
        self.nodes[node_id] = ServiceNode(
            node_id=node_id, kind=kind, spec=spec,
            position=(float(position[0]), float(position[1])),
            tier=max(0, min(tier, spec.max_tier)),
        )
        return CommandResult.success(node_id=node_id)

    def add_connection(self, src: str, dst: str) -> CommandResult:
        if src == dst:
            logger.debug(f"Rejected connection {src} -> {dst}: self loop")
            return CommandResult.reject(RejectReason.SELF_LOOP)
        a, b = self.get(src), self.get(dst)
        if a is None or b is None:
            logger.debug(f"Rejected connection {src} -> {dst}: unknown node")
            return CommandResult.reject(RejectReason.UNKNOWN_NODE)
        if dst in a.outgoing:
            logger.debug(f"Rejected connection {src} -> {dst}: duplicate")
            return CommandResult.reject(RejectReason.DUPLICATE)
        if not is_valid_connection(a.kind, b.kind):
            logger.debug(
                f"Rejected connection {a.kind.value} -> {b.kind.value}: invalid topology"
            )
            return CommandResult.reject(
                RejectReason.INVALID_TOPOLOGY, f"{a.kind.value} -> {b.kind.value}",
            )
        a.outgoing.append(dst)
        self.connections.append(Connection(src, dst))
        return CommandResult.success()

    def remove_connection(self, src: str, dst: str) -> CommandResult:
        a = self.get(src)
        if a is None or self.get(dst) is None:
            return CommandResult.reject(RejectReason.UNKNOWN_NODE)
        if dst not in a.outgoing:
            return CommandResult.reject(RejectReason.UNKNOWN_NODE, "no such connection")
        a.outgoing.remove(dst)
        self.connections = [c for c in self.connections if c != Connection(src, dst)]
        return CommandResult.success()

    def remove_node(self, node_id: str) -> tuple[CommandResult, ServiceNode | None]:
        """Delete a service node and cascade its connections."""
        node = self.nodes.get(node_id)
        if node is None:
            # The Entry node lands here too: it cannot be deleted.
            return CommandResult.reject(RejectReason.UNKNOWN_NODE), None
        del self.nodes[node_id]
        if node_id in self.entry.outgoing:
            self.entry.outgoing.remove(node_id)
        for other in self.nodes.values():
            if node_id in other.outgoing:
                other.outgoing.remove(node_id)
        self.connections = [
            c for c in self.connections if c.src != node_id and c.dst != node_id
        ]
        return CommandResult.success(node_id=node_id), node

    def clear(self) -> None:
        self.entry = EntryNode()
        self.nodes.clear()
        self.connections.clear()
        self._next_seq = 1

    def restore_seq(self, next_seq: int) -> None:
        self._next_seq = max(self._next_seq, next_seq)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry": {
                "node_id": self.entry.node_id,
                "position": list(self.entry.position),
                "outgoing": list(self.entry.outgoing),
            },
            "connections": [c.to_dict() for c in self.connections],
        }
