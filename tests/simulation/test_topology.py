"""Unit tests for TopologyGraph: placement, connections, cascading removal."""

from __future__ import annotations

import pytest

from cloudsim.simulation.catalog import ENTRY_ID, ENTRY_POSITION, NodeKind
from cloudsim.simulation.topology import (
    Connection,
    RejectReason,
    TopologyGraph,
    snap_to_grid,
)

pytestmark = pytest.mark.unit


def _place(topo: TopologyGraph, kind: NodeKind, x: float, y: float = 0.0) -> str:
    result = topo.add_node(kind, (x, y))
    assert result.ok
    return result.node_id


class TestPlacement:
    def test_ids_are_sequential(self):
        topo = TopologyGraph()
        assert _place(topo, NodeKind.FIREWALL, 0) == "svc-1"
        assert _place(topo, NodeKind.COMPUTE, 4) == "svc-2"

    def test_occupied_position_rejected(self):
        topo = TopologyGraph()
        _place(topo, NodeKind.FIREWALL, 0)
        result = topo.add_node(NodeKind.COMPUTE, (0.5, 0))
        assert not result.ok
        assert result.reason == RejectReason.OCCUPIED_POSITION
        assert len(topo.nodes) == 1

    def test_entry_position_is_occupied(self):
        topo = TopologyGraph()
        result = topo.add_node(NodeKind.FIREWALL, ENTRY_POSITION)
        assert result.reason == RejectReason.OCCUPIED_POSITION

    def test_insufficient_funds(self):
        topo = TopologyGraph()
        result = topo.add_node(NodeKind.DATABASE, (0, 0), funds=199.0)
        assert result.reason == RejectReason.INSUFFICIENT_FUNDS
        assert not topo.nodes

    def test_entry_kind_not_placeable(self):
        topo = TopologyGraph()
        result = topo.add_node(NodeKind.ENTRY, (0, 0))
        assert result.reason == RejectReason.UNKNOWN_KIND

    def test_snap_to_grid(self):
        assert snap_to_grid((5.1, -6.2)) == (4.0, -8.0)
        assert snap_to_grid((0.0, 0.0)) == (0.0, 0.0)


class TestConnections:
    def test_connect_entry_to_firewall(self):
        topo = TopologyGraph()
        fw = _place(topo, NodeKind.FIREWALL, 0)
        assert topo.add_connection(ENTRY_ID, fw).ok
        assert topo.entry.outgoing == [fw]
        assert topo.has_connection(ENTRY_ID, fw)

    def test_self_loop(self):
        topo = TopologyGraph()
        lb = _place(topo, NodeKind.LOAD_BALANCER, 0)
        assert topo.add_connection(lb, lb).reason == RejectReason.SELF_LOOP

    def test_duplicate(self):
        topo = TopologyGraph()
        lb = _place(topo, NodeKind.LOAD_BALANCER, 0)
        app = _place(topo, NodeKind.COMPUTE, 4)
        assert topo.add_connection(lb, app).ok
        assert topo.add_connection(lb, app).reason == RejectReason.DUPLICATE
        assert len(topo.connections) == 1

    def test_invalid_kind_pair(self):
        topo = TopologyGraph()
        db = _place(topo, NodeKind.DATABASE, 0)
        app = _place(topo, NodeKind.COMPUTE, 4)
        result = topo.add_connection(db, app)
        assert result.reason == RejectReason.INVALID_TOPOLOGY
        assert topo.nodes[db].outgoing == []

    def test_unknown_node(self):
        topo = TopologyGraph()
        fw = _place(topo, NodeKind.FIREWALL, 0)
        assert topo.add_connection(fw, "svc-99").reason == RejectReason.UNKNOWN_NODE

    def test_remove_connection(self):
        topo = TopologyGraph()
        lb = _place(topo, NodeKind.LOAD_BALANCER, 0)
        app = _place(topo, NodeKind.COMPUTE, 4)
        topo.add_connection(lb, app)
        assert topo.remove_connection(lb, app).ok
        assert not topo.has_connection(lb, app)
        assert topo.nodes[lb].outgoing == []
        assert not topo.remove_connection(lb, app).ok


class TestRemoval:
    def test_remove_cascades_connections(self):
        topo = TopologyGraph()
        fw = _place(topo, NodeKind.FIREWALL, 0)
        lb = _place(topo, NodeKind.LOAD_BALANCER, 4)
        app = _place(topo, NodeKind.COMPUTE, 8)
        topo.add_connection(ENTRY_ID, fw)
        topo.add_connection(fw, lb)
        topo.add_connection(lb, app)

        result, node = topo.remove_node(lb)
        assert result.ok
        assert node.node_id == lb
        assert lb not in topo.nodes
        assert topo.nodes[fw].outgoing == []
        assert topo.connections == [Connection(ENTRY_ID, fw)]

    def test_remove_entry_refused(self):
        topo = TopologyGraph()
        result, node = topo.remove_node(ENTRY_ID)
        assert result.reason == RejectReason.UNKNOWN_NODE
        assert node is None
        assert topo.entry is not None

    def test_ids_not_reused_after_removal(self):
        topo = TopologyGraph()
        first = _place(topo, NodeKind.FIREWALL, 0)
        topo.remove_node(first)
        assert _place(topo, NodeKind.FIREWALL, 0) != first

    def test_to_dict(self):
        topo = TopologyGraph()
        fw = _place(topo, NodeKind.FIREWALL, 0)
        topo.add_connection(ENTRY_ID, fw)
        d = topo.to_dict()
        assert d["entry"]["outgoing"] == [fw]
        assert d["connections"] == [{"from": ENTRY_ID, "to": fw}]
