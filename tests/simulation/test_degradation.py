"""Unit tests for DegradationSystem: load-driven wear and repairs."""

from __future__ import annotations

import pytest

from cloudsim.simulation.catalog import NodeKind
from cloudsim.simulation.context import SimulationContext
from cloudsim.simulation.degradation import DegradationSystem, fail_chance, needs_repair, repair_cost

pytestmark = pytest.mark.unit


def _ctx(bus, auto_repair: bool = False, money: float = 1000.0) -> SimulationContext:
    return SimulationContext(seed=5, event_bus=bus, auto_repair=auto_repair, money=money)


def _saturated_compute(ctx: SimulationContext):
    result = ctx.topology.add_node(NodeKind.COMPUTE, (0, 0))
    node = ctx.topology.nodes[result.node_id]
    for i in range(2 * node.base_capacity):
        node.queue.append(f"filler-{i}")
    return node


class TestFailChance:
    @pytest.mark.parametrize("load,expected", [
        (0.0, 0.0), (0.5, 0.0), (0.75, 0.5), (1.0, 1.0),
    ])
    def test_curve(self, load, expected):
        assert fail_chance(load) == pytest.approx(expected)


class TestWear:
    def test_saturated_node_loses_health(self, bus):
        ctx = _ctx(bus)
        node = _saturated_compute(ctx)
        ctx.degradation.on_request_processed(node, ctx)
        assert node.health == pytest.approx(95.0)

    def test_idle_node_never_wears(self, bus):
        ctx = _ctx(bus)
        result = ctx.topology.add_node(NodeKind.COMPUTE, (0, 0))
        node = ctx.topology.nodes[result.node_id]
        for _ in range(100):
            ctx.degradation.on_request_processed(node, ctx)
        assert node.health == 100.0

    def test_crossing_critical_publishes(self, bus):
        ctx = _ctx(bus)
        node = _saturated_compute(ctx)
        node.health = 32.0
        ctx.degradation.on_request_processed(node, ctx)
        assert node.health == pytest.approx(27.0)
        assert bus.of("node_degraded") == [{"node_id": node.node_id, "health": 27.0}]
        assert needs_repair(node)

    def test_disabled_system(self, bus):
        ctx = SimulationContext(seed=5, event_bus=bus, degradation=False)
        node = _saturated_compute(ctx)
        ctx.degradation.on_request_processed(node, ctx)
        assert node.health == 100.0

    def test_health_floor(self, bus):
        ctx = _ctx(bus)
        node = _saturated_compute(ctx)
        node.health = 2.0
        ctx.degradation.on_request_processed(node, ctx)
        assert node.health == 0.0
        assert not node.is_operational(ctx.now)


class TestRepair:
    def test_manual_repair_cost_and_restore(self, bus):
        ctx = _ctx(bus)
        node = _saturated_compute(ctx)
        node.health = 20.0
        cost = ctx.degradation.start_repair(node, ctx)
        assert cost == repair_cost(node) == pytest.approx(25.0)
        assert ctx.economy.money == pytest.approx(975.0)
        assert node.repairing
        assert not needs_repair(node)

        ctx.degradation.tick(1.0, ctx)
        assert node.health == pytest.approx(40.0)
        ctx.degradation.tick(5.0, ctx)
        assert node.health == 100.0
        assert not node.repairing
        assert bus.of("node_repaired") == [{"node_id": node.node_id}]

    def test_auto_repair(self, bus):
        ctx = _ctx(bus, auto_repair=True)
        node = _saturated_compute(ctx)
        node.health = 10.0
        ctx.degradation.tick(0.1, ctx)
        assert node.repairing
        assert ctx.economy.finances.repairs == pytest.approx(25.0)

    def test_auto_repair_needs_funds(self, bus):
        ctx = _ctx(bus, auto_repair=True, money=10.0)
        node = _saturated_compute(ctx)
        node.health = 10.0
        ctx.degradation.tick(0.1, ctx)
        assert not node.repairing

    def test_standalone_system_defaults(self):
        system = DegradationSystem()
        assert system.enabled
        assert not system.auto_repair
