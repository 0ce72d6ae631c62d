"""DegradationSystem: load-driven node wear and repair.

Each request a node finishes processing rolls against a failure chance
derived from the node's load:

    load        = (processing + queued) / (2 * capacity)
    fail_chance = max(0, 2 * (load - 0.5))

A failed roll costs HEALTH_DAMAGE health.  A node that drops below
CRITICAL_HEALTH can be repaired (manually, or automatically when the
context enables auto-repair); repair costs a fraction of the purchase
price and restores health at REPAIR_RATE per second.  A node at zero
health stops admitting and processing until repaired.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from .catalog import CRITICAL_HEALTH, HEALTH_DAMAGE, REPAIR_COST_FRACTION, REPAIR_RATE

if TYPE_CHECKING:
    from .context import SimulationContext
    from .service import ServiceNode


def fail_chance(load: float) -> float:
    return max(0.0, 2.0 * (load - 0.5))


def repair_cost(node: ServiceNode) -> float:
    return node.spec.cost * REPAIR_COST_FRACTION


def needs_repair(node: ServiceNode) -> bool:
    return node.health < CRITICAL_HEALTH and not node.repairing


class DegradationSystem:
    """Applies wear on processed requests and advances repairs."""

    def __init__(self, enabled: bool = True, auto_repair: bool = False) -> None:
        self.enabled = enabled
        self.auto_repair = auto_repair

    def on_request_processed(self, node: ServiceNode, ctx: SimulationContext) -> None:
        if not self.enabled:
            return
        chance = fail_chance(node.load(ctx.capacity_factor))
        if chance <= 0 or ctx.rng.random() >= chance:
            return
        was_critical = node.health < CRITICAL_HEALTH
        node.health = max(0.0, node.health - HEALTH_DAMAGE)
        if node.health < CRITICAL_HEALTH and not was_critical:
            logger.info(f"{node.node_id} ({node.kind.value}) health critical: {node.health:.0f}")
            ctx.publish("node_degraded", {
                "node_id": node.node_id, "health": node.health,
            })

    def start_repair(self, node: ServiceNode, ctx: SimulationContext) -> float:
        """Begin repairing ``node``; books and returns the repair cost."""
        cost = repair_cost(node)
        ctx.ledger.debit_repair(cost)
        node.repairing = True
        return cost

    def tick(self, dt: float, ctx: SimulationContext) -> None:
        if not self.enabled:
            return
        for node in ctx.topology.nodes.values():
            if self.auto_repair and needs_repair(node) and ctx.ledger.can_afford(repair_cost(node)):
                self.start_repair(node, ctx)
                logger.debug(f"Auto-repair started on {node.node_id}")
            if not node.repairing:
                continue
            node.health = min(100.0, node.health + REPAIR_RATE * dt)
            if node.health >= 100.0:
                node.repairing = False
                ctx.publish("node_repaired", {"node_id": node.node_id})
