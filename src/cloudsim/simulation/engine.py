"""SimulationEngine: tick orchestration, command API and snapshots.

Architecture
------------
The engine owns one ``SimulationContext`` and drives it.  A tick runs
every phase to completion, synchronously, in a fixed order:

  1. Difficulty   ramp, milestones, shifts, spikes, disruption events
                  (survival only; sandbox just advances the clock)
  2. Services     admission, processing, forward/complete/fail; then
                  degradation repairs
  3. Transit      in-flight requests advance; arrivals go through the
                  router's queue admission
  4. Traffic      the generator spawns every request that is due
  5. Economy      upkeep debit, settle outcomes, clamp reputation,
                  game-over check
  6. Sweep        terminal requests past their grace period are removed

The same ``(context, dt)`` pair always produces the same result: all
randomness comes from the context's seeded RNG and nothing reads the wall
clock inside a tick.

Threading:
  Hosts may drive ``tick()`` / ``advance()`` themselves or call
  ``start()`` to run a daemon tick thread.  Either way a single lock
  serializes whole ticks against commands, so no command ever observes or
  mutates half a tick.

Terminal state:
  After game over ``tick()`` keeps being callable (and still publishes
  snapshots when enabled) but performs no mutation.  Commands are rejected
  until ``reset()`` or a successful ``load()``.
"""

from __future__ import annotations

import math
import threading
import time
from typing import TYPE_CHECKING, Any

from loguru import logger

from cloudsim.config import settings

from .catalog import (
    CRITICAL_HEALTH,
    NodeKind,
    SandboxSettings,
    TrafficType,
)
from .clock import SimulationClock
from .context import SimulationContext
from .degradation import repair_cost
from .game_mode import GameMode
from .request import FailureReason, RequestState
from .savegame import SaveFormatError, context_from_save, dump_save, load_save
from .topology import CommandResult, RejectReason, snap_to_grid

if TYPE_CHECKING:
    from cloudsim.comms.event_bus import EventBus


class SimulationEngine:
    """Drives a SimulationContext and exposes the command/snapshot API."""

    def __init__(
        self,
        event_bus: EventBus | None = None,
        mode: str | None = None,
        seed: int | None = None,
        sandbox: SandboxSettings | None = None,
        start_money: float | None = None,
        max_dt: float | None = None,
        publish_snapshots: bool | None = None,
        **context_kwargs: Any,
    ) -> None:
        self._event_bus = event_bus
        self._lock = threading.RLock()
        self._running = False
        self._thread: threading.Thread | None = None
        self._tick_counter = 0

        mode = mode or settings.default_mode
        if sandbox is None and mode == "sandbox":
            sandbox = SandboxSettings(
                budget=settings.sandbox_budget,
                spawn_rate=settings.sandbox_rps,
                burst_count=settings.sandbox_burst_count,
                upkeep_enabled=settings.sandbox_upkeep_enabled,
            )
        self.game_mode = GameMode(event_bus, mode=mode, sandbox=sandbox)
        self.clock = SimulationClock(
            max_dt=max_dt if max_dt is not None else settings.max_tick_dt,
        )
        self._publish_snapshots = (
            publish_snapshots if publish_snapshots is not None else settings.publish_snapshots
        )
        self._seed = seed if seed is not None else settings.seed
        self._start_money = start_money
        context_kwargs.setdefault("degradation", settings.degradation_enabled)
        context_kwargs.setdefault("auto_repair", settings.auto_repair)
        self._context_kwargs = context_kwargs
        self._ctx = self._new_context()

    # -- Properties ---------------------------------------------------------

    @property
    def ctx(self) -> SimulationContext:
        return self._ctx

    @property
    def event_bus(self) -> EventBus | None:
        return self._event_bus

    @property
    def running(self) -> bool:
        return self.game_mode.running

    def _new_context(self) -> SimulationContext:
        ctx = SimulationContext(
            seed=self._seed,
            event_bus=self._event_bus,
            money=self._initial_money(),
            **self._context_kwargs,
        )
        if self.game_mode.is_sandbox:
            ctx.difficulty.set_distribution(self.game_mode.sandbox.traffic_distribution)
            ctx.difficulty.set_rate(self.game_mode.sandbox.spawn_rate)
            self.clock.set_time_scale(1.0)
        else:
            # Survival starts paused so the player can build first.
            self.clock.set_time_scale(0.0)
        return ctx

    def _initial_money(self) -> float:
        if self._start_money is not None:
            return self._start_money
        if self.game_mode.is_sandbox:
            return self.game_mode.sandbox.budget
        return settings.survival_start_budget

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._tick_loop, name="sim-tick", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

    def _tick_loop(self) -> None:
        last = time.monotonic()
        while self._running:
            time.sleep(settings.tick_interval)
            now = time.monotonic()
            self.advance(now - last)
            last = now

    # -- Tick ---------------------------------------------------------------

    def advance(self, wall_dt: float) -> dict[str, Any] | None:
        """Clamp and time-scale a wall-clock delta, then tick."""
        with self._lock:
            return self.tick(self.clock.scale(wall_dt))

    def tick(self, dt: float) -> dict[str, Any] | None:
        """Advance the simulation by ``dt`` simulated seconds.

        Returns a snapshot when snapshots are published, else None.
        """
        with self._lock:
            if dt > 0 and self.game_mode.running:
                self._do_tick(dt)
            if self._publish_snapshots:
                snap = self.snapshot()
                self._publish("sim_snapshot", snap)
                return snap
            return None

    def _do_tick(self, dt: float) -> None:
        ctx = self._ctx
        self._tick_counter += 1

        if self.game_mode.is_sandbox:
            ctx.difficulty.advance_clock(dt)
        else:
            ctx.difficulty.tick(dt, ctx)

        for node in list(ctx.topology.nodes.values()):
            node.tick(dt, ctx)
        ctx.degradation.tick(dt, ctx)

        for req in list(ctx.requests.values()):
            if req.state == RequestState.IN_TRANSIT and req.advance_transit(dt):
                ctx.router.admit_on_arrival(req, ctx)

        for _ in range(ctx.traffic.due(dt, self._spawn_rate())):
            ctx.traffic.spawn(ctx)

        self._accrue_upkeep(dt)
        ctx.settle_outcomes()
        ctx.ledger.clamp_reputation()
        self.game_mode.check_terminal(ctx.ledger)
        ctx.purge_expired()

    def run_for(self, seconds: float, dt: float = 0.05) -> None:
        """Tick repeatedly with a fixed simulated dt (headless runs, tests)."""
        steps = int(math.ceil(seconds / dt))
        for _ in range(steps):
            self.tick(dt)

    def _spawn_rate(self) -> float:
        d = self._ctx.difficulty
        if self.game_mode.is_sandbox:
            return self.game_mode.sandbox.spawn_rate * d.spawn_multiplier
        return d.spawn_rate

    def _accrue_upkeep(self, dt: float) -> None:
        if not self.game_mode.upkeep_enabled:
            return
        ctx = self._ctx
        multiplier = 1.0 if self.game_mode.is_sandbox else ctx.difficulty.upkeep_multiplier
        for node in ctx.topology.nodes.values():
            amount = node.spec.upkeep_per_minute / 60.0 * dt * multiplier
            ctx.ledger.debit_upkeep(node.kind.value, amount)

    # -- Commands -----------------------------------------------------------

    def _reject(self, command: str, result: CommandResult) -> CommandResult:
        logger.info(f"{command} rejected: {result.reason.value} {result.detail}".rstrip())
        self._publish("command_rejected", {"command": command, **result.to_dict()})
        return result

    def _guard(self, command: str) -> CommandResult | None:
        if not self.game_mode.running:
            return self._reject(command, CommandResult.reject(RejectReason.GAME_OVER))
        return None

    def place_node(self, kind: NodeKind | str, position: tuple[float, float]) -> CommandResult:
        with self._lock:
            if (rejected := self._guard("place_node")) is not None:
                return rejected
            try:
                kind = NodeKind(kind)
            except ValueError:
                return self._reject("place_node", CommandResult.reject(RejectReason.UNKNOWN_KIND, str(kind)))
            ctx = self._ctx
            result = ctx.topology.add_node(
                kind, snap_to_grid(position), funds=ctx.economy.money,
            )
            if not result.ok:
                return self._reject("place_node", result)
            node = ctx.topology.nodes[result.node_id]
            ctx.ledger.debit_purchase(node.spec.cost)
            logger.info(f"Placed {kind.value} {node.node_id} at {node.position}")
            self._publish("node_placed", {
                "node_id": node.node_id, "kind": kind.value,
                "position": list(node.position), "cost": node.spec.cost,
            })
            return result

    def connect(self, src: str, dst: str) -> CommandResult:
        with self._lock:
            if (rejected := self._guard("connect")) is not None:
                return rejected
            result = self._ctx.topology.add_connection(src, dst)
            if not result.ok:
                return self._reject("connect", result)
            self._publish("connection_added", {"from": src, "to": dst})
            return result

    def disconnect(self, src: str, dst: str) -> CommandResult:
        with self._lock:
            if (rejected := self._guard("disconnect")) is not None:
                return rejected
            result = self._ctx.topology.remove_connection(src, dst)
            if not result.ok:
                return self._reject("disconnect", result)
            self._publish("connection_removed", {"from": src, "to": dst})
            return result

    def remove_node(self, node_id: str) -> CommandResult:
        with self._lock:
            if (rejected := self._guard("remove_node")) is not None:
                return rejected
            ctx = self._ctx
            result, node = ctx.topology.remove_node(node_id)
            if not result.ok or node is None:
                return self._reject("remove_node", result)
            for rid in node.held_request_ids():
                req = ctx.requests.get(rid)
                if req is not None and not req.is_terminal:
                    ctx.fail(req, FailureReason.NODE_REMOVED, node_id)
            upgrade_spend = sum(t.upgrade_cost for t in node.spec.tiers[:node.tier])
            refund = math.floor(node.spec.cost / 2) + math.floor(upgrade_spend / 2)
            ctx.ledger.credit_refund(refund)
            ctx.settle_outcomes()
            logger.info(f"Removed {node.kind.value} {node_id}, refunded ${refund}")
            self._publish("node_removed", {"node_id": node_id, "refund": refund})
            return result

    def upgrade_node(self, node_id: str) -> CommandResult:
        with self._lock:
            if (rejected := self._guard("upgrade_node")) is not None:
                return rejected
            ctx = self._ctx
            node = ctx.topology.nodes.get(node_id)
            if node is None:
                return self._reject("upgrade_node", CommandResult.reject(RejectReason.UNKNOWN_NODE))
            cost = node.spec.upgrade_cost_from(node.tier)
            if cost is None:
                return self._reject("upgrade_node", CommandResult.reject(RejectReason.MAX_TIER))
            if not ctx.ledger.can_afford(cost):
                return self._reject("upgrade_node", CommandResult.reject(RejectReason.INSUFFICIENT_FUNDS))
            ctx.ledger.debit_upgrade(cost)
            node.tier += 1
            logger.info(f"Upgraded {node_id} to tier {node.tier} (capacity {node.base_capacity})")
            self._publish("node_upgraded", {
                "node_id": node_id, "tier": node.tier,
                "capacity": node.base_capacity, "cost": cost,
            })
            return CommandResult.success(node_id=node_id)

    def repair_node(self, node_id: str) -> CommandResult:
        with self._lock:
            if (rejected := self._guard("repair_node")) is not None:
                return rejected
            ctx = self._ctx
            node = ctx.topology.nodes.get(node_id)
            if node is None:
                return self._reject("repair_node", CommandResult.reject(RejectReason.UNKNOWN_NODE))
            if node.health >= CRITICAL_HEALTH or node.repairing:
                return self._reject("repair_node", CommandResult.reject(RejectReason.REPAIR_NOT_NEEDED))
            if not ctx.ledger.can_afford(repair_cost(node)):
                return self._reject("repair_node", CommandResult.reject(RejectReason.INSUFFICIENT_FUNDS))
            cost = ctx.degradation.start_repair(node, ctx)
            logger.info(f"Repair started on {node_id} for ${cost:.2f}")
            return CommandResult.success(node_id=node_id, detail=f"cost={cost:.2f}")

    def set_traffic_mix(self, weights: dict[TrafficType | str, float]) -> CommandResult:
        with self._lock:
            if not self.game_mode.is_sandbox:
                return self._reject("set_traffic_mix", CommandResult.reject(RejectReason.SANDBOX_ONLY))
            try:
                typed = {TrafficType(k): float(v) for k, v in weights.items()}
                self._ctx.difficulty.set_distribution(typed)
            except (AttributeError, TypeError, ValueError) as e:
                return self._reject("set_traffic_mix", CommandResult.reject(RejectReason.INVALID_MIX, str(e)))
            self.game_mode.sandbox.traffic_distribution = dict(
                self._ctx.difficulty.state.traffic_distribution
            )
            return CommandResult.success()

    def set_spawn_rate(self, rps: float) -> CommandResult:
        with self._lock:
            if not self.game_mode.is_sandbox:
                return self._reject("set_spawn_rate", CommandResult.reject(RejectReason.SANDBOX_ONLY))
            if rps < 0 or math.isnan(rps):
                return self._reject("set_spawn_rate", CommandResult.reject(RejectReason.INVALID_RATE))
            self.game_mode.sandbox.spawn_rate = rps
            self._ctx.difficulty.set_rate(rps)
            return CommandResult.success()

    def burst_spawn(self, count: int | None = None) -> CommandResult:
        """Sandbox: spawn ``count`` requests (default: sandbox burst count) now."""
        with self._lock:
            if not self.game_mode.is_sandbox:
                return self._reject("burst_spawn", CommandResult.reject(RejectReason.SANDBOX_ONLY))
            n = count if count is not None else self.game_mode.sandbox.burst_count
            for _ in range(max(0, n)):
                self._ctx.traffic.spawn(self._ctx)
            self._ctx.settle_outcomes()
            return CommandResult.success(detail=f"spawned={n}")

    def spawn_request(self, traffic_type: TrafficType | str | None = None) -> str | None:
        """Spawn one request immediately.

        Returns its id, or None after game over or for an unknown type (the
        latter is published as a rejection).
        """
        with self._lock:
            if not self.game_mode.running:
                return None
            try:
                tt = TrafficType(traffic_type) if traffic_type is not None else None
            except ValueError:
                self._reject("spawn_request", CommandResult.reject(RejectReason.UNKNOWN_KIND, str(traffic_type)))
                return None
            req = self._ctx.traffic.spawn(self._ctx, tt)
            self._ctx.settle_outcomes()
            return req.request_id

    def set_time_scale(self, scale: float) -> CommandResult:
        with self._lock:
            if not self.clock.set_time_scale(scale):
                return self._reject("set_time_scale", CommandResult.reject(RejectReason.INVALID_RATE))
            return CommandResult.success()

    def reset(self, mode: str | None = None, sandbox: SandboxSettings | None = None) -> None:
        """Discard all simulation state and start over (optionally in another mode)."""
        with self._lock:
            self.game_mode.reset(mode=mode, sandbox=sandbox)
            self._ctx = self._new_context()
            self._tick_counter = 0
            logger.info(f"Simulation reset ({self.game_mode.mode})")

    # -- Persistence (schema only; file I/O belongs to the host) -------------

    def save(self) -> dict[str, Any]:
        with self._lock:
            return dump_save(self._ctx, mode=self.game_mode.mode)

    def load(self, data: dict[str, Any]) -> CommandResult:
        """Replace the simulation with a saved one.  Atomic: on failure nothing changes."""
        with self._lock:
            try:
                save = load_save(data)
                if save.mode not in GameMode.MODES:
                    raise SaveFormatError(f"unknown game mode: {save.mode}")
                ctx = context_from_save(
                    save, seed=self._seed, event_bus=self._event_bus, **self._context_kwargs,
                )
            except SaveFormatError as e:
                logger.warning(f"Save load failed: {e}")
                return self._reject("load", CommandResult.reject(RejectReason.CORRUPT_SAVE, str(e)))
            self.game_mode.reset(mode=save.mode)
            if self.game_mode.is_sandbox:
                self.game_mode.sandbox.traffic_distribution = dict(
                    ctx.difficulty.state.traffic_distribution
                )
            self._ctx = ctx
            self.clock.set_time_scale(0.0)
            logger.info(f"Loaded save: {len(ctx.topology.nodes)} nodes, t={ctx.now:.0f}s")
            return CommandResult.success()

    # -- Snapshot -----------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Read-only view of the whole simulation for renderers and HUDs."""
        with self._lock:
            ctx = self._ctx
            factor = ctx.capacity_factor
            now = ctx.now
            d = ctx.difficulty
            upkeep = sum(n.spec.upkeep_per_minute / 60.0 for n in ctx.topology.nodes.values())
            if not self.game_mode.upkeep_enabled:
                upkeep = 0.0
            elif not self.game_mode.is_sandbox:
                upkeep *= d.upkeep_multiplier
            return {
                "tick": self._tick_counter,
                "time": round(now, 3),
                "time_scale": self.clock.time_scale,
                "paused": self.clock.paused,
                "game": self.game_mode.get_state(),
                "running": self.game_mode.running,
                **ctx.topology.to_dict(),
                "nodes": [n.to_dict(factor, now) for n in ctx.topology.nodes.values()],
                "requests": [r.to_dict() for r in ctx.requests.values()],
                "economy": ctx.economy.to_dict(),
                "difficulty": {
                    **d.state.to_dict(),
                    "spawn_rate": round(self._spawn_rate(), 4),
                    "capacity_factor": factor,
                    "upkeep_multiplier": round(d.upkeep_multiplier, 4),
                },
                "upkeep_per_second": round(upkeep, 4),
            }

    def get_game_state(self) -> dict[str, Any]:
        return self.game_mode.get_state()

    def _publish(self, topic: str, data: dict) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(topic, data)
