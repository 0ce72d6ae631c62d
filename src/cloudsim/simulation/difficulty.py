"""DifficultyController: spawn-rate ramp, traffic mix shifts, spikes, disruptions.

Everything here is a function of elapsed *simulated* time; nothing reads
the wall clock.  Effects are exposed as multipliers and overrides that
other components consume on every tick:

  spawn_multiplier   TrafficGenerator rate (traffic burst: x3)
  capacity_factor    ServiceNode effective capacity (capacity drop: x0.5)
  upkeep_multiplier  economy upkeep (time scaling x cost spike x2)
  traffic_distribution  TrafficGenerator type mix (shifts and spikes)

Because the base values are never overwritten, ending an effect reverts
exactly what it changed.  The only direct mutation is the service-outage
event, which sets and later clears ``disabled_until`` on one node.

Sub-systems:

  Ramp        target = base + log(1 + t/20) * k1 + t * k2, times the
              multiplier of the last milestone crossed, capped; the
              current rate approaches the target exponentially per tick.
  Milestones  monotonic index; each fires a one-shot warning when first
              crossed and never again.
  Shifts      every ``shift_interval`` swap the mix to a random preset for
              ``shift_duration`` then restore the saved mix.
  Spikes      cycle of ``spike_interval``; warning at interval - lead;
              spike at cycle start raises the MALICIOUS weight and shrinks
              the rest proportionally; suppressed while a shift is active.
  Disruptions every ``event_check_interval`` (after a grace period) start
              one random event with ``event_probability``; at most one is
              active at a time.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from .catalog import (
    DEFAULT_TRAFFIC_DISTRIBUTION,
    DISRUPTION_SPECS,
    TRAFFIC_SHIFT_PRESETS,
    DifficultyParams,
    DisruptionKind,
    NodeKind,
    TrafficType,
)
from .traffic import normalize_distribution

if TYPE_CHECKING:
    from .context import SimulationContext


@dataclass
class ActiveEvent:
    kind: DisruptionKind
    end_time: float
    node_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "end_time": self.end_time, "node_id": self.node_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActiveEvent:
        return cls(
            kind=DisruptionKind(data["kind"]),
            end_time=float(data["end_time"]),
            node_id=data.get("node_id"),
        )


@dataclass
class MaliciousSpike:
    timer: float = 0.0
    active: bool = False
    warned: bool = False
    remaining: float = 0.0
    saved_distribution: dict[TrafficType, float] | None = None


@dataclass
class TrafficShift:
    timer: float = 0.0
    active: bool = False
    remaining: float = 0.0
    preset: str | None = None
    saved_distribution: dict[TrafficType, float] | None = None


@dataclass
class DifficultyState:
    elapsed: float = 0.0
    current_rps: float = 1.0
    traffic_distribution: dict[TrafficType, float] = field(
        default_factory=lambda: dict(DEFAULT_TRAFFIC_DISTRIBUTION)
    )
    active_event: ActiveEvent | None = None
    malicious_spike: MaliciousSpike = field(default_factory=MaliciousSpike)
    traffic_shift: TrafficShift = field(default_factory=TrafficShift)
    milestone_index: int = 0
    event_timer: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "elapsed": round(self.elapsed, 3),
            "current_rps": round(self.current_rps, 4),
            "traffic_distribution": {
                t.value: round(w, 6) for t, w in self.traffic_distribution.items()
            },
            "active_event": self.active_event.to_dict() if self.active_event else None,
            "malicious_spike": {
                "timer": round(self.malicious_spike.timer, 3),
                "active": self.malicious_spike.active,
            },
            "traffic_shift": {
                "timer": round(self.traffic_shift.timer, 3),
                "active": self.traffic_shift.active,
                "preset": self.traffic_shift.preset,
            },
            "milestone_index": self.milestone_index,
        }


class DifficultyController:
    """Advances difficulty state by simulated dt."""

    def __init__(
        self,
        rng: random.Random,
        params: DifficultyParams | None = None,
        state: DifficultyState | None = None,
    ) -> None:
        self._rng = rng
        self.params = params or DifficultyParams()
        self.state = state or DifficultyState(current_rps=self.params.base_rps)

    # -- Consumed multipliers ---------------------------------------------

    def _event_is(self, kind: DisruptionKind) -> bool:
        ev = self.state.active_event
        return ev is not None and ev.kind == kind

    @property
    def spawn_multiplier(self) -> float:
        if self._event_is(DisruptionKind.TRAFFIC_BURST):
            return DISRUPTION_SPECS[DisruptionKind.TRAFFIC_BURST].factor
        return 1.0

    @property
    def capacity_factor(self) -> float:
        if self._event_is(DisruptionKind.CAPACITY_DROP):
            return DISRUPTION_SPECS[DisruptionKind.CAPACITY_DROP].factor
        return 1.0

    @property
    def cost_multiplier(self) -> float:
        if self._event_is(DisruptionKind.COST_SPIKE):
            return DISRUPTION_SPECS[DisruptionKind.COST_SPIKE].factor
        return 1.0

    @property
    def upkeep_time_scale(self) -> float:
        p = self.params
        return min(p.upkeep_max_multiplier, 1.0 + self.state.elapsed / p.upkeep_ramp_seconds)

    @property
    def upkeep_multiplier(self) -> float:
        return self.upkeep_time_scale * self.cost_multiplier

    @property
    def spawn_rate(self) -> float:
        return self.state.current_rps * self.spawn_multiplier

    def target_rps(self) -> float:
        p = self.params
        t = self.state.elapsed
        target = p.base_rps + math.log(1 + t / 20.0) * p.log_factor + t * p.linear_factor
        if self.state.milestone_index > 0:
            target *= p.milestones[self.state.milestone_index - 1].rps_multiplier
        return min(target, p.max_rps)

    # -- Tick ---------------------------------------------------------------

    def tick(self, dt: float, ctx: SimulationContext) -> None:
        self.state.elapsed += dt
        self._tick_milestones(ctx)
        self._tick_ramp()
        self._tick_shift(dt, ctx)
        self._tick_spike(dt, ctx)
        self._tick_events(dt, ctx)

    def advance_clock(self, dt: float) -> None:
        """Advance elapsed time only (sandbox: no automation)."""
        self.state.elapsed += dt

    def _tick_ramp(self) -> None:
        s = self.state
        s.current_rps += (self.target_rps() - s.current_rps) * self.params.smoothing
        s.current_rps = min(s.current_rps, self.params.max_rps)

    def _tick_milestones(self, ctx: SimulationContext) -> None:
        s = self.state
        milestones = self.params.milestones
        while s.milestone_index < len(milestones) and s.elapsed >= milestones[s.milestone_index].at_seconds:
            m = milestones[s.milestone_index]
            s.milestone_index += 1
            logger.info(f"Milestone {s.milestone_index} at {s.elapsed:.0f}s: {m.message}")
            ctx.publish("milestone_reached", {
                "index": s.milestone_index,
                "at_seconds": m.at_seconds,
                "multiplier": m.rps_multiplier,
                "message": m.message,
            })

    def _tick_shift(self, dt: float, ctx: SimulationContext) -> None:
        s = self.state
        shift = s.traffic_shift
        if shift.active:
            shift.remaining -= dt
            if shift.remaining <= 0:
                self._end_shift(ctx)
            return
        shift.timer += dt
        if shift.timer < self.params.shift_interval or s.malicious_spike.active:
            return
        shift.timer = 0.0
        preset = self._rng.choice(sorted(TRAFFIC_SHIFT_PRESETS))
        if shift.saved_distribution is None:
            shift.saved_distribution = dict(s.traffic_distribution)
        s.traffic_distribution = normalize_distribution(TRAFFIC_SHIFT_PRESETS[preset])
        shift.active = True
        shift.preset = preset
        shift.remaining = self.params.shift_duration
        logger.info(f"Traffic shift started: {preset}")
        ctx.publish("traffic_shift_started", {
            "preset": preset, "duration": self.params.shift_duration,
        })

    def _end_shift(self, ctx: SimulationContext) -> None:
        shift = self.state.traffic_shift
        if shift.saved_distribution is not None:
            self.state.traffic_distribution = shift.saved_distribution
        logger.info(f"Traffic shift ended: {shift.preset}")
        ctx.publish("traffic_shift_ended", {"preset": shift.preset})
        shift.saved_distribution = None
        shift.active = False
        shift.preset = None
        shift.remaining = 0.0

    def _tick_spike(self, dt: float, ctx: SimulationContext) -> None:
        p = self.params
        spike = self.state.malicious_spike
        if spike.active:
            spike.remaining -= dt
            if spike.remaining <= 0:
                self._end_spike(ctx)

        spike.timer += dt
        if not spike.warned and spike.timer >= p.spike_interval - p.spike_warning_lead:
            spike.warned = True
            ctx.publish("spike_warning", {
                "seconds_until": round(max(0.0, p.spike_interval - spike.timer), 2),
            })
        if spike.timer < p.spike_interval:
            return
        spike.timer -= p.spike_interval
        spike.warned = False
        if self.state.traffic_shift.active:
            logger.info("Malicious spike suppressed: traffic shift in progress")
            return
        if not spike.active:
            self._start_spike(ctx)

    def _start_spike(self, ctx: SimulationContext) -> None:
        s = self.state
        spike = s.malicious_spike
        spike.saved_distribution = dict(s.traffic_distribution)
        s.traffic_distribution = boost_malicious(
            s.traffic_distribution, self.params.spike_malicious_weight,
        )
        spike.active = True
        spike.remaining = self.params.spike_duration
        logger.info("Malicious traffic spike started")
        ctx.publish("spike_started", {
            "duration": self.params.spike_duration,
            "malicious_weight": s.traffic_distribution[TrafficType.MALICIOUS],
        })

    def _end_spike(self, ctx: SimulationContext) -> None:
        spike = self.state.malicious_spike
        if spike.saved_distribution is not None:
            self.state.traffic_distribution = spike.saved_distribution
        spike.saved_distribution = None
        spike.active = False
        spike.remaining = 0.0
        logger.info("Malicious traffic spike ended")
        ctx.publish("spike_ended", {})

    def _tick_events(self, dt: float, ctx: SimulationContext) -> None:
        p = self.params
        s = self.state
        if s.active_event is not None and s.elapsed >= s.active_event.end_time:
            self.end_event(ctx)

        if s.elapsed < p.event_grace:
            return
        s.event_timer += dt
        if s.event_timer < p.event_check_interval:
            return
        s.event_timer -= p.event_check_interval
        if s.active_event is not None:
            return
        if self._rng.random() < p.event_probability:
            kind = self._rng.choice(list(DisruptionKind))
            self.start_event(kind, ctx)

    def start_event(self, kind: DisruptionKind, ctx: SimulationContext) -> bool:
        """Start a disruption event.  Returns False if one cannot start."""
        s = self.state
        if s.active_event is not None:
            return False
        end_time = s.elapsed + self.params.event_duration
        node_id = None
        if kind == DisruptionKind.SERVICE_OUTAGE:
            candidates = sorted(
                nid for nid, n in ctx.topology.nodes.items()
                if n.kind != NodeKind.FIREWALL
            )
            if not candidates:
                return False
            node_id = self._rng.choice(candidates)
            ctx.topology.nodes[node_id].disabled_until = end_time
        s.active_event = ActiveEvent(kind=kind, end_time=end_time, node_id=node_id)
        spec = DISRUPTION_SPECS[kind]
        logger.info(f"Disruption started: {spec.name} until t={end_time:.0f}s")
        ctx.publish("disruption_started", {
            "kind": kind.value, "name": spec.name,
            "duration": self.params.event_duration, "node_id": node_id,
        })
        return True

    def end_event(self, ctx: SimulationContext) -> None:
        ev = self.state.active_event
        if ev is None:
            return
        if ev.kind == DisruptionKind.SERVICE_OUTAGE and ev.node_id is not None:
            node = ctx.topology.nodes.get(ev.node_id)
            if node is not None:
                node.disabled_until = None
        self.state.active_event = None
        logger.info(f"Disruption ended: {DISRUPTION_SPECS[ev.kind].name}")
        ctx.publish("disruption_ended", {"kind": ev.kind.value, "node_id": ev.node_id})

    # -- Direct overrides (sandbox) ---------------------------------------

    def set_distribution(self, weights: dict[TrafficType, float]) -> None:
        self.state.traffic_distribution = normalize_distribution(weights)

    def set_rate(self, rps: float) -> None:
        self.state.current_rps = rps


def boost_malicious(
    distribution: dict[TrafficType, float], weight: float,
) -> dict[TrafficType, float]:
    """Raise MALICIOUS to ``weight`` and shrink the other types proportionally."""
    current = distribution.get(TrafficType.MALICIOUS, 0.0)
    if weight <= current:
        return dict(distribution)
    others = {t: w for t, w in distribution.items() if t != TrafficType.MALICIOUS}
    others_total = sum(others.values())
    result: dict[TrafficType, float] = {}
    for t in TrafficType:
        if t == TrafficType.MALICIOUS:
            result[t] = weight
        elif others_total > 0:
            result[t] = others.get(t, 0.0) * (1.0 - weight) / others_total
        else:
            result[t] = (1.0 - weight) / (len(TrafficType) - 1)
    return result
