"""Config catalog: static tables for node kinds, traffic, scoring and difficulty.

Everything in this module is pure data.  Behaviour that consumes these
tables lives in the component modules (service, router, economy,
difficulty); adding a node kind or traffic type means adding one entry
here plus one behaviour entry in ``service.KIND_BEHAVIOURS``.

Tier convention:
  tier 0 is the base configuration (``NodeSpec.base_capacity``).  Tier N
  (N >= 1) is ``NodeSpec.tiers[N - 1]``.  A node can therefore be at any
  tier in ``[0, len(tiers)]``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class NodeKind(str, Enum):
    """Node kinds in the topology.  ENTRY is the singleton ingress."""

    ENTRY = "entry"
    FIREWALL = "firewall"
    LOAD_BALANCER = "load_balancer"
    QUEUE_BUFFER = "queue_buffer"
    COMPUTE = "compute"
    CACHE = "cache"
    DATABASE = "database"
    OBJECT_STORE = "object_store"
    CDN = "cdn"


class TrafficType(str, Enum):
    """Request types in the current (v2) traffic schema."""

    STATIC = "STATIC"
    READ = "READ"
    WRITE = "WRITE"
    UPLOAD = "UPLOAD"
    SEARCH = "SEARCH"
    MALICIOUS = "MALICIOUS"


@dataclass(frozen=True)
class Tier:
    """One purchasable capacity upgrade."""

    capacity: int
    upgrade_cost: float


@dataclass(frozen=True)
class NodeSpec:
    """Catalog entry for a placeable node kind."""

    name: str
    cost: float
    base_capacity: int
    base_processing_ms: float
    upkeep_per_minute: float
    tiers: tuple[Tier, ...] = ()

    @property
    def max_tier(self) -> int:
        return len(self.tiers)

    def capacity_at(self, tier: int) -> int:
        if tier <= 0:
            return self.base_capacity
        return self.tiers[min(tier, self.max_tier) - 1].capacity

    def upgrade_cost_from(self, tier: int) -> float | None:
        """Cost to go from ``tier`` to ``tier + 1``, or None at max tier."""
        if tier >= self.max_tier:
            return None
        return self.tiers[tier].upgrade_cost


@dataclass(frozen=True)
class TrafficSpec:
    """Catalog entry for a traffic type."""

    reward: float
    score: int
    sinks: frozenset[NodeKind]
    category: str  # scoreboard bucket: storage, database, security
    cacheable: bool = False


@dataclass(frozen=True)
class ScoringTable:
    """Reward/penalty constants applied by the economy ledger.

    One canonical table.  Earlier revisions of the game disagreed on the
    generic failure penalty; the newest one removed it, so it is 0 here.
    """

    fail_reputation: float = 0.0
    malicious_passed_reputation: float = -10.0
    malicious_blocked_score: int = 25
    malicious_blocked_reward: float = 0.5
    completed_reputation: float = 0.1
    cache_bonus: float = 0.5


# ---------------------------------------------------------------------------
# Node catalog
# ---------------------------------------------------------------------------

NODE_SPECS: dict[NodeKind, NodeSpec] = {
    NodeKind.FIREWALL: NodeSpec(
        "WAF Firewall", cost=50, base_capacity=100, base_processing_ms=20,
        upkeep_per_minute=5,
    ),
    NodeKind.LOAD_BALANCER: NodeSpec(
        "Load Balancer", cost=50, base_capacity=50, base_processing_ms=50,
        upkeep_per_minute=8,
    ),
    NodeKind.QUEUE_BUFFER: NodeSpec(
        "Message Queue", cost=40, base_capacity=200, base_processing_ms=100,
        upkeep_per_minute=4,
    ),
    NodeKind.COMPUTE: NodeSpec(
        "Compute Instance", cost=100, base_capacity=5, base_processing_ms=600,
        upkeep_per_minute=15,
        tiers=(Tier(capacity=15, upgrade_cost=200), Tier(capacity=25, upgrade_cost=250)),
    ),
    NodeKind.CACHE: NodeSpec(
        "Cache Cluster", cost=75, base_capacity=30, base_processing_ms=50,
        upkeep_per_minute=10,
        tiers=(Tier(capacity=60, upgrade_cost=150),),
    ),
    NodeKind.DATABASE: NodeSpec(
        "Relational Database", cost=200, base_capacity=10, base_processing_ms=300,
        upkeep_per_minute=30,
        tiers=(Tier(capacity=30, upgrade_cost=400), Tier(capacity=50, upgrade_cost=600)),
    ),
    NodeKind.OBJECT_STORE: NodeSpec(
        "Object Storage", cost=25, base_capacity=100, base_processing_ms=200,
        upkeep_per_minute=5,
    ),
    NodeKind.CDN: NodeSpec(
        "CDN Edge", cost=60, base_capacity=80, base_processing_ms=30,
        upkeep_per_minute=8,
    ),
}

# Directed: key may connect to any kind in its value set.
VALID_CONNECTIONS: dict[NodeKind, frozenset[NodeKind]] = {
    NodeKind.ENTRY: frozenset({NodeKind.FIREWALL, NodeKind.LOAD_BALANCER, NodeKind.CDN}),
    NodeKind.FIREWALL: frozenset({NodeKind.LOAD_BALANCER, NodeKind.QUEUE_BUFFER}),
    NodeKind.QUEUE_BUFFER: frozenset({NodeKind.LOAD_BALANCER, NodeKind.COMPUTE}),
    NodeKind.LOAD_BALANCER: frozenset({NodeKind.QUEUE_BUFFER, NodeKind.COMPUTE}),
    NodeKind.COMPUTE: frozenset({NodeKind.CACHE, NodeKind.DATABASE, NodeKind.OBJECT_STORE}),
    NodeKind.CACHE: frozenset({NodeKind.DATABASE, NodeKind.OBJECT_STORE}),
    NodeKind.CDN: frozenset({NodeKind.OBJECT_STORE}),
}


def is_valid_connection(src: NodeKind, dst: NodeKind) -> bool:
    return dst in VALID_CONNECTIONS.get(src, frozenset())


# ---------------------------------------------------------------------------
# Traffic catalog
# ---------------------------------------------------------------------------

TRAFFIC_SPECS: dict[TrafficType, TrafficSpec] = {
    TrafficType.STATIC: TrafficSpec(
        reward=1.0, score=3,
        sinks=frozenset({NodeKind.CDN, NodeKind.OBJECT_STORE}),
        category="storage", cacheable=True,
    ),
    TrafficType.READ: TrafficSpec(
        reward=1.5, score=5, sinks=frozenset({NodeKind.DATABASE}),
        category="database", cacheable=True,
    ),
    TrafficType.WRITE: TrafficSpec(
        reward=2.0, score=8, sinks=frozenset({NodeKind.DATABASE}),
        category="database",
    ),
    TrafficType.UPLOAD: TrafficSpec(
        reward=2.5, score=8, sinks=frozenset({NodeKind.OBJECT_STORE}),
        category="storage",
    ),
    TrafficType.SEARCH: TrafficSpec(
        reward=2.0, score=6, sinks=frozenset({NodeKind.DATABASE}),
        category="database", cacheable=True,
    ),
    # No sink: the only non-failing outcome is a firewall block.
    TrafficType.MALICIOUS: TrafficSpec(
        reward=0.0, score=0, sinks=frozenset(), category="security",
    ),
}

SCORE_CATEGORIES = ("storage", "database", "security")

DEFAULT_TRAFFIC_DISTRIBUTION: dict[TrafficType, float] = {
    TrafficType.STATIC: 0.30,
    TrafficType.READ: 0.25,
    TrafficType.WRITE: 0.15,
    TrafficType.UPLOAD: 0.10,
    TrafficType.SEARCH: 0.10,
    TrafficType.MALICIOUS: 0.10,
}

# Alternate mixes used by traffic shifts.
TRAFFIC_SHIFT_PRESETS: dict[str, dict[TrafficType, float]] = {
    "read_heavy": {
        TrafficType.STATIC: 0.15, TrafficType.READ: 0.45, TrafficType.WRITE: 0.10,
        TrafficType.UPLOAD: 0.05, TrafficType.SEARCH: 0.20, TrafficType.MALICIOUS: 0.05,
    },
    "write_heavy": {
        TrafficType.STATIC: 0.10, TrafficType.READ: 0.15, TrafficType.WRITE: 0.45,
        TrafficType.UPLOAD: 0.15, TrafficType.SEARCH: 0.05, TrafficType.MALICIOUS: 0.10,
    },
    "media_surge": {
        TrafficType.STATIC: 0.45, TrafficType.READ: 0.10, TrafficType.WRITE: 0.05,
        TrafficType.UPLOAD: 0.30, TrafficType.SEARCH: 0.05, TrafficType.MALICIOUS: 0.05,
    },
}


# ---------------------------------------------------------------------------
# Difficulty and disruption events
# ---------------------------------------------------------------------------

class DisruptionKind(str, Enum):
    COST_SPIKE = "cost_spike"
    CAPACITY_DROP = "capacity_drop"
    TRAFFIC_BURST = "traffic_burst"
    SERVICE_OUTAGE = "service_outage"


@dataclass(frozen=True)
class DisruptionSpec:
    name: str
    factor: float = 1.0


DISRUPTION_SPECS: dict[DisruptionKind, DisruptionSpec] = {
    DisruptionKind.COST_SPIKE: DisruptionSpec("Cloud cost spike", factor=2.0),
    DisruptionKind.CAPACITY_DROP: DisruptionSpec("Capacity degradation", factor=0.5),
    DisruptionKind.TRAFFIC_BURST: DisruptionSpec("Traffic burst", factor=3.0),
    DisruptionKind.SERVICE_OUTAGE: DisruptionSpec("Service outage"),
}


@dataclass(frozen=True)
class Milestone:
    at_seconds: float
    rps_multiplier: float
    message: str


@dataclass(frozen=True)
class DifficultyParams:
    """Tunables for the difficulty controller (all times in sim seconds)."""

    base_rps: float = 1.0
    log_factor: float = 0.8       # k1
    linear_factor: float = 0.01   # k2
    smoothing: float = 0.05       # per-tick exponential approach
    max_rps: float = 25.0
    milestones: tuple[Milestone, ...] = (
        Milestone(60.0, 1.10, "Traffic is picking up"),
        Milestone(180.0, 1.25, "Peak hours approaching"),
        Milestone(300.0, 1.50, "Viral launch: traffic surging"),
        Milestone(600.0, 2.00, "Global scale: brace for impact"),
    )
    shift_interval: float = 90.0
    shift_duration: float = 20.0
    spike_interval: float = 120.0
    spike_warning_lead: float = 10.0
    spike_duration: float = 15.0
    spike_malicious_weight: float = 0.4
    event_check_interval: float = 30.0
    event_grace: float = 60.0
    event_probability: float = 0.25
    event_duration: float = 20.0
    upkeep_ramp_seconds: float = 1200.0
    upkeep_max_multiplier: float = 2.0


# ---------------------------------------------------------------------------
# Simulation constants
# ---------------------------------------------------------------------------

QUEUE_LIMIT = 20

ENTRY_ID = "entry"
ENTRY_POSITION: tuple[float, float] = (-40.0, 0.0)

GRID_TILE = 4.0
MIN_NODE_SPACING = 1.0

# Hops per second; a hop therefore takes 0.5s of sim time.
TRANSIT_SPEED = 2.0

# Terminal requests linger this long (sim seconds) before removal.
TERMINAL_GRACE = 0.5

CACHE_HIT_RATE = 0.35

START_REPUTATION = 100.0
MAX_REPUTATION = 100.0
BANKRUPTCY_THRESHOLD = -1000.0

# Degradation subsystem
CRITICAL_HEALTH = 30.0
HEALTH_DAMAGE = 5.0
REPAIR_COST_FRACTION = 0.25
REPAIR_RATE = 20.0  # health per second

# Load bands exposed in snapshots: (threshold, band), first match wins.
LOAD_BANDS: tuple[tuple[float, str], ...] = (
    (0.8, "critical"),
    (0.5, "warning"),
    (0.2, "busy"),
)

TIME_SCALES = (0.0, 1.0, 3.0)


@dataclass
class SandboxSettings:
    """Player-tunable values for sandbox mode."""

    budget: float = 2000.0
    spawn_rate: float = 1.0
    burst_count: int = 10
    upkeep_enabled: bool = False
    traffic_distribution: dict[TrafficType, float] = field(
        default_factory=lambda: dict(DEFAULT_TRAFFIC_DISTRIBUTION)
    )
