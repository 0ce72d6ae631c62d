"""Versioned save schema, migration table and context (de)serialization.

The core never touches files.  ``dump_save`` turns a context into a plain
JSON-ready dict and ``load_save`` validates (and migrates) such a dict;
reading and writing it is the host's job.  In-flight requests are not
persisted.

Schema history
--------------
v1  three traffic types (WEB / API / FRAUD) and five services
    (waf, alb, compute, db, s3)::

        {"version": 1, "money", "reputation",
         "score": {"total", "web", "api", "fraudBlocked"},
         "trafficDistribution": {"WEB", "API", "FRAUD"},
         "services": [{"id", "type", "position": {"x", "y", "z"} | [x, z],
                       "tier"?, "connections": [...]}],
         "connections": [{"from", "to"}], "internetConnections": [...],
         "requestsProcessed"?, "currentRPS"?, "elapsed"?}

v2  six traffic types and nine node kinds (current, ``SaveGame`` below).

Migrations are pure dict -> dict steps run once at load time, in order,
until the current version is reached.  A version with no migration path
is an error, never silently skipped.
"""

from __future__ import annotations

from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .catalog import (
    DEFAULT_TRAFFIC_DISTRIBUTION,
    ENTRY_ID,
    SCORE_CATEGORIES,
    DisruptionKind,
    NodeKind,
    TrafficType,
)
from .context import SimulationContext
from .difficulty import ActiveEvent
from .traffic import normalize_distribution

CURRENT_VERSION = 2


class SaveFormatError(ValueError):
    """Save data is corrupt or has no migration path to the current schema."""


# ---------------------------------------------------------------------------
# Current schema (v2)
# ---------------------------------------------------------------------------

class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ServiceRecord(_Record):
    id: str
    kind: NodeKind
    position: tuple[float, float]
    tier: int = 0
    connections: list[str] = Field(default_factory=list)
    health: float = 100.0
    repairing: bool = False


class ConnectionRecord(_Record):
    src: str = Field(alias="from")
    dst: str = Field(alias="to")


class ScoreRecord(_Record):
    total: float = 0.0
    storage: float = 0.0
    database: float = 0.0
    security: float = 0.0


class ActiveEventRecord(_Record):
    kind: DisruptionKind
    end_time: float = Field(alias="endTime")
    node_id: str | None = Field(default=None, alias="nodeId")


class SaveGame(_Record):
    version: int = CURRENT_VERSION
    mode: str = "survival"
    money: float
    reputation: float
    score: ScoreRecord = Field(default_factory=ScoreRecord)
    traffic_distribution: dict[TrafficType, float] = Field(alias="trafficDistribution")
    services: list[ServiceRecord] = Field(default_factory=list)
    connections: list[ConnectionRecord] = Field(default_factory=list)
    entry_connections: list[str] = Field(default_factory=list, alias="entryConnections")
    elapsed_sim_seconds: float = Field(default=0.0, alias="elapsedSimSeconds")
    current_rps: float = Field(default=1.0, alias="currentRps")
    milestone_index: int = Field(default=0, alias="milestoneIndex")
    spike_timer: float = Field(default=0.0, alias="spikeTimer")
    shift_timer: float = Field(default=0.0, alias="shiftTimer")
    event_timer: float = Field(default=0.0, alias="eventTimer")
    active_event: ActiveEventRecord | None = Field(default=None, alias="activeEvent")
    requests_processed: int = Field(default=0, alias="requestsProcessed")
    next_node_seq: int = Field(default=1, alias="nextNodeSeq")


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------

class LegacyServiceV1(_Record):
    id: str
    type: str
    position: dict[str, float] | tuple[float, float]
    tier: int = 1
    connections: list[str] = Field(default_factory=list)


class LegacySaveV1(_Record):
    """The v1 shape, validated before it is transformed."""

    mode: str = Field(default="survival", alias="gameMode")
    money: float
    reputation: float
    score: dict[str, float] = Field(default_factory=dict)
    traffic_distribution: dict[str, float] = Field(default_factory=dict, alias="trafficDistribution")
    services: list[LegacyServiceV1] = Field(default_factory=list)
    connections: list[ConnectionRecord] = Field(default_factory=list)
    internet_connections: list[str] = Field(default_factory=list, alias="internetConnections")
    requests_processed: int = Field(default=0, alias="requestsProcessed")
    current_rps: float = Field(default=1.0, alias="currentRPS")
    elapsed: float = 0.0


_V1_KINDS = {
    "waf": NodeKind.FIREWALL.value,
    "alb": NodeKind.LOAD_BALANCER.value,
    "compute": NodeKind.COMPUTE.value,
    "db": NodeKind.DATABASE.value,
    "s3": NodeKind.OBJECT_STORE.value,
}

# Each legacy type's weight is split across its v2 successors.
_V1_TRAFFIC_SPLIT = {
    "WEB": {TrafficType.STATIC: 0.7, TrafficType.UPLOAD: 0.3},
    "API": {TrafficType.READ: 0.5, TrafficType.WRITE: 0.3, TrafficType.SEARCH: 0.2},
    "FRAUD": {TrafficType.MALICIOUS: 1.0},
}

_V1_ENTRY_ID = "internet"


def _v1_position(raw: dict[str, float] | tuple[float, float]) -> list[float]:
    if isinstance(raw, dict):
        return [raw.get("x", 0.0), raw.get("z", raw.get("y", 0.0))]
    return [raw[0], raw[1]]


def _migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    legacy = LegacySaveV1.model_validate(data)

    weights: dict[TrafficType, float] = {}
    for legacy_type, weight in legacy.traffic_distribution.items():
        split = _V1_TRAFFIC_SPLIT.get(legacy_type)
        if split is None:
            raise SaveFormatError(f"unknown v1 traffic type: {legacy_type}")
        for new_type, share in split.items():
            weights[new_type] = weights.get(new_type, 0.0) + weight * share
    distribution = normalize_distribution(weights) if weights else None

    services = []
    for svc in legacy.services:
        if svc.type not in _V1_KINDS:
            raise SaveFormatError(f"unknown v1 service type: {svc.type}")
        services.append({
            "id": svc.id,
            "kind": _V1_KINDS[svc.type],
            "position": _v1_position(svc.position),
            # v1 tiers were 1-based levels
            "tier": max(0, svc.tier - 1),
            "connections": list(svc.connections),
        })

    def _node(nid: str) -> str:
        return ENTRY_ID if nid == _V1_ENTRY_ID else nid

    connections = [
        {"from": _node(c.src), "to": _node(c.dst)}
        for c in legacy.connections
        if _node(c.src) != ENTRY_ID
    ]
    entry = list(legacy.internet_connections)
    entry += [
        c.dst for c in legacy.connections
        if c.src == _V1_ENTRY_ID and c.dst not in entry
    ]
    score = legacy.score

    out = {
        "version": 2,
        "mode": legacy.mode,
        "money": legacy.money,
        "reputation": legacy.reputation,
        "score": {
            "total": score.get("total", 0.0),
            "storage": score.get("web", 0.0),
            "database": score.get("api", 0.0),
            "security": score.get("fraudBlocked", 0.0),
        },
        "services": services,
        "connections": connections,
        "entryConnections": entry,
        "elapsedSimSeconds": legacy.elapsed,
        "currentRps": legacy.current_rps,
        "requestsProcessed": legacy.requests_processed,
    }
    if distribution is None:
        distribution = dict(DEFAULT_TRAFFIC_DISTRIBUTION)
    out["trafficDistribution"] = {t.value: w for t, w in distribution.items()}
    return out


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1_to_v2,
}


def detect_version(data: dict[str, Any]) -> int:
    version = data.get("version")
    if version is None:
        # Pre-versioned saves are the legacy three-type shape.
        score = data.get("score")
        if isinstance(score, dict) and "fraudBlocked" in score:
            return 1
        raise SaveFormatError("save has no version and an unrecognised shape")
    if not isinstance(version, int):
        raise SaveFormatError(f"invalid save version: {version!r}")
    return version


def migrate(data: dict[str, Any]) -> dict[str, Any]:
    """Upgrade ``data`` to CURRENT_VERSION.  Pure; the input is not modified."""
    version = detect_version(data)
    if version > CURRENT_VERSION:
        raise SaveFormatError(f"save version {version} is newer than {CURRENT_VERSION}")
    current = dict(data)
    while version < CURRENT_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise SaveFormatError(f"no migration from save version {version}")
        try:
            current = step(current)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise SaveFormatError(f"migration from v{version} failed: {e}") from e
        logger.info(f"Migrated save v{version} -> v{version + 1}")
        version += 1
    return current


def load_save(data: dict[str, Any]) -> SaveGame:
    """Validate and migrate raw save data.  Raises SaveFormatError."""
    if not isinstance(data, dict):
        raise SaveFormatError("save data must be a mapping")
    migrated = migrate(data)
    try:
        save = SaveGame.model_validate(migrated)
    except ValidationError as e:
        raise SaveFormatError(f"invalid save data: {e.error_count()} error(s)") from e
    try:
        normalize_distribution(save.traffic_distribution)
    except ValueError as e:
        raise SaveFormatError(str(e)) from e
    return save


# ---------------------------------------------------------------------------
# Context <-> save
# ---------------------------------------------------------------------------

def dump_save(ctx: SimulationContext, mode: str = "survival") -> dict[str, Any]:
    """Serialize ``ctx`` (minus in-flight requests) to a v2 save dict."""
    d = ctx.difficulty.state
    # Persist the underlying mix, not a temporary shift/spike override.
    distribution = (
        d.traffic_shift.saved_distribution
        or d.malicious_spike.saved_distribution
        or d.traffic_distribution
    )
    econ = ctx.economy
    topo = ctx.topology
    save = SaveGame(
        version=CURRENT_VERSION,
        mode=mode,
        money=econ.money,
        reputation=econ.reputation,
        score=ScoreRecord(total=econ.score.total, **{
            c: econ.score.by_category.get(c, 0.0) for c in SCORE_CATEGORIES
        }),
        traffic_distribution=dict(distribution),
        services=[
            ServiceRecord(
                id=n.node_id, kind=n.kind, position=n.position, tier=n.tier,
                connections=list(n.outgoing), health=n.health,
                repairing=n.repairing,
            )
            for n in topo.nodes.values()
        ],
        connections=[
            ConnectionRecord(src=c.src, dst=c.dst)
            for c in topo.connections if c.src != ENTRY_ID
        ],
        entry_connections=list(topo.entry.outgoing),
        elapsed_sim_seconds=d.elapsed,
        current_rps=d.current_rps,
        milestone_index=d.milestone_index,
        spike_timer=d.malicious_spike.timer,
        shift_timer=d.traffic_shift.timer,
        event_timer=d.event_timer,
        active_event=ActiveEventRecord(
            kind=d.active_event.kind, end_time=d.active_event.end_time,
            node_id=d.active_event.node_id,
        ) if d.active_event else None,
        requests_processed=econ.requests_processed,
        next_node_seq=topo.next_seq,
    )
    return save.model_dump(mode="json", by_alias=True)


def context_from_save(save: SaveGame, **context_kwargs: Any) -> SimulationContext:
    """Build a fresh context from a validated save.

    The caller's live context is never touched; on any inconsistency this
    raises SaveFormatError and the new context is simply discarded.
    """
    ctx = SimulationContext(money=save.money, **context_kwargs)
    econ = ctx.economy
    econ.reputation = save.reputation
    econ.score.total = save.score.total
    for category in SCORE_CATEGORIES:
        econ.score.by_category[category] = getattr(save.score, category)
    econ.requests_processed = save.requests_processed

    topo = ctx.topology
    for svc in save.services:
        result = topo.add_node(svc.kind, svc.position, node_id=svc.id, tier=svc.tier)
        if not result.ok:
            raise SaveFormatError(f"cannot restore node {svc.id}: {result.reason.value}")
        node = topo.nodes[svc.id]
        node.health = svc.health
        node.repairing = svc.repairing

    edges: list[tuple[str, str]] = [(ENTRY_ID, nid) for nid in save.entry_connections]
    edges += [(c.src, c.dst) for c in save.connections]
    edges += [(svc.id, dst) for svc in save.services for dst in svc.connections]
    for src, dst in edges:
        if topo.has_connection(src, dst):
            continue
        result = topo.add_connection(src, dst)
        if not result.ok:
            raise SaveFormatError(
                f"cannot restore connection {src} -> {dst}: {result.reason.value}"
            )
    topo.restore_seq(save.next_node_seq)

    d = ctx.difficulty.state
    d.elapsed = save.elapsed_sim_seconds
    d.current_rps = save.current_rps
    d.traffic_distribution = normalize_distribution(save.traffic_distribution)
    d.milestone_index = save.milestone_index
    d.malicious_spike.timer = save.spike_timer
    d.traffic_shift.timer = save.shift_timer
    d.event_timer = save.event_timer
    if save.active_event is not None:
        ev = save.active_event
        d.active_event = ActiveEvent(kind=ev.kind, end_time=ev.end_time, node_id=ev.node_id)
        if ev.kind == DisruptionKind.SERVICE_OUTAGE and ev.node_id in topo.nodes:
            topo.nodes[ev.node_id].disabled_until = ev.end_time
    return ctx
