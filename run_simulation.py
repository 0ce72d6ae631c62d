#!/usr/bin/env python3
"""Run a headless simulation and report how a topology holds up.

Usage:
    python3 run_simulation.py [--mode survival|sandbox] [--preset starter]
                              [--seconds 300] [--seed 7] [--save]

Builds a preset topology, ticks the engine with a fixed dt and prints a
summary of money, reputation, score and failure reasons.  ``--save``
prints the resulting save document as JSON instead.
"""

import argparse
import json
import sys
from pathlib import Path

from loguru import logger

# Ensure src/ is on path when run from a checkout
sys.path.insert(0, str(Path(__file__).parent / "src"))

from cloudsim.comms.event_bus import EventBus
from cloudsim.config import settings
from cloudsim.simulation import NodeKind, SimulationEngine


# Each preset: (label, kind, position) nodes, then (from, to) links by label.
PRESETS = {
    "empty": ([], []),
    "starter": (
        [
            ("fw", NodeKind.FIREWALL, (-28, 0)),
            ("lb", NodeKind.LOAD_BALANCER, (-16, 0)),
            ("app", NodeKind.COMPUTE, (-4, 0)),
            ("db", NodeKind.DATABASE, (8, 0)),
            ("s3", NodeKind.OBJECT_STORE, (8, 8)),
        ],
        [
            ("entry", "fw"), ("fw", "lb"), ("lb", "app"),
            ("app", "db"), ("app", "s3"),
        ],
    ),
    "scaled": (
        [
            ("cdn", NodeKind.CDN, (-28, 12)),
            ("fw", NodeKind.FIREWALL, (-28, 0)),
            ("lb", NodeKind.LOAD_BALANCER, (-16, 0)),
            ("app1", NodeKind.COMPUTE, (-4, -4)),
            ("app2", NodeKind.COMPUTE, (-4, 4)),
            ("cache", NodeKind.CACHE, (8, -4)),
            ("db", NodeKind.DATABASE, (20, 0)),
            ("s3", NodeKind.OBJECT_STORE, (8, 12)),
        ],
        [
            ("entry", "cdn"), ("entry", "fw"), ("cdn", "s3"),
            ("fw", "lb"), ("lb", "app1"), ("lb", "app2"),
            ("app1", "cache"), ("app2", "cache"), ("cache", "db"),
            ("app1", "db"), ("app2", "db"), ("app1", "s3"), ("app2", "s3"),
        ],
    ),
}


def build(engine: SimulationEngine, preset: str) -> None:
    nodes, links = PRESETS[preset]
    ids = {"entry": engine.ctx.topology.entry.node_id}
    for label, kind, pos in nodes:
        result = engine.place_node(kind, pos)
        if not result.ok:
            raise SystemExit(f"cannot place {label}: {result.reason.value}")
        ids[label] = result.node_id
    for src, dst in links:
        result = engine.connect(ids[src], ids[dst])
        if not result.ok:
            raise SystemExit(f"cannot connect {src} -> {dst}: {result.reason.value}")


def print_summary(engine: SimulationEngine, cues: dict) -> None:
    snap = engine.snapshot()
    econ = snap["economy"]
    fin = econ["finances"]
    print(f"\n{'='*60}")
    print(f"  {snap['game']['mode'].upper()}  t={snap['time']:.1f}s  state={snap['game']['state']}")
    print(f"{'='*60}")
    print(f"  Money:       ${econ['money']:.2f}")
    print(f"  Reputation:  {econ['reputation']:.1f}")
    score = econ["score"]
    print(f"  Score:       {score['total']:.1f} (storage {score['storage']:.0f}, "
          f"database {score['database']:.0f}, security {score['security']:.0f})")
    print(f"  Processed:   {econ['requests_processed']}")
    print(f"  Spawn rate:  {snap['difficulty']['spawn_rate']:.2f} rps")
    print(f"  Upkeep:      ${snap['upkeep_per_second']:.3f}/s")

    if fin["failures_by_reason"]:
        print(f"\n  --- Failures ---")
        for reason, count in sorted(fin["failures_by_reason"].items(), key=lambda kv: -kv[1]):
            print(f"  {reason:20s} {count}")

    print(f"\n  --- Nodes ---")
    for n in snap["nodes"]:
        print(f"  {n['node_id']:8s} {n['kind']:14s} tier={n['tier']} "
              f"load={n['load']:.2f} ({n['load_band']}) health={n['health']:.0f}")

    if cues:
        print(f"\n  --- Events ---")
        for topic, count in sorted(cues.items()):
            print(f"  {topic:24s} {count}")


def main():
    parser = argparse.ArgumentParser(description="Headless cloud traffic simulation")
    parser.add_argument("--mode", choices=("survival", "sandbox"), default=settings.default_mode)
    parser.add_argument("--preset", choices=sorted(PRESETS), default="starter")
    parser.add_argument("--seconds", type=float, default=300.0, help="Simulated seconds")
    parser.add_argument("--dt", type=float, default=0.05, help="Fixed tick dt")
    parser.add_argument("--seed", type=int, default=settings.seed)
    parser.add_argument("--rps", type=float, default=None, help="Sandbox spawn rate")
    parser.add_argument("--save", action="store_true", help="Print the save document as JSON")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    bus = EventBus()
    cues_q = bus.subscribe()
    engine = SimulationEngine(event_bus=bus, mode=args.mode, seed=args.seed)
    build(engine, args.preset)
    if args.rps is not None:
        result = engine.set_spawn_rate(args.rps)
        if not result.ok:
            raise SystemExit(f"--rps rejected: {result.reason.value}")

    cues: dict[str, int] = {}
    elapsed = 0.0
    while elapsed < args.seconds and engine.running:
        engine.tick(args.dt)
        elapsed += args.dt
        while not cues_q.empty():
            msg = cues_q.get_nowait()
            cues[msg["type"]] = cues.get(msg["type"], 0) + 1

    if args.save:
        print(json.dumps(engine.save(), indent=2))
    else:
        print_summary(engine, cues)


if __name__ == "__main__":
    main()
