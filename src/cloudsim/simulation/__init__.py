"""Simulation subsystem: topology, traffic, routing, economy, difficulty, saves."""
from .catalog import (
    NODE_SPECS,
    TRAFFIC_SPECS,
    DifficultyParams,
    DisruptionKind,
    NodeKind,
    NodeSpec,
    SandboxSettings,
    ScoringTable,
    Tier,
    TrafficSpec,
    TrafficType,
)
from .clock import SimulationClock
from .context import SimulationContext
from .degradation import DegradationSystem
from .difficulty import DifficultyController, DifficultyState
from .economy import EconomyLedger, EconomyState, Outcome, OutcomeEvent
from .engine import SimulationEngine
from .game_mode import GameMode
from .request import FailureReason, RequestEntity, RequestState
from .router import Router
from .savegame import CURRENT_VERSION, SaveFormatError, SaveGame, dump_save, load_save, migrate
from .service import ServiceNode
from .topology import CommandResult, RejectReason, TopologyGraph
from .traffic import TrafficGenerator, normalize_distribution

__all__ = [
    "CURRENT_VERSION",
    "CommandResult",
    "DegradationSystem",
    "DifficultyController",
    "DifficultyParams",
    "DifficultyState",
    "DisruptionKind",
    "EconomyLedger",
    "EconomyState",
    "FailureReason",
    "GameMode",
    "NODE_SPECS",
    "NodeKind",
    "NodeSpec",
    "Outcome",
    "OutcomeEvent",
    "RejectReason",
    "RequestEntity",
    "RequestState",
    "Router",
    "SandboxSettings",
    "SaveFormatError",
    "SaveGame",
    "ScoringTable",
    "ServiceNode",
    "SimulationClock",
    "SimulationContext",
    "SimulationEngine",
    "TRAFFIC_SPECS",
    "Tier",
    "TopologyGraph",
    "TrafficGenerator",
    "TrafficSpec",
    "TrafficType",
    "dump_save",
    "load_save",
    "migrate",
    "normalize_distribution",
]
