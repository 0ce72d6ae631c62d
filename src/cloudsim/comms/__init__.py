"""Messaging primitives shared by the simulation and its consumers."""
from .event_bus import EventBus

__all__ = ["EventBus"]
