"""Shared fixtures for simulation unit tests."""

from __future__ import annotations

import pytest

from cloudsim.simulation.context import SimulationContext


class RecordingBus:
    """Minimal EventBus stand-in that records every published event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict | None]] = []

    def publish(self, topic: str, data: dict | None = None) -> None:
        self.events.append((topic, data))

    def topics(self) -> list[str]:
        return [t for t, _ in self.events]

    def of(self, topic: str) -> list[dict | None]:
        return [d for t, d in self.events if t == topic]


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def ctx(bus: RecordingBus) -> SimulationContext:
    """Seeded context with plenty of money and degradation off."""
    return SimulationContext(seed=7, event_bus=bus, degradation=False, money=10_000.0)
