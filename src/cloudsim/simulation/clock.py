"""SimulationClock: turns a host wall-clock delta into a simulation dt.

The delta from the host is clamped to ``max_dt`` first (absorbs stalls
such as the host view losing focus) and then multiplied by the
player-selected time scale: 0 (paused), 1 or 3.
"""

from __future__ import annotations

from .catalog import TIME_SCALES

DEFAULT_MAX_DT = 0.1


class SimulationClock:
    def __init__(self, max_dt: float = DEFAULT_MAX_DT, time_scale: float = 1.0) -> None:
        self.max_dt = max_dt
        self.time_scale = time_scale
        self.ticks = 0

    def set_time_scale(self, scale: float) -> bool:
        if scale not in TIME_SCALES:
            return False
        self.time_scale = scale
        return True

    @property
    def paused(self) -> bool:
        return self.time_scale == 0

    def scale(self, wall_dt: float) -> float:
        """Return the simulated dt for a wall-clock delta."""
        self.ticks += 1
        clamped = min(max(0.0, wall_dt), self.max_dt)
        return clamped * self.time_scale
