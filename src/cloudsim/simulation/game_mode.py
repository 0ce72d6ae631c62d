"""GameMode: survival/sandbox selection and the running/game-over state machine.

Architecture
------------
Two operating modes, chosen externally:

  survival  fixed starting budget, difficulty automation, game-over
            conditions active.
  sandbox   configurable budget, spawn rate and traffic mix, optional
            upkeep, manual burst spawns, no difficulty automation and no
            game over.

State machine (survival only ever leaves ``running``):

  running -> game_over   (reputation <= 0 or money <= -1000)

``game_over`` is one-way.  The engine keeps ticking for rendering but
performs no simulation mutation until ``reset()``.

Events published on the EventBus:
  - ``game_state_change``: any state transition or mode change
  - ``game_over``: terminal condition reached, with the final score
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from .catalog import SandboxSettings

if TYPE_CHECKING:
    from cloudsim.comms.event_bus import EventBus
    from .economy import EconomyLedger


class GameMode:
    """Mode selection + terminal state."""

    MODES = ("survival", "sandbox")
    STATES = ("running", "game_over")

    def __init__(
        self,
        event_bus: EventBus | None = None,
        mode: str = "survival",
        sandbox: SandboxSettings | None = None,
    ) -> None:
        if mode not in self.MODES:
            raise ValueError(f"unknown game mode: {mode}")
        self._event_bus = event_bus
        self.mode = mode
        self.sandbox = sandbox or SandboxSettings()
        self.state = "running"
        self.game_over_reason: str | None = None

    @property
    def is_sandbox(self) -> bool:
        return self.mode == "sandbox"

    @property
    def running(self) -> bool:
        return self.state == "running"

    @property
    def upkeep_enabled(self) -> bool:
        return not self.is_sandbox or self.sandbox.upkeep_enabled

    def check_terminal(self, ledger: EconomyLedger) -> bool:
        """Transition to game_over when the ledger reports failure.

        Returns True only on the tick the transition happens.
        """
        if self.is_sandbox or not self.running or not ledger.is_failed():
            return False
        econ = ledger.state
        self.state = "game_over"
        self.game_over_reason = "reputation" if econ.reputation <= 0 else "bankrupt"
        logger.warning(
            f"Game over ({self.game_over_reason}): score={econ.score.total:.1f} "
            f"money={econ.money:.2f} reputation={econ.reputation:.1f}"
        )
        self._publish("game_over", {
            "reason": self.game_over_reason,
            "final_score": econ.score.total,
            "money": econ.money,
            "reputation": econ.reputation,
            "requests_processed": econ.requests_processed,
        })
        self._publish_state_change()
        return True

    def reset(self, mode: str | None = None, sandbox: SandboxSettings | None = None) -> None:
        if mode is not None:
            if mode not in self.MODES:
                raise ValueError(f"unknown game mode: {mode}")
            self.mode = mode
        if sandbox is not None:
            self.sandbox = sandbox
        self.state = "running"
        self.game_over_reason = None
        self._publish_state_change()

    def get_state(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "state": self.state,
            "game_over_reason": self.game_over_reason,
            "upkeep_enabled": self.upkeep_enabled,
            "sandbox": {
                "budget": self.sandbox.budget,
                "spawn_rate": self.sandbox.spawn_rate,
                "burst_count": self.sandbox.burst_count,
                "upkeep_enabled": self.sandbox.upkeep_enabled,
            } if self.is_sandbox else None,
        }

    # -- Event publishing -------------------------------------------------

    def _publish(self, topic: str, data: dict) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(topic, data)

    def _publish_state_change(self) -> None:
        self._publish("game_state_change", self.get_state())
