"""Configuration management using Pydantic settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables (``CLOUDSIM_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDSIM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Simulation
    seed: Optional[int] = None          # None = nondeterministic run
    max_tick_dt: float = 0.1            # Wall-clock delta clamp (seconds)
    tick_interval: float = 0.05         # Background tick loop period
    default_mode: str = "survival"      # "survival" or "sandbox"

    # Survival
    survival_start_budget: float = 500.0

    # Sandbox
    sandbox_budget: float = 2000.0
    sandbox_rps: float = 1.0
    sandbox_burst_count: int = 10
    sandbox_upkeep_enabled: bool = False

    # Degradation subsystem
    degradation_enabled: bool = True
    auto_repair: bool = False

    # Publish a full snapshot on the event bus every tick
    publish_snapshots: bool = False

    log_level: str = "INFO"


settings = Settings()
