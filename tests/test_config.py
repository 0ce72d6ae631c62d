"""Unit tests for environment-driven Settings."""
from __future__ import annotations

import pytest

from cloudsim.config import Settings

pytestmark = pytest.mark.unit


def test_defaults(monkeypatch):
    monkeypatch.delenv("CLOUDSIM_SEED", raising=False)
    s = Settings(_env_file=None)
    assert s.seed is None
    assert s.max_tick_dt == 0.1
    assert s.default_mode == "survival"
    assert s.survival_start_budget == 500.0
    assert not s.sandbox_upkeep_enabled


def test_env_override(monkeypatch):
    monkeypatch.setenv("CLOUDSIM_SEED", "42")
    monkeypatch.setenv("CLOUDSIM_SANDBOX_RPS", "2.5")
    monkeypatch.setenv("CLOUDSIM_AUTO_REPAIR", "true")
    s = Settings(_env_file=None)
    assert s.seed == 42
    assert s.sandbox_rps == 2.5
    assert s.auto_repair
