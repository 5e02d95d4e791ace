"""
Pytest configuration and shared fixtures for updatepolicy tests.

This module provides reusable fixtures and test utilities used across
the test suite.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
import random
from typing import Any

import pytest
import yaml

from updatepolicy.config import PolicyConfig
from updatepolicy.evaluation import EvaluationContext
from updatepolicy.facts import ConnectionType, Fact, FixedClock, StaticFactProvider
from updatepolicy.logging import SilentLogger
from updatepolicy.policy import FleetPolicy, UpdateState

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

MIRRORS = (
    "https://mirror0.example.com/payload.bin",
    "https://mirror1.example.com/payload.bin",
    "https://mirror2.example.com/payload.bin",
)


@pytest.fixture
def now() -> datetime:
    """Provide the fixed wallclock time used by the clock fixture."""
    return NOW


@pytest.fixture
def clock() -> FixedClock:
    """Provide a clock frozen at NOW."""
    return FixedClock(NOW)


@pytest.fixture
def facts() -> StaticFactProvider:
    """
    Provide facts for an enrolled official build on WiFi.

    Device policy is loaded but sets nothing.
    """
    return StaticFactProvider(
        {
            Fact.IS_OFFICIAL_BUILD: True,
            Fact.IS_OOBE_COMPLETE: True,
            Fact.DEVICE_POLICY_LOADED: True,
            Fact.CONNECTION_TYPE: ConnectionType.WIFI,
        }
    )


@pytest.fixture
def ec(facts: StaticFactProvider, clock: FixedClock) -> EvaluationContext:
    """Provide an evaluation context over the default facts and clock."""
    return EvaluationContext(facts, clock)


@pytest.fixture
def config() -> PolicyConfig:
    """Provide the built-in configuration."""
    return PolicyConfig()


@pytest.fixture
def policy(config: PolicyConfig) -> FleetPolicy:
    """Provide a fleet policy with a seeded random source."""
    return FleetPolicy(config, rng=random.Random(1234), logger=SilentLogger())


@pytest.fixture
def make_state():
    """
    Factory fixture for update state snapshots.

    Defaults describe a payload first seen a day ago with three HTTPS
    mirrors, a budget of three errors per URL and no scattering.

    Usage:
        state = make_state(num_failures=2, last_download_url_idx=1)
    """

    def _make(**overrides: Any) -> UpdateState:
        values: dict[str, Any] = {
            "first_seen": NOW - timedelta(days=1),
            "download_urls": MIRRORS,
            "download_errors_max": 3,
        }
        values.update(overrides)
        return UpdateState(**values)

    return _make


@pytest.fixture
def create_yaml_file(tmp_path: Path):
    """
    Factory fixture for creating temporary YAML files.

    Usage:
        yaml_path = create_yaml_file("policy.yaml", {"policy": "fleet"})
    """

    def _create(filename: str, data: dict[str, Any]) -> Path:
        path = tmp_path / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f)
        return path

    return _create
