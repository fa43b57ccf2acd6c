"""Shared pytest fixtures for WiCAN agent tests."""

from __future__ import annotations

from typing import Any, Callable, Dict, Generator

import pytest

from wican_agent.config import AgentSettings
from wican_agent.schemas import DeviceIdentity, RetryPolicy

TEST_MAC = "AA:BB:CC:DD:EE:FF"
TEST_URL = "http://test-proxy/battery"


@pytest.fixture(autouse=True)
def _reset_scenario_cache() -> Generator[None, None, None]:
    """Clear the simulation scenario cache between tests."""
    from wican_agent.device import simulation

    simulation._scenarios_cache = None
    yield
    simulation._scenarios_cache = None


@pytest.fixture()
def make_settings() -> Callable[..., AgentSettings]:
    def _make(**overrides: Any) -> AgentSettings:
        defaults: Dict[str, Any] = dict(
            vehicle_battery_capacity=10000,
            wican_mac_address=TEST_MAC,
            wican_timeout=0.05,
            wican_max_connect_retries=3,
            api_url=TEST_URL,
            dry_run=False,
        )
        defaults.update(overrides)
        return AgentSettings(**defaults)

    return _make


@pytest.fixture()
def identity() -> DeviceIdentity:
    return DeviceIdentity(mac_address=TEST_MAC, passkey=123456)


@pytest.fixture()
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, timeout_seconds=0.05)
