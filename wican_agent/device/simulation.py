"""Fixture-based simulation transport (no hardware required).

Loads scenarios from ``fixtures/simulation_scenarios.json``.  A scenario
scripts the device's behaviour:

* ``connect_failures`` -- number of connect attempts that fail before one
  succeeds (``-1`` means every attempt fails).
* ``connect_hang``     -- failing attempts block until cancelled instead
  of failing fast.
* ``reject_pairing``   -- every attempt raises ``AuthFailure``.
* ``replies``          -- cycled through on each read.  An object is sent
  as JSON, ``null`` never answers, ``"drop"`` drops the link mid-request
  and any other string is sent as raw bytes.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from wican_agent.device.base import DeviceTransport
from wican_agent.exceptions import AuthFailure
from wican_agent.schemas import DeviceIdentity

_FIXTURES_DIR = Path(__file__).resolve().parent.parent / "fixtures"

_DROP = "drop"


class SimulationTransport(DeviceTransport):
    """Plays back a scripted WiCAN scenario."""

    def __init__(self, scenario: Union[str, Dict[str, Any]] = "driving") -> None:
        if isinstance(scenario, str):
            self._scenario_name = scenario
            self._scenario: Optional[Dict[str, Any]] = None
        else:
            self._scenario_name = "<inline>"
            self._scenario = scenario
        self._connected = False
        self._reply_index = 0
        self.connect_attempts = 0
        self.read_count = 0
        self.forget_count = 0

    # -- lifecycle ----------------------------------------------------------

    async def connect(self, identity: DeviceIdentity) -> None:
        scenario = self._load()
        self.connect_attempts += 1

        if scenario.get("reject_pairing", False):
            raise AuthFailure(
                f"Device {identity.mac_address} rejected passkey {identity.passkey}"
            )

        failures = int(scenario.get("connect_failures", 0))
        if failures < 0 or self.connect_attempts <= failures:
            if scenario.get("connect_hang", False):
                await asyncio.Event().wait()
            raise ConnectionRefusedError(
                f"Simulated connect failure (attempt {self.connect_attempts})"
            )

        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def forget(self) -> None:
        self.forget_count += 1

    # -- data reads ---------------------------------------------------------

    async def read_metric(self) -> bytes:
        self._check_connected()
        replies: List[Any] = self._load().get("replies", [])
        if not replies:
            await asyncio.Event().wait()

        reply = replies[self._reply_index % len(replies)]
        self._reply_index += 1
        self.read_count += 1

        if reply is None:
            await asyncio.Event().wait()
        if reply == _DROP:
            self._connected = False
            raise ConnectionResetError("Simulated link drop")
        if isinstance(reply, str):
            return reply.encode("utf-8")
        return json.dumps(reply).encode("utf-8")

    # -- internal -----------------------------------------------------------

    def _load(self) -> Dict[str, Any]:
        if self._scenario is None:
            scenarios = _load_scenarios()
            if self._scenario_name not in scenarios:
                available = ", ".join(sorted(scenarios))
                raise ValueError(
                    f"Unknown simulation scenario '{self._scenario_name}'. "
                    f"Available: {available}"
                )
            self._scenario = scenarios[self._scenario_name]
        return self._scenario

    def _check_connected(self) -> None:
        if not self._connected:
            raise ConnectionError("SimulationTransport is not connected")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_scenarios_cache: Optional[Dict[str, Any]] = None


def _load_scenarios() -> Dict[str, Any]:
    global _scenarios_cache
    if _scenarios_cache is None:
        path = _FIXTURES_DIR / "simulation_scenarios.json"
        with open(path, encoding="utf-8") as fh:
            _scenarios_cache = json.load(fh)
    return _scenarios_cache


def available_scenarios() -> List[str]:
    return sorted(_load_scenarios())
