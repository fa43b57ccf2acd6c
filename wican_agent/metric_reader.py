"""Fetches one SOC sample from a connected WiCAN."""

from __future__ import annotations

import asyncio
import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from wican_agent.connection_manager import ConnectionHandle
from wican_agent.exceptions import NoDataError, TransportError
from wican_agent.schemas import VehicleMetric

logger = structlog.get_logger(__name__)

# Display SOC is preferred over raw BMS SOC when the profile provides both.
_SOC_KEYS = ("SOC_D", "SOC")
_OUTDOOR_TEMPERATURE_KEY = "OUTDOOR_TEMPERATURE"


class MetricReader:
    """Stateless: every call borrows the handle for exactly one request."""

    async def read_soc(self, handle: ConnectionHandle) -> VehicleMetric:
        """Request the device's pre-parsed metrics and return the SOC sample.

        Raises ``NoDataError`` when no reply arrives within the handle's
        timeout or the reply has no SOC, and ``TransportError`` when the
        link fails or the reply is undecodable.
        """
        if not handle.is_alive():
            raise TransportError("Connection handle is no longer alive")

        try:
            raw = await asyncio.wait_for(
                handle.transport.read_metric(), timeout=handle.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise NoDataError(
                f"No reply from WiCAN within {handle.timeout_seconds}s"
            ) from None
        except OSError as exc:
            raise TransportError(f"Link failed mid-request: {exc}") from exc

        return parse_metric(raw)


def parse_metric(raw: bytes, timestamp: Optional[datetime] = None) -> VehicleMetric:
    """Decode an ``autopid`` JSON reply into a ``VehicleMetric``."""
    try:
        text = raw.decode("utf-8").strip()
        body = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TransportError(f"Failed to decode WiCAN response: {exc}") from exc
    logger.debug("wican_response_decoded", response=text)

    if not isinstance(body, dict):
        raise TransportError(
            f"Expected a JSON object from WiCAN, got {type(body).__name__}"
        )

    values = _upper_keys(body)
    soc = _first_number(values, _SOC_KEYS)
    if soc is None:
        raise NoDataError("WiCAN response carries no SOC value")

    return VehicleMetric(
        soc_percent=soc,
        timestamp=timestamp or datetime.now(timezone.utc),
        outdoor_temperature_celsius=_first_number(
            values, (_OUTDOOR_TEMPERATURE_KEY,)
        ),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _upper_keys(body: Dict[str, Any]) -> Dict[str, Any]:
    return {str(key).upper(): value for key, value in body.items()}


def _first_number(values: Dict[str, Any], keys: tuple) -> Optional[float]:
    for key in keys:
        value = values.get(key)
        if isinstance(value, bool) or value is None:
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            return number
    return None
