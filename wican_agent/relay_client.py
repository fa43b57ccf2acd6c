"""HTTP client that POSTs energy readings to the aa-proxy-rs EV Logger.

Exactly one request per reading; retry policy belongs to the agent
loop (which skips the cycle).  ``dry_run`` mode builds and logs the
payload but never POSTs.
"""

from __future__ import annotations

import httpx
import structlog

from wican_agent.config import AgentSettings
from wican_agent.exceptions import Rejected, Unreachable
from wican_agent.schemas import BatteryData, EnergyReading

logger = structlog.get_logger(__name__)


class RelayClient:
    """Publishes ``EnergyReading`` objects as ``BatteryData`` JSON."""

    def __init__(self, settings: AgentSettings) -> None:
        self._timeout = settings.wican_timeout
        self._dry_run = settings.dry_run
        self._client: httpx.AsyncClient | None = None

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        if not self._dry_run:
            self._client = httpx.AsyncClient(timeout=self._timeout)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -- public API ---------------------------------------------------------

    async def publish(self, endpoint: str, reading: EnergyReading) -> None:
        """POST *reading* to *endpoint*.

        Raises ``Unreachable`` on connection/timeout failure and
        ``Rejected`` on a non-2xx status.
        """
        data = BatteryData.from_reading(reading)
        if data.battery_level_wh is None:
            logger.warning(
                "battery_level_wh_omitted",
                energy_wh=round(reading.energy_wh, 1),
                reason="exceeds u16 range",
            )
        payload = data.to_json()

        if self._dry_run:
            logger.info(
                "dry_run_reading",
                url=endpoint,
                payload=payload,
            )
            return

        if self._client is None:
            raise RuntimeError("RelayClient.start() must be called before publishing")

        logger.info("relay_sending", url=endpoint, payload=payload)
        try:
            response = await self._client.post(
                endpoint,
                content=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise Unreachable(
                f"POST to {endpoint} timed out after {self._timeout}s"
            ) from exc
        except httpx.RequestError as exc:
            raise Unreachable(f"POST to {endpoint} failed: {exc}") from exc

        if not response.is_success:
            raise Rejected(response.status_code, response.text[:500])

        logger.info(
            "relay_posted",
            url=endpoint,
            status=response.status_code,
            energy_wh=reading.energy_wh,
        )
