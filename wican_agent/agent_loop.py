"""Main asyncio polling loop for the WiCAN agent.

One cycle: ensure connected -> read SOC -> compute energy -> relay.
Cycles run strictly one after another on a fixed ``IntervalTimer``;
any cycle-level failure is logged and the cycle is skipped.  SIGINT /
SIGTERM cancel whatever the current cycle is waiting on.
"""

from __future__ import annotations

import asyncio
import enum
import signal
import sys
import time
from typing import Awaitable, Optional, TypeVar

import structlog

from wican_agent.config import AgentSettings
from wican_agent.connection_manager import ConnectionManager
from wican_agent.device.base import DeviceTransport
from wican_agent.energy import compute_from_metric
from wican_agent.exceptions import (
    DeviceConnectionError,
    NoDataError,
    RelayError,
    TransportError,
)
from wican_agent.metric_reader import MetricReader
from wican_agent.relay_client import RelayClient

logger = structlog.get_logger(__name__)

SCAN_TIMEOUT_FRACTION = 0.8

T = TypeVar("T")


class CyclePhase(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    COMPUTING = "computing"
    RELAYING = "relaying"


class CycleOutcome(str, enum.Enum):
    RELAYED = "relayed"
    SKIPPED_CONNECT = "skipped_connect"
    SKIPPED_NO_DATA = "skipped_no_data"
    SKIPPED_TRANSPORT = "skipped_transport"
    SKIPPED_RELAY = "skipped_relay"


def create_transport(settings: AgentSettings) -> DeviceTransport:
    """Factory: return the right transport for the current config.

    ``BleTransport`` is imported lazily so simulation mode works without
    ``bleak`` (and a Bluetooth stack) installed.
    """
    if settings.is_simulation:
        from wican_agent.device.simulation import (
            SimulationTransport,
            available_scenarios,
        )

        if settings.simulate not in available_scenarios():
            raise ValueError(
                f"Unknown simulation scenario '{settings.simulate}'. "
                f"Available: {', '.join(available_scenarios())}"
            )
        return SimulationTransport(scenario=settings.simulate)

    from wican_agent.device.ble import BleTransport

    # The scan must end inside the attempt slot so its own error is reported.
    return BleTransport(scan_timeout=settings.wican_timeout * SCAN_TIMEOUT_FRACTION)


class IntervalTimer:
    """Fixed-rate ticker whose wait can be pre-empted by a shutdown event.

    ``mark()`` is called when a cycle starts; ``wait()`` then sleeps until
    one period after that mark, or returns immediately if the cycle
    overran its period.
    """

    def __init__(self, period_seconds: float, shutdown_event: asyncio.Event) -> None:
        self._period = period_seconds
        self._shutdown = shutdown_event
        self._deadline: Optional[float] = None

    def mark(self) -> None:
        self._deadline = time.monotonic() + self._period

    def remaining(self) -> float:
        if self._deadline is None:
            return 0.0
        return max(0.0, self._deadline - time.monotonic())

    async def wait(self) -> bool:
        """Sleep until the next tick.  Returns ``True`` if shutdown was requested."""
        remaining = self.remaining()
        if remaining > 0:
            logger.info("sleeping_until_next_cycle", seconds=round(remaining, 1))
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass
        return self._shutdown.is_set()


class Orchestrator:
    """Drives connect -> read -> compute -> relay once per tick."""

    def __init__(
        self,
        settings: AgentSettings,
        connection: ConnectionManager,
        reader: MetricReader,
        relay: RelayClient,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self._settings = settings
        self._interval = (
            settings.update_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        self._connection = connection
        self._reader = reader
        self._relay = relay
        self._phase = CyclePhase.IDLE
        self.cycles_run = 0

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    async def run_cycle(self) -> CycleOutcome:
        """Execute one cycle; never raises for cycle-level failures."""
        self.cycles_run += 1
        log = logger.bind(cycle=self.cycles_run)
        try:
            return await self._run_cycle(log)
        finally:
            self._set_phase(CyclePhase.IDLE)

    async def _run_cycle(self, log: structlog.stdlib.BoundLogger) -> CycleOutcome:
        # --- connect + read ------------------------------------------------
        self._set_phase(CyclePhase.POLLING)
        try:
            handle = await self._connection.ensure_connected()
        except DeviceConnectionError as exc:
            log.error("connect_failed", error=str(exc))
            return CycleOutcome.SKIPPED_CONNECT

        try:
            metric = await self._reader.read_soc(handle)
        except TransportError as exc:
            log.error("read_transport_error", error=str(exc))
            await self._connection.invalidate()
            return CycleOutcome.SKIPPED_TRANSPORT
        except NoDataError as exc:
            log.warning("read_no_data", error=str(exc))
            return CycleOutcome.SKIPPED_NO_DATA

        # --- compute -------------------------------------------------------
        self._set_phase(CyclePhase.COMPUTING)
        reading = compute_from_metric(
            self._settings.vehicle_battery_capacity, metric
        )
        if reading.soc_percent != metric.soc_percent:
            log.warning(
                "soc_out_of_range",
                reported=metric.soc_percent,
                clamped=reading.soc_percent,
            )
        log.info(
            "energy_computed",
            soc_percent=reading.soc_percent,
            energy_wh=reading.energy_wh,
            capacity_wh=reading.capacity_wh,
        )

        # --- relay ---------------------------------------------------------
        self._set_phase(CyclePhase.RELAYING)
        try:
            await self._relay.publish(self._settings.api_url, reading)
        except RelayError as exc:
            log.error(
                "relay_failed",
                url=self._settings.api_url,
                error=str(exc),
                status=getattr(exc, "status", None),
            )
            return CycleOutcome.SKIPPED_RELAY
        return CycleOutcome.RELAYED

    async def run(
        self,
        shutdown_event: asyncio.Event,
        *,
        once: bool = False,
    ) -> None:
        """Run cycles until *shutdown_event* is set (or once)."""
        timer = IntervalTimer(self._interval, shutdown_event)

        while not shutdown_event.is_set():
            timer.mark()
            try:
                outcome = await run_until_shutdown(self.run_cycle(), shutdown_event)
            except Exception:
                logger.exception("cycle_failed")
                outcome = None

            if outcome is not None:
                logger.info("cycle_finished", cycle=self.cycles_run, outcome=outcome.value)
            if once or shutdown_event.is_set():
                return
            if await timer.wait():
                return

    def _set_phase(self, phase: CyclePhase) -> None:
        if phase is not self._phase:
            logger.debug("cycle_phase", old=self._phase.value, new=phase.value)
            self._phase = phase


async def run_until_shutdown(
    aw: Awaitable[T], shutdown_event: asyncio.Event
) -> Optional[T]:
    """Await *aw*, cancelling it if *shutdown_event* fires first.

    Returns ``None`` when the awaitable was abandoned.
    """
    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(shutdown_event.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()

    if task.done():
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info("cycle_abandoned")
    return None


async def run_agent(
    settings: AgentSettings,
    *,
    once: bool = False,
    transport: Optional[DeviceTransport] = None,
) -> None:
    """Run the WiCAN agent loop.

    Parameters
    ----------
    settings:
        Fully-resolved agent configuration.
    once:
        If ``True``, run a single cycle then exit.
    transport:
        Override the device transport (defaults to ``create_transport``).
    """
    shutdown_event = asyncio.Event()

    # --- signal handling ---------------------------------------------------
    def _request_shutdown() -> None:
        logger.info("shutdown_requested")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    if sys.platform != "win32":
        for sig in signals:
            loop.add_signal_handler(sig, _request_shutdown)
    # On Windows, SIGINT is handled by the default KeyboardInterrupt.

    connection = ConnectionManager(
        transport or create_transport(settings),
        settings.device_identity,
        settings.retry_policy,
    )
    relay = RelayClient(settings)
    orchestrator = Orchestrator(settings, connection, MetricReader(), relay)

    await relay.start()
    try:
        await orchestrator.run(shutdown_event, once=once)
    finally:
        await connection.close()
        await relay.close()
        if sys.platform != "win32":
            for sig in signals:
                loop.remove_signal_handler(sig)
