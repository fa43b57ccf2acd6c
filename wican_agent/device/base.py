"""Abstract base class for WiCAN device transports."""

from __future__ import annotations

from abc import ABC, abstractmethod

from wican_agent.schemas import DeviceIdentity


class DeviceTransport(ABC):
    """Connect / read / disconnect capability for one WiCAN device.

    Concrete implementations: ``SimulationTransport`` (fixture-based) and
    ``BleTransport`` (bleak wrapper).  Timeouts are applied by the caller;
    implementations may block until cancelled.
    """

    @abstractmethod
    async def connect(self, identity: DeviceIdentity) -> None:
        """Open (and pair, if needed) the link to the device.

        Raises ``AuthFailure`` when pairing is rejected; any other
        exception is treated as a failed attempt.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the link.  Safe to call when already disconnected."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Return ``True`` if the link is up."""

    @abstractmethod
    async def read_metric(self) -> bytes:
        """Request the pre-parsed metric profile and return the raw reply.

        Raises an exception if the link drops while waiting.
        """

    async def forget(self) -> None:
        """Drop any stored pairing so the next connect pairs from scratch."""
