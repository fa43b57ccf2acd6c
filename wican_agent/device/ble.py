"""BleTransport -- bleak wrapper for the WiCAN Pro GATT interface.

``bleak`` is imported lazily inside methods so that simulation mode and
the test suite work on hosts without a Bluetooth stack.

The WiCAN exposes a write characteristic that accepts console commands
and a notify characteristic that carries the replies.  ``autopid -d``
asks the firmware for the current values of its configured vehicle
profile as a single JSON object.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from wican_agent.device.base import DeviceTransport
from wican_agent.exceptions import AuthFailure, DeviceConnectionError
from wican_agent.schemas import DeviceIdentity

logger = structlog.get_logger(__name__)

WICAN_NOTIFY_UUID = "0200dec0-01ef-bc9a-5678-1234deadf0be"
WICAN_WRITE_UUID = "0300dec0-01ef-bc9a-5678-1234deadf0be"
AUTOPID_REQUEST = b"autopid -d\n"


class BleTransport(DeviceTransport):
    """Talks to a WiCAN Pro over BLE via ``bleak.BleakClient``."""

    def __init__(self, scan_timeout: float = 10.0) -> None:
        self._scan_timeout = scan_timeout
        self._client: Any = None  # bleak.BleakClient instance (lazy)
        self._address: Optional[str] = None
        self._pending: Optional[asyncio.Future[bytes]] = None

    @property
    def scan_timeout(self) -> float:
        return self._scan_timeout

    # -- lifecycle ----------------------------------------------------------

    async def connect(self, identity: DeviceIdentity) -> None:
        bleak = _import_bleak()
        try:
            await self._connect(bleak, identity)
        except bleak.exc.BleakError as exc:
            raise DeviceConnectionError(str(exc)) from exc

    async def _connect(self, bleak: Any, identity: DeviceIdentity) -> None:
        self._address = identity.mac_address
        logger.info(
            "ble_scan_started",
            address=identity.mac_address,
            timeout=self._scan_timeout,
        )
        device = await bleak.BleakScanner.find_device_by_address(
            identity.mac_address, timeout=self._scan_timeout
        )
        if device is None:
            raise DeviceConnectionError(
                f"Scan timed out without finding device {identity.mac_address}"
            )

        client = bleak.BleakClient(
            device, disconnected_callback=self._on_disconnect
        )
        self._client = client
        await client.connect()

        try:
            async with _open_agent(identity.passkey) as agent:
                if await agent.is_paired(identity.mac_address):
                    logger.debug("ble_already_paired", address=identity.mac_address)
                else:
                    logger.debug("ble_pairing", address=identity.mac_address)
                    await client.pair()
        except bleak.exc.BleakError as exc:
            await self._safe_disconnect()
            raise AuthFailure(f"Failed to pair with device: {exc}") from exc
        except DeviceConnectionError:
            await self._safe_disconnect()
            raise

        service_collection = client.services
        if (
            service_collection.get_characteristic(WICAN_NOTIFY_UUID) is None
            or service_collection.get_characteristic(WICAN_WRITE_UUID) is None
        ):
            await self._safe_disconnect()
            raise DeviceConnectionError(
                "Could not find the WiCAN notify/write characteristics"
            )

        await client.start_notify(WICAN_NOTIFY_UUID, self._on_notify)
        logger.info("ble_connected", address=identity.mac_address)

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._safe_disconnect()
            self._client = None

    def is_connected(self) -> bool:
        return self._client is not None and bool(self._client.is_connected)

    async def forget(self) -> None:
        if self._address is None:
            return
        bleak = _import_bleak()
        client = self._client or bleak.BleakClient(self._address)
        try:
            await client.unpair()
            logger.info("ble_pairing_removed")
        except bleak.exc.BleakError as exc:
            logger.warning("ble_unpair_failed", error=str(exc))

    # -- data reads ---------------------------------------------------------

    async def read_metric(self) -> bytes:
        self._check_connected()
        bleak = _import_bleak()
        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        try:
            await self._client.write_gatt_char(
                WICAN_WRITE_UUID, AUTOPID_REQUEST, response=True
            )
            logger.debug("autopid_request_sent")
            return await self._pending
        except bleak.exc.BleakError as exc:
            raise ConnectionError(f"GATT request failed: {exc}") from exc
        finally:
            self._pending = None

    # -- callbacks ----------------------------------------------------------

    def _on_notify(self, _sender: Any, data: bytearray) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(bytes(data))

    def _on_disconnect(self, _client: Any) -> None:
        logger.warning("ble_disconnected")
        if self._pending is not None and not self._pending.done():
            self._pending.set_exception(
                ConnectionError("Device disconnected while waiting for a reply")
            )

    # -- internal -----------------------------------------------------------

    def _check_connected(self) -> None:
        if not self.is_connected():
            raise ConnectionError("BleTransport is not connected")

    async def _safe_disconnect(self) -> None:
        bleak = _import_bleak()
        try:
            await self._client.disconnect()
        except bleak.exc.BleakError as exc:
            logger.debug("ble_disconnect_failed", error=str(exc))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _open_agent(passkey: int) -> Any:
    """Return an async context manager that answers BlueZ passkey requests."""
    from wican_agent.device.bluez_agent import PasskeyAgentSession

    return PasskeyAgentSession(passkey)


def _import_bleak() -> Any:
    """Lazy-import bleak so it's only needed when talking to hardware."""
    try:
        import bleak  # type: ignore[import-untyped]
        import bleak.exc  # type: ignore[import-untyped]
        return bleak
    except ImportError as exc:
        raise ImportError(
            "bleak is required to talk to a WiCAN device. "
            "Install it with: pip install bleak"
        ) from exc
