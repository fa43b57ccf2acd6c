"""BlueZ pairing agent that answers passkey requests for the WiCAN.

bleak exposes ``pair()`` but no way to supply a passkey, so the agent is
registered directly with BlueZ over the system D-Bus using ``dbus-fast``
(bleak's own Linux backend dependency).

This module deliberately does not use ``from __future__ import
annotations``: dbus-fast reads the D-Bus signature strings ("o", "u",
...) from the live annotations.
"""

from typing import Any, Optional

import structlog

from wican_agent.exceptions import DeviceConnectionError

logger = structlog.get_logger(__name__)

AGENT_PATH = "/org/wican_agent/agent"
AGENT_CAPABILITY = "KeyboardDisplay"
_BLUEZ = "org.bluez"


def _import_dbus_fast() -> Any:
    """Lazy-import dbus-fast so it's only needed when talking to hardware."""
    try:
        import dbus_fast  # type: ignore[import-untyped]
        import dbus_fast.aio  # type: ignore[import-untyped]
        import dbus_fast.service  # type: ignore[import-untyped]
        return dbus_fast
    except ImportError as exc:
        raise ImportError(
            "dbus-fast is required to pair with a WiCAN device. "
            "Install it with: pip install dbus-fast"
        ) from exc


def build_agent(passkey: int) -> Any:
    """Return an ``org.bluez.Agent1`` service object that answers with *passkey*."""
    dbus_fast = _import_dbus_fast()
    ServiceInterface = dbus_fast.service.ServiceInterface
    method = dbus_fast.service.method

    class PasskeyAgent(ServiceInterface):
        def __init__(self) -> None:
            super().__init__("org.bluez.Agent1")
            self.passkey = passkey
            self.requests = 0

        @method()
        def Release(self):  # noqa: N802
            logger.debug("bluez_agent_released")

        @method()
        def RequestPasskey(self, device: "o") -> "u":  # noqa: F821,N802
            self.requests += 1
            logger.info("bluez_passkey_requested", device=device)
            return self.passkey

        @method()
        def RequestPinCode(self, device: "o") -> "s":  # noqa: F821,N802
            self.requests += 1
            return f"{self.passkey:06d}"

        @method()
        def DisplayPasskey(self, device: "o", passkey: "u", entered: "q"):  # noqa: F821,N802
            pass

        @method()
        def RequestConfirmation(self, device: "o", passkey: "u"):  # noqa: F821,N802
            if passkey != self.passkey:
                logger.warning("bluez_passkey_mismatch", device=device)
                raise dbus_fast.DBusError(
                    "org.bluez.Error.Rejected", "Passkey does not match"
                )

        @method()
        def RequestAuthorization(self, device: "o"):  # noqa: F821,N802
            pass

        @method()
        def AuthorizeService(self, device: "o", uuid: "s"):  # noqa: F821,N802
            pass

        @method()
        def Cancel(self):  # noqa: N802
            logger.warning("bluez_pairing_cancelled")

    return PasskeyAgent()


class PasskeyAgentSession:
    """Registers the passkey agent for the duration of an ``async with`` block."""

    def __init__(self, passkey: int) -> None:
        self._passkey = passkey
        self._bus: Any = None
        self._manager: Any = None
        self.agent: Any = None

    async def __aenter__(self) -> "PasskeyAgentSession":
        dbus_fast = _import_dbus_fast()
        try:
            self._bus = await dbus_fast.aio.MessageBus(
                bus_type=dbus_fast.BusType.SYSTEM
            ).connect()
            self.agent = build_agent(self._passkey)
            self._bus.export(AGENT_PATH, self.agent)

            introspection = await self._bus.introspect(_BLUEZ, "/org/bluez")
            proxy = self._bus.get_proxy_object(_BLUEZ, "/org/bluez", introspection)
            self._manager = proxy.get_interface("org.bluez.AgentManager1")
            await self._manager.call_register_agent(AGENT_PATH, AGENT_CAPABILITY)
            await self._manager.call_request_default_agent(AGENT_PATH)
        except (dbus_fast.DBusError, OSError) as exc:
            await self._teardown()
            raise DeviceConnectionError(
                f"Could not register BlueZ pairing agent: {exc}"
            ) from exc
        logger.debug("bluez_agent_registered", path=AGENT_PATH)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self._teardown()

    async def is_paired(self, address: str) -> bool:
        """Return ``True`` if BlueZ already holds a pairing for *address*."""
        dbus_fast = _import_dbus_fast()
        try:
            introspection = await self._bus.introspect(_BLUEZ, "/")
            proxy = self._bus.get_proxy_object(_BLUEZ, "/", introspection)
            object_manager = proxy.get_interface(
                "org.freedesktop.DBus.ObjectManager"
            )
            objects = await object_manager.call_get_managed_objects()
        except dbus_fast.DBusError as exc:
            raise DeviceConnectionError(
                f"Could not query BlueZ pairing state: {exc}"
            ) from exc
        return _paired_from_objects(objects, address)

    async def _teardown(self) -> None:
        dbus_fast = _import_dbus_fast()
        if self._manager is not None:
            try:
                await self._manager.call_unregister_agent(AGENT_PATH)
            except dbus_fast.DBusError as exc:
                logger.debug("bluez_agent_unregister_failed", error=str(exc))
            self._manager = None
        if self._bus is not None:
            self._bus.disconnect()
            self._bus = None


def _paired_from_objects(objects: dict, address: str) -> bool:
    for interfaces in objects.values():
        device: Optional[dict] = interfaces.get("org.bluez.Device1")
        if not device:
            continue
        if str(_value(device.get("Address"))).upper() == address.upper():
            return bool(_value(device.get("Paired")))
    return False


def _value(variant: Any) -> Any:
    return getattr(variant, "value", variant)
