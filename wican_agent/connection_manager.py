"""Connection lifecycle for the single WiCAN device link.

``ConnectionManager`` is the only owner of the device transport and of
the ``ConnectionState``.  State moves along::

    DISCONNECTED -> CONNECTING -> CONNECTED
                             \\-> FAILED(reason)

and back to ``DISCONNECTED`` when a caller reports the handle broken via
``invalidate()``.  A lock serialises every transition.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import structlog

from wican_agent.device.base import DeviceTransport
from wican_agent.exceptions import (
    AuthFailure,
    ConnectTimeout,
    DeviceConnectionError,
    RetriesExhausted,
)
from wican_agent.schemas import ConnectionState, DeviceIdentity, RetryPolicy

logger = structlog.get_logger(__name__)


class ConnectionHandle:
    """Borrowed reference to the live transport for the length of one read."""

    def __init__(self, transport: DeviceTransport, timeout_seconds: float) -> None:
        self._transport = transport
        self.timeout_seconds = timeout_seconds

    @property
    def transport(self) -> DeviceTransport:
        return self._transport

    def is_alive(self) -> bool:
        return self._transport.is_connected()


class ConnectionManager:
    """Connect / retry / timeout state machine for one device."""

    def __init__(
        self,
        transport: DeviceTransport,
        identity: DeviceIdentity,
        policy: RetryPolicy,
    ) -> None:
        self._transport = transport
        self._identity = identity
        self._policy = policy
        self._state = ConnectionState.DISCONNECTED
        self._failure_reason: Optional[str] = None
        self._handle: Optional[ConnectionHandle] = None
        self._lock = asyncio.Lock()

    # -- introspection ------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def failure_reason(self) -> Optional[str]:
        """Why the last attempt sequence failed; ``None`` unless FAILED."""
        return self._failure_reason

    # -- public API ---------------------------------------------------------

    async def ensure_connected(self) -> ConnectionHandle:
        """Return a live handle, connecting first if necessary.

        Raises ``RetriesExhausted`` once ``policy.max_attempts`` attempts
        have failed.
        """
        async with self._lock:
            if (
                self._state is ConnectionState.CONNECTED
                and self._handle is not None
                and self._handle.is_alive()
            ):
                return self._handle

            if self._state is ConnectionState.CONNECTED:
                logger.warning(
                    "connection_lost", address=self._identity.mac_address
                )
                await self._transport.disconnect()

            self._transition(ConnectionState.DISCONNECTED)
            try:
                return await self._connect_with_retry()
            except BaseException:
                # Cancelled (shutdown) or an unexpected transport error.
                if self._state is ConnectionState.CONNECTING:
                    self._transition(ConnectionState.DISCONNECTED)
                raise

    async def invalidate(self) -> None:
        """Mark the current handle as broken; the next call reconnects."""
        async with self._lock:
            self._handle = None
            await self._transport.disconnect()
            self._transition(ConnectionState.DISCONNECTED)

    async def close(self) -> None:
        """Disconnect on shutdown."""
        async with self._lock:
            self._handle = None
            await self._transport.disconnect()
            self._transition(ConnectionState.DISCONNECTED)

    # -- internal -----------------------------------------------------------

    async def _connect_with_retry(self) -> ConnectionHandle:
        self._transition(ConnectionState.CONNECTING)
        max_attempts = self._policy.max_attempts
        timeout = self._policy.timeout_seconds
        last_error: DeviceConnectionError = ConnectTimeout("no attempt made")

        for attempt in range(1, max_attempts + 1):
            started = time.monotonic()
            logger.info(
                "connect_attempt",
                address=self._identity.mac_address,
                attempt=attempt,
                max_attempts=max_attempts,
            )
            try:
                await asyncio.wait_for(
                    self._transport.connect(self._identity), timeout=timeout
                )
            except asyncio.TimeoutError:
                last_error = ConnectTimeout(
                    f"Connection attempt timed out after {timeout}s"
                )
            except AuthFailure as exc:
                last_error = exc
            except (DeviceConnectionError, OSError) as exc:
                last_error = DeviceConnectionError(str(exc) or type(exc).__name__)
            else:
                self._handle = ConnectionHandle(self._transport, timeout)
                self._transition(ConnectionState.CONNECTED)
                logger.info(
                    "connected",
                    address=self._identity.mac_address,
                    attempt=attempt,
                )
                return self._handle

            await self._transport.disconnect()

            # Each attempt occupies one full timeout slot, the last one included.
            remaining = timeout - (time.monotonic() - started)
            logger.warning(
                "connect_attempt_failed",
                attempt=attempt,
                error=str(last_error),
                error_type=type(last_error).__name__,
                wait=round(max(remaining, 0.0), 3),
            )
            if remaining > 0:
                await asyncio.sleep(remaining)

        reason = str(last_error)
        logger.warning(
            "connect_retries_exhausted",
            attempts=max_attempts,
            error=reason,
            error_type=type(last_error).__name__,
        )
        self._failure_reason = reason
        self._transition(ConnectionState.FAILED)
        await self._transport.forget()
        raise RetriesExhausted(max_attempts, reason) from last_error

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state is self._state:
            return
        if new_state is not ConnectionState.FAILED:
            self._failure_reason = None
        logger.debug(
            "connection_state_changed",
            old=self._state.value,
            new=new_state.value,
        )
        self._state = new_state
