"""Error taxonomy for the WiCAN agent.

Every failure a single poll cycle can hit maps to one of three families:

* ``DeviceConnectionError`` -- raised by ``ConnectionManager``.
* ``ReadError``             -- raised by ``MetricReader``.
* ``RelayError``            -- raised by ``RelayClient``.

None of them is fatal to the process; the agent loop logs them and skips
the current cycle.
"""

from __future__ import annotations


class WiCANAgentError(Exception):
    """Base class for all agent errors."""


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class DeviceConnectionError(WiCANAgentError):
    """The device link could not be established."""


class ConnectTimeout(DeviceConnectionError):
    """A single connection attempt exceeded its deadline."""


class AuthFailure(DeviceConnectionError):
    """Pairing with the device was rejected (wrong passkey)."""


class RetriesExhausted(DeviceConnectionError):
    """Every attempt allowed by the retry policy failed."""

    def __init__(self, attempts: int, reason: str) -> None:
        super().__init__(
            f"Failed to connect to the device after {attempts} attempts: {reason}"
        )
        self.attempts = attempts
        self.reason = reason


# ---------------------------------------------------------------------------
# Metric read
# ---------------------------------------------------------------------------

class ReadError(WiCANAgentError):
    """A metric read did not yield a usable SOC value."""


class NoDataError(ReadError):
    """The device answered with no value (or not at all) for the profile."""


class TransportError(ReadError):
    """The link failed mid-request; the connection handle is no longer valid."""


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------

class RelayError(WiCANAgentError):
    """Publishing a reading to the proxy endpoint failed."""


class Unreachable(RelayError):
    """Connection refused, DNS failure or request deadline exceeded."""


class Rejected(RelayError):
    """The endpoint answered with a non-success HTTP status."""

    def __init__(self, status: int, body: str = "") -> None:
        super().__init__(f"Endpoint rejected the reading with status {status}")
        self.status = status
        self.body = body
