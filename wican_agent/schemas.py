"""Pydantic v2 models for the agent's data model and relay payload."""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# battery_level_wh is an unsigned 16-bit field on the proxy side.
U16_MAX = 65535
_MAC_PATTERN = re.compile(r"^([0-9A-F]{2}:){5}[0-9A-F]{2}$")


def normalise_mac(value: str) -> str:
    """Upper-case *value* and check it is a colon-delimited 48-bit address."""
    normalised = str(value).strip().upper()
    if not _MAC_PATTERN.match(normalised):
        raise ValueError(
            f"MAC address must be six colon-separated hex octets, got '{value}'"
        )
    return normalised


# ---------------------------------------------------------------------------
# Device identity / policy
# ---------------------------------------------------------------------------

class DeviceIdentity(BaseModel):
    """Hardware address and pairing passkey of the WiCAN device."""

    model_config = {"frozen": True}

    mac_address: str = Field(..., examples=["AA:BB:CC:DD:EE:FF"])
    passkey: int = Field(default=123456, ge=0, le=999999)

    @field_validator("mac_address", mode="before")
    @classmethod
    def validate_mac_address(cls, v: str) -> str:
        return normalise_mac(v)


class RetryPolicy(BaseModel):
    """Bounded connection retry with a fixed per-attempt timeout."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=5, ge=1)
    timeout_seconds: float = Field(default=10.0, gt=0)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VehicleMetric(BaseModel):
    """A raw SOC sample as reported by the device (not yet clamped)."""

    soc_percent: float
    timestamp: datetime = Field(default_factory=_utcnow)
    outdoor_temperature_celsius: Optional[float] = None


class EnergyReading(BaseModel):
    """Remaining energy derived from a SOC sample and the battery capacity."""

    capacity_wh: int = Field(..., gt=0)
    soc_percent: float = Field(..., ge=0, le=100)
    energy_wh: float = Field(..., ge=0)
    timestamp: datetime = Field(default_factory=_utcnow)
    outdoor_temperature_celsius: Optional[float] = None


class BatteryData(BaseModel):
    """Body POSTed to the aa-proxy-rs EV Logger endpoint.

    Field names are a contract with the proxy and must not change.
    Optional fields are omitted from the JSON when unknown.
    """

    battery_level_percentage: Optional[float] = None
    battery_level_wh: Optional[int] = Field(default=None, ge=0, le=U16_MAX)
    reference_air_density: Optional[float] = None
    external_temp_celsius: Optional[float] = None
    battery_capacity_wh: Optional[int] = None

    @classmethod
    def from_reading(cls, reading: EnergyReading) -> "BatteryData":
        # The proxy stores the energy as a u16; larger values are left out.
        energy_wh = int(round(reading.energy_wh))
        return cls(
            battery_level_percentage=reading.soc_percent,
            battery_level_wh=energy_wh if energy_wh <= U16_MAX else None,
            external_temp_celsius=reading.outdoor_temperature_celsius,
            battery_capacity_wh=reading.capacity_wh,
        )

    def to_json(self) -> str:
        # battery_capacity_wh is always sent, even when null.
        fields = set(self.model_dump(exclude_none=True))
        fields.add("battery_capacity_wh")
        return self.model_dump_json(include=fields)
