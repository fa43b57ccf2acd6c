"""Agent configuration via environment variables and CLI flags.

Uses pydantic-settings so every field can be overridden with an env var
prefixed ``WICAN_AGENT_`` (e.g. ``WICAN_AGENT_WICAN_MAC_ADDRESS``), or a
``.env`` file in the working directory.  CLI flags parsed in
``__main__`` take precedence over both.

All validation happens here, once, before the polling loop starts: a
malformed MAC address or non-positive capacity is a startup failure,
never a cycle-level one.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from wican_agent.schemas import DeviceIdentity, RetryPolicy, normalise_mac

LOG_LEVELS = ("off", "error", "warn", "info", "debug", "trace")
LOG_FORMATS = ("console", "json")


class AgentSettings(BaseSettings):
    """WiCAN agent runtime settings."""

    model_config = {
        "env_prefix": "WICAN_AGENT_",
        "env_file": ".env",
        "extra": "ignore",
    }

    # -- vehicle ------------------------------------------------------------
    vehicle_battery_capacity: int = Field(
        ...,
        gt=0,
        description="Usable battery capacity of the vehicle in Wh",
    )

    # -- WiCAN device -------------------------------------------------------
    wican_mac_address: str = Field(
        ...,
        description="Bluetooth MAC address of the WiCAN Pro, e.g. AA:BB:CC:DD:EE:FF",
    )
    wican_passkey: int = Field(
        default=123456,
        ge=0,
        le=999999,
        description="Pairing passkey configured on the WiCAN",
    )
    wican_max_connect_retries: int = Field(
        default=5,
        ge=1,
        description="Connection attempts per cycle before giving up",
    )
    wican_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Per-attempt timeout (seconds) for connect, read and POST",
    )
    wican_update_frequency_minutes: int = Field(
        default=1,
        ge=1,
        description="Minutes between poll cycles",
    )
    simulate: Optional[str] = Field(
        default=None,
        description="Simulation scenario name; replaces the BLE transport",
    )

    # -- API ----------------------------------------------------------------
    api_url: str = Field(
        default="http://localhost/battery",
        description="aa-proxy-rs EV Logger endpoint",
    )

    # -- behaviour ----------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Build and log the payload; never POST to the API",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Append log output to this file in addition to stderr",
    )
    log_level: str = Field(default="info", description="Logging level")
    log_format: str = Field(
        default="console",
        description="Log output format: 'console' or 'json'",
    )

    # --- validators --------------------------------------------------------

    @field_validator("wican_mac_address", mode="before")
    @classmethod
    def validate_mac_address(cls, v: str) -> str:
        return normalise_mac(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().lower()
        if level == "warning":
            level = "warn"
        if level not in LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{v}'"
            )
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.strip().lower()
        if fmt not in LOG_FORMATS:
            raise ValueError(
                f"log_format must be one of {', '.join(LOG_FORMATS)}, got '{v}'"
            )
        return fmt

    # -- derived ------------------------------------------------------------
    @property
    def is_simulation(self) -> bool:
        """Return ``True`` when a simulation scenario replaces the device."""
        return bool(self.simulate)

    @property
    def device_identity(self) -> DeviceIdentity:
        return DeviceIdentity(
            mac_address=self.wican_mac_address, passkey=self.wican_passkey
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.wican_max_connect_retries,
            timeout_seconds=self.wican_timeout,
        )

    @property
    def update_interval_seconds(self) -> float:
        return self.wican_update_frequency_minutes * 60.0
