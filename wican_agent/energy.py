"""SOC to remaining-energy conversion."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from wican_agent.schemas import EnergyReading, VehicleMetric


def clamp_soc(soc_percent: float) -> float:
    """Clamp *soc_percent* into the closed range [0, 100]."""
    return min(100.0, max(0.0, float(soc_percent)))


def compute(
    capacity_wh: int,
    soc_percent: float,
    timestamp: Optional[datetime] = None,
    outdoor_temperature_celsius: Optional[float] = None,
) -> EnergyReading:
    """Return the remaining energy for a battery of *capacity_wh* at *soc_percent*.

    Out-of-range SOC values are clamped to the nearest bound before the
    multiplication.  *capacity_wh* is assumed positive (validated by
    ``AgentSettings`` at startup).
    """
    soc = clamp_soc(soc_percent)
    fields = {
        "capacity_wh": capacity_wh,
        "soc_percent": soc,
        "energy_wh": capacity_wh * soc / 100,
        "outdoor_temperature_celsius": outdoor_temperature_celsius,
    }
    if timestamp is not None:
        fields["timestamp"] = timestamp
    return EnergyReading(**fields)


def compute_from_metric(capacity_wh: int, metric: VehicleMetric) -> EnergyReading:
    return compute(
        capacity_wh,
        metric.soc_percent,
        timestamp=metric.timestamp,
        outdoor_temperature_celsius=metric.outdoor_temperature_celsius,
    )
