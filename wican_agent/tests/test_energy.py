"""Tests for wican_agent.energy -- SOC to Wh conversion."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from wican_agent.energy import clamp_soc, compute, compute_from_metric
from wican_agent.schemas import VehicleMetric


class TestCompute:
    def test_mid_range(self) -> None:
        reading = compute(10000, 55)
        assert reading.energy_wh == 5500
        assert reading.soc_percent == 55
        assert reading.capacity_wh == 10000

    def test_above_100_behaves_as_full(self) -> None:
        reading = compute(8000, 130)
        assert reading.energy_wh == 8000
        assert reading.soc_percent == 100

    def test_negative_behaves_as_empty(self) -> None:
        reading = compute(8000, -4.5)
        assert reading.energy_wh == 0
        assert reading.soc_percent == 0

    @pytest.mark.parametrize(
        "capacity, soc, expected",
        [
            (10000, 42, 4200),
            (10000, 41, 4100),
            (64000, 0, 0),
            (64000, 100, 64000),
            (77400, 12.5, 9675),
        ],
    )
    def test_formula(self, capacity: int, soc: float, expected: float) -> None:
        assert compute(capacity, soc).energy_wh == pytest.approx(expected)

    def test_timestamp_passed_through(self) -> None:
        ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert compute(1000, 50, timestamp=ts).timestamp == ts


def test_clamp_soc_bounds() -> None:
    assert clamp_soc(-1) == 0.0
    assert clamp_soc(101) == 100.0
    assert clamp_soc(37.2) == 37.2


def test_compute_from_metric_carries_temperature() -> None:
    metric = VehicleMetric(soc_percent=60, outdoor_temperature_celsius=8.5)
    reading = compute_from_metric(50000, metric)
    assert reading.energy_wh == 30000
    assert reading.outdoor_temperature_celsius == 8.5
    assert reading.timestamp == metric.timestamp
