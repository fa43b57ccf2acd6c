"""Tests for the ``python -m wican_agent`` entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from wican_agent.__main__ import build_parser, main, settings_overrides

_REQUIRED = ["--vehicle-battery-capacity", "64000", "--wican-mac-address", "AA:BB:CC:DD:EE:FF"]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("VEHICLE_BATTERY_CAPACITY", "WICAN_MAC_ADDRESS", "API_URL"):
        monkeypatch.delenv(f"WICAN_AGENT_{name}", raising=False)


def test_overrides_only_include_given_flags() -> None:
    args = build_parser().parse_args(_REQUIRED + ["--wican-timeout", "2.5"])
    assert settings_overrides(args) == {
        "vehicle_battery_capacity": 64000,
        "wican_mac_address": "AA:BB:CC:DD:EE:FF",
        "wican_timeout": 2.5,
    }


def test_short_flags() -> None:
    args = build_parser().parse_args(["-v", "1000", "-w", "AA:BB:CC:DD:EE:FF"])
    assert args.vehicle_battery_capacity == 1000
    assert args.wican_mac_address == "AA:BB:CC:DD:EE:FF"


def test_unknown_log_level_is_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        build_parser().parse_args(_REQUIRED + ["--log-level", "loud"])
    assert excinfo.value.code == 2


def test_malformed_mac_exits_non_zero(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--vehicle-battery-capacity", "1000", "--wican-mac-address", "nope"])
    assert excinfo.value.code == 2
    assert "MAC address must be" in capsys.readouterr().err


def test_missing_capacity_exits_non_zero() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--wican-mac-address", "AA:BB:CC:DD:EE:FF"])
    assert excinfo.value.code == 2


def test_non_positive_capacity_exits_non_zero() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--vehicle-battery-capacity", "0", "--wican-mac-address", "AA:BB:CC:DD:EE:FF"])
    assert excinfo.value.code == 2


def test_unknown_scenario_exits_non_zero() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(_REQUIRED + ["--simulate", "nonexistent", "--once"])
    assert excinfo.value.code == 2


def test_unwritable_log_file_exits_non_zero(tmp_path: Path) -> None:
    log_file = tmp_path / "missing-dir" / "agent.log"
    with pytest.raises(SystemExit) as excinfo:
        main(_REQUIRED + ["--log-file", str(log_file), "--once", "--dry-run"])
    assert excinfo.value.code == 1


def test_once_dry_run_simulation_writes_log_file(tmp_path: Path) -> None:
    log_file = tmp_path / "agent.log"
    main(
        _REQUIRED
        + [
            "--simulate",
            "driving",
            "--dry-run",
            "--once",
            "--log-file",
            str(log_file),
            "--log-format",
            "json",
        ]
    )
    text = log_file.read_text(encoding="utf-8")
    assert "agent_starting" in text
    assert "dry_run_reading" in text
