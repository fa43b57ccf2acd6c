"""CLI entry point: ``python -m wican_agent --vehicle-battery-capacity WH --wican-mac-address MAC``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

TRACE = 5

_LEVELS = {
    "off": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}


def _configure_logging(level: str, fmt: str, log_file: Optional[str] = None) -> None:
    """Set up structlog with console or JSON rendering.

    Raises ``OSError`` if *log_file* cannot be opened for appending.
    """
    logging.addLevelName(TRACE, "TRACE")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        format="%(message)s",
        level=_LEVELS.get(level, logging.INFO),
        handlers=handlers,
        force=True,
    )

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not log_file))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    version = __import__("wican_agent").__version__
    parser = argparse.ArgumentParser(
        prog="wican_agent",
        description="Relay WiCAN Pro battery state to the aa-proxy-rs EV Logger",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {version}")
    parser.add_argument(
        "-v",
        "--vehicle-battery-capacity",
        type=int,
        help="Vehicle battery capacity in Wh (required)",
    )
    parser.add_argument(
        "-w",
        "--wican-mac-address",
        help="WiCAN MAC address, e.g. AA:BB:CC:DD:EE:FF (required)",
    )
    parser.add_argument("--wican-passkey", type=int, help="WiCAN passkey (default 123456)")
    parser.add_argument(
        "--wican-max-connect-retries",
        type=int,
        help="Connection attempts per cycle (default 5)",
    )
    parser.add_argument(
        "--wican-timeout",
        type=float,
        help="Per-attempt timeout in seconds (default 10)",
    )
    parser.add_argument(
        "--wican-update-frequency-minutes",
        type=int,
        help="Minutes between updates (default 1)",
    )
    parser.add_argument(
        "--api-url",
        help="aa-proxy-rs battery endpoint (default http://localhost/battery)",
    )
    parser.add_argument("--log-file", help="Also append logs to this file")
    parser.add_argument(
        "--log-level",
        choices=("off", "error", "warn", "info", "debug", "trace"),
        help="Log level (default info)",
    )
    parser.add_argument(
        "--log-format",
        choices=("console", "json"),
        help="Log output format (default console)",
    )
    parser.add_argument(
        "--simulate",
        metavar="SCENARIO",
        help="Use a simulated WiCAN scenario instead of Bluetooth",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log the payload; never POST to the API",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run a single poll cycle then exit",
    )
    return parser


def settings_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map parsed CLI flags onto ``AgentSettings`` field names.

    Flags left unset fall through to env vars / ``.env`` / defaults.
    """
    fields = (
        "vehicle_battery_capacity",
        "wican_mac_address",
        "wican_passkey",
        "wican_max_connect_retries",
        "wican_timeout",
        "wican_update_frequency_minutes",
        "api_url",
        "log_file",
        "log_level",
        "log_format",
        "simulate",
        "dry_run",
    )
    return {
        name: getattr(args, name)
        for name in fields
        if getattr(args, name, None) is not None
    }


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load settings from env / .env file first, then override with CLI flags.
    from wican_agent.config import AgentSettings

    try:
        settings = AgentSettings(**settings_overrides(args))
    except ValidationError as exc:
        parser.exit(2, f"wican_agent: invalid configuration\n{exc}\n")

    try:
        _configure_logging(settings.log_level, settings.log_format, settings.log_file)
    except OSError as exc:
        parser.exit(
            1,
            f"wican_agent: could not start logging to file "
            f"'{settings.log_file}': {exc}\n",
        )

    from wican_agent.agent_loop import create_transport, run_agent

    try:
        transport = create_transport(settings)
    except ValueError as exc:
        parser.exit(2, f"wican_agent: {exc}\n")

    logger = structlog.get_logger("wican_agent")
    logger.info(
        "agent_starting",
        version=__import__("wican_agent").__version__,
        mode="simulation" if settings.is_simulation else "ble",
        address=settings.wican_mac_address,
        capacity_wh=settings.vehicle_battery_capacity,
        update_frequency_minutes=settings.wican_update_frequency_minutes,
        api_url=settings.api_url,
        dry_run=settings.dry_run,
        once=args.once,
    )

    try:
        asyncio.run(run_agent(settings, once=args.once, transport=transport))
    except KeyboardInterrupt:
        logger.info("agent_interrupted")
        sys.exit(0)
    logger.info("agent_stopped")


if __name__ == "__main__":
    main()
