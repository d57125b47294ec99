"""Entry point for ThreatLens -- headless correlation and simulation run.

Launches the full stack:
  1. Configuration
  2. Event source (in-memory or SQLite) and optional notification bus
  3. Correlation service
  4. Attack lifecycle simulator
  5. Optional synthetic event feed

and logs a metrics summary at a fixed interval until interrupted.

Usage:
    python -m threatlens [--config PATH] [--duration SECONDS]
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path

from threatlens import __version__

logger = logging.getLogger("threatlens")

DEFAULT_CONFIG_PATH = Path.home() / ".threatlens" / "config.yaml"


def _setup_logging(config) -> None:
    """Configure logging with console and rotating file handler."""
    root_logger = logging.getLogger()
    level = str(config.get("logging.level", "INFO")).upper()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    fmt = logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    )

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root_logger.addHandler(console)

    log_file = config.get("logging.file")
    if log_file:
        log_path = Path(str(log_file)).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=int(config.get("logging.max_bytes", 10 * 1024 * 1024)),
            backupCount=int(config.get("logging.backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setFormatter(fmt)
        root_logger.addHandler(file_handler)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threatlens",
        description="Security-event correlation and attack-lifecycle simulation",
    )
    parser.add_argument(
        "--config", type=Path, default=DEFAULT_CONFIG_PATH,
        help="YAML config file (default: %(default)s)",
    )
    parser.add_argument(
        "--duration", type=float, default=0.0,
        help="Stop after this many seconds (0 = run until interrupted)",
    )
    parser.add_argument(
        "--report-interval", type=float, default=10.0,
        help="Seconds between metrics summaries",
    )
    parser.add_argument(
        "--backend", choices=("memory", "sqlite"),
        help="Override the event source backend",
    )
    parser.add_argument(
        "--no-simulation", action="store_true",
        help="Do not start the attack lifecycle simulator",
    )
    parser.add_argument(
        "--no-demo", action="store_true",
        help="Do not feed synthetic security events",
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print the final summary as JSON on stdout",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Launch ThreatLens."""
    args = _build_parser().parse_args(argv)

    from threatlens.core.config import ThreatLensConfig

    config = ThreatLensConfig.load(args.config)
    if args.backend:
        config.set("source.backend", args.backend)
    if args.no_simulation:
        config.set("simulation.autostart", False)
    if args.no_demo:
        config.set("demo.enabled", False)

    _setup_logging(config)
    logger.info("ThreatLens v%s starting...", __version__)
    logger.info("Config loaded from %s", args.config)

    from threatlens.core.engine import ThreatLensEngine
    from threatlens.core.errors import ThreatLensError

    engine = ThreatLensEngine(config=config)
    done = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: done.set())

    exit_code = 0
    try:
        engine.start()
        elapsed = 0.0
        while not done.is_set():
            wait = args.report_interval
            if args.duration:
                wait = min(wait, max(0.0, args.duration - elapsed))
            if done.wait(wait):
                break
            elapsed += wait
            summary = engine.summary()
            logger.info(
                "correlations=%d avg_score=%d patterns=%d events=%d "
                "blocked=%d mitigated=%d threat_level=%.0f%% state=%s",
                summary.total_correlations,
                summary.average_correlation_score,
                summary.active_pattern_count,
                summary.events_processed_count,
                summary.blocked_count,
                summary.mitigated_count,
                summary.threat_level,
                summary.correlation_state,
            )
            if args.duration and elapsed >= args.duration:
                break
    except ThreatLensError as exc:
        logger.error("ThreatLens failed: %s", exc)
        exit_code = 1
    finally:
        try:
            engine.stop()
        except ThreatLensError as exc:
            logger.error("Shutdown failed: %s", exc)
            exit_code = 1

    if args.json:
        print(json.dumps(engine.summary().to_dict(), indent=2))
    logger.info("ThreatLens shutdown complete")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
