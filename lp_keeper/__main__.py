"""
Command line entry point.

Usage::
    python -m lp_keeper --once
    python -m lp_keeper --db keeper.db --interval 60 --enable-price-feed
"""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Optional, Sequence

import structlog

from .config.loader import ConfigLoader
from .config.validation import ConfigValidator
from .errors import (
    AdvisoryUnavailableError,
    CycleInProgressError,
    DataQualityError,
    FatalInfrastructureError,
)
from .feeds.price_feed import BinancePriceFeed
from .keeper import KeeperCycle
from .logging.config import configure_logging
from .persistence.sqlite_store import SqliteRepository
from .signals.openai_source import OpenAICompatibleSignalSource

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CYCLE_BUSY = 2

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lp-keeper",
        description="Concentrated liquidity rebalancing keeper",
    )
    parser.add_argument("--db", default="keeper.db", help="SQLite database path")
    parser.add_argument("--config-dir", type=Path, default=None,
                        help="Directory containing keeper.yaml")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    mode.add_argument("--interval", type=float, default=None,
                      help="Seconds between cycles (overrides keeper.interval_seconds)")
    parser.add_argument("--batch-size", type=int, default=None,
                        help="Max jobs executed per cycle")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--enable-signals", action="store_true",
                        help="Refresh advisory signals each cycle")
    parser.add_argument("--enable-price-feed", action="store_true",
                        help="Record pool prices from the external feed each cycle")
    return parser


def cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate CLI flags into the highest-precedence config tier."""
    overrides: dict[str, Any] = {}
    if args.interval is not None:
        overrides.setdefault("keeper", {})["interval_seconds"] = args.interval
    if args.batch_size is not None:
        overrides.setdefault("scheduler", {})["batch_size"] = args.batch_size
    if args.enable_signals:
        overrides.setdefault("signals", {})["enabled"] = True
    if args.enable_price_feed:
        overrides.setdefault("price_feed", {})["enabled"] = True
    return overrides


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level, format_json=args.json_logs)

    overrides = cli_overrides(args)
    loader = ConfigLoader.create(args.config_dir)
    try:
        errors = ConfigValidator.validate_config(loader.merge_config(overrides))
        if errors:
            for error in errors:
                logger.error("Invalid configuration", field=error.field,
                             message=error.message, value=error.value)
            return EXIT_FAILURE
        config = loader.build_config(overrides)
    except DataQualityError as e:
        logger.error("Could not load configuration", error=str(e))
        return EXIT_FAILURE

    try:
        repository = SqliteRepository(args.db)
    except FatalInfrastructureError as e:
        logger.error("Could not open keeper database", db=args.db, error=str(e))
        return EXIT_FAILURE

    signal_source = None
    if config.signals.enabled:
        try:
            signal_source = OpenAICompatibleSignalSource(config.signals)
        except AdvisoryUnavailableError as e:
            logger.warning("Advisory signals disabled", error=str(e))

    price_feed = BinancePriceFeed(config.price_feed) if config.price_feed.enabled else None

    keeper = KeeperCycle(repository, config, price_feed=price_feed, signal_source=signal_source)

    stop = threading.Event()

    def _request_stop(signum: int, frame: Any) -> None:
        logger.info("Shutdown requested", signal=signum)
        stop.set()

    previous_handlers = {
        signum: signal.signal(signum, _request_stop) for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        return run_forever(keeper, stop, once=args.once,
                           interval_seconds=config.keeper.interval_seconds)
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


def run_forever(keeper: KeeperCycle, stop: threading.Event, once: bool,
                interval_seconds: float) -> int:
    """Run cycles until stopped. Returns the process exit code."""
    while not stop.is_set():
        try:
            keeper.run_cycle(stop)
        except CycleInProgressError as e:
            logger.error("Keeper cycle already running", started_at=e.started_at)
            return EXIT_CYCLE_BUSY
        except FatalInfrastructureError as e:
            logger.error("Keeper cycle aborted", error=str(e), exc_info=True)
            return EXIT_FAILURE

        if once:
            break
        stop.wait(interval_seconds)

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
