"""
Repair or rotate index headers for every block under a namespace prefix.

Run via: blockrepair  (or python -m blockrepair.cli.repair)

Configuration comes from BLOCKREPAIR_* environment variables and an optional
YAML file (BLOCKREPAIR_CONFIG_FILE). The most common settings can be
overridden on the command line.

Exit status:
  0   run finished (individual blocks may still have failed, see summary)
  1   invalid configuration, storage setup failure or discovery failure
  130 interrupted; blocks in flight were finished, the rest not started
"""

import argparse
import asyncio
import signal
import sys
from typing import Any

from blockrepair.blocks.coordinator import RunReport, run_transitions
from blockrepair.blocks.discovery import BlockMatcher, DiscoveryError, discover_blocks
from blockrepair.blocks.retry import RetryPolicy
from blockrepair.blocks.transition import HeaderTransitionEngine
from blockrepair.config import (
    ConfigurationError,
    DiscoveryStrategy,
    RunMode,
    Settings,
    load_settings,
)
from blockrepair.logging_config import configure_logging, get_logger
from blockrepair.storage import create_storage
from blockrepair.storage.protocol import ObjectStore

logger = get_logger("blockrepair.repair")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="blockrepair",
        description="Synthesize or rotate index headers of time-series blocks in a bucket.",
    )
    parser.add_argument("--prefix", help="namespace prefix to scan (e.g. a tenant root)")
    parser.add_argument("--mode", choices=[m.value for m in RunMode])
    parser.add_argument("--strategy", choices=[s.value for s in DiscoveryStrategy])
    parser.add_argument("--concurrency", type=int, help="blocks processed at once")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="report what would change without writing",
    )
    parser.add_argument("--log-level")
    return parser.parse_args(argv)


def settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate CLI flags into settings init kwargs (unset flags are omitted)."""
    overrides: dict[str, Any] = {}
    if args.prefix is not None:
        overrides["namespace_prefix"] = args.prefix
    if args.mode is not None:
        overrides["mode"] = args.mode
    if args.strategy is not None:
        overrides["discovery"] = {"strategy": args.strategy}
    if args.concurrency is not None:
        overrides["concurrency"] = args.concurrency
    if args.dry_run is not None:
        overrides["dry_run"] = args.dry_run
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    return overrides


async def repair(
    settings: Settings, store: ObjectStore, stop: asyncio.Event | None = None
) -> RunReport:
    """Discover blocks and transition each one. Closes the store when done.

    Raises:
        DiscoveryError: If the block list cannot be trusted; nothing was changed.
    """
    try:
        blocks = await discover_blocks(
            store,
            settings.namespace_prefix,
            strategy=settings.discovery.strategy,
            matcher=BlockMatcher.from_pattern(settings.discovery.block_id_pattern),
            max_depth=settings.discovery.max_depth,
        )
        engine = HeaderTransitionEngine(
            store,
            mode=settings.mode,
            retry=RetryPolicy.from_config(settings.retry),
            dry_run=settings.dry_run,
        )
        return await run_transitions(
            blocks, engine.transition, concurrency=settings.concurrency, stop=stop
        )
    finally:
        await store.close()


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            return


async def run(settings: Settings) -> int:
    stop = asyncio.Event()
    _install_signal_handlers(stop)

    logger.info(
        "Starting block header repair",
        prefix=settings.namespace_prefix,
        mode=str(settings.mode),
        strategy=str(settings.discovery.strategy),
        concurrency=settings.concurrency,
        dry_run=settings.dry_run,
    )

    try:
        store = create_storage(settings.storage)
    except (OSError, ValueError) as e:
        logger.error("Could not set up storage", error=str(e))
        return EXIT_FATAL

    try:
        report = await repair(settings, store, stop)
    except DiscoveryError as e:
        logger.error("Block discovery failed, nothing was changed", error=str(e))
        return EXIT_FATAL

    logger.info(
        "Run complete",
        blocks=len(report.results) + len(report.not_started),
        not_started=len(report.not_started),
        dry_run=settings.dry_run,
        **report.counts(),
    )
    for result in report.failed:
        logger.warning("Failed block", block=result.block.prefix, detail=result.detail)

    return EXIT_INTERRUPTED if report.interrupted else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        settings = load_settings(**settings_overrides(args))
    except ConfigurationError as e:
        configure_logging(json_logs=False)
        logger.error("Invalid configuration", error=str(e))
        return EXIT_FATAL

    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)

    return asyncio.run(run(settings))


if __name__ == "__main__":
    sys.exit(main())
