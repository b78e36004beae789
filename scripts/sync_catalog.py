#!/usr/bin/env python3
"""
Catalog Sync CLI

Run a single Snowflake metadata sync, keep syncing on an interval, or show
recent sync history.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_sync.config import get
from catalog_sync.logging_config import configure_logging, get_logger
from catalog_sync.sync.sync_manager import SyncOrchestrator


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Snowflake catalog metadata sync.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run single sync
  python scripts/sync_catalog.py --once

  # Sync every 10 minutes
  python scripts/sync_catalog.py --daemon --interval 600

  # Show the last 20 runs
  python scripts/sync_catalog.py --history --limit 20
""",
    )

    mode_group = parser.add_mutually_exclusive_group(required=True)
    mode_group.add_argument(
        "--once",
        action="store_true",
        help="Run single sync and exit",
    )
    mode_group.add_argument(
        "--daemon",
        action="store_true",
        help="Run syncs continuously",
    )
    mode_group.add_argument(
        "--history",
        action="store_true",
        help="Show recent sync runs",
    )

    parser.add_argument(
        "--interval",
        type=int,
        default=get("sync", "interval_seconds"),
        help="Sync interval in seconds for daemon mode",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=get("sync", "history_limit"),
        help="Number of runs to show in history mode",
    )
    parser.add_argument(
        "--pid-file",
        type=str,
        default="/tmp/catalog-sync.pid",
        help="PID file for daemon (default: /tmp/catalog-sync.pid)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose output",
    )

    return parser.parse_args(argv)


class SyncDaemon:
    """Run syncs on a fixed interval until signalled."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval: int,
        pid_file: Path,
        logger: logging.Logger,
    ):
        self._orchestrator = orchestrator
        self._interval = interval
        self._pid_file = pid_file
        self._logger = logger
        self._stop = asyncio.Event()
        self._cycle_count = 0

    async def start(self) -> None:
        self._pid_file.write_text(str(os.getpid()))
        self._logger.info(f"Daemon started (PID: {os.getpid()})")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._stop.set)

        try:
            while not self._stop.is_set():
                self._cycle_count += 1
                self._logger.info(f"Starting sync cycle #{self._cycle_count}...")
                result = await self._orchestrator.run_sync()
                status = "succeeded" if result.success else "failed"
                self._logger.info(
                    f"Sync cycle #{self._cycle_count} {status}: "
                    f"{result.stats.new_tables} new, {result.stats.updated_tables} updated, "
                    f"{result.stats.skipped_tables} skipped "
                    f"in {result.stats.processing_time_ms / 1000:.1f}s"
                )

                if not self._stop.is_set():
                    self._logger.info(f"Next sync in {self._interval} seconds")
                    try:
                        await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
                    except asyncio.TimeoutError:
                        pass
        finally:
            if self._pid_file.exists():
                self._pid_file.unlink()
            self._logger.info("Daemon stopped")


async def run_once(orchestrator: SyncOrchestrator, logger: logging.Logger) -> int:
    result = await orchestrator.run_sync()

    logger.info("=" * 60)
    logger.info(f"Sync {'completed' if result.success else 'failed'}: {result.message}")
    logger.info(f"Run ID: {result.run_id}")
    logger.info(f"Total tables: {result.stats.total_tables:,}")
    logger.info(f"New tables: {result.stats.new_tables:,}")
    logger.info(f"Updated tables: {result.stats.updated_tables:,}")
    logger.info(f"Skipped tables: {result.stats.skipped_tables:,}")
    logger.info(f"Processing time: {result.stats.processing_time_ms:,}ms")
    logger.info("=" * 60)

    for error in result.errors[:5]:
        logger.warning(f"  {error}")

    return 0 if result.success else 1


async def print_history(orchestrator: SyncOrchestrator, limit: int) -> None:
    runs = await orchestrator.get_sync_history(limit)

    print("\nSync History")
    print("=" * 78)
    if not runs:
        print("  No sync runs recorded")
    for run in runs:
        status = "OK" if run.success else "FAILED"
        print(
            f"  {run.sync_end_time.isoformat():32} {status:7} "
            f"{run.total_tables:>6} tables  {run.new_tables:>5} new  "
            f"{run.updated_tables:>5} updated  ({run.processing_time_ms:,}ms)"
        )
        for error in run.errors[:3]:
            print(f"      {error}")
    print("=" * 78)


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    configure_logging(
        log_level="DEBUG" if args.verbose else get("app", "log_level"),
        service="catalog_sync_cli",
    )
    logger = get_logger("cli")

    try:
        orchestrator = SyncOrchestrator.from_config(logger=logger)
        await orchestrator.store.initialize()

        if args.history:
            await print_history(orchestrator, args.limit)
            return 0

        if args.daemon:
            daemon = SyncDaemon(
                orchestrator=orchestrator,
                interval=args.interval,
                pid_file=Path(args.pid_file),
                logger=logger,
            )
            await daemon.start()
            return 0

        return await run_once(orchestrator, logger)

    except Exception as e:
        logger.error(f"Sync failed: {e}", exc_info=args.verbose)
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
