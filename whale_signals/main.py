"""
Main entry point for Whale Signals.

This module provides the CLI interface and the scheduled recompute loop.

Usage:
    # Rank signals from exported JSON
    python -m whale_signals.main --trades trades.json --snapshots leaderboard.json

    # Rank signals from the live Data API
    python -m whale_signals.main --live

    # Recompute every few minutes
    python -m whale_signals.main --live --watch

    # Machine-readable output
    python -m whale_signals.main --live --json
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .api_client import PolymarketAPIError
from .config import settings
from .engine import SignalConfig, SignalEngine
from .loader import DataApiLoader, JsonFileLoader, LoaderError
from .models import SignalReport
from .utils import format_volume, truncate_address, utc_now

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure root logging from settings."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("whale_signals.log"),
        ],
    )


class SignalRunner:
    """
    Runs signal passes against a loader, once or on a schedule.

    Every pass loads a fresh window and builds its own aggregates; a failed
    pass is logged and discarded.
    """

    def __init__(self, loader, engine: Optional[SignalEngine] = None, as_json: bool = False, limit: Optional[int] = None):
        """
        Initialize the runner.

        Args:
            loader: JsonFileLoader or DataApiLoader.
            engine: Signal engine. Built from settings if not provided.
            as_json: Print reports as JSON instead of a table.
            limit: Maximum signals per report.
        """
        self.loader = loader
        self.engine = engine or SignalEngine(SignalConfig.from_settings(settings))
        self.as_json = as_json
        self.limit = limit
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._shutdown_event = asyncio.Event()

    async def run_once(self) -> SignalReport:
        """Load a window and run one pass."""
        now = utc_now()
        window = await self.loader.load(self.engine.window_start(now))
        report = self.engine.run(window.trades, window.snapshots, now=now, limit=self.limit)
        print_report(report, as_json=self.as_json)
        return report

    async def _run_job(self) -> None:
        """Scheduled pass; failures wait for the next tick."""
        try:
            await self.run_once()
        except (PolymarketAPIError, LoaderError) as e:
            logger.error(f"Signal pass failed: {e}")

    async def watch(self) -> None:
        """Recompute every refresh_interval_minutes until stopped."""
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._run_job,
            trigger=IntervalTrigger(minutes=settings.refresh_interval_minutes),
            id="signal_pass",
            name="Whale Signal Pass",
            next_run_time=datetime.now(),  # Run immediately on start
        )
        self.scheduler.start()
        logger.info(f"Scheduler started, interval {settings.refresh_interval_minutes} minutes")

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the runner gracefully."""
        logger.info("Shutting down...")

        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

        await self.loader.close()
        self._shutdown_event.set()

    def handle_signal(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}")
        asyncio.get_running_loop().create_task(self.stop())


def print_report(report: SignalReport, as_json: bool = False) -> None:
    """Print a report as a table or as JSON."""
    if as_json:
        print(report.model_dump_json(indent=2))
        return

    summary = report.summary
    print("\n" + "=" * 78)
    print(f"Whale Signals  {report.since:%Y-%m-%d %H:%M} -> {report.generated_at:%Y-%m-%d %H:%M} UTC")
    print("=" * 78)
    print(f"  Trades:          {summary.trade_count:,}")
    print(f"  Volume:          {format_volume(summary.total_volume)}")
    print(f"  Outcomes:        {summary.unique_outcomes:,} ({summary.expired_outcomes} expired)")
    print(f"  Ranked share:    {summary.ranked_volume_share:.1%} of volume, "
          f"{summary.ranked_trade_share:.1%} of trades")
    print("=" * 78)

    if not report.signals:
        print("  No outcomes with ranked-wallet activity.\n")
        return

    print(f"  {'Pct':>5} {'Comp':>5} {'Leg':>4}  {'Stance':<8} {'Volume':>10} {'Best':>5}  Outcome")
    print("-" * 78)
    for s in report.signals:
        flags = ("!" if s.is_unusual_activity else " ") + ("C" if s.is_concentrated else " ")
        label = f"{s.event_title} / {s.outcome or 'unknown'}"
        best = f"#{s.best_rank}" if s.best_rank else "-"
        print(
            f"  {s.confidence_percentile:5.1f} {s.composite_score:5.2f} {s.legacy_confidence:4d}"
            f"  {s.stance:<8} {format_volume(s.total_volume):>10} {best:>5} {flags} {label[:40]}"
        )
        if s.top_ranks:
            roster = ", ".join(
                f"#{w.rank} {w.account_name or truncate_address(w.address)}" for w in s.top_ranks[:3]
            )
            print(f"  {'':>36}{roster}")
    print()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Whale Signals - rank outcomes by top-wallet activity"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--trades",
        help="JSON file with the trade window"
    )
    source.add_argument(
        "--live",
        action="store_true",
        help="Load trades and leaderboards from the Polymarket Data API"
    )
    parser.add_argument(
        "--snapshots",
        help="JSON file with leaderboard snapshots (with --trades)"
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum signals to print"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON"
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Recompute on a schedule until interrupted"
    )
    args = parser.parse_args()

    configure_logging()

    if args.live:
        loader = DataApiLoader()
    else:
        loader = JsonFileLoader(args.trades, args.snapshots)

    async def run():
        runner = SignalRunner(loader, as_json=args.json, limit=args.limit)

        if args.watch:
            for sig in (signal.SIGTERM, signal.SIGINT):
                signal.signal(sig, runner.handle_signal)
            await runner.watch()
            return

        try:
            await runner.run_once()
        finally:
            await loader.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except (PolymarketAPIError, LoaderError) as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
