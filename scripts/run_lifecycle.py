#!/usr/bin/env python3
"""
Cache & Data Lifecycle Runner

Runs the lifecycle batch jobs by hand, outside the scheduler.

Usage:
    python scripts/run_lifecycle.py status
    python scripts/run_lifecycle.py archive --scope month
    python scripts/run_lifecycle.py retention
    python scripts/run_lifecycle.py refresh --platform meta [--client c1] [--force]
    python scripts/run_lifecycle.py collect --platform meta --scope week --lookback 53 --offset 0 --batch-size 5
    python scripts/run_lifecycle.py schedule

Refresh, collect and schedule need connectors: pass --connectors
package.module:factory or set CONNECTOR_FACTORY in the environment.
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from agency_reports.connectors.registry import load_connectors
from agency_reports.models.base import SessionLocal, init_db
from agency_reports.services.lifecycle_service import LifecycleService
from agency_reports.utils.logger import log


def print_job(result):
    print(f"\n{'='*60}")
    print(f"{result.job}: {result.status.upper()}")
    print(f"{'='*60}")
    print(f"Succeeded: {result.succeeded}  Failed: {result.failed}  Skipped: {result.skipped}")
    print(f"Duration: {result.duration_seconds:.1f}s")

    failures = [u for u in result.units if u.status == "failed"]
    if failures:
        print(f"\nFailures ({len(failures)}):")
        for unit in failures[:10]:
            print(f"  - {unit.unit}: {unit.error}")
        if len(failures) > 10:
            print(f"  ... and {len(failures) - 10} more")
    print(f"{'='*60}\n")


async def run_job(args) -> int:
    connectors = load_connectors(args.connectors) if args.command in ("refresh", "collect") else {}
    if args.command in ("refresh", "collect") and args.platform not in connectors:
        print(f"ERROR: no connector configured for platform '{args.platform}'")
        return 2

    db = SessionLocal()
    try:
        service = LifecycleService(db, connectors)

        if args.command == "status":
            print(json.dumps(service.get_lifecycle_status(), indent=2))
            return 0

        if args.command == "archive":
            result = await service.archive_period(args.scope)
        elif args.command == "retention":
            result = await service.enforce_retention()
        elif args.command == "refresh":
            result = await service.refresh(args.client, args.platform, force_refresh=args.force, scope=args.scope)
        else:
            result = await service.collect_missing(
                args.platform,
                lookback_periods=args.lookback,
                batch_offset=args.offset,
                batch_size=args.batch_size,
                scope=args.scope
            )

        print_job(result)
        return 0 if result.status == "success" else 1
    finally:
        db.close()


async def run_scheduler(args):
    from agency_reports.scheduler import start_scheduler

    start_scheduler(load_connectors(args.connectors))
    # Keep the loop alive for the scheduler
    await asyncio.Event().wait()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run cache and data lifecycle jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--connectors", type=str, default=None,
        help="Connector factory as package.module:callable (default: CONNECTOR_FACTORY)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show cache and summary counts")

    archive = sub.add_parser("archive", help="Archive closed periods from the cache")
    archive.add_argument("--scope", choices=["month", "week", "day"], default="month")

    sub.add_parser("retention", help="Delete summaries and cache rows past their retention horizon")

    refresh = sub.add_parser("refresh", help="Refresh current-period caches")
    refresh.add_argument("--platform", required=True, help="meta or google")
    refresh.add_argument("--client", default="all", help="Client id (default: all active clients)")
    refresh.add_argument("--scope", choices=["month", "week", "day"], default="month")
    refresh.add_argument("--force", action="store_true", help="Ignore cache freshness")

    collect = sub.add_parser("collect", help="Backfill missing closed periods")
    collect.add_argument("--platform", required=True, help="meta or google")
    collect.add_argument("--scope", choices=["week", "month"], default="week")
    collect.add_argument("--lookback", type=int, default=None, help="Completed periods to check")
    collect.add_argument("--offset", type=int, default=0, help="Skip the most recent N periods (default: 0)")
    collect.add_argument(
        "--batch-size", type=int, default=None,
        help="Missing periods to fetch per client (default: GAP_FILL_BATCH_SIZE, 0 for no limit)"
    )

    sub.add_parser("schedule", help="Run the lifecycle scheduler until interrupted")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    init_db()

    if args.command == "schedule":
        try:
            asyncio.run(run_scheduler(args))
        except KeyboardInterrupt:
            log.info("Scheduler interrupted")
        return 0

    return asyncio.run(run_job(args))


if __name__ == "__main__":
    sys.exit(main())
