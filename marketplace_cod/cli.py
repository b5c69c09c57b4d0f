"""
Command line entry point for the settlement jobs.

    marketplace-cod init-db
    marketplace-cod cod-report [DATE] [--delivery-person UUID] [--auto-verify]
    marketplace-cod process-payouts [--vendor-id UUID]
    marketplace-cod release-earnings
    marketplace-cod scheduler
"""

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import date
from typing import List, Optional

from marketplace_cod.core.logging_config import setup_logging
from marketplace_cod.core.money import format_cents

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def _parse_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid id '{value}', expected a UUID")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="marketplace-cod", description="COD settlement jobs")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables")

    report = commands.add_parser("cod-report", help="Generate the daily COD reconciliation report")
    report.add_argument("date", nargs="?", type=_parse_date, help="Report date (YYYY-MM-DD), defaults to yesterday")
    report.add_argument("--delivery-person", type=_parse_uuid, help="Only this delivery person")
    report.add_argument("--auto-verify", action="store_true", help="Auto-verify zero-discrepancy reconciliations")

    payouts = commands.add_parser("process-payouts", help="Create automatic vendor payouts")
    payouts.add_argument("--vendor-id", type=_parse_uuid, help="Only this vendor")

    commands.add_parser("release-earnings", help="Make earnings past their hold period available")
    commands.add_parser("scheduler", help="Run the background job scheduler")
    return parser


async def _init_db() -> int:
    from marketplace_cod.database import init_db

    print("Creating database tables...")
    await init_db()
    print("Database tables created successfully!")
    return 0


async def _cod_report(args) -> int:
    from marketplace_cod.jobs.settlement_jobs import generate_cod_daily_report

    summary = await generate_cod_daily_report(
        day=args.date,
        delivery_person_id=args.delivery_person,
        auto_verify=args.auto_verify,
    )
    print(f"COD reconciliation for {summary['date']}")
    print(f"  Reports created:  {summary['created']}")
    print(f"  Already existing: {summary['skipped']}")
    print(f"  Orders:           {summary['total_orders']}")
    print(f"  Expected:         {format_cents(summary['total_expected_cents'])}")
    print(f"  Collected:        {format_cents(summary['total_collected_cents'])}")
    print(f"  Discrepancy:      {format_cents(summary['total_discrepancy_cents'])}")
    if args.auto_verify:
        print(f"  Auto-verified:    {summary['auto_verified']}")
    return 0


async def _process_payouts(args) -> int:
    from marketplace_cod.jobs.settlement_jobs import process_vendor_payouts

    summary = await process_vendor_payouts(vendor_id=args.vendor_id)
    print(f"Made {summary['released']} earnings available for payout")
    for ref in summary["payout_refs"]:
        print(f"  Created payout {ref}")
    print(f"Processed: {summary['processed']}  Skipped: {summary['skipped']}  "
          f"Failed: {summary['failed']}  Total vendors: {summary['vendors']}")
    return 1 if summary["failed"] else 0


async def _release_earnings() -> int:
    from marketplace_cod.jobs.settlement_jobs import release_held_earnings

    summary = await release_held_earnings()
    print(f"Made {summary['released']} earnings available for payout")
    return 0


async def _run_scheduler() -> int:
    from marketplace_cod.jobs.scheduler import get_job_status, shutdown_scheduler, start_scheduler
    from marketplace_cod.services.notification_service import register_notification_handlers

    register_notification_handlers()
    start_scheduler()
    for job in get_job_status():
        print(f"{job['name']}: next run {job['next_run_time']}")
    try:
        await asyncio.Event().wait()
    finally:
        shutdown_scheduler()
    return 0


async def run(args) -> int:
    if args.command == "init-db":
        return await _init_db()
    if args.command == "cod-report":
        return await _cod_report(args)
    if args.command == "process-payouts":
        return await _process_payouts(args)
    if args.command == "release-earnings":
        return await _release_earnings()
    if args.command == "scheduler":
        return await _run_scheduler()
    raise ValueError(f"Unknown command {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
