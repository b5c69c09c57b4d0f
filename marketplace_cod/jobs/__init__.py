"""
Background Jobs Module

Handles scheduled tasks for:
- Releasing held vendor earnings
- Daily COD reconciliation
- Automatic vendor payouts
"""

from marketplace_cod.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from marketplace_cod.jobs.settlement_jobs import (
    generate_cod_daily_report,
    process_vendor_payouts,
    release_held_earnings,
)

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "generate_cod_daily_report",
    "process_vendor_payouts",
    "release_held_earnings",
]
