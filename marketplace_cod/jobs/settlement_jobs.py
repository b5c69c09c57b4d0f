"""
Settlement Jobs

Background jobs for the COD settlement core:
- Releasing earnings whose hold period has ended
- Daily COD reconciliation report
- Automatic vendor payouts

Each job opens its own unit of work. Per-vendor payouts run in separate
units of work so one failing vendor does not roll back the others.
"""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from marketplace_cod.config import Settings, get_settings
from marketplace_cod.core.events import EventDispatcher
from marketplace_cod.database import unit_of_work
from marketplace_cod.models.vendor import Vendor, VendorStatus
from marketplace_cod.services.cod_reconciliation_service import CodReconciliationService
from marketplace_cod.services.payout_service import PayoutService
from marketplace_cod.services.vendor_earning_service import VendorEarningService

logger = logging.getLogger(__name__)


async def release_held_earnings(
    session_factory: Optional[async_sessionmaker] = None,
    dispatcher: Optional[EventDispatcher] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """Flip PENDING earnings past their hold period to AVAILABLE. Runs hourly."""
    logger.info("Starting held earnings release...")
    start_time = datetime.now(timezone.utc)

    async with unit_of_work(session_factory, dispatcher) as uow:
        released = await VendorEarningService(uow, settings or get_settings()).make_earnings_available()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(f"Held earnings release completed in {duration:.2f}s: {released} released")
    return {"released": released, "duration_seconds": duration}


async def generate_cod_daily_report(
    day: Optional[date] = None,
    delivery_person_id: Optional[uuid.UUID] = None,
    auto_verify: bool = True,
    session_factory: Optional[async_sessionmaker] = None,
    dispatcher: Optional[EventDispatcher] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Reconcile yesterday's COD collections (or ``day``). Runs daily at 01:00.

    With ``auto_verify`` the zero-discrepancy sweep runs in the same unit
    of work.
    """
    day = day or (datetime.now(timezone.utc).date() - timedelta(days=1))
    logger.info(f"Generating COD reconciliation report for {day}...")

    async with unit_of_work(session_factory, dispatcher) as uow:
        service = CodReconciliationService(uow, settings or get_settings())
        report = await service.generate_daily_report(day, delivery_person_id)
        auto_verified = await service.auto_verify_zero_discrepancy() if auto_verify else 0

    total_orders = sum(r.total_orders_count for r in report.created)
    total_expected = sum(r.total_cod_amount_cents for r in report.created)
    total_collected = sum(r.collected_amount_cents for r in report.created)

    summary = {
        "date": day.isoformat(),
        "created": report.created_count,
        "skipped": len(report.skipped_delivery_person_ids),
        "auto_verified": auto_verified,
        "total_orders": total_orders,
        "total_expected_cents": total_expected,
        "total_collected_cents": total_collected,
        "total_discrepancy_cents": total_collected - total_expected,
    }
    logger.info(f"COD daily reconciliation report generated: {summary}")
    return summary


async def process_vendor_payouts(
    vendor_id: Optional[uuid.UUID] = None,
    session_factory: Optional[async_sessionmaker] = None,
    dispatcher: Optional[EventDispatcher] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Release held earnings, then request an automatic payout for every
    approved vendor (or only ``vendor_id``). Runs weekly, Monday 02:00.
    """
    settings = settings or get_settings()
    logger.info("Starting automatic payout processing...")

    released = (await release_held_earnings(session_factory, dispatcher, settings))["released"]

    async with unit_of_work(session_factory, dispatcher) as uow:
        query = select(Vendor.id).where(Vendor.status == VendorStatus.APPROVED.value)
        if vendor_id is not None:
            query = query.where(Vendor.id == vendor_id)
        vendor_ids = list((await uow.session.execute(query)).scalars().all())

    created, skipped, failed = [], 0, 0
    for current_id in vendor_ids:
        try:
            async with unit_of_work(session_factory, dispatcher) as uow:
                vendor = await uow.session.get(Vendor, current_id)
                payout = await PayoutService(uow, settings).process_automatic_payout(vendor)
                if payout is not None:
                    created.append(payout.payout_ref)
                    logger.info(f"Created payout {payout.payout_ref} for {vendor.business_name}")
                else:
                    skipped += 1
        except Exception as e:
            failed += 1
            logger.error(f"Automatic payout processing failed for vendor {current_id}: {e}")

    summary = {
        "released": released,
        "vendors": len(vendor_ids),
        "processed": len(created),
        "skipped": skipped,
        "failed": failed,
        "payout_refs": created,
    }
    logger.info(
        f"Automatic payouts complete: {len(created)} processed, {skipped} skipped, "
        f"{failed} failed of {len(vendor_ids)} vendors"
    )
    return summary
