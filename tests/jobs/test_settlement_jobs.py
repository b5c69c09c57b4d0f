"""
Tests for the scheduled settlement jobs
"""
import logging
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from marketplace_cod.db_types import utcnow
from marketplace_cod.jobs.scheduler import register_jobs, run_settlement_job, scheduler
from marketplace_cod.jobs import settlement_jobs
from marketplace_cod.models.cod_reconciliation import CodReconciliation, ReconciliationStatus
from marketplace_cod.models.order import OrderStatus
from marketplace_cod.models.vendor import EarningStatus, VendorEarning
from marketplace_cod.services.payout_service import PayoutService


@pytest.fixture
def job_kwargs(session_factory, dispatcher, settings):
    return {"session_factory": session_factory, "dispatcher": dispatcher, "settings": settings}


@pytest.mark.asyncio
async def test_release_held_earnings(uow, make_vendor, make_earning, reload, job_kwargs):
    vendor = await make_vendor()
    due = await make_earning(vendor, 3000, EarningStatus.PENDING, available_at=utcnow() - timedelta(minutes=5))
    await make_earning(vendor, 4000, EarningStatus.PENDING, available_at=utcnow() + timedelta(days=3))
    await uow.commit()

    summary = await settlement_jobs.release_held_earnings(**job_kwargs)

    assert summary["released"] == 1
    assert (await reload(VendorEarning, due.id)).status == EarningStatus.AVAILABLE.value


@pytest.mark.asyncio
async def test_generate_cod_daily_report_with_auto_verify(uow, make_order, reload, job_kwargs):
    day = date(2026, 10, 18)
    collected_at = datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)
    clean_rider, short_rider = uuid.uuid4(), uuid.uuid4()
    await make_order(status=OrderStatus.DELIVERED, total_cents=10000, delivery_person_id=clean_rider,
                     cod_collected_at=collected_at, cod_amount_collected_cents=10000)
    await make_order(status=OrderStatus.DELIVERED, total_cents=20000, delivery_person_id=short_rider,
                     cod_collected_at=collected_at, cod_amount_collected_cents=19000)
    await uow.commit()

    summary = await settlement_jobs.generate_cod_daily_report(day=day, **job_kwargs)

    assert summary["date"] == "2026-10-18"
    assert summary["created"] == 2
    assert summary["auto_verified"] == 1
    assert summary["total_orders"] == 2
    assert summary["total_expected_cents"] == 30000
    assert summary["total_collected_cents"] == 29000
    assert summary["total_discrepancy_cents"] == -1000

    again = await settlement_jobs.generate_cod_daily_report(day=day, **job_kwargs)
    assert again["created"] == 0
    assert again["skipped"] == 2


@pytest.mark.asyncio
async def test_generate_cod_daily_report_without_auto_verify(uow, make_order, job_kwargs):
    rider = uuid.uuid4()
    await make_order(status=OrderStatus.DELIVERED, total_cents=10000, delivery_person_id=rider,
                     cod_collected_at=datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc),
                     cod_amount_collected_cents=10000)
    await uow.commit()

    summary = await settlement_jobs.generate_cod_daily_report(day=date(2026, 10, 18), auto_verify=False, **job_kwargs)

    assert summary["created"] == 1
    assert summary["auto_verified"] == 0
    async with job_kwargs["session_factory"]() as session:
        statuses = (await session.execute(select(CodReconciliation.status))).scalars().all()
    assert list(statuses) == [ReconciliationStatus.PENDING.value]


@pytest.mark.asyncio
async def test_process_vendor_payouts(uow, make_vendor, make_earning, reload, job_kwargs):
    eager = await make_vendor(business_name="Eager", auto_payout_enabled=True)
    manual = await make_vendor(business_name="Manual", auto_payout_enabled=False)
    held = await make_earning(eager, 3000, EarningStatus.PENDING, available_at=utcnow() - timedelta(hours=1))
    await make_earning(eager, 4000)
    await make_earning(manual, 5000)
    await uow.commit()

    summary = await settlement_jobs.process_vendor_payouts(**job_kwargs)

    assert summary["released"] == 1
    assert summary["vendors"] == 2
    assert summary["processed"] == 1
    assert summary["skipped"] == 1
    assert summary["failed"] == 0
    assert len(summary["payout_refs"]) == 1
    # The earning released by the same run is included in the payout
    assert (await reload(VendorEarning, held.id)).status == EarningStatus.PROCESSING.value


@pytest.mark.asyncio
async def test_one_failing_vendor_does_not_stop_the_run(uow, make_vendor, make_earning, job_kwargs, monkeypatch):
    broken = await make_vendor(business_name="Broken")
    healthy = await make_vendor(business_name="Healthy")
    await make_earning(broken, 5000)
    await make_earning(healthy, 5000)
    await uow.commit()

    original = PayoutService.process_automatic_payout

    async def flaky(self, vendor):
        if vendor.business_name == "Broken":
            raise RuntimeError("database hiccup")
        return await original(self, vendor)

    monkeypatch.setattr(PayoutService, "process_automatic_payout", flaky)

    summary = await settlement_jobs.process_vendor_payouts(**job_kwargs)

    assert summary["failed"] == 1
    assert summary["processed"] == 1


@pytest.mark.asyncio
async def test_process_vendor_payouts_single_vendor(uow, make_vendor, make_earning, job_kwargs):
    target = await make_vendor(business_name="Target")
    other = await make_vendor(business_name="Other")
    await make_earning(target, 5000)
    await make_earning(other, 5000)
    await uow.commit()

    summary = await settlement_jobs.process_vendor_payouts(vendor_id=target.id, **job_kwargs)

    assert summary["vendors"] == 1
    assert summary["processed"] == 1


def test_register_jobs():
    register_jobs()
    try:
        job_ids = {job.id for job in scheduler.get_jobs()}
        assert job_ids == {"release_held_earnings", "generate_cod_daily_report", "process_vendor_payouts"}
    finally:
        scheduler.remove_all_jobs()


@pytest.mark.asyncio
async def test_run_settlement_job_logs_failures(monkeypatch, caplog):
    async def boom():
        raise RuntimeError("no database")

    monkeypatch.setattr(settlement_jobs, "release_held_earnings", boom)

    # Must not raise into the scheduler
    with caplog.at_level(logging.ERROR, logger="marketplace_cod.jobs.scheduler"):
        await run_settlement_job("release_held_earnings")

    assert "Job 'release_held_earnings' failed: no database" in caplog.text
