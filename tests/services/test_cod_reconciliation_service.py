"""
Tests for daily COD reconciliation
"""
import uuid
from datetime import date, datetime, timezone

import pytest

from marketplace_cod.models.cod_reconciliation import CodReconciliation, ReconciliationStatus
from marketplace_cod.models.order import OrderStatus, PaymentMethod
from marketplace_cod.services.cod_reconciliation_service import (
    CodReconciliationService,
    accuracy,
    day_window,
)

REPORT_DAY = date(2026, 10, 18)


@pytest.fixture
def reconciliation_service(uow, settings):
    return CodReconciliationService(uow, settings)


@pytest.fixture
def make_collected_order(make_order):
    async def _make(rider, total_cents, collected_cents, at=None, payment_method=PaymentMethod.COD):
        return await make_order(
            status=OrderStatus.DELIVERED,
            payment_method=payment_method,
            total_cents=total_cents,
            delivery_person_id=rider,
            cod_collected_at=at or datetime(2026, 10, 18, 14, 30, tzinfo=timezone.utc),
            cod_amount_collected_cents=collected_cents,
        )

    return _make


@pytest.fixture
def make_reconciliation(uow):
    async def _make(expected_cents, collected_cents, status=ReconciliationStatus.PENDING, day=REPORT_DAY):
        reconciliation = CodReconciliation(
            date=day,
            delivery_person_id=uuid.uuid4(),
            total_orders_count=1,
            total_cod_amount_cents=expected_cents,
            collected_amount_cents=collected_cents,
            discrepancy_cents=collected_cents - expected_cents,
            status=status.value,
        )
        uow.session.add(reconciliation)
        await uow.session.flush()
        return reconciliation

    return _make


def test_day_window_is_utc_half_open():
    start, end = day_window(REPORT_DAY)
    assert start == datetime(2026, 10, 18, tzinfo=timezone.utc)
    assert end == datetime(2026, 10, 19, tzinfo=timezone.utc)


def test_accuracy():
    assert accuracy(50000, 50000) == 100.0
    assert accuracy(49000, 50000) == 98.0
    assert accuracy(0, 0) == 100.0


# ==================== REPORT GENERATION ====================

@pytest.mark.asyncio
async def test_daily_report_one_row_per_delivery_person(reconciliation_service, make_collected_order):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    await make_collected_order(alice, 10000, 10000)
    await make_collected_order(alice, 20000, 19500)
    await make_collected_order(bob, 5000, 5000)
    # Outside the day window and non-COD orders are ignored
    await make_collected_order(bob, 7000, 7000, at=datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc))
    await make_collected_order(bob, 9000, 9000, payment_method=PaymentMethod.CARD)

    report = await reconciliation_service.generate_daily_report(REPORT_DAY)

    assert report.created_count == 2
    rows = {r.delivery_person_id: r for r in report.created}
    assert rows[alice].total_orders_count == 2
    assert rows[alice].total_cod_amount_cents == 30000
    assert rows[alice].collected_amount_cents == 29500
    assert rows[alice].discrepancy_cents == -500
    assert rows[alice].status == ReconciliationStatus.PENDING.value
    assert rows[bob].total_orders_count == 1
    assert rows[bob].discrepancy_cents == 0


@pytest.mark.asyncio
async def test_daily_report_skips_existing_rows(reconciliation_service, make_collected_order):
    rider = uuid.uuid4()
    await make_collected_order(rider, 10000, 10000)

    first = await reconciliation_service.generate_daily_report(REPORT_DAY)
    second = await reconciliation_service.generate_daily_report(REPORT_DAY)

    assert first.created_count == 1
    assert second.created_count == 0
    assert second.skipped_delivery_person_ids == [rider]


@pytest.mark.asyncio
async def test_daily_report_for_one_delivery_person(reconciliation_service, make_collected_order):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    await make_collected_order(alice, 10000, 10000)
    await make_collected_order(bob, 5000, 5000)

    report = await reconciliation_service.generate_daily_report(REPORT_DAY, delivery_person_id=bob)

    assert [r.delivery_person_id for r in report.created] == [bob]


@pytest.mark.asyncio
async def test_daily_report_empty_day(reconciliation_service):
    report = await reconciliation_service.generate_daily_report(REPORT_DAY)
    assert report.created == []


# ==================== REVIEW ====================

@pytest.mark.asyncio
async def test_verify_matching_count(reconciliation_service, make_reconciliation):
    reconciliation = await make_reconciliation(50000, 50000)
    checker = uuid.uuid4()

    result = await reconciliation_service.verify_collection(reconciliation.id, 50000, verified_by=checker)

    assert result.success
    assert result.message == "Collection verified successfully with no discrepancy."
    assert reconciliation.status == ReconciliationStatus.VERIFIED.value
    assert reconciliation.discrepancy_cents == 0
    assert reconciliation.verified_by == checker
    assert reconciliation.verified_at is not None


@pytest.mark.asyncio
async def test_verify_with_discrepancy_disputes(reconciliation_service, make_reconciliation):
    reconciliation = await make_reconciliation(50000, 50000)

    result = await reconciliation_service.verify_collection(reconciliation.id, 50500, notes="Extra note found")

    assert result.success
    assert result.message == "Collection verified with discrepancy of $5.00. Status set to disputed."
    assert reconciliation.status == ReconciliationStatus.DISPUTED.value
    assert reconciliation.collected_amount_cents == 50500
    assert reconciliation.discrepancy_cents == 500
    assert reconciliation.recon_metadata["verification"]["actual_amount_cents"] == 50500


@pytest.mark.asyncio
async def test_verify_rejects_negative_amount(reconciliation_service, make_reconciliation):
    reconciliation = await make_reconciliation(50000, 50000)
    with pytest.raises(ValueError):
        await reconciliation_service.verify_collection(reconciliation.id, -1)


@pytest.mark.asyncio
async def test_verify_refused_once_resolved(reconciliation_service, make_reconciliation):
    reconciliation = await make_reconciliation(50000, 49000, ReconciliationStatus.RESOLVED)

    result = await reconciliation_service.verify_collection(reconciliation.id, 50000)

    assert not result.success
    assert reconciliation.status == ReconciliationStatus.RESOLVED.value


@pytest.mark.asyncio
async def test_handle_discrepancy_without_resolution_disputes(reconciliation_service, make_reconciliation):
    reconciliation = await make_reconciliation(50000, 49000)

    result = await reconciliation_service.handle_discrepancy(reconciliation.id, "Rider short on change")

    assert result.success
    assert reconciliation.status == ReconciliationStatus.DISPUTED.value
    assert reconciliation.notes == "Discrepancy Reason: Rider short on change"
    # Money fields are untouched
    assert reconciliation.discrepancy_cents == -1000


@pytest.mark.asyncio
async def test_handle_discrepancy_with_resolution_resolves(reconciliation_service, make_reconciliation):
    reconciliation = await make_reconciliation(50000, 49000)
    await reconciliation_service.handle_discrepancy(reconciliation.id, "Rider short on change")

    result = await reconciliation_service.handle_discrepancy(
        reconciliation.id, "Rider short on change", resolution="Deducted from rider wages"
    )

    assert result.success
    assert result.message == "Discrepancy resolved successfully."
    assert reconciliation.status == ReconciliationStatus.RESOLVED.value
    assert reconciliation.notes.endswith("Resolution: Deducted from rider wages")
    assert len(reconciliation.recon_metadata["audit_trail"]) == 2

    again = await reconciliation_service.handle_discrepancy(reconciliation.id, "Another reason")
    assert not again.success


@pytest.mark.asyncio
async def test_handle_discrepancy_requires_reason(reconciliation_service, make_reconciliation):
    reconciliation = await make_reconciliation(50000, 49000)
    with pytest.raises(ValueError):
        await reconciliation_service.handle_discrepancy(reconciliation.id, "")


@pytest.mark.asyncio
async def test_auto_verify_only_zero_discrepancy_pending(reconciliation_service, make_reconciliation):
    clean = await make_reconciliation(50000, 50000)
    short = await make_reconciliation(50000, 49000)
    disputed = await make_reconciliation(30000, 30000, ReconciliationStatus.DISPUTED)

    count = await reconciliation_service.auto_verify_zero_discrepancy()

    assert count == 1
    assert clean.status == ReconciliationStatus.VERIFIED.value
    assert clean.notes == "Auto-verified: Zero discrepancy"
    assert clean.verified_by is None
    assert clean.verified_at is not None
    assert short.status == ReconciliationStatus.PENDING.value
    assert disputed.status == ReconciliationStatus.DISPUTED.value


@pytest.mark.asyncio
async def test_auto_verify_leaves_session_consistent_with_database(
    reconciliation_service, make_reconciliation, reload
):
    clean = await make_reconciliation(50000, 50000)
    await reconciliation_service.auto_verify_zero_discrepancy()
    in_memory = (clean.status, clean.notes, clean.verified_at)

    stored = await reload(CodReconciliation, clean.id)

    assert (stored.status, stored.notes, stored.verified_at) == in_memory


@pytest.mark.asyncio
async def test_auto_verify_twice_is_a_no_op(reconciliation_service, make_reconciliation):
    first = await make_reconciliation(50000, 50000)
    second = await make_reconciliation(20000, 20000)
    await make_reconciliation(50000, 49000)

    assert await reconciliation_service.auto_verify_zero_discrepancy() == 2
    verified_at = {first.id: first.verified_at, second.id: second.verified_at}

    assert await reconciliation_service.auto_verify_zero_discrepancy() == 0
    assert {first.id: first.verified_at, second.id: second.verified_at} == verified_at
    statistics = await reconciliation_service.get_overall_statistics(REPORT_DAY, REPORT_DAY)
    assert statistics.verified_count == 2
    assert statistics.pending_count == 1


# ==================== READ MODELS ====================

@pytest.mark.asyncio
async def test_delivery_person_summary(reconciliation_service, make_collected_order):
    rider = uuid.uuid4()
    await make_collected_order(rider, 10000, 10000)
    await make_collected_order(rider, 10000, 9000)
    await reconciliation_service.generate_daily_report(REPORT_DAY)

    summary = await reconciliation_service.get_delivery_person_summary(rider, REPORT_DAY, REPORT_DAY)

    assert summary.days == 1
    assert summary.total_orders_count == 2
    assert summary.total_cod_amount_cents == 20000
    assert summary.collected_amount_cents == 19000
    assert summary.discrepancy_cents == -1000
    assert summary.accuracy_percentage == 95.0
    assert summary.reconciliations_count == 1
    assert summary.pending_count == 1


@pytest.mark.asyncio
async def test_overall_statistics(reconciliation_service, make_reconciliation):
    await make_reconciliation(50000, 50000, ReconciliationStatus.VERIFIED)
    await make_reconciliation(50000, 49000, ReconciliationStatus.DISPUTED)
    await make_reconciliation(10000, 10000, day=date(2026, 9, 1))

    stats = await reconciliation_service.get_overall_statistics(date(2026, 10, 1), date(2026, 10, 31))

    assert stats.reconciliations_count == 2
    assert stats.delivery_persons_count == 2
    assert stats.total_cod_amount_cents == 100000
    assert stats.collected_amount_cents == 99000
    assert stats.discrepancy_cents == -1000
    assert stats.accuracy_percentage == 99.0
    assert stats.verified_count == 1
    assert stats.disputed_count == 1
