"""
Tests for the vendor earnings ledger
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from marketplace_cod.db_types import utcnow
from marketplace_cod.models.order import OrderStatus
from marketplace_cod.models.vendor import EarningStatus, VendorEarning
from marketplace_cod.services.vendor_earning_service import VendorEarningService


@pytest.fixture
def earning_service(uow, settings):
    return VendorEarningService(uow, settings)


@pytest.mark.asyncio
async def test_record_earnings_single_vendor(earning_service, make_vendor, make_order):
    vendor = await make_vendor(commission_percent=Decimal("10.00"))
    order = await make_order(items=[(vendor, 10000, 1)], status=OrderStatus.DELIVERED)

    earnings = await earning_service.record_earnings(order)

    assert len(earnings) == 1
    earning = earnings[0]
    assert earning.amount_cents == 10000
    assert earning.commission_cents == 1000
    assert earning.net_amount_cents == 9000
    assert earning.status == EarningStatus.PENDING.value
    assert earning.commission_rate == Decimal("10.00")


@pytest.mark.asyncio
async def test_hold_period_sets_available_at(earning_service, make_vendor, make_order):
    vendor = await make_vendor()
    order = await make_order(items=[(vendor, 10000, 1)])
    before = utcnow()

    earning = (await earning_service.record_earnings(order))[0]

    assert before + timedelta(days=7) <= earning.available_at <= utcnow() + timedelta(days=7)


@pytest.mark.asyncio
async def test_multi_vendor_order_groups_items_per_vendor(earning_service, make_vendor, make_order):
    alpha = await make_vendor(business_name="Alpha", commission_percent=Decimal("10.00"))
    beta = await make_vendor(business_name="Beta", commission_percent=Decimal("12.50"))
    order = await make_order(items=[
        (alpha, 3000, 2),
        (beta, 999, 1),
        (alpha, 1500, 1),
        (None, 700, 1),
    ])

    earnings = await earning_service.record_earnings(order)

    by_vendor = {e.vendor_id: e for e in earnings}
    assert set(by_vendor) == {alpha.id, beta.id}
    assert (by_vendor[alpha.id].amount_cents, by_vendor[alpha.id].commission_cents) == (7500, 750)
    assert (by_vendor[beta.id].commission_cents, by_vendor[beta.id].net_amount_cents) == (124, 875)
    for earning in earnings:
        assert earning.net_amount_cents + earning.commission_cents == earning.amount_cents


@pytest.mark.asyncio
async def test_record_earnings_twice_does_not_double_count(earning_service, make_vendor, make_order):
    vendor = await make_vendor()
    order = await make_order(items=[(vendor, 10000, 1)])

    first = await earning_service.record_earnings(order)
    second = await earning_service.record_earnings(order)

    assert len(first) == 1
    assert second == []
    assert len(await earning_service.get_order_earnings(order.id)) == 1


@pytest.mark.asyncio
async def test_unique_constraint_backs_idempotency(uow, make_vendor, make_order):
    vendor = await make_vendor()
    order = await make_order(items=[(vendor, 10000, 1)])
    for _ in range(2):
        uow.session.add(VendorEarning(
            vendor_id=vendor.id,
            order_id=order.id,
            amount_cents=10000,
            commission_rate=Decimal("10"),
            commission_cents=1000,
            net_amount_cents=9000,
            available_at=utcnow(),
        ))

    with pytest.raises(IntegrityError):
        await uow.session.flush()


@pytest.mark.asyncio
async def test_order_without_vendor_items(earning_service, make_order):
    order = await make_order(items=[(None, 5000, 1)])
    assert await earning_service.record_earnings(order) == []


@pytest.mark.asyncio
async def test_make_earnings_available_after_hold(earning_service, make_vendor, make_earning):
    vendor = await make_vendor()
    due = await make_earning(vendor, 3000, EarningStatus.PENDING, available_at=utcnow() - timedelta(hours=1))
    held = await make_earning(vendor, 4000, EarningStatus.PENDING, available_at=utcnow() + timedelta(days=2))

    released = await earning_service.make_earnings_available()

    assert released == 1
    assert due.status == EarningStatus.AVAILABLE.value
    assert held.status == EarningStatus.PENDING.value
    assert await earning_service.get_available_balance(vendor.id) == 3000
    assert await earning_service.get_pending_balance(vendor.id) == 4000

    # A second sweep finds nothing left to release
    assert await earning_service.make_earnings_available() == 0


@pytest.mark.asyncio
async def test_withhold_leaves_reserved_earnings_alone(earning_service, make_vendor, make_earning):
    vendor = await make_vendor()
    available = await make_earning(vendor, 3000, EarningStatus.AVAILABLE)
    processing = await make_earning(vendor, 4000, EarningStatus.PROCESSING)

    assert await earning_service.withhold_order_earnings(available.order_id) == 1
    assert await earning_service.withhold_order_earnings(processing.order_id) == 0

    assert available.status == EarningStatus.WITHHELD.value
    assert processing.status == EarningStatus.PROCESSING.value
    assert await earning_service.get_withheld_balance(vendor.id) == 3000


@pytest.mark.asyncio
async def test_balances_are_per_vendor(earning_service, make_vendor, make_earning):
    alpha = await make_vendor(business_name="Alpha")
    beta = await make_vendor(business_name="Beta")
    await make_earning(alpha, 1000)
    await make_earning(alpha, 2500)
    await make_earning(beta, 700)

    assert await earning_service.get_available_balance(alpha.id) == 3500
    assert await earning_service.get_available_balance(beta.id) == 700


@pytest.mark.asyncio
async def test_calculate_earnings_summary(earning_service, make_vendor, make_order):
    vendor = await make_vendor(commission_percent=Decimal("10.00"))
    first = await make_order(items=[(vendor, 10000, 1)])
    second = await make_order(items=[(vendor, 5000, 1)])
    await earning_service.record_earnings(first)
    await earning_service.record_earnings(second)

    now = utcnow()
    summary = await earning_service.calculate_earnings(vendor.id, now - timedelta(days=1), now + timedelta(minutes=1))

    assert summary.orders_count == 2
    assert summary.gross_cents == 15000
    assert summary.commission_cents == 1500
    assert summary.net_cents == 13500
    assert summary.by_status == {EarningStatus.PENDING.value: 13500}
    assert summary.average_commission_rate == Decimal("10.00")
    assert sum(day.net_cents for day in summary.daily) == 13500


@pytest.mark.asyncio
async def test_calculate_earnings_empty_period(earning_service, make_vendor):
    vendor = await make_vendor()
    now = utcnow()

    summary = await earning_service.calculate_earnings(vendor.id, now - timedelta(days=1), now)

    assert summary.orders_count == 0
    assert summary.average_commission_rate is None
    assert summary.daily == []
