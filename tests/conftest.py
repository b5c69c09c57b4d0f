import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace_cod import models  # noqa: F401
from marketplace_cod.config import Settings
from marketplace_cod.core.events import DomainEvent, EventDispatcher
from marketplace_cod.database import Base, UnitOfWork
from marketplace_cod.db_types import utcnow
from marketplace_cod.models.order import Order, OrderItem, OrderStatus, PaymentMethod
from marketplace_cod.models.vendor import EarningStatus, Vendor, VendorEarning, VendorStatus

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
def settings() -> Settings:
    """Settings pinned to known values so environment variables don't leak in."""
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        COD_ENABLED=True,
        COD_MIN_ORDER_AMOUNT_CENTS=50000,
        COD_MAX_ORDER_AMOUNT_CENTS=50000000,
        COD_FIXED_FEE_CENTS=500,
        COD_FEE_PERCENTAGE=Decimal("0.02"),
        COD_HIGH_VALUE_THRESHOLD_CENTS=1000000,
        COD_RESTRICTED_STATES=[],
        COD_RESTRICTED_CITIES=[],
        COD_RESTRICTED_POSTAL_CODES=[],
        COD_COLLECTION_TOLERANCE_CENTS=None,
        DEFAULT_COMMISSION_PERCENT=Decimal("10.0"),
        PAYOUT_MINIMUM_AMOUNT_CENTS=1000,
        PAYOUT_FEE_TYPE="percentage",
        PAYOUT_FEE_PERCENTAGE=Decimal("2.0"),
        PAYOUT_FEE_FIXED_CENTS=100,
        PAYOUT_HOLD_PERIOD_DAYS=7,
    )


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def received_events(dispatcher):
    """Every event dispatched after commit, in order."""
    received = []
    dispatcher.subscribe(DomainEvent, received.append)
    return received


@pytest_asyncio.fixture
async def uow(session_factory, dispatcher):
    """Unit of work over a session the test controls; nothing is committed unless the test does."""
    async with session_factory() as session:
        yield UnitOfWork(session, dispatcher)


@pytest.fixture
def make_vendor(uow):
    async def _make(**overrides) -> Vendor:
        data = {
            "business_name": "Acme Traders",
            "status": VendorStatus.APPROVED.value,
            "commission_percent": Decimal("10.00"),
            "bank_name": "First National Bank",
            "bank_account_name": "Acme Traders LLC",
            "bank_account_number": "000123456789",
            "bank_routing_number": "021000021",
            "auto_payout_enabled": True,
        }
        data.update(overrides)
        vendor = Vendor(**data)
        uow.session.add(vendor)
        await uow.session.flush()
        return vendor

    return _make


@pytest.fixture
def make_order(uow):
    """
    Create an order. ``items`` is a list of (vendor, unit_price_cents, quantity);
    vendor may be None for platform-owned items.
    """
    numbers = itertools.count(1)

    async def _make(items=(), status=OrderStatus.PENDING, payment_method=PaymentMethod.COD, **overrides) -> Order:
        order_items = [
            OrderItem(
                vendor_id=vendor.id if vendor is not None else None,
                product_name=f"Product {index}",
                price_at_purchase_cents=price,
                quantity=quantity,
            )
            for index, (vendor, price, quantity) in enumerate(items, start=1)
        ]
        total = sum(price * quantity for _, price, quantity in items)
        data = {
            "order_number": f"ORD-20261019-{next(numbers):04d}",
            "status": status.value,
            "payment_method": payment_method.value,
            "total_cents": total,
            "shipping_state": "Texas",
            "shipping_city": "Austin",
            "shipping_postal_code": "73301",
            "shipping_phone": "+1 512 555 0100",
            "items": order_items,
        }
        data.update(overrides)
        order = Order(**data)
        uow.session.add(order)
        await uow.session.flush()
        return order

    return _make


@pytest.fixture
def make_earning(uow, make_order):
    """Create a ledger row directly, with its own order, bypassing the workflow."""

    async def _make(
        vendor: Vendor,
        net_amount_cents: int,
        status: EarningStatus = EarningStatus.AVAILABLE,
        available_at=None,
    ) -> VendorEarning:
        order = await make_order(status=OrderStatus.DELIVERED)
        earning = VendorEarning(
            vendor_id=vendor.id,
            order_id=order.id,
            amount_cents=net_amount_cents,
            commission_rate=Decimal("0"),
            commission_cents=0,
            net_amount_cents=net_amount_cents,
            status=status.value,
            available_at=available_at or (utcnow() - timedelta(days=1)),
        )
        uow.session.add(earning)
        await uow.session.flush()
        return earning

    return _make


@pytest.fixture
def reload(uow):
    """Re-read a row, overwriting whatever the identity map holds."""

    async def _reload(model, entity_id):
        result = await uow.session.execute(
            select(model).where(model.id == entity_id).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    return _reload
