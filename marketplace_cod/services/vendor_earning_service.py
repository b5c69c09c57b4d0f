"""
Vendor earnings ledger.

One VendorEarning row per (vendor, order), written when COD cash is
collected. Rows start PENDING, become AVAILABLE once the hold period has
passed, and are then reserved and paid out by PayoutService.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
import uuid
import logging

from sqlalchemy import select, func

from marketplace_cod.config import Settings, get_settings
from marketplace_cod.core.money import apply_commission, format_cents
from marketplace_cod.database import UnitOfWork
from marketplace_cod.db_types import utcnow
from marketplace_cod.models.order import Order, OrderItem
from marketplace_cod.models.vendor import EarningStatus, Vendor, VendorEarning
from marketplace_cod.schemas.earnings import EarningsDayBreakdown, EarningsSummary
from marketplace_cod.services.activity_log_service import ActivityLogService

logger = logging.getLogger(__name__)


class VendorEarningService:
    """Service for recording and querying vendor earnings."""

    def __init__(self, uow: UnitOfWork, settings: Optional[Settings] = None):
        self.uow = uow
        self.db = uow.session
        self.settings = settings or get_settings()
        self.activity = ActivityLogService(self.db)

    # ==================== RECORDING ====================

    async def record_earnings(
        self,
        order: Order,
        actor_id: Optional[uuid.UUID] = None,
    ) -> List[VendorEarning]:
        """
        Create one PENDING earning per vendor in the order.

        Vendors that already have an earning for this order are skipped, so
        calling this twice never double-counts. The (vendor_id, order_id)
        unique constraint catches a concurrent duplicate.

        Returns the earnings created by this call.
        """
        items_result = await self.db.execute(
            select(OrderItem)
            .where(
                OrderItem.order_id == order.id,
                OrderItem.vendor_id.is_not(None),
            )
            .order_by(OrderItem.created_at, OrderItem.id)
        )
        gross_by_vendor: Dict[uuid.UUID, int] = OrderedDict()
        for item in items_result.scalars().all():
            gross_by_vendor[item.vendor_id] = gross_by_vendor.get(item.vendor_id, 0) + item.line_total_cents

        if not gross_by_vendor:
            logger.info(f"Order {order.order_number} has no vendor items, no earnings recorded")
            return []

        existing_result = await self.db.execute(
            select(VendorEarning.vendor_id).where(VendorEarning.order_id == order.id)
        )
        already_recorded = set(existing_result.scalars().all())

        vendors_result = await self.db.execute(
            select(Vendor).where(Vendor.id.in_(list(gross_by_vendor.keys())))
        )
        vendors = {vendor.id: vendor for vendor in vendors_result.scalars().all()}

        now = utcnow()
        available_at = now + timedelta(days=self.settings.PAYOUT_HOLD_PERIOD_DAYS)
        created: List[VendorEarning] = []

        for vendor_id, gross_cents in gross_by_vendor.items():
            if vendor_id in already_recorded:
                logger.info(f"Earning for vendor {vendor_id} on order {order.order_number} already recorded, skipping")
                continue

            vendor = vendors.get(vendor_id)
            rate = self.settings.DEFAULT_COMMISSION_PERCENT
            if vendor is not None and vendor.commission_percent is not None:
                rate = vendor.commission_percent

            commission_cents, net_cents = apply_commission(gross_cents, rate)
            earning = VendorEarning(
                vendor_id=vendor_id,
                order_id=order.id,
                amount_cents=gross_cents,
                commission_rate=Decimal(rate),
                commission_cents=commission_cents,
                net_amount_cents=net_cents,
                status=EarningStatus.PENDING.value,
                available_at=available_at,
            )
            self.db.add(earning)
            created.append(earning)

        if not created:
            return []

        await self.db.flush()

        for earning in created:
            await self.activity.log(
                action="earning_recorded",
                entity_type="vendor_earning",
                entity_id=earning.id,
                actor_id=actor_id,
                properties={
                    "order_id": str(order.id),
                    "vendor_id": str(earning.vendor_id),
                    "amount_cents": earning.amount_cents,
                    "commission_cents": earning.commission_cents,
                    "net_amount_cents": earning.net_amount_cents,
                },
                description=f"Earning {format_cents(earning.net_amount_cents)} recorded for order {order.order_number}",
            )

        logger.info(f"Recorded {len(created)} vendor earning(s) for order {order.order_number}")
        return created

    # ==================== STATUS SWEEPS ====================

    async def _lock_earnings(self, *criteria) -> List[VendorEarning]:
        result = await self.db.execute(
            select(VendorEarning)
            .where(*criteria)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def make_earnings_available(self, now: Optional[datetime] = None) -> int:
        """
        Release every PENDING earning whose hold period has ended.

        The due rows are locked first, so rows flipped by a concurrent run are
        not touched twice. Returns the number of earnings released.
        """
        now = now or utcnow()
        due = await self._lock_earnings(
            VendorEarning.status == EarningStatus.PENDING.value,
            VendorEarning.available_at <= now,
        )
        for earning in due:
            earning.status = EarningStatus.AVAILABLE.value
            earning.updated_at = now
        await self.db.flush()
        count = len(due)
        if count:
            await self.activity.log(
                action="earnings_released",
                entity_type="vendor_earning",
                properties={"count": count, "as_of": now.isoformat()},
                description=f"{count} earning(s) became available",
            )
        logger.info(f"Made {count} vendor earning(s) available")
        return count

    async def withhold_order_earnings(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """
        Withhold PENDING or AVAILABLE earnings of a cancelled/refunded order.

        Earnings already reserved by a payout or paid out are left alone.
        """
        now = utcnow()
        open_earnings = await self._lock_earnings(
            VendorEarning.order_id == order_id,
            VendorEarning.status.in_([EarningStatus.PENDING.value, EarningStatus.AVAILABLE.value]),
        )
        for earning in open_earnings:
            earning.status = EarningStatus.WITHHELD.value
            earning.updated_at = now
        await self.db.flush()
        count = len(open_earnings)

        settled = await self.db.execute(
            select(func.count(VendorEarning.id)).where(
                VendorEarning.order_id == order_id,
                VendorEarning.status.in_([EarningStatus.PROCESSING.value, EarningStatus.PAID.value]),
            )
        )
        settled_count = settled.scalar() or 0
        if settled_count:
            logger.warning(
                f"Order {order_id} has {settled_count} earning(s) already in a payout; they were not withheld"
            )

        if count:
            await self.activity.log(
                action="earnings_withheld",
                entity_type="vendor_earning",
                actor_id=actor_id,
                properties={"order_id": str(order_id), "count": count},
                description=f"{count} earning(s) withheld for order {order_id}",
            )
            logger.info(f"Withheld {count} earning(s) for order {order_id}")
        return count

    # ==================== BALANCES ====================

    async def _balance(self, vendor_id: uuid.UUID, status: EarningStatus) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(VendorEarning.net_amount_cents), 0)).where(
                VendorEarning.vendor_id == vendor_id,
                VendorEarning.status == status.value,
            )
        )
        return int(result.scalar() or 0)

    async def get_available_balance(self, vendor_id: uuid.UUID) -> int:
        """Net cents the vendor can request right now."""
        return await self._balance(vendor_id, EarningStatus.AVAILABLE)

    async def get_pending_balance(self, vendor_id: uuid.UUID) -> int:
        """Net cents still inside the hold period."""
        return await self._balance(vendor_id, EarningStatus.PENDING)

    async def get_withheld_balance(self, vendor_id: uuid.UUID) -> int:
        return await self._balance(vendor_id, EarningStatus.WITHHELD)

    async def get_order_earnings(self, order_id: uuid.UUID) -> List[VendorEarning]:
        result = await self.db.execute(
            select(VendorEarning)
            .where(VendorEarning.order_id == order_id)
            .order_by(VendorEarning.created_at)
        )
        return list(result.scalars().all())

    # ==================== REPORTING ====================

    async def calculate_earnings(
        self,
        vendor_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> EarningsSummary:
        """Gross, commission and net totals for earnings created in [start, end]."""
        result = await self.db.execute(
            select(VendorEarning)
            .where(
                VendorEarning.vendor_id == vendor_id,
                VendorEarning.created_at >= start,
                VendorEarning.created_at <= end,
            )
            .order_by(VendorEarning.created_at)
        )
        earnings = result.scalars().all()

        summary = EarningsSummary(vendor_id=vendor_id, period_start=start, period_end=end)
        daily: Dict = OrderedDict()

        for earning in earnings:
            summary.orders_count += 1
            summary.gross_cents += earning.amount_cents
            summary.commission_cents += earning.commission_cents
            summary.net_cents += earning.net_amount_cents
            summary.by_status[earning.status] = summary.by_status.get(earning.status, 0) + earning.net_amount_cents

            day = earning.created_at.date()
            if day not in daily:
                daily[day] = EarningsDayBreakdown(
                    day=day, orders_count=0, gross_cents=0, commission_cents=0, net_cents=0
                )
            breakdown = daily[day]
            breakdown.orders_count += 1
            breakdown.gross_cents += earning.amount_cents
            breakdown.commission_cents += earning.commission_cents
            breakdown.net_cents += earning.net_amount_cents

        summary.daily = list(daily.values())
        if summary.gross_cents:
            summary.average_commission_rate = (
                Decimal(summary.commission_cents) * 100 / Decimal(summary.gross_cents)
            ).quantize(Decimal("0.01"))
        return summary
