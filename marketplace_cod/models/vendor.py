"""Vendor and vendor earnings ledger models.

Earnings are one row per (vendor, order). Money is integer cents and
net_amount_cents + commission_cents == amount_cents for every row.

Earning lifecycle:
    PENDING -> AVAILABLE (hold period elapsed)
    AVAILABLE -> PROCESSING (reserved by a payout)
    PROCESSING -> PAID (payout completed) | AVAILABLE (payout failed/cancelled)
    PENDING | AVAILABLE -> WITHHELD (order cancelled/refunded after delivery)
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, ForeignKey, BigInteger, Numeric, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace_cod.core.enum_utils import enum_comment
from marketplace_cod.database import Base
from marketplace_cod.db_types import UUIDType, UTCDateTime, utcnow


class VendorStatus(str, Enum):
    """Vendor account status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    SUSPENDED = "SUSPENDED"


class EarningStatus(str, Enum):
    """Vendor earning status."""
    PENDING = "PENDING"         # Inside hold period
    AVAILABLE = "AVAILABLE"     # Can be requested
    WITHHELD = "WITHHELD"       # Refund reserve
    PROCESSING = "PROCESSING"   # Reserved by a payout
    PAID = "PAID"               # Paid out


class Vendor(Base):
    """Marketplace seller."""
    __tablename__ = "vendors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    business_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=VendorStatus.APPROVED.value,
        comment=enum_comment(VendorStatus)
    )

    # Commission (percent, e.g. 10.00). NULL falls back to DEFAULT_COMMISSION_PERCENT
    commission_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    # Bank Details for Payout
    bank_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    bank_account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    bank_account_number: Mapped[Optional[str]] = mapped_column(String(34), nullable=True)
    bank_routing_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    auto_payout_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def has_bank_details(self) -> bool:
        return bool(self.bank_account_number and self.bank_routing_number)

    def __repr__(self) -> str:
        return f"<Vendor(name='{self.business_name}', status='{self.status}')>"


class VendorEarning(Base):
    """
    Money owed to a vendor for one order's line items.

    Independent financial record: it is not recomputed if the order
    changes later.
    """
    __tablename__ = "vendor_earnings"
    __table_args__ = (
        UniqueConstraint("vendor_id", "order_id", name="uq_vendor_earning_order"),
        CheckConstraint(
            "net_amount_cents + commission_cents = amount_cents",
            name="ck_vendor_earning_split"
        ),
        Index("ix_vendor_earnings_vendor_status", "vendor_id", "status"),
        Index("ix_vendor_earnings_status_available_at", "status", "available_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Financial (integer cents)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Gross")
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    net_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=EarningStatus.PENDING.value,
        comment=enum_comment(EarningStatus)
    )
    available_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    # Relationships
    vendor: Mapped["Vendor"] = relationship("Vendor", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<VendorEarning(vendor={self.vendor_id}, order={self.order_id}, "
            f"net={self.net_amount_cents}, status='{self.status}')>"
        )
