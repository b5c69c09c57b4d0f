"""Vendor payout models.

A payout reserves an exact set of earnings through PayoutEarningLine rows.
Completion, failure, cancellation and retry all act on that set only.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, ForeignKey, Integer, BigInteger, Text, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace_cod.core.enum_utils import enum_comment
from marketplace_cod.database import Base
from marketplace_cod.db_types import JSONType, UUIDType, UTCDateTime, utcnow

if TYPE_CHECKING:
    from marketplace_cod.models.vendor import Vendor, VendorEarning


class PayoutStatus(str, Enum):
    """Payout status."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PayoutMethod(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"


class Payout(Base):
    """
    Batched disbursement of available earnings to one vendor.

    Financial record - never deleted.
    """
    __tablename__ = "payouts"
    __table_args__ = (
        CheckConstraint(
            "net_amount_cents + processing_fee_cents = amount_cents",
            name="ck_payout_net_split"
        ),
        Index("ix_payouts_vendor_status", "vendor_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    payout_ref: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="External reference e.g. PO-3F2A9C1B7D4E"
    )

    # Period covered by the reserved earnings (informational)
    period_start: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    period_end: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    items_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Amounts (integer cents)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Requested amount")
    processing_fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    net_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Amount sent to vendor")
    reserved_amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Sum of reserved earnings; exceeds amount_cents when the last earning overshoots"
    )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=PayoutStatus.PENDING.value,
        comment=enum_comment(PayoutStatus)
    )
    payout_method: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=PayoutMethod.BANK_TRANSFER.value
    )
    payout_details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    # Relationships
    vendor: Mapped["Vendor"] = relationship("Vendor", lazy="selectin")
    lines: Mapped[List["PayoutEarningLine"]] = relationship(
        "PayoutEarningLine",
        back_populates="payout",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def merge_details(self, **details) -> None:
        # Reassign so the JSON column is flagged dirty
        data = dict(self.payout_details or {})
        data.update(details)
        self.payout_details = data

    def __repr__(self) -> str:
        return f"<Payout(ref='{self.payout_ref}', amount={self.amount_cents}, status='{self.status}')>"


class PayoutEarningLine(Base):
    """One earning reserved by one payout."""
    __tablename__ = "payout_earning_lines"
    __table_args__ = (
        UniqueConstraint("payout_id", "earning_id", name="uq_payout_earning_line"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    payout_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("payouts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    earning_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("vendor_earnings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    net_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    # Relationships
    payout: Mapped["Payout"] = relationship("Payout", back_populates="lines")
    earning: Mapped["VendorEarning"] = relationship("VendorEarning", lazy="selectin")

    def __repr__(self) -> str:
        return f"<PayoutEarningLine(payout={self.payout_id}, earning={self.earning_id})>"
