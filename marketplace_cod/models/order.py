import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, ForeignKey, Integer, BigInteger, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace_cod.core.enum_utils import enum_comment
from marketplace_cod.database import Base
from marketplace_cod.db_types import JSONType, UUIDType, UTCDateTime, utcnow
from marketplace_cod.schemas.order import (
    CancellationInfo,
    DeliveryFailureInfo,
    OrderAnnotation,
    RefundInfo,
    ShippingAddress,
)

if TYPE_CHECKING:
    from marketplace_cod.models.vendor import Vendor


class OrderStatus(str, Enum):
    """COD order lifecycle."""
    PENDING = "PENDING"                    # Placed, awaiting confirmation
    CONFIRMED = "CONFIRMED"                # Confirmed by staff
    PROCESSING = "PROCESSING"              # Being prepared for delivery
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"  # With a delivery person
    DELIVERED = "DELIVERED"                # Handed over, cash collected
    COMPLETED = "COMPLETED"                # Closed after verification
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"                      # Delivery failed, not rescheduled
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    """Payment method enumeration."""
    COD = "COD"
    CARD = "CARD"
    PAYPAL = "PAYPAL"
    BANK_TRANSFER = "BANK_TRANSFER"


class FulfillmentStatus(str, Enum):
    """Warehouse/delivery side status shown to vendors and customers."""
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    PENDING_RESCHEDULE = "pending_reschedule"
    DELIVERY_FAILED = "delivery_failed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Order(Base):
    """
    Customer order as seen by the settlement core.

    Orders are created by checkout and only change status through
    CodOrderWorkflow. They are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_cod_collection", "delivery_person_id", "cod_collected_at"),
        Index("ix_orders_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="e.g. ORD-20260106-0001"
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=OrderStatus.PENDING.value,
        comment=enum_comment(OrderStatus)
    )
    payment_method: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=PaymentMethod.COD.value,
        comment=enum_comment(PaymentMethod)
    )
    fulfillment_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Amounts (integer cents)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    cod_fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Shipping address snapshot
    shipping_state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    shipping_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Delivery & cash collection
    delivery_person_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    cod_collected_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cod_amount_collected_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    cod_collected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Typed annotations, see marketplace_cod.schemas.order
    order_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    # Relationships
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    status_entries: Mapped[List["OrderStatusEntry"]] = relationship(
        "OrderStatusEntry",
        back_populates="order",
        order_by="OrderStatusEntry.sequence",
        lazy="selectin"
    )

    def is_cod(self) -> bool:
        return self.payment_method == PaymentMethod.COD.value

    def is_cod_collected(self) -> bool:
        return self.cod_collected_at is not None

    def mark_cod_collected(self, amount_cents: int, collected_by: Optional[uuid.UUID], at: datetime) -> None:
        """Record the cash handover. Can only happen once per order."""
        if self.is_cod_collected():
            raise ValueError(f"COD already collected for order {self.order_number}")
        self.cod_collected_at = at
        self.cod_amount_collected_cents = amount_cents
        self.cod_collected_by = collected_by

    @property
    def shipping_address(self) -> Optional[ShippingAddress]:
        if not any([self.shipping_state, self.shipping_city, self.shipping_postal_code, self.shipping_phone]):
            return None
        return ShippingAddress(
            state=self.shipping_state,
            city=self.shipping_city,
            postal_code=self.shipping_postal_code,
            phone=self.shipping_phone,
        )

    # ---- typed metadata ----

    def annotate(self, key: str, annotation: OrderAnnotation, **extra) -> None:
        # Reassign so the JSON column is flagged dirty
        data = dict(self.order_metadata or {})
        data[key] = annotation.model_dump(mode="json")
        data.update(extra)
        self.order_metadata = data

    @property
    def delivery_attempts(self) -> int:
        return int((self.order_metadata or {}).get("delivery_attempts", 0))

    @property
    def last_delivery_failure(self) -> Optional[DeliveryFailureInfo]:
        raw = (self.order_metadata or {}).get("last_delivery_failure")
        return DeliveryFailureInfo.model_validate(raw) if raw else None

    @property
    def cancellation(self) -> Optional[CancellationInfo]:
        raw = (self.order_metadata or {}).get("cancellation")
        return CancellationInfo.model_validate(raw) if raw else None

    @property
    def refund(self) -> Optional[RefundInfo]:
        raw = (self.order_metadata or {}).get("refund")
        return RefundInfo.model_validate(raw) if raw else None

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """Line item; vendor_id decides whose earnings it feeds."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    vendor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("vendors.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_at_purchase_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="items")
    vendor: Mapped[Optional["Vendor"]] = relationship("Vendor", lazy="selectin")

    @property
    def line_total_cents(self) -> int:
        return self.price_at_purchase_cents * self.quantity

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"


class OrderStatusEntry(Base):
    """Append-only order status history. Never updated or deleted."""
    __tablename__ = "order_status_entries"
    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_order_status_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based position in the order's history"
    )

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="status_entries")

    def __repr__(self) -> str:
        return f"<OrderStatusEntry(#{self.sequence} {self.from_status} -> {self.status})>"
