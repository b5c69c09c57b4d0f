import uuid
from datetime import date as date_type, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Date, Integer, BigInteger, Text, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_cod.core.enum_utils import enum_comment
from marketplace_cod.database import Base
from marketplace_cod.db_types import JSONType, UUIDType, UTCDateTime, utcnow


class ReconciliationStatus(str, Enum):
    """COD reconciliation status."""
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    DISPUTED = "DISPUTED"
    RESOLVED = "RESOLVED"


class CodReconciliation(Base):
    """
    Daily cash audit for one delivery person.

    Compares what the delivery person was expected to collect (order totals)
    with what was recorded as collected. One row per (date, delivery person).
    discrepancy_cents = collected_amount_cents - total_cod_amount_cents.
    """
    __tablename__ = "cod_reconciliations"
    __table_args__ = (
        UniqueConstraint("date", "delivery_person_id", name="uq_cod_reconciliation_day_person"),
        CheckConstraint(
            "discrepancy_cents = collected_amount_cents - total_cod_amount_cents",
            name="ck_cod_reconciliation_discrepancy"
        ),
        Index("ix_cod_reconciliations_date_status", "date", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    delivery_person_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)

    # Collection summary (integer cents)
    total_orders_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cod_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, comment="Expected")
    collected_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, comment="Actual")
    discrepancy_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ReconciliationStatus.PENDING.value,
        index=True,
        comment=enum_comment(ReconciliationStatus)
    )

    # Verification
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # order_ids, generated_by, verification, audit_trail
    recon_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def has_discrepancy(self) -> bool:
        return self.discrepancy_cents != 0

    def accuracy_percentage(self) -> float:
        if self.total_cod_amount_cents == 0:
            return 100.0
        return round(self.collected_amount_cents / self.total_cod_amount_cents * 100, 2)

    def merge_metadata(self, **values) -> None:
        data = dict(self.recon_metadata or {})
        data.update(values)
        self.recon_metadata = data

    def append_audit(self, entry: dict) -> None:
        data = dict(self.recon_metadata or {})
        data["audit_trail"] = list(data.get("audit_trail", [])) + [entry]
        self.recon_metadata = data

    def __repr__(self) -> str:
        return f"<CodReconciliation(date={self.date}, person={self.delivery_person_id}, status='{self.status}')>"
