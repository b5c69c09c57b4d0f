import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_cod.database import Base
from marketplace_cod.db_types import JSONType, UUIDType, UTCDateTime, utcnow


class ActivityLog(Base):
    """
    Side-channel audit of every mutating settlement operation.
    Records: order transitions, earnings, payouts, reconciliations.
    """
    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Who performed the action (None for scheduled jobs)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Actions: confirmed, processing, out_for_delivery, cod_collected, delivery_failed,
    #          completed, cancelled, payout_requested, payout_completed, verified, etc.

    # Entity being modified
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Entity types: cod_order, vendor_earning, payout, cod_reconciliation

    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    properties: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<ActivityLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"
