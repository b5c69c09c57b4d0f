from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from marketplace_cod.models.payout import Payout
from marketplace_cod.schemas.base import OperationResult


class PayoutResult(OperationResult):
    """Result of a payout operation. ``payout`` is the live ORM row when one exists."""
    payout: Optional[Payout] = None

    @property
    def payout_id(self) -> Optional[UUID]:
        return getattr(self.payout, "id", None)


class TransferReceipt(BaseModel):
    """What the bank transfer gateway reports back."""
    success: bool
    transaction_id: Optional[str] = None
    message: str
    processed_at: datetime
