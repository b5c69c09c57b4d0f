"""
Typed order annotations.

Orders keep a JSON metadata column, but every transition that writes to it
goes through one of these models so each key has a known shape.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class OrderAnnotation(BaseModel):
    """Base class for entries stored in Order.order_metadata."""
    model_config = ConfigDict(frozen=True, extra='ignore')


class DeliveryFailureInfo(OrderAnnotation):
    """Last failed delivery attempt."""
    reason: str
    attempt_number: int = Field(ge=1)
    delivery_person_id: Optional[UUID] = None
    rescheduled: bool
    attempted_at: datetime


class CancellationInfo(OrderAnnotation):
    """Why and by whom an order was cancelled."""
    reason: str
    cancelled_by: Optional[UUID] = None
    previous_status: str
    cancelled_at: datetime


class RefundInfo(OrderAnnotation):
    """Refund of a delivered or completed order."""
    reason: str
    refunded_by: Optional[UUID] = None
    previous_status: str
    refunded_at: datetime


class ShippingAddress(BaseModel):
    """Address fields that matter for COD eligibility."""
    model_config = ConfigDict(extra='ignore')

    state: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
