from typing import List, Optional

from pydantic import BaseModel, Field


class DeliveryEstimate(BaseModel):
    min_days: int
    max_days: int
    text: str


class CodAvailability(BaseModel):
    """Whether COD can be offered for an address/amount/phone combination."""
    available: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    cod_fee_cents: int
    delivery_estimate: DeliveryEstimate
    requires_verification: bool = False
    min_order_amount_cents: int
    max_order_amount_cents: int


class CodOrderValidation(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class CodFeeBreakdown(BaseModel):
    order_amount_cents: int
    cod_fee_cents: int
    total_cents: int
