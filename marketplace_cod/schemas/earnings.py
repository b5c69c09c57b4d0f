from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class EarningsDayBreakdown(BaseModel):
    day: date
    orders_count: int
    gross_cents: int
    commission_cents: int
    net_cents: int


class EarningsSummary(BaseModel):
    """Earnings of one vendor over a period, all money in cents."""
    vendor_id: UUID
    period_start: datetime
    period_end: datetime
    orders_count: int = 0
    gross_cents: int = 0
    commission_cents: int = 0
    net_cents: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    daily: List[EarningsDayBreakdown] = Field(default_factory=list)
    average_commission_rate: Optional[Decimal] = None
