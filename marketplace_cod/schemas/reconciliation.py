from datetime import date as date_type, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from marketplace_cod.schemas.base import BaseResponseSchema, OperationResult


class CodReconciliationResponse(BaseResponseSchema):
    id: UUID
    date: date_type
    delivery_person_id: UUID
    total_orders_count: int
    total_cod_amount_cents: int
    collected_amount_cents: int
    discrepancy_cents: int
    status: str
    verified_by: Optional[UUID] = None
    verified_at: Optional[datetime] = None
    notes: Optional[str] = None


class DailyReportResult(BaseModel):
    """Outcome of one generate_daily_report run."""
    date: date_type
    created: List[CodReconciliationResponse] = Field(default_factory=list)
    skipped_delivery_person_ids: List[UUID] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)


class ReconciliationResult(OperationResult):
    reconciliation: Optional[CodReconciliationResponse] = None


class DeliveryPersonSummary(BaseModel):
    """Collection record of one delivery person over a date range."""
    delivery_person_id: UUID
    start_date: date_type
    end_date: date_type
    days: int
    total_orders_count: int = 0
    total_cod_amount_cents: int = 0
    collected_amount_cents: int = 0
    discrepancy_cents: int = 0
    accuracy_percentage: float = 100.0
    reconciliations_count: int = 0
    pending_count: int = 0
    verified_count: int = 0
    disputed_count: int = 0
    resolved_count: int = 0
    daily: List[CodReconciliationResponse] = Field(default_factory=list)


class OverallStatistics(BaseModel):
    start_date: date_type
    end_date: date_type
    reconciliations_count: int = 0
    delivery_persons_count: int = 0
    total_orders_count: int = 0
    total_cod_amount_cents: int = 0
    collected_amount_cents: int = 0
    discrepancy_cents: int = 0
    accuracy_percentage: float = 100.0
    pending_count: int = 0
    verified_count: int = 0
    disputed_count: int = 0
    resolved_count: int = 0
