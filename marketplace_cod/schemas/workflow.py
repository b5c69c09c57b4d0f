from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from marketplace_cod.schemas.base import OperationResult


class WorkflowResult(OperationResult):
    """Result of a COD order transition."""
    order_id: Optional[UUID] = None
    previous_status: Optional[str] = None
    status: Optional[str] = None


class WorkflowState(BaseModel):
    """Read-side projection of where an order is and what can happen next."""
    order_id: UUID
    current_status: str
    current_status_label: str
    available_actions: List[str]
    workflow_enabled: bool
    is_terminal: bool
    cod_collected: bool = False
    delivery_person_assigned: bool = False
    delivery_attempts: int = 0
