from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_cod.models.activity_log import ActivityLog


class ActivityLogService:
    """
    Activity log for settlement operations.

    Entries are added to the caller's session and commit or roll back with
    the operation they describe.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
        properties: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> ActivityLog:
        """
        Create an activity log entry.

        Args:
            action: The action performed (confirmed, payout_requested, verified, ...)
            entity_type: cod_order, vendor_earning, payout or cod_reconciliation
            entity_id: ID of the affected entity
            actor_id: ID of the user performing the action, None for jobs
            properties: JSON-serialisable details
            description: Human-readable description
        """
        entry = ActivityLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            properties=properties,
            description=description,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def get_entity_history(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        limit: int = 50,
    ) -> List[ActivityLog]:
        """Get activity for one entity, oldest first."""
        result = await self.db.execute(
            select(ActivityLog)
            .where(
                ActivityLog.entity_type == entity_type,
                ActivityLog.entity_id == entity_id,
            )
            .order_by(ActivityLog.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
