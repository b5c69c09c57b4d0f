"""
Daily COD cash reconciliation.

For each delivery person and day, compares the order totals they were
expected to collect with the cash recorded as collected. Reports are
created once per (date, delivery person); the unique constraint on that
pair backs the skip-if-exists check when two runs race.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
import uuid
import logging

from sqlalchemy import select

from marketplace_cod.config import Settings, get_settings
from marketplace_cod.core.money import format_cents
from marketplace_cod.database import UnitOfWork
from marketplace_cod.db_types import utcnow
from marketplace_cod.models.cod_reconciliation import CodReconciliation, ReconciliationStatus
from marketplace_cod.models.order import Order, PaymentMethod
from marketplace_cod.schemas.reconciliation import (
    CodReconciliationResponse,
    DailyReportResult,
    DeliveryPersonSummary,
    OverallStatistics,
    ReconciliationResult,
)
from marketplace_cod.services.activity_log_service import ActivityLogService

logger = logging.getLogger(__name__)


def day_window(day: date) -> Tuple[datetime, datetime]:
    """[00:00 UTC, next 00:00 UTC) for ``day``."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def accuracy(collected_cents: int, expected_cents: int) -> float:
    if expected_cents <= 0:
        return 100.0
    return round(collected_cents / expected_cents * 100, 2)


class CodReconciliationService:
    """Service for daily COD reconciliation reports and their review."""

    def __init__(self, uow: UnitOfWork, settings: Optional[Settings] = None):
        self.uow = uow
        self.db = uow.session
        self.settings = settings or get_settings()
        self.activity = ActivityLogService(self.db)

    def _collected_orders_query(self, start: datetime, end: datetime):
        return select(Order).where(
            Order.payment_method == PaymentMethod.COD.value,
            Order.cod_collected_at.is_not(None),
            Order.cod_collected_at >= start,
            Order.cod_collected_at < end,
        )

    async def _lock(self, reconciliation_id: uuid.UUID) -> Optional[CodReconciliation]:
        result = await self.db.execute(
            select(CodReconciliation)
            .where(CodReconciliation.id == reconciliation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ==================== REPORT GENERATION ====================

    async def generate_daily_report(
        self,
        day: date,
        delivery_person_id: Optional[uuid.UUID] = None,
        generated_by: Optional[uuid.UUID] = None,
    ) -> DailyReportResult:
        """
        Create one PENDING reconciliation per delivery person who collected
        COD cash on ``day``.

        Pairs that already have a reconciliation are skipped, never updated.
        """
        start, end = day_window(day)
        report = DailyReportResult(date=day)

        if delivery_person_id is not None:
            person_ids = [delivery_person_id]
        else:
            result = await self.db.execute(
                select(Order.delivery_person_id)
                .where(
                    Order.payment_method == PaymentMethod.COD.value,
                    Order.delivery_person_id.is_not(None),
                    Order.cod_collected_at.is_not(None),
                    Order.cod_collected_at >= start,
                    Order.cod_collected_at < end,
                )
                .distinct()
            )
            person_ids = list(result.scalars().all())

        for person_id in person_ids:
            existing = await self.db.execute(
                select(CodReconciliation.id).where(
                    CodReconciliation.date == day,
                    CodReconciliation.delivery_person_id == person_id,
                )
            )
            if existing.scalar_one_or_none() is not None:
                logger.info(f"Reconciliation for {day} / {person_id} already exists, skipping")
                report.skipped_delivery_person_ids.append(person_id)
                continue

            orders_result = await self.db.execute(
                self._collected_orders_query(start, end)
                .where(Order.delivery_person_id == person_id)
                .order_by(Order.cod_collected_at)
            )
            orders = orders_result.scalars().all()
            if not orders:
                continue

            expected = sum(o.total_cents for o in orders)
            collected = sum(o.cod_amount_collected_cents or 0 for o in orders)

            reconciliation = CodReconciliation(
                date=day,
                delivery_person_id=person_id,
                total_orders_count=len(orders),
                total_cod_amount_cents=expected,
                collected_amount_cents=collected,
                discrepancy_cents=collected - expected,
                status=ReconciliationStatus.PENDING.value,
                recon_metadata={
                    "order_ids": [str(o.id) for o in orders],
                    "generated_at": utcnow().isoformat(),
                    "generated_by": str(generated_by) if generated_by else None,
                },
            )
            self.db.add(reconciliation)
            await self.db.flush()

            await self.activity.log(
                action="generated",
                entity_type="cod_reconciliation",
                entity_id=reconciliation.id,
                actor_id=generated_by,
                properties={
                    "date": day.isoformat(),
                    "delivery_person_id": str(person_id),
                    "total_orders": len(orders),
                    "total_amount_cents": expected,
                },
                description=f"COD reconciliation generated for {day}",
            )
            if reconciliation.has_discrepancy():
                logger.warning(
                    f"COD discrepancy of {format_cents(reconciliation.discrepancy_cents)} "
                    f"for delivery person {person_id} on {day}"
                )
            report.created.append(CodReconciliationResponse.model_validate(reconciliation))

        logger.info(
            f"Daily COD report for {day}: {report.created_count} created, "
            f"{len(report.skipped_delivery_person_ids)} skipped"
        )
        return report

    # ==================== REVIEW ====================

    async def verify_collection(
        self,
        reconciliation_id: uuid.UUID,
        actual_amount_cents: int,
        notes: Optional[str] = None,
        verified_by: Optional[uuid.UUID] = None,
    ) -> ReconciliationResult:
        """
        Record a physical cash count.

        The discrepancy is recomputed against ``actual_amount_cents``; the
        reconciliation becomes VERIFIED when it is zero, DISPUTED otherwise.
        """
        if actual_amount_cents < 0:
            raise ValueError("Actual amount cannot be negative")

        reconciliation = await self._lock(reconciliation_id)
        if reconciliation is None:
            return ReconciliationResult.fail(f"Reconciliation {reconciliation_id} not found.")
        if reconciliation.status == ReconciliationStatus.RESOLVED.value:
            return ReconciliationResult.fail(
                "Resolved reconciliations cannot be verified again.",
                reconciliation=CodReconciliationResponse.model_validate(reconciliation),
            )

        now = utcnow()
        discrepancy = actual_amount_cents - reconciliation.total_cod_amount_cents
        reconciliation.collected_amount_cents = actual_amount_cents
        reconciliation.discrepancy_cents = discrepancy
        reconciliation.status = (
            ReconciliationStatus.VERIFIED.value if discrepancy == 0 else ReconciliationStatus.DISPUTED.value
        )
        reconciliation.verified_by = verified_by
        reconciliation.verified_at = now
        reconciliation.notes = notes
        reconciliation.merge_metadata(verification={
            "actual_amount_cents": actual_amount_cents,
            "discrepancy_cents": discrepancy,
            "verified_at": now.isoformat(),
            "verified_by": str(verified_by) if verified_by else None,
            "notes": notes,
        })
        await self.db.flush()

        await self.activity.log(
            action="verified",
            entity_type="cod_reconciliation",
            entity_id=reconciliation.id,
            actor_id=verified_by,
            properties={
                "actual_amount_cents": actual_amount_cents,
                "discrepancy_cents": discrepancy,
                "status": reconciliation.status,
            },
        )

        if discrepancy:
            logger.warning(
                f"Reconciliation {reconciliation.id} disputed: discrepancy {format_cents(discrepancy)}"
            )
            message = (
                f"Collection verified with discrepancy of {format_cents(abs(discrepancy))}. "
                "Status set to disputed."
            )
        else:
            message = "Collection verified successfully with no discrepancy."

        return ReconciliationResult.ok(
            message,
            reconciliation=CodReconciliationResponse.model_validate(reconciliation),
        )

    async def handle_discrepancy(
        self,
        reconciliation_id: uuid.UUID,
        reason: str,
        resolution: Optional[str] = None,
        handled_by: Optional[uuid.UUID] = None,
    ) -> ReconciliationResult:
        """
        Record why the cash did not match and, optionally, how it was settled.

        RESOLVED with a resolution, DISPUTED without. Money fields are not
        touched.
        """
        if not reason or not reason.strip():
            raise ValueError("A discrepancy reason is required")

        reconciliation = await self._lock(reconciliation_id)
        if reconciliation is None:
            return ReconciliationResult.fail(f"Reconciliation {reconciliation_id} not found.")
        if reconciliation.status == ReconciliationStatus.RESOLVED.value:
            return ReconciliationResult.fail(
                "Reconciliation is already resolved.",
                reconciliation=CodReconciliationResponse.model_validate(reconciliation),
            )

        previous_status = reconciliation.status
        new_status = ReconciliationStatus.RESOLVED if resolution else ReconciliationStatus.DISPUTED

        notes = f"Discrepancy Reason: {reason}"
        if resolution:
            notes += f"\n\nResolution: {resolution}"
        reconciliation.notes = f"{reconciliation.notes}\n\n{notes}" if reconciliation.notes else notes
        reconciliation.status = new_status.value
        reconciliation.append_audit({
            "reason": reason,
            "resolution": resolution,
            "handled_at": utcnow().isoformat(),
            "handled_by": str(handled_by) if handled_by else None,
            "previous_status": previous_status,
            "status": new_status.value,
        })
        await self.db.flush()

        await self.activity.log(
            action="discrepancy_handled",
            entity_type="cod_reconciliation",
            entity_id=reconciliation.id,
            actor_id=handled_by,
            properties={"reason": reason, "resolution": resolution, "status": new_status.value},
        )
        logger.info(f"Reconciliation {reconciliation.id}: {previous_status} -> {new_status.value}")

        message = (
            "Discrepancy resolved successfully." if resolution
            else "Discrepancy recorded and marked as disputed."
        )
        return ReconciliationResult.ok(
            message,
            reconciliation=CodReconciliationResponse.model_validate(reconciliation),
        )

    async def auto_verify_zero_discrepancy(self) -> int:
        """Verify every PENDING reconciliation whose discrepancy is zero. Returns the count."""
        now = utcnow()
        result = await self.db.execute(
            select(CodReconciliation)
            .where(
                CodReconciliation.status == ReconciliationStatus.PENDING.value,
                CodReconciliation.discrepancy_cents == 0,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        clean = result.scalars().all()
        for reconciliation in clean:
            reconciliation.status = ReconciliationStatus.VERIFIED.value
            reconciliation.verified_by = None
            reconciliation.verified_at = now
            reconciliation.notes = "Auto-verified: Zero discrepancy"
            reconciliation.updated_at = now
        await self.db.flush()
        count = len(clean)
        if count:
            await self.activity.log(
                action="auto_verified",
                entity_type="cod_reconciliation",
                properties={"count": count},
                description=f"Auto-verified {count} reconciliation(s) with zero discrepancy",
            )
        logger.info(f"Auto-verified {count} reconciliations with zero discrepancy")
        return count

    # ==================== READ MODELS ====================

    async def _reconciliations_between(
        self,
        start_date: date,
        end_date: date,
        delivery_person_id: Optional[uuid.UUID] = None,
    ) -> List[CodReconciliation]:
        query = select(CodReconciliation).where(
            CodReconciliation.date >= start_date,
            CodReconciliation.date <= end_date,
        )
        if delivery_person_id is not None:
            query = query.where(CodReconciliation.delivery_person_id == delivery_person_id)
        result = await self.db.execute(query.order_by(CodReconciliation.date.desc()))
        return list(result.scalars().all())

    async def get_delivery_person_summary(
        self,
        delivery_person_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> DeliveryPersonSummary:
        """Totals from collected orders, status counts from reconciliations."""
        window_start, _ = day_window(start_date)
        _, window_end = day_window(end_date)
        orders_result = await self.db.execute(
            self._collected_orders_query(window_start, window_end)
            .where(Order.delivery_person_id == delivery_person_id)
        )
        orders = orders_result.scalars().all()
        expected = sum(o.total_cents for o in orders)
        collected = sum(o.cod_amount_collected_cents or 0 for o in orders)

        reconciliations = await self._reconciliations_between(start_date, end_date, delivery_person_id)
        statuses = [r.status for r in reconciliations]

        return DeliveryPersonSummary(
            delivery_person_id=delivery_person_id,
            start_date=start_date,
            end_date=end_date,
            days=(end_date - start_date).days + 1,
            total_orders_count=len(orders),
            total_cod_amount_cents=expected,
            collected_amount_cents=collected,
            discrepancy_cents=collected - expected,
            accuracy_percentage=accuracy(collected, expected),
            reconciliations_count=len(reconciliations),
            pending_count=statuses.count(ReconciliationStatus.PENDING.value),
            verified_count=statuses.count(ReconciliationStatus.VERIFIED.value),
            disputed_count=statuses.count(ReconciliationStatus.DISPUTED.value),
            resolved_count=statuses.count(ReconciliationStatus.RESOLVED.value),
            daily=[CodReconciliationResponse.model_validate(r) for r in reconciliations],
        )

    async def get_overall_statistics(self, start_date: date, end_date: date) -> OverallStatistics:
        reconciliations = await self._reconciliations_between(start_date, end_date)
        statuses = [r.status for r in reconciliations]
        expected = sum(r.total_cod_amount_cents for r in reconciliations)
        collected = sum(r.collected_amount_cents for r in reconciliations)

        return OverallStatistics(
            start_date=start_date,
            end_date=end_date,
            reconciliations_count=len(reconciliations),
            delivery_persons_count=len({r.delivery_person_id for r in reconciliations}),
            total_orders_count=sum(r.total_orders_count for r in reconciliations),
            total_cod_amount_cents=expected,
            collected_amount_cents=collected,
            discrepancy_cents=sum(r.discrepancy_cents for r in reconciliations),
            accuracy_percentage=accuracy(collected, expected),
            pending_count=statuses.count(ReconciliationStatus.PENDING.value),
            verified_count=statuses.count(ReconciliationStatus.VERIFIED.value),
            disputed_count=statuses.count(ReconciliationStatus.DISPUTED.value),
            resolved_count=statuses.count(ReconciliationStatus.RESOLVED.value),
        )
