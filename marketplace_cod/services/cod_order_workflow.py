"""
COD order workflow.

Executes the transitions defined in cod_state_machine against persisted
orders. Every successful transition, inside the caller's unit of work:

1. updates the order (status, fulfillment status, transition fields)
2. appends an OrderStatusEntry
3. writes an activity log entry
4. records a domain event, dispatched after commit

Guard violations come back as ``WorkflowResult(success=False)``.
"""

from typing import Optional
import uuid
import logging

from sqlalchemy import select, func

from marketplace_cod.config import Settings, get_settings
from marketplace_cod.core import events
from marketplace_cod.core.money import format_cents
from marketplace_cod.database import UnitOfWork
from marketplace_cod.db_types import utcnow
from marketplace_cod.models.order import Order, OrderStatus, OrderStatusEntry
from marketplace_cod.schemas.order import CancellationInfo, DeliveryFailureInfo, RefundInfo
from marketplace_cod.schemas.workflow import WorkflowResult, WorkflowState
from marketplace_cod.services import cod_state_machine as sm
from marketplace_cod.services.activity_log_service import ActivityLogService
from marketplace_cod.services.vendor_earning_service import VendorEarningService

logger = logging.getLogger(__name__)


class CodOrderWorkflow:
    """Service driving COD orders through their lifecycle."""

    def __init__(
        self,
        uow: UnitOfWork,
        settings: Optional[Settings] = None,
        earning_service: Optional[VendorEarningService] = None,
    ):
        self.uow = uow
        self.db = uow.session
        self.settings = settings or get_settings()
        self.earnings = earning_service or VendorEarningService(uow, self.settings)
        self.activity = ActivityLogService(self.db)

    # ==================== HELPERS ====================

    async def _load_order(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _next_sequence(self, order_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.max(OrderStatusEntry.sequence), 0)).where(
                OrderStatusEntry.order_id == order_id
            )
        )
        return int(result.scalar() or 0) + 1

    async def _begin(self, order_id: uuid.UUID, action: str, target: Optional[str] = None):
        """Load and lock the order, then check the transition. Returns (order, check)."""
        order = await self._load_order(order_id)
        if order is None:
            return None, sm.TransitionCheck(False, f"Order {order_id} not found.")
        return order, sm.check_transition(order, action, target)

    async def _apply(
        self,
        order: Order,
        check: sm.TransitionCheck,
        actor_id: Optional[uuid.UUID],
        comment: str,
        properties: Optional[dict] = None,
    ) -> str:
        """Move the order to ``check.target`` and append history. Returns the previous status."""
        previous_status = order.status
        order.status = check.target
        fulfillment = check.transition.fulfillment.get(check.target)
        if fulfillment:
            order.fulfillment_status = fulfillment

        self.db.add(OrderStatusEntry(
            order_id=order.id,
            sequence=await self._next_sequence(order.id),
            actor_id=actor_id,
            from_status=previous_status,
            status=check.target,
            comment=comment,
        ))
        # Flush so a second transition in the same unit of work sees this entry
        await self.db.flush()

        await self.activity.log(
            action=check.transition.action,
            entity_type="cod_order",
            entity_id=order.id,
            actor_id=actor_id,
            properties={"from": previous_status, "to": check.target, **(properties or {})},
            description=comment,
        )
        logger.info(f"Order {order.order_number}: {previous_status} -> {check.target} ({check.transition.action})")
        return previous_status

    @staticmethod
    def _refused(order: Optional[Order], check: sm.TransitionCheck) -> WorkflowResult:
        logger.info(f"Refused transition for order {getattr(order, 'order_number', None)}: {check.message}")
        return WorkflowResult.fail(
            check.message,
            order_id=getattr(order, "id", None),
            status=getattr(order, "status", None),
        )

    @staticmethod
    def _done(order: Order, previous_status: str, message: str) -> WorkflowResult:
        return WorkflowResult.ok(
            message,
            order_id=order.id,
            previous_status=previous_status,
            status=order.status,
        )

    # ==================== TRANSITIONS ====================

    async def confirm_order(self, order_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> WorkflowResult:
        """PENDING -> CONFIRMED."""
        order, check = await self._begin(order_id, sm.CodAction.CONFIRM)
        if not check.allowed:
            return self._refused(order, check)

        previous = await self._apply(order, check, actor_id, "COD order confirmed")
        self.uow.record(events.CodOrderConfirmed(order_id=order.id, order_number=order.order_number))
        return self._done(order, previous, "Order confirmed successfully.")

    async def start_processing(self, order_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> WorkflowResult:
        """CONFIRMED -> PROCESSING."""
        order, check = await self._begin(order_id, sm.CodAction.START_PROCESSING)
        if not check.allowed:
            return self._refused(order, check)

        previous = await self._apply(order, check, actor_id, "Order is being prepared for delivery")
        return self._done(order, previous, "Order processing started.")

    async def mark_out_for_delivery(
        self,
        order_id: uuid.UUID,
        delivery_person_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> WorkflowResult:
        """PROCESSING -> OUT_FOR_DELIVERY, assigning the delivery person."""
        order, check = await self._begin(order_id, sm.CodAction.MARK_OUT_FOR_DELIVERY)
        if not check.allowed:
            return self._refused(order, check)

        order.delivery_person_id = delivery_person_id
        previous = await self._apply(
            order,
            check,
            actor_id,
            "Order is out for delivery",
            {"delivery_person_id": str(delivery_person_id)},
        )
        self.uow.record(events.CodOrderOutForDelivery(
            order_id=order.id,
            order_number=order.order_number,
            delivery_person_id=delivery_person_id,
        ))
        return self._done(order, previous, "Order marked out for delivery.")

    async def confirm_cod_collection(
        self,
        order_id: uuid.UUID,
        amount_collected_cents: int,
        collected_by: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> WorkflowResult:
        """
        OUT_FOR_DELIVERY -> DELIVERED, recording the cash handover.

        The cash is recorded exactly once. Vendor earnings are written in the
        same transaction. The collected amount is not compared with the
        order total unless COD_COLLECTION_TOLERANCE_CENTS is set; mismatches
        are otherwise left to daily reconciliation.
        """
        if amount_collected_cents < 0:
            raise ValueError("Collected amount cannot be negative")

        order, check = await self._begin(order_id, sm.CodAction.CONFIRM_DELIVERY)
        if not check.allowed:
            return self._refused(order, check)

        if order.is_cod_collected():
            return self._refused(order, sm.TransitionCheck(False, "COD payment has already been collected."))

        difference = amount_collected_cents - order.total_cents
        tolerance = self.settings.COD_COLLECTION_TOLERANCE_CENTS
        if tolerance is not None and abs(difference) > tolerance:
            return self._refused(order, sm.TransitionCheck(
                False,
                f"Collected amount {format_cents(amount_collected_cents)} differs from order total "
                f"{format_cents(order.total_cents)} by more than {format_cents(tolerance)}.",
            ))
        if difference:
            logger.warning(
                f"Order {order.order_number}: collected {format_cents(amount_collected_cents)} "
                f"but total is {format_cents(order.total_cents)}"
            )

        now = utcnow()
        order.mark_cod_collected(amount_collected_cents, collected_by or actor_id, now)
        previous = await self._apply(
            order,
            check,
            actor_id,
            f"COD payment of {format_cents(amount_collected_cents)} collected",
            {"amount_collected_cents": amount_collected_cents},
        )

        await self.earnings.record_earnings(order, actor_id=actor_id)

        self.uow.record(events.CodPaymentCollected(
            order_id=order.id,
            order_number=order.order_number,
            amount_collected_cents=amount_collected_cents,
            collected_by=order.cod_collected_by,
        ))
        return self._done(order, previous, "COD payment collected and order delivered.")

    async def handle_delivery_failure(
        self,
        order_id: uuid.UUID,
        reason: str,
        attempt_number: int = 1,
        reschedule: bool = True,
        actor_id: Optional[uuid.UUID] = None,
    ) -> WorkflowResult:
        """
        OUT_FOR_DELIVERY -> PROCESSING (rescheduled) or FAILED.

        Attempts are counted but not capped.
        """
        if not reason or not reason.strip():
            raise ValueError("A delivery failure reason is required")

        target = OrderStatus.PROCESSING.value if reschedule else OrderStatus.FAILED.value
        order, check = await self._begin(order_id, sm.CodAction.MARK_FAILED, target)
        if not check.allowed:
            return self._refused(order, check)

        failure = DeliveryFailureInfo(
            reason=reason,
            attempt_number=attempt_number,
            delivery_person_id=order.delivery_person_id,
            rescheduled=reschedule,
            attempted_at=utcnow(),
        )
        order.annotate("last_delivery_failure", failure, delivery_attempts=order.delivery_attempts + 1)

        previous = await self._apply(
            order,
            check,
            actor_id,
            f"Delivery attempt {attempt_number} failed: {reason}",
            {"reason": reason, "attempt_number": attempt_number, "rescheduled": reschedule},
        )
        self.uow.record(events.CodDeliveryFailed(
            order_id=order.id,
            order_number=order.order_number,
            reason=reason,
            attempt_number=attempt_number,
            rescheduled=reschedule,
        ))
        message = "Delivery rescheduled." if reschedule else "Order marked as failed."
        return self._done(order, previous, message)

    async def retry_delivery(self, order_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> WorkflowResult:
        """FAILED -> PROCESSING."""
        order, check = await self._begin(order_id, sm.CodAction.RETRY_DELIVERY)
        if not check.allowed:
            return self._refused(order, check)

        previous = await self._apply(order, check, actor_id, "Delivery retry scheduled")
        return self._done(order, previous, "Order returned to processing for another delivery attempt.")

    async def complete_order(self, order_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> WorkflowResult:
        """DELIVERED -> COMPLETED. Requires the COD cash to be recorded."""
        order, check = await self._begin(order_id, sm.CodAction.COMPLETE)
        if not check.allowed:
            return self._refused(order, check)

        order.completed_at = utcnow()
        previous = await self._apply(order, check, actor_id, "Order completed")
        return self._done(order, previous, "Order completed.")

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> WorkflowResult:
        """
        Cancel from any open status. Allowed for non-COD orders too.

        Cancelling a delivered order withholds its pending/available earnings.
        """
        if not reason or not reason.strip():
            raise ValueError("A cancellation reason is required")

        order, check = await self._begin(order_id, sm.CodAction.CANCEL)
        if not check.allowed:
            return self._refused(order, check)

        now = utcnow()
        order.cancelled_at = now
        order.annotate("cancellation", CancellationInfo(
            reason=reason,
            cancelled_by=actor_id,
            previous_status=order.status,
            cancelled_at=now,
        ))
        was_delivered = order.status == OrderStatus.DELIVERED.value

        previous = await self._apply(order, check, actor_id, f"Order cancelled: {reason}", {"reason": reason})
        if was_delivered:
            await self.earnings.withhold_order_earnings(order.id, actor_id=actor_id)

        self.uow.record(events.OrderCancelled(order_id=order.id, order_number=order.order_number, reason=reason))
        return self._done(order, previous, "Order cancelled.")

    async def refund_order(
        self,
        order_id: uuid.UUID,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> WorkflowResult:
        """DELIVERED | COMPLETED -> REFUNDED, withholding the order's unpaid earnings."""
        if not reason or not reason.strip():
            raise ValueError("A refund reason is required")

        order, check = await self._begin(order_id, sm.CodAction.REFUND)
        if not check.allowed:
            return self._refused(order, check)

        order.annotate("refund", RefundInfo(
            reason=reason,
            refunded_by=actor_id,
            previous_status=order.status,
            refunded_at=utcnow(),
        ))
        previous = await self._apply(order, check, actor_id, f"Order refunded: {reason}", {"reason": reason})
        await self.earnings.withhold_order_earnings(order.id, actor_id=actor_id)
        return self._done(order, previous, "Order refunded.")

    # ==================== READ SIDE ====================

    def get_workflow_state(self, order: Order) -> WorkflowState:
        """Current status and the actions the transition table allows next."""
        is_cod = order.is_cod()
        return WorkflowState(
            order_id=order.id,
            current_status=order.status,
            current_status_label=sm.status_label(order.status),
            available_actions=sm.available_actions(order.status, is_cod),
            workflow_enabled=is_cod,
            is_terminal=sm.is_terminal(order.status),
            cod_collected=order.is_cod_collected(),
            delivery_person_assigned=order.delivery_person_id is not None,
            delivery_attempts=order.delivery_attempts,
        )
