"""
Settlement Notification Service

Turns committed domain events into customer and vendor notifications.

This is a placeholder implementation that renders a template and logs it.
Delivery (SMS, email, push) belongs to an external provider.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from enum import Enum
from uuid import uuid4

from marketplace_cod.core import events
from marketplace_cod.core.events import EventDispatcher
from marketplace_cod.core.money import format_cents


logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Types of notifications."""
    # Order related
    COD_ORDER_CONFIRMED = "cod_order_confirmed"
    COD_OUT_FOR_DELIVERY = "cod_out_for_delivery"
    COD_PAYMENT_COLLECTED = "cod_payment_collected"
    COD_DELIVERY_FAILED = "cod_delivery_failed"
    ORDER_CANCELLED = "order_cancelled"

    # Vendor payouts
    PAYOUT_COMPLETED = "payout_completed"
    PAYOUT_FAILED = "payout_failed"


TEMPLATES = {
    NotificationType.COD_ORDER_CONFIRMED: (
        "Your order #{order_number} has been confirmed. "
        "Please keep the cash amount ready at delivery."
    ),
    NotificationType.COD_OUT_FOR_DELIVERY: (
        "Your order #{order_number} is out for delivery. Please keep the exact amount ready."
    ),
    NotificationType.COD_PAYMENT_COLLECTED: (
        "We received {amount} in cash for order #{order_number}. Thank you!"
    ),
    NotificationType.COD_DELIVERY_FAILED: (
        "We could not deliver order #{order_number} (attempt {attempt_number}): {reason}. {next_step}"
    ),
    NotificationType.ORDER_CANCELLED: (
        "Your order #{order_number} has been cancelled. Reason: {reason}"
    ),
    NotificationType.PAYOUT_COMPLETED: (
        "Payout {payout_ref} of {amount} has been sent to your bank account."
    ),
    NotificationType.PAYOUT_FAILED: (
        "Payout {payout_ref} could not be completed: {reason}. "
        "The funds are available again in your balance."
    ),
}


class NotificationService:
    """
    Renders and logs notifications for settlement events.

    In production, this would hand the message to an SMS/email provider.
    """

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send_notification(
        self,
        notification_type: NotificationType,
        template_data: Dict[str, Any],
        recipient: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Render a template and record the notification.

        Returns:
            Dict with send status and message ID
        """
        template = TEMPLATES.get(notification_type, "")
        try:
            message = template.format(**template_data)
        except KeyError as e:
            logger.warning(f"Missing template variable: {e}")
            message = template

        log_entry = {
            "notification_id": str(uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "type": notification_type.value,
            "recipient": recipient,
            "message": message,
            "status": "sent",
        }
        self.sent.append(log_entry)

        logger.info(f"[NOTIFICATION] {notification_type.value} to {recipient}: {message[:100]}")
        return {"success": True, "notification_id": log_entry["notification_id"], "message": message}

    # ==================== EVENT HANDLERS ====================

    async def on_order_confirmed(self, event: events.CodOrderConfirmed) -> None:
        await self.send_notification(
            NotificationType.COD_ORDER_CONFIRMED,
            {"order_number": event.order_number},
            recipient=f"order:{event.order_id}",
        )

    async def on_out_for_delivery(self, event: events.CodOrderOutForDelivery) -> None:
        await self.send_notification(
            NotificationType.COD_OUT_FOR_DELIVERY,
            {"order_number": event.order_number},
            recipient=f"order:{event.order_id}",
        )

    async def on_payment_collected(self, event: events.CodPaymentCollected) -> None:
        await self.send_notification(
            NotificationType.COD_PAYMENT_COLLECTED,
            {"order_number": event.order_number, "amount": format_cents(event.amount_collected_cents)},
            recipient=f"order:{event.order_id}",
        )

    async def on_delivery_failed(self, event: events.CodDeliveryFailed) -> None:
        next_step = "We will try again soon." if event.rescheduled else "Please contact support."
        await self.send_notification(
            NotificationType.COD_DELIVERY_FAILED,
            {
                "order_number": event.order_number,
                "attempt_number": event.attempt_number,
                "reason": event.reason,
                "next_step": next_step,
            },
            recipient=f"order:{event.order_id}",
        )

    async def on_order_cancelled(self, event: events.OrderCancelled) -> None:
        await self.send_notification(
            NotificationType.ORDER_CANCELLED,
            {"order_number": event.order_number, "reason": event.reason},
            recipient=f"order:{event.order_id}",
        )

    async def on_payout_completed(self, event: events.PayoutCompleted) -> None:
        await self.send_notification(
            NotificationType.PAYOUT_COMPLETED,
            {"payout_ref": event.payout_ref, "amount": format_cents(event.net_amount_cents)},
            recipient=f"vendor:{event.vendor_id}",
        )

    async def on_payout_failed(self, event: events.PayoutFailed) -> None:
        await self.send_notification(
            NotificationType.PAYOUT_FAILED,
            {"payout_ref": event.payout_ref, "reason": event.reason},
            recipient=f"vendor:{event.vendor_id}",
        )

    def register(self, dispatcher: EventDispatcher) -> None:
        """Subscribe every handler to ``dispatcher``."""
        handlers = {
            events.CodOrderConfirmed: self.on_order_confirmed,
            events.CodOrderOutForDelivery: self.on_out_for_delivery,
            events.CodPaymentCollected: self.on_payment_collected,
            events.CodDeliveryFailed: self.on_delivery_failed,
            events.OrderCancelled: self.on_order_cancelled,
            events.PayoutCompleted: self.on_payout_completed,
            events.PayoutFailed: self.on_payout_failed,
        }
        for event_type, handler in handlers.items():
            dispatcher.subscribe(event_type, handler)


def register_notification_handlers(dispatcher: Optional[EventDispatcher] = None) -> NotificationService:
    """Wire a NotificationService into the process-wide dispatcher."""
    service = NotificationService()
    service.register(dispatcher or events.event_dispatcher)
    return service
