"""
Tests for settlement notifications
"""
import uuid

import pytest

from marketplace_cod.core import events
from marketplace_cod.core.events import EventDispatcher
from marketplace_cod.services.notification_service import (
    NotificationService,
    NotificationType,
    register_notification_handlers,
)


@pytest.mark.asyncio
async def test_payment_collected_message():
    service = NotificationService()
    dispatcher = EventDispatcher()
    service.register(dispatcher)

    await dispatcher.dispatch(events.CodPaymentCollected(
        order_id=uuid.uuid4(),
        order_number="ORD-20261019-0001",
        amount_collected_cents=102000,
    ))

    assert len(service.sent) == 1
    assert service.sent[0]["type"] == NotificationType.COD_PAYMENT_COLLECTED.value
    assert service.sent[0]["message"] == "We received $1,020.00 in cash for order #ORD-20261019-0001. Thank you!"


@pytest.mark.asyncio
async def test_delivery_failed_next_step_depends_on_reschedule():
    service = NotificationService()
    event = events.CodDeliveryFailed(
        order_id=uuid.uuid4(),
        order_number="ORD-1",
        reason="Customer not home",
        attempt_number=2,
        rescheduled=False,
    )

    await service.on_delivery_failed(event)

    assert service.sent[0]["message"].endswith("Please contact support.")


@pytest.mark.asyncio
async def test_payout_failed_goes_to_vendor():
    vendor_id = uuid.uuid4()
    service = register_notification_handlers(EventDispatcher())

    await service.on_payout_failed(events.PayoutFailed(
        payout_id=uuid.uuid4(), payout_ref="PO-ABC", vendor_id=vendor_id, reason="Account closed"
    ))

    assert service.sent[0]["recipient"] == f"vendor:{vendor_id}"
    assert "PO-ABC" in service.sent[0]["message"]


@pytest.mark.asyncio
async def test_missing_template_variable_sends_raw_template():
    service = NotificationService()

    result = await service.send_notification(NotificationType.ORDER_CANCELLED, {"order_number": "ORD-1"})

    assert result["success"]
    assert "{reason}" in result["message"]
