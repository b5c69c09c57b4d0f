"""
Tests for the COD transition table
"""
from datetime import datetime, timezone

import pytest

from marketplace_cod.models.order import Order, OrderStatus, PaymentMethod
from marketplace_cod.services import cod_state_machine as sm
from marketplace_cod.services.cod_state_machine import CodAction


def order_in(status: OrderStatus, payment_method: PaymentMethod = PaymentMethod.COD, collected: bool = False) -> Order:
    return Order(
        order_number="ORD-TEST",
        status=status.value,
        payment_method=payment_method.value,
        cod_collected_at=datetime.now(timezone.utc) if collected else None,
    )


class TestCheckTransition:
    def test_confirm_pending_order(self):
        check = sm.check_transition(order_in(OrderStatus.PENDING), CodAction.CONFIRM)
        assert check.allowed
        assert check.target == OrderStatus.CONFIRMED.value

    def test_confirm_refused_outside_pending(self):
        check = sm.check_transition(order_in(OrderStatus.CONFIRMED), CodAction.CONFIRM)
        assert not check.allowed
        assert check.message == "Only pending orders can be confirmed."

    def test_cod_only_action_refused_for_card_order(self):
        check = sm.check_transition(order_in(OrderStatus.PENDING, PaymentMethod.CARD), CodAction.CONFIRM)
        assert not check.allowed
        assert check.message == "This action is only available for COD orders."

    def test_cancel_allowed_for_card_order(self):
        check = sm.check_transition(order_in(OrderStatus.PENDING, PaymentMethod.CARD), CodAction.CANCEL)
        assert check.allowed

    def test_mark_failed_has_two_targets(self):
        order = order_in(OrderStatus.OUT_FOR_DELIVERY)
        assert sm.check_transition(order, CodAction.MARK_FAILED).target == OrderStatus.PROCESSING.value
        failed = sm.check_transition(order, CodAction.MARK_FAILED, OrderStatus.FAILED.value)
        assert failed.allowed
        assert failed.target == OrderStatus.FAILED.value

    def test_target_outside_transition_refused(self):
        check = sm.check_transition(
            order_in(OrderStatus.OUT_FOR_DELIVERY), CodAction.MARK_FAILED, OrderStatus.CANCELLED.value
        )
        assert not check.allowed

    def test_complete_requires_collected_cash(self):
        check = sm.check_transition(order_in(OrderStatus.DELIVERED), CodAction.COMPLETE)
        assert not check.allowed
        assert check.message == "COD payment must be collected before completing the order."

        check = sm.check_transition(order_in(OrderStatus.DELIVERED, collected=True), CodAction.COMPLETE)
        assert check.allowed

    @pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED])
    def test_closed_orders_cannot_be_cancelled(self, status):
        check = sm.check_transition(order_in(status), CodAction.CANCEL)
        assert not check.allowed
        assert check.message == "Completed, cancelled or refunded orders cannot be cancelled."

    def test_unknown_action(self):
        check = sm.check_transition(order_in(OrderStatus.PENDING), "teleport")
        assert not check.allowed


class TestAvailableActions:
    def test_pending(self):
        assert sm.available_actions(OrderStatus.PENDING.value) == [CodAction.CONFIRM, CodAction.CANCEL]

    def test_out_for_delivery(self):
        assert sm.available_actions(OrderStatus.OUT_FOR_DELIVERY.value) == [
            CodAction.CONFIRM_DELIVERY,
            CodAction.MARK_FAILED,
            CodAction.CANCEL,
        ]

    def test_non_cod_order_only_gets_cancel(self):
        assert sm.available_actions(OrderStatus.CONFIRMED.value, is_cod=False) == [CodAction.CANCEL]

    @pytest.mark.parametrize("status", list(OrderStatus))
    def test_listed_actions_are_exactly_the_allowed_ones(self, status):
        # Every listed action passes its source check and every other action fails it
        order = order_in(status, collected=True)
        listed = set(sm.available_actions(status.value))
        for action in sm.COD_TRANSITIONS:
            check = sm.check_transition(order, action)
            assert check.allowed == (action in listed), action

    def test_terminal_states(self):
        terminal = [status for status in OrderStatus if sm.is_terminal(status.value)]
        assert terminal == [OrderStatus.CANCELLED, OrderStatus.REFUNDED]

    def test_allowed_targets_from_out_for_delivery(self):
        assert sm.allowed_targets(OrderStatus.OUT_FOR_DELIVERY.value) == [
            OrderStatus.DELIVERED.value,
            OrderStatus.PROCESSING.value,
            OrderStatus.FAILED.value,
            OrderStatus.CANCELLED.value,
        ]


def test_status_label():
    assert sm.status_label(OrderStatus.OUT_FOR_DELIVERY.value) == "Out For Delivery"


def test_describe_lists_every_status():
    text = sm.describe()
    for status in OrderStatus:
        assert status.value in text
    assert "CANCELLED: [TERMINAL STATE]" in text
