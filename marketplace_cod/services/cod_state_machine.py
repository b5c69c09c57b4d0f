"""
COD Order State Machine

This module is the SINGLE SOURCE OF TRUTH for COD order status transitions.
CodOrderWorkflow executes transitions through check_transition(), and the
workflow state projection lists actions through available_actions(). Both
read COD_TRANSITIONS and nothing else.

Lifecycle:
    PENDING -> CONFIRMED -> PROCESSING -> OUT_FOR_DELIVERY -> DELIVERED -> COMPLETED
    OUT_FOR_DELIVERY -> PROCESSING (rescheduled) | FAILED
    FAILED -> PROCESSING (retry)
    DELIVERED | COMPLETED -> REFUNDED
    any open status -> CANCELLED
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from marketplace_cod.models.order import FulfillmentStatus, Order, OrderStatus


# =============================================================================
# ACTIONS
# =============================================================================

class CodAction:
    """Action names - use these instead of strings."""
    CONFIRM = "confirm"
    START_PROCESSING = "start_processing"
    MARK_OUT_FOR_DELIVERY = "mark_out_for_delivery"
    CONFIRM_DELIVERY = "confirm_delivery"
    MARK_FAILED = "mark_failed"
    COMPLETE = "complete"
    CANCEL = "cancel"
    RETRY_DELIVERY = "retry_delivery"
    REFUND = "refund"


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""
    action: str
    label: str
    sources: FrozenSet[str]
    # First target is the default
    targets: Tuple[str, ...]
    guard_message: str
    fulfillment: Dict[str, str] = field(default_factory=dict)
    cod_only: bool = True
    requires_cod_collected: bool = False

    @property
    def default_target(self) -> str:
        return self.targets[0]


@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    message: str
    transition: Optional[Transition] = None
    target: Optional[str] = None


def _statuses(*statuses: OrderStatus) -> FrozenSet[str]:
    return frozenset(s.value for s in statuses)


# =============================================================================
# TRANSITION RULES
# =============================================================================

COD_TRANSITIONS: Dict[str, Transition] = {
    CodAction.CONFIRM: Transition(
        action=CodAction.CONFIRM,
        label="Confirm Order",
        sources=_statuses(OrderStatus.PENDING),
        targets=(OrderStatus.CONFIRMED.value,),
        guard_message="Only pending orders can be confirmed.",
    ),
    CodAction.START_PROCESSING: Transition(
        action=CodAction.START_PROCESSING,
        label="Start Processing",
        sources=_statuses(OrderStatus.CONFIRMED),
        targets=(OrderStatus.PROCESSING.value,),
        guard_message="Order must be confirmed before processing.",
        fulfillment={OrderStatus.PROCESSING.value: FulfillmentStatus.PREPARING.value},
    ),
    CodAction.MARK_OUT_FOR_DELIVERY: Transition(
        action=CodAction.MARK_OUT_FOR_DELIVERY,
        label="Out for Delivery",
        sources=_statuses(OrderStatus.PROCESSING),
        targets=(OrderStatus.OUT_FOR_DELIVERY.value,),
        guard_message="Order must be processing to mark out for delivery.",
        fulfillment={OrderStatus.OUT_FOR_DELIVERY.value: FulfillmentStatus.OUT_FOR_DELIVERY.value},
    ),
    CodAction.CONFIRM_DELIVERY: Transition(
        action=CodAction.CONFIRM_DELIVERY,
        label="Collect Payment",
        sources=_statuses(OrderStatus.OUT_FOR_DELIVERY),
        targets=(OrderStatus.DELIVERED.value,),
        guard_message="Order must be out for delivery to collect payment.",
        fulfillment={OrderStatus.DELIVERED.value: FulfillmentStatus.DELIVERED.value},
    ),
    CodAction.MARK_FAILED: Transition(
        action=CodAction.MARK_FAILED,
        label="Delivery Failed",
        sources=_statuses(OrderStatus.OUT_FOR_DELIVERY),
        targets=(OrderStatus.PROCESSING.value, OrderStatus.FAILED.value),
        guard_message="Order must be out for delivery to record a failed delivery.",
        fulfillment={
            OrderStatus.PROCESSING.value: FulfillmentStatus.PENDING_RESCHEDULE.value,
            OrderStatus.FAILED.value: FulfillmentStatus.DELIVERY_FAILED.value,
        },
    ),
    CodAction.COMPLETE: Transition(
        action=CodAction.COMPLETE,
        label="Complete Order",
        sources=_statuses(OrderStatus.DELIVERED),
        targets=(OrderStatus.COMPLETED.value,),
        guard_message="Order must be delivered before it can be completed.",
        fulfillment={OrderStatus.COMPLETED.value: FulfillmentStatus.COMPLETED.value},
        requires_cod_collected=True,
    ),
    CodAction.CANCEL: Transition(
        action=CodAction.CANCEL,
        label="Cancel Order",
        sources=_statuses(
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.OUT_FOR_DELIVERY,
            OrderStatus.DELIVERED,
            OrderStatus.FAILED,
        ),
        targets=(OrderStatus.CANCELLED.value,),
        guard_message="Completed, cancelled or refunded orders cannot be cancelled.",
        fulfillment={OrderStatus.CANCELLED.value: FulfillmentStatus.CANCELLED.value},
        cod_only=False,
    ),
    CodAction.RETRY_DELIVERY: Transition(
        action=CodAction.RETRY_DELIVERY,
        label="Retry Delivery",
        sources=_statuses(OrderStatus.FAILED),
        targets=(OrderStatus.PROCESSING.value,),
        guard_message="Only orders with a failed delivery can be retried.",
        fulfillment={OrderStatus.PROCESSING.value: FulfillmentStatus.PREPARING.value},
    ),
    CodAction.REFUND: Transition(
        action=CodAction.REFUND,
        label="Refund Order",
        sources=_statuses(OrderStatus.DELIVERED, OrderStatus.COMPLETED),
        targets=(OrderStatus.REFUNDED.value,),
        guard_message="Only delivered or completed orders can be refunded.",
        fulfillment={OrderStatus.REFUNDED.value: FulfillmentStatus.REFUNDED.value},
    ),
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_transition(action: str) -> Optional[Transition]:
    return COD_TRANSITIONS.get(action)


def check_transition(order: Order, action: str, target: Optional[str] = None) -> TransitionCheck:
    """
    Decide whether ``action`` may run on ``order``.

    Never raises. A refused check carries the message to show the caller.
    """
    transition = COD_TRANSITIONS.get(action)
    if transition is None:
        return TransitionCheck(False, f"Unknown action '{action}'.")

    if transition.cod_only and not order.is_cod():
        return TransitionCheck(False, "This action is only available for COD orders.", transition)

    if order.status not in transition.sources:
        return TransitionCheck(False, transition.guard_message, transition)

    target = target or transition.default_target
    if target not in transition.targets:
        return TransitionCheck(
            False,
            f"'{transition.label}' cannot move an order to {target}.",
            transition,
        )

    if transition.requires_cod_collected and not order.is_cod_collected():
        return TransitionCheck(
            False,
            "COD payment must be collected before completing the order.",
            transition,
        )

    return TransitionCheck(True, f"{transition.label}: {order.status} -> {target}", transition, target)


def available_actions(status: str, is_cod: bool = True) -> List[str]:
    """Actions whose source set contains ``status``, in table order."""
    return [
        action
        for action, transition in COD_TRANSITIONS.items()
        if status in transition.sources and (is_cod or not transition.cod_only)
    ]


def allowed_targets(status: str) -> List[str]:
    """Statuses reachable from ``status`` in one step."""
    targets: List[str] = []
    for action in available_actions(status):
        for target in COD_TRANSITIONS[action].targets:
            if target not in targets:
                targets.append(target)
    return targets


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return not available_actions(status)


def status_label(status: str) -> str:
    return status.replace("_", " ").title()


# =============================================================================
# VISUALIZATION (for debugging/documentation)
# =============================================================================

def describe() -> str:
    """Text representation of the state machine."""
    lines = ["=== COD Order State Machine ===", ""]
    for status in OrderStatus:
        actions = available_actions(status.value)
        if not actions:
            lines.append(f"{status.value}: [TERMINAL STATE]")
            continue
        lines.append(f"{status.value}:")
        for action in actions:
            transition = COD_TRANSITIONS[action]
            for target in transition.targets:
                lines.append(f"  -> {target} ({transition.label})")
    return "\n".join(lines)


if __name__ == "__main__":
    # Run this file directly to see the state diagram
    print(describe())
