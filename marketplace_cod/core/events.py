"""
Domain events raised by the COD workflow and payout orchestration.

Events are plain frozen dataclasses. They are collected by the unit of work
while a transaction is open and dispatched only after it commits. Handlers
are fire-and-forget: a failing handler is logged and never affects the
operation that raised the event.
"""

import asyncio
import inspect
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""
    occurred_at: datetime = field(default_factory=_now, kw_only=True)

    @property
    def name(self) -> str:
        return type(self).__name__


# ==================== ORDER EVENTS ====================

@dataclass(frozen=True)
class CodOrderConfirmed(DomainEvent):
    order_id: uuid.UUID
    order_number: str


@dataclass(frozen=True)
class CodOrderOutForDelivery(DomainEvent):
    order_id: uuid.UUID
    order_number: str
    delivery_person_id: uuid.UUID


@dataclass(frozen=True)
class CodPaymentCollected(DomainEvent):
    order_id: uuid.UUID
    order_number: str
    amount_collected_cents: int
    collected_by: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class CodDeliveryFailed(DomainEvent):
    order_id: uuid.UUID
    order_number: str
    reason: str
    attempt_number: int
    rescheduled: bool


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    order_id: uuid.UUID
    order_number: str
    reason: str


# ==================== PAYOUT EVENTS ====================

@dataclass(frozen=True)
class PayoutCompleted(DomainEvent):
    payout_id: uuid.UUID
    payout_ref: str
    vendor_id: uuid.UUID
    net_amount_cents: int


@dataclass(frozen=True)
class PayoutFailed(DomainEvent):
    payout_id: uuid.UUID
    payout_ref: str
    vendor_id: uuid.UUID
    reason: str


EventHandler = Callable[[DomainEvent], Any]


class EventDispatcher:
    """Maps event types to handlers. Handlers may be sync or async."""

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def handlers_for(self, event: DomainEvent) -> List[EventHandler]:
        handlers: List[EventHandler] = []
        for event_type in type(event).__mro__:
            handlers.extend(self._handlers.get(event_type, []))
        return handlers

    async def dispatch(self, event: DomainEvent) -> None:
        for handler in self.handlers_for(event):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Event handler {getattr(handler, '__name__', handler)} failed for {event.name}: {e}")

    async def dispatch_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            await self.dispatch(event)


# Process-wide dispatcher used when a unit of work is not given one
event_dispatcher = EventDispatcher()
