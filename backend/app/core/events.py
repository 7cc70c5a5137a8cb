"""
In-process event channel.

Services publish typed events after their ledger changes are committed;
listeners (broadcast, notifications, auto-hold, queue promotion) subscribe by
event name. Delivery is fire-and-forget: a failing listener is logged and the
remaining listeners still run. Nothing is persisted, so events published right
before a process restart are lost.
"""
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, ClassVar, Dict, List, Optional

from pydantic import BaseModel

from backend.app.core.logging import get_logger

logger = get_logger(__name__)


class Event(BaseModel):
    name: ClassVar[str] = "event"


class HoldAdded(Event):
    name: ClassVar[str] = "hold.added"

    hold_id: int
    user_id: str
    product_id: int
    product_name: str
    quantity: int
    stream_key: Optional[str] = None


class ReleaseReason(str, Enum):
    HOLD_EXPIRED = "hold_expired"
    HOLD_REMOVED = "hold_removed"
    CART_CLEARED = "cart_cleared"
    RESERVATION_EXPIRED = "reservation_expired"


class ProductReleased(Event):
    name: ClassVar[str] = "product.released"

    product_id: int
    reason: ReleaseReason
    timestamp: datetime


class HoldBatchExpired(Event):
    name: ClassVar[str] = "hold.batchExpired"

    count: int
    timestamp: datetime


class ReservationCreated(Event):
    name: ClassVar[str] = "reservation.created"

    reservation_id: int
    user_id: str
    product_id: int
    product_name: str
    sequence_number: int
    quantity: int


class ReservationPromoted(Event):
    name: ClassVar[str] = "reservation.promoted"

    reservation_id: int
    user_id: str
    product_id: int
    product_name: str
    sequence_number: int
    quantity: int
    expires_at: datetime


Handler = Callable[[Event], Awaitable[None]]


class EventChannel:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: Handler) -> None:
        self._handlers[event_name].append(handler)

    def handlers_for(self, event_name: str) -> List[Handler]:
        return list(self._handlers.get(event_name, ()))

    async def publish(self, event: Event) -> int:
        """
        Deliver event to every subscriber, in subscription order.

        Returns the number of handlers that completed without raising.
        """
        delivered = 0
        for handler in self.handlers_for(event.name):
            try:
                await handler(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    event_name=event.name,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )
        return delivered
