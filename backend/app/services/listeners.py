# backend/app/services/listeners.py
"""Subscribers wiring the event channel back into the ledgers and out to the webhook."""
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.clock import Clock, utcnow
from backend.app.core.constants import DEFAULT_PROMOTION_WINDOW_MINUTES
from backend.app.core.events import (
    EventChannel,
    HoldAdded,
    HoldBatchExpired,
    ProductReleased,
    ReleaseReason,
    ReservationCreated,
    ReservationPromoted,
)
from backend.app.core.exceptions import StockServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import auto_holds_total
from backend.app.services.holds import HoldService
from backend.app.services.notify import WebhookNotifier
from backend.app.services.promotion import PromotionEngine
from backend.app.services.shipping import ShippingPolicy

logger = get_logger(__name__)


class StockEventListeners:
    def __init__(
        self,
        channel: EventChannel,
        session_factory: async_sessionmaker,
        promotion_window_minutes: int = DEFAULT_PROMOTION_WINDOW_MINUTES,
        shipping: Optional[ShippingPolicy] = None,
        notifier: Optional[WebhookNotifier] = None,
        clock: Clock = utcnow,
    ):
        self.channel = channel
        self.session_factory = session_factory
        self.promotion_window_minutes = promotion_window_minutes
        self.shipping = shipping or ShippingPolicy()
        self.notifier = notifier or WebhookNotifier(None)
        self.clock = clock

    def register(self) -> None:
        self.channel.subscribe(ProductReleased.name, self.on_product_released)
        self.channel.subscribe(ReservationPromoted.name, self.on_reservation_promoted)
        self.channel.subscribe(HoldAdded.name, self.on_hold_added)
        self.channel.subscribe(HoldBatchExpired.name, self.on_hold_batch_expired)
        self.channel.subscribe(ReservationCreated.name, self.on_reservation_created)

    async def on_product_released(self, event: ProductReleased) -> None:
        # The reservation sweep promotes the next entry itself
        if event.reason == ReleaseReason.RESERVATION_EXPIRED:
            return
        async with self.session_factory() as session:
            engine = PromotionEngine(session, self.channel, self.promotion_window_minutes, self.clock)
            await engine.promote_next(event.product_id)

    async def on_reservation_promoted(self, event: ReservationPromoted) -> None:
        """Try to turn the promotion into a hold. Failure leaves it PROMOTED."""
        async with self.session_factory() as session:
            service = HoldService(session, self.channel, self.shipping, self.clock)
            try:
                await service.request_hold(event.user_id, event.product_id, event.quantity)
                auto_holds_total.labels(outcome="converted").inc()
                logger.info(
                    "Promotion converted to hold",
                    reservation_id=event.reservation_id,
                    user_id=event.user_id,
                    product_id=event.product_id,
                )
            except StockServiceError as e:
                auto_holds_total.labels(outcome=e.error_code).inc()
                logger.info(
                    "Promotion left for manual checkout",
                    reservation_id=event.reservation_id,
                    user_id=event.user_id,
                    product_id=event.product_id,
                    reason=e.error_code,
                )
        await self.notifier.send(event)

    async def on_hold_added(self, event: HoldAdded) -> None:
        await self.notifier.send(event)

    async def on_hold_batch_expired(self, event: HoldBatchExpired) -> None:
        logger.info("Hold batch expired", count=event.count)

    async def on_reservation_created(self, event: ReservationCreated) -> None:
        logger.info(
            "Joined waitlist",
            reservation_id=event.reservation_id,
            product_id=event.product_id,
            sequence_number=event.sequence_number,
        )


def register_listeners(
    channel: EventChannel,
    session_factory: async_sessionmaker,
    promotion_window_minutes: int = DEFAULT_PROMOTION_WINDOW_MINUTES,
    shipping: Optional[ShippingPolicy] = None,
    notifier: Optional[WebhookNotifier] = None,
    clock: Clock = utcnow,
) -> StockEventListeners:
    listeners = StockEventListeners(
        channel, session_factory, promotion_window_minutes, shipping, notifier, clock
    )
    listeners.register()
    return listeners
