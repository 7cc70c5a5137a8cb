# backend/app/services/promotion.py
"""Advances a product's waitlist by one entry."""
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import Clock, utcnow
from backend.app.core.constants import (
    DEFAULT_PROMOTION_WINDOW_MINUTES,
    RESERVATION_PROMOTED,
    RESERVATION_WAITING,
)
from backend.app.core.events import EventChannel, ReservationPromoted
from backend.app.core.logging import get_logger
from backend.app.core.metrics import reservations_promoted_total
from backend.app.models.reservation import Reservation
from backend.app.services.stock import StockLedger

logger = get_logger(__name__)


class PromotionEngine:
    def __init__(
        self,
        session: AsyncSession,
        events: EventChannel,
        window_minutes: int = DEFAULT_PROMOTION_WINDOW_MINUTES,
        clock: Clock = utcnow,
    ):
        self.session = session
        self.events = events
        self.window = timedelta(minutes=window_minutes)
        self.clock = clock

    async def promote_next(self, product_id: int) -> Optional[Reservation]:
        """
        Promote the WAITING reservation with the smallest sequence number.

        Returns the promoted reservation, or None when nobody is waiting or
        the head of the queue does not fit in the stock that is free. The head
        stays WAITING in that case and is retried on the next release.
        The promoted user gets until expires_at to turn it into a hold.
        """
        stock = StockLedger(self.session)
        # Serializes concurrent promotions for the same product
        product = await stock.lock_product(product_id)
        reservation = None
        if product is not None:
            result = await self.session.execute(
                select(Reservation)
                .where(
                    and_(
                        Reservation.product_id == product_id,
                        Reservation.status == RESERVATION_WAITING,
                    )
                )
                .order_by(Reservation.sequence_number.asc())
                .limit(1)
            )
            reservation = result.scalar_one_or_none()
        if reservation is None:
            # Ends the transaction and releases the product lock
            await self.session.commit()
            logger.debug("Nothing to promote", product_id=product_id)
            return None

        # Part of the claim the user already holds is not counted twice
        claim = max(0, reservation.quantity - await stock.held_by(product_id, reservation.user_id))
        available = await stock.available_for(product)
        if available < claim:
            reservation_id = reservation.id
            await self.session.commit()
            logger.info(
                "Head of queue does not fit",
                reservation_id=reservation_id,
                product_id=product_id,
                claim=claim,
                available=available,
            )
            return None

        now = self.clock()
        reservation.status = RESERVATION_PROMOTED
        reservation.promoted_at = now
        reservation.expires_at = now + self.window
        await self.session.commit()

        reservations_promoted_total.inc()
        logger.info(
            "Reservation promoted",
            reservation_id=reservation.id,
            user_id=reservation.user_id,
            product_id=product_id,
            sequence_number=reservation.sequence_number,
            expires_at=reservation.expires_at.isoformat(),
        )
        await self.events.publish(ReservationPromoted(
            reservation_id=reservation.id,
            user_id=reservation.user_id,
            product_id=product_id,
            product_name=reservation.product_name,
            sequence_number=reservation.sequence_number,
            quantity=reservation.quantity,
            expires_at=reservation.expires_at,
        ))
        return reservation
