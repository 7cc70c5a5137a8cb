# backend/app/services/reservations.py
"""Waitlist ledger: queued demand for products that are out of stock."""
from bisect import bisect_left
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import Clock, remaining_seconds, utcnow
from backend.app.core.constants import (
    DEFAULT_PROMOTION_WINDOW_MINUTES,
    OPEN_RESERVATION_STATUSES,
    RESERVATION_CANCELLED,
    RESERVATION_PROMOTED,
    RESERVATION_WAITING,
)
from backend.app.core.events import EventChannel, ReservationCreated
from backend.app.core.exceptions import (
    AlreadyReservedError,
    EntityNotFoundError,
    StockAvailableError,
    StockServiceError,
)
from backend.app.core.logging import get_logger
from backend.app.core.metrics import reservations_created_total
from backend.app.models.reservation import Reservation
from backend.app.schemas import ReservationList, ReservationResponse
from backend.app.services.products import get_purchasable_product
from backend.app.services.promotion import PromotionEngine
from backend.app.services.sequence import SequenceAllocator
from backend.app.services.stock import StockLedger, validate_quantity

logger = get_logger(__name__)


class ReservationService:
    def __init__(
        self,
        session: AsyncSession,
        events: EventChannel,
        sequence: SequenceAllocator,
        promotion_window_minutes: int = DEFAULT_PROMOTION_WINDOW_MINUTES,
        clock: Clock = utcnow,
    ):
        self.session = session
        self.events = events
        self.sequence = sequence
        self.clock = clock
        self.stock = StockLedger(session)
        self.promotion = PromotionEngine(session, events, promotion_window_minutes, clock)

    async def get_open_reservation(self, user_id: str, product_id: int) -> Optional[Reservation]:
        result = await self.session.execute(
            select(Reservation).where(
                and_(
                    Reservation.user_id == user_id,
                    Reservation.product_id == product_id,
                    Reservation.status.in_(OPEN_RESERVATION_STATUSES),
                )
            )
        )
        return result.scalars().first()

    async def request_reservation(self, user_id: str, product_id: int, quantity: int) -> Reservation:
        """
        Join the product's waitlist.

        Only valid when a hold for the same quantity would fail. Raises
        StockAvailableError when there is enough stock, AlreadyReservedError when
        the user is already queued or promoted, SequenceUnavailableError when
        no sequence number can be minted.
        """
        try:
            validate_quantity(quantity)
            product = await get_purchasable_product(self.session, product_id)
            # Same lock as hold writes, so the stock check and insert see one state
            await self.stock.lock_product(product_id)

            available = await self.stock.available_for(product)
            if available >= quantity:
                raise StockAvailableError(product_id, available, quantity)

            existing = await self.get_open_reservation(user_id, product_id)
            if existing:
                raise AlreadyReservedError(product_id, existing.id)

            sequence_number = await self.sequence.next_sequence(product_id)
            reservation = Reservation(
                user_id=user_id,
                product_id=product_id,
                product_name=product.name,
                quantity=quantity,
                sequence_number=sequence_number,
                status=RESERVATION_WAITING,
                created_at=self.clock(),
            )
            self.session.add(reservation)
            await self.session.commit()
        except StockServiceError as e:
            await self.session.rollback()
            logger.info(
                "Reservation rejected",
                user_id=user_id,
                product_id=product_id,
                quantity=quantity,
                error_code=e.error_code,
            )
            raise

        reservations_created_total.inc()
        logger.info(
            "Reservation created",
            reservation_id=reservation.id,
            user_id=user_id,
            product_id=product_id,
            sequence_number=sequence_number,
            quantity=quantity,
        )
        await self.events.publish(ReservationCreated(
            reservation_id=reservation.id,
            user_id=user_id,
            product_id=product_id,
            product_name=reservation.product_name,
            sequence_number=sequence_number,
            quantity=quantity,
        ))
        return reservation

    async def cancel_reservation(self, user_id: str, reservation_id: int) -> Reservation:
        """Cancel the caller's open reservation; a freed promotion moves the queue on."""
        result = await self.session.execute(
            select(Reservation).where(
                and_(
                    Reservation.id == reservation_id,
                    Reservation.user_id == user_id,
                    Reservation.status.in_(OPEN_RESERVATION_STATUSES),
                )
            )
        )
        reservation = result.scalar_one_or_none()
        if not reservation:
            await self.session.rollback()
            raise EntityNotFoundError("Reservation", reservation_id)

        was_promoted = reservation.status == RESERVATION_PROMOTED
        reservation.status = RESERVATION_CANCELLED
        reservation.expires_at = None
        await self.session.commit()
        logger.info(
            "Reservation cancelled",
            reservation_id=reservation_id,
            user_id=user_id,
            product_id=reservation.product_id,
            was_promoted=was_promoted,
        )

        if was_promoted:
            await self.promotion.promote_next(reservation.product_id)
        return reservation

    async def queue_position(self, product_id: int, sequence_number: int) -> int:
        positions = await self.waiting_sequences([product_id])
        return bisect_left(positions[product_id], sequence_number) + 1

    async def waiting_sequences(self, product_ids: Iterable[int]) -> Dict[int, List[int]]:
        """Sorted WAITING sequence numbers per product, in one query."""
        ids = sorted(set(product_ids))
        sequences: Dict[int, List[int]] = defaultdict(list)
        if not ids:
            return sequences
        result = await self.session.execute(
            select(Reservation.product_id, Reservation.sequence_number)
            .where(
                and_(
                    Reservation.product_id.in_(ids),
                    Reservation.status == RESERVATION_WAITING,
                )
            )
            .order_by(Reservation.product_id, Reservation.sequence_number)
        )
        for product_id, sequence_number in result.all():
            sequences[product_id].append(sequence_number)
        return sequences

    async def batch_queue_positions(self, reservations: List[Reservation]) -> Dict[int, int]:
        """Reservation id -> queue position (0 for PROMOTED)."""
        sequences = await self.waiting_sequences(
            r.product_id for r in reservations if r.status == RESERVATION_WAITING
        )
        positions = {}
        for r in reservations:
            if r.status == RESERVATION_PROMOTED:
                positions[r.id] = 0
            else:
                positions[r.id] = bisect_left(sequences[r.product_id], r.sequence_number) + 1
        return positions

    async def list_reservations(self, user_id: str) -> ReservationList:
        result = await self.session.execute(
            select(Reservation)
            .where(
                and_(
                    Reservation.user_id == user_id,
                    Reservation.status.in_(OPEN_RESERVATION_STATUSES),
                )
            )
            .order_by(Reservation.created_at.desc(), Reservation.id.desc())
        )
        reservations = list(result.scalars().all())
        positions = await self.batch_queue_positions(reservations)
        now = self.clock()

        items = [
            ReservationResponse(
                id=r.id,
                user_id=r.user_id,
                product_id=r.product_id,
                product_name=r.product_name,
                quantity=r.quantity,
                sequence_number=r.sequence_number,
                status=r.status,
                promoted_at=r.promoted_at,
                expires_at=r.expires_at,
                created_at=r.created_at,
                remaining_seconds=(
                    remaining_seconds(r.expires_at, now) if r.status == RESERVATION_PROMOTED else None
                ),
                queue_position=positions[r.id],
            )
            for r in reservations
        ]
        return ReservationList(
            reservations=items,
            total_count=len(items),
            waiting_count=sum(1 for r in reservations if r.status == RESERVATION_WAITING),
            promoted_count=sum(1 for r in reservations if r.status == RESERVATION_PROMOTED),
        )
