# backend/app/services/scheduler.py
"""
Expiry scheduler.

Every interval, expires timed-out holds and lapsed promotions, then lets the
waitlist advance. Runs unattended inside the API process, so a pass never
raises: failures are logged and counted, and the next pass retries.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.clock import Clock, utcnow
from backend.app.core.constants import (
    DEFAULT_PROMOTION_WINDOW_MINUTES,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    RESERVATION_EXPIRED,
    RESERVATION_PROMOTED,
)
from backend.app.core.events import EventChannel, HoldBatchExpired, ProductReleased, ReleaseReason
from backend.app.core.logging import get_logger
from backend.app.core.metrics import sweep_duration_seconds, sweep_expired_total, sweep_failures_total
from backend.app.models.reservation import Reservation
from backend.app.services.holds import HoldService
from backend.app.services.promotion import PromotionEngine

logger = get_logger(__name__)


class ExpiryScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        events: EventChannel,
        clock: Clock = utcnow,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        promotion_window_minutes: int = DEFAULT_PROMOTION_WINDOW_MINUTES,
    ):
        self.session_factory = session_factory
        self.events = events
        self.clock = clock
        self.interval_seconds = interval_seconds
        self.promotion_window_minutes = promotion_window_minutes
        self._task: Optional[asyncio.Task] = None

    async def sweep_holds(self) -> Dict[str, Any]:
        """ACTIVE timer holds past expires_at -> EXPIRED; one release per product."""
        now = self.clock()
        async with self.session_factory() as session:
            count, product_ids = await HoldService(session, self.events, clock=self.clock).expire_timed_out_holds(now)

        if count == 0:
            return {"expired": 0, "product_ids": []}

        sweep_expired_total.labels(ledger="holds").inc(count)
        logger.info("Expired holds", count=count, product_ids=product_ids)
        for product_id in product_ids:
            await self.events.publish(ProductReleased(
                product_id=product_id,
                reason=ReleaseReason.HOLD_EXPIRED,
                timestamp=now,
            ))
        await self.events.publish(HoldBatchExpired(count=count, timestamp=now))
        return {"expired": count, "product_ids": product_ids}

    async def sweep_reservations(self) -> Dict[str, Any]:
        """
        PROMOTED reservations past expires_at -> EXPIRED, one at a time.

        Each row gets its own transaction; a failing row is rolled back, logged
        and skipped.
        """
        now = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                select(Reservation.id).where(
                    and_(
                        Reservation.status == RESERVATION_PROMOTED,
                        Reservation.expires_at.isnot(None),
                        Reservation.expires_at <= now,
                    )
                ).order_by(Reservation.expires_at, Reservation.id)
            )
            reservation_ids = list(result.scalars().all())

        expired: List[int] = []
        failed: List[int] = []
        for reservation_id in reservation_ids:
            try:
                if await self._expire_reservation(reservation_id, now):
                    expired.append(reservation_id)
            except Exception as e:
                failed.append(reservation_id)
                sweep_failures_total.labels(ledger="reservations").inc()
                logger.error(
                    "Reservation expiry failed",
                    reservation_id=reservation_id,
                    error=str(e),
                    exc_info=True,
                )

        if expired:
            sweep_expired_total.labels(ledger="reservations").inc(len(expired))
            logger.info("Expired promoted reservations", count=len(expired))
        return {"expired": len(expired), "failed": failed}

    async def _expire_reservation(self, reservation_id: int, now) -> bool:
        async with self.session_factory() as session:
            try:
                product_id = await self._mark_expired(session, reservation_id, now)
            except Exception:
                await session.rollback()
                raise
            if product_id is None:
                return False

            await self.events.publish(ProductReleased(
                product_id=product_id,
                reason=ReleaseReason.RESERVATION_EXPIRED,
                timestamp=now,
            ))
            # The expiry is committed; a failed promotion is retried on the next release
            engine = PromotionEngine(session, self.events, self.promotion_window_minutes, self.clock)
            try:
                await engine.promote_next(product_id)
            except Exception as e:
                await session.rollback()
                sweep_failures_total.labels(ledger="promotions").inc()
                logger.error(
                    "Promotion after expiry failed",
                    reservation_id=reservation_id,
                    product_id=product_id,
                    error=str(e),
                    exc_info=True,
                )
            return True

    async def _mark_expired(self, session: AsyncSession, reservation_id: int, now) -> Optional[int]:
        result = await session.execute(
            select(Reservation).where(
                and_(
                    Reservation.id == reservation_id,
                    Reservation.status == RESERVATION_PROMOTED,
                )
            )
        )
        reservation = result.scalar_one_or_none()
        # Cancelled or converted since the candidate list was read
        if reservation is None:
            await session.rollback()
            return None

        reservation.status = RESERVATION_EXPIRED
        cascaded = await HoldService(session, self.events, clock=self.clock).expire_holds_for(
            reservation.user_id, reservation.product_id, now
        )
        await session.commit()
        logger.info(
            "Promotion lapsed",
            reservation_id=reservation_id,
            user_id=reservation.user_id,
            product_id=reservation.product_id,
            holds_expired=cascaded,
        )
        return reservation.product_id

    async def run_once(self) -> Dict[str, Any]:
        """One full pass. Never raises."""
        start = time.perf_counter()
        summary: Dict[str, Any] = {"holds": None, "reservations": None}
        try:
            summary["holds"] = await self.sweep_holds()
        except Exception as e:
            sweep_failures_total.labels(ledger="holds").inc()
            logger.error("Hold sweep failed", error=str(e), exc_info=True)
        try:
            summary["reservations"] = await self.sweep_reservations()
        except Exception as e:
            sweep_failures_total.labels(ledger="reservations").inc()
            logger.error("Reservation sweep failed", error=str(e), exc_info=True)
        sweep_duration_seconds.observe(time.perf_counter() - start)
        return summary

    async def _loop(self):
        logger.info("Expiry scheduler started", interval_seconds=self.interval_seconds)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry scheduler stopped")
