# backend/app/services/holds.py
"""Hold ledger: time-boxed cart claims on product stock."""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, delete, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import Clock, utcnow
from backend.app.core.constants import HOLD_ACTIVE, HOLD_EXPIRED, MAX_QUANTITY, MIN_QUANTITY, ONE_CENT, ZERO
from backend.app.core.events import EventChannel, HoldAdded, ProductReleased, ReleaseReason
from backend.app.core.exceptions import (
    EntityNotFoundError,
    InsufficientStockError,
    InvalidQuantityError,
    ProductNotFoundError,
    ProductUnavailableError,
    StockServiceError,
)
from backend.app.core.logging import get_logger
from backend.app.core.metrics import holds_requested_total
from backend.app.models.hold import Hold
from backend.app.models.product import Product
from backend.app.schemas import CartSummary, HoldResponse
from backend.app.services.products import get_purchasable_product
from backend.app.services.shipping import ShippingPolicy
from backend.app.services.stock import StockLedger, validate_quantity

logger = get_logger(__name__)


class HoldService:
    def __init__(
        self,
        session: AsyncSession,
        events: EventChannel,
        shipping: Optional[ShippingPolicy] = None,
        clock: Clock = utcnow,
    ):
        self.session = session
        self.events = events
        self.shipping = shipping or ShippingPolicy()
        self.clock = clock
        self.stock = StockLedger(session)

    async def request_hold(
        self,
        user_id: str,
        product_id: int,
        quantity: int,
        color: Optional[str] = None,
        size: Optional[str] = None,
    ) -> Hold:
        """
        Claim quantity units of product for user.

        Merges into the user's ACTIVE hold for the same variant when there is
        one. Raises ProductNotFoundError, ProductUnavailableError,
        InvalidQuantityError or InsufficientStockError; nothing is written in
        that case.
        """
        try:
            hold, merged, product = await self._write_hold(user_id, product_id, quantity, color, size)
        except StockServiceError as e:
            await self.session.rollback()
            holds_requested_total.labels(outcome=e.error_code).inc()
            logger.info(
                "Hold rejected",
                user_id=user_id,
                product_id=product_id,
                quantity=quantity,
                error_code=e.error_code,
            )
            raise

        holds_requested_total.labels(outcome="merged" if merged else "created").inc()
        logger.info(
            "Hold merged" if merged else "Hold created",
            hold_id=hold.id,
            user_id=user_id,
            product_id=product_id,
            quantity=hold.quantity,
            expires_at=hold.expires_at.isoformat() if hold.expires_at else None,
        )
        await self.events.publish(HoldAdded(
            hold_id=hold.id,
            user_id=user_id,
            product_id=product_id,
            product_name=hold.product_name,
            quantity=quantity,
            stream_key=product.stream_key,
        ))
        return hold

    async def _write_hold(
        self,
        user_id: str,
        product_id: int,
        quantity: int,
        color: Optional[str],
        size: Optional[str],
    ) -> Tuple[Hold, bool, Product]:
        validate_quantity(quantity)
        product = await get_purchasable_product(self.session, product_id)

        # Cheap pre-check before taking the row lock
        available = await self.stock.available_for(product, user_id)
        if available < quantity:
            raise InsufficientStockError(product_id, available, quantity)

        # Re-derive availability under the product row lock, right before writing
        product = await self.stock.lock_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.is_purchasable:
            raise ProductUnavailableError(product_id, product.status)
        available = await self.stock.available_for(product, user_id)
        if available < quantity:
            raise InsufficientStockError(product_id, available, quantity)

        now = self.clock()
        existing = await self._find_active_variant(user_id, product_id, color, size)
        if existing:
            new_quantity = existing.quantity + quantity
            if new_quantity > MAX_QUANTITY:
                raise InvalidQuantityError(new_quantity, MIN_QUANTITY, MAX_QUANTITY)
            existing.quantity = new_quantity
            existing.updated_at = now
            await self.session.commit()
            return existing, True, product

        expires_at = now + timedelta(minutes=product.timer_duration) if product.timer_enabled else None
        hold = Hold(
            user_id=user_id,
            product_id=product_id,
            product_name=product.name,
            color=color,
            size=size,
            quantity=quantity,
            unit_price=product.price,
            shipping_fee=product.shipping_fee or 0,
            timer_enabled=product.timer_enabled,
            expires_at=expires_at,
            status=HOLD_ACTIVE,
            created_at=now,
            updated_at=now,
        )
        self.session.add(hold)
        await self.session.commit()
        return hold, False, product

    async def _find_active_variant(
        self,
        user_id: str,
        product_id: int,
        color: Optional[str],
        size: Optional[str],
    ) -> Optional[Hold]:
        filters = [
            Hold.user_id == user_id,
            Hold.product_id == product_id,
            Hold.status == HOLD_ACTIVE,
            Hold.color.is_(None) if color is None else Hold.color == color,
            Hold.size.is_(None) if size is None else Hold.size == size,
        ]
        result = await self.session.execute(select(Hold).where(and_(*filters)))
        return result.scalars().first()

    async def _get_active_hold(self, user_id: str, hold_id: int) -> Hold:
        result = await self.session.execute(
            select(Hold).where(
                and_(
                    Hold.id == hold_id,
                    Hold.user_id == user_id,
                    Hold.status == HOLD_ACTIVE,
                )
            )
        )
        hold = result.scalar_one_or_none()
        if not hold:
            raise EntityNotFoundError("Hold", hold_id)
        return hold

    async def update_hold_quantity(self, user_id: str, hold_id: int, quantity: int) -> Hold:
        """Set a hold's quantity, re-validating stock with the hold's own units added back."""
        try:
            validate_quantity(quantity)
            hold = await self._get_active_hold(user_id, hold_id)
            product = await self.stock.lock_product(hold.product_id)
            if product is None:
                raise ProductNotFoundError(hold.product_id)
            available = await self.stock.available_for(product, user_id) + hold.quantity
            if available < quantity:
                raise InsufficientStockError(product.id, available, quantity)
            hold.quantity = quantity
            hold.updated_at = self.clock()
            await self.session.commit()
        except StockServiceError:
            await self.session.rollback()
            raise

        logger.info("Hold quantity updated", hold_id=hold_id, user_id=user_id, quantity=quantity)
        return hold

    async def remove_hold(self, user_id: str, hold_id: int) -> None:
        try:
            hold = await self._get_active_hold(user_id, hold_id)
        except StockServiceError:
            await self.session.rollback()
            raise
        product_id = hold.product_id
        await self.session.delete(hold)
        await self.session.commit()

        logger.info("Hold removed", hold_id=hold_id, user_id=user_id, product_id=product_id)
        await self.events.publish(ProductReleased(
            product_id=product_id,
            reason=ReleaseReason.HOLD_REMOVED,
            timestamp=self.clock(),
        ))

    async def clear_holds(self, user_id: str) -> int:
        """Delete all of user's ACTIVE holds. Returns how many were removed."""
        result = await self.session.execute(
            select(Hold.id, Hold.product_id).where(
                and_(Hold.user_id == user_id, Hold.status == HOLD_ACTIVE)
            )
        )
        rows = result.all()
        if not rows:
            return 0

        await self.session.execute(
            delete(Hold).where(Hold.id.in_([row.id for row in rows]))
        )
        await self.session.commit()

        product_ids = sorted({row.product_id for row in rows})
        logger.info("Holds cleared", user_id=user_id, count=len(rows), product_ids=product_ids)
        now = self.clock()
        for product_id in product_ids:
            await self.events.publish(ProductReleased(
                product_id=product_id,
                reason=ReleaseReason.CART_CLEARED,
                timestamp=now,
            ))
        return len(rows)

    async def list_active_holds(self, user_id: str) -> List[Hold]:
        result = await self.session.execute(
            select(Hold)
            .where(and_(Hold.user_id == user_id, Hold.status == HOLD_ACTIVE))
            .order_by(Hold.created_at.desc(), Hold.id.desc())
        )
        return list(result.scalars().all())

    async def get_cart_summary(self, user_id: str, destination: Optional[str] = None) -> CartSummary:
        """Read-only cart view: items, subtotal, one order-level shipping fee, earliest expiry."""
        holds = await self.list_active_holds(user_id)
        now = self.clock()
        items = [HoldResponse.from_hold(h, now) for h in holds]

        subtotal = sum((item.subtotal for item in items), ZERO).quantize(ONE_CENT)
        shipping_fee = self.shipping.shipping_fee(subtotal, destination) if items else ZERO
        expirations = [h.expires_at for h in holds if h.expires_at is not None]

        return CartSummary(
            items=items,
            item_count=len(items),
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            grand_total=(subtotal + Decimal(shipping_fee)).quantize(ONE_CENT),
            earliest_expires_at=min(expirations) if expirations else None,
        )

    # ----- Expiry (driven by the scheduler) -----

    async def expire_timed_out_holds(self, now: datetime) -> Tuple[int, List[int]]:
        """
        Bulk ACTIVE -> EXPIRED for timer holds whose expires_at has passed.

        Returns (expired count, distinct affected product ids).
        """
        result = await self.session.execute(
            select(Hold.id, Hold.product_id).where(
                and_(
                    Hold.status == HOLD_ACTIVE,
                    Hold.timer_enabled.is_(True),
                    Hold.expires_at.isnot(None),
                    Hold.expires_at <= now,
                )
            )
        )
        rows = result.all()
        if not rows:
            await self.session.commit()
            return 0, []

        # A concurrent sweep may have expired some of these since the read
        expired = await self.session.execute(
            update(Hold)
            .where(and_(Hold.id.in_([row.id for row in rows]), Hold.status == HOLD_ACTIVE))
            .values(status=HOLD_EXPIRED, updated_at=now)
        )
        await self.session.commit()
        return expired.rowcount or 0, sorted({row.product_id for row in rows})

    async def expire_holds_for(self, user_id: str, product_id: int, now: datetime) -> int:
        """ACTIVE -> EXPIRED for user's holds on product. Caller commits."""
        result = await self.session.execute(
            update(Hold)
            .where(
                and_(
                    Hold.user_id == user_id,
                    Hold.product_id == product_id,
                    Hold.status == HOLD_ACTIVE,
                )
            )
            .values(status=HOLD_EXPIRED, updated_at=now)
        )
        return result.rowcount or 0
