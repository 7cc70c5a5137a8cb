"""
Stock accounting.

available_stock() is the pure computation; StockLedger gathers its inputs
(ACTIVE hold quantities and outstanding PROMOTED claims) from the database.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import HOLD_ACTIVE, MAX_QUANTITY, MIN_QUANTITY, RESERVATION_PROMOTED
from backend.app.core.exceptions import InvalidQuantityError
from backend.app.models.hold import Hold
from backend.app.models.product import Product
from backend.app.models.reservation import Reservation


def validate_quantity(quantity: int) -> None:
    """Per-hold and per-reservation quantity policy."""
    if quantity < MIN_QUANTITY or quantity > MAX_QUANTITY:
        raise InvalidQuantityError(quantity, MIN_QUANTITY, MAX_QUANTITY)


def available_stock(
    catalog_quantity: int,
    hold_quantities: Iterable[int],
    promoted_quantities: Iterable[int],
) -> int:
    """Catalog quantity minus all claims, never below zero."""
    available = catalog_quantity - sum(hold_quantities) - sum(promoted_quantities)
    return max(0, available)


class StockLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_product(self, product_id: int) -> Optional[Product]:
        """SELECT ... FOR UPDATE on the product row.

        Serializes hold writes per product for the rest of the transaction.
        """
        result = await self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def hold_quantities(self, product_id: int) -> List[int]:
        result = await self.session.execute(
            select(Hold.quantity).where(
                and_(Hold.product_id == product_id, Hold.status == HOLD_ACTIVE)
            )
        )
        return [int(q) for q in result.scalars().all()]

    async def held_by(self, product_id: int, user_id: str) -> int:
        """User's ACTIVE hold quantity on the product."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(Hold.quantity), 0)).where(
                and_(
                    Hold.product_id == product_id,
                    Hold.user_id == user_id,
                    Hold.status == HOLD_ACTIVE,
                )
            )
        )
        return int(result.scalar_one())

    async def promoted_claims(
        self,
        product_id: int,
        exclude_user_id: Optional[str] = None,
    ) -> List[int]:
        """
        Outstanding quantity of each PROMOTED reservation on the product.

        A promotion stays PROMOTED after its holder's hold is created, so the
        part already covered by that user's ACTIVE holds is not counted again.
        """
        query = select(Reservation.user_id, Reservation.quantity).where(
            and_(
                Reservation.product_id == product_id,
                Reservation.status == RESERVATION_PROMOTED,
            )
        )
        if exclude_user_id is not None:
            query = query.where(Reservation.user_id != exclude_user_id)
        promoted = (await self.session.execute(query)).all()
        if not promoted:
            return []

        users = {row.user_id for row in promoted}
        held_result = await self.session.execute(
            select(Hold.user_id, func.sum(Hold.quantity))
            .where(
                and_(
                    Hold.product_id == product_id,
                    Hold.status == HOLD_ACTIVE,
                    Hold.user_id.in_(users),
                )
            )
            .group_by(Hold.user_id)
        )
        held_by_user: Dict[str, int] = defaultdict(int)
        for user_id, qty in held_result.all():
            held_by_user[user_id] = int(qty or 0)

        claims = []
        for row in promoted:
            covered = min(held_by_user[row.user_id], row.quantity)
            held_by_user[row.user_id] -= covered
            claims.append(row.quantity - covered)
        return claims

    async def available_for(
        self,
        product: Product,
        user_id: Optional[str] = None,
    ) -> int:
        """
        Available stock for product.

        With user_id, that user's own promoted claim is left out: it is the
        promotion their hold request is about to satisfy.
        """
        holds = await self.hold_quantities(product.id)
        claims = await self.promoted_claims(product.id, exclude_user_id=user_id)
        return available_stock(product.quantity, holds, claims)
