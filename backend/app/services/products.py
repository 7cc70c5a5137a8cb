# backend/app/services/products.py
"""Product catalog lookups used by the hold and waitlist ledgers."""
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ProductNotFoundError, ProductUnavailableError
from backend.app.models.product import Product
from backend.app.services.stock import StockLedger, available_stock


async def get_product_by_id_service(session: AsyncSession, product_id: int):
    """Catalog row or None."""
    result = await session.execute(select(Product).where(Product.id == product_id))
    return result.scalar_one_or_none()


async def get_purchasable_product(session: AsyncSession, product_id: int) -> Product:
    """
    Catalog row for a product that can currently be bought.

    Raises ProductNotFoundError or ProductUnavailableError.
    """
    product = await get_product_by_id_service(session, product_id)
    if not product:
        raise ProductNotFoundError(product_id)
    if not product.is_purchasable:
        raise ProductUnavailableError(product_id, product.status)
    return product


async def get_availability_service(session: AsyncSession, product_id: int) -> Dict[str, Any]:
    """Catalog quantity and what is left after holds and promoted reservations."""
    product = await get_product_by_id_service(session, product_id)
    if not product:
        raise ProductNotFoundError(product_id)
    ledger = StockLedger(session)
    holds = await ledger.hold_quantities(product_id)
    claims = await ledger.promoted_claims(product_id)
    available = available_stock(product.quantity, holds, claims)
    return {
        "product_id": product.id,
        "status": product.status,
        "catalog_quantity": product.quantity,
        "held_quantity": sum(holds),
        "promoted_quantity": sum(claims),
        "available": available,
        "purchasable": product.is_purchasable,
    }
