"""
Tests for stock accounting.

Tests cover:
- available_stock() arithmetic and clamping
- Quantity policy
- Outstanding promoted claims net of the promoted user's own holds
"""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import HOLD_ACTIVE, HOLD_EXPIRED, RESERVATION_PROMOTED, RESERVATION_WAITING
from backend.app.core.exceptions import InvalidQuantityError
from backend.app.models.hold import Hold
from backend.app.models.product import Product
from backend.app.models.reservation import Reservation
from backend.app.services.products import get_availability_service
from backend.app.services.stock import StockLedger, available_stock, validate_quantity


def _hold(product: Product, user_id: str, quantity: int, status: str = HOLD_ACTIVE) -> Hold:
    return Hold(
        user_id=user_id,
        product_id=product.id,
        product_name=product.name,
        quantity=quantity,
        unit_price=product.price,
        status=status,
    )


def _reservation(product: Product, user_id: str, quantity: int, seq: int, status: str) -> Reservation:
    return Reservation(
        user_id=user_id,
        product_id=product.id,
        product_name=product.name,
        quantity=quantity,
        sequence_number=seq,
        status=status,
    )


# ============================================
# PURE COMPUTATION
# ============================================

def test_available_stock_subtracts_holds_and_promotions():
    assert available_stock(10, [3, 2], [4]) == 1


def test_available_stock_without_claims_is_catalog_quantity():
    assert available_stock(7, [], []) == 7


def test_available_stock_clamps_at_zero():
    """Inconsistent ledgers never produce negative availability."""
    assert available_stock(5, [4, 4], [3]) == 0


@pytest.mark.parametrize("quantity", [1, 5, 10])
def test_validate_quantity_accepts_bounds(quantity):
    validate_quantity(quantity)


@pytest.mark.parametrize("quantity", [0, -1, 11])
def test_validate_quantity_rejects_out_of_range(quantity):
    with pytest.raises(InvalidQuantityError) as exc:
        validate_quantity(quantity)
    assert exc.value.status_code == 400
    assert exc.value.context == {"quantity": quantity, "min": 1, "max": 10}


# ============================================
# LEDGER QUERIES
# ============================================

@pytest.mark.asyncio
async def test_hold_quantities_only_counts_active(test_session: AsyncSession, test_product: Product):
    test_session.add_all([
        _hold(test_product, "alice", 3),
        _hold(test_product, "bob", 2),
        _hold(test_product, "carol", 4, status=HOLD_EXPIRED),
    ])
    await test_session.commit()

    ledger = StockLedger(test_session)
    assert sorted(await ledger.hold_quantities(test_product.id)) == [2, 3]


@pytest.mark.asyncio
async def test_waiting_reservations_do_not_reduce_stock(test_session: AsyncSession, test_product: Product):
    test_session.add(_reservation(test_product, "alice", 5, 1, RESERVATION_WAITING))
    await test_session.commit()

    ledger = StockLedger(test_session)
    assert await ledger.promoted_claims(test_product.id) == []
    assert await ledger.available_for(test_product) == 10


@pytest.mark.asyncio
async def test_promoted_claim_is_not_double_counted_with_own_hold(
    test_session: AsyncSession, test_product: Product
):
    """A promotion already converted into a hold claims nothing extra."""
    test_session.add_all([
        _reservation(test_product, "bob", 5, 1, RESERVATION_PROMOTED),
        _hold(test_product, "bob", 5),
    ])
    await test_session.commit()

    ledger = StockLedger(test_session)
    assert await ledger.promoted_claims(test_product.id) == [0]
    assert await ledger.available_for(test_product) == 5


@pytest.mark.asyncio
async def test_partially_covered_promotion_claims_the_rest(
    test_session: AsyncSession, test_product: Product
):
    test_session.add_all([
        _reservation(test_product, "bob", 5, 1, RESERVATION_PROMOTED),
        _hold(test_product, "bob", 2),
        _hold(test_product, "alice", 1),
    ])
    await test_session.commit()

    ledger = StockLedger(test_session)
    assert await ledger.promoted_claims(test_product.id) == [3]
    assert await ledger.available_for(test_product) == 10 - 2 - 1 - 3


@pytest.mark.asyncio
async def test_available_for_user_excludes_own_promotion(
    test_session: AsyncSession, test_product: Product
):
    test_session.add_all([
        _reservation(test_product, "bob", 6, 1, RESERVATION_PROMOTED),
        _hold(test_product, "alice", 3),
    ])
    await test_session.commit()

    ledger = StockLedger(test_session)
    assert await ledger.available_for(test_product) == 1
    assert await ledger.available_for(test_product, "bob") == 7
    assert await ledger.available_for(test_product, "alice") == 1


@pytest.mark.asyncio
async def test_availability_service_reports_breakdown(test_session: AsyncSession, test_product: Product):
    test_session.add_all([
        _hold(test_product, "alice", 4),
        _reservation(test_product, "bob", 2, 1, RESERVATION_PROMOTED),
    ])
    await test_session.commit()

    availability = await get_availability_service(test_session, test_product.id)
    assert availability == {
        "product_id": test_product.id,
        "status": "AVAILABLE",
        "catalog_quantity": 10,
        "held_quantity": 4,
        "promoted_quantity": 2,
        "available": 4,
        "purchasable": True,
    }
