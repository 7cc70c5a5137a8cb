"""
Tests for the hold ledger.

Tests cover:
- request_hold (create, merge, timer, variants, failures)
- update_hold_quantity, remove_hold, clear_holds
- get_cart_summary (subtotal, shipping, earliest expiry)
- Events emitted after commit
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import HOLD_ACTIVE, PRODUCT_SOLD_OUT
from backend.app.core.events import ReleaseReason
from backend.app.core.exceptions import (
    EntityNotFoundError,
    InsufficientStockError,
    InvalidQuantityError,
    ProductNotFoundError,
    ProductUnavailableError,
)
from backend.app.models.product import Product
from backend.app.services.holds import HoldService
from backend.app.services.shipping import ShippingPolicy
from backend.app.services.stock import StockLedger
from backend.tests.conftest import T0


@pytest.fixture
def hold_service(test_session: AsyncSession, channel, clock) -> HoldService:
    return HoldService(test_session, channel, ShippingPolicy(), clock)


async def _available(session: AsyncSession, product: Product) -> int:
    return await StockLedger(session).available_for(product)


# ============================================
# REQUEST HOLD
# ============================================

@pytest.mark.asyncio
async def test_hold_reduces_available_stock(hold_service, test_session, test_product):
    """Catalog 10, hold 7 -> 3 left."""
    hold = await hold_service.request_hold("alice", test_product.id, 7)

    assert hold.id is not None
    assert hold.status == HOLD_ACTIVE
    assert hold.quantity == 7
    assert hold.product_name == "Test Product"
    assert hold.unit_price == Decimal("25.00")
    assert await _available(test_session, test_product) == 3


@pytest.mark.asyncio
async def test_hold_with_timer_gets_expiry(hold_service, test_product):
    hold = await hold_service.request_hold("alice", test_product.id, 1)
    assert hold.timer_enabled is True
    assert hold.expires_at == T0 + timedelta(minutes=10)


@pytest.mark.asyncio
async def test_hold_without_timer_never_expires(hold_service, make_product):
    product = await make_product(timer_enabled=False)
    hold = await hold_service.request_hold("alice", product.id, 1)
    assert hold.expires_at is None


@pytest.mark.asyncio
async def test_hold_emits_hold_added(hold_service, channel, test_product):
    hold = await hold_service.request_hold("alice", test_product.id, 2)

    assert channel.names() == ["hold.added"]
    event = channel.published[0]
    assert event.hold_id == hold.id
    assert event.user_id == "alice"
    assert event.product_id == test_product.id
    assert event.quantity == 2
    assert event.stream_key == "live-1"


@pytest.mark.asyncio
async def test_insufficient_stock_is_rejected(hold_service, test_session, test_product, channel, fetch_holds):
    await hold_service.request_hold("alice", test_product.id, 7)
    channel.clear()

    with pytest.raises(InsufficientStockError) as exc:
        await hold_service.request_hold("bob", test_product.id, 5)

    assert exc.value.status_code == 409
    assert exc.value.context["available"] == 3
    assert exc.value.context["requested"] == 5
    assert await fetch_holds(user_id="bob") == []
    assert channel.published == []


@pytest.mark.asyncio
async def test_unknown_product(hold_service):
    with pytest.raises(ProductNotFoundError):
        await hold_service.request_hold("alice", 9999, 1)


@pytest.mark.asyncio
async def test_unpurchasable_product(hold_service, make_product):
    product = await make_product(status=PRODUCT_SOLD_OUT)
    with pytest.raises(ProductUnavailableError) as exc:
        await hold_service.request_hold("alice", product.id, 1)
    assert exc.value.context["status"] == PRODUCT_SOLD_OUT


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, 11])
async def test_quantity_out_of_bounds(hold_service, test_product, quantity):
    with pytest.raises(InvalidQuantityError):
        await hold_service.request_hold("alice", test_product.id, quantity)


# ============================================
# MERGE
# ============================================

@pytest.mark.asyncio
async def test_same_variant_merges_into_one_row(hold_service, test_session, test_product, fetch_holds):
    first = await hold_service.request_hold("alice", test_product.id, 2, color="red", size="M")
    before = await _available(test_session, test_product)

    second = await hold_service.request_hold("alice", test_product.id, 3, color="red", size="M")

    holds = await fetch_holds(user_id="alice")
    assert len(holds) == 1
    assert second.id == first.id
    assert holds[0].quantity == 5
    assert await _available(test_session, test_product) == before - 3


@pytest.mark.asyncio
async def test_merge_emits_hold_added_with_added_quantity(hold_service, channel, test_product):
    await hold_service.request_hold("alice", test_product.id, 2)
    await hold_service.request_hold("alice", test_product.id, 3)

    assert [e.quantity for e in channel.of("hold.added")] == [2, 3]


@pytest.mark.asyncio
async def test_variants_without_color_merge(hold_service, test_product, fetch_holds):
    await hold_service.request_hold("alice", test_product.id, 1)
    await hold_service.request_hold("alice", test_product.id, 1)
    holds = await fetch_holds(user_id="alice")
    assert [h.quantity for h in holds] == [2]


@pytest.mark.asyncio
async def test_different_variants_get_separate_rows(hold_service, test_product, fetch_holds):
    await hold_service.request_hold("alice", test_product.id, 1, color="red")
    await hold_service.request_hold("alice", test_product.id, 1, color="blue")
    await hold_service.request_hold("alice", test_product.id, 1)

    holds = await fetch_holds(user_id="alice")
    assert sorted((h.color or "") for h in holds) == ["", "blue", "red"]


@pytest.mark.asyncio
async def test_merge_above_max_quantity_is_rejected(hold_service, make_product, fetch_holds):
    product = await make_product(quantity=50)
    await hold_service.request_hold("alice", product.id, 8)

    with pytest.raises(InvalidQuantityError):
        await hold_service.request_hold("alice", product.id, 3)

    holds = await fetch_holds(user_id="alice")
    assert [h.quantity for h in holds] == [8]


@pytest.mark.asyncio
async def test_merge_is_checked_against_stock(hold_service, test_product):
    await hold_service.request_hold("alice", test_product.id, 6)
    with pytest.raises(InsufficientStockError):
        await hold_service.request_hold("alice", test_product.id, 5)


# ============================================
# UPDATE / REMOVE / CLEAR
# ============================================

@pytest.mark.asyncio
async def test_update_counts_own_prior_quantity(hold_service, test_session, test_product):
    """9 of 10 held by alice; raising her hold to 10 only needs 1 more unit."""
    hold = await hold_service.request_hold("alice", test_product.id, 9)

    updated = await hold_service.update_hold_quantity("alice", hold.id, 10)

    assert updated.quantity == 10
    assert await _available(test_session, test_product) == 0


@pytest.mark.asyncio
async def test_update_beyond_stock_is_rejected(hold_service, test_product):
    await hold_service.request_hold("bob", test_product.id, 6)
    hold = await hold_service.request_hold("alice", test_product.id, 2)

    with pytest.raises(InsufficientStockError) as exc:
        await hold_service.update_hold_quantity("alice", hold.id, 5)
    assert exc.value.context["available"] == 4


@pytest.mark.asyncio
async def test_update_someone_elses_hold(hold_service, test_product):
    hold = await hold_service.request_hold("alice", test_product.id, 2)
    with pytest.raises(EntityNotFoundError):
        await hold_service.update_hold_quantity("mallory", hold.id, 1)


@pytest.mark.asyncio
async def test_remove_hold_releases_product(hold_service, channel, test_session, test_product, fetch_holds):
    hold = await hold_service.request_hold("alice", test_product.id, 4)
    channel.clear()

    await hold_service.remove_hold("alice", hold.id)

    assert await fetch_holds(user_id="alice") == []
    assert await _available(test_session, test_product) == 10
    assert channel.names() == ["product.released"]
    assert channel.published[0].reason == ReleaseReason.HOLD_REMOVED
    assert channel.published[0].product_id == test_product.id


@pytest.mark.asyncio
async def test_remove_missing_hold(hold_service):
    with pytest.raises(EntityNotFoundError) as exc:
        await hold_service.remove_hold("alice", 12345)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_clear_holds_one_release_per_product(hold_service, channel, make_product, fetch_holds):
    first = await make_product(name="Scarf")
    second = await make_product(name="Hat")
    await hold_service.request_hold("alice", first.id, 1, color="red")
    await hold_service.request_hold("alice", first.id, 1, color="blue")
    await hold_service.request_hold("alice", second.id, 2)
    await hold_service.request_hold("bob", second.id, 1)
    channel.clear()

    removed = await hold_service.clear_holds("alice")

    assert removed == 3
    assert await fetch_holds(user_id="alice") == []
    assert len(await fetch_holds(user_id="bob")) == 1
    released = channel.of("product.released")
    assert sorted(e.product_id for e in released) == sorted([first.id, second.id])
    assert all(e.reason == ReleaseReason.CART_CLEARED for e in released)


@pytest.mark.asyncio
async def test_clear_empty_cart(hold_service, channel):
    assert await hold_service.clear_holds("nobody") == 0
    assert channel.published == []


# ============================================
# CART SUMMARY
# ============================================

@pytest.mark.asyncio
async def test_cart_summary_totals_and_shipping(hold_service, make_product, clock):
    scarf = await make_product(name="Scarf", price="12.50", timer_duration=15)
    hat = await make_product(name="Hat", price="30.00", timer_duration=5)
    await hold_service.request_hold("alice", scarf.id, 2)
    await hold_service.request_hold("alice", hat.id, 1)
    clock.advance(minutes=1)

    summary = await hold_service.get_cart_summary("alice")

    assert summary.item_count == 2
    assert summary.subtotal == Decimal("55.00")
    assert summary.shipping_fee == Decimal("10.00")
    assert summary.grand_total == Decimal("65.00")
    assert summary.earliest_expires_at == T0 + timedelta(minutes=5)
    by_name = {item.product_name: item for item in summary.items}
    assert by_name["Scarf"].subtotal == Decimal("25.00")
    assert by_name["Hat"].remaining_seconds == 4 * 60


@pytest.mark.asyncio
async def test_cart_summary_california_rate(hold_service, test_product):
    await hold_service.request_hold("alice", test_product.id, 1)
    summary = await hold_service.get_cart_summary("alice", destination="CA")
    assert summary.shipping_fee == Decimal("8.00")


@pytest.mark.asyncio
async def test_empty_cart_summary(hold_service):
    summary = await hold_service.get_cart_summary("alice")
    assert summary.items == []
    assert summary.subtotal == Decimal("0.00")
    assert summary.shipping_fee == Decimal("0")
    assert summary.earliest_expires_at is None
