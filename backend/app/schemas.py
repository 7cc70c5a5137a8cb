from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from backend.app.core.clock import remaining_seconds
from backend.app.core.constants import ONE_CENT


def _sanitize_variant(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


# --- Holds (cart) ---
class HoldAdd(BaseModel):
    product_id: int
    quantity: int = 1
    color: Optional[str] = Field(default=None, max_length=50)
    size: Optional[str] = Field(default=None, max_length=50)

    @field_validator("color", "size")
    @classmethod
    def normalize_variant(cls, v: Optional[str]) -> Optional[str]:
        """Blank variant values mean 'no variant'."""
        return _sanitize_variant(v)


class HoldUpdate(BaseModel):
    quantity: int


class HoldResponse(BaseModel):
    id: int
    user_id: str
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    color: Optional[str] = None
    size: Optional[str] = None
    shipping_fee: Decimal
    timer_enabled: bool
    expires_at: Optional[datetime] = None
    status: str
    created_at: datetime
    updated_at: datetime
    subtotal: Decimal
    remaining_seconds: Optional[int] = None

    @classmethod
    def from_hold(cls, hold, now: datetime) -> "HoldResponse":
        unit_price = Decimal(str(hold.unit_price))
        return cls(
            id=hold.id,
            user_id=hold.user_id,
            product_id=hold.product_id,
            product_name=hold.product_name,
            unit_price=unit_price,
            quantity=hold.quantity,
            color=hold.color,
            size=hold.size,
            shipping_fee=Decimal(str(hold.shipping_fee or 0)),
            timer_enabled=hold.timer_enabled,
            expires_at=hold.expires_at,
            status=hold.status,
            created_at=hold.created_at,
            updated_at=hold.updated_at,
            subtotal=(unit_price * hold.quantity).quantize(ONE_CENT),
            remaining_seconds=remaining_seconds(hold.expires_at, now),
        )


class CartSummary(BaseModel):
    items: List[HoldResponse]
    item_count: int
    subtotal: Decimal
    shipping_fee: Decimal
    grand_total: Decimal
    earliest_expires_at: Optional[datetime] = None


# --- Reservations (waitlist) ---
class ReservationCreate(BaseModel):
    product_id: int
    quantity: int = 1


class ReservationResponse(BaseModel):
    id: int
    user_id: str
    product_id: int
    product_name: str
    quantity: int
    sequence_number: int
    status: str
    promoted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    # PROMOTED only
    remaining_seconds: Optional[int] = None
    # 0 while PROMOTED, 1-based while WAITING
    queue_position: Optional[int] = None


class ReservationList(BaseModel):
    reservations: List[ReservationResponse]
    total_count: int
    waiting_count: int
    promoted_count: int


# --- Catalog ---
class AvailabilityResponse(BaseModel):
    product_id: int
    status: str
    catalog_quantity: int
    held_quantity: int
    promoted_quantity: int
    available: int
    purchasable: bool
