"""Order-level shipping fee policy."""
from decimal import Decimal
from typing import Optional

from backend.app.core.constants import ONE_CENT, ZERO


class ShippingPolicy:
    """
    One shipping fee per cart, not per item.

    California destinations get their own rate; when free shipping is enabled
    any subtotal at or above the threshold ships free.
    """

    CA_STATE_CODES = ("CA", "CALIFORNIA")

    def __init__(
        self,
        default_fee: Decimal = Decimal("10"),
        ca_fee: Decimal = Decimal("8"),
        free_shipping_enabled: bool = False,
        free_shipping_threshold: Decimal = Decimal("150"),
    ):
        self.default_fee = Decimal(default_fee)
        self.ca_fee = Decimal(ca_fee)
        self.free_shipping_enabled = free_shipping_enabled
        self.free_shipping_threshold = Decimal(free_shipping_threshold)

    @classmethod
    def from_settings(cls, settings) -> "ShippingPolicy":
        return cls(
            default_fee=settings.DEFAULT_SHIPPING_FEE,
            ca_fee=settings.CA_SHIPPING_FEE,
            free_shipping_enabled=settings.FREE_SHIPPING_ENABLED,
            free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
        )

    def shipping_fee(self, subtotal: Decimal, destination: Optional[str] = None) -> Decimal:
        if subtotal <= ZERO:
            return ZERO
        if self.free_shipping_enabled and subtotal >= self.free_shipping_threshold:
            return ZERO
        if destination and destination.strip().upper() in self.CA_STATE_CODES:
            return self.ca_fee.quantize(ONE_CENT)
        return self.default_fee.quantize(ONE_CENT)
