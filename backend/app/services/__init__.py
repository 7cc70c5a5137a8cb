# backend/app/services/__init__.py
"""
Services layer for the stock engine.
Keeps API endpoints thin and ledger logic testable and reusable.
"""

from backend.app.services.holds import HoldService
from backend.app.services.reservations import ReservationService
from backend.app.services.promotion import PromotionEngine
from backend.app.services.scheduler import ExpiryScheduler
from backend.app.services.sequence import SequenceAllocator
from backend.app.services.shipping import ShippingPolicy
from backend.app.services.stock import StockLedger, available_stock, validate_quantity
from backend.app.services.products import (
    get_product_by_id_service,
    get_purchasable_product,
    get_availability_service,
)

__all__ = [
    # Ledgers
    "HoldService",
    "ReservationService",
    "StockLedger",
    "available_stock",
    "validate_quantity",
    # Queue
    "PromotionEngine",
    "ExpiryScheduler",
    "SequenceAllocator",
    # Collaborators
    "ShippingPolicy",
    "get_product_by_id_service",
    "get_purchasable_product",
    "get_availability_service",
]
