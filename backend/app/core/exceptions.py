"""
Service-layer exceptions.

ServiceError is the shared base; StockServiceError is the base for every error
kind raised by the hold and waitlist ledgers. Each kind has a stable
``error_code`` that the API layer returns to clients.
"""
from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class StockServiceError(ServiceError):
    error_code = "STOCK_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, status_code)
        self.context = context or {}

    def to_detail(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class ProductNotFoundError(StockServiceError):
    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", 404, {"product_id": product_id})


class ProductUnavailableError(StockServiceError):
    error_code = "PRODUCT_UNAVAILABLE"

    def __init__(self, product_id: int, status: str):
        super().__init__(
            "Product is not available for purchase",
            400,
            {"product_id": product_id, "status": status},
        )


class InvalidQuantityError(StockServiceError):
    error_code = "INVALID_QUANTITY"

    def __init__(self, quantity: int, minimum: int, maximum: int):
        super().__init__(
            f"Quantity must be between {minimum} and {maximum}, got {quantity}",
            400,
            {"quantity": quantity, "min": minimum, "max": maximum},
        )


class InsufficientStockError(StockServiceError):
    error_code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock. Available: {available}, Requested: {requested}",
            409,
            {"product_id": product_id, "available": available, "requested": requested},
        )


class StockAvailableError(StockServiceError):
    error_code = "STOCK_AVAILABLE"

    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            "Stock is available. Add the product to the cart instead of reserving it.",
            409,
            {"product_id": product_id, "available": available, "requested": requested},
        )


class AlreadyReservedError(StockServiceError):
    error_code = "ALREADY_RESERVED"

    def __init__(self, product_id: int, reservation_id: int):
        super().__init__(
            "You already have an active reservation for this product",
            409,
            {"product_id": product_id, "reservation_id": reservation_id},
        )


class EntityNotFoundError(StockServiceError):
    error_code = "ENTITY_NOT_FOUND"

    def __init__(self, entity: str, entity_id: int):
        super().__init__(f"{entity} {entity_id} not found", 404, {"entity": entity, "id": entity_id})


class SequenceUnavailableError(StockServiceError):
    error_code = "SEQUENCE_UNAVAILABLE"

    def __init__(self, product_id: int):
        super().__init__(
            "Waitlist is temporarily unavailable, please retry",
            503,
            {"product_id": product_id},
        )
