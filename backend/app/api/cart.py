from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from backend.app.api.deps import get_current_user_id, get_hold_service
from backend.app.core.exceptions import StockServiceError
from backend.app.schemas import CartSummary, HoldAdd, HoldResponse, HoldUpdate
from backend.app.services.holds import HoldService

router = APIRouter()


def _handle_stock_error(e: StockServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("", response_model=CartSummary)
async def get_cart(
    destination: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    service: HoldService = Depends(get_hold_service),
):
    """Active holds with subtotal, shipping and earliest expiry."""
    return await service.get_cart_summary(user_id, destination)


@router.post("/items", response_model=HoldResponse, status_code=201)
async def add_cart_item(
    data: HoldAdd,
    user_id: str = Depends(get_current_user_id),
    service: HoldService = Depends(get_hold_service),
):
    try:
        hold = await service.request_hold(
            user_id, data.product_id, data.quantity, color=data.color, size=data.size
        )
    except StockServiceError as e:
        _handle_stock_error(e)
    return HoldResponse.from_hold(hold, service.clock())


@router.patch("/items/{hold_id}", response_model=HoldResponse)
async def update_cart_item(
    hold_id: int,
    data: HoldUpdate,
    user_id: str = Depends(get_current_user_id),
    service: HoldService = Depends(get_hold_service),
):
    try:
        hold = await service.update_hold_quantity(user_id, hold_id, data.quantity)
    except StockServiceError as e:
        _handle_stock_error(e)
    return HoldResponse.from_hold(hold, service.clock())


@router.delete("/items/{hold_id}")
async def remove_cart_item(
    hold_id: int,
    user_id: str = Depends(get_current_user_id),
    service: HoldService = Depends(get_hold_service),
):
    try:
        await service.remove_hold(user_id, hold_id)
    except StockServiceError as e:
        _handle_stock_error(e)
    return {"status": "ok"}


@router.delete("")
async def clear_cart(
    user_id: str = Depends(get_current_user_id),
    service: HoldService = Depends(get_hold_service),
):
    removed = await service.clear_holds(user_id)
    return {"status": "ok", "removed": removed}
