from fastapi import APIRouter, Depends, HTTPException

from backend.app.api.deps import get_current_user_id, get_reservation_service
from backend.app.core.exceptions import StockServiceError
from backend.app.schemas import ReservationCreate, ReservationList, ReservationResponse
from backend.app.services.reservations import ReservationService

router = APIRouter()


def _handle_stock_error(e: StockServiceError):
    raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("", response_model=ReservationResponse, status_code=201)
async def create_reservation(
    data: ReservationCreate,
    user_id: str = Depends(get_current_user_id),
    service: ReservationService = Depends(get_reservation_service),
):
    """Join the waitlist for a product that cannot be held right now."""
    try:
        reservation = await service.request_reservation(user_id, data.product_id, data.quantity)
    except StockServiceError as e:
        _handle_stock_error(e)
    position = await service.queue_position(reservation.product_id, reservation.sequence_number)
    return ReservationResponse(
        id=reservation.id,
        user_id=reservation.user_id,
        product_id=reservation.product_id,
        product_name=reservation.product_name,
        quantity=reservation.quantity,
        sequence_number=reservation.sequence_number,
        status=reservation.status,
        promoted_at=reservation.promoted_at,
        expires_at=reservation.expires_at,
        created_at=reservation.created_at,
        queue_position=position,
    )


@router.get("", response_model=ReservationList)
async def list_reservations(
    user_id: str = Depends(get_current_user_id),
    service: ReservationService = Depends(get_reservation_service),
):
    return await service.list_reservations(user_id)


@router.delete("/{reservation_id}")
async def cancel_reservation(
    reservation_id: int,
    user_id: str = Depends(get_current_user_id),
    service: ReservationService = Depends(get_reservation_service),
):
    try:
        reservation = await service.cancel_reservation(user_id, reservation_id)
    except StockServiceError as e:
        _handle_stock_error(e)
    return {"status": reservation.status, "id": reservation.id}
