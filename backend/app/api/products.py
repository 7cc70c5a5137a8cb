from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session
from backend.app.core.exceptions import StockServiceError
from backend.app.schemas import AvailabilityResponse
from backend.app.services.products import get_availability_service

router = APIRouter()


@router.get("/{product_id}/availability", response_model=AvailabilityResponse)
async def get_availability(product_id: int, session: AsyncSession = Depends(get_session)):
    """Catalog quantity and what is left after holds and promoted reservations."""
    try:
        return await get_availability_service(session, product_id)
    except StockServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
