from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import Clock, utcnow
from backend.app.core.database import async_session
from backend.app.core.events import EventChannel
from backend.app.core.settings import get_settings
from backend.app.services.holds import HoldService
from backend.app.services.reservations import ReservationService
from backend.app.services.sequence import SequenceAllocator
from backend.app.services.shipping import ShippingPolicy


# One database session per request
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def get_sequence_allocator() -> AsyncGenerator[SequenceAllocator, None]:
    redis = await SequenceAllocator.get_redis()
    yield SequenceAllocator(redis)


def get_event_channel(request: Request) -> EventChannel:
    """Process-wide channel created in the app lifespan."""
    return request.app.state.events


def get_clock() -> Clock:
    return utcnow


def get_shipping_policy() -> ShippingPolicy:
    return ShippingPolicy.from_settings(get_settings())


def get_current_user_id(x_user_id: str = Header(default="", alias="X-User-Id")) -> str:
    """Caller identity, set by the auth gateway in front of this service."""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    if len(user_id) > 64:
        raise HTTPException(status_code=400, detail="X-User-Id too long")
    return user_id


def get_hold_service(
    session: AsyncSession = Depends(get_session),
    events: EventChannel = Depends(get_event_channel),
    shipping: ShippingPolicy = Depends(get_shipping_policy),
    clock: Clock = Depends(get_clock),
) -> HoldService:
    return HoldService(session, events, shipping, clock)


def get_reservation_service(
    session: AsyncSession = Depends(get_session),
    events: EventChannel = Depends(get_event_channel),
    sequence: SequenceAllocator = Depends(get_sequence_allocator),
    clock: Clock = Depends(get_clock),
) -> ReservationService:
    return ReservationService(
        session,
        events,
        sequence,
        get_settings().RESERVATION_PROMOTION_TIMER_MINUTES,
        clock,
    )
