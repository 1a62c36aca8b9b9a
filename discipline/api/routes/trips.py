"""
Trip lifecycle hooks
====================

PATCH /api/v1/trips/{booking_id}/start    -- CONFIRMED -> IN_PROGRESS
PATCH /api/v1/trips/{booking_id}/complete -- IN_PROGRESS -> COMPLETED

Starting a trip holds any sanction that is scheduled but not yet enforced;
completing it releases the hold (or closes a suspension whose window ran
out during the trip).  A suspended or banned driver cannot start a trip.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from discipline.api.dependencies import get_clock, get_db, get_dispatcher
from discipline.api.middleware import limiter
from discipline.api.schemas import ErrorResponse, TripResponse
from discipline.config import settings
from discipline.domain.clock import Clock
from discipline.services.disciplinary_engine import DisciplinaryEngine
from discipline.services.notifications import NotificationDispatcher

router = APIRouter(prefix="/trips", tags=["trips"])


@router.patch(
    "/{booking_id}/start",
    response_model=TripResponse,
    summary="Start a trip",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    engine = DisciplinaryEngine(db, clock=clock)
    booking, paused = await engine.start_trip(booking_id)
    await db.commit()
    await engine.deliver_notifications(dispatcher)
    return TripResponse(
        id=booking.id,
        status=booking.status,
        started_at=booking.started_at,
        sanctions_paused=paused,
    )


@router.patch(
    "/{booking_id}/complete",
    response_model=TripResponse,
    summary="Complete a trip",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def complete_trip(
    request: Request,
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    engine = DisciplinaryEngine(db, clock=clock)
    booking, resumed = await engine.complete_trip(booking_id)
    await db.commit()
    await engine.deliver_notifications(dispatcher)
    return TripResponse(
        id=booking.id,
        status=booking.status,
        started_at=booking.started_at,
        completed_at=booking.completed_at,
        sanctions_resumed=resumed,
    )
