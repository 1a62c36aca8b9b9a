"""
Dispute endpoints
=================

POST /api/v1/disputes              -- raise a dispute against a car booking
GET  /api/v1/disputes/{dispute_id} -- fetch a dispute

Creating a dispute synchronously runs the disciplinary evaluation for the
booking's driver.  The evaluation outcome never changes the dispute itself.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from discipline.api.dependencies import get_clock, get_db, get_dispatcher
from discipline.api.middleware import limiter
from discipline.api.schemas import (
    DisputeCreatedResponse,
    DisputeCreateRequest,
    DisputeResponse,
    ErrorResponse,
)
from discipline.config import settings
from discipline.domain.clock import Clock
from discipline.domain.enums import NotificationType
from discipline.domain.errors import BookingNotFound, DisputeAlreadyExists
from discipline.infrastructure.repositories import (
    AccountRepository,
    BookingRepository,
    DisputeRepository,
)
from discipline.services.disciplinary_engine import DisciplinaryEngine
from discipline.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.post(
    "",
    status_code=201,
    response_model=DisputeCreatedResponse,
    summary="Raise a dispute against a car booking",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def create_dispute(
    request: Request,
    body: DisputeCreateRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    bookings = BookingRepository(db)
    disputes = DisputeRepository(db)

    booking = await bookings.get_by_id(body.booking_car_id)
    if not booking:
        raise BookingNotFound(body.booking_car_id)
    if await disputes.get_for_booking(booking.id):
        raise DisputeAlreadyExists(booking.id)

    dispute = await disputes.create(
        booking_car_id=booking.id,
        description=body.description,
        raised_by=body.raised_by,
        created_at=clock.now(),
    )

    engine = DisciplinaryEngine(db, clock=clock)
    driver_id = await bookings.get_driver_id(booking.id)
    scheduled = False
    if driver_id is not None:
        scheduled = await engine.on_dispute(driver_id)
        if scheduled:
            logger.info("Driver %d sanction scheduled after dispute %d", driver_id, dispute.id)

    metadata = {"dispute_id": dispute.id, "booking_type": "car", "booking_id": booking.id}
    for admin_id in await AccountRepository(db).list_admin_ids():
        engine.outbox.add(
            admin_id,
            NotificationType.DISPUTE_RAISED,
            "New Dispute Raised",
            f"A new dispute has been raised: {body.description[:100]}",
            metadata,
        )
    engine.outbox.add(
        booking.user_id,
        NotificationType.DISPUTE_RAISED,
        "Dispute Raised",
        "A dispute has been raised regarding your booking. Please review and respond.",
        metadata,
    )

    await db.commit()
    await engine.deliver_notifications(dispatcher)
    return DisputeCreatedResponse(
        dispute=DisputeResponse.model_validate(dispute),
        sanction_scheduled=scheduled,
    )


@router.get(
    "/{dispute_id}",
    response_model=DisputeResponse,
    summary="Get a dispute",
)
@limiter.limit(settings.rate_limit)
async def get_dispute(
    request: Request,
    dispute_id: int,
    db: AsyncSession = Depends(get_db),
):
    dispute = await DisputeRepository(db).get_by_id(dispute_id)
    if not dispute:
        raise HTTPException(status_code=404, detail="Dispute not found")
    return dispute
