"""Answers whether a driver is mid-trip right now (read-only)."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from discipline.domain.entities import NO_ACTIVE_TRIP, ActiveTrip
from discipline.infrastructure.repositories import BookingRepository


class ActiveTripGuard:
    def __init__(self, session: AsyncSession):
        self.bookings = BookingRepository(session)

    async def has_active_trip(self, driver_id: int) -> ActiveTrip:
        booking = await self.bookings.find_in_progress_for_driver(driver_id)
        if booking is None:
            return NO_ACTIVE_TRIP
        return ActiveTrip(active=True, booking_id=booking.id)
