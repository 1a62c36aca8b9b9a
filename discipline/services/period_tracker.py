"""Resolves the rolling three-month window disputes are counted in."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from discipline.domain.clock import Clock
from discipline.domain.entities import Period, PeriodResolution
from discipline.domain.periods import is_expired, new_period
from discipline.infrastructure.repositories import DriverRepository, SanctionRepository

logger = logging.getLogger(__name__)


class PeriodTracker:
    """The only place period boundaries are computed.

    Both the read path (manual admin actions) and the write path (new
    disputes) go through here so they can never disagree on the window.
    """

    def __init__(self, session: AsyncSession, clock: Clock, months: int = 3):
        self.sanctions = SanctionRepository(session)
        self.drivers = DriverRepository(session)
        self.clock = clock
        self.months = months

    async def current_period(self, driver_id: int) -> Period:
        return (await self._resolve(driver_id)).period

    async def reset_if_expired(self, driver_id: int) -> PeriodResolution:
        resolution = await self._resolve(driver_id)
        if resolution.was_reset:
            driver = await self.drivers.get_by_id(driver_id)
            if driver is not None and driver.last_warning_at is not None:
                driver.last_warning_at = None
                logger.info("Period reset for driver %d, warning cleared", driver_id)
        return resolution

    async def _resolve(self, driver_id: int) -> PeriodResolution:
        now = self.clock.now()
        latest = await self.sanctions.find_latest_for_driver(driver_id)
        if latest is None or is_expired(latest.period_end, now):
            return PeriodResolution(new_period(now, self.months), was_reset=True)
        return PeriodResolution(
            Period(start=latest.period_start, end=latest.period_end),
            was_reset=False,
        )
