"""
Disciplinary Engine
===================

Turns disputes into graduated sanctions and drives every sanction
transition.  Two independent triggers call into it:

* the dispute-creation request path (``on_dispute``) and the trip lifecycle
  (``start_trip`` / ``complete_trip``, which fire
  ``pause_suspension_if_active_ride`` / ``resume_suspension_after_ride``);
* the periodic sweep (``enforce_due`` / ``expire`` / ``release_stale_pause``).

Concurrency safety
------------------
* Every public entry point first takes ``SELECT … FOR UPDATE`` on the
  driver row, so work for one driver is serialised while different drivers
  proceed independently.
* ``apply_sanction`` and ``end_sanction`` use conditional updates on
  ``actual_start IS NULL`` / ``actual_end IS NULL``; a racing second caller
  sees zero rows updated and does nothing.

The engine never commits.  The caller commits the session and then calls
``deliver_notifications`` so a failed notification cannot undo a sanction.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from discipline.config import settings
from discipline.domain.clock import Clock, SystemClock
from discipline.domain.entities import (
    LadderHistory,
    Period,
    booking_id_from_pause_reason,
    can_transition,
    check_booking_transition,
    pause_reason_for,
)
from discipline.domain.enums import (
    AccountStatus,
    ActionType,
    BookingStatus,
    NotificationType,
    SanctionState,
)
from discipline.domain.errors import (
    BookingNotFound,
    DriverAlreadyBanned,
    DriverAlreadySuspended,
    DriverNotFound,
    DriverNotInService,
    SanctionAlreadyPending,
)
from discipline.domain.penalties import PenaltyEvaluator, PenaltyLadder
from discipline.infrastructure.models import (
    CarBookingModel,
    DisciplinaryActionModel,
    DriverModel,
)
from discipline.infrastructure.repositories import (
    AccountRepository,
    BookingRepository,
    DisputeRepository,
    DriverRepository,
    ListingRepository,
    SanctionRepository,
)
from discipline.services.notifications import NotificationDispatcher, NotificationOutbox
from discipline.services.period_tracker import PeriodTracker
from discipline.services.trip_guard import ActiveTripGuard

logger = logging.getLogger(__name__)


class DisciplinaryEngine:
    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        ladder: PenaltyLadder | None = None,
        period_months: int | None = None,
        manual_suspension_days: int | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.ladder = ladder or PenaltyLadder.from_settings(settings)
        self.manual_suspension_days = (
            manual_suspension_days or settings.manual_suspension_days
        )

        self.sanctions = SanctionRepository(session)
        self.drivers = DriverRepository(session)
        self.accounts = AccountRepository(session)
        self.listings = ListingRepository(session)
        self.disputes = DisputeRepository(session)
        self.bookings = BookingRepository(session)

        self.periods = PeriodTracker(
            session, self.clock, months=period_months or settings.period_months
        )
        self.trip_guard = ActiveTripGuard(session)
        self.evaluator = PenaltyEvaluator(self.ladder)
        self.outbox = NotificationOutbox()

    async def deliver_notifications(self, dispatcher: NotificationDispatcher) -> int:
        """Call only after the session has been committed."""
        return await self.outbox.deliver(dispatcher)

    # ── Event path ────────────────────────────────────────────────────

    async def on_dispute(self, driver_id: int) -> bool:
        """Evaluate the driver after a new dispute.

        Returns True iff a suspension or ban was newly scheduled.
        """
        driver = await self.drivers.get_for_update(driver_id)
        if driver is None:
            logger.warning("Dispute evaluation skipped: driver %d not found", driver_id)
            return False
        account = await self.accounts.get_by_id(driver.user_id)
        if account is None or account.status != AccountStatus.ACTIVE:
            return False  # already suspended or banned

        resolution = await self.periods.reset_if_expired(driver_id)
        count = await self.disputes.count_since(driver_id, resolution.start)
        history = await self._ladder_history(driver_id, resolution.period)
        decision = self.evaluator.evaluate(
            count, warned=driver.last_warning_at is not None, history=history
        )
        if decision.is_none:
            return False

        if decision.warn:
            await self._issue_warning(driver, count, resolution.period)

        if decision.enforces:
            await self.schedule_sanction(
                driver_id,
                decision.suspension_days or 0,
                count,
                resolution.period,
                decision.action_type,
            )
            return True
        return False

    async def schedule_sanction(
        self,
        driver_id: int,
        days: int,
        dispute_count: int,
        period: Period,
        action_type: ActionType = ActionType.SUSPENSION,
        reason: Optional[str] = None,
    ) -> DisciplinaryActionModel:
        now = self.clock.now()
        trip = await self.trip_guard.has_active_trip(driver_id)
        is_ban = action_type == ActionType.BAN

        action = await self.sanctions.create(
            DisciplinaryActionModel(
                driver_id=driver_id,
                action_type=action_type,
                dispute_count=dispute_count,
                suspension_days=None if is_ban else days,
                reason=reason,
                scheduled_start=now,
                scheduled_end=None if is_ban else now + timedelta(days=days),
                is_paused=trip.active,
                pause_reason=pause_reason_for(trip.booking_id) if trip.active else None,
                period_start=period.start,
                period_end=period.end,
                created_at=now,
            )
        )

        driver = await self.drivers.get_by_id(driver_id)
        driver.current_suspension_id = action.id

        if trip.active:
            logger.info(
                "%s %d for driver %d held: booking %d in progress",
                action_type.value.capitalize(),
                action.id,
                driver_id,
                trip.booking_id,
            )
            self._notify_held(driver, action)
        else:
            await self.apply_sanction(driver_id, action.id)
        return action

    # ── Transition primitives ─────────────────────────────────────────

    async def apply_sanction(self, driver_id: int, action_id: int) -> bool:
        """Take the account out of service.  No-op if already started."""
        action = await self.sanctions.get_by_id(action_id)
        if action is None or action.driver_id != driver_id:
            return False
        if not can_transition(action.state, SanctionState.ACTIVE):
            return False
        driver = await self.drivers.get_by_id(driver_id)
        if driver is None:
            return False

        now = self.clock.now()
        if not await self.sanctions.mark_started(action_id, now):
            logger.debug("Action %d already started elsewhere", action_id)
            return False

        is_ban = action.action_type == ActionType.BAN
        await self.accounts.set_status(
            driver.user_id, AccountStatus.BANNED if is_ban else AccountStatus.INACTIVE
        )
        cars = await self.listings.deactivate_all_for_driver(driver_id)
        driver.current_suspension_id = action.id
        logger.info(
            "Applied %s %d to driver %d (%d listings deactivated)",
            action.action_type.value,
            action_id,
            driver_id,
            cars,
        )

        if is_ban:
            self.outbox.add(
                driver.user_id,
                NotificationType.BAN_APPLIED,
                "Account Banned",
                _ban_message(action),
                {"driver_id": driver_id, "action_id": action_id},
            )
        else:
            self.outbox.add(
                driver.user_id,
                NotificationType.SUSPENSION_STARTED,
                "Account Suspended",
                _suspension_message(action),
                {"driver_id": driver_id, "action_id": action_id},
            )
        return True

    async def end_sanction(self, driver_id: int, action_id: int) -> bool:
        """Close an action.  Suspensions give the account back."""
        action = await self.sanctions.get_by_id(action_id)
        if action is None or action.driver_id != driver_id:
            return False
        if action.actual_end is not None:
            return False

        now = self.clock.now()
        if not await self.sanctions.mark_ended(action_id, now):
            return False
        if action.action_type != ActionType.SUSPENSION:
            return True

        driver = await self.drivers.get_by_id(driver_id)
        account = await self.accounts.get_by_id(driver.user_id)
        if account is not None and account.status != AccountStatus.BANNED:
            await self.accounts.set_status(driver.user_id, AccountStatus.ACTIVE)
        if driver.current_suspension_id == action.id:
            driver.current_suspension_id = None
        logger.info("Ended suspension %d for driver %d", action_id, driver_id)

        self.outbox.add(
            driver.user_id,
            NotificationType.SUSPENSION_ENDED,
            "Suspension Ended",
            "Your account suspension has ended. You can accept rides again.",
            {"driver_id": driver_id, "action_id": action_id},
        )
        return True

    # ── Trip hooks ────────────────────────────────────────────────────

    async def pause_suspension_if_active_ride(
        self, driver_id: int, booking_id: int | None = None
    ) -> bool:
        """Hold a not-yet-enforced sanction while the driver is on a trip."""
        if booking_id is None:
            trip = await self.trip_guard.has_active_trip(driver_id)
            if not trip.active:
                return False
            booking_id = trip.booking_id

        driver = await self.drivers.get_for_update(driver_id)
        if driver is None:
            return False
        action = await self.sanctions.find_pausable_for_driver(driver_id)
        if action is None:
            return False

        self._pause(action, booking_id)
        self.outbox.add(
            driver.user_id,
            NotificationType.SUSPENSION_PAUSED,
            "Suspension Paused",
            "Your account suspension has been paused due to an active ride. "
            "It will resume after your current trip completes.",
            {"driver_id": driver_id, "booking_id": booking_id},
        )
        return True

    async def resume_suspension_after_ride(self, driver_id: int, booking_id: int) -> int:
        """Release every action held by *booking_id*.  Returns how many."""
        driver = await self.drivers.get_for_update(driver_id)
        if driver is None:
            return 0
        actions = await self.sanctions.find_paused_matching_booking(driver_id, booking_id)
        now = self.clock.now()

        for action in actions:
            if action.scheduled_end is not None and action.scheduled_end <= now:
                # Window elapsed entirely while held: treated as served.
                await self.end_sanction(driver_id, action.id)
                logger.info(
                    "Action %d for driver %d elapsed while paused; marked ended",
                    action.id,
                    driver_id,
                )
                continue

            action.is_paused = False
            action.pause_reason = None
            await self.apply_sanction(driver_id, action.id)
            self.outbox.add(
                driver.user_id,
                NotificationType.SUSPENSION_RESUMED,
                "Suspension Resumed",
                "Your account suspension has been resumed after your trip completion.",
                {"driver_id": driver_id, "booking_id": booking_id},
            )
        return len(actions)

    # ── Trip lifecycle ────────────────────────────────────────────────

    async def start_trip(self, booking_id: int) -> tuple[CarBookingModel, int]:
        """CONFIRMED -> IN_PROGRESS, then hold any not-yet-enforced sanction.

        Returns the booking and how many sanctions were paused.
        """
        booking, driver = await self._lock_trip(booking_id)
        check_booking_transition(booking.status, BookingStatus.IN_PROGRESS)
        if driver is not None:
            account = await self.accounts.get_by_id(driver.user_id)
            if account is not None and account.status != AccountStatus.ACTIVE:
                raise DriverNotInService(driver.id, account.status.value)

        booking.status = BookingStatus.IN_PROGRESS
        booking.started_at = self.clock.now()
        await self.session.flush()

        if driver is None:
            return booking, 0
        paused = await self.pause_suspension_if_active_ride(driver.id, booking.id)
        return booking, int(paused)

    async def complete_trip(self, booking_id: int) -> tuple[CarBookingModel, int]:
        """IN_PROGRESS -> COMPLETED, then release sanctions held by this trip."""
        booking, driver = await self._lock_trip(booking_id)
        check_booking_transition(booking.status, BookingStatus.COMPLETED)

        booking.status = BookingStatus.COMPLETED
        booking.completed_at = self.clock.now()
        await self.session.flush()

        if driver is None:
            return booking, 0
        return booking, await self.resume_suspension_after_ride(driver.id, booking.id)

    async def _lock_trip(
        self, booking_id: int
    ) -> tuple[CarBookingModel, Optional[DriverModel]]:
        # Driver row first, same order as on_dispute, then re-read the booking
        driver_id = await self.bookings.get_driver_id(booking_id)
        driver = None
        if driver_id is not None:
            driver = await self.drivers.get_for_update(driver_id)
        booking = await self.bookings.get_for_update(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking, driver

    # ── Sweep steps ───────────────────────────────────────────────────

    async def enforce_due(self, driver_id: int, action_id: int) -> Optional[str]:
        """Start a due action, or hold it if the driver is now mid-trip.

        Returns ``"applied"``, ``"paused"`` or None when nothing changed.
        """
        if await self.drivers.get_for_update(driver_id) is None:
            return None
        action = await self.sanctions.get_for_update(action_id)
        now = self.clock.now()
        if (
            action is None
            or action.state != SanctionState.SCHEDULED
            or action.scheduled_start is None
            or action.scheduled_start > now
        ):
            return None

        trip = await self.trip_guard.has_active_trip(driver_id)
        if trip.active:
            self._pause(action, trip.booking_id)
            logger.info(
                "Action %d paused due to active ride for driver %d", action_id, driver_id
            )
            return "paused"
        if await self.apply_sanction(driver_id, action_id):
            return "applied"
        return None

    async def expire(self, driver_id: int, action_id: int) -> bool:
        if await self.drivers.get_for_update(driver_id) is None:
            return False
        action = await self.sanctions.get_for_update(action_id)
        now = self.clock.now()
        if (
            action is None
            or action.state != SanctionState.ACTIVE
            or action.scheduled_end is None
            or action.scheduled_end > now
        ):
            return False
        return await self.end_sanction(driver_id, action_id)

    async def release_stale_pause(self, driver_id: int, action_id: int) -> int:
        """Resume an action whose blocking trip is no longer in progress.

        Covers trips that finished without the completion hook firing.
        """
        action = await self.sanctions.get_by_id(action_id)
        if action is None or action.state != SanctionState.PAUSED:
            return 0
        booking_id = booking_id_from_pause_reason(action.pause_reason)
        if booking_id is None:
            return 0
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None or booking.status == BookingStatus.IN_PROGRESS:
            return 0
        return await self.resume_suspension_after_ride(driver_id, booking_id)

    # ── Manual admin path ─────────────────────────────────────────────

    async def suspend_driver(
        self, driver_id: int, reason: str
    ) -> DisciplinaryActionModel:
        driver = await self._require_driver(driver_id)
        account = await self.accounts.get_by_id(driver.user_id)
        if account.status == AccountStatus.INACTIVE:
            raise DriverAlreadySuspended(driver_id)
        if account.status == AccountStatus.BANNED:
            raise DriverAlreadyBanned(driver_id)
        open_action = await self.sanctions.find_open_suspension_or_ban(driver_id)
        if open_action is not None:
            raise SanctionAlreadyPending(driver_id, open_action.id)

        period = await self.periods.current_period(driver_id)
        return await self.schedule_sanction(
            driver_id,
            self.manual_suspension_days,
            0,
            period,
            ActionType.SUSPENSION,
            reason=reason,
        )

    async def ban_driver(self, driver_id: int, reason: str) -> DisciplinaryActionModel:
        driver = await self._require_driver(driver_id)
        account = await self.accounts.get_by_id(driver.user_id)
        if account.status == AccountStatus.BANNED:
            raise DriverAlreadyBanned(driver_id)
        open_action = await self.sanctions.find_open_suspension_or_ban(driver_id)
        if open_action is not None:
            if open_action.action_type == ActionType.BAN:
                raise SanctionAlreadyPending(driver_id, open_action.id)
            # Superseded: the ban becomes the single open sanction
            await self.sanctions.mark_ended(open_action.id, self.clock.now())
            logger.info(
                "Suspension %d for driver %d superseded by ban",
                open_action.id,
                driver_id,
            )

        period = await self.periods.current_period(driver_id)
        return await self.schedule_sanction(
            driver_id, 0, 0, period, ActionType.BAN, reason=reason
        )

    # ── Queries ───────────────────────────────────────────────────────

    async def disciplinary_history(
        self, driver_id: int
    ) -> list[tuple[DisciplinaryActionModel, int]]:
        """Actions newest first, each paired with its period's dispute count."""
        await self._require_driver(driver_id)
        history = []
        for action in await self.sanctions.list_for_driver(driver_id):
            count = await self.disputes.count_since(
                driver_id, action.period_start, until=action.period_end
            )
            history.append((action, count))
        return history

    async def pending_sanctions(
        self,
    ) -> tuple[list[DisciplinaryActionModel], list[DisciplinaryActionModel]]:
        """(not yet enforced, held by a trip), newest first."""
        return await self.sanctions.list_pending(), await self.sanctions.list_paused()

    # ── Internals ─────────────────────────────────────────────────────

    async def _require_driver(self, driver_id: int) -> DriverModel:
        driver = await self.drivers.get_for_update(driver_id)
        if driver is None:
            raise DriverNotFound(driver_id)
        return driver

    async def _ladder_history(self, driver_id: int, period: Period) -> LadderHistory:
        open_action = await self.sanctions.find_open_suspension_or_ban(driver_id)
        first = await self.sanctions.find_by_type_and_duration(
            driver_id,
            ActionType.SUSPENSION,
            self.ladder.first_suspension_days,
            period.start,
        )
        second = await self.sanctions.find_by_type_and_duration(
            driver_id,
            ActionType.SUSPENSION,
            self.ladder.second_suspension_days,
            period.start,
        )
        return LadderHistory(
            has_open_sanction=open_action is not None,
            had_first_suspension=first is not None,
            had_second_suspension=second is not None,
        )

    async def _issue_warning(
        self, driver: DriverModel, dispute_count: int, period: Period
    ) -> DisciplinaryActionModel:
        now = self.clock.now()
        driver.last_warning_at = now
        warning = await self.sanctions.create(
            DisciplinaryActionModel(
                driver_id=driver.id,
                action_type=ActionType.WARNING,
                dispute_count=dispute_count,
                period_start=period.start,
                period_end=period.end,
                created_at=now,
            )
        )
        logger.info(
            "Warning %d issued to driver %d (%d disputes)",
            warning.id,
            driver.id,
            dispute_count,
        )
        self.outbox.add(
            driver.user_id,
            NotificationType.DISPUTE_WARNING,
            "Dispute Warning",
            f"You have received {dispute_count} disputes. Please improve your "
            "service quality. Further disputes may result in account suspension.",
            {"driver_id": driver.id, "action_id": warning.id},
        )
        return warning

    def _pause(self, action: DisciplinaryActionModel, booking_id: int) -> None:
        action.is_paused = True
        action.pause_reason = pause_reason_for(booking_id)

    def _notify_held(self, driver: DriverModel, action: DisciplinaryActionModel) -> None:
        if action.action_type == ActionType.BAN:
            kind, title, noun = (
                NotificationType.BAN_SCHEDULED,
                "Account Ban Scheduled",
                "ban",
            )
        else:
            kind, title, noun = (
                NotificationType.SUSPENSION_SCHEDULED,
                "Suspension Scheduled - Paused",
                "suspension",
            )
        body = (
            f"Your account {noun} has been scheduled but is paused due to an "
            "active ride. It will resume after your current trip completes."
        )
        if action.reason:
            body += f" Reason: {action.reason}"
        self.outbox.add(
            driver.user_id,
            kind,
            title,
            body,
            {"driver_id": driver.id, "action_id": action.id},
        )


def _suspension_message(action: DisciplinaryActionModel) -> str:
    if action.reason:
        return (
            f"Your account has been suspended for {action.suspension_days} days. "
            f"Reason: {action.reason}"
        )
    return (
        f"Your account has been suspended for {action.suspension_days} days "
        f"due to {action.dispute_count} disputes."
    )


def _ban_message(action: DisciplinaryActionModel) -> str:
    if action.reason:
        return f"Your account has been permanently banned. Reason: {action.reason}"
    return (
        f"Your account has been permanently banned due to {action.dispute_count} "
        "disputes within the tracking period."
    )
