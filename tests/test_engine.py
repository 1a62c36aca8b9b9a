"""
Disciplinary engine tests against a real (SQLite) session.

Each test drives the engine the way the request path does: create the
dispute, call ``on_dispute`` and then inspect the sanction trail.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

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
    InvalidStateTransition,
    SanctionAlreadyPending,
)
from discipline.infrastructure.models import CarModel, DisciplinaryActionModel
from discipline.infrastructure.repositories import SanctionRepository
from discipline.services.disciplinary_engine import DisciplinaryEngine


async def _raise_disputes(fleet, driver, n, clock):
    """Raise *n* disputes, evaluating after each.  Returns the last engine."""
    engine = None
    for _ in range(n):
        await fleet.dispute(driver)
        engine = DisciplinaryEngine(fleet.session, clock=clock)
        await engine.on_dispute(driver.id)
    return engine


async def _actions(session, driver_id, action_type=None):
    query = select(DisciplinaryActionModel).where(
        DisciplinaryActionModel.driver_id == driver_id
    )
    if action_type is not None:
        query = query.where(DisciplinaryActionModel.action_type == action_type)
    result = await session.execute(query.order_by(DisciplinaryActionModel.id))
    return list(result.scalars().all())


async def _expire_all_due(session, driver_id, clock):
    for action in await SanctionRepository(session).find_expiring(clock.now()):
        await DisciplinaryEngine(session, clock=clock).expire(driver_id, action.id)


# ── Escalation ladder ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_two_disputes_do_nothing(fleet, clock):
    driver = await fleet.driver()
    await _raise_disputes(fleet, driver, 2, clock)
    assert await _actions(fleet.session, driver.id) == []


@pytest.mark.asyncio
async def test_third_dispute_issues_one_warning(fleet, clock, dispatcher):
    driver = await fleet.driver()
    engine = await _raise_disputes(fleet, driver, 3, clock)
    await engine.deliver_notifications(dispatcher)

    warnings = await _actions(fleet.session, driver.id, ActionType.WARNING)
    assert len(warnings) == 1
    assert warnings[0].dispute_count == 3
    assert warnings[0].state == SanctionState.ENDED
    assert driver.last_warning_at == clock.now()
    assert dispatcher.types_for(driver.user_id) == [NotificationType.DISPUTE_WARNING]

    await _raise_disputes(fleet, driver, 1, clock)
    assert len(await _actions(fleet.session, driver.id, ActionType.WARNING)) == 1


@pytest.mark.asyncio
async def test_fifth_dispute_suspends_for_three_days(fleet, clock):
    driver = await fleet.driver()
    await _raise_disputes(fleet, driver, 4, clock)

    await fleet.dispute(driver)
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    assert await engine.on_dispute(driver.id) is True

    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert suspension.suspension_days == 3
    assert suspension.state == SanctionState.ACTIVE
    assert suspension.actual_start == clock.now()
    assert suspension.scheduled_end == clock.now() + timedelta(days=3)
    assert driver.current_suspension_id == suspension.id

    account = await fleet.account_of(driver)
    assert account.status == AccountStatus.INACTIVE
    car = await fleet.session.get(CarModel, fleet.cars[driver.id].id)
    assert car.is_active is False


@pytest.mark.asyncio
async def test_warning_and_suspension_in_one_evaluation(fleet, clock, dispatcher):
    driver = await fleet.driver()
    for _ in range(5):
        await fleet.dispute(driver)
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    assert await engine.on_dispute(driver.id) is True
    await engine.deliver_notifications(dispatcher)

    kinds = [a.action_type for a in await _actions(fleet.session, driver.id)]
    assert kinds == [ActionType.WARNING, ActionType.SUSPENSION]
    assert dispatcher.types_for(driver.user_id) == [
        NotificationType.DISPUTE_WARNING,
        NotificationType.SUSPENSION_STARTED,
    ]


@pytest.mark.asyncio
async def test_full_ladder_ends_in_ban(fleet, clock):
    driver = await fleet.driver()
    await _raise_disputes(fleet, driver, 5, clock)

    # Disputes during the suspension are recorded but not evaluated
    await _raise_disputes(fleet, driver, 1, clock)
    assert len(await _actions(fleet.session, driver.id, ActionType.SUSPENSION)) == 1

    clock.advance(days=3, minutes=1)
    await _expire_all_due(fleet.session, driver.id, clock)
    assert (await fleet.account_of(driver)).status == AccountStatus.ACTIVE
    assert driver.current_suspension_id is None

    # 7th dispute: second rung
    await _raise_disputes(fleet, driver, 1, clock)
    suspensions = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert [s.suspension_days for s in suspensions] == [3, 7]
    assert suspensions[-1].state == SanctionState.ACTIVE

    clock.advance(days=7, minutes=1)
    await _expire_all_due(fleet.session, driver.id, clock)
    assert (await fleet.account_of(driver)).status == AccountStatus.ACTIVE

    # 8th dispute: ban
    await _raise_disputes(fleet, driver, 1, clock)
    [ban] = await _actions(fleet.session, driver.id, ActionType.BAN)
    assert ban.state == SanctionState.ACTIVE
    assert ban.scheduled_end is None
    assert (await fleet.account_of(driver)).status == AccountStatus.BANNED

    # A ban never expires and a banned driver is not re-evaluated
    clock.advance(days=365)
    assert await SanctionRepository(fleet.session).find_expiring(clock.now()) == []
    await fleet.dispute(driver)
    assert await DisciplinaryEngine(fleet.session, clock=clock).on_dispute(driver.id) is False


@pytest.mark.asyncio
async def test_served_first_suspension_needs_seven_disputes(fleet, clock):
    driver = await fleet.driver()
    await _raise_disputes(fleet, driver, 5, clock)
    clock.advance(days=4)
    await _expire_all_due(fleet.session, driver.id, clock)

    await _raise_disputes(fleet, driver, 1, clock)  # 6th
    assert len(await _actions(fleet.session, driver.id, ActionType.SUSPENSION)) == 1


@pytest.mark.asyncio
async def test_period_reset_clears_warning(fleet, clock):
    driver = await fleet.driver()
    await _raise_disputes(fleet, driver, 3, clock)
    assert driver.last_warning_at is not None

    clock.advance(days=120)
    await _raise_disputes(fleet, driver, 1, clock)
    assert driver.last_warning_at is None

    # Old disputes no longer count: a fresh warning needs three new ones
    await _raise_disputes(fleet, driver, 2, clock)
    warnings = await _actions(fleet.session, driver.id, ActionType.WARNING)
    assert len(warnings) == 2
    assert warnings[1].period_start > warnings[0].period_start
    assert warnings[1].dispute_count == 3


@pytest.mark.asyncio
async def test_unknown_or_inactive_driver_is_skipped(fleet, clock):
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    assert await engine.on_dispute(9999) is False

    driver = await fleet.driver(status=AccountStatus.INACTIVE)
    for _ in range(5):
        await fleet.dispute(driver)
    assert await engine.on_dispute(driver.id) is False
    assert await _actions(fleet.session, driver.id) == []


# ── Active-trip holds ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_suspension_held_while_on_trip(fleet, clock, dispatcher):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.IN_PROGRESS)
    engine = await _raise_disputes(fleet, driver, 5, clock)
    await engine.deliver_notifications(dispatcher)

    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert suspension.state == SanctionState.PAUSED
    assert suspension.pause_reason == f"active_ride_booking_{trip.id}"
    assert suspension.actual_start is None
    assert driver.current_suspension_id == suspension.id
    assert (await fleet.account_of(driver)).status == AccountStatus.ACTIVE
    assert NotificationType.SUSPENSION_SCHEDULED in dispatcher.types_for(driver.user_id)


@pytest.mark.asyncio
async def test_resume_after_trip_applies_suspension(fleet, clock, dispatcher):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.IN_PROGRESS)
    await _raise_disputes(fleet, driver, 5, clock)

    clock.advance(hours=1)
    trip.status = BookingStatus.COMPLETED
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    assert await engine.resume_suspension_after_ride(driver.id, trip.id) == 1
    await engine.deliver_notifications(dispatcher)

    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert suspension.state == SanctionState.ACTIVE
    assert suspension.is_paused is False
    assert suspension.pause_reason is None
    assert suspension.actual_start == clock.now()
    assert (await fleet.account_of(driver)).status == AccountStatus.INACTIVE
    assert dispatcher.types_for(driver.user_id) == [
        NotificationType.SUSPENSION_STARTED,
        NotificationType.SUSPENSION_RESUMED,
    ]


@pytest.mark.asyncio
async def test_window_elapsed_during_trip_is_served(fleet, clock):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.IN_PROGRESS)
    await _raise_disputes(fleet, driver, 5, clock)

    clock.advance(days=4)
    trip.status = BookingStatus.COMPLETED
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    assert await engine.resume_suspension_after_ride(driver.id, trip.id) == 1

    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert suspension.state == SanctionState.ENDED
    assert suspension.actual_start is None
    assert (await fleet.account_of(driver)).status == AccountStatus.ACTIVE
    assert driver.current_suspension_id is None


@pytest.mark.asyncio
async def test_resume_only_matches_the_blocking_booking(fleet, clock):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.IN_PROGRESS)
    await _raise_disputes(fleet, driver, 5, clock)

    engine = DisciplinaryEngine(fleet.session, clock=clock)
    assert await engine.resume_suspension_after_ride(driver.id, trip.id + 1000) == 0
    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert suspension.state == SanctionState.PAUSED


@pytest.mark.asyncio
async def test_pause_hook_holds_unstarted_action(fleet, clock, db_session):
    driver = await fleet.driver()
    engine = DisciplinaryEngine(db_session, clock=clock)
    period = await engine.periods.current_period(driver.id)
    action = await engine.sanctions.create(
        DisciplinaryActionModel(
            driver_id=driver.id,
            action_type=ActionType.SUSPENSION,
            dispute_count=5,
            suspension_days=3,
            scheduled_start=clock.now() + timedelta(hours=1),
            scheduled_end=clock.now() + timedelta(days=3),
            period_start=period.start,
            period_end=period.end,
            created_at=clock.now(),
        )
    )
    trip = await fleet.booking(driver, BookingStatus.IN_PROGRESS)

    assert await engine.pause_suspension_if_active_ride(driver.id) is True
    assert action.state == SanctionState.PAUSED
    assert action.pause_reason == f"active_ride_booking_{trip.id}"
    # Nothing left to hold
    assert await engine.pause_suspension_if_active_ride(driver.id, trip.id) is False


@pytest.mark.asyncio
async def test_pause_hook_without_trip_is_noop(fleet, clock):
    driver = await fleet.driver()
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    assert await engine.pause_suspension_if_active_ride(driver.id) is False


# ── Trip start vs. dispute ordering ───────────────────────────────────


@pytest.mark.asyncio
async def test_trip_started_before_fifth_dispute_holds_sanction(fleet, clock):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.CONFIRMED)
    await _raise_disputes(fleet, driver, 4, clock)

    engine = DisciplinaryEngine(fleet.session, clock=clock)
    booking, paused = await engine.start_trip(trip.id)
    assert booking.status == BookingStatus.IN_PROGRESS
    assert booking.started_at == clock.now()
    assert paused == 0

    await _raise_disputes(fleet, driver, 1, clock)
    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert suspension.state == SanctionState.PAUSED
    assert suspension.pause_reason == f"active_ride_booking_{trip.id}"
    assert (await fleet.account_of(driver)).status == AccountStatus.ACTIVE

    booking, resumed = await engine.complete_trip(trip.id)
    assert booking.status == BookingStatus.COMPLETED
    assert resumed == 1
    assert suspension.state == SanctionState.ACTIVE
    assert (await fleet.account_of(driver)).status == AccountStatus.INACTIVE


@pytest.mark.asyncio
async def test_suspended_driver_cannot_start_trip(fleet, clock):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.CONFIRMED)
    await _raise_disputes(fleet, driver, 5, clock)

    engine = DisciplinaryEngine(fleet.session, clock=clock)
    with pytest.raises(DriverNotInService):
        await engine.start_trip(trip.id)

    assert trip.status == BookingStatus.CONFIRMED
    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert suspension.state == SanctionState.ACTIVE


@pytest.mark.asyncio
async def test_trip_transitions_are_checked(fleet, clock):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.CONFIRMED)
    engine = DisciplinaryEngine(fleet.session, clock=clock)

    with pytest.raises(BookingNotFound):
        await engine.start_trip(9999)
    with pytest.raises(InvalidStateTransition):
        await engine.complete_trip(trip.id)


# ── Transition idempotence ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_apply_and_end_are_idempotent(fleet, clock, dispatcher):
    driver = await fleet.driver()
    await _raise_disputes(fleet, driver, 5, clock)
    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)

    engine = DisciplinaryEngine(fleet.session, clock=clock)
    assert await engine.apply_sanction(driver.id, suspension.id) is False

    clock.advance(days=3)
    assert await engine.end_sanction(driver.id, suspension.id) is True
    assert await engine.end_sanction(driver.id, suspension.id) is False
    assert await engine.apply_sanction(driver.id, suspension.id) is False
    assert await engine.deliver_notifications(dispatcher) == 1
    assert dispatcher.types_for(driver.user_id)[-1] == NotificationType.SUSPENSION_ENDED


@pytest.mark.asyncio
async def test_at_most_one_open_sanction(fleet, clock):
    driver = await fleet.driver()
    await _raise_disputes(fleet, driver, 5, clock)
    # Reactivate by hand so the next disputes are evaluated at all
    account = await fleet.account_of(driver)
    account.status = AccountStatus.ACTIVE
    await _raise_disputes(fleet, driver, 3, clock)

    result = await fleet.session.execute(
        select(func.count())
        .select_from(DisciplinaryActionModel)
        .where(
            DisciplinaryActionModel.driver_id == driver.id,
            DisciplinaryActionModel.action_type != ActionType.WARNING,
            DisciplinaryActionModel.actual_end.is_(None),
        )
    )
    assert result.scalar() == 1


# ── Manual admin path ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_manual_suspension(fleet, clock, dispatcher):
    driver = await fleet.driver()
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    action = await engine.suspend_driver(driver.id, "Fare manipulation")
    await engine.deliver_notifications(dispatcher)

    assert action.state == SanctionState.ACTIVE
    assert action.suspension_days == 3
    assert action.dispute_count == 0
    assert action.reason == "Fare manipulation"
    assert (await fleet.account_of(driver)).status == AccountStatus.INACTIVE
    [(_, kind, _, body, _)] = dispatcher.sent
    assert kind == NotificationType.SUSPENSION_STARTED
    assert "Fare manipulation" in body


@pytest.mark.asyncio
async def test_manual_suspension_rejections(fleet, clock):
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    with pytest.raises(DriverNotFound):
        await engine.suspend_driver(9999, "x")

    suspended = await fleet.driver(status=AccountStatus.INACTIVE)
    with pytest.raises(DriverAlreadySuspended):
        await engine.suspend_driver(suspended.id, "x")

    banned = await fleet.driver(status=AccountStatus.BANNED)
    with pytest.raises(DriverAlreadyBanned):
        await engine.suspend_driver(banned.id, "x")

    on_trip = await fleet.driver()
    await fleet.booking(on_trip, BookingStatus.IN_PROGRESS)
    held = await engine.suspend_driver(on_trip.id, "first")
    assert held.state == SanctionState.PAUSED
    with pytest.raises(SanctionAlreadyPending):
        await engine.suspend_driver(on_trip.id, "second")


@pytest.mark.asyncio
async def test_ban_supersedes_open_suspension(fleet, clock):
    driver = await fleet.driver()
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    suspension = await engine.suspend_driver(driver.id, "late")

    clock.advance(hours=2)
    ban = await engine.ban_driver(driver.id, "fraud")

    assert suspension.state == SanctionState.ENDED
    assert ban.state == SanctionState.ACTIVE
    assert driver.current_suspension_id == ban.id
    assert (await fleet.account_of(driver)).status == AccountStatus.BANNED
    open_action = await engine.sanctions.find_open_suspension_or_ban(driver.id)
    assert open_action.id == ban.id

    with pytest.raises(DriverAlreadyBanned):
        await engine.ban_driver(driver.id, "again")


@pytest.mark.asyncio
async def test_ban_while_on_trip_is_held(fleet, clock, dispatcher):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.IN_PROGRESS)
    engine = DisciplinaryEngine(fleet.session, clock=clock)
    ban = await engine.ban_driver(driver.id, "fraud")
    await engine.deliver_notifications(dispatcher)

    assert ban.state == SanctionState.PAUSED
    assert dispatcher.types_for(driver.user_id) == [NotificationType.BAN_SCHEDULED]
    with pytest.raises(SanctionAlreadyPending):
        await engine.ban_driver(driver.id, "again")

    trip.status = BookingStatus.COMPLETED
    assert await engine.resume_suspension_after_ride(driver.id, trip.id) == 1
    assert ban.state == SanctionState.ACTIVE
    assert (await fleet.account_of(driver)).status == AccountStatus.BANNED


# ── Notifications ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_sanction(
    fleet, clock, failing_dispatcher, caplog
):
    driver = await fleet.driver()
    engine = await _raise_disputes(fleet, driver, 5, clock)
    await fleet.session.commit()

    assert await engine.deliver_notifications(failing_dispatcher) == 0
    assert "Failed to deliver" in caplog.text
    [suspension] = await _actions(fleet.session, driver.id, ActionType.SUSPENSION)
    assert suspension.state == SanctionState.ACTIVE


# ── History ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_disciplinary_history(fleet, clock):
    driver = await fleet.driver()
    await _raise_disputes(fleet, driver, 5, clock)

    engine = DisciplinaryEngine(fleet.session, clock=clock)
    history = await engine.disciplinary_history(driver.id)
    assert [a.action_type for a, _ in history] == [ActionType.SUSPENSION, ActionType.WARNING]
    assert all(count == 5 for _, count in history)

    with pytest.raises(DriverNotFound):
        await engine.disciplinary_history(9999)
