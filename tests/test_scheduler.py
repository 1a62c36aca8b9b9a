"""
Sweep tests.

The sweep opens its own sessions, so fixtures commit their setup and the
assertions read back through a fresh session.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from discipline.domain.entities import pause_reason_for
from discipline.domain.enums import (
    AccountStatus,
    ActionType,
    BookingStatus,
    NotificationType,
    SanctionState,
)
from discipline.domain.periods import new_period
from discipline.infrastructure.models import (
    DisciplinaryActionModel,
    DriverModel,
    UserModel,
)
from discipline.services.disciplinary_engine import DisciplinaryEngine
from discipline.workers.scheduler import DisciplinarySweep, SweepReport


async def _action(fleet, driver, clock, **overrides):
    period = new_period(clock.now())
    fields = dict(
        driver_id=driver.id,
        action_type=ActionType.SUSPENSION,
        dispute_count=5,
        suspension_days=3,
        scheduled_start=clock.now() - timedelta(minutes=5),
        scheduled_end=clock.now() + timedelta(days=3),
        period_start=period.start,
        period_end=period.end,
        created_at=clock.now() - timedelta(minutes=5),
    )
    fields.update(overrides)
    action = DisciplinaryActionModel(**fields)
    fleet.session.add(action)
    await fleet.session.flush()
    return action


async def _reload(session_factory, model, pk):
    async with session_factory() as session:
        return await session.get(model, pk)


@pytest.fixture
def sweep(session_factory, dispatcher, clock):
    return DisciplinarySweep(session_factory, dispatcher, clock=clock)


@pytest.mark.asyncio
async def test_applies_due_action(fleet, sweep, session_factory, dispatcher):
    driver = await fleet.driver()
    action = await _action(fleet, driver, fleet.clock)
    await fleet.session.commit()

    report = await sweep.run()

    assert report.applied == 1
    stored = await _reload(session_factory, DisciplinaryActionModel, action.id)
    assert stored.state == SanctionState.ACTIVE
    account = await _reload(session_factory, UserModel, driver.user_id)
    assert account.status == AccountStatus.INACTIVE
    assert dispatcher.types_for(driver.user_id) == [NotificationType.SUSPENSION_STARTED]


@pytest.mark.asyncio
async def test_pauses_due_action_when_on_trip(fleet, sweep, session_factory):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.IN_PROGRESS)
    action = await _action(fleet, driver, fleet.clock)
    await fleet.session.commit()

    report = await sweep.run()

    assert report.paused == 1
    assert report.applied == 0
    assert report.released == 0
    stored = await _reload(session_factory, DisciplinaryActionModel, action.id)
    assert stored.state == SanctionState.PAUSED
    assert stored.pause_reason == pause_reason_for(trip.id)
    account = await _reload(session_factory, UserModel, driver.user_id)
    assert account.status == AccountStatus.ACTIVE


@pytest.mark.asyncio
async def test_future_action_is_left_alone(fleet, sweep):
    driver = await fleet.driver()
    await _action(fleet, driver, fleet.clock, scheduled_start=fleet.clock.now() + timedelta(hours=1))
    await fleet.session.commit()

    assert (await sweep.run()).changes == 0


@pytest.mark.asyncio
async def test_ends_elapsed_suspension(fleet, sweep, session_factory, clock, dispatcher):
    driver = await fleet.driver(status=AccountStatus.INACTIVE)
    action = await _action(
        fleet,
        driver,
        clock,
        scheduled_start=clock.now() - timedelta(days=3, hours=1),
        scheduled_end=clock.now() - timedelta(hours=1),
        actual_start=clock.now() - timedelta(days=3, hours=1),
    )
    (await fleet.session.get(DriverModel, driver.id)).current_suspension_id = action.id
    await fleet.session.commit()

    report = await sweep.run()

    assert report.ended == 1
    stored = await _reload(session_factory, DisciplinaryActionModel, action.id)
    assert stored.actual_end == clock.now()
    assert (await _reload(session_factory, UserModel, driver.user_id)).status == (
        AccountStatus.ACTIVE
    )
    assert (await _reload(session_factory, DriverModel, driver.id)).current_suspension_id is None
    assert dispatcher.types_for(driver.user_id) == [NotificationType.SUSPENSION_ENDED]


@pytest.mark.asyncio
async def test_ending_suspension_keeps_ban(fleet, sweep, session_factory, clock):
    driver = await fleet.driver(status=AccountStatus.BANNED)
    await _action(
        fleet,
        driver,
        clock,
        scheduled_end=clock.now() - timedelta(minutes=1),
        actual_start=clock.now() - timedelta(days=3),
    )
    await fleet.session.commit()

    assert (await sweep.run()).ended == 1
    account = await _reload(session_factory, UserModel, driver.user_id)
    assert account.status == AccountStatus.BANNED


@pytest.mark.asyncio
async def test_sweep_is_idempotent(fleet, sweep, clock):
    driver = await fleet.driver()
    await _action(fleet, driver, clock)
    other = await fleet.driver(status=AccountStatus.INACTIVE)
    await _action(
        fleet,
        other,
        clock,
        scheduled_end=clock.now() - timedelta(minutes=1),
        actual_start=clock.now() - timedelta(days=3),
    )
    await fleet.session.commit()

    first = await sweep.run()
    second = await sweep.run()

    assert first.applied == 1 and first.ended == 1
    assert second.changes == 0
    assert second.failed == 0


@pytest.mark.asyncio
async def test_releases_pause_after_trip_finished(fleet, sweep, session_factory, clock):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.COMPLETED)
    action = await _action(
        fleet, driver, clock, is_paused=True, pause_reason=pause_reason_for(trip.id)
    )
    await fleet.session.commit()

    report = await sweep.run()

    assert report.released == 1
    stored = await _reload(session_factory, DisciplinaryActionModel, action.id)
    assert stored.state == SanctionState.ACTIVE
    assert stored.pause_reason is None
    account = await _reload(session_factory, UserModel, driver.user_id)
    assert account.status == AccountStatus.INACTIVE


@pytest.mark.asyncio
async def test_keeps_pause_while_trip_in_progress(fleet, sweep, session_factory, clock):
    driver = await fleet.driver()
    trip = await fleet.booking(driver, BookingStatus.IN_PROGRESS)
    action = await _action(
        fleet, driver, clock, is_paused=True, pause_reason=pause_reason_for(trip.id)
    )
    await fleet.session.commit()

    assert (await sweep.run()).changes == 0
    stored = await _reload(session_factory, DisciplinaryActionModel, action.id)
    assert stored.state == SanctionState.PAUSED


@pytest.mark.asyncio
async def test_resets_expired_periods(fleet, sweep, session_factory, clock):
    driver = await fleet.driver()
    driver.last_warning_at = clock.now() - timedelta(days=100)
    old = new_period(clock.now() - timedelta(days=100))
    await _action(
        fleet,
        driver,
        clock,
        action_type=ActionType.WARNING,
        suspension_days=None,
        scheduled_start=None,
        scheduled_end=None,
        period_start=old.start,
        period_end=old.end,
    )
    await fleet.session.commit()

    first = await sweep.run()
    second = await sweep.run()

    assert first.periods_reset == 1
    assert second.periods_reset == 0
    stored = await _reload(session_factory, DriverModel, driver.id)
    assert stored.last_warning_at is None


@pytest.mark.asyncio
async def test_current_period_is_not_reset(fleet, sweep, session_factory, clock):
    driver = await fleet.driver()
    driver.last_warning_at = clock.now()
    await _action(
        fleet,
        driver,
        clock,
        action_type=ActionType.WARNING,
        suspension_days=None,
        scheduled_start=None,
        scheduled_end=None,
    )
    await fleet.session.commit()

    assert (await sweep.run()).periods_reset == 0
    stored = await _reload(session_factory, DriverModel, driver.id)
    assert stored.last_warning_at == clock.now()


@pytest.mark.asyncio
async def test_failed_step_is_isolated(fleet, sweep, session_factory, clock):
    first = await fleet.driver()
    second = await fleet.driver()
    broken = await _action(fleet, first, clock)
    healthy = await _action(fleet, second, clock)
    await fleet.session.commit()

    original = DisciplinaryEngine.apply_sanction

    async def flaky(self, driver_id, action_id):
        if action_id == broken.id:
            raise RuntimeError("boom")
        return await original(self, driver_id, action_id)

    with patch.object(DisciplinaryEngine, "apply_sanction", flaky):
        report = await sweep.run()

    assert report.failed == 1
    assert report.applied == 1
    assert (await _reload(session_factory, DisciplinaryActionModel, broken.id)).state == (
        SanctionState.SCHEDULED
    )
    assert (await _reload(session_factory, DisciplinaryActionModel, healthy.id)).state == (
        SanctionState.ACTIVE
    )


def test_report_totals():
    report = SweepReport(applied=2, paused=1, ended=3, released=1, periods_reset=4, failed=9)
    assert report.changes == 11
    assert report.as_dict()["failed"] == 9
