"""
Background Sanction Sweep
=========================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default once a day).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs the sweep at a
  time across multiple API processes.
* Each step runs in its own transaction and re-checks the action under a
  driver row lock, so a crash mid-sweep leaves finished steps committed and
  unfinished ones untouched for the next run.

Steps per sweep
---------------
1. Start due actions (or pause them if the driver is now mid-trip).
2. End suspensions whose window has elapsed.
3. Release pauses whose blocking trip is no longer in progress.
4. Clear ``last_warning_at`` for drivers whose latest period expired.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from discipline.config import settings
from discipline.domain.clock import Clock, FixedClock, SystemClock
from discipline.infrastructure.database import async_session_factory
from discipline.infrastructure.locks import DistributedLock
from discipline.infrastructure.redis_client import get_redis
from discipline.infrastructure.repositories import DriverRepository, SanctionRepository
from discipline.services.disciplinary_engine import DisciplinaryEngine
from discipline.services.notifications import (
    DatabaseNotificationDispatcher,
    NotificationDispatcher,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


@dataclass
class SweepReport:
    applied: int = 0
    paused: int = 0
    ended: int = 0
    released: int = 0
    periods_reset: int = 0
    failed: int = 0

    @property
    def changes(self) -> int:
        return (
            self.applied + self.paused + self.ended + self.released + self.periods_reset
        )

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class DisciplinarySweep:
    """One pass over the sanction store, evaluated at a single instant."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        clock: Clock | None = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()

    async def run(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.clock.now()
        clock = FixedClock(now)
        report = SweepReport()

        due = await self._snapshot(lambda repo: repo.find_due(now))
        for driver_id, action_id in due:
            outcome = await self._step(
                clock, report, lambda e: e.enforce_due(driver_id, action_id)
            )
            if outcome == "applied":
                report.applied += 1
            elif outcome == "paused":
                report.paused += 1

        expiring = await self._snapshot(lambda repo: repo.find_expiring(now))
        for driver_id, action_id in expiring:
            if await self._step(clock, report, lambda e: e.expire(driver_id, action_id)):
                report.ended += 1

        paused = await self._snapshot(lambda repo: repo.list_paused())
        for driver_id, action_id in paused:
            released = await self._step(
                clock, report, lambda e: e.release_stale_pause(driver_id, action_id)
            )
            report.released += released or 0

        report.periods_reset = await self._reset_expired_periods(now)

        logger.info("Sweep finished: %s", report.as_dict())
        return report

    async def _snapshot(self, query) -> list[tuple[int, int]]:
        async with self.session_factory() as session:
            actions = await query(SanctionRepository(session))
            return [(a.driver_id, a.id) for a in actions]

    async def _step(
        self,
        clock: Clock,
        report: SweepReport,
        fn: Callable[[DisciplinaryEngine], Awaitable[T]],
    ) -> Optional[T]:
        async with self.session_factory() as session:
            engine = DisciplinaryEngine(session, clock=clock)
            try:
                result = await fn(engine)
                await session.commit()
            except Exception:
                await session.rollback()
                report.failed += 1
                logger.exception("Sweep step failed; will retry next sweep")
                return None
        await engine.deliver_notifications(self.dispatcher)
        return result

    async def _reset_expired_periods(self, now: datetime) -> int:
        async with self.session_factory() as session:
            sanctions = SanctionRepository(session)
            driver_ids = await sanctions.find_drivers_with_expired_period(now)
            reset = await DriverRepository(session).clear_last_warning(driver_ids)
            await session.commit()
        if reset:
            logger.info("Reset periods for %d drivers", reset)
        return reset


# ── Public API ────────────────────────────────────────────────────────


def sweep_lock(client: aioredis.Redis) -> DistributedLock:
    """The lock every sweep runs under, scheduled or admin-triggered."""
    return DistributedLock(
        client, "disciplinary_sweep", ttl_seconds=settings.sweep_lock_ttl_seconds
    )


async def start_sweep_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info("Sweep worker started (interval=%ds)", settings.sweep_interval_seconds)


async def stop_sweep_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Sweep worker stopped")


async def run_sweep_cycle() -> Optional[SweepReport]:
    """Execute one sweep under the distributed lock.  None if skipped."""
    redis = await get_redis()
    lock = sweep_lock(redis)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping sweep")
        return None

    try:
        sweep = DisciplinarySweep(
            async_session_factory, DatabaseNotificationDispatcher(async_session_factory)
        )
        return await sweep.run()
    except Exception:
        logger.exception("Error in sweep cycle")
        return None
    finally:
        await lock.release()


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle()
        except Exception:
            logger.exception("Unhandled error in sweep loop")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next sweep
