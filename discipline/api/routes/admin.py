"""
Admin / disciplinary endpoints
==============================

PATCH /api/v1/admin/drivers/{driver_id}/suspend              -- manual suspension
PATCH /api/v1/admin/drivers/{driver_id}/ban                  -- manual ban
GET   /api/v1/admin/drivers/{driver_id}/disciplinary-history -- audit trail
GET   /api/v1/admin/drivers/pending-suspensions              -- not yet enforced
POST  /api/v1/admin/sweep                                    -- run one sweep now
GET   /api/v1/admin/health                                   -- health check
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from discipline.api.dependencies import (
    get_clock,
    get_db,
    get_dispatcher,
    get_session_factory,
)
from discipline.api.middleware import limiter
from discipline.api.schemas import (
    DisciplinaryActionResponse,
    ErrorResponse,
    HealthResponse,
    HistoryEntryResponse,
    PendingSanctionResponse,
    PendingSanctionsResponse,
    SanctionOutcomeResponse,
    SanctionRequest,
    SweepReportResponse,
)
from discipline.config import settings
from discipline.domain.clock import Clock
from discipline.domain.entities import booking_id_from_pause_reason
from discipline.infrastructure.locks import LockNotAcquired
from discipline.infrastructure.models import DisciplinaryActionModel
from discipline.infrastructure.redis_client import get_redis
from discipline.infrastructure.repositories import (
    AccountRepository,
    DriverRepository,
)
from discipline.services.disciplinary_engine import DisciplinaryEngine
from discipline.services.notifications import NotificationDispatcher
from discipline.workers.scheduler import DisciplinarySweep, sweep_lock

router = APIRouter(prefix="/admin", tags=["admin"])


@router.patch(
    "/drivers/{driver_id}/suspend",
    response_model=SanctionOutcomeResponse,
    summary="Suspend a driver",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    description=(
        "Applies a suspension immediately, or schedules it paused when the "
        "driver is mid-trip.  Rejected if the driver is already suspended, "
        "banned, or has a sanction pending."
    ),
)
@limiter.limit(settings.rate_limit)
async def suspend_driver(
    request: Request,
    driver_id: int,
    body: SanctionRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    engine = DisciplinaryEngine(db, clock=clock)
    action = await engine.suspend_driver(driver_id, body.reason)
    await db.commit()
    await engine.deliver_notifications(dispatcher)
    return _outcome(action, "Driver suspension")


@router.patch(
    "/drivers/{driver_id}/ban",
    response_model=SanctionOutcomeResponse,
    summary="Ban a driver permanently",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def ban_driver(
    request: Request,
    driver_id: int,
    body: SanctionRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    engine = DisciplinaryEngine(db, clock=clock)
    action = await engine.ban_driver(driver_id, body.reason)
    await db.commit()
    await engine.deliver_notifications(dispatcher)
    return _outcome(action, "Driver ban")


@router.get(
    "/drivers/pending-suspensions",
    response_model=PendingSanctionsResponse,
    summary="List scheduled and paused sanctions that are not yet enforced",
)
@limiter.limit(settings.rate_limit)
async def pending_suspensions(
    request: Request,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    pending, paused = await DisciplinaryEngine(db, clock=clock).pending_sanctions()
    return PendingSanctionsResponse(
        pending=[await _pending_entry(db, a) for a in pending],
        paused=[await _pending_entry(db, a) for a in paused],
    )


@router.get(
    "/drivers/{driver_id}/disciplinary-history",
    response_model=list[HistoryEntryResponse],
    summary="Disciplinary actions for a driver, newest first",
)
@limiter.limit(settings.rate_limit)
async def disciplinary_history(
    request: Request,
    driver_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    engine = DisciplinaryEngine(db, clock=clock)
    return [
        HistoryEntryResponse(
            **DisciplinaryActionResponse.model_validate(action).model_dump(),
            period_dispute_count=count,
        )
        for action, count in await engine.disciplinary_history(driver_id)
    ]


@router.post(
    "/sweep",
    response_model=SweepReportResponse,
    summary="Run one disciplinary sweep immediately",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit("10/minute")
async def run_sweep(
    request: Request,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    redis=Depends(get_redis),
):
    try:
        async with sweep_lock(redis):
            report = await DisciplinarySweep(session_factory, dispatcher, clock=clock).run()
    except LockNotAcquired:
        raise HTTPException(status_code=409, detail="A sweep is already running")
    return SweepReportResponse(**report.as_dict())


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()


# ── Helpers ───────────────────────────────────────────────────────────


def _outcome(action: DisciplinaryActionModel, noun: str) -> SanctionOutcomeResponse:
    paused = bool(action.is_paused)
    message = (
        f"{noun} scheduled (paused due to active ride)"
        if paused
        else f"{noun} applied"
    )
    return SanctionOutcomeResponse(
        message=message,
        driver_id=action.driver_id,
        paused=paused,
        active_booking_id=booking_id_from_pause_reason(action.pause_reason),
        action=DisciplinaryActionResponse.model_validate(action),
    )


async def _pending_entry(
    db: AsyncSession, action: DisciplinaryActionModel
) -> PendingSanctionResponse:
    driver = await DriverRepository(db).get_by_id(action.driver_id)
    account = await AccountRepository(db).get_by_id(driver.user_id) if driver else None
    return PendingSanctionResponse(
        action_id=action.id,
        driver_id=action.driver_id,
        driver_name=account.name if account else None,
        driver_email=account.email if account else None,
        action_type=action.action_type,
        dispute_count=action.dispute_count,
        suspension_days=action.suspension_days,
        pause_reason=action.pause_reason,
        scheduled_start=action.scheduled_start,
        scheduled_end=action.scheduled_end,
    )
