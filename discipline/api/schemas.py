"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from discipline.domain.enums import (
    ActionType,
    BookingStatus,
    DisputeActor,
    DisputeStatus,
    SanctionState,
)


# ── Requests ──────────────────────────────────────────────────────────


class DisputeCreateRequest(BaseModel):
    booking_car_id: int
    raised_by: Optional[DisputeActor] = None
    description: str = Field(..., min_length=1, max_length=5000)


class SanctionRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


# ── Responses ─────────────────────────────────────────────────────────


class DisciplinaryActionResponse(BaseModel):
    id: int
    driver_id: int
    action_type: ActionType
    state: SanctionState
    dispute_count: int
    suspension_days: Optional[int] = None
    reason: Optional[str] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    is_paused: bool
    pause_reason: Optional[str] = None
    period_start: datetime
    period_end: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class HistoryEntryResponse(DisciplinaryActionResponse):
    period_dispute_count: int


class SanctionOutcomeResponse(BaseModel):
    message: str
    driver_id: int
    paused: bool
    active_booking_id: Optional[int] = None
    action: DisciplinaryActionResponse


class PendingSanctionResponse(BaseModel):
    action_id: int
    driver_id: int
    driver_name: Optional[str] = None
    driver_email: Optional[str] = None
    action_type: ActionType
    dispute_count: int
    suspension_days: Optional[int] = None
    pause_reason: Optional[str] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None


class PendingSanctionsResponse(BaseModel):
    pending: list[PendingSanctionResponse] = []
    paused: list[PendingSanctionResponse] = []


class DisputeResponse(BaseModel):
    id: int
    booking_car_id: int
    raised_by: Optional[DisputeActor] = None
    description: str
    status: DisputeStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class DisputeCreatedResponse(BaseModel):
    dispute: DisputeResponse
    sanction_scheduled: bool


class TripResponse(BaseModel):
    id: int
    status: BookingStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    sanctions_paused: int = 0
    sanctions_resumed: int = 0


class SweepReportResponse(BaseModel):
    applied: int
    paused: int
    ended: int
    released: int
    periods_reset: int
    failed: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
