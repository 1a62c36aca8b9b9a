"""
Domain value objects and lifecycle rules.

Patterns used
-------------
- **State Pattern** on bookings: ``check_booking_transition`` enforces the
  trip lifecycle (… -> CONFIRMED -> IN_PROGRESS -> COMPLETED).
- **Derived state** on disciplinary actions: ``derive_state`` turns the
  persisted audit timestamps into a ``SanctionState`` tag.  The tag is never
  stored, so it cannot drift from the timestamps.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .enums import (
    BOOKING_TRANSITIONS,
    SANCTION_TRANSITIONS,
    ActionType,
    BookingStatus,
    SanctionState,
)
from .errors import InvalidStateTransition

PAUSE_REASON_PREFIX = "active_ride_booking_"


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class PeriodResolution:
    period: Period
    was_reset: bool

    @property
    def start(self) -> datetime:
        return self.period.start

    @property
    def end(self) -> datetime:
        return self.period.end


@dataclass(frozen=True)
class ActiveTrip:
    active: bool
    booking_id: Optional[int] = None


NO_ACTIVE_TRIP = ActiveTrip(active=False)


@dataclass(frozen=True)
class LadderHistory:
    """What the driver has already been through in the current period."""

    has_open_sanction: bool = False
    had_first_suspension: bool = False
    had_second_suspension: bool = False


# ── Sanction lifecycle ────────────────────────────────────────────────


def derive_state(
    action_type: ActionType,
    actual_start: Optional[datetime],
    actual_end: Optional[datetime],
    is_paused: bool,
) -> SanctionState:
    if action_type == ActionType.WARNING:
        return SanctionState.ENDED  # a warning has no enforcement window
    if actual_end is not None:
        return SanctionState.ENDED
    if actual_start is not None:
        return SanctionState.ACTIVE
    if is_paused:
        return SanctionState.PAUSED
    return SanctionState.SCHEDULED


def can_transition(current: SanctionState, target: SanctionState) -> bool:
    return target in SANCTION_TRANSITIONS.get(current, set())


def pause_reason_for(booking_id: int) -> str:
    return f"{PAUSE_REASON_PREFIX}{booking_id}"


def booking_id_from_pause_reason(reason: Optional[str]) -> Optional[int]:
    if not reason or not reason.startswith(PAUSE_REASON_PREFIX):
        return None
    try:
        return int(reason[len(PAUSE_REASON_PREFIX):])
    except ValueError:
        return None


# ── Trips ─────────────────────────────────────────────────────────────


def check_booking_transition(current: BookingStatus, target: BookingStatus) -> None:
    """Raise unless *current* -> *target* is a legal booking transition."""
    allowed = BOOKING_TRANSITIONS.get(BookingStatus(current), set())
    if target not in allowed:
        raise InvalidStateTransition(
            f"Cannot transition booking from {BookingStatus(current).value} "
            f"to {target.value}"
        )
