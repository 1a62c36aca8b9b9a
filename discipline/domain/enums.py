"""Domain enumerations and state-transition rules."""

import enum


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"  # suspended
    BANNED = "banned"


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ADMIN = "admin"


class ActionType(str, enum.Enum):
    WARNING = "warning"
    SUSPENSION = "suspension"
    BAN = "ban"


# Action types that take the account out of service
ENFORCEMENT_TYPES: frozenset[ActionType] = frozenset(
    {ActionType.SUSPENSION, ActionType.BAN}
)


class SanctionState(str, enum.Enum):
    """Derived lifecycle of a disciplinary action (never stored)."""

    SCHEDULED = "SCHEDULED"
    PAUSED = "PAUSED"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


SANCTION_TRANSITIONS: dict[SanctionState, set[SanctionState]] = {
    SanctionState.SCHEDULED: {
        SanctionState.PAUSED,
        SanctionState.ACTIVE,
        SanctionState.ENDED,
    },
    SanctionState.PAUSED: {
        SanctionState.SCHEDULED,
        SanctionState.ACTIVE,
        SanctionState.ENDED,
    },
    SanctionState.ACTIVE: {SanctionState.ENDED},
    SanctionState.ENDED: set(),
}


class BookingStatus(str, enum.Enum):
    PENDING_DRIVER_ACCEPTANCE = "PENDING_DRIVER_ACCEPTANCE"
    ACCEPTED = "ACCEPTED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING_DRIVER_ACCEPTANCE: {
        BookingStatus.ACCEPTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.ACCEPTED: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


class DisputeStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class DisputeActor(str, enum.Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ADMIN = "admin"


class NotificationType(str, enum.Enum):
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_WARNING = "dispute_warning"
    SUSPENSION_SCHEDULED = "suspension_scheduled"
    SUSPENSION_PAUSED = "suspension_paused"
    SUSPENSION_STARTED = "suspension_started"
    SUSPENSION_RESUMED = "suspension_resumed"
    SUSPENSION_ENDED = "suspension_ended"
    BAN_SCHEDULED = "ban_scheduled"
    BAN_APPLIED = "ban_applied"
