"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``                  -- accounts (customers, drivers, admins)
* ``drivers``                -- service providers linked to an account
* ``cars``                   -- vehicle listings owned by a driver
* ``car_bookings``           -- trips booked on a car
* ``disputes``               -- complaints against a car booking
* ``disciplinary_actions``   -- append-only sanction audit trail
* ``notifications``          -- in-app messages written by the dispatcher

Indexes
-------
* **B-Tree** on ``disciplinary_actions(driver_id, period_start)`` for the
  period lookup, and on ``(scheduled_start, actual_start)`` /
  ``(scheduled_end, actual_end)`` for the sweep's due / expiring scans.
* **B-Tree** on ``car_bookings.status`` for the active-trip guard.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)

from .database import Base
from discipline.domain.entities import derive_state
from discipline.domain.enums import (
    AccountStatus,
    ActionType,
    BookingStatus,
    DisputeActor,
    DisputeStatus,
    SanctionState,
    UserRole,
)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    Backends without native timezone support (SQLite in tests) hand back
    naive values; those are re-tagged as UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(_enum(UserRole, "userrole"), default=UserRole.CUSTOMER, nullable=False)
    status = Column(
        _enum(AccountStatus, "accountstatus"),
        default=AccountStatus.ACTIVE,
        nullable=False,
    )
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    # Denormalised cache; the open action in disciplinary_actions is the truth
    current_suspension_id = Column(Integer, nullable=True)
    last_warning_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)


class CarModel(Base):
    __tablename__ = "cars"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    model = Column(String(120), nullable=False, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (Index("idx_cars_driver", "driver_id"),)


class CarBookingModel(Base):
    __tablename__ = "car_bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    car_id = Column(Integer, ForeignKey("cars.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(
        _enum(BookingStatus, "bookingstatus"),
        default=BookingStatus.PENDING_DRIVER_ACCEPTANCE,
        nullable=False,
    )
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("idx_car_bookings_car", "car_id"),
        Index("idx_car_bookings_status", "status"),
    )


class DisputeModel(Base):
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_car_id = Column(
        Integer, ForeignKey("car_bookings.id"), unique=True, nullable=False
    )
    raised_by = Column(_enum(DisputeActor, "disputeactor"), nullable=True)
    description = Column(Text, nullable=False)
    status = Column(
        _enum(DisputeStatus, "disputestatus"),
        default=DisputeStatus.PENDING,
        nullable=False,
    )
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    resolved_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (Index("idx_disputes_created", "created_at"),)


class DisciplinaryActionModel(Base):
    __tablename__ = "disciplinary_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    action_type = Column(_enum(ActionType, "actiontype"), nullable=False)
    dispute_count = Column(Integer, default=0, nullable=False)
    suspension_days = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)

    scheduled_start = Column(UTCDateTime, nullable=True)
    scheduled_end = Column(UTCDateTime, nullable=True)
    actual_start = Column(UTCDateTime, nullable=True)
    actual_end = Column(UTCDateTime, nullable=True)

    is_paused = Column(Boolean, default=False, nullable=False)
    pause_reason = Column(String(64), nullable=True)

    period_start = Column(UTCDateTime, nullable=False)
    period_end = Column(UTCDateTime, nullable=False)

    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("idx_actions_driver_period", "driver_id", "period_start"),
        Index("idx_actions_due", "scheduled_start", "actual_start"),
        Index("idx_actions_expiring", "scheduled_end", "actual_end"),
    )

    @property
    def state(self) -> SanctionState:
        return derive_state(
            ActionType(self.action_type),
            self.actual_start,
            self.actual_end,
            bool(self.is_paused),
        )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(40), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    sent_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    read_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (Index("idx_notifications_user", "user_id"),)
