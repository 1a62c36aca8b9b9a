"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Nothing here commits; the caller owns the
transaction boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    CarBookingModel,
    CarModel,
    DisciplinaryActionModel,
    DisputeModel,
    DriverModel,
    NotificationModel,
    UserModel,
)
from discipline.domain.entities import pause_reason_for
from discipline.domain.enums import (
    ENFORCEMENT_TYPES,
    AccountStatus,
    ActionType,
    BookingStatus,
    DisputeActor,
    DisputeStatus,
    UserRole,
)


class SanctionRepository:
    """Durable record of disciplinary actions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, action: DisciplinaryActionModel) -> DisciplinaryActionModel:
        self.session.add(action)
        await self.session.flush()
        return action

    async def get_by_id(self, action_id: int) -> Optional[DisciplinaryActionModel]:
        return await self.session.get(DisciplinaryActionModel, action_id)

    async def get_for_update(
        self, action_id: int
    ) -> Optional[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel)
            .where(DisciplinaryActionModel.id == action_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_latest_for_driver(
        self, driver_id: int
    ) -> Optional[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel)
            .where(DisciplinaryActionModel.driver_id == driver_id)
            .order_by(
                DisciplinaryActionModel.period_start.desc(),
                DisciplinaryActionModel.id.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_open_suspension_or_ban(
        self, driver_id: int, period_start: datetime | None = None
    ) -> Optional[DisciplinaryActionModel]:
        """Newest suspension/ban with no ``actual_end``; any period if not given."""
        query = select(DisciplinaryActionModel).where(
            DisciplinaryActionModel.driver_id == driver_id,
            DisciplinaryActionModel.action_type.in_(ENFORCEMENT_TYPES),
            DisciplinaryActionModel.actual_end.is_(None),
        )
        if period_start is not None:
            query = query.where(DisciplinaryActionModel.period_start == period_start)
        result = await self.session.execute(
            query.order_by(DisciplinaryActionModel.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_type_and_duration(
        self,
        driver_id: int,
        action_type: ActionType,
        days: int | None,
        period_start: datetime,
    ) -> Optional[DisciplinaryActionModel]:
        query = select(DisciplinaryActionModel).where(
            DisciplinaryActionModel.driver_id == driver_id,
            DisciplinaryActionModel.action_type == action_type,
            DisciplinaryActionModel.period_start == period_start,
        )
        if days is not None:
            query = query.where(DisciplinaryActionModel.suspension_days == days)
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def find_due(self, now: datetime) -> list[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel)
            .where(
                DisciplinaryActionModel.action_type.in_(ENFORCEMENT_TYPES),
                DisciplinaryActionModel.scheduled_start <= now,
                DisciplinaryActionModel.actual_start.is_(None),
                DisciplinaryActionModel.actual_end.is_(None),
                DisciplinaryActionModel.is_paused.is_(False),
            )
            .order_by(DisciplinaryActionModel.scheduled_start)
        )
        return list(result.scalars().all())

    async def find_expiring(self, now: datetime) -> list[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel)
            .where(
                DisciplinaryActionModel.action_type == ActionType.SUSPENSION,
                DisciplinaryActionModel.scheduled_end <= now,
                DisciplinaryActionModel.actual_end.is_(None),
                DisciplinaryActionModel.actual_start.is_not(None),
            )
            .order_by(DisciplinaryActionModel.scheduled_end)
        )
        return list(result.scalars().all())

    async def find_paused_matching_booking(
        self, driver_id: int, booking_id: int
    ) -> list[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel).where(
                DisciplinaryActionModel.driver_id == driver_id,
                DisciplinaryActionModel.action_type.in_(ENFORCEMENT_TYPES),
                DisciplinaryActionModel.is_paused.is_(True),
                DisciplinaryActionModel.pause_reason == pause_reason_for(booking_id),
            )
        )
        return list(result.scalars().all())

    async def find_pausable_for_driver(
        self, driver_id: int
    ) -> Optional[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel)
            .where(
                DisciplinaryActionModel.driver_id == driver_id,
                DisciplinaryActionModel.action_type.in_(ENFORCEMENT_TYPES),
                DisciplinaryActionModel.actual_start.is_(None),
                DisciplinaryActionModel.actual_end.is_(None),
                DisciplinaryActionModel.is_paused.is_(False),
            )
            .order_by(DisciplinaryActionModel.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_started(self, action_id: int, now: datetime) -> bool:
        """Set ``actual_start`` only if still unset.  Returns True if we won."""
        result = await self.session.execute(
            update(DisciplinaryActionModel)
            .where(
                DisciplinaryActionModel.id == action_id,
                DisciplinaryActionModel.actual_start.is_(None),
            )
            .values(actual_start=now)
        )
        if result.rowcount != 1:
            return False
        await self._reload(action_id)
        return True

    async def mark_ended(self, action_id: int, now: datetime) -> bool:
        """Set ``actual_end`` (and clear any pause) only if still unset."""
        result = await self.session.execute(
            update(DisciplinaryActionModel)
            .where(
                DisciplinaryActionModel.id == action_id,
                DisciplinaryActionModel.actual_end.is_(None),
            )
            .values(actual_end=now, is_paused=False, pause_reason=None)
        )
        if result.rowcount != 1:
            return False
        await self._reload(action_id)
        return True

    async def _reload(self, action_id: int) -> None:
        # Bulk UPDATE bypasses instances already in the identity map
        await self.session.get(
            DisciplinaryActionModel, action_id, populate_existing=True
        )

    async def list_for_driver(self, driver_id: int) -> list[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel)
            .where(DisciplinaryActionModel.driver_id == driver_id)
            .order_by(
                DisciplinaryActionModel.created_at.desc(),
                DisciplinaryActionModel.id.desc(),
            )
        )
        return list(result.scalars().all())

    async def list_pending(self) -> list[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel)
            .where(
                DisciplinaryActionModel.action_type.in_(ENFORCEMENT_TYPES),
                DisciplinaryActionModel.actual_start.is_(None),
                DisciplinaryActionModel.actual_end.is_(None),
                DisciplinaryActionModel.is_paused.is_(False),
            )
            .order_by(DisciplinaryActionModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_paused(self) -> list[DisciplinaryActionModel]:
        result = await self.session.execute(
            select(DisciplinaryActionModel)
            .where(
                DisciplinaryActionModel.action_type.in_(ENFORCEMENT_TYPES),
                DisciplinaryActionModel.is_paused.is_(True),
            )
            .order_by(DisciplinaryActionModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_drivers_with_expired_period(self, now: datetime) -> list[int]:
        """Drivers whose *most recent* period has ended."""
        latest = (
            select(
                DisciplinaryActionModel.driver_id.label("driver_id"),
                func.max(DisciplinaryActionModel.period_start).label("period_start"),
            )
            .group_by(DisciplinaryActionModel.driver_id)
            .subquery()
        )
        result = await self.session.execute(
            select(DisciplinaryActionModel.driver_id)
            .join(
                latest,
                and_(
                    DisciplinaryActionModel.driver_id == latest.c.driver_id,
                    DisciplinaryActionModel.period_start == latest.c.period_start,
                ),
            )
            .where(DisciplinaryActionModel.period_end <= now)
            .distinct()
        )
        return list(result.scalars().all())


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, driver_id: int) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id)

    async def get_for_update(self, driver_id: int) -> Optional[DriverModel]:
        """SELECT ... FOR UPDATE: serialises concurrent work on one driver."""
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.id == driver_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def clear_last_warning(self, driver_ids: Sequence[int]) -> int:
        if not driver_ids:
            return 0
        result = await self.session.execute(
            update(DriverModel)
            .where(
                DriverModel.id.in_(list(driver_ids)),
                DriverModel.last_warning_at.is_not(None),
            )
            .values(last_warning_at=None)
        )
        return result.rowcount or 0


class AccountRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def set_status(self, user_id: int, status: AccountStatus) -> None:
        account = await self.session.get(UserModel, user_id)
        if account is not None:
            account.status = status

    async def list_admin_ids(self) -> list[int]:
        result = await self.session.execute(
            select(UserModel.id).where(UserModel.role == UserRole.ADMIN)
        )
        return list(result.scalars().all())


class ListingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def deactivate_all_for_driver(self, driver_id: int) -> int:
        result = await self.session.execute(
            update(CarModel)
            .where(CarModel.driver_id == driver_id, CarModel.is_active.is_(True))
            .values(is_active=False)
        )
        return result.rowcount or 0


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, booking_id: int) -> Optional[CarBookingModel]:
        return await self.session.get(CarBookingModel, booking_id)

    async def get_driver_id(self, booking_id: int) -> Optional[int]:
        result = await self.session.execute(
            select(CarModel.driver_id)
            .join(CarBookingModel, CarBookingModel.car_id == CarModel.id)
            .where(CarBookingModel.id == booking_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, booking_id: int) -> Optional[CarBookingModel]:
        result = await self.session.execute(
            select(CarBookingModel)
            .where(CarBookingModel.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_in_progress_for_driver(
        self, driver_id: int
    ) -> Optional[CarBookingModel]:
        result = await self.session.execute(
            select(CarBookingModel)
            .join(CarModel, CarBookingModel.car_id == CarModel.id)
            .where(
                CarModel.driver_id == driver_id,
                CarBookingModel.status == BookingStatus.IN_PROGRESS,
            )
            .order_by(CarBookingModel.id)
            .limit(1)
        )
        return result.scalar_one_or_none()


class DisputeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        booking_car_id: int,
        description: str,
        created_at: datetime,
        raised_by: DisputeActor | None = None,
    ) -> DisputeModel:
        dispute = DisputeModel(
            booking_car_id=booking_car_id,
            description=description,
            raised_by=raised_by,
            status=DisputeStatus.PENDING,
            created_at=created_at,
        )
        self.session.add(dispute)
        await self.session.flush()
        return dispute

    async def get_by_id(self, dispute_id: int) -> Optional[DisputeModel]:
        return await self.session.get(DisputeModel, dispute_id)

    async def get_for_booking(self, booking_id: int) -> Optional[DisputeModel]:
        result = await self.session.execute(
            select(DisputeModel).where(DisputeModel.booking_car_id == booking_id)
        )
        return result.scalar_one_or_none()

    async def count_since(
        self, driver_id: int, since: datetime, until: datetime | None = None
    ) -> int:
        query = (
            select(func.count())
            .select_from(DisputeModel)
            .join(CarBookingModel, DisputeModel.booking_car_id == CarBookingModel.id)
            .join(CarModel, CarBookingModel.car_id == CarModel.id)
            .where(CarModel.driver_id == driver_id, DisputeModel.created_at >= since)
        )
        if until is not None:
            query = query.where(DisputeModel.created_at < until)
        result = await self.session.execute(query)
        return result.scalar() or 0


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        user_id: int,
        type: str,
        title: str,
        message: str,
        payload: dict | None = None,
        sent_at: datetime | None = None,
    ) -> NotificationModel:
        notification = NotificationModel(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            payload=payload,
        )
        if sent_at is not None:
            notification.sent_at = sent_at
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def list_for_user(self, user_id: int) -> list[NotificationModel]:
        result = await self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .order_by(NotificationModel.sent_at.desc(), NotificationModel.id.desc())
        )
        return list(result.scalars().all())
