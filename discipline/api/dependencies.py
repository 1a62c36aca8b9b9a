"""FastAPI dependency injection helpers."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from discipline.domain.clock import Clock, SystemClock
from discipline.infrastructure.database import async_session_factory
from discipline.services.notifications import (
    DatabaseNotificationDispatcher,
    NotificationDispatcher,
)

_clock = SystemClock()
_dispatcher = DatabaseNotificationDispatcher(async_session_factory)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_clock() -> Clock:
    return _clock


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory
