"""
Best-effort user notifications.

The engine never talks to a dispatcher while its transaction is open.  It
queues messages in a ``NotificationOutbox``; the caller commits the
disciplinary change first and only then calls ``deliver``.  Delivery
failures are logged and dropped, so they can never roll back a sanction.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from discipline.domain.enums import NotificationType
from discipline.infrastructure.repositories import NotificationRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingNotification:
    user_id: int
    type: NotificationType
    title: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(ABC):
    @abstractmethod
    async def notify(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        body: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...


class DatabaseNotificationDispatcher(NotificationDispatcher):
    """Writes in-app notifications using its own short-lived session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def notify(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        body: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        kind = NotificationType(type)
        async with self.session_factory() as session:
            await NotificationRepository(session).create(
                user_id=user_id,
                type=kind.value,
                title=title,
                message=body,
                payload=metadata or None,
            )
            await session.commit()
        logger.info("Notification created for user %d: %s", user_id, kind.value)


class NotificationOutbox:
    def __init__(self) -> None:
        self._queued: list[OutgoingNotification] = []

    def add(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        body: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self._queued.append(
            OutgoingNotification(user_id, type, title, body, dict(metadata or {}))
        )

    async def deliver(self, dispatcher: NotificationDispatcher) -> int:
        """Send everything queued.  Returns how many were delivered."""
        queued, self._queued = self._queued, []
        delivered = 0
        for n in queued:
            try:
                await dispatcher.notify(n.user_id, n.type, n.title, n.body, n.metadata)
            except Exception:
                logger.exception(
                    "Failed to deliver %s notification to user %d",
                    n.type.value,
                    n.user_id,
                )
                continue
            delivered += 1
        return delivered
