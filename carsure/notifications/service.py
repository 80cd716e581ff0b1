"""Notification service — persist a notice, then push it live after commit.

The row is written inside the caller's transaction, so a notification
exists if and only if the change that caused it was committed. The live
push is queued as a post-commit hook and is best effort.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carsure.db.engine import add_after_commit
from carsure.models.base import utcnow
from carsure.models.enums import NotificationType
from carsure.models.notification import Notification
from carsure.notifications.pubsub import NotificationPublisher, notification_publisher
from carsure.schemas.notifications import NotificationOut

logger = logging.getLogger(__name__)


class NotificationService:
    """Creates, lists and marks notifications."""

    def __init__(self, publisher: NotificationPublisher) -> None:
        self._publisher = publisher

    async def notify(
        self,
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        message: str,
        type_: NotificationType,
        sender_id: uuid.UUID | None = None,
        appointment_id: uuid.UUID | None = None,
    ) -> Notification:
        """Persist a notification and schedule its live push."""
        notification = Notification(
            id=uuid.uuid4(),
            recipient_id=recipient_id,
            sender_id=sender_id,
            appointment_id=appointment_id,
            message=message,
            type=type_.value,
            is_read=False,
            created_at=utcnow(),
        )
        db.add(notification)
        await db.flush()

        payload = NotificationOut.from_model(notification).to_wire()
        recipient = str(recipient_id)

        async def push() -> None:
            await self._publisher.publish(recipient, payload)

        add_after_commit(db, push)
        logger.info(
            "Notification %s queued for %s (type=%s)", notification.id, recipient, type_.value
        )
        return notification

    async def list_for(
        self,
        db: AsyncSession,
        recipient_id: uuid.UUID,
        limit: int = 50,
    ) -> list[Notification]:
        """Newest first, without the ``other`` type clients ignore."""
        result = await db.execute(
            select(Notification)
            .where(
                Notification.recipient_id == recipient_id,
                Notification.type != NotificationType.OTHER.value,
            )
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def unread_count(self, db: AsyncSession, recipient_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count(Notification.id)).where(
                Notification.recipient_id == recipient_id,
                Notification.is_read.is_(False),
                Notification.type != NotificationType.OTHER.value,
            )
        )
        return int(result.scalar_one())

    async def mark_read(
        self,
        db: AsyncSession,
        recipient_id: uuid.UUID,
        notification_id: uuid.UUID,
    ) -> Notification | None:
        """Mark one of the recipient's notifications read. None if not theirs / missing."""
        result = await db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.recipient_id == recipient_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            return None
        notification.is_read = True
        await db.flush()
        return notification

    async def mark_all_read(self, db: AsyncSession, recipient_id: uuid.UUID) -> int:
        result = await db.execute(
            update(Notification)
            .where(Notification.recipient_id == recipient_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def mark_sender_messages_read(
        self,
        db: AsyncSession,
        recipient_id: uuid.UUID,
        sender_id: uuid.UUID,
    ) -> int:
        """Mark chat-message notifications from one sender read (opening a chat)."""
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == recipient_id,
                Notification.sender_id == sender_id,
                Notification.type == NotificationType.MESSAGE.value,
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
        )
        return result.rowcount  # type: ignore[attr-defined]


# Module-level singleton
notification_service = NotificationService(notification_publisher)
