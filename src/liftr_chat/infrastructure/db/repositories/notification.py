from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from liftr_chat.domain.entities.notification import Notification
from liftr_chat.infrastructure.db.models.notification import NotificationModel


class NotificationQueueRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def fetch_pending(self, batch_size: int) -> list[Notification]:
        # Rows stay locked until the drain pass commits, so two concurrent
        # drains never push the same notification.
        stmt = (
            select(NotificationModel)
            .where(
                NotificationModel.sent_at.is_(None),
                NotificationModel.send_error.is_(None),
            )
            .order_by(NotificationModel.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(stmt)
        return [
            Notification(
                id=r.id,
                user_id=r.user_id,
                type=r.type,
                title=r.title,
                body=r.body,
                created_at=r.created_at,
                data=r.data or {},
            )
            for r in result.scalars().all()
        ]

    async def mark_sent(self, notification_id: int, sent_at: datetime) -> None:
        stmt = (
            update(NotificationModel)
            .where(NotificationModel.id == notification_id)
            .values(sent_at=sent_at, send_error=None)
        )
        await self._session.execute(stmt)

    async def mark_error(self, notification_id: int, error: str) -> None:
        stmt = (
            update(NotificationModel)
            .where(NotificationModel.id == notification_id)
            .values(send_error=error)
        )
        await self._session.execute(stmt)
