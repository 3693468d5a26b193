from __future__ import annotations

from datetime import datetime
from typing import Protocol

from liftr_chat.domain.entities.notification import Notification


class NotificationQueue(Protocol):
    async def fetch_pending(self, batch_size: int) -> list[Notification]:
        """Oldest unsent notifications, locked for this drain pass."""
        ...

    async def mark_sent(self, notification_id: int, sent_at: datetime) -> None: ...

    async def mark_error(self, notification_id: int, error: str) -> None: ...
