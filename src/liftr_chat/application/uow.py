from __future__ import annotations

from typing import Protocol

from liftr_chat.application.repositories.notification import NotificationQueue
from liftr_chat.application.repositories.profile import ProfileReader


class UnitOfWork(Protocol):
    notifications: NotificationQueue
    profiles: ProfileReader

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...
