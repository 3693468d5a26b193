from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liftr_chat.infrastructure.db.models.profile import ProfileModel


class ProfileReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_push_token(self, user_id: UUID) -> str | None:
        stmt = select(ProfileModel.fcm_token).where(ProfileModel.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()
