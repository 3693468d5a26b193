from __future__ import annotations

from typing import Protocol
from uuid import UUID

from liftr_chat.application.dto.principal import Principal


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> Principal: ...


class SessionProvider(Protocol):
    """Source of the signed-in user's access token."""

    async def access_token(self) -> str: ...


class AuthAdmin(Protocol):
    async def delete_user(self, user_id: UUID) -> None: ...
