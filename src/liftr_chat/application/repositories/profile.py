from __future__ import annotations

from typing import Protocol
from uuid import UUID


class ProfileReader(Protocol):
    async def get_push_token(self, user_id: UUID) -> str | None: ...
