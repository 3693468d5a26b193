from __future__ import annotations

import logging
from uuid import UUID

from liftr_chat.infrastructure.supabase.http import SupabaseHTTP

logger = logging.getLogger(__name__)


class SupabaseAuthAdmin(SupabaseHTTP):
    """Auth admin API; must be constructed with the service role key and no session."""

    async def delete_user(self, user_id: UUID) -> None:
        await self._request("DELETE", f"/auth/v1/admin/users/{user_id}")
        logger.info("Deleted auth user %s", user_id)
