from __future__ import annotations

import logging

from liftr_chat.application.dto.principal import Principal
from liftr_chat.application.ports.auth import AuthAdmin

logger = logging.getLogger(__name__)


async def delete_account(principal: Principal, admin: AuthAdmin) -> None:
    """Delete the caller's own auth user; dependent rows cascade server-side."""
    await admin.delete_user(principal.user_id)
    logger.info("Account deleted user=%s", principal.user_id)
