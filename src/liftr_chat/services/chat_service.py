from __future__ import annotations

import logging
import uuid
from typing import Any
from uuid import UUID

from liftr_chat.application.dto.message_page import MessagePage
from liftr_chat.application.exceptions import DecodeError, ValidationError
from liftr_chat.application.ports.platform import Order, RemotePlatform, eq, in_, lt
from liftr_chat.chat.records import (
    MESSAGE_COLUMNS,
    decode_conversations,
    decode_message,
    decode_messages,
    decode_profiles,
)
from liftr_chat.domain.entities.conversation import Conversation
from liftr_chat.domain.entities.message import Message
from liftr_chat.domain.entities.profile import ProfileSummary
from liftr_chat.domain.value_objects.enums import MessageKind

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"


async def load_messages(
    platform: RemotePlatform,
    conversation_id: int,
    *,
    page_size: int,
    before_id: int | None = None,
) -> MessagePage:
    """Newest ``page_size`` messages, optionally strictly older than ``before_id``."""
    filters = [eq("conversation_id", conversation_id)]
    if before_id is not None:
        filters.append(lt("id", before_id))
    rows = await platform.query(
        MESSAGES_TABLE,
        columns=MESSAGE_COLUMNS,
        filters=filters,
        order=Order("id", ascending=False),
        offset=0,
        limit=page_size,
    )
    page = MessagePage(messages=decode_messages(rows), raw_count=len(rows))
    logger.debug(
        "Loaded messages conv=%d before=%s count=%d decoded=%d",
        conversation_id, before_id, page.raw_count, len(page.messages),
    )
    return page


async def fetch_message(platform: RemotePlatform, message_id: int) -> Message | None:
    rows = await platform.query(
        MESSAGES_TABLE,
        columns=MESSAGE_COLUMNS,
        filters=[eq("id", message_id)],
        limit=1,
    )
    if not rows:
        return None
    return decode_message(rows[0])


async def send_message(
    platform: RemotePlatform,
    conversation_id: int,
    kind: MessageKind,
    body: str | None,
) -> int:
    """Create a message server-side and return its id.

    Each call carries a fresh client message id so the server can collapse
    retried requests into a single row.
    """
    if kind == MessageKind.TEXT and not (body and body.strip()):
        raise ValidationError("text message requires a body")
    result = await platform.rpc(
        "send_message",
        {
            "p_conversation_id": conversation_id,
            "p_kind": kind.value,
            "p_body": body,
            "p_client_msg_id": str(uuid.uuid4()),
        },
    )
    message_id = _as_int(result, "send_message")
    logger.info("Message sent conv=%d id=%d kind=%s", conversation_id, message_id, kind)
    return message_id


async def mark_read(
    platform: RemotePlatform,
    conversation_id: int,
    last_message_id: int | None,
) -> None:
    """Best-effort read marker; failures are logged and never raised."""
    if last_message_id is None:
        return
    try:
        await platform.rpc(
            "mark_conversation_read",
            {
                "p_conversation_id": conversation_id,
                "p_last_read_message_id": last_message_id,
            },
        )
    except Exception:
        logger.warning(
            "mark_read failed conv=%d last=%d", conversation_id, last_message_id,
            exc_info=True,
        )


async def attach_metadata(
    platform: RemotePlatform,
    message_id: int,
    metadata: dict[str, Any],
) -> None:
    await platform.update(MESSAGES_TABLE, {"metadata": metadata}, [eq("id", message_id)])


async def start_direct_conversation(platform: RemotePlatform, other_user_id: UUID) -> int:
    result = await platform.rpc("start_direct_conversation", {"p_other": str(other_user_id)})
    return _as_int(result, "start_direct_conversation")


async def list_conversations(
    platform: RemotePlatform,
    user_id: UUID,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[Conversation]:
    rows = await platform.query(
        "conversations",
        columns="id,kind,title,updated_at,conversation_participants!inner(user_id)",
        filters=[eq("conversation_participants.user_id", str(user_id))],
        order=Order("updated_at", ascending=False),
        offset=offset,
        limit=limit,
    )
    return decode_conversations(rows)


async def list_followed_profiles(
    platform: RemotePlatform,
    user_id: UUID,
    *,
    limit: int = 500,
) -> list[ProfileSummary]:
    """Profiles ``user_id`` follows, the candidates for a new direct conversation."""
    follows = await platform.query(
        "follows",
        columns="followee_id",
        filters=[eq("follower_id", str(user_id))],
        limit=limit,
    )
    ids = [row["followee_id"] for row in follows if row.get("followee_id")]
    if not ids:
        return []
    rows = await platform.query(
        "profiles",
        columns="user_id,username,avatar_url",
        filters=[in_("user_id", ids)],
        order=Order("username"),
    )
    return decode_profiles(rows)


def _as_int(result: Any, rpc_name: str) -> int:
    if isinstance(result, bool):
        raise DecodeError(f"{rpc_name} returned a boolean")
    try:
        return int(result)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"{rpc_name} returned {result!r}, expected an id") from exc
