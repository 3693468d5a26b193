"""Schema-validated decoding of loosely typed platform rows.

Rows arrive as plain JSON objects from both the query API and realtime
payloads. Decoding never raises to callers: a malformed row is logged and
reported as ``None`` so one bad record cannot break a page or a channel.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping
from uuid import UUID

from pydantic import BaseModel, ConfigDict, ValidationError

from liftr_chat.domain.entities.conversation import Conversation
from liftr_chat.domain.entities.message import Message
from liftr_chat.domain.entities.profile import ProfileSummary
from liftr_chat.domain.value_objects.enums import MessageKind

logger = logging.getLogger(__name__)

MESSAGE_COLUMNS = "id,conversation_id,user_id,kind,body,created_at,edited_at,deleted_at"


class MessageRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    conversation_id: int
    user_id: UUID
    kind: str
    body: str | None = None
    created_at: datetime
    edited_at: datetime | None = None
    deleted_at: datetime | None = None

    def to_entity(self) -> Message:
        return Message(
            id=self.id,
            conversation_id=self.conversation_id,
            user_id=self.user_id,
            kind=MessageKind.parse(self.kind).value,
            body=self.body,
            created_at=self.created_at,
            edited_at=self.edited_at,
            deleted_at=self.deleted_at,
        )


class DeletedMessageRecord(BaseModel):
    """``old_record`` of a delete event; only the primary key is guaranteed."""

    model_config = ConfigDict(extra="ignore")

    id: int
    conversation_id: int | None = None


class ConversationRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    kind: str
    title: str | None = None
    updated_at: datetime

    def to_entity(self) -> Conversation:
        return Conversation(
            id=self.id,
            kind=self.kind,
            title=self.title,
            updated_at=self.updated_at,
        )


class ProfileRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: UUID
    username: str
    avatar_url: str | None = None

    def to_entity(self) -> ProfileSummary:
        return ProfileSummary(
            user_id=self.user_id,
            username=self.username,
            avatar_url=self.avatar_url,
        )


def decode_message(raw: Any) -> Message | None:
    if not isinstance(raw, Mapping):
        logger.warning("Message decode failed: record is not an object: %r", raw)
        return None
    try:
        return MessageRecord.model_validate(raw).to_entity()
    except ValidationError as exc:
        logger.warning(
            "Message decode failed: %d error(s), record=%r", exc.error_count(), raw,
        )
        return None


def decode_deleted(raw: Any) -> DeletedMessageRecord | None:
    if not isinstance(raw, Mapping):
        logger.warning("Delete decode failed: old_record is not an object: %r", raw)
        return None
    try:
        return DeletedMessageRecord.model_validate(raw)
    except ValidationError:
        logger.warning("Delete decode failed: old_record=%r", raw)
        return None


def decode_messages(rows: Iterable[Any]) -> list[Message]:
    """Decode a query result, dropping rows that fail validation."""
    messages: list[Message] = []
    for row in rows:
        msg = decode_message(row)
        if msg is not None:
            messages.append(msg)
    return messages


def decode_conversations(rows: Iterable[Any]) -> list[Conversation]:
    conversations: list[Conversation] = []
    for row in rows:
        try:
            conversations.append(ConversationRecord.model_validate(row).to_entity())
        except ValidationError:
            logger.warning("Conversation decode failed: record=%r", row)
    return conversations


def decode_profiles(rows: Iterable[Any]) -> list[ProfileSummary]:
    profiles: list[ProfileSummary] = []
    for row in rows:
        try:
            profiles.append(ProfileRecord.model_validate(row).to_entity())
        except ValidationError:
            logger.warning("Profile decode failed: record=%r", row)
    return profiles
