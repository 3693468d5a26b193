"""Normalized realtime change events for the messages table."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from liftr_chat.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class MessageInserted:
    message: Message


@dataclass(frozen=True, slots=True)
class MessageUpdated:
    message: Message


@dataclass(frozen=True, slots=True)
class MessageDeleted:
    message_id: int


MessageChange = Union[MessageInserted, MessageUpdated, MessageDeleted]
