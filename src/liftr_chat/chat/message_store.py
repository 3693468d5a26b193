"""Ordered, deduplicated message collection for one conversation."""
from __future__ import annotations

import bisect
from typing import Iterable, Iterator

from liftr_chat.application.exceptions import ValidationError
from liftr_chat.domain.entities.message import Message


class MessageStore:
    """Messages of a single conversation keyed by id, iterated in ascending id order.

    Server ids are monotonic, so id order stands in for causal order no matter
    in which order inserts, updates and page loads arrive.
    """

    def __init__(self, conversation_id: int) -> None:
        self._conversation_id = conversation_id
        self._ids: list[int] = []
        self._by_id: dict[int, Message] = {}

    @property
    def conversation_id(self) -> int:
        return self._conversation_id

    def upsert(self, message: Message) -> bool:
        """Insert or replace ``message``. Returns False when nothing changed."""
        self._check_owner(message)
        existing = self._by_id.get(message.id)
        if existing == message:
            return False
        if existing is None:
            bisect.insort(self._ids, message.id)
        self._by_id[message.id] = message
        return True

    def remove(self, message_id: int) -> bool:
        if message_id not in self._by_id:
            return False
        del self._by_id[message_id]
        idx = bisect.bisect_left(self._ids, message_id)
        del self._ids[idx]
        return True

    def extend_older(self, messages: Iterable[Message]) -> list[Message]:
        """Merge a backward page, skipping ids already present. Returns the rows added."""
        added: list[Message] = []
        for msg in sorted(messages, key=lambda m: m.id):
            if msg.id in self._by_id:
                continue
            self.upsert(msg)
            added.append(msg)
        return added

    def replace_all(self, messages: Iterable[Message]) -> None:
        self.clear()
        for msg in messages:
            self.upsert(msg)

    def clear(self) -> None:
        self._ids.clear()
        self._by_id.clear()

    def get(self, message_id: int) -> Message | None:
        return self._by_id.get(message_id)

    def ids(self) -> list[int]:
        return list(self._ids)

    def snapshot(self) -> list[Message]:
        return [self._by_id[i] for i in self._ids]

    @property
    def first(self) -> Message | None:
        return self._by_id[self._ids[0]] if self._ids else None

    @property
    def last(self) -> Message | None:
        return self._by_id[self._ids[-1]] if self._ids else None

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())

    def _check_owner(self, message: Message) -> None:
        if message.conversation_id != self._conversation_id:
            raise ValidationError(
                f"message {message.id} belongs to conversation "
                f"{message.conversation_id}, not {self._conversation_id}"
            )
