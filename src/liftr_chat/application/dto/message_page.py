from __future__ import annotations

from dataclasses import dataclass, field

from liftr_chat.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class MessagePage:
    """One page of messages as returned by the query API.

    ``raw_count`` counts the rows the server returned, including rows that
    failed to decode; paging decisions use it, not ``len(messages)``.
    """

    messages: list[Message] = field(default_factory=list)
    raw_count: int = 0

    def ascending(self) -> list[Message]:
        return sorted(self.messages, key=lambda m: m.id)
