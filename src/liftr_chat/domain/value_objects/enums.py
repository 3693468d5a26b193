from __future__ import annotations

from enum import StrEnum


class MessageKind(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str) -> MessageKind:
        """Map a server kind string onto a known kind; unknown kinds become OTHER."""
        try:
            return cls(raw)
        except ValueError:
            return cls.OTHER


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SubscriptionState(StrEnum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
