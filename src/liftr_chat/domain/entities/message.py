from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Message:
    id: int
    conversation_id: int
    user_id: UUID
    kind: str
    body: str | None
    created_at: datetime
    edited_at: datetime | None = None
    deleted_at: datetime | None = None
