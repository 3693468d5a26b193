from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Notification:
    id: int
    user_id: UUID
    type: str | None
    title: str | None
    body: str | None
    created_at: datetime
    data: dict[str, Any] = field(default_factory=dict)
