from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ProfileSummary:
    user_id: UUID
    username: str
    avatar_url: str | None = None
