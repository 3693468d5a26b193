from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity extracted from a platform JWT."""

    user_id: UUID
    role: str = "authenticated"
    email: str | None = None

    @property
    def is_service(self) -> bool:
        return self.role == "service_role"
