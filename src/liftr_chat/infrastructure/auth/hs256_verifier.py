from __future__ import annotations

from typing import Any
from uuid import UUID

import jwt

from liftr_chat.application.dto.principal import Principal


class HS256Verifier:
    """Verify platform JWTs signed with the project's shared HS256 secret."""

    def __init__(self, secret: str, algorithm: str = "HS256", audience: str | None = "authenticated") -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience

    async def verify(self, token: str) -> Principal:
        payload = jwt.decode(
            token,
            self._secret,
            algorithms=[self._algorithm],
            audience=self._audience,
            options={"require": ["sub", "exp"]},
        )
        return principal_from_claims(payload)


def principal_from_claims(payload: dict[str, Any]) -> Principal:
    return Principal(
        user_id=UUID(payload["sub"]),
        role=payload.get("role", "authenticated"),
        email=payload.get("email"),
    )
