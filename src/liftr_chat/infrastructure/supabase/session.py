"""Signed-in user session against the platform's auth endpoints."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any
from uuid import UUID

import httpx
import jwt

from liftr_chat.application.exceptions import NetworkError, UnauthorizedError

logger = logging.getLogger(__name__)


class SupabaseSession:
    """Holds the access/refresh token pair and refreshes it before expiry.

    Implements ``application.ports.auth.SessionProvider``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        leeway_seconds: int = 60,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._leeway = leeway_seconds
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def user_id(self) -> UUID | None:
        if not self._access_token:
            return None
        claims = _claims(self._access_token)
        return UUID(claims["sub"]) if claims.get("sub") else None

    def set_tokens(self, access_token: str, refresh_token: str | None) -> None:
        self._access_token = access_token
        self._refresh_token = refresh_token

    async def sign_in_with_password(self, email: str, password: str) -> UUID:
        await self._token_grant("password", {"email": email, "password": password})
        user_id = self.user_id
        assert user_id is not None
        logger.info("Signed in user=%s", user_id)
        return user_id

    async def sign_out(self) -> None:
        self._access_token = None
        self._refresh_token = None

    async def access_token(self) -> str:
        if self._access_token is None:
            raise UnauthorizedError("not signed in")
        if not self._expiring(self._access_token):
            return self._access_token
        async with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            if self._access_token and not self._expiring(self._access_token):
                return self._access_token
            if not self._refresh_token:
                raise UnauthorizedError("session expired")
            await self._token_grant("refresh_token", {"refresh_token": self._refresh_token})
            logger.debug("Access token refreshed")
        assert self._access_token is not None
        return self._access_token

    async def close(self) -> None:
        await self._client.aclose()

    def _expiring(self, token: str) -> bool:
        exp = _claims(token).get("exp")
        if exp is None:
            return False
        return float(exp) - time.time() <= self._leeway

    async def _token_grant(self, grant_type: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                "/auth/v1/token",
                params={"grant_type": grant_type},
                json=body,
                headers={"apikey": self._api_key},
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"auth {grant_type}: {exc}") from exc
        if response.status_code in (400, 401, 403):
            raise UnauthorizedError(f"auth {grant_type} rejected: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise NetworkError(f"auth {grant_type}: HTTP {response.status_code}", status=response.status_code)
        data = response.json()
        self.set_tokens(data["access_token"], data.get("refresh_token"))
        return data


def _claims(token: str) -> dict[str, Any]:
    # Signature is checked by the server; the client only needs exp/sub.
    return jwt.decode(token, options={"verify_signature": False})
