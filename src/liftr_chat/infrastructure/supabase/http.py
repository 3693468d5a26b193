"""Shared httpx plumbing for the platform's REST endpoints."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from liftr_chat.application.exceptions import NetworkError
from liftr_chat.application.ports.auth import SessionProvider

logger = logging.getLogger(__name__)


class SupabaseHTTP:
    """Adds ``apikey``/``Authorization`` headers and maps failures to NetworkError.

    Requests carry the signed-in user's token when a session is attached,
    otherwise the project key itself.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        session: SessionProvider | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._session = session
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _headers(self) -> dict[str, str]:
        token = await self._session.access_token() if self._session else self._api_key
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        merged = await self._headers()
        if headers:
            merged.update(headers)
        try:
            response = await self._client.request(
                method, path, params=params, json=json, content=content, headers=merged,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise NetworkError(f"{method} {path}: {exc}") from exc
        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning("%s %s -> %d %s", method, path, response.status_code, detail)
            raise NetworkError(detail, status=response.status_code)
        return response


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"
