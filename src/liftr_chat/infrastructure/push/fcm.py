"""Firebase Cloud Messaging HTTP v1 gateway authenticated with a service account."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import httpx
import jwt

from liftr_chat.application.exceptions import NetworkError
from liftr_chat.application.ports.push import PushResult
from liftr_chat.domain.entities.notification import Notification

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600


class FCMGateway:
    """Implements application.ports.push.PushGateway."""

    def __init__(
        self,
        service_account: dict[str, Any],
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._project_id = service_account["project_id"]
        self._client_email = service_account["client_email"]
        self._private_key = service_account["private_key"]
        self._token_uri = service_account.get("token_uri", "https://oauth2.googleapis.com/token")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._access_token: str | None = None
        self._expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_json(cls, raw: str, **kwargs: Any) -> FCMGateway:
        return cls(json.loads(raw), **kwargs)

    @property
    def send_url(self) -> str:
        return f"https://fcm.googleapis.com/v1/projects/{self._project_id}/messages:send"

    async def send(self, device_token: str, notification: Notification) -> PushResult:
        access = await self._get_access_token()
        message: dict[str, Any] = {
            "token": device_token,
            "notification": {"title": notification.title, "body": notification.body},
            "data": build_data_payload(notification),
        }
        response = await self._client.post(
            self.send_url,
            json={"message": message},
            headers={"Authorization": f"Bearer {access}"},
        )
        logger.info("FCM status=%d notification=%d", response.status_code, notification.id)
        return PushResult(
            ok=response.is_success,
            status=response.status_code,
            detail=response.text[:200],
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_access_token(self) -> str:
        async with self._token_lock:
            now = time.time()
            if self._access_token and now < self._expires_at - 60:
                return self._access_token
            issued = int(now)
            assertion = jwt.encode(
                {
                    "iss": self._client_email,
                    "scope": FCM_SCOPE,
                    "aud": self._token_uri,
                    "iat": issued,
                    "exp": issued + TOKEN_LIFETIME_SECONDS,
                },
                self._private_key,
                algorithm="RS256",
                headers={"typ": "JWT"},
            )
            response = await self._client.post(
                self._token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
            if response.status_code >= 400:
                raise NetworkError(
                    f"oauth token exchange failed: {response.text[:200]}",
                    status=response.status_code,
                )
            data = response.json()
            self._access_token = data["access_token"]
            self._expires_at = now + float(data.get("expires_in", TOKEN_LIFETIME_SECONDS))
            return self._access_token


def build_data_payload(notification: Notification) -> dict[str, str]:
    """FCM data values must be strings; nested values are JSON-encoded."""
    result: dict[str, str] = {}
    if notification.type:
        result["type"] = str(notification.type)
    for key, value in (notification.data or {}).items():
        if value is None:
            continue
        if isinstance(value, str):
            result[key] = value
        elif isinstance(value, bool):
            result[key] = "true" if value else "false"
        elif isinstance(value, (int, float)):
            result[key] = str(value)
        else:
            result[key] = json.dumps(value)
    return result
