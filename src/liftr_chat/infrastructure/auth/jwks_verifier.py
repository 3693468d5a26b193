from __future__ import annotations

import asyncio

import jwt
from jwt import PyJWKClient

from liftr_chat.application.dto.principal import Principal
from liftr_chat.infrastructure.auth.hs256_verifier import principal_from_claims


class JWKSVerifier:
    """Verify platform JWTs signed with asymmetric keys published at a JWKS endpoint."""

    def __init__(self, jwks_url: str, audience: str | None = "authenticated") -> None:
        self._jwks_url = jwks_url
        self._audience = audience
        self._jwk_client = PyJWKClient(jwks_url)

    async def verify(self, token: str) -> Principal:
        # PyJWKClient fetches keys with blocking urllib calls.
        signing_key = await asyncio.to_thread(self._jwk_client.get_signing_key_from_jwt, token)
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience=self._audience,
            options={"require": ["sub", "exp"]},
        )
        return principal_from_claims(payload)
