"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from liftr_chat.application.dto.principal import Principal
from liftr_chat.application.exceptions import UnauthorizedError
from liftr_chat.application.ports.auth import AuthAdmin, TokenVerifier
from liftr_chat.application.ports.push import PushGateway
from liftr_chat.config import settings
from liftr_chat.infrastructure.auth.hs256_verifier import HS256Verifier
from liftr_chat.infrastructure.auth.jwks_verifier import JWKSVerifier
from liftr_chat.infrastructure.db.session import AsyncSessionLocal
from liftr_chat.infrastructure.db.uow import SqlAlchemyUoW
from liftr_chat.infrastructure.push.fcm import FCMGateway
from liftr_chat.infrastructure.supabase.admin import SupabaseAuthAdmin

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_uow() -> AsyncIterator[SqlAlchemyUoW]:
    async with AsyncSessionLocal() as session:
        uow = SqlAlchemyUoW(session)
        try:
            yield uow
        finally:
            await session.close()


UoWDep = Annotated[SqlAlchemyUoW, Depends(get_uow)]


def _get_verifier() -> TokenVerifier:
    if settings.JWT_VERIFY_MODE == "jwks":
        assert settings.JWKS_URL, "JWKS_URL must be set when JWT_VERIFY_MODE=jwks"
        return JWKSVerifier(settings.JWKS_URL, audience=settings.JWT_AUDIENCE)
    return HS256Verifier(settings.SUPABASE_JWT_SECRET, settings.JWT_ALGORITHM, settings.JWT_AUDIENCE)


_verifier: TokenVerifier | None = None
_auth_admin: SupabaseAuthAdmin | None = None
_push_gateway: FCMGateway | None = None


def get_verifier() -> TokenVerifier:
    global _verifier  # noqa: PLW0603
    if _verifier is None:
        _verifier = _get_verifier()
    return _verifier


def get_auth_admin() -> AuthAdmin:
    global _auth_admin  # noqa: PLW0603
    if _auth_admin is None:
        _auth_admin = SupabaseAuthAdmin(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY,
            timeout=settings.HTTP_TIMEOUT,
        )
    return _auth_admin


def get_push_gateway() -> PushGateway:
    global _push_gateway  # noqa: PLW0603
    if _push_gateway is None:
        if not settings.FCM_SERVICE_ACCOUNT_JSON:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Push gateway not configured",
            )
        _push_gateway = FCMGateway.from_json(
            settings.FCM_SERVICE_ACCOUNT_JSON, timeout=settings.HTTP_TIMEOUT,
        )
    return _push_gateway


async def close_clients() -> None:
    global _auth_admin, _push_gateway  # noqa: PLW0603
    if _auth_admin is not None:
        await _auth_admin.close()
        _auth_admin = None
    if _push_gateway is not None:
        await _push_gateway.close()
        _push_gateway = None


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> Principal:
    if credentials is None:
        raise UnauthorizedError("Unauthorized")
    verifier = get_verifier()
    try:
        return await verifier.verify(credentials.credentials)
    except Exception as exc:
        raise UnauthorizedError("Unauthorized") from exc


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
AuthAdminDep = Annotated[AuthAdmin, Depends(get_auth_admin)]
PushGatewayDep = Annotated[PushGateway, Depends(get_push_gateway)]
