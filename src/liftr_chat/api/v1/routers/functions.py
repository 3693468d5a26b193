from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from liftr_chat.api.deps import AuthAdminDep, CurrentPrincipal, PushGatewayDep, UoWDep
from liftr_chat.api.v1.schemas.functions import DispatchResponse, FunctionResult
from liftr_chat.application.exceptions import NetworkError
from liftr_chat.config import settings
from liftr_chat.services import account_service, notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["functions"])


@router.post("/delete-auth-user", response_model=FunctionResult)
async def delete_auth_user(principal: CurrentPrincipal, admin: AuthAdminDep) -> FunctionResult:
    try:
        await account_service.delete_account(principal, admin)
    except NetworkError as exc:
        logger.error("Account deletion failed user=%s: %s", principal.user_id, exc.detail)
        raise HTTPException(status_code=500, detail=exc.detail) from exc
    return FunctionResult(status="ok")


@router.post("/send-notifications", response_model=DispatchResponse)
async def send_notifications(uow: UoWDep, gateway: PushGatewayDep) -> DispatchResponse:
    report = await notification_service.dispatch_pending(
        uow, gateway, settings.NOTIFICATIONS_BATCH_SIZE,
    )
    if report.fetched == 0:
        return DispatchResponse(status="No pending")
    return DispatchResponse(
        status="done",
        fetched=report.fetched,
        sent=report.sent,
        failed=report.failed,
    )
