"""Notification worker: polls unsent notifications and pushes them through FCM."""
from __future__ import annotations

import asyncio
import logging

from liftr_chat.api.middleware.correlation_id import configure_logging
from liftr_chat.application.ports.push import PushGateway
from liftr_chat.config import settings
from liftr_chat.infrastructure.db.session import AsyncSessionLocal, engine
from liftr_chat.infrastructure.db.uow import SqlAlchemyUoW
from liftr_chat.infrastructure.push.fcm import FCMGateway
from liftr_chat.services import notification_service

logger = logging.getLogger(__name__)


async def run_notification_worker() -> None:
    if not settings.FCM_SERVICE_ACCOUNT_JSON:
        raise RuntimeError("FCM_SERVICE_ACCOUNT_JSON is not configured")
    gateway = FCMGateway.from_json(settings.FCM_SERVICE_ACCOUNT_JSON, timeout=settings.HTTP_TIMEOUT)

    logger.info(
        "Notification worker started (poll=%.1fs, batch=%d)",
        settings.NOTIFICATIONS_POLL_INTERVAL,
        settings.NOTIFICATIONS_BATCH_SIZE,
    )

    try:
        while True:
            try:
                await process_batch(gateway)
            except Exception:
                logger.exception("Notification worker loop error")
            await asyncio.sleep(settings.NOTIFICATIONS_POLL_INTERVAL)
    finally:
        await gateway.close()
        await engine.dispose()


async def process_batch(gateway: PushGateway) -> int:
    async with AsyncSessionLocal() as session:
        async with SqlAlchemyUoW(session) as uow:
            report = await notification_service.dispatch_pending(
                uow, gateway, settings.NOTIFICATIONS_BATCH_SIZE,
            )
    return report.fetched


def main() -> None:
    configure_logging()
    asyncio.run(run_notification_worker())


if __name__ == "__main__":
    main()
