"""Drain the notifications queue into push deliveries."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from liftr_chat.application.ports.clock import Clock, SystemClock
from liftr_chat.application.ports.push import PushGateway
from liftr_chat.application.uow import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchReport:
    fetched: int = 0
    sent: int = 0
    failed: int = 0


async def dispatch_pending(
    uow: UnitOfWork,
    gateway: PushGateway,
    batch_size: int,
    clock: Clock | None = None,
) -> DispatchReport:
    """Push one batch of unsent notifications, recording sent_at or send_error per row."""
    clock = clock or SystemClock()
    batch = await uow.notifications.fetch_pending(batch_size)
    if not batch:
        return DispatchReport()

    sent = failed = 0
    for notif in batch:
        try:
            token = await uow.profiles.get_push_token(notif.user_id)
            if not token:
                await uow.notifications.mark_error(notif.id, "no_token")
                failed += 1
                continue
            result = await gateway.send(token, notif)
            if result.ok:
                await uow.notifications.mark_sent(notif.id, clock.now())
                sent += 1
            else:
                await uow.notifications.mark_error(notif.id, f"fcm_{result.status}: {result.detail[:200]}")
                failed += 1
        except Exception as exc:
            logger.exception("Push failed for notification %d", notif.id)
            await uow.notifications.mark_error(notif.id, f"exception: {exc}")
            failed += 1

    await uow.commit()
    logger.info("Dispatched notifications fetched=%d sent=%d failed=%d", len(batch), sent, failed)
    return DispatchReport(fetched=len(batch), sent=sent, failed=failed)
