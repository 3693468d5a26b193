from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from liftr_chat.domain.entities.notification import Notification


@dataclass(frozen=True, slots=True)
class PushResult:
    ok: bool
    status: int
    detail: str = ""


class PushGateway(Protocol):
    async def send(self, device_token: str, notification: Notification) -> PushResult: ...
