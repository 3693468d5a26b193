from __future__ import annotations

from typing import Any, Callable, Protocol

from liftr_chat.domain.value_objects.enums import ChangeKind

# Raw postgres change payload: {"type", "schema", "table", "record", "old_record", ...}
RawChangeCallback = Callable[[dict[str, Any]], None]


class RealtimeChannel(Protocol):
    @property
    def topic(self) -> str: ...

    def on_postgres_change(
        self,
        event: ChangeKind,
        *,
        schema: str,
        table: str,
        filter: str | None,
        callback: RawChangeCallback,
    ) -> int:
        """Register a listener before joining; returns a registration id."""
        ...

    def remove_listener(self, registration: int) -> None: ...

    def on_close(self, callback: Callable[[], None]) -> None:
        """Called once when the server or the socket ends a joined channel."""
        ...

    async def subscribe(self) -> None:
        """Join the channel. Raises SubscribeError when the server refuses."""
        ...

    async def unsubscribe(self) -> None: ...


class RealtimeTransport(Protocol):
    async def set_auth(self, token: str | None) -> None: ...

    def channel(self, topic: str) -> RealtimeChannel: ...

    async def remove_channel(self, channel: RealtimeChannel) -> None: ...
