"""Per-conversation realtime subscriptions on the messages table."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from liftr_chat.application.ports.auth import SessionProvider
from liftr_chat.application.ports.realtime import (
    RawChangeCallback,
    RealtimeChannel,
    RealtimeTransport,
)
from liftr_chat.chat.records import decode_deleted, decode_message
from liftr_chat.domain.events.message_changes import (
    MessageChange,
    MessageDeleted,
    MessageInserted,
    MessageUpdated,
)
from liftr_chat.domain.value_objects.enums import ChangeKind, SubscriptionState

logger = logging.getLogger(__name__)

OnChange = Callable[[MessageChange], None]
OnLost = Callable[[int], None]


@dataclass(slots=True)
class SubscriptionHandle:
    """Channel and listener registrations owned by one conversation."""

    conversation_id: int
    channel: RealtimeChannel | None = None
    registrations: list[int] = field(default_factory=list)
    state: SubscriptionState = SubscriptionState.SUBSCRIBING


class RealtimeSubscriptionManager:
    """Owns at most one realtime channel per conversation.

    The handle map is shared by every controller in the process. Entries are
    inserted and removed without an ``await`` between the membership check and
    the mutation, so concurrent open/close of the same conversation on the
    event loop cannot create a second channel or leak one.
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        session: SessionProvider,
        *,
        schema: str = "public",
        table: str = "messages",
    ) -> None:
        self._transport = transport
        self._session = session
        self._schema = schema
        self._table = table
        self._handles: dict[int, SubscriptionHandle] = {}
        self._releases: set[asyncio.Task[None]] = set()

    def state(self, conversation_id: int) -> SubscriptionState:
        handle = self._handles.get(conversation_id)
        return handle.state if handle else SubscriptionState.UNSUBSCRIBED

    def is_subscribed(self, conversation_id: int) -> bool:
        return self.state(conversation_id) == SubscriptionState.SUBSCRIBED

    async def subscribe(
        self,
        conversation_id: int,
        on_change: OnChange,
        on_lost: OnLost | None = None,
    ) -> bool:
        """Join the conversation's channel. Returns False when the join fails.

        ``on_lost`` is called if the server or the socket later ends the channel;
        the handle is already gone by then, so the next call joins afresh.
        """
        if conversation_id in self._handles:
            logger.debug("Subscribe skipped, handle exists conv=%d", conversation_id)
            return True

        handle = SubscriptionHandle(conversation_id=conversation_id)
        self._handles[conversation_id] = handle
        logger.info("Subscribe start conv=%d", conversation_id)

        # The transport must carry a fresh token before the join; a join
        # without it is accepted but loses row-level filtering server-side.
        try:
            token = await self._session.access_token()
            await self._transport.set_auth(token)
        except Exception:
            logger.exception("Realtime auth refresh failed conv=%d", conversation_id)
            self._drop(handle)
            return False

        if not self._is_current(handle):
            logger.info("Subscribe abandoned, closed during auth conv=%d", conversation_id)
            return False

        channel = self._transport.channel(f"chat:{conversation_id}")
        handle.channel = channel
        row_filter = f"conversation_id=eq.{conversation_id}"
        for kind in (ChangeKind.INSERT, ChangeKind.UPDATE, ChangeKind.DELETE):
            registration = channel.on_postgres_change(
                kind,
                schema=self._schema,
                table=self._table,
                filter=row_filter,
                callback=self._listener(handle, kind, on_change),
            )
            handle.registrations.append(registration)
        channel.on_close(self._close_listener(handle, on_lost))

        try:
            await channel.subscribe()
        except Exception as exc:
            logger.warning("Subscribe failed conv=%d: %s", conversation_id, exc)
            self._drop(handle)
            await self._release(handle)
            return False

        if not self._is_current(handle):
            logger.info("Subscribe completed after close conv=%d, releasing", conversation_id)
            await self._release(handle)
            return False

        handle.state = SubscriptionState.SUBSCRIBED
        logger.info("Subscribed conv=%d topic=%s", conversation_id, channel.topic)
        return True

    async def unsubscribe(self, conversation_id: int) -> None:
        handle = self._handles.pop(conversation_id, None)
        if handle is None:
            return
        handle.state = SubscriptionState.UNSUBSCRIBED
        logger.info("Unsubscribe conv=%d", conversation_id)
        await self._release(handle)

    async def close_all(self) -> None:
        for conversation_id in list(self._handles):
            await self.unsubscribe(conversation_id)
        if self._releases:
            await asyncio.gather(*list(self._releases), return_exceptions=True)

    def _is_current(self, handle: SubscriptionHandle) -> bool:
        return self._handles.get(handle.conversation_id) is handle

    def _drop(self, handle: SubscriptionHandle) -> None:
        if self._is_current(handle):
            del self._handles[handle.conversation_id]
        handle.state = SubscriptionState.UNSUBSCRIBED

    async def _release(self, handle: SubscriptionHandle) -> None:
        channel, handle.channel = handle.channel, None
        if channel is None:
            return
        for registration in handle.registrations:
            channel.remove_listener(registration)
        handle.registrations.clear()
        try:
            await channel.unsubscribe()
            await self._transport.remove_channel(channel)
        except Exception:
            logger.exception("Channel release failed conv=%d", handle.conversation_id)

    def _close_listener(self, handle: SubscriptionHandle, on_lost: OnLost | None) -> Callable[[], None]:
        def closed() -> None:
            if not self._is_current(handle) or handle.state != SubscriptionState.SUBSCRIBED:
                return
            logger.warning("Realtime channel lost conv=%d", handle.conversation_id)
            self._drop(handle)
            task = asyncio.get_running_loop().create_task(self._release(handle))
            self._releases.add(task)
            task.add_done_callback(self._releases.discard)
            if on_lost is None:
                return
            try:
                on_lost(handle.conversation_id)
            except Exception:
                logger.exception("Lost handler failed conv=%d", handle.conversation_id)

        return closed

    def _listener(
        self,
        handle: SubscriptionHandle,
        kind: ChangeKind,
        on_change: OnChange,
    ) -> RawChangeCallback:
        def listener(payload: dict[str, Any]) -> None:
            if not self._is_current(handle):
                return
            if not isinstance(payload, dict):
                logger.warning("Dropping non-object %s payload conv=%d", kind, handle.conversation_id)
                return
            event = self._normalize(handle.conversation_id, kind, payload)
            if event is None:
                return
            try:
                on_change(event)
            except Exception:
                logger.exception(
                    "Change handler failed conv=%d kind=%s", handle.conversation_id, kind,
                )

        return listener

    def _normalize(
        self,
        conversation_id: int,
        kind: ChangeKind,
        payload: dict[str, Any],
    ) -> MessageChange | None:
        if kind == ChangeKind.DELETE:
            deleted = decode_deleted(payload.get("old_record"))
            if deleted is None:
                return None
            if deleted.conversation_id is not None and deleted.conversation_id != conversation_id:
                logger.warning(
                    "Dropping foreign DELETE id=%d conv=%d (subscribed %d)",
                    deleted.id, deleted.conversation_id, conversation_id,
                )
                return None
            return MessageDeleted(message_id=deleted.id)

        message = decode_message(payload.get("record"))
        if message is None:
            return None
        if message.conversation_id != conversation_id:
            logger.warning(
                "Dropping foreign %s id=%d conv=%d (subscribed %d)",
                kind, message.id, message.conversation_id, conversation_id,
            )
            return None
        if kind == ChangeKind.INSERT:
            return MessageInserted(message=message)
        return MessageUpdated(message=message)
