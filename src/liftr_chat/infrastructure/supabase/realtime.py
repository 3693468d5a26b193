"""Realtime WebSocket client speaking the Phoenix channel protocol with postgres_changes bindings."""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import websockets
import websockets.asyncio.client

from liftr_chat.application.exceptions import SubscribeError
from liftr_chat.application.ports.realtime import RawChangeCallback
from liftr_chat.domain.value_objects.enums import ChangeKind

logger = logging.getLogger(__name__)

ConnectFn = Callable[[str], Awaitable[Any]]

PHOENIX_TOPIC = "phoenix"


@dataclass(slots=True)
class _Binding:
    event: ChangeKind
    schema: str
    table: str
    filter: str | None
    callback: RawChangeCallback
    server_id: int | None = None

    def as_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {
            "event": self.event.value,
            "schema": self.schema,
            "table": self.table,
        }
        if self.filter:
            config["filter"] = self.filter
        return config

    def matches(self, ids: list[int], data: dict[str, Any]) -> bool:
        if self.server_id is not None and ids:
            return self.server_id in ids
        return (
            data.get("type") == self.event.value
            and data.get("table") == self.table
            and data.get("schema", self.schema) == self.schema
        )


class SupabaseChannel:
    """One joined topic. Listeners must be registered before :meth:`subscribe`."""

    def __init__(self, socket: SupabaseRealtime, topic: str) -> None:
        self._socket = socket
        self._topic = topic
        self._bindings: dict[int, _Binding] = {}
        self._registrations = itertools.count(1)
        self._join_ref: str | None = None
        self._close_callbacks: list[Callable[[], None]] = []
        self.joined = False

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def join_ref(self) -> str | None:
        return self._join_ref

    def on_postgres_change(
        self,
        event: ChangeKind,
        *,
        schema: str,
        table: str,
        filter: str | None,
        callback: RawChangeCallback,
    ) -> int:
        if self.joined:
            raise RuntimeError(f"channel {self._topic} already joined; register listeners first")
        registration = next(self._registrations)
        self._bindings[registration] = _Binding(event, schema, table, filter, callback)
        return registration

    def remove_listener(self, registration: int) -> None:
        self._bindings.pop(registration, None)

    def on_close(self, callback: Callable[[], None]) -> None:
        self._close_callbacks.append(callback)

    def mark_closed(self, reason: str) -> None:
        if not self.joined:
            return
        self.joined = False
        logger.warning("Channel %s closed: %s", self._topic, reason)
        for callback in list(self._close_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Close callback failed on %s", self._topic)

    async def subscribe(self) -> None:
        await self._socket.connect()
        ordered = [self._bindings[k] for k in sorted(self._bindings)]
        payload: dict[str, Any] = {
            "config": {
                "broadcast": {"self": False, "ack": False},
                "presence": {"key": ""},
                "postgres_changes": [b.as_config() for b in ordered],
            },
        }
        if self._socket.token:
            payload["access_token"] = self._socket.token

        ref = self._socket.next_ref()
        self._join_ref = ref
        reply = await self._socket.request(self._topic, "phx_join", payload, ref=ref, join_ref=ref)
        if reply.get("status") != "ok":
            raise SubscribeError(f"join {self._topic} rejected: {reply.get('response')}")

        server_changes = (reply.get("response") or {}).get("postgres_changes") or []
        # The server echoes the bindings in request order, each with its id.
        for binding, server in zip(ordered, server_changes):
            binding.server_id = server.get("id")
        self.joined = True
        logger.debug("Joined %s bindings=%d", self._topic, len(ordered))

    async def unsubscribe(self) -> None:
        if not self.joined:
            return
        self.joined = False
        try:
            await self._socket.push(self._topic, "phx_leave", {}, join_ref=self._join_ref)
        except websockets.exceptions.ConnectionClosed:
            logger.debug("Leave %s skipped, socket closed", self._topic)

    def handle(self, event: str, payload: dict[str, Any]) -> None:
        if event == "postgres_changes":
            ids = payload.get("ids") or []
            data = payload.get("data") or {}
            for binding in list(self._bindings.values()):
                if not binding.matches(ids, data):
                    continue
                try:
                    binding.callback(data)
                except Exception:
                    logger.exception("Realtime listener failed on %s", self._topic)
        elif event in ("phx_error", "phx_close"):
            self.mark_closed(f"{event} {payload}")
        elif event == "system" and payload.get("status") == "error":
            logger.warning("Channel %s system error: %s", self._topic, payload.get("message"))


class SupabaseRealtime:
    """Manages the WebSocket connection shared by all channels.

    Implements ``application.ports.realtime.RealtimeTransport``.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        heartbeat_interval: float = 25.0,
        join_timeout: float = 10.0,
        connect: ConnectFn | None = None,
    ) -> None:
        self._url = f"{url}?apikey={api_key}&vsn=1.0.0"
        self._heartbeat_interval = heartbeat_interval
        self._join_timeout = join_timeout
        self._connect_fn: ConnectFn = connect or websockets.asyncio.client.connect
        self._ws: Any = None
        self._token: str | None = None
        self._refs = itertools.count(1)
        self._channels: dict[str, SupabaseChannel] = {}
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def next_ref(self) -> str:
        return str(next(self._refs))

    async def set_auth(self, token: str | None) -> None:
        self._token = token
        for channel in list(self._channels.values()):
            if channel.joined and token:
                await self.push(
                    channel.topic, "access_token", {"access_token": token}, join_ref=channel.join_ref,
                )

    def channel(self, topic: str) -> SupabaseChannel:
        full_topic = f"realtime:{topic}"
        channel = SupabaseChannel(self, full_topic)
        self._channels[full_topic] = channel
        return channel

    async def remove_channel(self, channel: SupabaseChannel) -> None:
        if self._channels.get(channel.topic) is channel:
            del self._channels[channel.topic]
        if not self._channels:
            await self.disconnect()

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            if self._heartbeat_task is not None:
                self._heartbeat_task.cancel()
            self._ws = await self._connect_fn(self._url)
            self._reader_task = asyncio.create_task(self._read_loop(), name="realtime-reader")
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="realtime-heartbeat")
            logger.info("Realtime connected")

    async def disconnect(self) -> None:
        ws, self._ws = self._ws, None
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._heartbeat_task = None
        self._reader_task = None
        self._fail_pending("connection closed")
        if ws is not None:
            try:
                await ws.close()
            except websockets.exceptions.WebSocketException:
                logger.debug("Realtime close raised", exc_info=True)
            logger.info("Realtime disconnected")

    async def push(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
        *,
        ref: str | None = None,
        join_ref: str | None = None,
    ) -> str:
        if self._ws is None:
            raise SubscribeError("realtime socket is not connected")
        ref = ref or self.next_ref()
        frame = {"topic": topic, "event": event, "payload": payload, "ref": ref, "join_ref": join_ref}
        await self._ws.send(json.dumps(frame))
        return ref

    async def request(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
        *,
        ref: str | None = None,
        join_ref: str | None = None,
    ) -> dict[str, Any]:
        """Push a frame and wait for its ``phx_reply``."""
        ref = ref or self.next_ref()
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        try:
            await self.push(topic, event, payload, ref=ref, join_ref=join_ref)
            return await asyncio.wait_for(future, timeout=self._join_timeout)
        except asyncio.TimeoutError as exc:
            raise SubscribeError(f"{event} on {topic} timed out") from exc
        finally:
            self._pending.pop(ref, None)

    def handle_frame(self, frame: dict[str, Any]) -> None:
        event = frame.get("event")
        topic = frame.get("topic")
        payload = frame.get("payload") or {}
        ref = frame.get("ref")

        if event == "phx_reply" and ref is not None:
            future = self._pending.get(str(ref))
            if future is not None and not future.done():
                future.set_result(payload)
                return
        if topic == PHOENIX_TOPIC:
            return
        channel = self._channels.get(topic) if topic else None
        if channel is None:
            logger.debug("Frame for unknown topic %s event=%s", topic, event)
            return
        channel.handle(str(event), payload)

    async def _read_loop(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping non-JSON realtime frame")
                    continue
                self.handle_frame(frame)
        except websockets.exceptions.ConnectionClosed as exc:
            logger.warning("Realtime connection closed: %s", exc)
        finally:
            if self._ws is ws:
                self._ws = None
                self._fail_pending("connection closed")
                for channel in list(self._channels.values()):
                    channel.mark_closed("connection closed")

    async def _heartbeat_loop(self) -> None:
        try:
            while self._ws is not None:
                await asyncio.sleep(self._heartbeat_interval)
                if self._ws is not None:
                    await self.push(PHOENIX_TOPIC, "heartbeat", {})
        except asyncio.CancelledError:
            pass
        except (SubscribeError, websockets.exceptions.ConnectionClosed):
            logger.debug("Heartbeat stopped, socket gone")

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(SubscribeError(reason))
        self._pending.clear()
