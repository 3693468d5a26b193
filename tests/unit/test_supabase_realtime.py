from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from liftr_chat.application.exceptions import SubscribeError
from liftr_chat.domain.value_objects.enums import ChangeKind
from liftr_chat.infrastructure.supabase.realtime import SupabaseRealtime
from tests.conftest import make_row, settle


class FakeWebSocket:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, frame: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(frame))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


@pytest.fixture
def socket_pair():
    ws = FakeWebSocket()
    urls: list[str] = []

    async def connect(url: str) -> FakeWebSocket:
        urls.append(url)
        return ws

    realtime = SupabaseRealtime(
        "ws://sb.test/realtime/v1/websocket",
        "anon",
        heartbeat_interval=3600,
        join_timeout=0.2,
        connect=connect,
    )
    return realtime, ws, urls


def _reply(ws: FakeWebSocket, frame: dict[str, Any], status: str = "ok", **response: Any) -> None:
    ws.feed({
        "topic": frame["topic"],
        "event": "phx_reply",
        "ref": frame["ref"],
        "payload": {"status": status, "response": response},
    })


async def _join(realtime: SupabaseRealtime, ws: FakeWebSocket, channel, server_ids: list[int]):
    task = asyncio.create_task(channel.subscribe())
    await settle()
    join = ws.sent[-1]
    _reply(ws, join, postgres_changes=[{"id": i} for i in server_ids])
    await task
    return join


@pytest.mark.asyncio
async def test_join_frame_carries_bindings_and_token(socket_pair):
    realtime, ws, urls = socket_pair
    await realtime.set_auth("user-jwt")
    channel = realtime.channel("chat:1")
    channel.on_postgres_change(
        ChangeKind.INSERT, schema="public", table="messages",
        filter="conversation_id=eq.1", callback=lambda p: None,
    )

    join = await _join(realtime, ws, channel, [101])

    assert urls == ["ws://sb.test/realtime/v1/websocket?apikey=anon&vsn=1.0.0"]
    assert join["event"] == "phx_join"
    assert join["topic"] == "realtime:chat:1"
    assert join["join_ref"] == join["ref"]
    assert join["payload"]["access_token"] == "user-jwt"
    assert join["payload"]["config"]["postgres_changes"] == [
        {"event": "INSERT", "schema": "public", "table": "messages", "filter": "conversation_id=eq.1"},
    ]
    assert channel.joined is True
    await realtime.disconnect()


@pytest.mark.asyncio
async def test_changes_routed_by_server_binding_id(socket_pair):
    realtime, ws, _ = socket_pair
    inserts: list[dict] = []
    deletes: list[dict] = []
    channel = realtime.channel("chat:1")
    channel.on_postgres_change(ChangeKind.INSERT, schema="public", table="messages", filter=None, callback=inserts.append)
    channel.on_postgres_change(ChangeKind.DELETE, schema="public", table="messages", filter=None, callback=deletes.append)
    await _join(realtime, ws, channel, [11, 12])

    ws.feed({
        "topic": "realtime:chat:1",
        "event": "postgres_changes",
        "ref": None,
        "payload": {"ids": [11], "data": {"type": "INSERT", "table": "messages", "record": make_row(5)}},
    })
    ws.feed({
        "topic": "realtime:chat:1",
        "event": "postgres_changes",
        "ref": None,
        "payload": {"ids": [12], "data": {"type": "DELETE", "table": "messages", "old_record": {"id": 5}}},
    })
    await settle()

    assert [p["record"]["id"] for p in inserts] == [5]
    assert [p["old_record"]["id"] for p in deletes] == [5]
    await realtime.disconnect()


@pytest.mark.asyncio
async def test_rejected_join_raises(socket_pair):
    realtime, ws, _ = socket_pair
    channel = realtime.channel("chat:1")

    task = asyncio.create_task(channel.subscribe())
    await settle()
    _reply(ws, ws.sent[-1], status="error", reason="unauthorized")

    with pytest.raises(SubscribeError):
        await task
    assert channel.joined is False
    await realtime.disconnect()


@pytest.mark.asyncio
async def test_join_without_reply_times_out(socket_pair):
    realtime, _, _ = socket_pair
    channel = realtime.channel("chat:1")

    with pytest.raises(SubscribeError, match="timed out"):
        await channel.subscribe()
    await realtime.disconnect()


@pytest.mark.asyncio
async def test_listeners_cannot_be_added_after_join(socket_pair):
    realtime, ws, _ = socket_pair
    channel = realtime.channel("chat:1")
    await _join(realtime, ws, channel, [])

    with pytest.raises(RuntimeError):
        channel.on_postgres_change(ChangeKind.UPDATE, schema="public", table="messages", filter=None, callback=print)
    await realtime.disconnect()


@pytest.mark.asyncio
async def test_set_auth_pushes_token_to_joined_channels(socket_pair):
    realtime, ws, _ = socket_pair
    channel = realtime.channel("chat:1")
    await _join(realtime, ws, channel, [])

    await realtime.set_auth("rotated")

    frame = ws.sent[-1]
    assert frame["event"] == "access_token"
    assert frame["payload"] == {"access_token": "rotated"}
    assert frame["join_ref"] == channel.join_ref
    await realtime.disconnect()


@pytest.mark.asyncio
async def test_leave_and_remove_last_channel_disconnects(socket_pair):
    realtime, ws, _ = socket_pair
    channel = realtime.channel("chat:1")
    await _join(realtime, ws, channel, [])

    await channel.unsubscribe()
    await realtime.remove_channel(channel)

    assert ws.sent[-1]["event"] == "phx_leave"
    assert ws.closed is True
    assert realtime.connected is False


@pytest.mark.asyncio
async def test_server_close_marks_channels_unjoined(socket_pair):
    realtime, ws, _ = socket_pair
    channel = realtime.channel("chat:1")
    await _join(realtime, ws, channel, [])
    closes: list[str] = []
    channel.on_close(lambda: closes.append(channel.topic))

    await ws.close()
    await settle()

    assert channel.joined is False
    assert closes == ["realtime:chat:1"]
    assert realtime.connected is False
    await realtime.disconnect()


@pytest.mark.asyncio
async def test_phx_close_notifies_close_callbacks_once(socket_pair):
    realtime, ws, _ = socket_pair
    channel = realtime.channel("chat:1")
    await _join(realtime, ws, channel, [])
    closes: list[int] = []
    channel.on_close(lambda: closes.append(1))

    ws.feed({"topic": "realtime:chat:1", "event": "phx_close", "ref": None, "payload": {}})
    ws.feed({"topic": "realtime:chat:1", "event": "phx_error", "ref": None, "payload": {}})
    await settle()

    assert channel.joined is False
    assert closes == [1]
    await realtime.disconnect()


@pytest.mark.asyncio
async def test_own_leave_does_not_notify_close_callbacks(socket_pair):
    realtime, ws, _ = socket_pair
    channel = realtime.channel("chat:1")
    await _join(realtime, ws, channel, [])
    closes: list[int] = []
    channel.on_close(lambda: closes.append(1))

    await channel.unsubscribe()
    ws.feed({"topic": "realtime:chat:1", "event": "phx_close", "ref": None, "payload": {}})
    await settle()
    await realtime.remove_channel(channel)

    assert closes == []


@pytest.mark.asyncio
async def test_new_channel_reconnects_after_socket_loss(socket_pair):
    realtime, ws, urls = socket_pair
    first = realtime.channel("chat:1")
    await _join(realtime, ws, first, [])
    await ws.close()
    await settle()
    await realtime.remove_channel(first)

    second = realtime.channel("chat:1")
    await _join(realtime, ws, second, [])

    assert len(urls) == 2
    assert second.joined is True
    assert ws.sent[-1]["event"] == "phx_join"
    await realtime.disconnect()
