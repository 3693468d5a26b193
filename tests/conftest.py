"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence
from uuid import UUID

import pytest

from liftr_chat.application.exceptions import SubscribeError
from liftr_chat.application.ports.platform import Filter, Order
from liftr_chat.application.ports.push import PushResult
from liftr_chat.domain.entities.message import Message
from liftr_chat.domain.entities.notification import Notification
from liftr_chat.domain.value_objects.enums import ChangeKind

ME = UUID("00000000-0000-0000-0000-00000000000a")
OTHER = UUID("00000000-0000-0000-0000-00000000000b")
BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_row(
    message_id: int,
    *,
    conversation_id: int = 1,
    user_id: UUID = OTHER,
    kind: str = "text",
    body: str | None = "hello",
) -> dict[str, Any]:
    """A messages row exactly as the query API and realtime payloads carry it."""
    return {
        "id": message_id,
        "conversation_id": conversation_id,
        "user_id": str(user_id),
        "kind": kind,
        "body": body,
        "created_at": (BASE_TIME + timedelta(seconds=message_id)).isoformat(),
        "edited_at": None,
        "deleted_at": None,
    }


def make_message(
    message_id: int,
    *,
    conversation_id: int = 1,
    user_id: UUID = OTHER,
    body: str | None = "hello",
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        user_id=user_id,
        kind="text",
        body=body,
        created_at=BASE_TIME + timedelta(seconds=message_id),
    )


async def settle(rounds: int = 20) -> None:
    """Let pending callbacks and freshly created tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@dataclass
class FixedClock:
    value: datetime = BASE_TIME

    def now(self) -> datetime:
        return self.value


@dataclass
class FakePlatform:
    """In-memory RemotePlatform over per-table row lists."""

    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    rpc_results: dict[str, Any] = field(default_factory=dict)
    rpc_errors: dict[str, Exception] = field(default_factory=dict)
    query_error: Exception | None = None
    update_error: Exception | None = None
    query_gate: asyncio.Event | None = None
    timeline: list[str] = field(default_factory=list)
    queries: list[dict[str, Any]] = field(default_factory=list)
    rpc_calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    updates: list[tuple[str, dict[str, Any], list[Filter]]] = field(default_factory=list)

    def rpc_names(self) -> list[str]:
        return [name for name, _ in self.rpc_calls]

    async def query(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: Order | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self.queries.append(
            {"table": table, "columns": columns, "filters": list(filters),
             "order": order, "offset": offset, "limit": limit}
        )
        self.timeline.append(f"query:{table}")
        if self.query_gate is not None:
            await self.query_gate.wait()
        if self.query_error is not None:
            raise self.query_error
        rows = [r for r in self.tables.get(table, []) if _matches(r, filters)]
        if order is not None:
            rows.sort(key=lambda r: r[order.column], reverse=not order.ascending)
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [dict(r) for r in rows]

    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        self.rpc_calls.append((name, params))
        self.timeline.append(f"rpc:{name}")
        if name in self.rpc_errors:
            raise self.rpc_errors[name]
        result = self.rpc_results.get(name)
        if callable(result):
            return result(params)
        return result

    async def insert(self, table: str, row: dict[str, Any]) -> list[dict[str, Any]]:
        self.tables.setdefault(table, []).append(dict(row))
        return [dict(row)]

    async def update(
        self,
        table: str,
        patch: dict[str, Any],
        filters: Sequence[Filter],
    ) -> list[dict[str, Any]]:
        self.updates.append((table, patch, list(filters)))
        if self.update_error is not None:
            raise self.update_error
        changed = []
        for row in self.tables.get(table, []):
            if _matches(row, filters):
                row.update(patch)
                changed.append(dict(row))
        return changed

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: str) -> list[dict[str, Any]]:
        return await self.insert(table, row)

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        self.tables[table] = [r for r in self.tables.get(table, []) if not _matches(r, filters)]


def _matches(row: dict[str, Any], filters: Sequence[Filter]) -> bool:
    for f in filters:
        if "." in f.column:
            # Embedded-resource filters are evaluated server-side only.
            continue
        value = row.get(f.column)
        if f.op == "eq" and value != f.value:
            return False
        if f.op == "neq" and value == f.value:
            return False
        if f.op == "lt" and not value < f.value:
            return False
        if f.op == "gt" and not value > f.value:
            return False
        if f.op == "in" and value not in f.value:
            return False
        if f.op == "is" and value is not f.value:
            return False
    return True


@dataclass
class FakeStorage:
    error: Exception | None = None
    uploads: list[tuple[str, str, bytes, str]] = field(default_factory=list)

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str, *, upsert: bool = False) -> str:
        if self.error is not None:
            raise self.error
        self.uploads.append((bucket, key, data, content_type))
        return key


@dataclass
class FakeChannel:
    topic: str
    timeline: list[str]
    subscribe_error: Exception | None = None
    join_gate: asyncio.Event | None = None
    listeners: dict[int, tuple[ChangeKind, str | None, Callable[[dict], None]]] = field(default_factory=dict)
    joined: bool = False
    unsubscribe_calls: int = 0
    close_callbacks: list[Callable[[], None]] = field(default_factory=list)

    def on_postgres_change(self, event, *, schema, table, filter, callback) -> int:
        registration = len(self.listeners) + 1
        self.listeners[registration] = (event, filter, callback)
        return registration

    def remove_listener(self, registration: int) -> None:
        self.listeners.pop(registration, None)

    def on_close(self, callback: Callable[[], None]) -> None:
        self.close_callbacks.append(callback)

    def drop(self) -> None:
        """Simulate the server ending the channel."""
        self.joined = False
        for callback in list(self.close_callbacks):
            callback()

    async def subscribe(self) -> None:
        self.timeline.append(f"join:{self.topic}")
        if self.join_gate is not None:
            await self.join_gate.wait()
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.joined = True

    async def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        self.joined = False

    def emit(self, kind: ChangeKind, payload: dict[str, Any]) -> None:
        for event, _filter, callback in list(self.listeners.values()):
            if event == kind:
                callback(payload)

    def emit_insert(self, row: dict[str, Any]) -> None:
        self.emit(ChangeKind.INSERT, {"type": "INSERT", "record": row})

    def emit_update(self, row: dict[str, Any]) -> None:
        self.emit(ChangeKind.UPDATE, {"type": "UPDATE", "record": row})

    def emit_delete(self, old: dict[str, Any]) -> None:
        self.emit(ChangeKind.DELETE, {"type": "DELETE", "old_record": old})


@dataclass
class FakeTransport:
    timeline: list[str] = field(default_factory=list)
    subscribe_error: Exception | None = None
    join_gate: asyncio.Event | None = None
    tokens: list[str | None] = field(default_factory=list)
    channels: list[FakeChannel] = field(default_factory=list)
    removed: list[FakeChannel] = field(default_factory=list)

    async def set_auth(self, token: str | None) -> None:
        self.tokens.append(token)
        self.timeline.append("set_auth")

    def channel(self, topic: str) -> FakeChannel:
        ch = FakeChannel(
            topic=topic,
            timeline=self.timeline,
            subscribe_error=self.subscribe_error,
            join_gate=self.join_gate,
        )
        self.channels.append(ch)
        return ch

    async def remove_channel(self, channel: FakeChannel) -> None:
        self.removed.append(channel)

    @property
    def last_channel(self) -> FakeChannel:
        return self.channels[-1]


@dataclass
class FakeSession:
    token: str = "access-token-1"
    error: Exception | None = None
    calls: int = 0

    async def access_token(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.token


@pytest.fixture
def timeline() -> list[str]:
    return []


@pytest.fixture
def platform(timeline) -> FakePlatform:
    return FakePlatform(timeline=timeline)


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def transport(timeline) -> FakeTransport:
    return FakeTransport(timeline=timeline)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


def make_notification(notification_id: int = 1, *, user_id: UUID = OTHER, **data: Any) -> Notification:
    return Notification(
        id=notification_id,
        user_id=user_id,
        type="chat_message",
        title="New message",
        body="hello",
        created_at=BASE_TIME,
        data=data,
    )


@dataclass
class FakeNotificationQueue:
    pending: list[Notification] = field(default_factory=list)
    sent: dict[int, datetime] = field(default_factory=dict)
    errors: dict[int, str] = field(default_factory=dict)

    async def fetch_pending(self, batch_size: int) -> list[Notification]:
        return [
            n for n in self.pending if n.id not in self.sent and n.id not in self.errors
        ][:batch_size]

    async def mark_sent(self, notification_id: int, sent_at: datetime) -> None:
        self.sent[notification_id] = sent_at

    async def mark_error(self, notification_id: int, error: str) -> None:
        self.errors[notification_id] = error


@dataclass
class FakeProfileReader:
    tokens: dict[UUID, str] = field(default_factory=dict)

    async def get_push_token(self, user_id: UUID) -> str | None:
        return self.tokens.get(user_id)


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    notifications: FakeNotificationQueue = field(default_factory=FakeNotificationQueue)
    profiles: FakeProfileReader = field(default_factory=FakeProfileReader)
    _committed: bool = False

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        self._committed = True

    async def rollback(self) -> None:
        pass


@dataclass
class FakePushGateway:
    results: dict[str, PushResult] = field(default_factory=dict)
    errors: dict[str, Exception] = field(default_factory=dict)
    deliveries: list[tuple[str, int]] = field(default_factory=list)

    async def send(self, device_token: str, notification: Notification) -> PushResult:
        if device_token in self.errors:
            raise self.errors[device_token]
        self.deliveries.append((device_token, notification.id))
        return self.results.get(device_token, PushResult(ok=True, status=200))


@dataclass
class FakeAuthAdmin:
    error: Exception | None = None
    deleted: list[UUID] = field(default_factory=list)

    async def delete_user(self, user_id: UUID) -> None:
        if self.error is not None:
            raise self.error
        self.deleted.append(user_id)


def join_rejected() -> SubscribeError:
    return SubscribeError("join realtime:chat:1 rejected: {'reason': 'unauthorized'}")
