"""Remote database API consumed by the chat core.

Filters and ordering are plain value objects so adapters can render them
into whatever query syntax the hosted platform speaks.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol, Sequence

FilterOp = Literal["eq", "neq", "lt", "lte", "gt", "gte", "is", "in"]


@dataclass(frozen=True, slots=True)
class Filter:
    column: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class Order:
    column: str
    ascending: bool = True


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def is_(column: str, value: Any) -> Filter:
    return Filter(column, "is", value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


class RemotePlatform(Protocol):
    async def query(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: Order | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def rpc(self, name: str, params: dict[str, Any]) -> Any: ...

    async def insert(self, table: str, row: dict[str, Any]) -> list[dict[str, Any]]: ...

    async def update(
        self,
        table: str,
        patch: dict[str, Any],
        filters: Sequence[Filter],
    ) -> list[dict[str, Any]]: ...

    async def upsert(
        self,
        table: str,
        row: dict[str, Any],
        on_conflict: str,
    ) -> list[dict[str, Any]]: ...

    async def delete(self, table: str, filters: Sequence[Filter]) -> None: ...
