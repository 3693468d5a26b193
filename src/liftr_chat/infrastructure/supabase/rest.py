"""PostgREST implementation of the RemotePlatform port."""
from __future__ import annotations

from typing import Any, Sequence

from liftr_chat.application.ports.platform import Filter, Order
from liftr_chat.infrastructure.supabase.http import SupabaseHTTP

_RETURN_ROWS = {"Prefer": "return=representation"}


class SupabaseRestClient(SupabaseHTTP):
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
        params = [("select", columns), *render_filters(filters)]
        if order is not None:
            params.append(("order", f"{order.column}.{'asc' if order.ascending else 'desc'}"))
        if offset:
            params.append(("offset", str(offset)))
        if limit is not None:
            params.append(("limit", str(limit)))
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return response.json()

    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        response = await self._request("POST", f"/rest/v1/rpc/{name}", json=params)
        if not response.content:
            return None
        return response.json()

    async def insert(self, table: str, row: dict[str, Any]) -> list[dict[str, Any]]:
        response = await self._request(
            "POST", f"/rest/v1/{table}", json=row, headers=_RETURN_ROWS,
        )
        return response.json()

    async def update(
        self,
        table: str,
        patch: dict[str, Any],
        filters: Sequence[Filter],
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("refusing to update without filters")
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=render_filters(filters),
            json=patch,
            headers=_RETURN_ROWS,
        )
        return response.json()

    async def upsert(
        self,
        table: str,
        row: dict[str, Any],
        on_conflict: str,
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            params=[("on_conflict", on_conflict)],
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return response.json()

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("refusing to delete without filters")
        await self._request("DELETE", f"/rest/v1/{table}", params=render_filters(filters))


def render_filters(filters: Sequence[Filter]) -> list[tuple[str, str]]:
    return [(f.column, f"{f.op}.{_render_value(f.op, f.value)}") for f in filters]


def _render_value(op: str, value: Any) -> str:
    if op == "in":
        return "(" + ",".join(_render_scalar(v) for v in value) + ")"
    return _render_scalar(value)


def _render_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
