from __future__ import annotations

from urllib.parse import quote

from liftr_chat.infrastructure.supabase.http import SupabaseHTTP


class SupabaseStorage(SupabaseHTTP):
    """Object storage uploads (``/storage/v1/object``)."""

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> str:
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(key, safe='/')}",
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
            },
        )
        return key
