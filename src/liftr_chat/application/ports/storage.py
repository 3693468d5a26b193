from __future__ import annotations

from typing import Protocol


class ObjectStorage(Protocol):
    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> str:
        """Store ``data`` at ``bucket/key`` and return the stored key."""
        ...
