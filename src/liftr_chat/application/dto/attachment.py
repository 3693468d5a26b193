from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from liftr_chat.domain.value_objects.enums import MessageKind


@dataclass(frozen=True, slots=True)
class AttachmentUpload:
    """Binary payload for an image/file message."""

    data: bytes
    content_type: str
    filename: str
    kind: MessageKind = MessageKind.IMAGE
    width: int | None = None
    height: int | None = None

    @property
    def storage_name(self) -> str:
        """Last path segment of ``filename``; directory parts never reach the object key."""
        name = PurePosixPath(self.filename.replace("\\", "/")).name
        if name in ("", ".", ".."):
            return "attachment"
        return name

    def metadata(self, storage_key: str) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "storage_key": storage_key,
            "mime": self.content_type,
            "size_bytes": len(self.data),
        }
        if self.width is not None:
            meta["width"] = self.width
        if self.height is not None:
            meta["height"] = self.height
        return meta
