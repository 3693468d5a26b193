"""Backward paging state and the single-flight guard for page loads."""
from __future__ import annotations

from dataclasses import dataclass

from liftr_chat.chat.message_store import MessageStore


@dataclass(slots=True)
class PaginationCursor:
    oldest_loaded_id: int | None = None
    has_older: bool = False

    def reset(self) -> None:
        self.oldest_loaded_id = None
        self.has_older = False

    def apply_page(self, raw_count: int, page_size: int, store: MessageStore) -> None:
        """Update after a first or older page; ``raw_count`` is the pre-dedup row count."""
        self.has_older = raw_count == page_size
        self.sync(store)

    def sync(self, store: MessageStore) -> None:
        first = store.first
        self.oldest_loaded_id = first.id if first is not None else None


class SingleFlight:
    """Tracks whether a page load is running; a second caller is turned away."""

    def __init__(self) -> None:
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False
