"""Read-only conversation state exposed to the UI layer."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from liftr_chat.domain.entities.message import Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConversationSnapshot:
    conversation_id: int
    messages: tuple[Message, ...] = ()
    has_older: bool = False
    loading: bool = False
    error: str | None = None


Observer = Callable[[ConversationSnapshot], None]


class ConversationState:
    """Holds the latest snapshot and notifies observers when it changes.

    Only the controller publishes; observers receive immutable snapshots.
    """

    def __init__(self, conversation_id: int) -> None:
        self.conversation_id = conversation_id
        self._snapshot = ConversationSnapshot(conversation_id=conversation_id)
        self._observers: list[Observer] = []

    @property
    def snapshot(self) -> ConversationSnapshot:
        return self._snapshot

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._snapshot.messages

    @property
    def has_older(self) -> bool:
        return self._snapshot.has_older

    @property
    def loading(self) -> bool:
        return self._snapshot.loading

    @property
    def error(self) -> str | None:
        return self._snapshot.error

    def observe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer``; it is called immediately and after every change.

        Returns a callable that removes the observer.
        """
        self._observers.append(observer)
        observer(self._snapshot)

        def cancel() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return cancel

    def publish(
        self,
        *,
        messages: tuple[Message, ...] | None = None,
        has_older: bool | None = None,
        loading: bool | None = None,
        error: str | None = None,
        clear_error: bool = False,
    ) -> None:
        current = self._snapshot
        if clear_error:
            new_error = None
        else:
            new_error = error if error is not None else current.error
        new = ConversationSnapshot(
            conversation_id=self.conversation_id,
            messages=current.messages if messages is None else messages,
            has_older=current.has_older if has_older is None else has_older,
            loading=current.loading if loading is None else loading,
            error=new_error,
        )
        if new == current:
            return
        self._snapshot = new
        for observer in list(self._observers):
            try:
                observer(new)
            except Exception:
                logger.exception("Observer failed conv=%d", self.conversation_id)

    def detach_all(self) -> None:
        self._observers.clear()
