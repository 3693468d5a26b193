"""Single owner of one open conversation's visible message list."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine
from uuid import UUID

from liftr_chat.application.dto.attachment import AttachmentUpload
from liftr_chat.application.exceptions import AppError, PartialFailureError
from liftr_chat.application.ports.clock import Clock, SystemClock
from liftr_chat.application.ports.platform import RemotePlatform
from liftr_chat.application.ports.storage import ObjectStorage
from liftr_chat.chat.message_store import MessageStore
from liftr_chat.chat.pagination import PaginationCursor, SingleFlight
from liftr_chat.chat.state import ConversationState
from liftr_chat.chat.subscriptions import RealtimeSubscriptionManager
from liftr_chat.domain.entities.message import Message
from liftr_chat.domain.events.message_changes import MessageChange, MessageDeleted
from liftr_chat.domain.value_objects.enums import MessageKind
from liftr_chat.services import chat_service

logger = logging.getLogger(__name__)

MAX_RESUBSCRIBE_DELAY = 30.0


class ConversationController:
    """Loads, pages, sends and applies realtime changes for one conversation.

    All store mutations happen in synchronous sections on the owning event
    loop. Remote calls suspend only the operation that issued them, so
    realtime events keep flowing while a send or page load is in flight.
    Once :meth:`close` has run, every late completion is discarded.
    """

    def __init__(
        self,
        conversation_id: int,
        my_user_id: UUID,
        *,
        platform: RemotePlatform,
        storage: ObjectStorage,
        subscriptions: RealtimeSubscriptionManager,
        clock: Clock | None = None,
        page_size: int = 30,
        reconcile_delay: float = 1.0,
        resubscribe_delay: float = 1.0,
        attachments_bucket: str = "chat-attachments",
    ) -> None:
        self.conversation_id = conversation_id
        self.my_user_id = my_user_id
        self._platform = platform
        self._storage = storage
        self._subscriptions = subscriptions
        self._clock = clock or SystemClock()
        self._page_size = page_size
        self._reconcile_delay = reconcile_delay
        self._resubscribe_delay = resubscribe_delay
        self._bucket = attachments_bucket

        self.store = MessageStore(conversation_id)
        self.cursor = PaginationCursor()
        self.state = ConversationState(conversation_id)
        self.orphaned_placeholders: list[int] = []
        self._page_flight = SingleFlight()
        self._background: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> bool:
        """Load the newest page, mark it read, then subscribe. Returns the subscribe result."""
        await self.load_first_page()
        if self._closed:
            return False

        last = self.store.last
        if last is not None and last.user_id != self.my_user_id:
            await chat_service.mark_read(self._platform, self.conversation_id, last.id)
        if self._closed:
            return False

        ok = await self._subscriptions.subscribe(
            self.conversation_id, self.apply_change, on_lost=self._on_realtime_lost,
        )
        if not ok:
            logger.warning("Realtime unavailable conv=%d", self.conversation_id)
        return ok and not self._closed

    async def load_first_page(self) -> None:
        if self._closed or not self._page_flight.try_acquire():
            return
        self.state.publish(loading=True, clear_error=True)
        try:
            page = await chat_service.load_messages(
                self._platform, self.conversation_id, page_size=self._page_size,
            )
        except Exception as exc:
            self._fail("load messages", exc)
            return
        finally:
            self._page_flight.release()

        if self._closed:
            return
        self.store.replace_all(page.ascending())
        self.cursor.apply_page(page.raw_count, self._page_size, self.store)
        logger.info(
            "First page conv=%d loaded=%d oldest=%s has_older=%s",
            self.conversation_id, page.raw_count, self.cursor.oldest_loaded_id, self.cursor.has_older,
        )
        self._publish(loading=False)

    async def load_older(self) -> None:
        """Fetch the page before the oldest loaded message; ignored while another page load runs."""
        if self._closed:
            return
        before_id = self.cursor.oldest_loaded_id
        if before_id is None:
            return
        if not self._page_flight.try_acquire():
            logger.debug("load_older ignored, page load in flight conv=%d", self.conversation_id)
            return
        self.state.publish(loading=True, clear_error=True)
        try:
            page = await chat_service.load_messages(
                self._platform,
                self.conversation_id,
                page_size=self._page_size,
                before_id=before_id,
            )
        except Exception as exc:
            self._fail("load older messages", exc)
            return
        finally:
            self._page_flight.release()

        if self._closed:
            return
        added = self.store.extend_older(page.messages)
        self.cursor.apply_page(page.raw_count, self._page_size, self.store)
        logger.debug(
            "Older page conv=%d before=%d returned=%d added=%d",
            self.conversation_id, before_id, page.raw_count, len(added),
        )
        self._publish(loading=False)

    def apply_change(self, event: MessageChange) -> None:
        if self._closed:
            return
        if isinstance(event, MessageDeleted):
            changed = self.store.remove(event.message_id)
        else:
            message = event.message
            changed = self.store.upsert(message)
            if message.user_id != self.my_user_id:
                self._spawn(
                    chat_service.mark_read(self._platform, self.conversation_id, message.id)
                )
        if changed:
            self.cursor.sync(self.store)
            self._publish()

    async def send_text(self, text: str) -> int | None:
        """Send a text message and show it immediately. Returns the server id."""
        body = text.strip()
        if not body or self._closed:
            return None
        try:
            message_id = await chat_service.send_message(
                self._platform, self.conversation_id, MessageKind.TEXT, body,
            )
        except Exception as exc:
            self._fail("send message", exc)
            return None

        if self._closed:
            return message_id
        # The realtime echo may already be here; it carries the server
        # timestamp and must not be overwritten by the local copy.
        if message_id not in self.store:
            optimistic = Message(
                id=message_id,
                conversation_id=self.conversation_id,
                user_id=self.my_user_id,
                kind=MessageKind.TEXT.value,
                body=body,
                created_at=self._clock.now(),
            )
            self.store.upsert(optimistic)
            self.cursor.sync(self.store)
            self._publish()
        self._spawn(self._reconcile_sent(message_id))
        return message_id

    async def send_attachment(self, upload: AttachmentUpload) -> int | None:
        """Create the placeholder row, upload the payload, then attach its metadata.

        A failure after the placeholder exists leaves that row behind; its id is
        recorded in :attr:`orphaned_placeholders`.
        """
        if self._closed:
            return None
        try:
            message_id = await chat_service.send_message(
                self._platform, self.conversation_id, upload.kind, None,
            )
        except Exception as exc:
            self._fail("send attachment", exc)
            return None

        key = f"{self.conversation_id}/{message_id}/{upload.storage_name}"
        try:
            stored_key = await self._storage.upload(
                self._bucket, key, upload.data, upload.content_type,
            )
            await chat_service.attach_metadata(
                self._platform, message_id, upload.metadata(stored_key or key),
            )
        except Exception as exc:
            self.orphaned_placeholders.append(message_id)
            failure = PartialFailureError(
                f"Attachment could not be delivered: {_describe(exc)}", message_id,
            )
            self._fail("send attachment", failure)
            return None

        logger.info("Attachment sent conv=%d id=%d key=%s", self.conversation_id, message_id, key)
        return message_id

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await self._subscriptions.unsubscribe(self.conversation_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.store.clear()
        self.cursor.reset()
        self.state.detach_all()
        logger.info("Closed conv=%d", self.conversation_id)

    async def wait_idle(self) -> None:
        """Wait for scheduled background work (mark-read, reconciliation) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _reconcile_sent(self, message_id: int) -> None:
        # The optimistic insert normally covers this; the refetch only matters
        # when the store was replaced (e.g. a reload) before the echo arrived.
        await asyncio.sleep(self._reconcile_delay)
        if self._closed or message_id in self.store:
            return
        try:
            message = await chat_service.fetch_message(self._platform, message_id)
        except Exception:
            logger.warning("Reconcile fetch failed conv=%d id=%d", self.conversation_id, message_id, exc_info=True)
            return
        if self._closed or message is None or message.conversation_id != self.conversation_id:
            return
        if self.store.upsert(message):
            logger.info("Reconciled missing message conv=%d id=%d", self.conversation_id, message_id)
            self.cursor.sync(self.store)
            self._publish()

    def _on_realtime_lost(self, conversation_id: int) -> None:
        if self._closed:
            return
        logger.warning("Realtime lost conv=%d, resubscribing", conversation_id)
        self._spawn(self._resubscribe())

    async def _resubscribe(self) -> None:
        delay = self._resubscribe_delay
        while not self._closed:
            await asyncio.sleep(delay)
            if self._closed:
                return
            ok = await self._subscriptions.subscribe(
                self.conversation_id, self.apply_change, on_lost=self._on_realtime_lost,
            )
            if ok:
                break
            delay = min(max(delay * 2, 0.5), MAX_RESUBSCRIBE_DELAY)
        if self._closed:
            return
        logger.info("Resubscribed conv=%d", self.conversation_id)
        await self._catch_up()

    async def _catch_up(self) -> None:
        # Changes made while the channel was down never reach the listeners;
        # the newest page is merged in, older loaded history is kept.
        try:
            page = await chat_service.load_messages(
                self._platform, self.conversation_id, page_size=self._page_size,
            )
        except Exception:
            logger.warning("Catch-up load failed conv=%d", self.conversation_id, exc_info=True)
            return
        if self._closed:
            return
        changed = False
        for message in page.messages:
            changed = self.store.upsert(message) or changed
        if changed:
            logger.info("Catch-up merged messages conv=%d", self.conversation_id)
            self.cursor.sync(self.store)
            self._publish()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _publish(self, **kwargs: Any) -> None:
        self.state.publish(
            messages=tuple(self.store.snapshot()),
            has_older=self.cursor.has_older,
            **kwargs,
        )

    def _fail(self, action: str, exc: Exception) -> None:
        if isinstance(exc, AppError):
            logger.warning("Failed to %s conv=%d: %s", action, self.conversation_id, exc.detail)
        else:
            logger.exception("Failed to %s conv=%d", action, self.conversation_id)
        if not self._closed:
            self.state.publish(loading=False, error=_describe(exc))


def _describe(exc: Exception) -> str:
    if isinstance(exc, AppError) and exc.detail:
        return exc.detail
    return str(exc) or exc.__class__.__name__
