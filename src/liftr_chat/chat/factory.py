"""Composition root for the client-side chat core."""
from __future__ import annotations

import logging
from uuid import UUID

from liftr_chat.application.ports.clock import Clock, SystemClock
from liftr_chat.application.ports.platform import RemotePlatform
from liftr_chat.application.ports.storage import ObjectStorage
from liftr_chat.chat.controller import ConversationController
from liftr_chat.chat.subscriptions import RealtimeSubscriptionManager
from liftr_chat.config import Settings, settings as default_settings
from liftr_chat.domain.entities.conversation import Conversation
from liftr_chat.infrastructure.supabase.realtime import SupabaseRealtime
from liftr_chat.infrastructure.supabase.rest import SupabaseRestClient
from liftr_chat.infrastructure.supabase.session import SupabaseSession
from liftr_chat.infrastructure.supabase.storage import SupabaseStorage
from liftr_chat.services import chat_service

logger = logging.getLogger(__name__)


class ChatClient:
    """Wires the platform adapters together and hands out conversation controllers.

    Opening the same conversation twice returns the controller that is already
    open, so every screen showing it shares one store and one subscription.
    """

    def __init__(
        self,
        *,
        platform: RemotePlatform,
        storage: ObjectStorage,
        subscriptions: RealtimeSubscriptionManager,
        config: Settings,
        clock: Clock | None = None,
    ) -> None:
        self.platform = platform
        self.storage = storage
        self.subscriptions = subscriptions
        self._config = config
        self._clock = clock or SystemClock()
        self._controllers: dict[int, ConversationController] = {}

    @classmethod
    def from_settings(
        cls,
        session: SupabaseSession,
        config: Settings | None = None,
    ) -> ChatClient:
        config = config or default_settings
        platform = SupabaseRestClient(
            config.SUPABASE_URL, config.SUPABASE_ANON_KEY,
            session=session, timeout=config.HTTP_TIMEOUT,
        )
        storage = SupabaseStorage(
            config.SUPABASE_URL, config.SUPABASE_ANON_KEY,
            session=session, timeout=config.HTTP_TIMEOUT,
        )
        transport = SupabaseRealtime(
            config.realtime_url,
            config.SUPABASE_ANON_KEY,
            heartbeat_interval=config.REALTIME_HEARTBEAT_SECONDS,
            join_timeout=config.REALTIME_JOIN_TIMEOUT,
        )
        return cls(
            platform=platform,
            storage=storage,
            subscriptions=RealtimeSubscriptionManager(transport, session),
            config=config,
        )

    def controller(self, conversation_id: int, my_user_id: UUID) -> ConversationController:
        existing = self._controllers.get(conversation_id)
        if existing is not None and not existing.closed:
            return existing
        controller = ConversationController(
            conversation_id,
            my_user_id,
            platform=self.platform,
            storage=self.storage,
            subscriptions=self.subscriptions,
            clock=self._clock,
            page_size=self._config.CHAT_PAGE_SIZE,
            reconcile_delay=self._config.CHAT_RECONCILE_DELAY,
            resubscribe_delay=self._config.REALTIME_RESUBSCRIBE_DELAY,
            attachments_bucket=self._config.CHAT_ATTACHMENTS_BUCKET,
        )
        self._controllers[conversation_id] = controller
        return controller

    async def open_conversation(self, conversation_id: int, my_user_id: UUID) -> ConversationController:
        controller = self.controller(conversation_id, my_user_id)
        await controller.open()
        return controller

    async def close_conversation(self, conversation_id: int) -> None:
        controller = self._controllers.pop(conversation_id, None)
        if controller is not None:
            await controller.close()

    async def start_direct_conversation(self, other_user_id: UUID) -> int:
        return await chat_service.start_direct_conversation(self.platform, other_user_id)

    async def list_conversations(self, user_id: UUID, *, limit: int = 50, offset: int = 0) -> list[Conversation]:
        return await chat_service.list_conversations(self.platform, user_id, limit=limit, offset=offset)

    async def aclose(self) -> None:
        for conversation_id in list(self._controllers):
            await self.close_conversation(conversation_id)
        await self.subscriptions.close_all()
        logger.info("Chat client closed")
