"""Conversation Engine — the per-message orchestrator.

Serializes messages per phone number, loads the conversation, runs the
reducer, persists the result and dispatches the emitted actions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from restobot.config import settings
from restobot.conversation.bot_config import BotConfig, get_bot_config
from restobot.conversation.locks import KeyedLock, get_keyed_lock
from restobot.conversation.reducer import ConversationReducer, Transition
from restobot.conversation.session import ConversationStore
from restobot.conversation.states import build_state_table
from restobot.conversation.validation import ExtractionValidator, SchemaValidator, ValidatorSet
from restobot.dispatch.dispatcher import ActionDispatcher, RepositoryFactory
from restobot.llm.extraction import get_extraction_backend
from restobot.repositories.entities import entity_repository
from restobot.schemas.conversation import ConversationRecord, InboundMessage, MessageEntry, utcnow
from restobot.whatsapp.client import get_whatsapp_client

logger = structlog.get_logger()


@dataclass
class EngineResult:
    state: str
    context: dict[str, Any]
    responses: list[dict] = field(default_factory=list)


class ConversationEngine:
    """Main orchestrator for the restaurant conversation."""

    def __init__(
        self,
        store: ConversationStore,
        reducer: ConversationReducer,
        dispatcher: ActionDispatcher,
        lock: KeyedLock,
        config: BotConfig,
        repositories: Optional[RepositoryFactory] = None,
    ):
        self.store = store
        self.reducer = reducer
        self.dispatcher = dispatcher
        self.lock = lock
        self.config = config
        self.repositories = repositories  # registered-contact lookup; None skips it

    async def handle_message(self, message: InboundMessage) -> EngineResult:
        """Process one inbound message; the full cycle holds the phone's lock."""
        async with self.lock.hold(message.sender):
            return await self._handle_locked(message)

    # ─── Core cycle ──────────────────────────────────────────────────

    async def _handle_locked(self, message: InboundMessage) -> EngineResult:
        phone = message.sender
        record = await self.store.get(phone)
        is_new = record is None
        if record is None:
            record = ConversationRecord()
            logger.info("conversation_created", phone=phone)

        history: list[MessageEntry] = []
        if not is_new:
            history = await self.store.recent_messages(
                phone, limit=self.config.ai_history_limit, message_state=record.current_state
            )
        await self.store.append_message(
            phone,
            MessageEntry(
                role="user",
                body=message.body,
                message_state=record.current_state,
                media_url=message.media_url,
            ),
        )

        context = dict(record.context)
        context["contact_number"] = phone

        transition = await self._transition(record, context, message, history, is_new)
        transition.context["contact_number"] = phone

        record.current_state = transition.state
        record.context = transition.context
        record.last_message_timestamp = utcnow()
        await self.store.save(phone, record)

        responses = await self.dispatcher.dispatch(phone, transition.actions, simulate=message.simulated)

        logger.info(
            "message_processed",
            phone=phone,
            state=transition.state,
            actions=[action.type.value for action in transition.actions],
            simulated=message.simulated,
        )
        return EngineResult(state=transition.state, context=transition.context, responses=responses)

    async def _transition(
        self,
        record: ConversationRecord,
        context: dict[str, Any],
        message: InboundMessage,
        history: list[MessageEntry],
        is_new: bool,
    ) -> Transition:
        if is_new:
            known = await self._known_contact(message.sender)
            if known is not None:
                logger.info("known_contact_resumed", phone=message.sender, restaurant_id=known.get("restaurant_id"))
                return self.reducer.welcome_back(known, message.sender)
            return self.reducer.greet(message.sender)
        try:
            return await self.reducer.reduce(record.current_state, context, message, history)
        except Exception as e:
            logger.error(
                "reduce_failed",
                phone=message.sender,
                state=record.current_state,
                error=str(e),
                exc_info=True,
            )
            return self.reducer.recover(context, message.sender, state=record.current_state)

    async def _known_contact(self, phone: str) -> Optional[dict[str, Any]]:
        """Restaurant context for a phone already registered as a contact."""
        if self.repositories is None:
            return None
        try:
            async with self.repositories() as repo:
                return await repo.find_contact_context(phone)
        except Exception as e:
            logger.warning("contact_lookup_failed", phone=phone, error=str(e))
            return None


def create_conversation_engine(
    redis_client: aioredis.Redis,
    config: Optional[BotConfig] = None,
    lock: Optional[KeyedLock] = None,
) -> ConversationEngine:
    """Wire an engine from the configured collaborators."""
    config = config or get_bot_config()
    backend = get_extraction_backend()
    validators = ValidatorSet(
        schema=SchemaValidator(config),
        extraction=(
            ExtractionValidator(backend, config, timeout=settings.llm_timeout_seconds) if backend else None
        ),
    )
    store = ConversationStore(redis_client)
    return ConversationEngine(
        store=store,
        reducer=ConversationReducer(build_state_table(config), config, validators),
        dispatcher=ActionDispatcher(
            store,
            config,
            whatsapp_client=get_whatsapp_client(),
            redis_client=redis_client,
        ),
        lock=lock or get_keyed_lock(redis_client),
        config=config,
        repositories=entity_repository,
    )


_engine: Optional[ConversationEngine] = None


def get_conversation_engine_for(redis_client: aioredis.Redis) -> ConversationEngine:
    """Get or create the process-wide engine (the state table is built once)."""
    global _engine
    if _engine is None:
        _engine = create_conversation_engine(redis_client)
    return _engine
