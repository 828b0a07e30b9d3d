"""Conversation store — Redis CRUD for conversation records and message logs."""

from typing import Optional

import redis.asyncio as redis
import structlog

from restobot.schemas.conversation import ConversationRecord, MessageEntry, utcnow

logger = structlog.get_logger()


class ConversationStore:
    """One JSON document per phone number plus an append-only message list.

    Conversations are long-lived, so no TTL is set.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def _key(self, phone: str) -> str:
        return f"conversation:{phone}"

    def _messages_key(self, phone: str) -> str:
        return f"conversation:{phone}:messages"

    async def get(self, phone: str) -> Optional[ConversationRecord]:
        """Get the conversation record from Redis."""
        data = await self.redis.get(self._key(phone))
        if data:
            return ConversationRecord.model_validate_json(data)
        return None

    async def save(self, phone: str, record: ConversationRecord) -> None:
        record.updated_at = utcnow()
        await self.redis.set(self._key(phone), record.model_dump_json())
        logger.debug("conversation_saved", phone=phone, state=record.current_state)

    async def delete(self, phone: str) -> None:
        """Administrative purge of a conversation and its message log."""
        await self.redis.delete(self._key(phone), self._messages_key(phone))

    async def exists(self, phone: str) -> bool:
        return bool(await self.redis.exists(self._key(phone)))

    # ─── Message log ─────────────────────────────────────────────────

    async def append_message(self, phone: str, entry: MessageEntry) -> None:
        await self.redis.rpush(self._messages_key(phone), entry.model_dump_json())

    async def recent_messages(
        self,
        phone: str,
        limit: int = 20,
        message_state: Optional[str] = None,
    ) -> list[MessageEntry]:
        """Last ``limit`` messages, oldest first, optionally for one state only."""
        raw = await self.redis.lrange(self._messages_key(phone), 0, -1)
        entries = [MessageEntry.model_validate_json(item) for item in raw]
        if message_state is not None:
            entries = [entry for entry in entries if entry.message_state == message_state]
        return entries[-limit:] if limit else entries
