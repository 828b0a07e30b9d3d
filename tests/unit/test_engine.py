"""Tests for the conversation engine: persistence, ordering and recovery."""

import asyncio
from contextlib import asynccontextmanager

import pytest
from unittest.mock import AsyncMock

from restobot.conversation.engine import ConversationEngine, create_conversation_engine
from restobot.conversation.locks import LocalKeyedLock
from restobot.conversation.session import ConversationStore
from restobot.repositories.entities import entity_repository
from restobot.schemas.conversation import BotState, ConversationRecord
from tests.conftest import PHONE, FakeRedis


class YieldingRedis(FakeRedis):
    """FakeRedis that yields to the event loop on every read and write."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key, value):
        await asyncio.sleep(0)
        await super().set(key, value)


async def seed(store, state, context=None):
    if isinstance(state, BotState):
        state = state.value
    await store.save(PHONE, ConversationRecord(current_state=state, context=context or {}))


class TestEngine:
    """Test the load, reduce, persist and dispatch cycle."""

    @pytest.mark.asyncio
    async def test_first_message_greets(self, engine, store, message):
        result = await engine.handle_message(message("שלום"))

        assert result.state == BotState.INIT.value
        assert result.responses[0]["template"]["id"] == "init_template"
        record = await store.get(PHONE)
        assert record.current_state == "INIT"
        assert record.last_message_timestamp is not None

    @pytest.mark.asyncio
    async def test_messages_are_logged(self, engine, store, message):
        await engine.handle_message(message("שלום"))
        await engine.handle_message(message("new_restaurant"))

        log = await store.recent_messages(PHONE)
        assert [(e.role, e.message_state) for e in log] == [
            ("user", "INIT"),
            ("assistant", "INIT"),
            ("user", "INIT"),
            ("assistant", "ONBOARDING_COMPANY_NAME"),
        ]

    @pytest.mark.asyncio
    async def test_contact_number_injected(self, engine, store, message):
        await seed(store, BotState.ONBOARDING_COMPANY_NAME)
        result = await engine.handle_message(message("פיצה בע\"מ"))
        assert result.context["contact_number"] == PHONE

    @pytest.mark.asyncio
    async def test_contact_number_survives_greeting(self, engine, message):
        await engine.handle_message(message("שלום"))
        result = await engine.handle_message(message("new_restaurant"))

        assert result.state == BotState.ONBOARDING_COMPANY_NAME.value
        assert result.context["contact_number"] == PHONE

    @pytest.mark.asyncio
    async def test_known_contact_starts_at_menu(self, engine, store, repository, message, registered_context):
        known = {key: value for key, value in registered_context.items() if key != "contact_number"}
        repository.contacts[PHONE] = known

        result = await engine.handle_message(message("שלום"))

        assert result.state == BotState.IDLE.value
        assert result.responses[0]["template"]["id"] == "template_idle_menu"
        record = await store.get(PHONE)
        assert record.context["restaurant_id"] == "123456789"
        assert record.context["suppliers_list"] == registered_context["suppliers_list"]
        assert record.context["contact_number"] == PHONE

    @pytest.mark.asyncio
    async def test_contact_lookup_failure_greets(self, store, reducer, dispatcher, config, message):
        @asynccontextmanager
        async def broken():
            raise ConnectionError("database down")
            yield

        engine = ConversationEngine(store, reducer, dispatcher, LocalKeyedLock(), config, repositories=broken)
        result = await engine.handle_message(message("שלום"))

        assert result.state == BotState.INIT.value

    @pytest.mark.asyncio
    async def test_sequential_messages_fold(self, engine, store, message):
        await seed(store, BotState.ONBOARDING_COMPANY_NAME)

        await engine.handle_message(message("פיצה בע\"מ"))
        result = await engine.handle_message(message("123456789"))

        assert result.state == BotState.ONBOARDING_RESTAURANT_NAME.value
        record = await store.get(PHONE)
        assert record.context["company_name"] == "פיצה בע\"מ"
        assert record.context["legal_id"] == "123456789"

    @pytest.mark.asyncio
    async def test_persisted_state_reduces_like_in_memory(self, reducer, store, message, registered_context):
        await seed(store, BotState.IDLE, registered_context)
        reloaded = await store.get(PHONE)

        from_store = await reducer.reduce(reloaded.current_state, reloaded.context, message("inventory_count"))
        in_memory = await reducer.reduce(BotState.IDLE.value, registered_context, message("inventory_count"))
        assert from_store == in_memory

    @pytest.mark.asyncio
    async def test_concurrent_messages_are_serialized(self, reducer, dispatcher, config, message):
        store = ConversationStore(YieldingRedis())
        dispatcher.store = store
        engine = ConversationEngine(store, reducer, dispatcher, LocalKeyedLock(), config)
        await seed(store, BotState.ONBOARDING_COMPANY_NAME)

        await asyncio.gather(
            engine.handle_message(message("פיצה בע\"מ")),
            engine.handle_message(message("123456789")),
        )

        record = await store.get(PHONE)
        assert record.current_state == BotState.ONBOARDING_RESTAURANT_NAME.value
        assert record.context["company_name"] == "פיצה בע\"מ"
        assert record.context["legal_id"] == "123456789"

    @pytest.mark.asyncio
    async def test_different_phones_do_not_share_state(self, engine, store, message):
        await asyncio.gather(
            engine.handle_message(message("שלום")),
            engine.handle_message(message("שלום", sender="0529876543")),
        )
        assert await store.exists(PHONE)
        assert await store.exists("0529876543")

    @pytest.mark.asyncio
    async def test_unknown_stored_state_recovers(self, engine, store, message, registered_context, config):
        await seed(store, "REMOVED_STATE", registered_context)

        result = await engine.handle_message(message("שלום"))

        assert result.state == BotState.IDLE.value
        assert [r["body"] for r in result.responses] == [config.system_error_message]
        record = await store.get(PHONE)
        assert record.current_state == "IDLE"
        assert record.context["suppliers_list"] == registered_context["suppliers_list"]

    @pytest.mark.asyncio
    async def test_reducer_exception_recovers(self, engine, store, message, registered_context, config):
        await seed(store, BotState.IDLE, registered_context)
        engine.reducer.reduce = AsyncMock(side_effect=RuntimeError("boom"))

        result = await engine.handle_message(message("inventory_count"))

        assert result.state == BotState.IDLE.value
        assert [r["body"] for r in result.responses] == [config.system_error_message]

    @pytest.mark.asyncio
    async def test_history_scoped_to_current_state(self, engine, store, message, registered_context):
        await seed(store, BotState.IDLE, registered_context)
        await engine.handle_message(message("inventory_count"))
        spy = AsyncMock(wraps=engine.reducer.reduce)
        engine.reducer.reduce = spy

        await engine.handle_message(message("postpone"))

        history = spy.call_args.args[3]
        assert history
        assert {entry.message_state for entry in history} == {BotState.INVENTORY_SNAPSHOT_START.value}


class TestEngineFactory:
    """Test wiring of the default engine."""

    def test_schema_only_without_api_key(self, mock_redis, monkeypatch):
        monkeypatch.setattr("restobot.conversation.engine.get_extraction_backend", lambda: None)
        monkeypatch.setattr("restobot.conversation.engine.get_whatsapp_client", lambda: None)

        engine = create_conversation_engine(mock_redis, lock=LocalKeyedLock())

        assert engine.reducer.validators.extraction is None
        assert len(engine.reducer.table) == len(BotState)
        assert engine.repositories is entity_repository

    def test_extraction_enabled_with_backend(self, mock_redis, monkeypatch):
        monkeypatch.setattr("restobot.conversation.engine.get_extraction_backend", lambda: AsyncMock())
        monkeypatch.setattr("restobot.conversation.engine.get_whatsapp_client", lambda: None)

        engine = create_conversation_engine(mock_redis, lock=LocalKeyedLock())

        assert engine.reducer.validators.extraction is not None
