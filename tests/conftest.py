"""Test fixtures and configuration."""

from contextlib import asynccontextmanager

import pytest
from unittest.mock import AsyncMock

from restobot.conversation.bot_config import BotConfig
from restobot.conversation.engine import ConversationEngine
from restobot.conversation.locks import LocalKeyedLock
from restobot.conversation.reducer import ConversationReducer
from restobot.conversation.session import ConversationStore
from restobot.conversation.states import build_state_table
from restobot.conversation.validation import SchemaValidator, ValidatorSet
from restobot.dispatch.dispatcher import ActionDispatcher
from restobot.schemas.conversation import InboundMessage

PHONE = "0501234567"


class FakeRedis:
    """Dict-backed stand-in for the redis.asyncio calls the bot uses."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value):
        self.values[key] = value

    async def setex(self, key, ttl, value):
        self.values[key] = value

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.lists.pop(key, None) is not None)
        return removed

    async def exists(self, key):
        return int(key in self.values or key in self.lists)

    async def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        stop = None if end == -1 else end + 1
        return items[start:stop]


class FakeRepository:
    """Records entity writes instead of touching a database."""

    def __init__(self):
        self.calls: list[tuple[str, object]] = []
        self.contacts: dict[str, dict] = {}  # phone -> restaurant context

    async def find_contact_context(self, phone):
        return self.contacts.get(phone)

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        async def record(payload):
            self.calls.append((name, payload))

        return record


@pytest.fixture
def config():
    return BotConfig()


@pytest.fixture
def table(config):
    return build_state_table(config)


@pytest.fixture
def validators(config):
    return ValidatorSet(schema=SchemaValidator(config))


@pytest.fixture
def reducer(table, config, validators):
    return ConversationReducer(table, config, validators)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.setex = AsyncMock()
    redis.delete = AsyncMock()
    redis.exists = AsyncMock(return_value=False)
    redis.rpush = AsyncMock()
    redis.lrange = AsyncMock(return_value=[])
    return redis


@pytest.fixture
def store(fake_redis):
    return ConversationStore(fake_redis)


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def repository_factory(repository):
    @asynccontextmanager
    async def factory():
        yield repository

    return factory


@pytest.fixture
def dispatcher(store, config, repository_factory):
    return ActionDispatcher(store, config, repositories=repository_factory)


@pytest.fixture
def engine(store, reducer, dispatcher, config, repository_factory):
    return ConversationEngine(store, reducer, dispatcher, LocalKeyedLock(), config, repositories=repository_factory)


@pytest.fixture
def message():
    """Build an inbound message from the default test phone."""

    def build(body="", media_url=None, simulated=True, sender=PHONE):
        return InboundMessage(sender=sender, body=body, media_url=media_url, simulated=simulated)

    return build


@pytest.fixture
def registered_context():
    """Context of a restaurant that finished setup with one vegetables supplier."""
    return {
        "contact_number": PHONE,
        "contact_name": "ישראל ישראלי",
        "company_name": "פיצה בע\"מ",
        "restaurant_name": "פיצה דליברו",
        "legal_id": "123456789",
        "restaurant_id": "123456789",
        "payment_method": "trial",
        "suppliers_list": [
            {
                "id": "0529876543",
                "name": "ירקות השדה",
                "whatsapp": "0529876543",
                "categories": ["vegetables"],
                "reminder_days": [0, 4],
                "cutoff_hour": 14,
                "products": [
                    {"name": "עגבניות", "unit": "kg", "par_midweek": 10.0, "par_weekend": 15.0},
                    {"name": "חסה", "unit": "pcs", "par_midweek": 6.0, "par_weekend": 8.0},
                ],
            }
        ],
    }
