"""Tests for the Anthropic extraction backend."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from restobot.conversation.states import TemplateOption
from restobot.errors import ExtractionError
from restobot.llm import extraction
from restobot.llm.extraction import AnthropicExtractionBackend
from restobot.llm.prompts.extraction_prompt import build_extraction_prompt
from restobot.schemas.conversation import MessageEntry


def llm_reply(text):
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage.input_tokens = 120
    response.usage.output_tokens = 30
    return response


@pytest.fixture
def llm_client(monkeypatch):
    client = MagicMock()
    client.messages.create = AsyncMock()
    monkeypatch.setattr(extraction, "get_llm_client", lambda: client)
    return client


async def extract(**overrides):
    kwargs = {
        "instruction": "שם ומספר הספק",
        "schema": {"type": "object", "properties": {"name": {"type": "string"}}},
        "message": "הספק הוא ירקות השדה",
    }
    kwargs.update(overrides)
    return await AnthropicExtractionBackend(model="test-model", max_tokens=256).extract(**kwargs)


class TestAnthropicExtractionBackend:
    """Test parsing of model replies."""

    @pytest.mark.asyncio
    async def test_final_answer(self, llm_client):
        llm_client.messages.create.return_value = llm_reply(
            json.dumps({"data": {"name": "ירקות השדה"}, "is_final": True, "follow_up": ""})
        )

        result = await extract()

        assert result.is_final is True
        assert result.data == {"name": "ירקות השדה"}
        assert llm_client.messages.create.call_args.kwargs["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_summary_for_approval(self, llm_client):
        llm_client.messages.create.return_value = llm_reply(
            json.dumps({"data": {"name": "ירקות השדה"}, "is_final": True, "summary": "ספק: ירקות השדה"})
        )

        result = await extract()

        assert result.summary == "ספק: ירקות השדה"
        assert result.follow_up == ""

    @pytest.mark.asyncio
    async def test_fenced_json(self, llm_client):
        llm_client.messages.create.return_value = llm_reply(
            '```json\n{"data": null, "is_final": false, "follow_up": "מה המספר?"}\n```'
        )

        result = await extract()

        assert result.is_final is False
        assert result.follow_up == "מה המספר?"

    @pytest.mark.asyncio
    async def test_malformed_reply(self, llm_client):
        llm_client.messages.create.return_value = llm_reply("סליחה, לא הבנתי")
        with pytest.raises(ExtractionError):
            await extract()

    @pytest.mark.asyncio
    async def test_non_object_reply(self, llm_client):
        llm_client.messages.create.return_value = llm_reply("[1, 2]")
        with pytest.raises(ExtractionError):
            await extract()

    @pytest.mark.asyncio
    async def test_empty_content(self, llm_client):
        response = llm_reply("")
        response.content = []
        llm_client.messages.create.return_value = response
        with pytest.raises(ExtractionError):
            await extract()

    @pytest.mark.asyncio
    async def test_bookkeeping_context_hidden(self, llm_client):
        llm_client.messages.create.return_value = llm_reply('{"data": null, "is_final": false}')

        await extract(
            context={"restaurant_name": "פיצה דליברו", "suppliers_list": [{"id": "0529876543"}]},
            history=[MessageEntry(role="assistant", body="מה שם הספק?", message_state="SUPPLIER_CONTACT")],
            options=[TemplateOption(label="🥬 ירקות", id="vegetables")],
        )

        prompt = llm_client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "פיצה דליברו" in prompt
        assert "0529876543" not in prompt
        assert "מה שם הספק?" in prompt
        assert "id=vegetables" in prompt


class TestExtractionPrompt:
    def test_prompt_sections(self):
        prompt = build_extraction_prompt(
            instruction="הנחיה",
            schema={"type": "integer"},
            message="14:00",
            history=[("user", "שלום")],
            options=[("כן", "yes")],
        )
        assert "הנחיה" in prompt
        assert '{"type": "integer"}' in prompt
        assert "14:00" in prompt
        assert "- id=yes: כן" in prompt


class TestBackendFactory:
    def test_no_backend_without_key(self, monkeypatch):
        monkeypatch.setattr(extraction, "_backend", None)
        monkeypatch.setattr(extraction.settings, "anthropic_api_key", "")
        assert extraction.get_extraction_backend() is None

    def test_backend_with_key(self, monkeypatch):
        monkeypatch.setattr(extraction, "_backend", None)
        monkeypatch.setattr(extraction.settings, "anthropic_api_key", "sk-test")
        assert isinstance(extraction.get_extraction_backend(), AnthropicExtractionBackend)
