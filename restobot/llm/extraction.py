"""Structured extraction backend — turns free-form replies into schema-shaped data."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import structlog
from anthropic import AnthropicError

from restobot.config import settings
from restobot.errors import ExtractionError
from restobot.llm.client import get_llm_client
from restobot.llm.prompts.extraction_prompt import SYSTEM_PROMPT, build_extraction_prompt

logger = structlog.get_logger()

# Context keys that are bookkeeping only and never useful to the model.
_HIDDEN_CONTEXT_KEYS = ("suppliers_list", "snapshot_queue", "delivery_queue", "last_order")


@dataclass
class ExtractionResult:
    """Result from one extraction call."""

    data: Any = None
    is_final: bool = False
    follow_up: str = ""
    summary: str = ""


class ExtractionBackend(ABC):
    @abstractmethod
    async def extract(
        self,
        *,
        instruction: str,
        schema: dict,
        message: str,
        history: Sequence[Any] = (),
        options: Sequence[Any] = (),
        context: Optional[dict] = None,
    ) -> ExtractionResult:
        """Extract data for ``schema`` from ``message``.

        Raises:
            ExtractionError: the backend produced no usable answer.
        """


def _strip_fences(text: str) -> str:
    text = text.strip()
    # Handle potential markdown wrapping
    if text.startswith("```"):
        text = text.split("\n", 1)[1].rsplit("```", 1)[0].strip()
    return text


class AnthropicExtractionBackend(ExtractionBackend):
    """Extraction through the Anthropic Messages API."""

    def __init__(self, model: Optional[str] = None, max_tokens: Optional[int] = None):
        self.model = model or settings.llm_model
        self.max_tokens = max_tokens or settings.llm_max_tokens

    async def extract(
        self,
        *,
        instruction: str,
        schema: dict,
        message: str,
        history: Sequence[Any] = (),
        options: Sequence[Any] = (),
        context: Optional[dict] = None,
    ) -> ExtractionResult:
        client = get_llm_client()
        visible_context = {k: v for k, v in (context or {}).items() if k not in _HIDDEN_CONTEXT_KEYS}
        prompt = build_extraction_prompt(
            instruction=instruction,
            schema=schema,
            message=message,
            history=[(entry.role, entry.body) for entry in history],
            options=[(option.label, option.id) for option in options],
            context=visible_context,
        )

        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
            text = _strip_fences(response.content[0].text)
            result_json = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("extraction_json_error", error=str(e))
            raise ExtractionError("extraction returned malformed JSON") from e
        except (AnthropicError, IndexError, AttributeError) as e:
            logger.warning("extraction_api_error", error=str(e))
            raise ExtractionError(f"extraction call failed: {e}") from e

        if not isinstance(result_json, dict):
            raise ExtractionError("extraction returned a non-object reply")

        logger.info(
            "extraction_processed",
            is_final=bool(result_json.get("is_final")),
            tokens_in=response.usage.input_tokens,
            tokens_out=response.usage.output_tokens,
        )
        return ExtractionResult(
            data=result_json.get("data"),
            is_final=bool(result_json.get("is_final")),
            follow_up=str(result_json.get("follow_up") or ""),
            summary=str(result_json.get("summary") or ""),
        )


_backend: Optional[ExtractionBackend] = None


def get_extraction_backend() -> Optional[ExtractionBackend]:
    """Get or create the extraction backend.

    Returns None if no Anthropic API key is configured; AI-assisted states
    then fall back to their schema validator.
    """
    global _backend
    if _backend is not None:
        return _backend
    if not settings.anthropic_api_key:
        logger.debug("extraction_backend_not_configured")
        return None
    _backend = AnthropicExtractionBackend()
    return _backend
