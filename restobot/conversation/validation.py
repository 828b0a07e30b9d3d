"""Input validators — deterministic schema parsing and structured extraction."""

from __future__ import annotations

import asyncio
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import structlog
from pydantic import BaseModel, ValidationError

from restobot.conversation.bot_config import BotConfig
from restobot.conversation.inputs import lookup_option
from restobot.conversation.states import InputSchema, StateDefinition, TemplateOption
from restobot.errors import ExtractionError
from restobot.llm.extraction import ExtractionBackend
from restobot.schemas.conversation import MessageEntry

logger = structlog.get_logger()


@dataclass(frozen=True)
class Valid:
    data: Any
    needs_approval: bool = False  # model-extracted data, shown back to the user first
    summary: Optional[str] = None  # what the user is asked to approve
    message: Optional[str] = None  # reply to send before the next prompt


@dataclass(frozen=True)
class Invalid:
    reason: str
    message: Optional[str] = None  # follow-up text to show instead of the state's message


ValidationOutcome = Valid | Invalid


class Validator(ABC):
    @abstractmethod
    async def validate(
        self,
        raw: str,
        definition: StateDefinition,
        *,
        context: dict,
        options: Sequence[TemplateOption],
        history: Sequence[MessageEntry] = (),
    ) -> ValidationOutcome:
        """Validate one raw input against a state definition."""


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    return str(errors[0].get("msg", exc))


class SchemaValidator(Validator):
    """Parses free text into the state's input type without any model call.

    Object schemas accept JSON, or plain text spread over the model's fields
    in declaration order. Array schemas accept a JSON list or text split by
    the schema's separator.
    """

    def __init__(self, config: BotConfig):
        self.config = config

    def _coerce(self, text: str, schema: InputSchema) -> Any:
        if schema.shape == "object":
            if text.startswith("{"):
                return json.loads(text)
            model = schema.type_
            fields = list(model.model_fields)
            if len(fields) == 1:
                return {fields[0]: text}
            parts = [part.strip() for part in re.split(r"[,\n]", text, maxsplit=len(fields) - 1)]
            return dict(zip(fields, parts))
        if schema.shape == "array":
            if text.startswith("["):
                return json.loads(text)
            return [part.strip() for part in re.split(schema.separator, text) if part.strip()]
        return text

    def check(self, value: Any, schema: InputSchema, *, context: dict, options: Sequence[TemplateOption]) -> ValidationOutcome:
        """Validate an already-shaped value against ``schema``."""
        validation_context = {"config": self.config, "conversation": context, "options": list(options)}
        try:
            parsed = schema.adapter.validate_python(value, context=validation_context)
        except ValidationError as exc:
            return Invalid(reason=_first_error(exc))
        return Valid(schema.adapter.dump_python(parsed, mode="json"))

    async def validate(
        self,
        raw: str,
        definition: StateDefinition,
        *,
        context: dict,
        options: Sequence[TemplateOption],
        history: Sequence[MessageEntry] = (),
    ) -> ValidationOutcome:
        text = (raw or "").strip()
        if not text:
            return Invalid(reason="empty input")
        schema = definition.validator
        if schema is None:
            return Valid(text)
        try:
            value = self._coerce(text, schema)
        except (json.JSONDecodeError, ValueError) as exc:
            return Invalid(reason=str(exc))
        return self.check(value, schema, context=context, options=options)


class ExtractionValidator(Validator):
    """Delegates free-form text to an extraction backend, then re-checks the result.

    A reply that names one of the offered options is settled by the schema
    validator without a model call. Otherwise the backend either returns
    final data or a follow-up question; data is always validated against the
    state's schema before it is accepted. When the backend fails, the schema
    validator gets the raw text.
    """

    def __init__(self, backend: ExtractionBackend, config: BotConfig, timeout: float = 20.0):
        self.backend = backend
        self.config = config
        self.timeout = timeout
        self._schema_validator = SchemaValidator(config)

    async def validate(
        self,
        raw: str,
        definition: StateDefinition,
        *,
        context: dict,
        options: Sequence[TemplateOption],
        history: Sequence[MessageEntry] = (),
    ) -> ValidationOutcome:
        text = (raw or "").strip()
        if not text:
            return Invalid(reason="empty input")
        schema = definition.extraction_schema
        ai = definition.ai_validation
        if schema is None or ai is None:
            return await self._schema_validator.validate(
                text, definition, context=context, options=options, history=history
            )

        choice = lookup_option(text, options)
        if choice is not None:
            return await self._schema_validator.validate(
                choice, definition, context=context, options=options, history=history
            )

        try:
            result = await asyncio.wait_for(
                self.backend.extract(
                    instruction=definition.ai_validation.instruction,
                    schema=schema.adapter.json_schema(),
                    message=text,
                    history=history,
                    options=options,
                    context=context,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("extraction_timeout", timeout=self.timeout)
            return await self._fallback(text, definition, context, options)
        except ExtractionError as exc:
            logger.warning("extraction_failed", error=str(exc))
            return await self._fallback(text, definition, context, options)

        if not result.is_final:
            return Invalid(reason="extraction needs more input", message=result.follow_up or None)

        data = result.data
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        outcome = self._schema_validator.check(data, schema, context=context, options=options)
        if isinstance(outcome, Invalid):
            logger.info("extraction_rejected", reason=outcome.reason)
            return outcome
        if ai.confirm:
            return Valid(outcome.data, needs_approval=True, summary=result.summary or None)
        return Valid(outcome.data, message=result.follow_up or None)

    async def _fallback(
        self,
        text: str,
        definition: StateDefinition,
        context: dict,
        options: Sequence[TemplateOption],
    ) -> ValidationOutcome:
        outcome = await self._schema_validator.validate(text, definition, context=context, options=options)
        if isinstance(outcome, Invalid):
            return Invalid(reason=f"extraction unavailable: {outcome.reason}")
        return outcome


class ValidatorSet:
    """Chooses the validator for a state: extraction when configured and available."""

    def __init__(self, schema: SchemaValidator, extraction: Optional[ExtractionValidator] = None):
        self.schema = schema
        self.extraction = extraction

    def select(self, definition: StateDefinition) -> Validator:
        if definition.ai_validation is not None and self.extraction is not None:
            return self.extraction
        return self.schema
