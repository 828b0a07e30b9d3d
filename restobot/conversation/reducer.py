"""Transition engine — computes the next state, context and actions for one message.

The reducer performs no I/O of its own. The only await point is the
validator, which for AI-assisted states may call an extraction backend.
Inputs are never mutated: the context is deep-copied before any callback
runs.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import structlog

from restobot.conversation.actions import build_action, send_message_action, text_message
from restobot.conversation.bot_config import BotConfig
from restobot.conversation.callbacks import CALLBACKS, PENDING_APPROVAL_KEY
from restobot.conversation.inputs import lookup_option
from restobot.conversation.states import (
    StateDefinition,
    StateTable,
    TemplateOption,
    describe_data,
    render_prompt,
    render_text,
    resolve_options,
)
from restobot.conversation.validation import Invalid, Valid, ValidationOutcome, ValidatorSet
from restobot.errors import ActionBuildError
from restobot.schemas.actions import BotAction, SendMessagePayload, TemplatePayload
from restobot.schemas.conversation import ONBOARDING_STATES, BotState, InboundMessage, MessageEntry

logger = structlog.get_logger()


@dataclass
class Transition:
    state: str
    context: dict[str, Any]
    actions: list[BotAction] = field(default_factory=list)


class ConversationReducer:
    """Pure ``(state, context, message) -> Transition`` over a state table."""

    def __init__(self, table: StateTable, config: BotConfig, validators: ValidatorSet):
        self.table = table
        self.config = config
        self.validators = validators

    # ─── Public ──────────────────────────────────────────────────────

    async def reduce(
        self,
        state: str,
        context: dict[str, Any],
        message: InboundMessage,
        history: Sequence[MessageEntry] = (),
    ) -> Transition:
        context = copy.deepcopy(context)
        to = message.sender
        command = (message.body or "").strip().casefold()

        if command in self._commands(self.config.reset_commands):
            logger.info("conversation_reset", phone=to, from_state=state)
            return self._enter(BotState.INIT, {}, to)

        definition = self.table.get(state)
        if definition is None:
            return self.recover(context, to, state=state)
        current = BotState(state)

        if command in self._commands(self.config.menu_commands) and current not in ONBOARDING_STATES:
            return self._enter(BotState.IDLE, context, to)

        if current is BotState.INIT:
            context = {}

        options = resolve_options(definition, context, self.config)
        raw = self._raw_input(definition, message)
        pending = context.pop(PENDING_APPROVAL_KEY, None)
        outcome: ValidationOutcome
        if pending and pending.get("state") == current.value and self._is_confirmation(raw):
            outcome = Valid(pending["data"])
        else:
            validator = self.validators.select(definition)
            outcome = await validator.validate(raw, definition, context=context, options=options, history=history)

        if isinstance(outcome, Invalid):
            logger.info("validation_failed", phone=to, state=current.value, reason=outcome.reason)
            text = outcome.message or definition.validation_message or self.config.generic_validation_message
            return Transition(state=current.value, context=context, actions=[text_message(to, text, current.value)])

        if outcome.needs_approval:
            context[PENDING_APPROVAL_KEY] = {"state": current.value, "data": outcome.data}
            summary = outcome.summary or describe_data(outcome.data)
            logger.info("approval_requested", phone=to, state=current.value)
            return Transition(state=current.value, context=context, actions=[self._approval(summary, current, to)])

        data = outcome.data
        if definition.callback:
            CALLBACKS[definition.callback](context, data, self.config)
        token = context.pop(definition.outcome_key, None) if definition.outcome_key else None

        target = self._resolve_next(definition, data, token) or current
        actions: list[BotAction] = []
        if outcome.message:
            actions.append(text_message(to, outcome.message, current.value))

        if definition.action is not None and (not definition.action_tokens or data in definition.action_tokens):
            try:
                actions.append(build_action(definition.action, context, self.config))
            except ActionBuildError as exc:
                logger.error(
                    "action_build_failed",
                    phone=to,
                    state=current.value,
                    action=exc.action_type,
                    reason=exc.reason,
                )
                actions.append(text_message(to, self.config.action_error_message, target.value))

        actions.append(self._prompt(target, context, to))
        logger.debug("transition", phone=to, from_state=current.value, to_state=target.value)
        return Transition(state=target.value, context=context, actions=actions)

    def greet(self, to: str) -> Transition:
        """Opening transition for a conversation seen for the first time."""
        return self._enter(BotState.INIT, {}, to)

    def welcome_back(self, context: dict[str, Any], to: str) -> Transition:
        """Opening transition for a registered contact: straight to the main menu."""
        return self._enter(BotState.IDLE, copy.deepcopy(context), to)

    def recover(self, context: dict[str, Any], to: str, state: Optional[str] = None) -> Transition:
        """Reset a corrupted conversation to IDLE, keeping only sticky context."""
        logger.error("conversation_recovered", phone=to, state=state)
        sticky = {key: copy.deepcopy(context[key]) for key in self.config.sticky_context_keys if key in context}
        return Transition(
            state=BotState.IDLE.value,
            context=sticky,
            actions=[text_message(to, self.config.system_error_message, BotState.IDLE.value)],
        )

    # ─── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _commands(words: Sequence[str]) -> set[str]:
        return {word.casefold() for word in words}

    @staticmethod
    def _raw_input(definition: StateDefinition, message: InboundMessage) -> str:
        if definition.input_source == "media" and message.media_url:
            return message.media_url
        return message.body or ""

    @staticmethod
    def _resolve_next(definition: StateDefinition, data: Any, token: Optional[str]) -> Optional[BotState]:
        routes = definition.next_state
        if not routes:
            return None
        if token is not None and token in routes:
            return routes[token]
        if (data is True or data is None) and "ok" in routes:
            return routes["ok"]
        if data == "skip" and "skip" in routes:
            return routes["skip"]
        if isinstance(data, str) and data in routes:
            return routes[data]
        if "ok" in routes:
            return routes["ok"]
        return next(iter(routes.values()))

    def _confirm_option(self) -> TemplateOption:
        return TemplateOption(label=self.config.approval_confirm_label, id=self.config.approval_confirm_id)

    def _is_confirmation(self, raw: str) -> bool:
        return lookup_option(raw, (self._confirm_option(),)) == self.config.approval_confirm_id

    def _approval(self, summary: str, state: BotState, to: str) -> BotAction:
        option = self._confirm_option()
        return send_message_action(
            SendMessagePayload(
                to=to,
                message_state=state.value,
                template=TemplatePayload(
                    id="approval_template",
                    type="button",
                    body=render_text(self.config.approval_message, {"summary": summary}),
                    options=[{"id": option.id, "label": option.label}],
                ),
            )
        )

    def _prompt(self, state: BotState, context: dict[str, Any], to: str) -> BotAction:
        return send_message_action(render_prompt(state, self.table[state], context, self.config, to))

    def _enter(self, state: BotState, context: dict[str, Any], to: str) -> Transition:
        return Transition(state=state.value, context=context, actions=[self._prompt(state, context, to)])
