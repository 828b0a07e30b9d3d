"""Tests for the declarative state table and prompt rendering."""

import pytest

from restobot.conversation.callbacks import CALLBACKS
from restobot.conversation.states import (
    StateDefinition,
    StateTable,
    Template,
    TemplateOption,
    render_prompt,
    render_text,
    resolve_options,
)
from restobot.schemas.conversation import BotState


class TestStateTable:
    """Test table completeness and integrity checks."""

    def test_every_state_is_defined(self, table):
        assert set(table) == set(BotState)
        assert len(table) == len(BotState)

    def test_every_transition_targets_a_defined_state(self, table):
        for state, definition in table.items():
            for token, target in definition.next_state.items():
                assert target in table, f"{state}.{token}"

    def test_callbacks_are_registered(self, table):
        for definition in table.values():
            if definition.callback:
                assert definition.callback in CALLBACKS

    def test_lookup_by_string(self, table):
        assert table["IDLE"] is table[BotState.IDLE]

    def test_unknown_state_is_absent(self, table):
        assert table.get("NOT_A_STATE") is None
        assert "NOT_A_STATE" not in table

    def test_transition_maps_are_read_only(self, table):
        with pytest.raises(TypeError):
            table[BotState.INIT].next_state["help"] = BotState.IDLE

    def test_rejects_dangling_transition(self, table):
        definitions = dict(table.items())
        definitions[BotState.HELP] = StateDefinition(prompt="?", next_state={"ok": "NOWHERE"})
        with pytest.raises(ValueError):
            StateTable(definitions)

    def test_rejects_missing_states(self, table):
        definitions = dict(table.items())
        del definitions[BotState.HELP]
        with pytest.raises(ValueError, match="HELP"):
            StateTable(definitions)

    def test_rejects_unknown_callback(self, table):
        definitions = dict(table.items())
        definitions[BotState.HELP] = StateDefinition(
            prompt="?", callback="no_such_callback", next_state={"ok": BotState.IDLE}
        )
        with pytest.raises(ValueError, match="no_such_callback"):
            StateTable(definitions)

    def test_ai_states_keep_a_schema_fallback(self, table):
        for state, definition in table.items():
            if definition.ai_validation is not None:
                assert definition.validator is not None, state
                assert definition.extraction_schema is definition.validator

    def test_only_invoice_state_reads_media(self, table):
        media_states = [s for s, d in table.items() if d.input_source == "media"]
        assert media_states == [BotState.DELIVERY_INVOICE_PHOTO]

    def test_payment_method_emits_restaurant_creation(self, table):
        definition = table[BotState.ONBOARDING_PAYMENT_METHOD]
        assert definition.action.value == "CREATE_RESTAURANT"
        assert definition.next_state["trial"] == BotState.SETUP_SUPPLIERS_START
        assert definition.next_state["credit_card"] == BotState.WAITING_FOR_PAYMENT


class TestRendering:
    """Test placeholder substitution and option resolution."""

    def test_placeholders_substituted(self):
        assert render_text("שלום {name}!", {"name": "דנה"}) == "שלום דנה!"

    def test_missing_placeholder_renders_empty(self):
        assert render_text("[{missing}]", {}) == "[]"

    def test_integral_float_renders_as_int(self):
        assert render_text("{qty} / {half}", {"qty": 6.0, "half": 2.5}) == "6 / 2.5"

    def test_list_renders_comma_separated(self):
        assert render_text("{days}", {"days": ["ראשון", "חמישי"]}) == "ראשון, חמישי"

    def test_static_options(self, table, config):
        options = resolve_options(table[BotState.ONBOARDING_PAYMENT_METHOD], {}, config)
        assert [o.id for o in options] == ["credit_card", "trial"]

    def test_dynamic_supplier_options(self, table, config, registered_context):
        options = resolve_options(table[BotState.ORDER_SETUP_START], registered_context, config)
        assert options == (TemplateOption(label="ירקות השדה", id="0529876543"),)

    def test_snapshot_categories_only_covered(self, table, config, registered_context):
        options = resolve_options(table[BotState.INVENTORY_SNAPSHOT_CATEGORY], registered_context, config)
        assert [o.id for o in options] == ["vegetables"]

    def test_text_prompt_has_no_options(self, table, config):
        assert resolve_options(table[BotState.ONBOARDING_LEGAL_ID], {}, config) == ()

    def test_render_template_prompt(self, table, config):
        payload = render_prompt(
            BotState.ONBOARDING_PAYMENT_METHOD,
            table[BotState.ONBOARDING_PAYMENT_METHOD],
            {"restaurant_name": "פסטה פרש"},
            config,
            "0501234567",
        )
        assert payload.to == "0501234567"
        assert payload.message_state == "ONBOARDING_PAYMENT_METHOD"
        assert payload.body is None
        assert "פסטה פרש" in payload.template.body
        assert [o.id for o in payload.template.options] == ["credit_card", "trial"]

    def test_render_text_prompt(self, table, config):
        payload = render_prompt(
            BotState.ONBOARDING_LEGAL_ID, table[BotState.ONBOARDING_LEGAL_ID], {}, config, "0501234567"
        )
        assert payload.template is None
        assert "ח.פ" in payload.body

    def test_template_header_rendered(self, config):
        definition = StateDefinition(prompt=Template(id="t", body="b", header="{title}"))
        payload = render_prompt(BotState.HELP, definition, {"title": "כותרת"}, config, "050")
        assert payload.template.header == "כותרת"
