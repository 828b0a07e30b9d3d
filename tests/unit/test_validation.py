"""Tests for input parsing and the extraction validator."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from restobot.conversation.states import resolve_options
from restobot.conversation.validation import (
    ExtractionValidator,
    Invalid,
    SchemaValidator,
    Valid,
    ValidatorSet,
)
from restobot.errors import ExtractionError
from restobot.llm.extraction import ExtractionResult
from restobot.schemas.conversation import BotState


@pytest.fixture
def schema_validator(config):
    return SchemaValidator(config)


@pytest.fixture
def check(schema_validator, table, config):
    """Validate ``raw`` as the reply to ``state``."""

    async def run(state, raw, context=None):
        context = context or {}
        definition = table[state]
        options = resolve_options(definition, context, config)
        return await schema_validator.validate(raw, definition, context=context, options=options)

    return run


class TestOnboardingInputs:
    """Test the registration fields."""

    @pytest.mark.asyncio
    async def test_legal_id_accepted(self, check):
        assert await check(BotState.ONBOARDING_LEGAL_ID, "123456789") == Valid("123456789")

    @pytest.mark.asyncio
    async def test_legal_id_separators_removed(self, check):
        assert await check(BotState.ONBOARDING_LEGAL_ID, "123-456 789") == Valid("123456789")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["12AB", "12345", "1234567890", ""])
    async def test_legal_id_rejected(self, check, raw):
        assert isinstance(await check(BotState.ONBOARDING_LEGAL_ID, raw), Invalid)

    @pytest.mark.asyncio
    async def test_company_name_too_short(self, check):
        assert isinstance(await check(BotState.ONBOARDING_COMPANY_NAME, "א"), Invalid)

    @pytest.mark.asyncio
    async def test_email_lowercased(self, check):
        assert await check(BotState.ONBOARDING_CONTACT_EMAIL, "Dana@Example.com") == Valid("dana@example.com")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["דלג", "skip", "1"])
    async def test_email_skip(self, check, raw):
        assert await check(BotState.ONBOARDING_CONTACT_EMAIL, raw) == Valid("skip")

    @pytest.mark.asyncio
    async def test_email_rejected(self, check):
        assert isinstance(await check(BotState.ONBOARDING_CONTACT_EMAIL, "not-an-email"), Invalid)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["trial", "2", "התחל ניסיון", "TRIAL"])
    async def test_option_by_id_index_or_label(self, check, raw):
        assert await check(BotState.ONBOARDING_PAYMENT_METHOD, raw) == Valid("trial")

    @pytest.mark.asyncio
    async def test_option_out_of_range(self, check):
        assert isinstance(await check(BotState.ONBOARDING_PAYMENT_METHOD, "3"), Invalid)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["try14", "TRY14", " try14 "])
    async def test_coupon_accepted(self, check, raw):
        assert await check(BotState.WAITING_FOR_PAYMENT, raw) == Valid(True)

    @pytest.mark.asyncio
    async def test_payment_not_confirmed(self, check):
        assert isinstance(await check(BotState.WAITING_FOR_PAYMENT, "שילמתי"), Invalid)


class TestSupplierInputs:
    """Test supplier setup fields."""

    @pytest.mark.asyncio
    async def test_categories_by_name(self, check):
        outcome = await check(BotState.SUPPLIER_CATEGORY, "ירקות, פירות")
        assert outcome == Valid({"category": ["vegetables", "fruits"]})

    @pytest.mark.asyncio
    async def test_categories_by_number(self, check):
        assert await check(BotState.SUPPLIER_CATEGORY, "1") == Valid({"category": ["vegetables"]})

    @pytest.mark.asyncio
    async def test_unknown_category(self, check):
        assert isinstance(await check(BotState.SUPPLIER_CATEGORY, "חלקי חילוף"), Invalid)

    @pytest.mark.asyncio
    async def test_contact_comma_separated(self, check):
        outcome = await check(BotState.SUPPLIER_CONTACT, "ירקות השדה, 0529876543")
        assert outcome == Valid({"name": "ירקות השדה", "whatsapp": "0529876543"})

    @pytest.mark.asyncio
    async def test_contact_international_number(self, check):
        outcome = await check(BotState.SUPPLIER_CONTACT, "ירקות השדה, +972-52-987-6543")
        assert outcome == Valid({"name": "ירקות השדה", "whatsapp": "0529876543"})

    @pytest.mark.asyncio
    async def test_contact_inline_number(self, check):
        outcome = await check(BotState.SUPPLIER_CONTACT, "ירקות השדה 0529876543")
        assert outcome == Valid({"name": "ירקות השדה", "whatsapp": "0529876543"})

    @pytest.mark.asyncio
    async def test_contact_json(self, check):
        outcome = await check(BotState.SUPPLIER_CONTACT, '{"name": "ירקות השדה", "whatsapp": "0529876543"}')
        assert outcome == Valid({"name": "ירקות השדה", "whatsapp": "0529876543"})

    @pytest.mark.asyncio
    async def test_contact_bad_number(self, check):
        assert isinstance(await check(BotState.SUPPLIER_CONTACT, "ירקות השדה, 12345"), Invalid)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["0,4", "ראשון, חמישי", "ראשון וחמישי", "sun thu"])
    async def test_reminder_days(self, check, raw):
        assert await check(BotState.SUPPLIER_REMINDERS, raw) == Valid([0, 4])

    @pytest.mark.asyncio
    async def test_every_day(self, check):
        assert await check(BotState.SUPPLIER_REMINDERS, "כל יום") == Valid([0, 1, 2, 3, 4, 5, 6])

    @pytest.mark.asyncio
    async def test_out_of_range_days_dropped(self, check):
        assert await check(BotState.SUPPLIER_REMINDERS, "2,9") == Valid([2])

    @pytest.mark.asyncio
    async def test_no_valid_day(self, check):
        assert isinstance(await check(BotState.SUPPLIER_REMINDERS, "9, 12"), Invalid)

    @pytest.mark.asyncio
    async def test_lone_number_is_menu_position(self, check):
        assert await check(BotState.SUPPLIER_REMINDERS, "1") == Valid([0, 4])
        assert await check(BotState.SUPPLIER_REMINDERS, "3") == Valid([0, 1, 2, 3, 4, 5, 6])

    @pytest.mark.asyncio
    async def test_number_list_is_weekdays(self, check):
        assert await check(BotState.SUPPLIER_REMINDERS, "1,3") == Valid([1, 3])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw,hour", [("14", 14), ("14:00", 14), ("בשעה 9", 9)])
    async def test_cutoff_hour(self, check, raw, hour):
        assert await check(BotState.SUPPLIER_CUTOFF_HOUR, raw) == Valid(hour)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["25", "בצהריים"])
    async def test_cutoff_hour_rejected(self, check, raw):
        assert isinstance(await check(BotState.SUPPLIER_CUTOFF_HOUR, raw), Invalid)


class TestProductInputs:
    """Test product lists, base quantities and order lines."""

    @pytest.mark.asyncio
    async def test_product_list_units(self, check):
        outcome = await check(BotState.PRODUCTS_LIST, 'עגבניות ק"ג, חסה יח\', תפוחים ארגז, שמיר')
        assert outcome == Valid(
            [
                {"name": "עגבניות", "unit": "kg"},
                {"name": "חסה", "unit": "pcs"},
                {"name": "תפוחים", "unit": "box"},
                {"name": "שמיר", "unit": "other"},
            ]
        )

    @pytest.mark.asyncio
    async def test_pars_take_catalogue_units(self, check):
        context = {"supplier_products": [{"name": "עגבניות", "unit": "kg"}, {"name": "חסה", "unit": "pcs"}]}
        outcome = await check(BotState.PRODUCTS_BASE_QTY, "עגבניות - 10, 15\nחסה - 6", context)
        assert outcome == Valid(
            [
                {"name": "עגבניות", "unit": "kg", "par_midweek": 10.0, "par_weekend": 15.0},
                {"name": "חסה", "unit": "pcs", "par_midweek": 6.0, "par_weekend": 6.0},
            ]
        )

    @pytest.mark.asyncio
    async def test_pars_from_prefilled_template(self, check):
        context = {"supplier_products": [{"name": "עגבניות", "unit": "kg"}]}
        outcome = await check(BotState.PRODUCTS_BASE_QTY, 'עגבניות (ק"ג) - 10/15', context)
        assert outcome == Valid([{"name": "עגבניות", "unit": "kg", "par_midweek": 10.0, "par_weekend": 15.0}])

    @pytest.mark.asyncio
    async def test_pars_unknown_product(self, check):
        context = {"supplier_products": [{"name": "עגבניות", "unit": "kg"}]}
        assert isinstance(await check(BotState.PRODUCTS_BASE_QTY, "מלפפונים - 3, 4", context), Invalid)

    @pytest.mark.asyncio
    async def test_pars_must_be_positive(self, check):
        assert isinstance(await check(BotState.PRODUCTS_BASE_QTY, "עגבניות - 0, 4"), Invalid)

    @pytest.mark.asyncio
    async def test_order_lines(self, check):
        context = {"order_products": [{"name": "עגבניות", "unit": "kg"}]}
        outcome = await check(BotState.ORDER_BUILD, "עגבניות - 5\n3 חסה", context)
        assert outcome == Valid(
            [
                {"name": "עגבניות", "unit": "kg", "quantity": 5.0},
                {"name": "חסה", "unit": "other", "quantity": 3.0},
            ]
        )

    @pytest.mark.asyncio
    async def test_order_line_without_quantity(self, check):
        assert isinstance(await check(BotState.ORDER_BUILD, "עגבניות"), Invalid)


class TestCountInputs:
    """Test inventory and delivery quantities."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw,value", [("4", 4.0), ("2.5", 2.5), ("2,5", 2.5), ("0", 0.0)])
    async def test_quantity(self, check, raw, value):
        assert await check(BotState.INVENTORY_SNAPSHOT_QTY, raw) == Valid(value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["-1", "abc", "  "])
    async def test_quantity_rejected(self, check, raw):
        assert isinstance(await check(BotState.INVENTORY_SNAPSHOT_QTY, raw), Invalid)

    @pytest.mark.asyncio
    async def test_received_within_ordered(self, check):
        assert await check(BotState.DELIVERY_RECEIVED_AMOUNT, "3", {"ordered_qty": 5.0}) == Valid(3.0)

    @pytest.mark.asyncio
    async def test_received_above_ordered(self, check):
        assert isinstance(await check(BotState.DELIVERY_RECEIVED_AMOUNT, "7", {"ordered_qty": 5.0}), Invalid)

    @pytest.mark.asyncio
    async def test_invoice_url(self, check):
        url = "https://api.twilio.com/media/ME123"
        assert await check(BotState.DELIVERY_INVOICE_PHOTO, url) == Valid(url)

    @pytest.mark.asyncio
    async def test_invoice_skip(self, check):
        assert await check(BotState.DELIVERY_INVOICE_PHOTO, "דלג") == Valid("skip")

    @pytest.mark.asyncio
    async def test_invoice_text_rejected(self, check):
        assert isinstance(await check(BotState.DELIVERY_INVOICE_PHOTO, "הנה החשבונית"), Invalid)

    @pytest.mark.asyncio
    async def test_state_without_schema_accepts_text(self, check):
        assert await check(BotState.HELP, " כל דבר ") == Valid("כל דבר")


class TestExtractionValidator:
    """Test the AI-assisted path with a mocked backend."""

    @pytest.fixture
    def backend(self):
        return AsyncMock()

    @pytest.fixture
    def extraction(self, backend, config):
        return ExtractionValidator(backend, config, timeout=0.5)

    async def _validate(self, extraction, table, state, raw, context=None):
        definition = table[state]
        return await extraction.validate(raw, definition, context=context or {}, options=())

    @pytest.mark.asyncio
    async def test_final_data_accepted(self, extraction, backend, table):
        backend.extract.return_value = ExtractionResult(
            data={"name": "ירקות השדה", "whatsapp": "+972529876543"}, is_final=True
        )
        outcome = await self._validate(extraction, table, BotState.SUPPLIER_CONTACT, "הספק הוא ירקות השדה")
        assert outcome.data == {"name": "ירקות השדה", "whatsapp": "0529876543"}
        assert outcome.needs_approval

        kwargs = backend.extract.call_args.kwargs
        assert kwargs["message"] == "הספק הוא ירקות השדה"
        assert "properties" in kwargs["schema"]

    @pytest.mark.asyncio
    async def test_follow_up_question(self, extraction, backend, table):
        backend.extract.return_value = ExtractionResult(is_final=False, follow_up="מה מספר הוואטסאפ של הספק?")
        outcome = await self._validate(extraction, table, BotState.SUPPLIER_CONTACT, "ירקות השדה")
        assert isinstance(outcome, Invalid)
        assert outcome.message == "מה מספר הוואטסאפ של הספק?"

    @pytest.mark.asyncio
    async def test_final_data_rechecked(self, extraction, backend, table):
        backend.extract.return_value = ExtractionResult(data=[9, 12], is_final=True)
        outcome = await self._validate(extraction, table, BotState.SUPPLIER_REMINDERS, "בימי חול")
        assert isinstance(outcome, Invalid)
        assert outcome.message is None

    @pytest.mark.asyncio
    async def test_backend_error(self, extraction, backend, table):
        backend.extract.side_effect = ExtractionError("boom")
        outcome = await self._validate(extraction, table, BotState.SUPPLIER_CONTACT, "ירקות השדה")
        assert isinstance(outcome, Invalid)

    @pytest.mark.asyncio
    async def test_backend_timeout(self, config, table):
        class SlowBackend:
            async def extract(self, **kwargs):
                await asyncio.sleep(1)

        extraction = ExtractionValidator(SlowBackend(), config, timeout=0.01)
        outcome = await self._validate(extraction, table, BotState.SUPPLIER_CONTACT, "ירקות השדה")
        assert isinstance(outcome, Invalid)
        assert outcome.reason.startswith("extraction unavailable")

    @pytest.mark.asyncio
    async def test_backend_error_falls_back_to_schema(self, extraction, backend, table):
        backend.extract.side_effect = ExtractionError("boom")
        outcome = await self._validate(extraction, table, BotState.SUPPLIER_CONTACT, "ירקות השדה, 0529876543")
        assert outcome == Valid({"name": "ירקות השדה", "whatsapp": "0529876543"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["0,4", "1", "ראשון וחמישי"])
    async def test_option_reply_skips_backend(self, extraction, backend, table, config, raw):
        definition = table[BotState.SUPPLIER_REMINDERS]
        options = resolve_options(definition, {}, config)
        outcome = await extraction.validate(raw, definition, context={}, options=options)
        assert outcome == Valid([0, 4])
        backend.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_summary_passed_for_approval(self, extraction, backend, table):
        backend.extract.return_value = ExtractionResult(data=[1, 3], is_final=True, summary="שני ורביעי")
        outcome = await self._validate(extraction, table, BotState.SUPPLIER_REMINDERS, "בימי שני ורביעי")
        assert outcome == Valid([1, 3], needs_approval=True, summary="שני ורביעי")

    @pytest.mark.asyncio
    async def test_help_answer_without_approval(self, extraction, backend, table):
        backend.extract.return_value = ExtractionResult(data=None, is_final=True, follow_up="בהצלחה!")
        outcome = await self._validate(extraction, table, BotState.HELP, "תודה, הבנתי")
        assert outcome == Valid(None, message="בהצלחה!")

    @pytest.mark.asyncio
    async def test_help_question_answered(self, extraction, backend, table):
        backend.extract.return_value = ExtractionResult(is_final=False, follow_up="כתבו \"תפריט\" ובחרו ספירת מלאי.")
        outcome = await self._validate(extraction, table, BotState.HELP, "איך סופרים מלאי?")
        assert isinstance(outcome, Invalid)
        assert outcome.message == "כתבו \"תפריט\" ובחרו ספירת מלאי."

    @pytest.mark.asyncio
    async def test_plain_state_skips_backend(self, extraction, backend, table):
        outcome = await self._validate(extraction, table, BotState.ONBOARDING_LEGAL_ID, "123456789")
        assert outcome == Valid("123456789")
        backend.extract.assert_not_called()


class TestValidatorSet:
    """Test validator selection per state."""

    def test_schema_only_without_backend(self, table, schema_validator):
        validators = ValidatorSet(schema_validator)
        assert validators.select(table[BotState.SUPPLIER_CONTACT]) is schema_validator

    def test_extraction_for_ai_states(self, table, schema_validator, config):
        extraction = ExtractionValidator(AsyncMock(), config)
        validators = ValidatorSet(schema_validator, extraction)
        assert validators.select(table[BotState.SUPPLIER_CONTACT]) is extraction
        assert validators.select(table[BotState.ONBOARDING_LEGAL_ID]) is schema_validator
