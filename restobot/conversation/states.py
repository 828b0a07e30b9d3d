"""Declarative state table of the restaurant conversation.

Each ``BotState`` maps to a ``StateDefinition``: what to send on entry,
how to validate the reply, which callback folds it into the context, which
action to emit and where to go next. The table is built once from a
``BotConfig`` and is read-only afterwards.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import cached_property
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Union, get_args, get_origin

from pydantic import BaseModel, TypeAdapter

from restobot.conversation import inputs
from restobot.conversation.bot_config import BotConfig
from restobot.conversation.callbacks import CALLBACKS, OPTION_SOURCES, ROUTE_KEY
from restobot.schemas.actions import ActionType, SendMessagePayload, TemplatePayload
from restobot.schemas.conversation import BotState

PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class TemplateOption:
    label: str
    id: str


@dataclass(frozen=True)
class Template:
    """Structured prompt: body text plus selectable options."""

    id: str
    body: str
    type: str = "button"  # button | list | text | card
    options: tuple[TemplateOption, ...] = ()
    options_source: Optional[str] = None  # name in OPTION_SOURCES
    header: Optional[str] = None


@dataclass(frozen=True)
class InputSchema:
    """Accepted shape of a reply: a pydantic-compatible type.

    ``separator`` is a regex used to split free text for list shapes.
    """

    type_: Any
    separator: str = ","

    @cached_property
    def adapter(self) -> TypeAdapter:
        return TypeAdapter(self.type_)

    @cached_property
    def shape(self) -> str:
        tp = self.type_
        if get_origin(tp) is not None and get_args(tp) and hasattr(tp, "__metadata__"):
            tp = get_args(tp)[0]
        if isinstance(tp, type) and issubclass(tp, BaseModel):
            return "object"
        if get_origin(tp) is list:
            return "array"
        return "scalar"


@dataclass(frozen=True)
class AIValidation:
    """Free-form extraction: instruction plus target schema."""

    instruction: str
    schema: Optional[InputSchema] = None  # defaults to the state's validator
    confirm: bool = True  # final data is shown back for approval before it is used


@dataclass(frozen=True)
class StateDefinition:
    prompt: Union[str, Template]
    description: str = ""
    validator: Optional[InputSchema] = None
    ai_validation: Optional[AIValidation] = None
    validation_message: Optional[str] = None
    callback: Optional[str] = None  # name in CALLBACKS
    action: Optional[ActionType] = None
    action_tokens: tuple[str, ...] = ()  # empty: emit on every valid reply
    next_state: Mapping[str, BotState] = field(default_factory=dict)
    outcome_key: Optional[str] = None  # context key holding the routing token
    input_source: str = "body"  # body | media

    def __post_init__(self) -> None:
        object.__setattr__(self, "next_state", MappingProxyType(dict(self.next_state)))

    @property
    def template(self) -> Optional[Template]:
        return self.prompt if isinstance(self.prompt, Template) else None

    @property
    def extraction_schema(self) -> Optional[InputSchema]:
        if self.ai_validation is None:
            return None
        return self.ai_validation.schema or self.validator


class StateTable(Mapping[BotState, StateDefinition]):
    """Read-only state lookup, checked for dangling transitions on creation."""

    def __init__(self, definitions: Mapping[BotState, StateDefinition]):
        self._definitions = MappingProxyType(dict(definitions))
        self._check()

    def _check(self) -> None:
        missing = [state.value for state in BotState if state not in self._definitions]
        if missing:
            raise ValueError(f"states without definition: {missing}")
        for state, definition in self._definitions.items():
            for token, target in definition.next_state.items():
                if target not in self._definitions:
                    raise ValueError(f"{state.value}.{token} -> unknown state {target}")
            if definition.callback and definition.callback not in CALLBACKS:
                raise ValueError(f"{state.value}: unknown callback {definition.callback}")
            template = definition.template
            if template and template.options_source and template.options_source not in OPTION_SOURCES:
                raise ValueError(f"{state.value}: unknown option source {template.options_source}")

    def __getitem__(self, state: Union[BotState, str]) -> StateDefinition:
        try:
            return self._definitions[BotState(state)]
        except ValueError as exc:
            raise KeyError(state) from exc

    def __iter__(self) -> Iterator[BotState]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)


# ─── Rendering ───────────────────────────────────────────────────────


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ", ".join(_format_value(item) for item in value)
    return str(value)


def render_text(text: str, context: Mapping[str, Any]) -> str:
    """Substitute ``{key}`` placeholders from context; unknown keys render empty."""
    return PLACEHOLDER.sub(lambda match: _format_value(context.get(match.group(1))), text)


def resolve_options(
    definition: StateDefinition, context: Mapping[str, Any], config: BotConfig
) -> tuple[TemplateOption, ...]:
    """Options offered with the state's prompt (static or drawn from context)."""
    template = definition.template
    if template is None:
        return ()
    if template.options_source:
        source = OPTION_SOURCES[template.options_source]
        return tuple(TemplateOption(label=label, id=id_) for label, id_ in source(dict(context), config))
    return template.options


def render_prompt(
    state: BotState,
    definition: StateDefinition,
    context: Mapping[str, Any],
    config: BotConfig,
    to: str,
) -> SendMessagePayload:
    template = definition.template
    if template is None:
        return SendMessagePayload(to=to, body=render_text(definition.prompt, context), message_state=state.value)
    options = resolve_options(definition, context, config)
    return SendMessagePayload(
        to=to,
        message_state=state.value,
        template=TemplatePayload(
            id=template.id,
            type=template.type,
            body=render_text(template.body, context),
            options=[{"id": option.id, "label": option.label} for option in options],
            header=render_text(template.header, context) if template.header else None,
        ),
    )


def describe_data(data: Any) -> str:
    """Plain-text rendering of validated data, one line per item or field."""
    if isinstance(data, dict):
        return "\n".join(f"▪️ {key}: {_format_value(value)}" for key, value in data.items())
    if isinstance(data, list) and any(isinstance(item, dict) for item in data):
        return "\n".join(
            "▪️ " + ", ".join(_format_value(value) for value in item.values())
            if isinstance(item, dict)
            else f"▪️ {_format_value(item)}"
            for item in data
        )
    return _format_value(data)


# ─── Table ───────────────────────────────────────────────────────────

CHOOSE_OPTION = "❌ אנא בחר אחת מהאפשרויות."


def _options(*pairs: tuple[str, str]) -> tuple[TemplateOption, ...]:
    return tuple(TemplateOption(label=label, id=id_) for label, id_ in pairs)


def _choice() -> InputSchema:
    return InputSchema(inputs.OptionChoice)


def build_state_table(config: BotConfig) -> StateTable:
    """Build the canonical state table for the given configuration."""
    category_options = tuple(TemplateOption(label=c.label, id=c.id) for c in config.categories)
    reminder_options = tuple(TemplateOption(label=p.label, id=p.id) for p in config.reminder_presets)
    reminders_schema = InputSchema(inputs.Weekdays)
    pars_schema = InputSchema(inputs.ProductPars, separator=r"\n")
    S = BotState

    definitions: dict[BotState, StateDefinition] = {
        # ─── Init ────────────────────────────────────────────────
        S.INIT: StateDefinition(
            prompt=Template(
                id="init_template",
                body=(
                    "🍽️ *ברוכים הבאים ל ✨ P-vot ✨, מערכת ניהול המלאי וההזמנות!*\n"
                    "בכמה צעדים פשוטים נרשום את המסעדה שלך ונגדיר את הספקים וההזמנות המומלצות עבורך.\n"
                    "בחר מה ברצונך לעשות:"
                ),
                options=_options(
                    ("📋 רישום מסעדה חדשה", "new_restaurant"),
                    ("⚡ רישום מסעדה מהיר (סימולטור)", "new_restaurant_fast"),
                    ("❓ עזרה והסבר", "help"),
                ),
            ),
            description="Initial greeting when a new user contacts the bot.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            next_state={
                "new_restaurant": S.ONBOARDING_COMPANY_NAME,
                "new_restaurant_fast": S.ONBOARDING_SIMULATOR,
                "help": S.HELP,
            },
        ),
        # ─── Onboarding ──────────────────────────────────────────
        S.ONBOARDING_COMPANY_NAME: StateDefinition(
            prompt=(
                "📄 *תהליך הרשמה למערכת*\n"
                "מהו השם החוקי של העסק או החברה שלך? (השם שיופיע בחשבוניות)"
            ),
            description="Ask for the legal company name.",
            validator=InputSchema(inputs.LegalName),
            validation_message="❌ שם החברה חייב להכיל לפחות 2 תווים.",
            callback="set_company_name",
            next_state={"ok": S.ONBOARDING_LEGAL_ID},
        ),
        S.ONBOARDING_LEGAL_ID: StateDefinition(
            prompt="📝 מצוין! כעת הזן את מספר ח.פ/עוסק מורשה של העסק.",
            description="Ask for the business registration number (9 digits).",
            validator=InputSchema(inputs.LegalId),
            validation_message="❌ מספר ח.פ/עוסק מורשה חייב להכיל 9 ספרות בדיוק.",
            callback="set_legal_id",
            next_state={"ok": S.ONBOARDING_RESTAURANT_NAME},
        ),
        S.ONBOARDING_RESTAURANT_NAME: StateDefinition(
            prompt="🍽️ מהו השם המסחרי של המסעדה? (השם שהלקוחות מכירים)",
            description="Ask for the restaurant's commercial name.",
            validator=InputSchema(inputs.PersonName),
            validation_message="❌ שם המסעדה חייב להכיל לפחות 2 תווים.",
            callback="set_restaurant_name",
            next_state={"ok": S.ONBOARDING_CONTACT_NAME},
        ),
        S.ONBOARDING_CONTACT_NAME: StateDefinition(
            prompt="👤 מה השם המלא שלך? (איש קשר ראשי)",
            description="Ask for the primary contact person's full name.",
            validator=InputSchema(inputs.PersonName),
            validation_message="❌ השם חייב להכיל לפחות 2 תווים.",
            callback="set_contact_name",
            next_state={"ok": S.ONBOARDING_CONTACT_EMAIL},
        ),
        S.ONBOARDING_CONTACT_EMAIL: StateDefinition(
            prompt=Template(
                id="contact_email_template",
                body="📧 מה כתובת האימייל שלך? (אופציונלי - לחץ 'דלג' להמשך)",
                options=_options(("דלג", "skip")),
            ),
            description="Ask for contact email (optional).",
            validator=InputSchema(inputs.EmailOrSkip),
            validation_message="❌ כתובת האימייל אינה תקינה. נסו שוב או כתבו 'דלג'.",
            callback="set_contact_email",
            next_state={"ok": S.ONBOARDING_PAYMENT_METHOD, "skip": S.ONBOARDING_PAYMENT_METHOD},
        ),
        S.ONBOARDING_PAYMENT_METHOD: StateDefinition(
            prompt=Template(
                id="payment_options_template",
                type="list",
                body=(
                    "💳 *בחר שיטת תשלום עבור {restaurant_name}*\n"
                    "המערכת זמינה בתשלום חודשי. בחר את האופציה המועדפת עליך:"
                ),
                options=_options(("כרטיס אשראי", "credit_card"), ("התחל ניסיון", "trial")),
            ),
            description="Select a payment method; registers the restaurant.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="set_payment_method",
            action=ActionType.CREATE_RESTAURANT,
            next_state={"credit_card": S.WAITING_FOR_PAYMENT, "trial": S.SETUP_SUPPLIERS_START},
        ),
        S.ONBOARDING_SIMULATOR: StateDefinition(
            prompt=Template(
                id="simulator_template",
                body=(
                    "⚡ *ברוכים הבאים לסימולטור P-vot!*\n"
                    "זהו תהליך מהיר לרישום מסעדה לדוגמה עם הגדרות בסיסיות.\n"
                    "פרטי המסעדה ייבחרו עבורך ולא ניתן יהיה לשנות אותם.\n"
                    "האם אתה מוכן להתחיל?"
                ),
                options=_options(("כן", "start_simulator"), ("לא, אני מעדיף רישום רגיל", "regular_registration")),
            ),
            description="Quick registration with a prefilled demo restaurant.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="prefill_demo_restaurant",
            next_state={
                "start_simulator": S.ONBOARDING_PAYMENT_METHOD,
                "regular_registration": S.ONBOARDING_COMPANY_NAME,
            },
        ),
        # ─── Payment wait ────────────────────────────────────────
        S.WAITING_FOR_PAYMENT: StateDefinition(
            prompt=(
                "⏳ *בהמתנה לאישור תשלום*\n"
                "ניתן לשלם בקישור הבא:\n"
                "{payment_link}\n"
                "לאחר השלמת התשלום, נמשיך בהגדרת המערכת."
            ),
            description="Wait for payment confirmation before supplier setup.",
            validator=InputSchema(inputs.SkipPaymentCoupon),
            validation_message="⏳ התשלום טרם אושר. לאחר התשלום נמשיך אוטומטית.",
            callback="confirm_payment",
            next_state={"ok": S.SETUP_SUPPLIERS_START},
        ),
        # ─── Supplier setup ──────────────────────────────────────
        S.SETUP_SUPPLIERS_START: StateDefinition(
            prompt=Template(
                id="supplier_setup_start_template",
                body=(
                    "🚚 *הגדרת ספקים ומוצרים*\n"
                    "כעת נגדיר את הספקים שעובדים עם המסעדה שלך. זה יעזור למערכת לנהל את המלאי, "
                    "לתזכר אותך ולשלוח הזמנות לספק באופן אוטומטי.\n"
                    "מוכנים להתחיל?"
                ),
                options=_options(("כן, בואו נתחיל ✨", "start_supplier"), ("לא כרגע", "postpone")),
            ),
            description="Begin supplier setup.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            next_state={"start_supplier": S.SUPPLIER_CATEGORY, "postpone": S.IDLE},
        ),
        S.SUPPLIER_CATEGORY: StateDefinition(
            prompt=Template(
                id="supplier_category_template",
                type="list",
                body=(
                    "🚚 *הגדרת ספק חדש למסעדה*\n"
                    "בחרו קטגוריה לספק זה מתוך האפשרויות, *או* כתבו את שם הקטגוריה.\n\n"
                    "💡 במידה והספק אחראי על יותר מקטגוריה אחת, ניתן לכתוב מספר קטגוריות מופרדות בפסיק"
                ),
                options=category_options,
            ),
            description="Select one or more supplier categories from the closed category set.",
            validator=InputSchema(inputs.SupplierCategorySelection),
            ai_validation=AIValidation(
                instruction=(
                    "עליך לבקש מהמשתמש לבחור קטגוריה (או כמה קטגוריות) לספק הנוכחי "
                    "מתוך רשימת הקטגוריות המוצעות בלבד."
                ),
            ),
            validation_message="❌ אנא בחרו קטגוריה מהרשימה.",
            callback="set_supplier_categories",
            next_state={"ok": S.SUPPLIER_CONTACT},
        ),
        S.SUPPLIER_CONTACT: StateDefinition(
            prompt="👤 *מה שם ומספר הוואטסאפ של הספק?*\n\nלדוגמה: ירקות השדה, 0501234567",
            description="Ask for the supplier's name and WhatsApp number.",
            validator=InputSchema(inputs.SupplierContact),
            ai_validation=AIValidation(
                instruction="עליך לשאול את המשתמש מה השם ומספר הוואטסאפ של הספק הנוכחי.",
            ),
            validation_message="❌ אנא כתבו שם ומספר נייד תקין, לדוגמה: ירקות השדה, 0501234567",
            callback="set_supplier_contact",
            next_state={"ok": S.SUPPLIER_REMINDERS},
        ),
        S.SUPPLIER_REMINDERS: StateDefinition(
            prompt=Template(
                id="supplier_reminders_template",
                type="list",
                body=(
                    "⏰ *באילו ימים נסגרות ההזמנות אצל {supplier_name}?*\n\n"
                    "המערכת תשתמש במידע הזה כדי לתזכר אותך להזמין *לפני* שיהיה מאוחר מדי.\n"
                    "בחר מהאפשרויות או כתוב את הימים, לדוגמה: \"שני, חמישי\""
                ),
                options=reminder_options,
            ),
            description="Capture the weekdays on which the supplier stops accepting orders.",
            validator=reminders_schema,
            ai_validation=AIValidation(
                instruction=(
                    "עליך לבקש מהמשתמש לציין את ימי הסגירה של הזמנות אצל הספק. "
                    "החזר רשימת מספרי ימים בין 0 (ראשון) ל-6 (שבת)."
                ),
            ),
            validation_message="❌ לא זוהו ימים תקינים. כתבו לדוגמה: ראשון, רביעי",
            callback="set_supplier_reminders",
            next_state={"ok": S.SUPPLIER_CUTOFF_HOUR},
        ),
        S.SUPPLIER_CUTOFF_HOUR: StateDefinition(
            prompt="🕐 *עד איזו שעה ניתן להזמין בימים אלה ({supplier_reminder_label})?*\n\nכתבו שעה בין 0 ל-23, לדוגמה: 14",
            description="Capture the order cut-off hour.",
            validator=InputSchema(inputs.CutoffHour),
            validation_message="❌ אנא הזינו שעה בין 0 ל-23.",
            callback="set_supplier_cutoff",
            next_state={"ok": S.PRODUCTS_LIST},
        ),
        # ─── Product setup ───────────────────────────────────────
        S.PRODUCTS_LIST: StateDefinition(
            prompt=(
                "📋 *הגדרת מוצרים מהספק*\n\n"
                "🔹 רשמו את רשימת המוצרים ויחידות המידה שלהם, מופרדים בפסיק:\n\n"
                "📝 *לדוגמה:*\n"
                "עגבניות ק\"ג, חסה יח', תפוחים ארגז"
            ),
            description="List the supplier's products with their units.",
            validator=InputSchema(list[inputs.ProductEntry]),
            ai_validation=AIValidation(
                instruction=(
                    "עליך לעזור למשתמש לרשום רשימת מוצרים ויחידות מידה מהספק. "
                    "אם לא צוינו יחידות מידה, הנח יחידות סטנדרטיות למוצר. "
                    "יש לאסוף שמות מוצרים ויחידות מידה בלבד ולהתעלם מכמויות."
                ),
            ),
            validation_message="❌ לא הצלחתי לזהות את רשימת המוצרים. נסו שוב לפי הדוגמה.",
            callback="set_supplier_products",
            next_state={"ok": S.PRODUCTS_BASE_QTY},
        ),
        S.PRODUCTS_BASE_QTY: StateDefinition(
            prompt=(
                "📦 *הגדרת מצבת בסיס למוצרים*\n"
                "עבור כל מוצר, הזן את הכמות הנדרשת לאמצע שבוע ולסוף שבוע בפורמט:\n"
                "*[שם מוצר] - [כמות אמצע שבוע], [כמות סוף שבוע]*\n\n"
                "ניתן להעתיק את הרשימה ולמלא כמויות:\n"
                "{products_template}"
            ),
            description="Ask for each product's base quantity for midweek and weekend.",
            validator=pars_schema,
            ai_validation=AIValidation(
                instruction=(
                    "עליך לבקש מהמשתמש להזין עבור כל מוצר ברשימה כמות בסיס לאמצע השבוע "
                    "וכמות בסיס לסוף השבוע. הכמויות חייבות להיות גדולות מאפס."
                ),
            ),
            validation_message="❌ אנא כתבו שורה לכל מוצר בפורמט: שם - 5, 8",
            callback="set_product_pars",
            action=ActionType.CREATE_SUPPLIER,
            next_state={"ok": S.SETUP_SUPPLIERS_ADDITIONAL},
        ),
        S.SETUP_SUPPLIERS_ADDITIONAL: StateDefinition(
            prompt=Template(
                id="supplier_setup_additional_template",
                body="✅ הספק *{supplier_name}* נשמר!\n\n🏪 *האם יש עוד ספקים שתרצו להגדיר?*",
                options=_options(("הגדרת ספק נוסף", "add_supplier"), ("לא כרגע", "finished")),
            ),
            description="Offer to add another supplier.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="archive_supplier",
            next_state={"add_supplier": S.SUPPLIER_CATEGORY, "finished": S.RESTAURANT_FINISHED},
        ),
        S.RESTAURANT_FINISHED: StateDefinition(
            prompt=Template(
                id="restaurant_finished_template",
                type="text",
                body=(
                    "🎉 *הגדרת המסעדה {restaurant_name} הושלמה!*\n"
                    "כעת תוכלו להתחיל להשתמש במערכת לניהול המלאי וההזמנות שלכם.\n"
                    "כתבו \"תפריט\" כדי לראות את האפשרויות הזמינות"
                ),
            ),
            description="Restaurant setup is complete; any reply opens the menu.",
            next_state={"ok": S.IDLE},
        ),
        # ─── Idle ────────────────────────────────────────────────
        S.IDLE: StateDefinition(
            prompt=Template(
                id="template_idle_menu",
                type="list",
                body="👋 *שלום {contact_name}!*\n\nמה תרצה לעשות היום?\n\nבחר אחת מהאפשרויות:",
                options=_options(
                    ("📦 ספירת מלאי", "inventory_count"),
                    ("🛒 יצירת הזמנה חדשה", "new_order"),
                    ("🚚 הוספת ספק חדש", "add_supplier"),
                    ("⏰ עדכון ימי הזמנה לספק", "update_supplier"),
                    ("📋 עדכון מצבת מוצרים", "update_products"),
                    ("❓ שאלות ותמיכה", "help"),
                ),
            ),
            description="Main menu shown when the user is not in any active flow.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="clear_flow_keys",
            next_state={
                "inventory_count": S.INVENTORY_SNAPSHOT_START,
                "new_order": S.ORDER_SETUP_START,
                "add_supplier": S.SUPPLIER_CATEGORY,
                "update_supplier": S.SUPPLIER_UPDATE_SELECT,
                "update_products": S.PRODUCTS_UPDATE_SELECT,
                "help": S.HELP,
            },
        ),
        S.HELP: StateDefinition(
            prompt=(
                "❓ *עזרה והסבר*\n\n"
                "P-vot מנהלת עבורך את המלאי וההזמנות מול הספקים:\n"
                "▪️ ספירת מלאי לפי קטגוריות וחישוב הזמנה מומלצת\n"
                "▪️ שליחת הזמנות לספקים בוואטסאפ\n"
                "▪️ בדיקת משלוחים ושמירת חשבוניות\n\n"
                "בכל שלב ניתן לכתוב \"תפריט\" כדי לחזור לתפריט הראשי.\n"
                "יש לכם שאלה? כתבו אותה כאן, או שלחו \"תודה\" כדי להמשיך."
            ),
            description="Explain the bot and answer questions; leaving returns to the menu.",
            ai_validation=AIValidation(
                instruction=(
                    "אתה נציג תמיכה של P-vot, מערכת לניהול מלאי והזמנות מספקים למסעדות. "
                    "ענה בקצרה ובעברית על שאלת המשתמש בשדה follow_up והחזר is_final=false. "
                    "כאשר המשתמש מסיים (תודה, הבנתי, אין שאלות), החזר is_final=true ו-data=null."
                ),
                schema=InputSchema(Optional[str]),
                confirm=False,
            ),
            validation_message="❓ לא הצלחתי לענות על השאלה. נסו לנסח אותה אחרת.",
            callback="finish_help",
            outcome_key=ROUTE_KEY,
            next_state={"registered": S.IDLE, "unregistered": S.INIT},
        ),
        # ─── Supplier / product maintenance ──────────────────────
        S.SUPPLIER_UPDATE_SELECT: StateDefinition(
            prompt=Template(
                id="supplier_update_select_template",
                type="list",
                body="🚚 *עדכון ספק*\n\nבחר את הספק שברצונך לעדכן:",
                options_source="suppliers",
            ),
            description="Choose a supplier whose order days should change.",
            validator=_choice(),
            validation_message="❌ אנא בחר ספק מהרשימה, או כתוב \"תפריט\" לחזרה.",
            callback="select_supplier",
            next_state={"ok": S.SUPPLIER_UPDATE_REMINDERS},
        ),
        S.SUPPLIER_UPDATE_REMINDERS: StateDefinition(
            prompt=Template(
                id="supplier_update_reminders_template",
                type="list",
                body="⏰ *באילו ימים נסגרות ההזמנות אצל {supplier_name}?*\n\nבחר מהאפשרויות או כתוב את הימים.",
                options=reminder_options,
            ),
            description="New cut-off weekdays for the selected supplier.",
            validator=reminders_schema,
            validation_message="❌ לא זוהו ימים תקינים. כתבו לדוגמה: ראשון, רביעי",
            callback="set_supplier_reminders",
            next_state={"ok": S.SUPPLIER_UPDATE_CUTOFF},
        ),
        S.SUPPLIER_UPDATE_CUTOFF: StateDefinition(
            prompt="🕐 *עד איזו שעה ניתן להזמין בימים אלה ({supplier_reminder_label})?*",
            description="New cut-off hour; updates the supplier.",
            validator=InputSchema(inputs.CutoffHour),
            validation_message="❌ אנא הזינו שעה בין 0 ל-23.",
            callback="apply_supplier_update",
            action=ActionType.UPDATE_SUPPLIER,
            next_state={"ok": S.IDLE},
        ),
        S.PRODUCTS_UPDATE_SELECT: StateDefinition(
            prompt=Template(
                id="products_update_select_template",
                type="list",
                body="📋 *עדכון מצבת מוצרים*\n\nבחר את הספק שאת מוצריו ברצונך לעדכן:",
                options_source="suppliers",
            ),
            description="Choose a supplier whose base quantities should change.",
            validator=_choice(),
            validation_message="❌ אנא בחר ספק מהרשימה, או כתוב \"תפריט\" לחזרה.",
            callback="select_supplier",
            next_state={"ok": S.PRODUCTS_UPDATE_PARS},
        ),
        S.PRODUCTS_UPDATE_PARS: StateDefinition(
            prompt=(
                "📦 *עדכון מצבת בסיס - {supplier_name}*\n"
                "כתבו שורה לכל מוצר שברצונכם לעדכן בפורמט:\n"
                "*[שם מוצר] - [כמות אמצע שבוע], [כמות סוף שבוע]*\n\n"
                "{products_template}"
            ),
            description="New base quantities; updates the supplier's products.",
            validator=pars_schema,
            ai_validation=AIValidation(
                instruction="עליך לבקש מהמשתמש כמויות בסיס חדשות לאמצע שבוע ולסוף שבוע עבור מוצרי הספק.",
            ),
            validation_message="❌ אנא כתבו שורה לכל מוצר בפורמט: שם - 5, 8",
            callback="set_product_pars",
            action=ActionType.UPDATE_PRODUCT,
            next_state={"ok": S.IDLE},
        ),
        # ─── Inventory snapshot ──────────────────────────────────
        S.INVENTORY_SNAPSHOT_START: StateDefinition(
            prompt=Template(
                id="snapshot_start_template",
                body="📦 *עדכון מלאי*\n\nהגיע הזמן לעדכן את מצב המלאי במסעדה. נעבור על הפריטים לפי קטגוריות.\n\nמוכנים להתחיל?",
                options=_options(("התחל עדכון מלאי", "start"), ("דחה לזמן אחר", "postpone")),
            ),
            description="Begin an inventory count.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            next_state={"start": S.INVENTORY_SNAPSHOT_CATEGORY, "postpone": S.IDLE},
        ),
        S.INVENTORY_SNAPSHOT_CATEGORY: StateDefinition(
            prompt=Template(
                id="snapshot_category_template",
                type="list",
                body="🔍 *בחר קטגוריה לעדכון מלאי*\n\nבחר את הקטגוריה שברצונך לעדכן:",
                options_source="snapshot_categories",
            ),
            description="Choose the category to count.",
            validator=_choice(),
            validation_message="❌ אנא בחר קטגוריה תקינה מהרשימה.",
            callback="select_snapshot_category",
            outcome_key=ROUTE_KEY,
            next_state={"more": S.INVENTORY_SNAPSHOT_QTY, "empty": S.INVENTORY_SNAPSHOT_EMPTY},
        ),
        S.INVENTORY_SNAPSHOT_EMPTY: StateDefinition(
            prompt=Template(
                id="snapshot_empty_template",
                body="🤷 אין מוצרים מוגדרים בקטגוריה {category_name}.",
                options=_options(("בחירת קטגוריה אחרת", "other_category"), ("חזרה לתפריט", "menu")),
            ),
            description="The chosen category has no products.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            next_state={"other_category": S.INVENTORY_SNAPSHOT_CATEGORY, "menu": S.IDLE},
        ),
        S.INVENTORY_SNAPSHOT_QTY: StateDefinition(
            prompt="📊 *כמה {product_name} יש במלאי כרגע?*\n\nהזן כמות ב{unit_label}:",
            description="Current stock of one product.",
            validator=InputSchema(inputs.Quantity),
            validation_message="❌ אנא הזן מספר תקין גדול או שווה ל-0.",
            callback="record_snapshot_qty",
            outcome_key=ROUTE_KEY,
            next_state={"more": S.INVENTORY_SNAPSHOT_QTY, "done": S.INVENTORY_SNAPSHOT_CONFIRM},
        ),
        S.INVENTORY_SNAPSHOT_CONFIRM: StateDefinition(
            prompt=Template(
                id="snapshot_confirm_template",
                body=(
                    "📋 *סיכום ספירה - {category_name}*\n\n{snapshot_summary}\n\n"
                    "לפי איזו מצבת לחשב את ההזמנה?"
                ),
                options=_options(("אמצע שבוע", "midweek"), ("סוף שבוע", "weekend"), ("ספירה מחדש", "restart")),
            ),
            description="Confirm the count and pick the base-quantity period; stores the snapshot.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="confirm_snapshot",
            action=ActionType.CREATE_INVENTORY_SNAPSHOT,
            action_tokens=("midweek", "weekend"),
            next_state={
                "midweek": S.INVENTORY_CALCULATE_SNAPSHOT,
                "weekend": S.INVENTORY_CALCULATE_SNAPSHOT,
                "restart": S.INVENTORY_SNAPSHOT_CATEGORY,
            },
        ),
        S.INVENTORY_CALCULATE_SNAPSHOT: StateDefinition(
            prompt=Template(
                id="snapshot_results_template",
                type="card",
                header="📊 סיכום מלאי והזמנה מומלצת",
                body=(
                    "✅ *עדכון המלאי הושלם!*\n\n"
                    "המערכת חישבה את ההזמנה המומלצת עבורך לפי פערי המלאי:\n\n"
                    "{shortages_summary}\n\n"
                    "האם ברצונך ליצור הזמנה לפי המלצה זו?"
                ),
                options=_options(("כן, צור הזמנה", "create_order"), ("לא תודה", "skip_order")),
            ),
            description="Show shortages and offer to create the recommended order.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="decide_snapshot_order",
            outcome_key=ROUTE_KEY,
            next_state={"create_order": S.ORDER_CONFIRMATION, "skip_order": S.IDLE},
        ),
        # ─── Orders ──────────────────────────────────────────────
        S.ORDER_SETUP_START: StateDefinition(
            prompt=Template(
                id="order_setup_template",
                type="list",
                body="🛒 *יצירת הזמנה חדשה*\n\nבחר את הספק להזמנה:",
                options_source="suppliers",
            ),
            description="Choose a supplier for a new order.",
            validator=_choice(),
            validation_message="❌ אנא בחר ספק מהרשימה, או כתוב \"תפריט\" לחזרה.",
            callback="select_order_supplier",
            next_state={"ok": S.ORDER_BUILD},
        ),
        S.ORDER_BUILD: StateDefinition(
            prompt=(
                "📝 *הזמנה מ{order_supplier_name}*\n\n"
                "המוצרים של הספק:\n{order_products_hint}\n\n"
                "כתבו את הפריטים להזמנה, שורה לכל פריט בפורמט: *שם - כמות*"
            ),
            description="Collect order lines.",
            validator=InputSchema(inputs.OrderLines, separator=r"[\n,]"),
            ai_validation=AIValidation(
                instruction="עליך לעזור למשתמש לרשום את פריטי ההזמנה מהספק: שם מוצר וכמות גדולה מאפס לכל פריט.",
            ),
            validation_message="❌ לא הצלחתי להבין את ההזמנה. כתבו שורה לכל פריט: עגבניות - 5",
            callback="set_order_items",
            next_state={"ok": S.ORDER_CONFIRMATION},
        ),
        S.ORDER_CONFIRMATION: StateDefinition(
            prompt=Template(
                id="order_confirm_template",
                body=(
                    "📋 *אישור הזמנה {order_id}*\n\n"
                    "להלן פרטי ההזמנה לספק {order_supplier_name}:\n\n{order_details}\n\n"
                    "סה\"כ פריטים: {item_count}\n\nהאם לשלוח את ההזמנה לספק?"
                ),
                options=_options(("שלח הזמנה", "send"), ("ערוך הזמנה", "edit"), ("בטל הזמנה", "cancel")),
            ),
            description="Confirm the order before it is sent to the supplier.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="confirm_order",
            action=ActionType.SEND_ORDER,
            action_tokens=("send",),
            next_state={"send": S.ORDER_SENT, "edit": S.ORDER_BUILD, "cancel": S.IDLE},
        ),
        S.ORDER_SENT: StateDefinition(
            prompt=Template(
                id="order_sent_template",
                body="✅ *ההזמנה {order_id} נשלחה לספק {order_supplier_name}!*\n\nכשהמשלוח יגיע, נבדוק אותו יחד.",
                options=_options(("📦 המשלוח הגיע", "delivery_arrived"), ("חזרה לתפריט", "menu")),
            ),
            description="Order sent; wait for the delivery.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="begin_delivery",
            next_state={"delivery_arrived": S.DELIVERY_START, "menu": S.IDLE},
        ),
        # ─── Delivery ────────────────────────────────────────────
        S.DELIVERY_START: StateDefinition(
            prompt=Template(
                id="delivery_start_template",
                body=(
                    "🚚 *קבלת משלוח מספק {delivery_supplier_name}*\n\n"
                    "נעבור על הפריטים שהוזמנו ונוודא שהכל התקבל כראוי.\n\nמוכנים להתחיל?"
                ),
                options=_options(("התחל בדיקת משלוח", "start"), ("דחה לזמן אחר", "postpone")),
            ),
            description="Begin checking a delivery.",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            next_state={"start": S.DELIVERY_CHECK_ITEM, "postpone": S.IDLE},
        ),
        S.DELIVERY_CHECK_ITEM: StateDefinition(
            prompt=Template(
                id="delivery_check_item_template",
                body="📦 *בדיקת פריט: {product_name}*\n\nכמות שהוזמנה: {ordered_qty} {unit_label}\n\nהאם התקבלה הכמות המלאה?",
                options=_options(
                    ("✅ כן, התקבל במלואו", "full"),
                    ("⚠️ התקבל חלקית", "partial"),
                    ("❌ לא התקבל כלל", "none"),
                ),
            ),
            description="Was the item received in full, partially or not at all?",
            validator=_choice(),
            validation_message=CHOOSE_OPTION,
            callback="record_delivery_check",
            outcome_key=ROUTE_KEY,
            next_state={
                "partial": S.DELIVERY_RECEIVED_AMOUNT,
                "more": S.DELIVERY_CHECK_ITEM,
                "done": S.DELIVERY_INVOICE_PHOTO,
            },
        ),
        S.DELIVERY_RECEIVED_AMOUNT: StateDefinition(
            prompt="🔢 *כמה {product_name} התקבלו בפועל?*\n\nהזן את הכמות שהתקבלה ב{unit_label}:",
            description="Actual received quantity of a partially received item.",
            validator=InputSchema(inputs.ReceivedQuantity),
            validation_message="❌ אנא הזן מספר תקין גדול או שווה ל-0 ולא גדול מהכמות שהוזמנה.",
            callback="record_received_amount",
            outcome_key=ROUTE_KEY,
            next_state={"more": S.DELIVERY_CHECK_ITEM, "done": S.DELIVERY_INVOICE_PHOTO},
        ),
        S.DELIVERY_INVOICE_PHOTO: StateDefinition(
            prompt=Template(
                id="delivery_invoice_template",
                body=(
                    "📸 *צילום חשבונית*\n\n"
                    "אנא צלם את החשבונית שקיבלת מהספק ושלח את התמונה כאן.\n\n"
                    "התמונה תישמר במערכת לצורך מעקב והתחשבנות."
                ),
                options=_options(("דלג", "skip")),
            ),
            description="Proof of receipt; logs the delivery.",
            validator=InputSchema(inputs.InvoicePhoto),
            validation_message="❌ לא התקבלה תמונה תקינה. אנא שלח תמונה של החשבונית או כתוב 'דלג'.",
            callback="set_invoice",
            action=ActionType.LOG_DELIVERY,
            input_source="media",
            next_state={"ok": S.IDLE},
        ),
    }
    return StateTable(definitions)
