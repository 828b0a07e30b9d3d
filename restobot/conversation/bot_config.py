"""Bot behaviour constants — catalogue, texts and commands.

Built once at startup and passed explicitly to the state table builder,
the validators and the reducer. Tests construct alternate instances
with ``BotConfig(...)`` or ``config.model_copy(update=...)``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Category(BaseModel):
    """Supplier / product category."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    emoji: str

    @property
    def label(self) -> str:
        return f"{self.emoji} {self.name}"


class ReminderPreset(BaseModel):
    """Predefined cut-off schedule offered as a menu option."""

    model_config = ConfigDict(frozen=True)

    label: str
    days: tuple[int, ...]

    @property
    def id(self) -> str:
        return ",".join(str(day) for day in self.days)


class DemoRestaurant(BaseModel):
    """Prefilled registration used by the quick simulator flow."""

    model_config = ConfigDict(frozen=True)

    legal_id: str
    restaurant_name: str
    contact_name: str
    contact_email: str


DEFAULT_CATEGORIES = (
    Category(id="vegetables", name="ירקות", emoji="🥬"),
    Category(id="fruits", name="פירות", emoji="🍎"),
    Category(id="meats", name="בשרים", emoji="🥩"),
    Category(id="fish", name="דגים", emoji="🐟"),
    Category(id="dairy", name="מוצרי חלב", emoji="🥛"),
    Category(id="alcohol", name="אלכוהול", emoji="🍷"),
    Category(id="eggs", name="ביצים", emoji="🥚"),
    Category(id="oliveOil", name="שמן זית", emoji="🫒"),
    Category(id="disposables", name="חד פעמי", emoji="🥤"),
    Category(id="desserts", name="קינוחים", emoji="🍰"),
    Category(id="juices", name="מיצים טבעיים", emoji="🧃"),
)

# unit id -> Hebrew display label
DEFAULT_UNITS = (
    ("kg", 'ק"ג'),
    ("g", "גרם"),
    ("l", "ליטר"),
    ("ml", "מיליליטר"),
    ("mg", "מיליגרם"),
    ("pcs", "יחידות"),
    ("box", "ארגז"),
    ("bag", "שק"),
    ("bottle", "בקבוק"),
    ("can", "פחית"),
    ("packet", "חבילה"),
    ("other", "אחר"),
)

# Sunday-first, index == weekday number used in reminders
DEFAULT_WEEKDAYS = ("ראשון", "שני", "שלישי", "רביעי", "חמישי", "שישי", "שבת")
DEFAULT_WEEKDAY_ALIASES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

DEFAULT_DEMO_RESTAURANTS = (
    DemoRestaurant(legal_id="123456789", restaurant_name="פיצה דליברו", contact_name="ישראל ישראלי", contact_email="israel@example.com"),
    DemoRestaurant(legal_id="987654321", restaurant_name="סושי אקספרס", contact_name="יוסי כהן", contact_email="yossi@example.com"),
    DemoRestaurant(legal_id="456789123", restaurant_name="המבורגר גולד", contact_name="מיכל לוי", contact_email="michal@example.com"),
    DemoRestaurant(legal_id="321654987", restaurant_name="טאפאס ספרדי", contact_name="דודו בן דוד", contact_email="dudu@example.com"),
    DemoRestaurant(legal_id="159753486", restaurant_name="פסטה פרש", contact_name="רונית ישראלי", contact_email="ronit@example.com"),
    DemoRestaurant(legal_id="753159486", restaurant_name="סלטים בריאים", contact_name="אורן כהן", contact_email="oren@example.com"),
    DemoRestaurant(legal_id="951753486", restaurant_name="בשרים על האש", contact_name="רוני לוי", contact_email="roni@example.com"),
    DemoRestaurant(legal_id="852963741", restaurant_name="קינוחים מתוקים", contact_name="טליה ישראלי", contact_email="talya@example.com"),
)


class BotConfig(BaseModel):
    """Immutable bot configuration."""

    model_config = ConfigDict(frozen=True)

    categories: tuple[Category, ...] = DEFAULT_CATEGORIES
    units: tuple[tuple[str, str], ...] = DEFAULT_UNITS
    # free-text spellings -> unit id
    unit_aliases: tuple[tuple[str, str], ...] = (
        ("קג", "kg"),
        ("קילו", "kg"),
        ("קילוגרם", "kg"),
        ("גר", "g"),
        ("ל", "l"),
        ("מל", "ml"),
        ("יח'", "pcs"),
        ("יח", "pcs"),
        ("יחידה", "pcs"),
        ("ארגזים", "box"),
        ("קופסה", "box"),
        ("שקים", "bag"),
        ("בקבוקים", "bottle"),
        ("פחיות", "can"),
        ("חבילות", "packet"),
    )
    default_unit: str = "other"
    weekdays: tuple[str, ...] = DEFAULT_WEEKDAYS
    weekday_aliases: tuple[str, ...] = DEFAULT_WEEKDAY_ALIASES
    reminder_presets: tuple[ReminderPreset, ...] = (
        ReminderPreset(label="ראשון וחמישי", days=(0, 4)),
        ReminderPreset(label="שני ושישי", days=(1, 5)),
        ReminderPreset(label="כל יום", days=(0, 1, 2, 3, 4, 5, 6)),
    )
    demo_restaurants: tuple[DemoRestaurant, ...] = DEFAULT_DEMO_RESTAURANTS

    # Payment
    payment_link: str = "https://payment.example.com/restaurant/"
    skip_payment_coupon: str = "try14"

    # Escape commands, matched case-insensitively on the whole message
    reset_commands: tuple[str, ...] = ("reset_pivot", "/reset")
    menu_commands: tuple[str, ...] = ("menu", "תפריט", "תפריט ראשי")
    skip_words: tuple[str, ...] = ("skip", "דלג")

    # Context keys that survive a recovery reset
    sticky_context_keys: tuple[str, ...] = (
        "contact_number",
        "contact_name",
        "restaurant_name",
        "restaurant_id",
        "legal_id",
        "suppliers_list",
    )

    # Generic texts
    generic_validation_message: str = "❌ לא הצלחתי להבין את התשובה. אנא נסו שוב."
    system_error_message: str = (
        "⚠️ *שגיאה במערכת*\n\n"
        "נראה שיש בעיה במערכת. אנא נסה שוב מאוחר יותר או פנה לתמיכה."
    )
    action_error_message: str = (
        "😕 מצטערים, משהו השתבש בשמירת הנתונים. הצוות שלנו עודכן. "
        "כתבו \"תפריט\" כדי לחזור לתפריט הראשי."
    )

    # Structured extraction
    ai_history_limit: int = 8
    # Shown with the extracted data; {summary} is what the user approves
    approval_message: str = (
        "✅ אנא אשר את הפרטים הבאים לפני ההמשך:\n\n"
        "{summary}\n\n"
        "*במידה ויש צורך בתיקונים או תוספות, יש לכתוב הודעה עם ההערות המתאימות.*"
    )
    approval_confirm_id: str = "user_confirmed"
    approval_confirm_label: str = "✅ אישור"

    def category(self, category_id: str) -> Optional[Category]:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def category_label(self, category_id: str) -> str:
        category = self.category(category_id)
        return category.label if category else category_id

    def unit_label(self, unit: str) -> str:
        return dict(self.units).get(unit, unit)

    def demo_restaurant_for(self, phone: str) -> DemoRestaurant:
        """Pick a demo restaurant deterministically from the phone number."""
        digits = "".join(ch for ch in phone if ch.isdigit()) or "0"
        return self.demo_restaurants[int(digits) % len(self.demo_restaurants)]


@lru_cache
def get_bot_config() -> BotConfig:
    """Process-wide configuration, built on first use."""
    return BotConfig()
