"""Input types accepted by conversation states.

Every state that validates its input declares one of these types. They are
plain pydantic types, so the same declaration serves the deterministic
parser and the JSON schema handed to the extraction backend.

Validators read three things from the pydantic validation context:
    config        — the BotConfig in use
    conversation  — the conversation context (read-only here)
    options       — the options rendered with the state's prompt
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Optional, Sequence

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    Field,
    StringConstraints,
    ValidationInfo,
    model_validator,
)

from restobot.conversation.bot_config import BotConfig, get_bot_config
from restobot.whatsapp.phone import to_local

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
URL_RE = re.compile(r"^https?://\S+$")
NUMBER_RE = re.compile(r"^[-+]?\d+(?:\.\d+)?$")
PHONE_IN_TEXT = re.compile(r"(?:\+?972[\s-]?|0)5\d(?:[\s-]?\d){7}")
EVERY_DAY = {"כל יום", "כל הימים", "every day", "daily"}


# ─── Validation context helpers ──────────────────────────────────────


def _config(info: ValidationInfo) -> BotConfig:
    return (info.context or {}).get("config") or get_bot_config()


def _conversation(info: ValidationInfo) -> dict:
    return (info.context or {}).get("conversation") or {}


def _options(info: ValidationInfo) -> Sequence[Any]:
    return (info.context or {}).get("options") or ()


def lookup_option(token: str, options: Sequence[Any], allow_index: bool = True) -> Optional[str]:
    """Match text against option ids, labels and (optionally) 1-based positions."""
    text = token.strip().casefold()
    if not text:
        return None
    for option in options:
        if text in (option.id.casefold(), option.label.strip().casefold()):
            return option.id
    if allow_index and text.isdigit() and 1 <= int(text) <= len(options):
        return options[int(text) - 1].id
    return None


def resolve_unit(token: str, config: BotConfig) -> Optional[str]:
    """Map a unit spelling (id, Hebrew label or alias) to a unit id."""
    text = token.strip().strip("()[]*.").casefold()
    if not text:
        return None
    for unit_id, label in config.units:
        if text in (unit_id.casefold(), label.casefold()):
            return unit_id
    for alias, unit_id in config.unit_aliases:
        if text == alias.casefold():
            return unit_id
    return None


def _parse_number(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not NUMBER_RE.match(text):
            raise ValueError("expected a number")
        return float(text)
    return value


def _match_product(name: str, products: Sequence[dict]) -> Optional[dict]:
    wanted = name.strip().casefold()
    for product in products:
        if str(product.get("name", "")).strip().casefold() == wanted:
            return product
    return None


# ─── Choices ─────────────────────────────────────────────────────────


def _choose_option(value: str, info: ValidationInfo) -> str:
    choice = lookup_option(value, _options(info))
    if choice is None:
        raise ValueError("not one of the offered options")
    return choice


OptionChoice = Annotated[str, AfterValidator(_choose_option)]


def _match_coupon(value: Any, info: ValidationInfo) -> bool:
    coupon = _config(info).skip_payment_coupon
    if isinstance(value, str) and value.strip().casefold() == coupon.casefold():
        return True
    raise ValueError("payment not confirmed yet")


SkipPaymentCoupon = Annotated[bool, BeforeValidator(_match_coupon)]


# ─── Onboarding fields ───────────────────────────────────────────────


def _digits_only(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str):
        return re.sub(r"[\s\-]", "", value)
    return value


LegalId = Annotated[str, StringConstraints(pattern=r"^\d{9}$"), BeforeValidator(_digits_only)]
LegalName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=200)]
PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]


def _email_or_skip(value: str, info: ValidationInfo) -> str:
    text = value.strip()
    skip_words = {word.casefold() for word in _config(info).skip_words}
    if text.casefold() in skip_words or lookup_option(text, _options(info)) == "skip":
        return "skip"
    if not EMAIL_RE.match(text):
        raise ValueError("invalid email address")
    return text.lower()


EmailOrSkip = Annotated[str, AfterValidator(_email_or_skip)]


def _phone(value: Any) -> Any:
    if isinstance(value, str):
        return to_local(value)
    return value


WhatsAppNumber = Annotated[str, StringConstraints(pattern=r"^05\d{8}$"), BeforeValidator(_phone)]


# ─── Supplier fields ─────────────────────────────────────────────────


def _category_id(text: str, config: BotConfig) -> Optional[str]:
    lowered = text.casefold()
    for category in config.categories:
        if lowered in (category.id.casefold(), category.name.casefold(), category.label.casefold()):
            return category.id
    return None


def _parse_categories(value: Any, info: ValidationInfo) -> list[str]:
    config = _config(info)
    options = _options(info)
    tokens = value if isinstance(value, list) else re.split(r"[,\n]+", str(value))
    result: list[str] = []
    for token in tokens:
        text = str(token).strip()
        if not text:
            continue
        category_id = lookup_option(text, options) or _category_id(text, config)
        if category_id is None:
            raise ValueError(f"unknown category: {text}")
        if category_id not in result:
            result.append(category_id)
    if not result:
        raise ValueError("choose at least one category")
    return result


SupplierCategories = Annotated[list[str], BeforeValidator(_parse_categories)]


def _weekday_index(part: str, config: BotConfig) -> Optional[int]:
    text = part.strip().casefold()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    candidates = [text]
    if text.startswith("ו") and len(text) > 1:
        candidates.append(text[1:])
    for candidate in candidates:
        if candidate in config.weekdays:
            return config.weekdays.index(candidate)
        if candidate[:3] in config.weekday_aliases:
            return config.weekday_aliases.index(candidate[:3])
    return None


def _parse_weekdays(value: Any, info: ValidationInfo) -> list[int]:
    """Option ids ("0,4"), option labels or positions, or free "day,day" text.

    A lone number is a menu position, as on every other numbered menu; day
    numbers are read only from lists such as "1,3".
    """
    config = _config(info)
    tokens = value if isinstance(value, list) else [value]
    days: set[int] = set()
    for token in tokens:
        if isinstance(token, int) and not isinstance(token, bool):
            days.add(token)
            continue
        text = str(token).strip()
        if text.casefold() in EVERY_DAY:
            days.update(range(7))
            continue
        choice = lookup_option(text, _options(info), allow_index=len(tokens) == 1)
        if choice is not None:
            text = choice
        for part in re.split(r"[,\s/]+", text):
            day = _weekday_index(part, config)
            if day is not None:
                days.add(day)
    valid = sorted(day for day in days if 0 <= day <= 6)
    if not valid:
        raise ValueError("no valid weekday")
    return valid


Weekdays = Annotated[list[int], BeforeValidator(_parse_weekdays)]


def _parse_hour(value: Any) -> Any:
    if isinstance(value, str):
        match = re.search(r"\d{1,2}", value)
        if match is None:
            raise ValueError("expected an hour between 0 and 23")
        return int(match.group(0))
    return value


CutoffHour = Annotated[int, Field(ge=0, le=23), BeforeValidator(_parse_hour)]


class SupplierCategorySelection(BaseModel):
    category: SupplierCategories


class SupplierContact(BaseModel):
    name: PersonName
    whatsapp: WhatsAppNumber

    @model_validator(mode="before")
    @classmethod
    def _split_inline_number(cls, data: Any) -> Any:
        # "ירקות השדה 0501234567" arrives as a single name field
        if isinstance(data, dict) and not data.get("whatsapp") and isinstance(data.get("name"), str):
            match = PHONE_IN_TEXT.search(data["name"])
            if match:
                name = (data["name"][: match.start()] + data["name"][match.end():]).strip(" ,-:")
                return {"name": name, "whatsapp": match.group(0)}
        return data


# ─── Products ────────────────────────────────────────────────────────


def _normalize_unit(value: Any, info: ValidationInfo) -> Any:
    config = _config(info)
    if value is None:
        return config.default_unit
    if isinstance(value, str):
        return resolve_unit(value, config) or config.default_unit
    return value


UnitId = Annotated[str, BeforeValidator(_normalize_unit)]
ProductName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]

_PAREN_UNIT = re.compile(r"^(?P<name>.+?)\s*\((?P<unit>[^)]*)\)\s*$")
_SEP_UNIT = re.compile(r"^(?P<name>.+?)\s*[-:]\s*(?P<unit>[^\d\s][^\d]*)$")


def _split_name_unit(text: str, config: BotConfig) -> tuple[str, Optional[str]]:
    """Split "name (unit)", "name - unit" or "name unit" into parts."""
    text = text.strip().strip("*")
    for pattern in (_PAREN_UNIT, _SEP_UNIT):
        match = pattern.match(text)
        if match and resolve_unit(match.group("unit"), config):
            return match.group("name").strip(), resolve_unit(match.group("unit"), config)
    head, _, tail = text.rpartition(" ")
    if head and resolve_unit(tail, config):
        return head.strip(), resolve_unit(tail, config)
    return text, None


class ProductEntry(BaseModel):
    name: ProductName
    unit: UnitId = "other"

    @model_validator(mode="before")
    @classmethod
    def _from_text(cls, data: Any, info: ValidationInfo) -> Any:
        if isinstance(data, str):
            name, unit = _split_name_unit(data, _config(info))
            return {"name": name, "unit": unit}
        return data


_PAR_LINE = re.compile(
    r"^(?P<name>.+?)\s*[-–:]\s*(?P<mid>\d+(?:\.\d+)?)\s*(?:[,/]\s*|\s+)(?P<weekend>\d+(?:\.\d+)?)\s*$"
)
_SINGLE_PAR_LINE = re.compile(r"^(?P<name>.+?)\s*[-–:]\s*(?P<mid>\d+(?:\.\d+)?)\s*$")


class ProductPar(BaseModel):
    """Base quantity of one product: "name - midweek, weekend"."""

    name: ProductName
    unit: UnitId = "other"
    par_midweek: Annotated[float, Field(gt=0), BeforeValidator(_parse_number)]
    par_weekend: Annotated[float, Field(gt=0), BeforeValidator(_parse_number)]

    @model_validator(mode="before")
    @classmethod
    def _from_text(cls, data: Any, info: ValidationInfo) -> Any:
        if not isinstance(data, str):
            return data
        text = data.strip().replace("*", "")
        match = _PAR_LINE.match(text)
        if match:
            midweek, weekend = match.group("mid"), match.group("weekend")
        else:
            match = _SINGLE_PAR_LINE.match(text)
            if match is None:
                raise ValueError(f"expected 'name - midweek, weekend', got: {text}")
            midweek = weekend = match.group("mid")
        name, unit = _split_name_unit(match.group("name"), _config(info))
        return {"name": name, "unit": unit, "par_midweek": midweek, "par_weekend": weekend}

    @model_validator(mode="after")
    def _known_product(self, info: ValidationInfo) -> "ProductPar":
        products = _conversation(info).get("supplier_products") or []
        if products:
            product = _match_product(self.name, products)
            if product is None:
                raise ValueError(f"unknown product: {self.name}")
            self.name = product["name"]
            self.unit = product.get("unit") or self.unit
        return self


ProductPars = Annotated[list[ProductPar], Field(min_length=1)]


_ORDER_LINE = re.compile(
    r"^(?P<name>.*?\D)\s*[-–:xX×]?\s*(?P<qty>\d+(?:\.\d+)?)\s*(?P<unit>[^\d]*)$"
)
_ORDER_LINE_QTY_FIRST = re.compile(r"^(?P<qty>\d+(?:\.\d+)?)\s*(?P<name>\D.*)$")


class OrderLine(BaseModel):
    """One order row: "name - quantity"."""

    name: ProductName
    unit: UnitId = "other"
    quantity: Annotated[float, Field(gt=0), BeforeValidator(_parse_number)]

    @model_validator(mode="before")
    @classmethod
    def _from_text(cls, data: Any, info: ValidationInfo) -> Any:
        if not isinstance(data, str):
            return data
        text = data.strip()
        match = _ORDER_LINE.match(text)
        if match:
            unit = resolve_unit(match.group("unit"), _config(info)) if match.group("unit").strip() else None
            return {"name": match.group("name").strip(" -–:"), "quantity": match.group("qty"), "unit": unit}
        match = _ORDER_LINE_QTY_FIRST.match(text)
        if match:
            name, unit = _split_name_unit(match.group("name"), _config(info))
            return {"name": name, "quantity": match.group("qty"), "unit": unit}
        raise ValueError(f"expected 'name - quantity', got: {text}")

    @model_validator(mode="after")
    def _unit_from_catalogue(self, info: ValidationInfo) -> "OrderLine":
        product = _match_product(self.name, _conversation(info).get("order_products") or [])
        if product is not None:
            self.name = product["name"]
            if self.unit == _config(info).default_unit:
                self.unit = product.get("unit") or self.unit
        return self


OrderLines = Annotated[list[OrderLine], Field(min_length=1)]


# ─── Inventory & delivery ────────────────────────────────────────────


Quantity = Annotated[float, Field(ge=0), BeforeValidator(_parse_number)]


def _within_ordered(value: float, info: ValidationInfo) -> float:
    ordered = _conversation(info).get("ordered_qty")
    if ordered is not None and value > float(ordered):
        raise ValueError("received quantity exceeds the ordered quantity")
    return value


ReceivedQuantity = Annotated[
    float, Field(ge=0), BeforeValidator(_parse_number), AfterValidator(_within_ordered)
]


def _invoice_or_skip(value: str, info: ValidationInfo) -> str:
    text = value.strip()
    skip_words = {word.casefold() for word in _config(info).skip_words}
    if text.casefold() in skip_words or lookup_option(text, _options(info)) == "skip":
        return "skip"
    if URL_RE.match(text):
        return text
    raise ValueError("expected an invoice photo")


InvoicePhoto = Annotated[str, AfterValidator(_invoice_or_skip)]
