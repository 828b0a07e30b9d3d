"""Bot action payloads — validated when built and again before dispatch."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ActionType(str, Enum):
    SEND_MESSAGE = "SEND_MESSAGE"
    CREATE_RESTAURANT = "CREATE_RESTAURANT"
    CREATE_SUPPLIER = "CREATE_SUPPLIER"
    UPDATE_SUPPLIER = "UPDATE_SUPPLIER"
    UPDATE_PRODUCT = "UPDATE_PRODUCT"
    CREATE_INVENTORY_SNAPSHOT = "CREATE_INVENTORY_SNAPSHOT"
    SEND_ORDER = "SEND_ORDER"
    LOG_DELIVERY = "LOG_DELIVERY"


class PayloadModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── SEND_MESSAGE ────────────────────────────────────────────────────


class TemplateOptionPayload(PayloadModel):
    id: str
    label: str


class TemplatePayload(PayloadModel):
    id: str
    type: Literal["button", "list", "text", "card"] = "button"
    body: str
    options: list[TemplateOptionPayload] = Field(default_factory=list)
    header: Optional[str] = None


class SendMessagePayload(PayloadModel):
    to: str = Field(min_length=1)
    body: Optional[str] = None
    template: Optional[TemplatePayload] = None
    message_state: str

    @property
    def text(self) -> str:
        if self.template is not None:
            return self.template.body
        return self.body or ""


# ─── Restaurant ──────────────────────────────────────────────────────


class ContactPayload(PayloadModel):
    name: str
    whatsapp: str
    email: Optional[str] = None
    role: str = "owner"


class PaymentPayload(PayloadModel):
    provider: Literal["credit_card", "trial", "coupon"]
    status: Literal["pending", "trial", "paid"]


class CreateRestaurantPayload(PayloadModel):
    legal_id: str = Field(pattern=r"^\d{9}$")
    legal_name: str = Field(min_length=2)
    name: str = Field(min_length=2)
    contacts: list[ContactPayload] = Field(min_length=1)
    payment: PaymentPayload


# ─── Suppliers & products ────────────────────────────────────────────


class ReminderPayload(PayloadModel):
    day: int = Field(ge=0, le=6)
    hour: int = Field(ge=0, le=23)


class ProductPayload(PayloadModel):
    name: str = Field(min_length=1)
    unit: str = "other"
    par_midweek: Optional[float] = Field(default=None, gt=0)
    par_weekend: Optional[float] = Field(default=None, gt=0)


class SupplierPayload(PayloadModel):
    restaurant_id: str = Field(min_length=1)
    whatsapp: str = Field(pattern=r"^05\d{8}$")
    name: str = Field(min_length=2)
    category: list[str] = Field(min_length=1)
    reminders: list[ReminderPayload] = Field(min_length=1)
    products: list[ProductPayload] = Field(min_length=1)


class UpdateProductPayload(PayloadModel):
    restaurant_id: str = Field(min_length=1)
    supplier_id: str = Field(min_length=1)
    products: list[ProductPayload] = Field(min_length=1)


# ─── Inventory, orders, delivery ─────────────────────────────────────


class SnapshotItemPayload(PayloadModel):
    name: str
    unit: str = "other"
    supplier_id: Optional[str] = None
    quantity: float = Field(ge=0)
    par: Optional[float] = None
    shortage: float = Field(default=0, ge=0)


class CreateInventorySnapshotPayload(PayloadModel):
    restaurant_id: str = Field(min_length=1)
    category: str = Field(min_length=1)
    period: Literal["midweek", "weekend"] = "midweek"
    items: list[SnapshotItemPayload] = Field(min_length=1)


class OrderItemPayload(PayloadModel):
    name: str
    unit: str = "other"
    quantity: float = Field(gt=0)


class SendOrderPayload(PayloadModel):
    order_id: str = Field(min_length=1)
    restaurant_id: str = Field(min_length=1)
    supplier_id: str = Field(min_length=1)
    supplier_name: Optional[str] = None
    items: list[OrderItemPayload] = Field(min_length=1)


class DeliveryItemPayload(PayloadModel):
    name: str
    unit: str = "other"
    ordered: float = Field(ge=0)
    received: float = Field(ge=0)


class LogDeliveryPayload(PayloadModel):
    order_id: str = Field(min_length=1)
    items: list[DeliveryItemPayload] = Field(min_length=1)
    invoice_url: Optional[str] = None


PAYLOAD_SCHEMAS: dict[ActionType, type[PayloadModel]] = {
    ActionType.SEND_MESSAGE: SendMessagePayload,
    ActionType.CREATE_RESTAURANT: CreateRestaurantPayload,
    ActionType.CREATE_SUPPLIER: SupplierPayload,
    ActionType.UPDATE_SUPPLIER: SupplierPayload,
    ActionType.UPDATE_PRODUCT: UpdateProductPayload,
    ActionType.CREATE_INVENTORY_SNAPSHOT: CreateInventorySnapshotPayload,
    ActionType.SEND_ORDER: SendOrderPayload,
    ActionType.LOG_DELIVERY: LogDeliveryPayload,
}


class BotAction(BaseModel):
    """A single side effect emitted by the reducer."""

    type: ActionType
    payload: dict[str, Any]

    def parse_payload(self) -> PayloadModel:
        """Validate the payload against the schema of its action type."""
        return PAYLOAD_SCHEMAS[self.type].model_validate(self.payload)
