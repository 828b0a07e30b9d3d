"""Conversation records stored in Redis."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BotState(str, Enum):
    """FSM states of the restaurant conversation.

    Order: init → onboarding → payment → supplier setup → idle, then the
    maintenance, inventory, order and delivery loops that return to idle.
    """

    INIT = "INIT"

    # Onboarding
    ONBOARDING_COMPANY_NAME = "ONBOARDING_COMPANY_NAME"
    ONBOARDING_LEGAL_ID = "ONBOARDING_LEGAL_ID"
    ONBOARDING_RESTAURANT_NAME = "ONBOARDING_RESTAURANT_NAME"
    ONBOARDING_CONTACT_NAME = "ONBOARDING_CONTACT_NAME"
    ONBOARDING_CONTACT_EMAIL = "ONBOARDING_CONTACT_EMAIL"
    ONBOARDING_PAYMENT_METHOD = "ONBOARDING_PAYMENT_METHOD"
    ONBOARDING_SIMULATOR = "ONBOARDING_SIMULATOR"

    # Payment wait
    WAITING_FOR_PAYMENT = "WAITING_FOR_PAYMENT"

    # Supplier setup
    SETUP_SUPPLIERS_START = "SETUP_SUPPLIERS_START"
    SUPPLIER_CATEGORY = "SUPPLIER_CATEGORY"
    SUPPLIER_CONTACT = "SUPPLIER_CONTACT"
    SUPPLIER_REMINDERS = "SUPPLIER_REMINDERS"
    SUPPLIER_CUTOFF_HOUR = "SUPPLIER_CUTOFF_HOUR"

    # Product setup
    PRODUCTS_LIST = "PRODUCTS_LIST"
    PRODUCTS_BASE_QTY = "PRODUCTS_BASE_QTY"
    SETUP_SUPPLIERS_ADDITIONAL = "SETUP_SUPPLIERS_ADDITIONAL"
    RESTAURANT_FINISHED = "RESTAURANT_FINISHED"

    # Idle
    IDLE = "IDLE"
    HELP = "HELP"

    # Supplier / product maintenance
    SUPPLIER_UPDATE_SELECT = "SUPPLIER_UPDATE_SELECT"
    SUPPLIER_UPDATE_REMINDERS = "SUPPLIER_UPDATE_REMINDERS"
    SUPPLIER_UPDATE_CUTOFF = "SUPPLIER_UPDATE_CUTOFF"
    PRODUCTS_UPDATE_SELECT = "PRODUCTS_UPDATE_SELECT"
    PRODUCTS_UPDATE_PARS = "PRODUCTS_UPDATE_PARS"

    # Inventory snapshot
    INVENTORY_SNAPSHOT_START = "INVENTORY_SNAPSHOT_START"
    INVENTORY_SNAPSHOT_CATEGORY = "INVENTORY_SNAPSHOT_CATEGORY"
    INVENTORY_SNAPSHOT_EMPTY = "INVENTORY_SNAPSHOT_EMPTY"
    INVENTORY_SNAPSHOT_QTY = "INVENTORY_SNAPSHOT_QTY"
    INVENTORY_SNAPSHOT_CONFIRM = "INVENTORY_SNAPSHOT_CONFIRM"
    INVENTORY_CALCULATE_SNAPSHOT = "INVENTORY_CALCULATE_SNAPSHOT"

    # Orders
    ORDER_SETUP_START = "ORDER_SETUP_START"
    ORDER_BUILD = "ORDER_BUILD"
    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    ORDER_SENT = "ORDER_SENT"

    # Delivery
    DELIVERY_START = "DELIVERY_START"
    DELIVERY_CHECK_ITEM = "DELIVERY_CHECK_ITEM"
    DELIVERY_RECEIVED_AMOUNT = "DELIVERY_RECEIVED_AMOUNT"
    DELIVERY_INVOICE_PHOTO = "DELIVERY_INVOICE_PHOTO"


# States where the "menu" escape is ignored: the restaurant is not registered yet.
ONBOARDING_STATES = frozenset(
    {
        BotState.INIT,
        BotState.ONBOARDING_COMPANY_NAME,
        BotState.ONBOARDING_LEGAL_ID,
        BotState.ONBOARDING_RESTAURANT_NAME,
        BotState.ONBOARDING_CONTACT_NAME,
        BotState.ONBOARDING_CONTACT_EMAIL,
        BotState.ONBOARDING_PAYMENT_METHOD,
        BotState.ONBOARDING_SIMULATOR,
        BotState.WAITING_FOR_PAYMENT,
    }
)


class ConversationRecord(BaseModel):
    """Full conversation document persisted per phone number.

    ``current_state`` is kept as a plain string so that a value written by
    an older deployment can be loaded and recovered instead of failing.
    """

    current_state: str = BotState.INIT.value
    context: dict[str, Any] = Field(default_factory=dict)
    last_message_timestamp: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MessageEntry(BaseModel):
    """One entry of the append-only conversation log."""

    role: Literal["user", "assistant"]
    body: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    message_state: str
    template_id: Optional[str] = None
    has_template: bool = False
    media_url: Optional[str] = None


class InboundMessage(BaseModel):
    """Normalized inbound message handed to the engine."""

    sender: str  # local phone number, e.g. "0501234567"
    body: str = ""
    media_url: Optional[str] = None
    simulated: bool = False
