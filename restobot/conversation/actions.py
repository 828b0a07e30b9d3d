"""Build action payloads from the conversation context."""

from __future__ import annotations

from typing import Any, Callable

from pydantic import ValidationError

from restobot.conversation.bot_config import BotConfig
from restobot.errors import ActionBuildError
from restobot.schemas.actions import (
    PAYLOAD_SCHEMAS,
    ActionType,
    BotAction,
    SendMessagePayload,
)


def _require(action_type: ActionType, context: dict, *keys: str) -> None:
    missing = [key for key in keys if context.get(key) in (None, "", [])]
    if missing:
        raise ActionBuildError(action_type.value, f"missing context keys: {', '.join(missing)}")


def _restaurant(context: dict, config: BotConfig) -> dict:
    _require(
        ActionType.CREATE_RESTAURANT,
        context,
        "legal_id",
        "company_name",
        "restaurant_name",
        "contact_name",
        "contact_number",
        "payment_method",
    )
    method = context["payment_method"]
    return {
        "legal_id": context["legal_id"],
        "legal_name": context["company_name"],
        "name": context["restaurant_name"],
        "contacts": [
            {
                "name": context["contact_name"],
                "whatsapp": context["contact_number"],
                "email": context.get("contact_email"),
                "role": "owner",
            }
        ],
        "payment": {
            "provider": method,
            "status": "pending" if method == "credit_card" else "trial",
        },
    }


def _supplier(action_type: ActionType) -> Callable[[dict, BotConfig], dict]:
    def build(context: dict, config: BotConfig) -> dict:
        _require(
            action_type,
            context,
            "restaurant_id",
            "supplier_whatsapp",
            "supplier_name",
            "supplier_categories",
            "supplier_reminder_days",
            "supplier_cutoff_hour",
            "supplier_products",
        )
        hour = context["supplier_cutoff_hour"]
        return {
            "restaurant_id": context["restaurant_id"],
            "whatsapp": context["supplier_whatsapp"],
            "name": context["supplier_name"],
            "category": list(context["supplier_categories"]),
            "reminders": [{"day": day, "hour": hour} for day in context["supplier_reminder_days"]],
            "products": list(context["supplier_products"]),
        }

    return build


def _products(context: dict, config: BotConfig) -> dict:
    _require(ActionType.UPDATE_PRODUCT, context, "restaurant_id", "supplier_whatsapp", "supplier_products")
    return {
        "restaurant_id": context["restaurant_id"],
        "supplier_id": context["supplier_whatsapp"],
        "products": list(context["supplier_products"]),
    }


def _snapshot(context: dict, config: BotConfig) -> dict:
    _require(
        ActionType.CREATE_INVENTORY_SNAPSHOT,
        context,
        "restaurant_id",
        "snapshot_category",
        "snapshot_period",
        "snapshot_items",
    )
    return {
        "restaurant_id": context["restaurant_id"],
        "category": context["snapshot_category"],
        "period": context["snapshot_period"],
        "items": [
            {
                "name": item["name"],
                "unit": item.get("unit", config.default_unit),
                "supplier_id": item.get("supplier_id"),
                "quantity": item["quantity"],
                "par": item.get("par"),
                "shortage": item.get("shortage", 0),
            }
            for item in context["snapshot_items"]
        ],
    }


def _order(context: dict, config: BotConfig) -> dict:
    _require(ActionType.SEND_ORDER, context, "order_id", "restaurant_id", "order_supplier_id", "order_items")
    return {
        "order_id": context["order_id"],
        "restaurant_id": context["restaurant_id"],
        "supplier_id": context["order_supplier_id"],
        "supplier_name": context.get("order_supplier_name"),
        "items": list(context["order_items"]),
    }


def _delivery(context: dict, config: BotConfig) -> dict:
    _require(ActionType.LOG_DELIVERY, context, "delivery_order_id", "delivery_items")
    return {
        "order_id": context["delivery_order_id"],
        "items": list(context["delivery_items"]),
        "invoice_url": context.get("delivery_invoice_url"),
    }


BUILDERS: dict[ActionType, Callable[[dict, BotConfig], dict]] = {
    ActionType.CREATE_RESTAURANT: _restaurant,
    ActionType.CREATE_SUPPLIER: _supplier(ActionType.CREATE_SUPPLIER),
    ActionType.UPDATE_SUPPLIER: _supplier(ActionType.UPDATE_SUPPLIER),
    ActionType.UPDATE_PRODUCT: _products,
    ActionType.CREATE_INVENTORY_SNAPSHOT: _snapshot,
    ActionType.SEND_ORDER: _order,
    ActionType.LOG_DELIVERY: _delivery,
}


def build_action(action_type: ActionType, context: dict, config: BotConfig) -> BotAction:
    """Build and validate the payload of a state's declared action.

    Raises:
        ActionBuildError: required context is missing or the payload
            does not match its schema.
    """
    builder = BUILDERS.get(action_type)
    if builder is None:
        raise ActionBuildError(action_type.value, "no builder for action type")
    raw: Any = builder(context, config)
    try:
        payload = PAYLOAD_SCHEMAS[action_type].model_validate(raw)
    except ValidationError as exc:
        raise ActionBuildError(action_type.value, str(exc)) from exc
    return BotAction(type=action_type, payload=payload.model_dump(mode="json"))


def send_message_action(payload: SendMessagePayload) -> BotAction:
    return BotAction(type=ActionType.SEND_MESSAGE, payload=payload.model_dump(mode="json"))


def text_message(to: str, body: str, message_state: str) -> BotAction:
    return send_message_action(SendMessagePayload(to=to, body=body, message_state=message_state))
