"""Context callbacks and dynamic option sources referenced by the state table.

A callback folds validated data into the conversation context:
``callback(context, data, config) -> None``. Callbacks only touch the dict
they receive; the reducer hands them a private copy.

Callbacks that branch write a routing token under ``ROUTE_KEY``; states
that declare ``outcome_key=ROUTE_KEY`` pick the next state from it.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from restobot.conversation.bot_config import BotConfig

Callback = Callable[[dict, Any, BotConfig], None]
OptionSource = Callable[[dict, BotConfig], list[tuple[str, str]]]

ROUTE_KEY = "route"
# Model-extracted data waiting for the user's approval button.
PENDING_APPROVAL_KEY = "pending_approval"

# Per-flow scratch keys dropped when the user is back at the main menu.
TRANSIENT_PREFIXES = ("supplier_", "selected_supplier", "snapshot_", "order_", "delivery_")
TRANSIENT_KEYS = frozenset(
    {
        "products_template",
        "product_name",
        "unit_label",
        "ordered_qty",
        "category_name",
        "shortages_summary",
        "item_count",
        ROUTE_KEY,
        PENDING_APPROVAL_KEY,
    }
)


def format_quantity(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _products_template(products: list[dict], config: BotConfig) -> str:
    return "\n".join(
        f"{product['name']} ({config.unit_label(product.get('unit', config.default_unit))}) - "
        for product in products
    )


def _find_supplier(context: dict, supplier_id: str) -> Optional[dict]:
    for supplier in context.get("suppliers_list") or []:
        if supplier.get("id") == supplier_id:
            return supplier
    return None


# ─── Onboarding ──────────────────────────────────────────────────────


def set_company_name(context: dict, data: Any, config: BotConfig) -> None:
    context["company_name"] = data


def set_legal_id(context: dict, data: Any, config: BotConfig) -> None:
    context["legal_id"] = data
    context["restaurant_id"] = data


def set_restaurant_name(context: dict, data: Any, config: BotConfig) -> None:
    context["restaurant_name"] = data


def set_contact_name(context: dict, data: Any, config: BotConfig) -> None:
    context["contact_name"] = data


def set_contact_email(context: dict, data: Any, config: BotConfig) -> None:
    if data and data != "skip":
        context["contact_email"] = data


def prefill_demo_restaurant(context: dict, data: Any, config: BotConfig) -> None:
    if data != "start_simulator":
        return
    demo = config.demo_restaurant_for(context.get("contact_number", ""))
    context.update(
        company_name=demo.restaurant_name,
        legal_id=demo.legal_id,
        restaurant_id=demo.legal_id,
        restaurant_name=demo.restaurant_name,
        contact_name=demo.contact_name,
        contact_email=demo.contact_email,
        is_simulator=True,
    )


def set_payment_method(context: dict, data: Any, config: BotConfig) -> None:
    context["payment_method"] = data
    if data == "credit_card":
        context["payment_link"] = f"{config.payment_link}{context.get('legal_id', '')}"


def confirm_payment(context: dict, data: Any, config: BotConfig) -> None:
    context["payment_confirmed"] = True


# ─── Supplier setup ──────────────────────────────────────────────────


def set_supplier_categories(context: dict, data: Any, config: BotConfig) -> None:
    context["supplier_categories"] = list(data["category"])


def set_supplier_contact(context: dict, data: Any, config: BotConfig) -> None:
    context["supplier_name"] = data["name"]
    context["supplier_whatsapp"] = data["whatsapp"]


def set_supplier_reminders(context: dict, data: Any, config: BotConfig) -> None:
    context["supplier_reminder_days"] = list(data)
    context["supplier_reminder_label"] = ", ".join(config.weekdays[day] for day in data)


def set_supplier_cutoff(context: dict, data: Any, config: BotConfig) -> None:
    context["supplier_cutoff_hour"] = data


def set_supplier_products(context: dict, data: Any, config: BotConfig) -> None:
    products = [{"name": item["name"], "unit": item["unit"]} for item in data]
    context["supplier_products"] = products
    context["products_template"] = _products_template(products, config)


def set_product_pars(context: dict, data: Any, config: BotConfig) -> None:
    pars = {item["name"].casefold(): item for item in data}
    existing = context.get("supplier_products") or []
    merged: list[dict] = []
    for product in existing:
        row = pars.pop(product["name"].casefold(), None)
        if row is not None:
            product = {**product, "par_midweek": row["par_midweek"], "par_weekend": row["par_weekend"]}
        merged.append(product)
    merged.extend(pars.values())
    context["supplier_products"] = merged
    _store_supplier(context, pop=False)


def _drop_supplier_keys(context: dict) -> None:
    for key in [key for key in context if key.startswith("supplier_")]:
        del context[key]
    context.pop("products_template", None)


def _store_supplier(context: dict, pop: bool) -> None:
    """Write the supplier being edited into ``suppliers_list``."""
    whatsapp = context.get("supplier_whatsapp")
    if not whatsapp:
        return
    record = {
        "id": whatsapp,
        "name": context.get("supplier_name"),
        "whatsapp": whatsapp,
        "categories": context.get("supplier_categories") or [],
        "reminder_days": context.get("supplier_reminder_days") or [],
        "cutoff_hour": context.get("supplier_cutoff_hour"),
        "products": context.get("supplier_products") or [],
    }
    suppliers = [s for s in context.get("suppliers_list") or [] if s.get("id") != whatsapp]
    suppliers.append(record)
    context["suppliers_list"] = suppliers
    if pop:
        _drop_supplier_keys(context)


def archive_supplier(context: dict, data: Any, config: BotConfig) -> None:
    """Drop the finished supplier's scratch keys; it was archived with its pars."""
    _store_supplier(context, pop=True)


def clear_flow_keys(context: dict, data: Any, config: BotConfig) -> None:
    for key in list(context):
        if key in TRANSIENT_KEYS or key.startswith(TRANSIENT_PREFIXES):
            del context[key]


# ─── Supplier / product maintenance ──────────────────────────────────


def select_supplier(context: dict, data: Any, config: BotConfig) -> None:
    supplier = _find_supplier(context, data)
    if supplier is None:
        return
    context.update(
        selected_supplier=supplier["id"],
        supplier_name=supplier.get("name"),
        supplier_whatsapp=supplier.get("whatsapp"),
        supplier_categories=list(supplier.get("categories") or []),
        supplier_reminder_days=list(supplier.get("reminder_days") or []),
        supplier_cutoff_hour=supplier.get("cutoff_hour"),
        supplier_products=[dict(p) for p in supplier.get("products") or []],
    )
    context["products_template"] = _products_template(context["supplier_products"], config)


def apply_supplier_update(context: dict, data: Any, config: BotConfig) -> None:
    set_supplier_cutoff(context, data, config)
    _store_supplier(context, pop=False)


# ─── Inventory snapshot ──────────────────────────────────────────────


def _load_snapshot_item(context: dict, config: BotConfig) -> None:
    item = context["snapshot_queue"][context["snapshot_index"]]
    context["product_name"] = item["name"]
    context["unit_label"] = config.unit_label(item.get("unit", config.default_unit))


def select_snapshot_category(context: dict, data: Any, config: BotConfig) -> None:
    queue: list[dict] = []
    seen: set[str] = set()
    for supplier in context.get("suppliers_list") or []:
        if data not in (supplier.get("categories") or []):
            continue
        for product in supplier.get("products") or []:
            if product["name"] in seen:
                continue
            seen.add(product["name"])
            queue.append(
                {
                    "name": product["name"],
                    "unit": product.get("unit", config.default_unit),
                    "supplier_id": supplier["id"],
                    "par_midweek": product.get("par_midweek"),
                    "par_weekend": product.get("par_weekend"),
                }
            )
    context.update(
        snapshot_category=data,
        category_name=config.category_label(data),
        snapshot_queue=queue,
        snapshot_index=0,
        snapshot_items=[],
    )
    if queue:
        _load_snapshot_item(context, config)
        context[ROUTE_KEY] = "more"
    else:
        context[ROUTE_KEY] = "empty"


def record_snapshot_qty(context: dict, data: Any, config: BotConfig) -> None:
    index = context.get("snapshot_index", 0)
    item = dict(context["snapshot_queue"][index], quantity=data)
    context["snapshot_items"] = [*context.get("snapshot_items", []), item]
    context["snapshot_index"] = index + 1
    if context["snapshot_index"] < len(context["snapshot_queue"]):
        _load_snapshot_item(context, config)
        context[ROUTE_KEY] = "more"
        return
    context["snapshot_summary"] = "\n".join(
        f"• {item['name']}: {format_quantity(item['quantity'])} {config.unit_label(item['unit'])}"
        for item in context["snapshot_items"]
    )
    context[ROUTE_KEY] = "done"


def confirm_snapshot(context: dict, data: Any, config: BotConfig) -> None:
    if data == "restart":
        for key in ("snapshot_queue", "snapshot_index", "snapshot_items", "snapshot_summary"):
            context.pop(key, None)
        return
    par_key = "par_weekend" if data == "weekend" else "par_midweek"
    items = []
    for item in context.get("snapshot_items", []):
        par = item.get(par_key)
        shortage = max(float(par) - float(item["quantity"]), 0.0) if par else 0.0
        items.append({**item, "par": par, "shortage": shortage})
    context["snapshot_items"] = items
    context["snapshot_period"] = data
    lines = [
        f"• {item['name']}: {format_quantity(item['shortage'])} {config.unit_label(item['unit'])}"
        for item in items
        if item["shortage"] > 0
    ]
    context["shortages_summary"] = "\n".join(lines) if lines else "✅ אין חוסרים, המלאי מספיק."


def _next_order_id(context: dict) -> str:
    sequence = int(context.get("last_order_seq", 0)) + 1
    return f"{context.get('restaurant_id', 'R')}-{sequence:04d}"


def _prepare_order(context: dict, items: list[dict], config: BotConfig) -> None:
    context["order_items"] = items
    context["order_details"] = "\n".join(
        f"• {item['name']}: {format_quantity(item['quantity'])} {config.unit_label(item['unit'])}"
        for item in items
    )
    context["item_count"] = len(items)
    context.setdefault("order_id", _next_order_id(context))


def _select_order_supplier(context: dict, supplier: dict, config: BotConfig) -> None:
    products = supplier.get("products") or []
    context.update(
        order_supplier_id=supplier["id"],
        order_supplier_name=supplier.get("name"),
        order_products=[{"name": p["name"], "unit": p.get("unit", config.default_unit)} for p in products],
        order_products_hint="\n".join(
            f"• {p['name']} ({config.unit_label(p.get('unit', config.default_unit))})" for p in products
        ),
    )
    context.pop("order_id", None)


def decide_snapshot_order(context: dict, data: Any, config: BotConfig) -> None:
    if data != "create_order":
        context[ROUTE_KEY] = "skip_order"
        return
    by_supplier: dict[str, list[dict]] = {}
    for item in context.get("snapshot_items", []):
        if item.get("shortage", 0) > 0 and item.get("supplier_id"):
            by_supplier.setdefault(item["supplier_id"], []).append(item)
    if not by_supplier:
        context[ROUTE_KEY] = "skip_order"
        return
    supplier_id = max(by_supplier, key=lambda key: len(by_supplier[key]))
    supplier = _find_supplier(context, supplier_id) or {"id": supplier_id}
    _select_order_supplier(context, supplier, config)
    items = [
        {"name": item["name"], "unit": item["unit"], "quantity": item["shortage"]}
        for item in by_supplier[supplier_id]
    ]
    _prepare_order(context, items, config)
    context[ROUTE_KEY] = "create_order"


# ─── Orders ──────────────────────────────────────────────────────────


def select_order_supplier(context: dict, data: Any, config: BotConfig) -> None:
    supplier = _find_supplier(context, data)
    if supplier is not None:
        _select_order_supplier(context, supplier, config)


def set_order_items(context: dict, data: Any, config: BotConfig) -> None:
    items = [{"name": row["name"], "unit": row["unit"], "quantity": row["quantity"]} for row in data]
    _prepare_order(context, items, config)


def confirm_order(context: dict, data: Any, config: BotConfig) -> None:
    if data == "send":
        context["last_order"] = {
            "order_id": context.get("order_id"),
            "supplier_id": context.get("order_supplier_id"),
            "supplier_name": context.get("order_supplier_name"),
            "items": context.get("order_items") or [],
        }
        context["last_order_seq"] = int(context.get("last_order_seq", 0)) + 1
    elif data == "cancel":
        for key in [key for key in context if key.startswith("order_")]:
            del context[key]
        context.pop("item_count", None)


# ─── Delivery ────────────────────────────────────────────────────────


def _load_delivery_item(context: dict, config: BotConfig) -> None:
    item = context["delivery_queue"][context["delivery_index"]]
    context["product_name"] = item["name"]
    context["ordered_qty"] = item["quantity"]
    context["unit_label"] = config.unit_label(item.get("unit", config.default_unit))


def begin_delivery(context: dict, data: Any, config: BotConfig) -> None:
    if data != "delivery_arrived":
        return
    order = context.get("last_order") or {}
    context.update(
        delivery_order_id=order.get("order_id"),
        delivery_supplier_name=order.get("supplier_name"),
        delivery_queue=list(order.get("items") or []),
        delivery_index=0,
        delivery_items=[],
    )
    if context["delivery_queue"]:
        _load_delivery_item(context, config)


def _record_delivery(context: dict, received: float, config: BotConfig) -> None:
    index = context["delivery_index"]
    item = context["delivery_queue"][index]
    context["delivery_items"] = [
        *context.get("delivery_items", []),
        {
            "name": item["name"],
            "unit": item.get("unit", config.default_unit),
            "ordered": item["quantity"],
            "received": received,
        },
    ]
    context["delivery_index"] = index + 1
    if context["delivery_index"] < len(context["delivery_queue"]):
        _load_delivery_item(context, config)
        context[ROUTE_KEY] = "more"
    else:
        context[ROUTE_KEY] = "done"


def record_delivery_check(context: dict, data: Any, config: BotConfig) -> None:
    if data == "partial":
        context[ROUTE_KEY] = "partial"
        return
    ordered = context["delivery_queue"][context["delivery_index"]]["quantity"]
    _record_delivery(context, ordered if data == "full" else 0.0, config)


def record_received_amount(context: dict, data: Any, config: BotConfig) -> None:
    _record_delivery(context, data, config)


def set_invoice(context: dict, data: Any, config: BotConfig) -> None:
    if data and data != "skip":
        context["delivery_invoice_url"] = data


def finish_help(context: dict, data: Any, config: BotConfig) -> None:
    context[ROUTE_KEY] = "registered" if context.get("restaurant_id") else "unregistered"


CALLBACKS: dict[str, Callback] = {
    fn.__name__: fn
    for fn in (
        set_company_name,
        set_legal_id,
        set_restaurant_name,
        set_contact_name,
        set_contact_email,
        prefill_demo_restaurant,
        set_payment_method,
        confirm_payment,
        set_supplier_categories,
        set_supplier_contact,
        set_supplier_reminders,
        set_supplier_cutoff,
        set_supplier_products,
        set_product_pars,
        archive_supplier,
        clear_flow_keys,
        select_supplier,
        apply_supplier_update,
        select_snapshot_category,
        record_snapshot_qty,
        confirm_snapshot,
        decide_snapshot_order,
        select_order_supplier,
        set_order_items,
        confirm_order,
        begin_delivery,
        record_delivery_check,
        record_received_amount,
        set_invoice,
        finish_help,
    )
}


# ─── Dynamic options ─────────────────────────────────────────────────


def supplier_options(context: dict, config: BotConfig) -> list[tuple[str, str]]:
    """(label, id) per archived supplier."""
    return [(s.get("name") or s["id"], s["id"]) for s in context.get("suppliers_list") or []]


def snapshot_category_options(context: dict, config: BotConfig) -> list[tuple[str, str]]:
    """Categories covered by at least one supplier, in catalogue order."""
    covered = {c for s in context.get("suppliers_list") or [] for c in s.get("categories") or []}
    return [(category.label, category.id) for category in config.categories if category.id in covered]


OPTION_SOURCES: dict[str, OptionSource] = {
    "suppliers": supplier_options,
    "snapshot_categories": snapshot_category_options,
}
