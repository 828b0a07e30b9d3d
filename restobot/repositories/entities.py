"""Entity repository — persists restaurants, suppliers, snapshots and orders created by bot actions."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from restobot.database import get_session_maker
from restobot.errors import ActionDispatchError
from restobot.models.restaurant import InventorySnapshot, Order, Restaurant, Supplier
from restobot.schemas.actions import (
    CreateInventorySnapshotPayload,
    CreateRestaurantPayload,
    LogDeliveryPayload,
    SendOrderPayload,
    SupplierPayload,
    UpdateProductPayload,
)

logger = structlog.get_logger()


class EntityRepository:
    """Writes the business entities behind CREATE_*/UPDATE_*/SEND_ORDER/LOG_DELIVERY and looks up known contacts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ─────────────────────────────────────────────────────

    async def _restaurant(self, legal_id: str) -> Restaurant:
        result = await self.db.execute(select(Restaurant).where(Restaurant.legal_id == legal_id))
        restaurant = result.scalar_one_or_none()
        if restaurant is None:
            raise ActionDispatchError(f"restaurant {legal_id} not found")
        return restaurant

    async def _supplier(self, restaurant: Restaurant, whatsapp: str) -> Optional[Supplier]:
        result = await self.db.execute(
            select(Supplier).where(Supplier.restaurant_id == restaurant.id, Supplier.whatsapp == whatsapp)
        )
        return result.scalar_one_or_none()

    async def find_contact_context(self, phone: str) -> Optional[dict[str, Any]]:
        """Conversation context for a phone registered as a restaurant contact, if any."""
        result = await self.db.execute(
            select(Restaurant)
            .where(Restaurant.contacts.contains([{"whatsapp": phone}]))
            .options(selectinload(Restaurant.suppliers))
        )
        restaurant = result.scalars().first()
        if restaurant is None:
            return None

        contact = next((c for c in restaurant.contacts or [] if c.get("whatsapp") == phone), {})
        return {
            "legal_id": restaurant.legal_id,
            "restaurant_id": restaurant.legal_id,
            "company_name": restaurant.legal_name,
            "restaurant_name": restaurant.name,
            "contact_name": contact.get("name"),
            "suppliers_list": [_supplier_record(supplier) for supplier in restaurant.suppliers],
        }

    # ─── Writes ──────────────────────────────────────────────────────

    async def create_restaurant(self, payload: CreateRestaurantPayload) -> Restaurant:
        """Create the restaurant, or refresh it when the legal id is already registered."""
        result = await self.db.execute(select(Restaurant).where(Restaurant.legal_id == payload.legal_id))
        restaurant = result.scalar_one_or_none()
        if restaurant is None:
            restaurant = Restaurant(legal_id=payload.legal_id)
            self.db.add(restaurant)

        restaurant.legal_name = payload.legal_name
        restaurant.name = payload.name
        restaurant.contacts = [contact.model_dump(mode="json") for contact in payload.contacts]
        restaurant.payment_provider = payload.payment.provider
        restaurant.payment_status = payload.payment.status
        await self.db.flush()

        logger.info("restaurant_saved", legal_id=payload.legal_id, name=payload.name)
        return restaurant

    async def upsert_supplier(self, payload: SupplierPayload) -> Supplier:
        restaurant = await self._restaurant(payload.restaurant_id)
        supplier = await self._supplier(restaurant, payload.whatsapp)
        if supplier is None:
            supplier = Supplier(restaurant_id=restaurant.id, whatsapp=payload.whatsapp)
            self.db.add(supplier)

        supplier.name = payload.name
        supplier.categories = list(payload.category)
        supplier.reminders = [reminder.model_dump(mode="json") for reminder in payload.reminders]
        supplier.products = [product.model_dump(mode="json") for product in payload.products]
        await self.db.flush()

        logger.info(
            "supplier_saved",
            restaurant_id=payload.restaurant_id,
            whatsapp=payload.whatsapp,
            products=len(payload.products),
        )
        return supplier

    async def update_products(self, payload: UpdateProductPayload) -> Supplier:
        restaurant = await self._restaurant(payload.restaurant_id)
        supplier = await self._supplier(restaurant, payload.supplier_id)
        if supplier is None:
            raise ActionDispatchError(f"supplier {payload.supplier_id} not found")
        supplier.products = [product.model_dump(mode="json") for product in payload.products]
        await self.db.flush()

        logger.info("supplier_products_updated", supplier=payload.supplier_id, products=len(payload.products))
        return supplier

    async def create_inventory_snapshot(self, payload: CreateInventorySnapshotPayload) -> InventorySnapshot:
        restaurant = await self._restaurant(payload.restaurant_id)
        snapshot = InventorySnapshot(
            restaurant_id=restaurant.id,
            category=payload.category,
            period=payload.period,
            items=[item.model_dump(mode="json") for item in payload.items],
        )
        self.db.add(snapshot)
        await self.db.flush()

        logger.info(
            "inventory_snapshot_created",
            restaurant_id=payload.restaurant_id,
            category=payload.category,
            items=len(payload.items),
        )
        return snapshot

    async def create_order(self, payload: SendOrderPayload) -> Order:
        restaurant = await self._restaurant(payload.restaurant_id)
        supplier = await self._supplier(restaurant, payload.supplier_id)
        order = Order(
            reference=payload.order_id,
            restaurant_id=restaurant.id,
            supplier_id=supplier.id if supplier else None,
            supplier_whatsapp=payload.supplier_id,
            status="sent",
            items=[item.model_dump(mode="json") for item in payload.items],
            item_count=len(payload.items),
        )
        self.db.add(order)
        await self.db.flush()

        logger.info("order_created", order_id=payload.order_id, supplier=payload.supplier_id)
        return order

    async def log_delivery(self, payload: LogDeliveryPayload) -> Order:
        result = await self.db.execute(select(Order).where(Order.reference == payload.order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise ActionDispatchError(f"order {payload.order_id} not found")

        items = [item.model_dump(mode="json") for item in payload.items]
        order.delivery_items = items
        order.invoice_url = payload.invoice_url
        order.delivery_summary = {
            "complete": sum(1 for item in items if item["received"] >= item["ordered"]),
            "partial": sum(1 for item in items if 0 < item["received"] < item["ordered"]),
            "missing": sum(1 for item in items if item["received"] == 0),
        }
        order.status = "delivered"
        await self.db.flush()

        logger.info("delivery_logged", order_id=payload.order_id, **order.delivery_summary)
        return order


def _supplier_record(supplier: Supplier) -> dict[str, Any]:
    reminders = supplier.reminders or []
    return {
        "id": supplier.whatsapp,
        "name": supplier.name,
        "whatsapp": supplier.whatsapp,
        "categories": list(supplier.categories or []),
        "reminder_days": [reminder["day"] for reminder in reminders],
        "cutoff_hour": reminders[0]["hour"] if reminders else None,
        "products": list(supplier.products or []),
    }


@asynccontextmanager
async def entity_repository(
    session_factory: Optional[Callable[[], AsyncSession]] = None,
) -> AsyncIterator[EntityRepository]:
    """Repository bound to a fresh session; commits on success, rolls back on error."""
    factory = session_factory or get_session_maker()
    async with factory() as session:
        try:
            yield EntityRepository(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
