"""Restaurant, supplier, inventory and order models — entities created by bot actions."""

import uuid
from typing import Dict, List, Optional

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from restobot.models.base import Base, TimestampMixin, UUIDMixin


class Restaurant(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "restaurants"

    # Identity
    legal_id: Mapped[str] = mapped_column(String(9), unique=True, nullable=False)
    legal_name: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # [{name, whatsapp, email, role}]
    contacts: Mapped[List] = mapped_column(JSONB, default=list)

    # Payment
    payment_provider: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")

    suppliers: Mapped[list["Supplier"]] = relationship(back_populates="restaurant")


class Supplier(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "suppliers"
    __table_args__ = (UniqueConstraint("restaurant_id", "whatsapp", name="uq_supplier_restaurant_whatsapp"),)

    restaurant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("restaurants.id"), nullable=False
    )
    whatsapp: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    categories: Mapped[List] = mapped_column(JSONB, default=list)
    # [{day, hour}]
    reminders: Mapped[List] = mapped_column(JSONB, default=list)
    # [{name, unit, par_midweek, par_weekend}]
    products: Mapped[List] = mapped_column(JSONB, default=list)

    restaurant: Mapped["Restaurant"] = relationship(back_populates="suppliers")


class InventorySnapshot(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "inventory_snapshots"

    restaurant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("restaurants.id"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    period: Mapped[str] = mapped_column(String(10), default="midweek")  # midweek | weekend
    # [{name, unit, supplier_id, quantity, par, shortage}]
    items: Mapped[List] = mapped_column(JSONB, default=list)


class Order(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "orders"

    # Bot-side reference, e.g. "123456789-0001"
    reference: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    restaurant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("restaurants.id"), nullable=False
    )
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=True
    )
    supplier_whatsapp: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="sent")  # sent | delivered
    items: Mapped[List] = mapped_column(JSONB, default=list)
    item_count: Mapped[int] = mapped_column(Integer, default=0)

    # Delivery
    # [{name, unit, ordered, received}]
    delivery_items: Mapped[Optional[List]] = mapped_column(JSONB, nullable=True)
    invoice_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    delivery_summary: Mapped[Optional[Dict]] = mapped_column(JSONB, nullable=True)
