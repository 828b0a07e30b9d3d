"""SQLAlchemy ORM models."""

from restobot.models.base import Base
from restobot.models.restaurant import InventorySnapshot, Order, Restaurant, Supplier

__all__ = [
    "Base",
    "Restaurant",
    "Supplier",
    "InventorySnapshot",
    "Order",
]
