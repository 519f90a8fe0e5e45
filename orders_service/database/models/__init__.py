"""
SQLAlchemy ORM models.

Importing this package registers every table on Base.metadata.
"""

from orders_service.database.models.order import Order, OrderItem, OrderReceipt

__all__ = ["Order", "OrderItem", "OrderReceipt"]
