"""
Order, order item and order receipt models.

This module defines the Order aggregate and the records it owns. Order items
are written once together with the order and never mutated; a receipt is
written once, when payment is confirmed, and the unique constraint on its
order_id makes a second receipt for the same order impossible.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orders_service.database.base import Base, StringIDMixin, TimestampMixin
from orders_service.services.orders.enums import OrderStatus


class Order(StringIDMixin, TimestampMixin, Base):
    """
    Order aggregate root.

    Attributes:
        id: Opaque order identifier
        status: Current lifecycle status
        total_amount: Sum of item subtotals, less the delivery fee when loyalty
            points are redeemed. Fixed at creation
        estimated_delivery_minutes: Estimated delivery duration
        paid: Whether payment has been confirmed
        stripe_charge_id: Payment provider charge reference, set with paid
        restaurant_id: Owning restaurant
        restaurant_name: Denormalized restaurant name
        customer_id: Owning customer
        pin_code: Delivery PIN, empty until a courier is assigned
        courier_id: Assigned courier, empty until assignment
        created_at: Record creation timestamp (from TimestampMixin)
        updated_at: Last modification timestamp (from TimestampMixin)
    """

    __tablename__ = "orders"

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", create_constraint=True),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Total order amount fixed at creation",
    )

    estimated_delivery_minutes: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Estimated delivery duration in minutes",
    )

    paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Payment confirmed flag",
    )

    stripe_charge_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Payment provider charge reference",
    )

    restaurant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Restaurant that prepares the order",
    )

    restaurant_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Denormalized restaurant name",
    )

    customer_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    pin_code: Mapped[str] = mapped_column(
        String(4),
        nullable=False,
        default="",
        comment="Delivery confirmation PIN",
    )

    courier_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="",
        comment="Assigned courier",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    receipt: Mapped[Optional["OrderReceipt"]] = relationship(
        "OrderReceipt",
        back_populates="order",
        lazy="selectin",
        uselist=False,
    )

    __table_args__ = (
        Index("ix_orders_restaurant_status", "restaurant_id", "status"),
        Index("ix_orders_customer_created", "customer_id", "created_at"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint(
            "total_amount >= 0",
            name="ck_orders_total_amount_non_negative",
        ),
        CheckConstraint(
            "(pin_code = '') OR (courier_id <> '')",
            name="ck_orders_pin_requires_courier",
        ),
        CheckConstraint(
            "(paid = false) OR (stripe_charge_id IS NOT NULL)",
            name="ck_orders_paid_requires_charge",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, status={self.status.value}, "
            f"restaurant_id={self.restaurant_id}, total_amount={self.total_amount})>"
        )

    @property
    def has_courier(self) -> bool:
        """Check whether a courier and PIN have been assigned."""
        return bool(self.courier_id)


class OrderItem(StringIDMixin, Base):
    """
    Immutable line item of an order.

    Attributes:
        order_id: Owning order
        position: Index of the item in the creation request
        dish_id: Dish identifier
        name: Dish display name
        quantity: Number of units, at least one
        price: Unit price, non-negative
    """

    __tablename__ = "order_items"

    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    dish_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
    )


class OrderReceipt(StringIDMixin, TimestampMixin, Base):
    """Payment receipt, at most one per order."""

    __tablename__ = "order_receipts"

    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
    )

    receipt_url: Mapped[str] = mapped_column(String(2048), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="receipt")

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_order_receipts_order_id"),
    )
