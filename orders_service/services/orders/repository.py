"""
Order data access repository with transaction support.

This module implements the OrderRepository class, the order store used by the
order service. Every mutating method is one transaction that the repository
commits itself, so the service can publish events only after the write is
durable. Conditional writes are single UPDATE statements guarded by the
expected column values; the database row is the serialization point for
concurrent requests on the same order.
"""

from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orders_service.core.logging import get_logger
from orders_service.database.models.order import Order, OrderItem, OrderReceipt
from orders_service.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails."""

    pass


class OrderUpdateError(OrderRepositoryError):
    """Raised when order update fails."""

    pass


class OrderRepository:
    """
    Repository for order data access operations.

    Provides async methods to create orders with their items, load orders
    with items and receipt, and apply conditional updates atomically.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def create_order_with_items(
        self,
        customer_id: str,
        restaurant_id: str,
        restaurant_name: str,
        total_amount: Decimal,
        items: Sequence[Mapping[str, Any]],
        estimated_delivery_minutes: Optional[int] = None,
    ) -> Order:
        """
        Create order with items atomically.

        Args:
            customer_id: Customer placing the order
            restaurant_id: Restaurant preparing the order
            restaurant_name: Restaurant display name
            total_amount: Total order amount
            items: Order items with dish_id, name, quantity and price
            estimated_delivery_minutes: Estimated delivery duration

        Returns:
            Created order with items loaded

        Raises:
            OrderCreationError: If order creation fails
        """
        try:
            logger.info(
                "Creating order with items",
                customer_id=customer_id,
                restaurant_id=restaurant_id,
                item_count=len(items),
            )

            order = Order(
                customer_id=customer_id,
                restaurant_id=restaurant_id,
                restaurant_name=restaurant_name,
                status=OrderStatus.PENDING,
                total_amount=total_amount,
                estimated_delivery_minutes=estimated_delivery_minutes,
                paid=False,
                pin_code="",
                courier_id="",
            )
            order.items = [
                OrderItem(
                    position=position,
                    dish_id=item_data["dish_id"],
                    name=item_data["name"],
                    quantity=item_data["quantity"],
                    price=Decimal(str(item_data["price"])),
                )
                for position, item_data in enumerate(items)
            ]

            self.session.add(order)
            await self.session.flush()
            order_id = order.id
            await self.session.commit()

            created = await self.get_order_by_id(order_id)

            logger.info(
                "Order created successfully",
                order_id=order_id,
                item_count=len(items),
            )

            return created

        except IntegrityError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - integrity error",
                error=str(e),
                customer_id=customer_id,
            )
            raise OrderCreationError(
                "Order creation failed due to data integrity violation",
                customer_id=customer_id,
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - database error",
                error=str(e),
                customer_id=customer_id,
            )
            raise OrderCreationError(
                "Order creation failed due to database error",
                customer_id=customer_id,
                error=str(e),
            ) from e

    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        """
        Get order by ID with items and receipt.

        Args:
            order_id: Order identifier

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = (
                select(Order)
                .where(Order.id == order_id)
                .options(
                    selectinload(Order.items),
                    selectinload(Order.receipt),
                )
                .execution_options(populate_existing=True)
            )

            result = await self.session.execute(stmt)
            order = result.scalar_one_or_none()

            logger.debug("Order lookup", order_id=order_id, found=order is not None)

            return order

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch order",
                order_id=order_id,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=order_id,
                error=str(e),
            ) from e

    async def atomic_update(
        self,
        order_id: str,
        values: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Order]:
        """
        Update an order only if its current columns match the expected values.

        The check and the write happen in one UPDATE statement, so two
        concurrent callers expecting the same prior state cannot both succeed.

        Args:
            order_id: Order identifier
            values: Column values to write
            expected: Column values the row must currently hold

        Returns:
            Updated order, or None if the order does not exist or did not
            match the expected values

        Raises:
            OrderUpdateError: If the update fails
        """
        expected = expected or {}

        try:
            conditions = [Order.id == order_id]
            conditions.extend(
                getattr(Order, column) == value for column, value in expected.items()
            )

            stmt = (
                update(Order)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            result = await self.session.execute(stmt)

            if result.rowcount == 0:
                # Rollback would expire orders already loaded in this session
                await self.session.commit()
                logger.debug(
                    "Conditional update matched no rows",
                    order_id=order_id,
                    expected=_loggable(expected),
                )
                return None

            order = await self.get_order_by_id(order_id)
            await self.session.commit()

            logger.info(
                "Order updated",
                order_id=order_id,
                fields=sorted(values.keys()),
            )

            return order

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to update order",
                order_id=order_id,
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to update order",
                order_id=order_id,
                error=str(e),
            ) from e

    async def mark_paid(
        self,
        order_id: str,
        charge_id: str,
        receipt_url: str,
    ) -> Optional[Order]:
        """
        Confirm payment and create the order receipt in one transaction.

        The order row is only updated while it is still unpaid, and the
        receipt table allows one row per order, so repeated payment
        notifications cannot produce a second receipt or overwrite the first
        charge reference.

        Args:
            order_id: Order identifier
            charge_id: Payment provider charge reference
            receipt_url: Receipt URL issued by the payment provider

        Returns:
            Updated order with receipt, or None if the order is missing or
            already paid

        Raises:
            OrderUpdateError: If the update fails
        """
        try:
            stmt = (
                update(Order)
                .where(Order.id == order_id, Order.paid.is_(False))
                .values(
                    status=OrderStatus.CONFIRMED,
                    paid=True,
                    stripe_charge_id=charge_id,
                )
                .execution_options(synchronize_session=False)
            )

            result = await self.session.execute(stmt)

            if result.rowcount == 0:
                await self.session.commit()
                return None

            self.session.add(OrderReceipt(order_id=order_id, receipt_url=receipt_url))
            await self.session.flush()

            order = await self.get_order_by_id(order_id)
            await self.session.commit()

            logger.info("Order marked as paid", order_id=order_id)

            return order

        except IntegrityError as e:
            await self.session.rollback()
            logger.warning(
                "Receipt already exists for order",
                order_id=order_id,
                error=str(e),
            )
            return None
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to mark order as paid",
                order_id=order_id,
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to mark order as paid",
                order_id=order_id,
                error=str(e),
            ) from e


def _loggable(expected: Mapping[str, Any]) -> dict[str, Any]:
    """Render expected column values for logs without leaking the PIN."""
    return {
        column: ("***" if column == "pin_code" else getattr(value, "value", value))
        for column, value in expected.items()
    }
