"""
Order service orchestrating the order lifecycle.

This module implements the OrderService class: order creation and pricing,
validated status transitions, payment confirmation and expiry, courier
assignment with delivery PIN, PIN verification and cancellation. Every
operation persists through the repository first and publishes its events
only after the write has been committed; a failed publish is logged and
never undoes or fails the operation.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from orders_service.core.config import Settings, get_settings
from orders_service.core.logging import get_logger
from orders_service.database.models.order import Order
from orders_service.messaging.emitter import EventEmitter, EventPublishError
from orders_service.services.orders import events
from orders_service.services.orders.enums import OrderStatus
from orders_service.services.orders.pin import generate_pin, pin_matches
from orders_service.services.orders.repository import (
    OrderNotFoundError,
    OrderRepository,
)
from orders_service.services.orders.state_machine import (
    InvalidTransitionError,
    OrderStateMachine,
    get_order_state_machine,
)

logger = get_logger(__name__)

CENTS = Decimal("0.01")


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised when order validation fails."""

    pass


class CourierAlreadyAssignedError(OrderServiceError):
    """Raised when a courier is assigned to an order that already has one."""

    pass


class OrderService:
    """
    Order service orchestrating the order lifecycle.

    Attributes:
        repository: Order repository for data access
        event_emitter: Emitter receiving events after each committed change
        state_machine: Transition validator
        settings: Application settings
    """

    def __init__(
        self,
        session: AsyncSession,
        event_emitter: EventEmitter,
        state_machine: Optional[OrderStateMachine] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize order service.

        Args:
            session: Async database session
            event_emitter: Event emitter for outbound order events
            state_machine: Optional state machine instance
            settings: Optional settings override
        """
        self.repository = OrderRepository(session)
        self.event_emitter = event_emitter
        self.state_machine = state_machine or get_order_state_machine()
        self.settings = settings or get_settings()

    async def create_order(
        self,
        customer_id: str,
        restaurant_id: str,
        restaurant_name: str,
        items: Sequence[Mapping[str, Any]],
        delivery_fee: Union[Decimal, int, float, str] = Decimal("0"),
        use_loyalty_points: bool = False,
        estimated_delivery_minutes: Optional[int] = None,
    ) -> str:
        """
        Create new order with items in PENDING status.

        Args:
            customer_id: Customer placing the order
            restaurant_id: Restaurant preparing the order
            restaurant_name: Restaurant display name
            items: Items with dish_id, name, quantity and price
            delivery_fee: Delivery fee, deducted from the total when paying with
                loyalty points
            use_loyalty_points: Whether loyalty points are redeemed
            estimated_delivery_minutes: Estimated delivery duration

        Returns:
            Identifier of the created order

        Raises:
            OrderValidationError: If order validation fails
            OrderCreationError: If order creation fails
        """
        logger.info(
            "Creating order",
            customer_id=customer_id,
            restaurant_id=restaurant_id,
            item_count=len(items),
        )

        normalized_items = self._validate_items(items)
        fee = self._to_decimal(delivery_fee, "delivery_fee")
        if fee < 0:
            raise OrderValidationError(
                "Delivery fee cannot be negative",
                delivery_fee=str(fee),
            )

        total_amount = self.calculate_total(normalized_items, fee, use_loyalty_points)

        if estimated_delivery_minutes is None:
            estimated_delivery_minutes = self.settings.default_estimated_delivery_minutes

        order = await self.repository.create_order_with_items(
            customer_id=customer_id,
            restaurant_id=restaurant_id,
            restaurant_name=restaurant_name,
            total_amount=total_amount,
            items=normalized_items,
            estimated_delivery_minutes=estimated_delivery_minutes,
        )

        logger.info(
            "Order created",
            order_id=order.id,
            total_amount=str(total_amount),
            use_loyalty_points=use_loyalty_points,
        )

        await self._dispatch(
            [
                events.order_created(
                    order,
                    {
                        "customer_id": customer_id,
                        "restaurant_id": restaurant_id,
                        "restaurant_name": restaurant_name,
                        "items": normalized_items,
                        "delivery_fee": fee,
                        "use_loyalty_points": use_loyalty_points,
                        "estimated_delivery_minutes": estimated_delivery_minutes,
                    },
                )
            ]
        )

        return order.id

    async def get_order(self, order_id: str) -> Order:
        """
        Get order with items and receipt.

        Raises:
            OrderNotFoundError: If order not found
        """
        order = await self.repository.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found", order_id=order_id)
        return order

    async def request_transition(
        self,
        order_id: str,
        target_status: Union[OrderStatus, str],
        location: Optional[Mapping[str, float]] = None,
    ) -> Order:
        """
        Move an order along one edge of the transition table.

        The write is a compare-and-set on the status observed when the
        request was validated; if another request changed the order in
        between, this one fails against the fresh status.

        Args:
            order_id: Order identifier
            target_status: Requested status
            location: Optional courier coordinates forwarded with the event

        Returns:
            Updated order

        Raises:
            OrderNotFoundError: If order not found
            InvalidTransitionError: If the transition is not allowed
        """
        if not isinstance(target_status, OrderStatus):
            target_status = OrderStatus.from_string(target_status)

        order = await self.get_order(order_id)
        current_status = order.status

        self.state_machine.validate_transition(order, target_status)

        updated = await self.repository.atomic_update(
            order_id,
            {"status": target_status},
            expected={"status": current_status},
        )

        if updated is None:
            fresh = await self.get_order(order_id)
            logger.warning(
                "Concurrent status change detected",
                order_id=order_id,
                observed_status=current_status.value,
                current_status=fresh.status.value,
                requested_status=target_status.value,
            )
            self.state_machine.validate_transition(fresh, target_status)
            raise InvalidTransitionError(
                fresh.status,
                target_status,
                message=(
                    f"Order {order_id} changed status concurrently; "
                    f"cannot transition from {current_status.value} "
                    f"to {target_status.value}"
                ),
                order_id=order_id,
            )

        logger.info(
            "Order status updated",
            order_id=order_id,
            old_status=current_status.value,
            new_status=target_status.value,
        )

        await self._dispatch(
            events.events_for_status_change(
                updated,
                dict(location) if location is not None else None,
            )
        )

        return updated

    async def confirm_payment(
        self,
        order_id: str,
        charge_reference: str,
        receipt_url: str,
    ) -> Optional[Order]:
        """
        Record a successful payment and issue the order receipt.

        Payment notifications can arrive before the order is visible or
        more than once, so a missing or already paid order is logged and
        ignored. The first charge reference applied is kept.

        Returns:
            Updated order, or None if nothing was applied
        """
        order = await self.repository.get_order_by_id(order_id)
        if order is None:
            logger.warning("Payment confirmed for unknown order", order_id=order_id)
            return None

        if order.paid:
            logger.info(
                "Payment already confirmed for order",
                order_id=order_id,
                charge_reference=charge_reference,
            )
            return None

        updated = await self.repository.mark_paid(order_id, charge_reference, receipt_url)
        if updated is None:
            logger.info(
                "Payment confirmed concurrently for order",
                order_id=order_id,
                charge_reference=charge_reference,
            )
            return None

        logger.info(
            "Order paid",
            order_id=order_id,
            old_status=order.status.value,
            new_status=updated.status.value,
        )

        await self._dispatch([events.order_paid(updated)])

        return updated

    async def expire_payment_session(self, order_id: str) -> Order:
        """
        Mark an order as FAILED after its payment session expired.

        Applied regardless of the current status.

        Raises:
            OrderNotFoundError: If order not found
        """
        return await self._override_status(order_id, OrderStatus.FAILED)

    async def cancel_order(self, order_id: str) -> Order:
        """
        Cancel an order regardless of its current status.

        Raises:
            OrderNotFoundError: If order not found
        """
        return await self._override_status(order_id, OrderStatus.CANCELLED)

    async def assign_courier(self, order_id: str, courier_id: str) -> Optional[Order]:
        """
        Assign a courier and generate the delivery PIN.

        An order keeps its first courier and PIN; a second assignment is
        rejected. A missing order is logged and ignored.

        Args:
            order_id: Order identifier
            courier_id: Courier identifier

        Returns:
            Updated order, or None if the order does not exist

        Raises:
            OrderValidationError: If courier_id is empty
            CourierAlreadyAssignedError: If the order already has a courier
        """
        if not courier_id:
            raise OrderValidationError("Courier id is required", order_id=order_id)

        order = await self.repository.get_order_by_id(order_id)
        if order is None:
            logger.warning(
                "Courier assigned to unknown order",
                order_id=order_id,
                courier_id=courier_id,
            )
            return None

        if order.has_courier:
            raise CourierAlreadyAssignedError(
                f"Order {order_id} already has a courier assigned",
                order_id=order_id,
                courier_id=order.courier_id,
            )

        updated = await self.repository.atomic_update(
            order_id,
            {"courier_id": courier_id, "pin_code": generate_pin()},
            expected={"courier_id": ""},
        )

        if updated is None:
            raise CourierAlreadyAssignedError(
                f"Order {order_id} already has a courier assigned",
                order_id=order_id,
            )

        logger.info("Courier assigned", order_id=order_id, courier_id=courier_id)

        await self._dispatch([events.courier_assigned(updated)])

        return updated

    async def verify_delivery_pin(self, order_id: str, supplied_pin: str) -> bool:
        """
        Confirm delivery with the PIN the customer gives the courier.

        A wrong PIN, or an order without a PIN, is a negative result and
        leaves the order untouched. Repeating a correct PIN for an order that
        is already delivered succeeds without a second event.

        Returns:
            True if the PIN matched

        Raises:
            OrderNotFoundError: If order not found
            InvalidTransitionError: If the order was cancelled or failed
        """
        order = await self.get_order(order_id)

        if not pin_matches(order.pin_code, supplied_pin):
            logger.warning(
                "Delivery PIN rejected",
                order_id=order_id,
                pin_assigned=bool(order.pin_code),
            )
            return False

        if order.status == OrderStatus.DELIVERED:
            logger.info("Order already delivered", order_id=order_id)
            return True

        if order.status.is_terminal():
            raise InvalidTransitionError(
                order.status,
                OrderStatus.DELIVERED,
                order_id=order_id,
            )

        updated = await self.repository.atomic_update(
            order_id,
            {"status": OrderStatus.DELIVERED},
            expected={"status": order.status, "pin_code": order.pin_code},
        )

        if updated is None:
            fresh = await self.get_order(order_id)
            if fresh.status == OrderStatus.DELIVERED:
                return True
            raise InvalidTransitionError(
                fresh.status,
                OrderStatus.DELIVERED,
                order_id=order_id,
            )

        logger.info(
            "Order delivered",
            order_id=order_id,
            courier_id=updated.courier_id,
            old_status=order.status.value,
        )

        await self._dispatch([events.order_delivered(updated)])

        return True

    @staticmethod
    def calculate_total(
        items: Sequence[Mapping[str, Any]],
        delivery_fee: Decimal,
        use_loyalty_points: bool,
    ) -> Decimal:
        """
        Calculate order total.

        Sum of price times quantity, rounded to cents. The delivery fee is
        not charged on top; redeeming loyalty points deducts it from the
        item subtotal, never below zero.
        """
        subtotal = sum(
            (Decimal(str(item["price"])) * item["quantity"] for item in items),
            Decimal("0"),
        )
        if use_loyalty_points:
            subtotal = max(subtotal - delivery_fee, Decimal("0"))
        return subtotal.quantize(CENTS, rounding=ROUND_HALF_UP)

    async def _override_status(self, order_id: str, status: OrderStatus) -> Order:
        order = await self.get_order(order_id)

        updated = await self.repository.atomic_update(order_id, {"status": status})
        if updated is None:
            raise OrderNotFoundError(f"Order {order_id} not found", order_id=order_id)

        logger.info(
            "Order status overridden",
            order_id=order_id,
            old_status=order.status.value,
            new_status=status.value,
        )

        await self._dispatch([events.order_status_updated(updated)])

        return updated

    def _validate_items(self, items: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """
        Validate order items and normalize prices to Decimal.

        Raises:
            OrderValidationError: If items are empty or any item is invalid
        """
        if not items:
            raise OrderValidationError("Order must contain at least one item")

        normalized = []
        for idx, item in enumerate(items):
            missing = [f for f in ("dish_id", "name", "quantity", "price") if f not in item]
            if missing:
                raise OrderValidationError(
                    f"Item {idx} missing required fields",
                    item_index=idx,
                    missing_fields=missing,
                )

            quantity = item["quantity"]
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise OrderValidationError(
                    f"Item {idx} quantity must be a positive integer",
                    item_index=idx,
                    quantity=quantity,
                )

            price = self._to_decimal(item["price"], f"items[{idx}].price")
            if price < 0:
                raise OrderValidationError(
                    f"Item {idx} price cannot be negative",
                    item_index=idx,
                    price=str(price),
                )

            normalized.append(
                {
                    "dish_id": str(item["dish_id"]),
                    "name": item["name"],
                    "quantity": quantity,
                    "price": price,
                }
            )

        return normalized

    @staticmethod
    def _to_decimal(value: Any, field: str) -> Decimal:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise OrderValidationError(
                f"Invalid amount for {field}",
                field=field,
                value=str(value),
            ) from e
        if not amount.is_finite():
            raise OrderValidationError(f"Invalid amount for {field}", field=field)
        return amount

    async def _dispatch(self, pending: Sequence[events.PendingEvent]) -> None:
        """Publish committed events in order; failures are logged only."""
        for event, payload in pending:
            try:
                await self.event_emitter.emit(event.value, payload)
            except EventPublishError as e:
                logger.error(
                    "Failed to publish order event",
                    event_name=event.value,
                    error=str(e),
                    channel=e.context.get("channel"),
                )
            except Exception as e:
                logger.error(
                    "Unexpected error publishing order event",
                    event_name=event.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
