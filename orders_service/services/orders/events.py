"""
Outbound order event names and payload models.

Payloads are pydantic models with camelCase aliases, the field naming the
downstream consumers subscribe with. Builders in this module turn an order
(and, where relevant, the request that changed it) into the ordered list of
events an operation publishes after its write is committed.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from orders_service.services.orders.enums import OrderStatus

Money = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]


class OrderEvent(str, Enum):
    """Names of events published by the order service."""

    ORDER_CREATED = "order_created"
    ORDER_STATUS_UPDATED = "order_status_updated"
    ORDER_READY_FOR_DELIVERY = "order_ready_for_delivery"
    ORDER_PAID = "order_paid"
    COURIER_ASSIGNED = "courier_assigned"
    ORDER_DELIVERED = "order_delivered"


class EventPayload(BaseModel):
    """Base model for event payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_message(self) -> dict[str, Any]:
        """Serialize payload to a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OrderItemPayload(EventPayload):
    dish_id: str
    name: str
    quantity: int
    price: Money


class LocationPayload(EventPayload):
    latitude: float
    longitude: float


class OrderCreatedEvent(EventPayload):
    """Creation request as received, plus the generated order id."""

    order_id: str
    customer_id: str
    restaurant_id: str
    restaurant_name: str
    items: list[OrderItemPayload]
    delivery_fee: Money
    use_loyalty_points: bool
    estimated_delivery_minutes: Optional[int] = None


class OrderStatusUpdatedEvent(EventPayload):
    order_id: str
    restaurant_id: str
    new_status: OrderStatus
    location: Optional[LocationPayload] = None


class OrderReadyForDeliveryEvent(EventPayload):
    order_id: str
    restaurant_id: str
    restaurant_name: str
    customer_id: str
    items: list[OrderItemPayload]


class OrderReceiptPayload(EventPayload):
    id: str
    receipt_url: str


class OrderSnapshot(EventPayload):
    """
    Full order state for broadcast events.

    The delivery PIN is deliberately absent; it only travels in the
    courier_assigned event addressed to the courier channel.
    """

    id: str
    status: OrderStatus
    total_amount: Money
    estimated_delivery_minutes: Optional[int] = None
    paid: bool
    stripe_charge_id: Optional[str] = None
    restaurant_id: str
    restaurant_name: str
    customer_id: str
    courier_id: str = ""
    items: list[OrderItemPayload] = Field(default_factory=list)
    receipt: Optional[OrderReceiptPayload] = None


class CourierAssignedEvent(EventPayload):
    order: OrderSnapshot
    courier_id: str
    pin: str


class OrderDeliveredEvent(EventPayload):
    order_id: str
    courier_id: str
    restaurant_id: str
    total_amount: Money
    customer_id: str


PendingEvent = tuple[OrderEvent, dict[str, Any]]


def order_created(order: Any, request: dict[str, Any]) -> PendingEvent:
    """Build order_created from the creation input and the persisted order id."""
    payload = OrderCreatedEvent.model_validate({**request, "order_id": order.id})
    return OrderEvent.ORDER_CREATED, payload.to_message()


def order_status_updated(
    order: Any,
    location: Optional[dict[str, float]] = None,
) -> PendingEvent:
    payload = OrderStatusUpdatedEvent(
        order_id=order.id,
        restaurant_id=order.restaurant_id,
        new_status=order.status,
        location=LocationPayload.model_validate(location) if location else None,
    )
    return OrderEvent.ORDER_STATUS_UPDATED, payload.to_message()


def order_ready_for_delivery(order: Any) -> PendingEvent:
    payload = OrderReadyForDeliveryEvent(
        order_id=order.id,
        restaurant_id=order.restaurant_id,
        restaurant_name=order.restaurant_name,
        customer_id=order.customer_id,
        items=[OrderItemPayload.model_validate(item) for item in order.items],
    )
    return OrderEvent.ORDER_READY_FOR_DELIVERY, payload.to_message()


def order_paid(order: Any) -> PendingEvent:
    return OrderEvent.ORDER_PAID, OrderSnapshot.model_validate(order).to_message()


def courier_assigned(order: Any) -> PendingEvent:
    payload = CourierAssignedEvent(
        order=OrderSnapshot.model_validate(order),
        courier_id=order.courier_id,
        pin=order.pin_code,
    )
    return OrderEvent.COURIER_ASSIGNED, payload.to_message()


def order_delivered(order: Any) -> PendingEvent:
    payload = OrderDeliveredEvent(
        order_id=order.id,
        courier_id=order.courier_id,
        restaurant_id=order.restaurant_id,
        total_amount=order.total_amount,
        customer_id=order.customer_id,
    )
    return OrderEvent.ORDER_DELIVERED, payload.to_message()


def events_for_status_change(
    order: Any,
    location: Optional[dict[str, float]] = None,
) -> list[PendingEvent]:
    """
    Events published after a validated status transition.

    Every transition announces the new status; reaching READY_FOR_DELIVERY
    additionally hands the order to dispatch.
    """
    events = [order_status_updated(order, location)]
    if order.status == OrderStatus.READY_FOR_DELIVERY:
        events.append(order_ready_for_delivery(order))
    return events
