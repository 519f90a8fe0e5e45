"""
Order Pydantic schemas for API request/response validation.

Field names are snake_case in Python and camelCase on the wire; requests
accept either form.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from orders_service.services.orders.enums import OrderStatus


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class OrderItemRequest(CamelModel):
    """Order item for order creation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    dish_id: str = Field(..., min_length=1, max_length=64, description="Dish identifier")
    name: str = Field(..., min_length=1, max_length=255, description="Dish name")
    quantity: int = Field(..., ge=1, le=1000, description="Number of units")
    price: Decimal = Field(
        ...,
        ge=0,
        max_digits=10,
        decimal_places=2,
        description="Unit price",
    )


class OrderCreateRequest(CamelModel):
    """Order creation request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    customer_id: str = Field(..., min_length=1, max_length=64)
    restaurant_id: str = Field(..., min_length=1, max_length=64)
    restaurant_name: str = Field(..., min_length=1, max_length=255)
    items: list[OrderItemRequest] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Order items",
    )
    delivery_fee: Decimal = Field(
        default=Decimal("0.00"),
        ge=0,
        max_digits=10,
        decimal_places=2,
        description="Delivery fee, deducted from the total when loyalty points are redeemed",
    )
    use_loyalty_points: bool = Field(default=False)
    estimated_delivery_minutes: Optional[int] = Field(
        default=None,
        ge=1,
        le=24 * 60,
        description="Estimated delivery duration in minutes",
    )


class LocationCoords(CamelModel):
    """Courier coordinates reported with a status change."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class OrderStatusUpdateRequest(CamelModel):
    """Order status update request."""

    status: OrderStatus = Field(..., description="Requested order status")
    location: Optional[LocationCoords] = Field(default=None)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        """Accept status names in any case."""
        if isinstance(v, str):
            return v.upper()
        return v


class CourierAssignRequest(CamelModel):
    courier_id: str = Field(..., min_length=1, max_length=64)


class PinVerifyRequest(CamelModel):
    pin: str = Field(..., min_length=1, max_length=64, description="Delivery PIN as entered")


class OrderItemResponse(CamelModel):
    """Order item in responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    dish_id: str
    name: str
    quantity: int
    price: Decimal


class OrderReceiptResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    receipt_url: str
    created_at: Optional[datetime] = None


class OrderResponse(CamelModel):
    """Order details response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: OrderStatus
    total_amount: Decimal
    estimated_delivery_minutes: Optional[int] = None
    paid: bool
    stripe_charge_id: Optional[str] = None
    restaurant_id: str
    restaurant_name: str
    customer_id: str
    courier_id: str
    pin_code: str
    items: list[OrderItemResponse] = Field(default_factory=list)
    receipt: Optional[OrderReceiptResponse] = None
    created_at: datetime
    updated_at: datetime


class CreateOrderResponse(CamelModel):
    order_id: str


class PinVerifyResponse(CamelModel):
    verified: bool
