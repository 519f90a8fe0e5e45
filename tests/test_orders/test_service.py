"""
Unit tests for OrderService business logic.

The repository is replaced with AsyncMock objects so each operation can be
checked for the writes it requests, the events it publishes and the errors
it raises, without a database.
"""

from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from orders_service.core.config import Settings
from orders_service.messaging.emitter import EventPublishError
from orders_service.services.orders.enums import OrderStatus
from orders_service.services.orders.repository import (
    OrderNotFoundError,
    OrderUpdateError,
)
from orders_service.services.orders.service import (
    CourierAlreadyAssignedError,
    OrderService,
    OrderValidationError,
)
from orders_service.services.orders.state_machine import InvalidTransitionError


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def mock_session() -> AsyncMock:
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def mock_emitter() -> AsyncMock:
    emitter = AsyncMock()
    emitter.emit = AsyncMock()
    return emitter


@pytest.fixture
def order_service(mock_session: AsyncMock, mock_emitter: AsyncMock) -> OrderService:
    """
    Create OrderService with a mocked repository.

    Returns:
        OrderService: Service instance for testing
    """
    service = OrderService(
        mock_session,
        mock_emitter,
        settings=Settings(
            database_url="sqlite+aiosqlite:///:memory:",
            default_estimated_delivery_minutes=40,
        ),
    )
    service.repository = AsyncMock()
    return service


def make_order(status: OrderStatus = OrderStatus.PENDING, **overrides: Any) -> SimpleNamespace:
    """
    Create a stand-in order with the attributes events are built from.

    Unknown attributes raise AttributeError, as on the mapped model.
    """
    attributes = dict(
        id="order-1",
        status=status,
        total_amount=Decimal("25.00"),
        estimated_delivery_minutes=45,
        paid=False,
        stripe_charge_id=None,
        restaurant_id="rest-1",
        restaurant_name="Trattoria Roma",
        customer_id="cust-1",
        courier_id="",
        pin_code="",
        has_courier=False,
        items=[],
        receipt=None,
    )
    attributes.update(overrides)
    return SimpleNamespace(**attributes)


def emitted(emitter: AsyncMock) -> list[str]:
    return [c.args[0] for c in emitter.emit.await_args_list]


# ============================================================================
# Order Creation
# ============================================================================


class TestCreateOrder:
    """Test suite for order creation."""

    async def test_create_order_success(self, order_service, mock_emitter, order_payload):
        order_service.repository.create_order_with_items.return_value = make_order()

        order_id = await order_service.create_order(**order_payload)

        assert order_id == "order-1"
        call_kwargs = order_service.repository.create_order_with_items.call_args.kwargs
        assert call_kwargs["total_amount"] == Decimal("25.00")
        assert call_kwargs["estimated_delivery_minutes"] == 40
        assert emitted(mock_emitter) == ["order_created"]

        payload = mock_emitter.emit.await_args.args[1]
        assert payload["orderId"] == "order-1"
        assert payload["restaurantName"] == "Trattoria Roma"
        assert len(payload["items"]) == 2

    async def test_loyalty_points_deduct_delivery_fee(self, order_service, order_payload):
        order_service.repository.create_order_with_items.return_value = make_order()

        await order_service.create_order(**{**order_payload, "use_loyalty_points": True})

        call_kwargs = order_service.repository.create_order_with_items.call_args.kwargs
        assert call_kwargs["total_amount"] == Decimal("22.00")

    async def test_explicit_estimate_is_kept(self, order_service, order_payload):
        order_service.repository.create_order_with_items.return_value = make_order()

        await order_service.create_order(**order_payload, estimated_delivery_minutes=20)

        call_kwargs = order_service.repository.create_order_with_items.call_args.kwargs
        assert call_kwargs["estimated_delivery_minutes"] == 20

    async def test_empty_items_rejected(self, order_service, mock_emitter, order_payload):
        with pytest.raises(OrderValidationError, match="at least one item"):
            await order_service.create_order(**{**order_payload, "items": []})

        order_service.repository.create_order_with_items.assert_not_called()
        mock_emitter.emit.assert_not_awaited()

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2"])
    async def test_invalid_quantity_rejected(self, order_service, order_payload, quantity):
        items = [{"dish_id": "d", "name": "n", "quantity": quantity, "price": Decimal("1")}]

        with pytest.raises(OrderValidationError):
            await order_service.create_order(**{**order_payload, "items": items})

    async def test_negative_price_rejected(self, order_service, order_payload):
        items = [{"dish_id": "d", "name": "n", "quantity": 1, "price": Decimal("-0.01")}]

        with pytest.raises(OrderValidationError, match="price"):
            await order_service.create_order(**{**order_payload, "items": items})

    async def test_missing_item_field_rejected(self, order_service, order_payload):
        with pytest.raises(OrderValidationError) as exc_info:
            await order_service.create_order(
                **{**order_payload, "items": [{"dish_id": "d", "quantity": 1}]}
            )

        assert exc_info.value.context["missing_fields"] == ["name", "price"]

    async def test_negative_delivery_fee_rejected(self, order_service, order_payload):
        with pytest.raises(OrderValidationError, match="Delivery fee"):
            await order_service.create_order(**{**order_payload, "delivery_fee": Decimal("-1")})

    def test_calculate_total_rounds_to_cents(self):
        items = [{"price": Decimal("0.333"), "quantity": 3}]

        assert OrderService.calculate_total(items, Decimal("0"), False) == Decimal("1.00")

    def test_delivery_fee_not_added_without_loyalty(self):
        items = [{"price": Decimal("10"), "quantity": 2}, {"price": Decimal("5"), "quantity": 1}]

        assert OrderService.calculate_total(items, Decimal("3"), False) == Decimal("25.00")
        assert OrderService.calculate_total(items, Decimal("3"), True) == Decimal("22.00")

    def test_loyalty_total_never_negative(self):
        items = [{"price": Decimal("2.50"), "quantity": 1}]

        assert OrderService.calculate_total(items, Decimal("4"), True) == Decimal("0.00")


# ============================================================================
# Status Transitions
# ============================================================================


class TestRequestTransition:
    """Test suite for validated status transitions."""

    async def test_valid_transition(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.PENDING)
        order_service.repository.atomic_update.return_value = make_order(OrderStatus.CONFIRMED)

        updated = await order_service.request_transition("order-1", OrderStatus.CONFIRMED)

        assert updated.status == OrderStatus.CONFIRMED
        order_service.repository.atomic_update.assert_awaited_once_with(
            "order-1",
            {"status": OrderStatus.CONFIRMED},
            expected={"status": OrderStatus.PENDING},
        )
        assert emitted(mock_emitter) == ["order_status_updated"]

    async def test_accepts_status_name(self, order_service):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.CONFIRMED)
        order_service.repository.atomic_update.return_value = make_order(OrderStatus.PREPARING)

        updated = await order_service.request_transition("order-1", "preparing")

        assert updated.status == OrderStatus.PREPARING

    async def test_ready_for_delivery_emits_dispatch_event(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.PREPARING)
        order_service.repository.atomic_update.return_value = make_order(
            OrderStatus.READY_FOR_DELIVERY
        )

        await order_service.request_transition("order-1", OrderStatus.READY_FOR_DELIVERY)

        assert emitted(mock_emitter) == ["order_status_updated", "order_ready_for_delivery"]

    async def test_location_forwarded_in_event(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(
            OrderStatus.READY_FOR_DELIVERY
        )
        order_service.repository.atomic_update.return_value = make_order(
            OrderStatus.OUT_FOR_DELIVERY
        )

        await order_service.request_transition(
            "order-1",
            OrderStatus.OUT_FOR_DELIVERY,
            location={"latitude": 1.5, "longitude": 2.5},
        )

        payload = mock_emitter.emit.await_args.args[1]
        assert payload["location"] == {"latitude": 1.5, "longitude": 2.5}

    async def test_invalid_transition(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.PENDING)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await order_service.request_transition("order-1", OrderStatus.DELIVERED)

        assert exc_info.value.current_status == OrderStatus.PENDING
        assert exc_info.value.requested_status == OrderStatus.DELIVERED
        order_service.repository.atomic_update.assert_not_called()
        mock_emitter.emit.assert_not_awaited()

    async def test_missing_order(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = None

        with pytest.raises(OrderNotFoundError):
            await order_service.request_transition("missing", OrderStatus.CONFIRMED)

        mock_emitter.emit.assert_not_awaited()

    async def test_lost_race_reports_fresh_status(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.side_effect = [
            make_order(OrderStatus.PENDING),
            make_order(OrderStatus.CANCELLED),
        ]
        order_service.repository.atomic_update.return_value = None

        with pytest.raises(InvalidTransitionError) as exc_info:
            await order_service.request_transition("order-1", OrderStatus.CONFIRMED)

        assert exc_info.value.current_status == OrderStatus.CANCELLED
        mock_emitter.emit.assert_not_awaited()

    async def test_update_error_propagates(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.PENDING)
        order_service.repository.atomic_update.side_effect = OrderUpdateError("db down")

        with pytest.raises(OrderUpdateError):
            await order_service.request_transition("order-1", OrderStatus.CONFIRMED)

        mock_emitter.emit.assert_not_awaited()


# ============================================================================
# Payment Notifications
# ============================================================================


class TestPaymentNotifications:
    """Test suite for payment confirmation and expiry."""

    async def test_confirm_payment(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order()
        order_service.repository.mark_paid.return_value = make_order(
            OrderStatus.CONFIRMED, paid=True, stripe_charge_id="ch_1"
        )

        updated = await order_service.confirm_payment("order-1", "ch_1", "https://r/1")

        assert updated.paid is True
        order_service.repository.mark_paid.assert_awaited_once_with(
            "order-1", "ch_1", "https://r/1"
        )
        assert emitted(mock_emitter) == ["order_paid"]

        payload = mock_emitter.emit.await_args.args[1]
        assert payload["id"] == "order-1"
        assert payload["status"] == "CONFIRMED"
        assert payload["stripeChargeId"] == "ch_1"
        assert payload["totalAmount"] == 25.0
        assert payload["restaurantName"] == "Trattoria Roma"
        assert "pinCode" not in payload

    async def test_confirm_payment_ignores_transition_table(self, order_service):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.FAILED)
        order_service.repository.mark_paid.return_value = make_order(
            OrderStatus.CONFIRMED, paid=True, stripe_charge_id="ch_1"
        )

        updated = await order_service.confirm_payment("order-1", "ch_1", "https://r/1")

        assert updated.status == OrderStatus.CONFIRMED

    async def test_confirm_payment_missing_order_is_ignored(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = None

        assert await order_service.confirm_payment("missing", "ch_1", "https://r/1") is None

        order_service.repository.mark_paid.assert_not_called()
        mock_emitter.emit.assert_not_awaited()

    async def test_confirm_payment_already_paid(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(
            OrderStatus.CONFIRMED, paid=True, stripe_charge_id="ch_1"
        )

        assert await order_service.confirm_payment("order-1", "ch_2", "https://r/2") is None

        order_service.repository.mark_paid.assert_not_called()
        mock_emitter.emit.assert_not_awaited()

    async def test_confirm_payment_lost_race(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order()
        order_service.repository.mark_paid.return_value = None

        assert await order_service.confirm_payment("order-1", "ch_2", "https://r/2") is None

        mock_emitter.emit.assert_not_awaited()

    async def test_expire_payment_session(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.CONFIRMED)
        order_service.repository.atomic_update.return_value = make_order(OrderStatus.FAILED)

        updated = await order_service.expire_payment_session("order-1")

        assert updated.status == OrderStatus.FAILED
        order_service.repository.atomic_update.assert_awaited_once_with(
            "order-1", {"status": OrderStatus.FAILED}
        )
        assert emitted(mock_emitter) == ["order_status_updated"]

    async def test_expire_missing_order(self, order_service):
        order_service.repository.get_order_by_id.return_value = None

        with pytest.raises(OrderNotFoundError):
            await order_service.expire_payment_session("missing")


# ============================================================================
# Courier Assignment and Delivery PIN
# ============================================================================


class TestAssignCourier:
    """Test suite for courier assignment."""

    async def test_assign_courier(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.PREPARING)
        order_service.repository.atomic_update.return_value = make_order(
            OrderStatus.PREPARING, courier_id="courier-7", pin_code="4821", has_courier=True
        )

        updated = await order_service.assign_courier("order-1", "courier-7")

        assert updated.courier_id == "courier-7"
        args, kwargs = order_service.repository.atomic_update.call_args
        assert args[1]["courier_id"] == "courier-7"
        assert len(args[1]["pin_code"]) == 4
        assert args[1]["pin_code"].isdigit()
        assert kwargs["expected"] == {"courier_id": ""}

        assert emitted(mock_emitter) == ["courier_assigned"]
        payload = mock_emitter.emit.await_args.args[1]
        assert payload["courierId"] == "courier-7"
        assert payload["pin"] == "4821"
        assert payload["order"]["customerId"] == "cust-1"

    async def test_assign_courier_missing_order_is_ignored(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = None

        assert await order_service.assign_courier("missing", "courier-7") is None

        mock_emitter.emit.assert_not_awaited()

    async def test_reassignment_rejected(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(
            courier_id="courier-1", pin_code="1234", has_courier=True
        )

        with pytest.raises(CourierAlreadyAssignedError):
            await order_service.assign_courier("order-1", "courier-2")

        order_service.repository.atomic_update.assert_not_called()
        mock_emitter.emit.assert_not_awaited()

    async def test_concurrent_assignment_rejected(self, order_service):
        order_service.repository.get_order_by_id.return_value = make_order()
        order_service.repository.atomic_update.return_value = None

        with pytest.raises(CourierAlreadyAssignedError):
            await order_service.assign_courier("order-1", "courier-2")

    async def test_empty_courier_id_rejected(self, order_service):
        with pytest.raises(OrderValidationError):
            await order_service.assign_courier("order-1", "")


class TestVerifyDeliveryPin:
    """Test suite for delivery PIN verification."""

    async def test_correct_pin_delivers_order(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(
            OrderStatus.OUT_FOR_DELIVERY, courier_id="courier-7", pin_code="4821"
        )
        order_service.repository.atomic_update.return_value = make_order(
            OrderStatus.DELIVERED, courier_id="courier-7", pin_code="4821"
        )

        assert await order_service.verify_delivery_pin("order-1", "4821") is True

        order_service.repository.atomic_update.assert_awaited_once_with(
            "order-1",
            {"status": OrderStatus.DELIVERED},
            expected={"status": OrderStatus.OUT_FOR_DELIVERY, "pin_code": "4821"},
        )
        assert emitted(mock_emitter) == ["order_delivered"]

    async def test_wrong_pin(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(
            OrderStatus.OUT_FOR_DELIVERY, courier_id="courier-7", pin_code="4821"
        )

        assert await order_service.verify_delivery_pin("order-1", "0000") is False

        order_service.repository.atomic_update.assert_not_called()
        mock_emitter.emit.assert_not_awaited()

    async def test_no_pin_assigned(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.PREPARING)

        assert await order_service.verify_delivery_pin("order-1", "1234") is False

        mock_emitter.emit.assert_not_awaited()

    async def test_already_delivered(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(
            OrderStatus.DELIVERED, courier_id="courier-7", pin_code="4821"
        )

        assert await order_service.verify_delivery_pin("order-1", "4821") is True

        order_service.repository.atomic_update.assert_not_called()
        mock_emitter.emit.assert_not_awaited()

    @pytest.mark.parametrize("status", [OrderStatus.CANCELLED, OrderStatus.FAILED])
    async def test_closed_order_cannot_be_delivered(self, order_service, status):
        order_service.repository.get_order_by_id.return_value = make_order(
            status, courier_id="courier-7", pin_code="4821"
        )

        with pytest.raises(InvalidTransitionError):
            await order_service.verify_delivery_pin("order-1", "4821")

    async def test_missing_order(self, order_service):
        order_service.repository.get_order_by_id.return_value = None

        with pytest.raises(OrderNotFoundError):
            await order_service.verify_delivery_pin("missing", "4821")


# ============================================================================
# Cancellation, Lookup and Event Dispatch
# ============================================================================


class TestCancelOrder:
    """Test suite for cancellation."""

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.DELIVERED],
    )
    async def test_cancel_is_unconditional(self, order_service, mock_emitter, status):
        order_service.repository.get_order_by_id.return_value = make_order(status)
        order_service.repository.atomic_update.return_value = make_order(OrderStatus.CANCELLED)

        updated = await order_service.cancel_order("order-1")

        assert updated.status == OrderStatus.CANCELLED
        assert emitted(mock_emitter) == ["order_status_updated"]

    async def test_cancel_missing_order(self, order_service):
        order_service.repository.get_order_by_id.return_value = None

        with pytest.raises(OrderNotFoundError):
            await order_service.cancel_order("missing")


class TestGetOrder:
    async def test_get_order(self, order_service):
        order_service.repository.get_order_by_id.return_value = make_order()

        assert (await order_service.get_order("order-1")).id == "order-1"

    async def test_get_missing_order(self, order_service):
        order_service.repository.get_order_by_id.return_value = None

        with pytest.raises(OrderNotFoundError) as exc_info:
            await order_service.get_order("missing")

        assert exc_info.value.context == {"order_id": "missing"}


class TestEventDispatch:
    """Test suite for post-commit event dispatch."""

    async def test_publish_failure_does_not_fail_operation(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.PREPARING)
        order_service.repository.atomic_update.return_value = make_order(
            OrderStatus.READY_FOR_DELIVERY
        )
        mock_emitter.emit.side_effect = EventPublishError("redis down", channel="orders.x")

        updated = await order_service.request_transition(
            "order-1", OrderStatus.READY_FOR_DELIVERY
        )

        assert updated.status == OrderStatus.READY_FOR_DELIVERY
        assert mock_emitter.emit.await_count == 2

    async def test_unexpected_emitter_error_is_contained(self, order_service, mock_emitter):
        order_service.repository.get_order_by_id.return_value = make_order(OrderStatus.PENDING)
        order_service.repository.atomic_update.return_value = make_order(OrderStatus.CANCELLED)
        mock_emitter.emit.side_effect = RuntimeError("boom")

        updated = await order_service.cancel_order("order-1")

        assert updated.status == OrderStatus.CANCELLED
