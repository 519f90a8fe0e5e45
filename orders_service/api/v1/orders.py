"""
Order lifecycle API endpoints.

This module implements the FastAPI router for order creation, retrieval,
status transitions, courier assignment, delivery PIN verification and
cancellation. Domain errors are mapped to HTTP status codes here; events
are published by the service after each committed change.
"""

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from orders_service.api.deps import OrderServiceDep, limiter
from orders_service.core.config import get_settings
from orders_service.core.logging import get_logger
from orders_service.schemas.orders import (
    CourierAssignRequest,
    CreateOrderResponse,
    OrderCreateRequest,
    OrderResponse,
    OrderStatusUpdateRequest,
    PinVerifyRequest,
    PinVerifyResponse,
)
from orders_service.services.orders.repository import (
    OrderNotFoundError,
    OrderRepositoryError,
)
from orders_service.services.orders.service import (
    CourierAlreadyAssignedError,
    OrderValidationError,
)
from orders_service.services.orders.state_machine import InvalidTransitionError

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/orders", tags=["orders"])


def _not_found(order_id: str, e: OrderNotFoundError) -> HTTPException:
    logger.warning("Order not found", order_id=order_id, error=str(e))
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Order {order_id} not found",
    )


def _invalid_transition(order_id: str, e: InvalidTransitionError) -> HTTPException:
    logger.warning(
        "Invalid order status transition",
        order_id=order_id,
        current_status=e.current_status.value,
        requested_status=e.requested_status.value,
    )
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "error": "Invalid Transition",
            "message": str(e),
            "currentStatus": e.current_status.value,
            "requestedStatus": e.requested_status.value,
        },
    )


def _storage_failure(action: str, order_id: str, e: OrderRepositoryError) -> HTTPException:
    logger.error(
        f"Failed to {action}",
        order_id=order_id,
        error=str(e),
        context=e.context,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.post(
    "/",
    response_model=CreateOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new order",
)
async def create_order(
    payload: OrderCreateRequest,
    service: OrderServiceDep,
) -> CreateOrderResponse:
    """
    Create an order in PENDING status.

    Raises:
        HTTPException: 400 if validation fails, 500 if creation fails
    """
    try:
        order_id = await service.create_order(
            customer_id=payload.customer_id,
            restaurant_id=payload.restaurant_id,
            restaurant_name=payload.restaurant_name,
            items=[item.model_dump() for item in payload.items],
            delivery_fee=payload.delivery_fee,
            use_loyalty_points=payload.use_loyalty_points,
            estimated_delivery_minutes=payload.estimated_delivery_minutes,
        )
    except OrderValidationError as e:
        logger.warning("Order validation failed", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    except OrderRepositoryError as e:
        raise _storage_failure("create order", "", e) from e

    return CreateOrderResponse(order_id=order_id)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order details",
)
async def get_order(order_id: str, service: OrderServiceDep) -> OrderResponse:
    """Get order with items and receipt."""
    try:
        order = await service.get_order(order_id)
    except OrderNotFoundError as e:
        raise _not_found(order_id, e) from e

    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
    description="Move the order along one edge of the order lifecycle",
)
async def update_order_status(
    order_id: str,
    payload: OrderStatusUpdateRequest,
    service: OrderServiceDep,
) -> OrderResponse:
    """
    Request a status transition.

    Raises:
        HTTPException: 404 if order not found, 409 if transition is invalid
    """
    try:
        order = await service.request_transition(
            order_id,
            payload.status,
            location=payload.location.model_dump() if payload.location else None,
        )
    except OrderNotFoundError as e:
        raise _not_found(order_id, e) from e
    except InvalidTransitionError as e:
        raise _invalid_transition(order_id, e) from e
    except OrderRepositoryError as e:
        raise _storage_failure("update order status", order_id, e) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/courier",
    response_model=OrderResponse,
    summary="Assign courier",
    responses={
        202: {"description": "Order not found; assignment ignored"},
        409: {"description": "Courier already assigned"},
    },
)
async def assign_courier(
    order_id: str,
    payload: CourierAssignRequest,
    service: OrderServiceDep,
):
    """Assign a courier to the order and generate its delivery PIN."""
    try:
        order = await service.assign_courier(order_id, payload.courier_id)
    except CourierAlreadyAssignedError as e:
        logger.warning("Courier already assigned", order_id=order_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    except OrderValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    except OrderRepositoryError as e:
        raise _storage_failure("assign courier", order_id, e) from e

    if order is None:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"orderId": order_id, "assigned": False},
        )

    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/verify-pin",
    response_model=PinVerifyResponse,
    summary="Verify delivery PIN",
)
@limiter.limit(settings.pin_verify_rate_limit)
async def verify_order_pin(
    request: Request,
    order_id: str,
    payload: PinVerifyRequest,
    service: OrderServiceDep,
) -> PinVerifyResponse:
    """
    Verify the delivery PIN and mark the order delivered on match.

    Raises:
        HTTPException: 404 if order not found, 409 if the order was
            cancelled or failed
    """
    try:
        verified = await service.verify_delivery_pin(order_id, payload.pin)
    except OrderNotFoundError as e:
        raise _not_found(order_id, e) from e
    except InvalidTransitionError as e:
        raise _invalid_transition(order_id, e) from e
    except OrderRepositoryError as e:
        raise _storage_failure("verify delivery PIN", order_id, e) from e

    return PinVerifyResponse(verified=verified)


@router.delete(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Cancel order",
)
async def remove_order(order_id: str, service: OrderServiceDep) -> OrderResponse:
    """Cancel the order. Orders are never physically deleted."""
    try:
        order = await service.cancel_order(order_id)
    except OrderNotFoundError as e:
        raise _not_found(order_id, e) from e
    except OrderRepositoryError as e:
        raise _storage_failure("cancel order", order_id, e) from e

    return OrderResponse.model_validate(order)
