"""
Celery tasks consuming payment notifications.

The payment provider integration publishes fire-and-forget notifications
when a checkout session succeeds, is abandoned or expires. Each task opens
its own database session and Redis connection, runs the matching order
service operation, and returns a small summary of what was applied.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from celery import Task, shared_task
from redis.exceptions import ConnectionError as RedisConnectionError

from orders_service.core.logging import get_logger
from orders_service.database.connection import (
    close_database_connections,
    get_session,
)
from orders_service.database.models.order import Order
from orders_service.messaging.emitter import RedisEventEmitter
from orders_service.messaging.redis_client import RedisClient
from orders_service.services.orders.repository import (
    OrderNotFoundError,
    OrderUpdateError,
)
from orders_service.services.orders.service import OrderService

logger = get_logger(__name__)


class OrderTask(Task):
    """
    Base task class for order notification tasks.

    Database update failures are retried with backoff; the operations are
    safe to repeat. Domain outcomes such as an unknown order are not.
    """

    autoretry_for = (OrderUpdateError,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 60
    retry_jitter = True

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.error(
            "Order task failed",
            task_name=self.name,
            task_id=task_id,
            exception=str(exc),
            args=args,
        )

    def on_retry(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.warning(
            "Order task retrying",
            task_name=self.name,
            task_id=task_id,
            exception=str(exc),
            retry_count=self.request.retries,
            max_retries=self.max_retries,
        )

    def on_success(
        self,
        retval: Any,
        task_id: str,
        args: tuple,
        kwargs: dict,
    ) -> None:
        logger.info(
            "Order task completed successfully",
            task_name=self.name,
            task_id=task_id,
            result=retval,
        )


async def run_order_operation(
    operation: Callable[[OrderService], Awaitable[Optional[Order]]],
) -> Optional[Order]:
    """
    Run an order service operation with its own session and emitter.

    An unreachable Redis does not block the state change; the emitter then
    fails each publish and the service logs it. The database engine is
    disposed on exit; its pooled connections are bound to the event loop
    that ``asyncio.run`` closes afterwards.
    """
    redis_client = RedisClient()
    try:
        await redis_client.connect()
    except RedisConnectionError as e:
        logger.warning("Publishing disabled for task, Redis unavailable", error=str(e))

    try:
        async with get_session() as session:
            service = OrderService(session, RedisEventEmitter(redis_client))
            return await operation(service)
    finally:
        await redis_client.disconnect()
        await close_database_connections()


def _summary(order_id: str, order: Optional[Order]) -> dict[str, Any]:
    return {
        "order_id": order_id,
        "applied": order is not None,
        "status": order.status.value if order is not None else None,
    }


@shared_task(
    bind=True,
    base=OrderTask,
    name="orders.payment_succeeded",
    time_limit=60,
    soft_time_limit=45,
)
def payment_succeeded_task(
    self: Task,
    order_id: str,
    charge_reference: str,
    receipt_url: str,
) -> dict[str, Any]:
    """
    Confirm payment for an order.

    Args:
        self: Task instance
        order_id: Paid order
        charge_reference: Payment provider charge reference
        receipt_url: Receipt URL issued by the payment provider

    Returns:
        Dictionary describing the applied change
    """
    logger.info("Processing payment succeeded", task_id=self.request.id, order_id=order_id)

    order = asyncio.run(
        run_order_operation(
            lambda service: service.confirm_payment(order_id, charge_reference, receipt_url)
        )
    )
    return _summary(order_id, order)


def _expire(task: Task, order_id: str, reason: str) -> dict[str, Any]:
    logger.info(
        "Processing payment session expiry",
        task_id=task.request.id,
        order_id=order_id,
        reason=reason,
    )

    try:
        order = asyncio.run(
            run_order_operation(
                lambda service: service.expire_payment_session(order_id)
            )
        )
    except OrderNotFoundError as e:
        logger.warning(
            "Payment session ended for unknown order",
            task_id=task.request.id,
            order_id=order_id,
            reason=reason,
            error=str(e),
        )
        order = None

    return _summary(order_id, order)


@shared_task(
    bind=True,
    base=OrderTask,
    name="orders.payment_session_abandoned",
    time_limit=60,
    soft_time_limit=45,
)
def payment_session_abandoned_task(self: Task, order_id: str) -> dict[str, Any]:
    """Fail an order whose checkout session was abandoned."""
    return _expire(self, order_id, reason="abandoned")


@shared_task(
    bind=True,
    base=OrderTask,
    name="orders.payment_session_expired",
    time_limit=60,
    soft_time_limit=45,
)
def payment_session_expired_task(self: Task, order_id: str) -> dict[str, Any]:
    """Fail an order whose checkout session expired."""
    return _expire(self, order_id, reason="expired")
