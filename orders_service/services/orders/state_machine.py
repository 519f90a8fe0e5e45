"""Order state machine with transition validation.

This module implements the OrderStateMachine used by the order service to
validate requested status changes against the static transition table. The
machine holds no mutable state; persistence and event emission belong to
the service.
"""

from typing import Any

from orders_service.core.logging import get_logger
from orders_service.services.orders.enums import (
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)

logger = get_logger(__name__)


class InvalidTransitionError(Exception):
    """Raised when a requested status is not reachable from the current one."""

    def __init__(
        self,
        current_status: OrderStatus,
        requested_status: OrderStatus,
        message: str = "",
        **context: Any,
    ):
        super().__init__(
            message
            or f"Cannot transition from {current_status.value} to {requested_status.value}"
        )
        self.current_status = current_status
        self.requested_status = requested_status
        self.context = context


class OrderStateMachine:
    """State machine for order lifecycle transitions.

    Validates transitions against the module-level transition table.
    """

    def validate_transition(self, order: Any, target_status: OrderStatus) -> bool:
        """Validate if transition to target status is allowed.

        Args:
            order: Order instance to validate
            target_status: Desired target status

        Returns:
            True if transition is valid

        Raises:
            InvalidTransitionError: If transition is invalid
        """
        current_status = order.status

        logger.debug(
            "Validating state transition",
            order_id=str(order.id),
            current_status=current_status.value,
            target_status=target_status.value,
        )

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise InvalidTransitionError(
                current_status,
                target_status,
                order_id=str(order.id),
                allowed_transitions=sorted(s.value for s in allowed),
            )

        return True


def get_order_state_machine() -> OrderStateMachine:
    """Factory function to create OrderStateMachine instance."""
    return OrderStateMachine()
