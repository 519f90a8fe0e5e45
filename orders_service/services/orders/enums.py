"""Order status enum and the order lifecycle transition table.

The transition table is built once at import time and exposed as a read-only
mapping of frozensets, so it cannot be mutated while requests are served.
"""

from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> CONFIRMED, CANCELLED, FAILED
    - CONFIRMED -> PREPARING, CANCELLED
    - PREPARING -> READY_FOR_DELIVERY
    - READY_FOR_DELIVERY -> OUT_FOR_DELIVERY
    - OUT_FOR_DELIVERY -> DELIVERED, FAILED
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    - FAILED -> (terminal state)
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY_FOR_DELIVERY = "READY_FOR_DELIVERY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status, case insensitive

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.upper())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return self in TERMINAL_ORDER_STATUSES


TERMINAL_ORDER_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    }
)

ORDER_STATUS_TRANSITIONS: Mapping[OrderStatus, FrozenSet[OrderStatus]] = MappingProxyType(
    {
        OrderStatus.PENDING: frozenset(
            {
                OrderStatus.CONFIRMED,
                OrderStatus.CANCELLED,
                OrderStatus.FAILED,
            }
        ),
        OrderStatus.CONFIRMED: frozenset(
            {
                OrderStatus.PREPARING,
                OrderStatus.CANCELLED,
            }
        ),
        OrderStatus.PREPARING: frozenset({OrderStatus.READY_FOR_DELIVERY}),
        OrderStatus.READY_FOR_DELIVERY: frozenset({OrderStatus.OUT_FOR_DELIVERY}),
        OrderStatus.OUT_FOR_DELIVERY: frozenset(
            {
                OrderStatus.DELIVERED,
                OrderStatus.FAILED,
            }
        ),
        OrderStatus.DELIVERED: frozenset(),  # Terminal
        OrderStatus.CANCELLED: frozenset(),  # Terminal
        OrderStatus.FAILED: frozenset(),  # Terminal
    }
)


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus,
) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in ORDER_STATUS_TRANSITIONS.get(current, frozenset())


def get_allowed_order_transitions(current: OrderStatus) -> FrozenSet[OrderStatus]:
    """Get all allowed transitions from current order status."""
    return ORDER_STATUS_TRANSITIONS.get(current, frozenset())
