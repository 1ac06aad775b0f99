"""Order status, payment status and chat message status enums.

This module defines the canonical status keys persisted on orders, the
legacy aliases still found in older records, and the transition rules the
order state machine enforces.
"""

from enum import Enum
from typing import Dict, Optional, Set


class OrderStatus(str, Enum):
    """Order lifecycle status with state machine transitions.

    Valid transitions:
    - PENDING -> DEALER_ACCEPTED, REJECTED, CANCELLED
    - DEALER_ACCEPTED -> PRINTING_STARTED, CANCELLED
    - PRINTING_STARTED -> PRINTING_COMPLETED, CANCELLED
    - PRINTING_COMPLETED -> READY_FOR_PICKUP, OUT_FOR_DELIVERY, CANCELLED
    - READY_FOR_PICKUP -> DELIVERED, CANCELLED
    - OUT_FOR_DELIVERY -> DELIVERED, CANCELLED
    - DELIVERED -> (terminal state)
    - REJECTED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "pending"
    DEALER_ACCEPTED = "dealer-accepted"
    PRINTING_STARTED = "printing-started"
    PRINTING_COMPLETED = "printing-completed"
    READY_FOR_PICKUP = "ready-for-pickup"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert a stored or requested status key to OrderStatus.

        Legacy keys are mapped to their canonical replacement.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        key = value.strip().lower()
        key = LEGACY_STATUS_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state.

        Returns:
            True if status is terminal (DELIVERED, REJECTED, CANCELLED)
        """
        return self in {
            OrderStatus.DELIVERED,
            OrderStatus.REJECTED,
            OrderStatus.CANCELLED,
        }

    def is_processing(self) -> bool:
        """Check if the dealer is actively working on the order."""
        return self in PROCESSING_STATUSES

    def can_cancel(self) -> bool:
        """Check if order can be cancelled from current status."""
        return OrderStatus.CANCELLED in ORDER_STATUS_TRANSITIONS[self]

    @property
    def display_name(self) -> str:
        """Human-readable label stored in ``status``."""
        return STATUS_LABELS[self]


# Keys written by older clients, normalized on read and on write.
LEGACY_STATUS_ALIASES: Dict[str, str] = {
    "processing": OrderStatus.DEALER_ACCEPTED.value,
    "ready": OrderStatus.READY_FOR_PICKUP.value,
    "completed": OrderStatus.DELIVERED.value,
}

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.DEALER_ACCEPTED: "Dealer Accepted",
    OrderStatus.PRINTING_STARTED: "Printing Started",
    OrderStatus.PRINTING_COMPLETED: "Printing Completed",
    OrderStatus.READY_FOR_PICKUP: "Ready for Pickup",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.REJECTED: "Rejected",
    OrderStatus.CANCELLED: "Cancelled",
}

PROCESSING_STATUSES: Set[OrderStatus] = {
    OrderStatus.DEALER_ACCEPTED,
    OrderStatus.PRINTING_STARTED,
    OrderStatus.PRINTING_COMPLETED,
    OrderStatus.OUT_FOR_DELIVERY,
}

EARNING_STATUSES: Set[OrderStatus] = {
    OrderStatus.DELIVERED,
    OrderStatus.READY_FOR_PICKUP,
}


class PaymentStatus(str, Enum):
    """Payment status as stored on the order (capitalized literals)."""

    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"

    @classmethod
    def from_string(cls, value: str) -> "PaymentStatus":
        """Convert string to PaymentStatus enum, ignoring case.

        Raises:
            ValueError: If value is not a valid payment status
        """
        for status in cls:
            if status.value.lower() == value.strip().lower():
                return status
        valid_values = ", ".join([s.value for s in cls])
        raise ValueError(
            f"Invalid payment status: {value}. "
            f"Valid values are: {valid_values}"
        )

    def is_successful(self) -> bool:
        return self == PaymentStatus.PAID


class MessageStatus(str, Enum):
    """Delivery state of a chat message. Moves only forward."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return MESSAGE_STATUS_ORDER.index(self)

    def is_after(self, other: "MessageStatus") -> bool:
        return self.rank > other.rank


MESSAGE_STATUS_ORDER = [MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ]


# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.DEALER_ACCEPTED,
        OrderStatus.REJECTED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.DEALER_ACCEPTED: {
        OrderStatus.PRINTING_STARTED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PRINTING_STARTED: {
        OrderStatus.PRINTING_COMPLETED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PRINTING_COMPLETED: {
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.CANCELLED,
    },
    OrderStatus.READY_FOR_PICKUP: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.OUT_FOR_DELIVERY: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.REJECTED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}


def normalize_status_key(value: Optional[str]) -> Optional[str]:
    """Map a legacy status key to its canonical spelling.

    Unknown keys are returned unchanged so that reads never fail on
    unexpected data; writes go through ``OrderStatus.from_string``.
    """
    if value is None:
        return None
    return LEGACY_STATUS_ALIASES.get(value, value)


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus
) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(
    current: OrderStatus
) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status.

    Args:
        current: Current order status

    Returns:
        Set of allowed next statuses
    """
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()
