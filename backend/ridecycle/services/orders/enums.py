"""Order and payment status enums with state transition rules.

This module defines the enums shared by the order and payment aggregates
(order status, payment status, proof review status, shipping and payment
methods) together with the allowed-transition tables that the state
machines validate against.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> PROCESSING, CANCELLED
    - PROCESSING -> SHIPPED, CANCELLED
    - SHIPPED -> DELIVERED, COMPLETED
    - DELIVERED -> COMPLETED, REFUNDED
    - COMPLETED, CANCELLED, REFUNDED -> (terminal)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid order status: {value}. Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        return self in {
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        }

    def can_cancel(self) -> bool:
        """Buyers and sellers may cancel before the bicycle ships."""
        return self in {OrderStatus.PENDING, OrderStatus.PROCESSING}


class PaymentStatus(str, Enum):
    """Bank transfer payment status.

    Valid transitions:
    - PENDING -> AWAITING_CONFIRMATION, FAILED
    - AWAITING_CONFIRMATION -> PAID, FAILED
    - PAID -> REFUNDED
    - FAILED, REFUNDED -> (terminal)
    """

    PENDING = "pending"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "PaymentStatus":
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid payment status: {value}. Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        return self in {PaymentStatus.FAILED, PaymentStatus.REFUNDED}

    def accepts_proof(self) -> bool:
        """Check if a buyer may upload a transfer receipt in this status."""
        return self in {PaymentStatus.PENDING, PaymentStatus.AWAITING_CONFIRMATION}


class ProofStatus(str, Enum):
    """Review status of an uploaded payment proof."""

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ProofDecision(str, Enum):
    """Admin decision on a pending proof."""

    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def proof_status(self) -> ProofStatus:
        return ProofStatus(self.value)


class ShippingMethod(str, Enum):
    """How the bicycle reaches the buyer."""

    SELF_PICKUP = "self_pickup"
    ASSISTED_DELIVERY = "assisted_delivery"

    @property
    def requires_distance(self) -> bool:
        return self == ShippingMethod.ASSISTED_DELIVERY


class PaymentMethod(str, Enum):
    """Supported payment methods."""

    BANK_TRANSFER = "bank_transfer"


ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
    },
    OrderStatus.DELIVERED: {
        OrderStatus.COMPLETED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.COMPLETED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.AWAITING_CONFIRMATION,
        PaymentStatus.FAILED,
    },
    PaymentStatus.AWAITING_CONFIRMATION: {
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
    },
    PaymentStatus.PAID: {
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.FAILED: set(),  # Terminal
    PaymentStatus.REFUNDED: set(),  # Terminal
}


def validate_order_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Check whether ``current -> new`` is an allowed order transition."""
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def validate_payment_status_transition(
    current: PaymentStatus, new: PaymentStatus
) -> bool:
    """Check whether ``current -> new`` is an allowed payment transition."""
    return new in PAYMENT_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()


def get_allowed_payment_transitions(current: PaymentStatus) -> Set[PaymentStatus]:
    return PAYMENT_STATUS_TRANSITIONS.get(current, set()).copy()
