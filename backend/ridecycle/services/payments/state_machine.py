"""Payment state machine for bank transfer payments.

Validates payment status changes against the transition table and stamps
settlement timestamps exactly once. Settling calls (``mark_paid``,
``mark_failed``) are idempotent: repeating them on an already settled
payment is a no-op that returns ``False``.
"""

from datetime import datetime
from typing import Callable, Optional

from ridecycle.core.exceptions import StateTransitionError
from ridecycle.core.logging import get_logger
from ridecycle.database.base import utcnow
from ridecycle.database.models.payment import OrderPayment
from ridecycle.services.orders.enums import (
    PaymentStatus,
    get_allowed_payment_transitions,
    validate_payment_status_transition,
)

logger = get_logger(__name__)


class PaymentStateMachine:
    """Applies payment status transitions and their timestamp side effects."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def validate_transition(
        self,
        payment: OrderPayment,
        target_status: PaymentStatus,
    ) -> None:
        """
        Raises:
            StateTransitionError: If the transition is not allowed
        """
        current_status = payment.status
        if not validate_payment_status_transition(current_status, target_status):
            allowed = get_allowed_payment_transitions(current_status)
            raise StateTransitionError(
                f"Invalid payment transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                payment_id=str(payment.id),
                allowed_transitions=sorted(s.value for s in allowed),
            )

    def apply_transition(
        self,
        payment: OrderPayment,
        target_status: PaymentStatus,
        now: Optional[datetime] = None,
    ) -> None:
        self.validate_transition(payment, target_status)

        now = now or self.clock()
        old_status = payment.status
        payment.status = target_status

        if target_status == PaymentStatus.PAID and payment.paid_at is None:
            payment.paid_at = now
        elif target_status == PaymentStatus.FAILED and payment.failed_at is None:
            payment.failed_at = now
        elif target_status == PaymentStatus.REFUNDED and payment.refunded_at is None:
            payment.refunded_at = now

        logger.info(
            "Payment status changed",
            payment_id=str(payment.id),
            order_id=str(payment.order_id),
            transition=f"{old_status.value}->{target_status.value}",
        )

    def mark_awaiting_confirmation(self, payment: OrderPayment) -> bool:
        if payment.status == PaymentStatus.AWAITING_CONFIRMATION:
            return False
        self.apply_transition(payment, PaymentStatus.AWAITING_CONFIRMATION)
        return True

    def mark_paid(self, payment: OrderPayment, now: Optional[datetime] = None) -> bool:
        if payment.status == PaymentStatus.PAID:
            return False
        self.apply_transition(payment, PaymentStatus.PAID, now)
        return True

    def mark_failed(
        self,
        payment: OrderPayment,
        reason: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Fail the payment with a reason.

        Returns:
            False if the payment was already failed, True otherwise
        """
        if payment.status == PaymentStatus.FAILED:
            return False
        self.apply_transition(payment, PaymentStatus.FAILED, now)
        payment.failure_reason = reason
        return True

    def refund(self, payment: OrderPayment, now: Optional[datetime] = None) -> bool:
        if payment.status == PaymentStatus.REFUNDED:
            return False
        self.apply_transition(payment, PaymentStatus.REFUNDED, now)
        return True
