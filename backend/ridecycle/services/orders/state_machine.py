"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class for managing order
lifecycle transitions with guards (payment must be settled before the
order moves on) and side effects (timestamps, bicycle reservation release,
payment settlement on cancellation or refund).

The state machine only mutates in-memory objects; the calling service owns
the transaction and flushes or commits.
"""

from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import UUID

from ridecycle.core.exceptions import StateTransitionError
from ridecycle.core.logging import get_logger
from ridecycle.database.base import utcnow
from ridecycle.database.models.order import Order
from ridecycle.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from ridecycle.services.payments.state_machine import PaymentStateMachine

logger = get_logger(__name__)

DEFAULT_CANCEL_REASON = "Order cancelled"


class OrderStateMachine:
    """State machine for managing order lifecycle transitions."""

    def __init__(
        self,
        payment_state_machine: Optional[PaymentStateMachine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.payments = payment_state_machine or PaymentStateMachine(clock=clock)
        self.clock = clock
        self._transition_guards: Dict[
            tuple[OrderStatus, OrderStatus], Callable[[Order], bool]
        ] = self._initialize_guards()
        self._side_effects: Dict[
            OrderStatus, Callable[[Order, Optional[str]], None]
        ] = self._initialize_side_effects()

    def _initialize_guards(
        self,
    ) -> Dict[tuple[OrderStatus, OrderStatus], Callable[[Order], bool]]:
        return {
            (OrderStatus.PENDING, OrderStatus.PROCESSING): self._guard_payment_settled,
            (OrderStatus.SHIPPED, OrderStatus.COMPLETED): self._guard_payment_settled,
            (OrderStatus.DELIVERED, OrderStatus.COMPLETED): self._guard_payment_settled,
        }

    def _initialize_side_effects(
        self,
    ) -> Dict[OrderStatus, Callable[[Order, Optional[str]], None]]:
        return {
            OrderStatus.COMPLETED: self._effect_completed,
            OrderStatus.CANCELLED: self._effect_cancelled,
            OrderStatus.REFUNDED: self._effect_refunded,
        }

    def validate_transition(
        self,
        order: Order,
        target_status: OrderStatus,
    ) -> None:
        """
        Validate that ``order`` may move to ``target_status``.

        Raises:
            StateTransitionError: If the transition table or a guard forbids it
        """
        current_status = order.status

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise StateTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                order_id=str(order.id),
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None and not guard(order):
            raise StateTransitionError(
                f"Order {order.order_number} cannot move to {target_status.value} "
                f"before payment is confirmed",
                current_state=current_status,
                target_state=target_status,
                order_id=str(order.id),
                payment_status=order.payment_status.value if order.payment_status else None,
            )

    def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        user_id: Optional[UUID] = None,
        reason: Optional[str] = None,
    ) -> None:
        """
        Apply a transition and its side effects to ``order``.

        Raises:
            StateTransitionError: If the transition is invalid
        """
        self.validate_transition(order, target_status)

        old_status = order.status
        order.status = target_status

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(order, reason)

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            order_number=order.order_number,
            transition=f"{old_status.value}->{target_status.value}",
            changed_by=str(user_id) if user_id else None,
            reason=reason,
        )

    # Transition Guards

    def _guard_payment_settled(self, order: Order) -> bool:
        return order.payment_status == PaymentStatus.PAID

    # Side Effects

    def _effect_completed(self, order: Order, reason: Optional[str]) -> None:
        order.completed_at = self.clock()

    def _effect_cancelled(self, order: Order, reason: Optional[str]) -> None:
        order.cancelled_at = self.clock()
        order.cancel_reason = reason or DEFAULT_CANCEL_REASON

        if order.bicycle.release():
            logger.info(
                "Bicycle reservation released",
                order_id=str(order.id),
                bicycle_id=str(order.bicycle_id),
            )

        payment = order.payment
        if payment is None:
            return
        if payment.status == PaymentStatus.PAID:
            self.payments.refund(payment)
        elif not payment.status.is_terminal():
            self.payments.mark_failed(payment, order.cancel_reason)

    def _effect_refunded(self, order: Order, reason: Optional[str]) -> None:
        if order.payment is not None and order.payment.status == PaymentStatus.PAID:
            self.payments.refund(order.payment)
