"""
Payment expiry sweeper.

Fails pending bank transfer payments whose deadline has passed, cancels
their orders and puts the reserved bicycles back on the market. Payments
awaiting proof confirmation are never expired here.

Every item is processed in its own savepoint so one bad row does not undo
the rest of the batch; each batch is committed before the next is selected.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridecycle.core.config import Settings, get_settings
from ridecycle.core.logging import get_logger, log_performance
from ridecycle.database.base import utcnow
from ridecycle.services.orders.enums import OrderStatus, PaymentStatus
from ridecycle.services.orders.repository import OrderRepository
from ridecycle.services.orders.state_machine import OrderStateMachine
from ridecycle.services.payments.repository import PaymentRepository
from ridecycle.services.payments.state_machine import PaymentStateMachine

logger = get_logger(__name__)

EXPIRY_REASON = "Payment deadline expired"


@dataclass
class SweepResult:
    transitioned: int = 0
    failed: int = 0
    iterations: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "transitioned": self.transitioned,
            "failed": self.failed,
            "iterations": self.iterations,
        }


class PaymentExpirySweeper:
    """
    Batch job expiring overdue pending payments.

    Attributes:
        session_factory: Factory for the session used by one sweep run
        batch_size: Candidates selected per batch
        max_iterations: Upper bound on batches per run
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.batch_size = settings.sweeper_batch_size
        self.max_iterations = settings.sweeper_max_iterations
        self.clock = clock
        self.payments = PaymentStateMachine(clock=clock)
        self.orders = OrderStateMachine(self.payments, clock=clock)

    async def sweep(self) -> SweepResult:
        """
        Expire overdue payments until a batch changes nothing or the
        iteration cap is reached.
        """
        result = SweepResult()
        skipped: set[uuid.UUID] = set()

        with log_performance(logger, "payment_expiry_sweep", batch_size=self.batch_size):
            async with self.session_factory() as session:
                repository = PaymentRepository(session)

                while result.iterations < self.max_iterations:
                    now = self.clock()
                    candidate_ids = await repository.find_expired_pending_ids(
                        now, self.batch_size, exclude_ids=skipped
                    )
                    result.iterations += 1
                    if not candidate_ids:
                        break

                    transitioned = 0
                    for payment_id in candidate_ids:
                        try:
                            async with session.begin_nested():
                                if await self._expire(repository, payment_id, now):
                                    transitioned += 1
                        except Exception as e:
                            skipped.add(payment_id)
                            result.failed += 1
                            logger.error(
                                "Failed to expire payment",
                                payment_id=str(payment_id),
                                error=str(e),
                                error_type=type(e).__name__,
                            )

                    await session.commit()
                    result.transitioned += transitioned
                    if transitioned == 0:
                        break

        logger.info("Payment expiry sweep finished", **result.to_dict())
        return result

    async def _expire(
        self,
        repository: PaymentRepository,
        payment_id: uuid.UUID,
        now: datetime,
    ) -> bool:
        payment = await repository.get_payment(payment_id, for_update=True)
        if payment is None:
            return False
        # Re-check under the lock; a proof may have arrived since selection.
        if payment.status != PaymentStatus.PENDING or not payment.is_expired(now):
            return False

        # Lock the order with its bicycle and payment loaded before changing
        # anything; a later populate_existing load would discard the edits.
        order = await OrderRepository(repository.session).get_order(
            payment.order_id, for_update=True
        )

        self.payments.mark_failed(payment, EXPIRY_REASON, now)
        if order.status.can_cancel():
            self.orders.apply_transition(order, OrderStatus.CANCELLED, reason=EXPIRY_REASON)

        logger.info(
            "Payment expired",
            payment_id=str(payment.id),
            order_id=str(order.id),
            order_number=order.order_number,
            expires_at=payment.expires_at.isoformat(),
        )
        return True
