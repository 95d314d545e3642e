"""
Payment data access repository.

Loads payment aggregates (with their proofs) for the upload, review and
expiry flows, including the candidate query the expiry sweeper batches over.
"""

import uuid
from datetime import datetime
from typing import Any, Collection, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ridecycle.core.logging import get_logger
from ridecycle.database.models.payment import OrderPayment
from ridecycle.services.orders.enums import PaymentStatus

logger = get_logger(__name__)


class PaymentRepositoryError(Exception):
    """Base exception for payment repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class PaymentRepository:
    """Repository for ``OrderPayment`` aggregates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_payment_for_order(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[OrderPayment]:
        stmt = select(OrderPayment).where(OrderPayment.order_id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to load payment", order_id=str(order_id), error=str(e))
            raise PaymentRepositoryError(
                "Failed to load payment", order_id=str(order_id)
            ) from e

    async def get_payment(
        self,
        payment_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[OrderPayment]:
        stmt = select(OrderPayment).where(OrderPayment.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_expired_pending_ids(
        self,
        now: datetime,
        limit: int,
        exclude_ids: Collection[uuid.UUID] = (),
    ) -> Sequence[uuid.UUID]:
        """
        IDs of pending payments whose deadline passed, oldest first.

        Payments awaiting proof confirmation are never candidates.
        """
        stmt = (
            select(OrderPayment.id)
            .where(
                OrderPayment.status == PaymentStatus.PENDING,
                OrderPayment.expires_at < now,
            )
            .order_by(OrderPayment.expires_at)
            .limit(limit)
        )
        if exclude_ids:
            stmt = stmt.where(OrderPayment.id.not_in(list(exclude_ids)))

        result = await self.session.execute(stmt)
        return result.scalars().all()
