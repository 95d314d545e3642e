"""
Order data access repository.

Async queries for orders and the bicycles they reference, including the
row locks the offer and checkout flows rely on. Database failures are
wrapped in repository errors; an order-number collision on insert is
surfaced separately so the service can retry with a fresh number.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ridecycle.core.logging import get_logger
from ridecycle.database.models.bicycle import Bicycle
from ridecycle.database.models.order import Order
from ridecycle.database.models.payment import OrderPayment
from ridecycle.services.orders.enums import OrderStatus, PaymentStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNumberCollisionError(OrderRepositoryError):
    """Raised when the unique order number index rejects an insert."""

    pass


class OrderRepository:
    """Repository for order and bicycle data access."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_bicycle(
        self,
        bicycle_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Bicycle]:
        """
        Load a bicycle, optionally taking a row lock.

        The lock serializes concurrent offer acceptance and checkout on
        the same listing until the surrounding transaction ends.
        """
        stmt = select(Bicycle).where(Bicycle.id == bicycle_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load bicycle",
                bicycle_id=str(bicycle_id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to load bicycle", bicycle_id=str(bicycle_id)
            ) from e

    async def get_order(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to load order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to load order", order_id=str(order_id)
            ) from e

    async def order_number_exists(self, order_number: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(Order).where(
                Order.order_number == order_number
            )
        )
        return result.scalar_one() > 0

    async def insert_order(self, order: Order) -> Order:
        """
        Insert an order (and its cascaded payment) inside a savepoint.

        Raises:
            OrderNumberCollisionError: If the order number is already taken
            OrderRepositoryError: On any other database failure
        """
        try:
            async with self.session.begin_nested():
                self.session.add(order)
                await self.session.flush()
        except IntegrityError as e:
            if "order_number" in str(e.orig):
                raise OrderNumberCollisionError(
                    "Order number already in use",
                    order_number=order.order_number,
                ) from e
            logger.error(
                "Order insert failed - integrity error",
                order_number=order.order_number,
                error=str(e.orig),
            )
            raise OrderRepositoryError(
                "Order creation failed due to data integrity violation",
                order_number=order.order_number,
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Order insert failed - database error",
                order_number=order.order_number,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Order creation failed due to database error",
                order_number=order.order_number,
            ) from e

        logger.debug(
            "Order inserted",
            order_id=str(order.id),
            order_number=order.order_number,
        )
        return order

    async def list_orders_for_user(
        self,
        user_id: uuid.UUID,
        role: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Sequence[Order]:
        """
        Orders where the user is the buyer, the seller, or either.

        Args:
            user_id: User to list orders for
            role: ``"buyer"``, ``"seller"`` or None for both
            status: Optional status filter
        """
        stmt = select(Order).join(Bicycle, Order.bicycle_id == Bicycle.id)

        if role == "buyer":
            stmt = stmt.where(Order.buyer_id == user_id)
        elif role == "seller":
            stmt = stmt.where(Bicycle.seller_id == user_id)
        else:
            stmt = stmt.where(
                or_(Order.buyer_id == user_id, Bicycle.seller_id == user_id)
            )

        if status is not None:
            stmt = stmt.where(Order.status == status)

        stmt = stmt.order_by(Order.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Order]:
        """Back office listing with optional order / payment status filters."""
        stmt = select(Order)
        if payment_status is not None:
            stmt = stmt.join(OrderPayment, OrderPayment.order_id == Order.id).where(
                OrderPayment.status == payment_status
            )
        if status is not None:
            stmt = stmt.where(Order.status == status)

        stmt = stmt.order_by(Order.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return result.scalars().all()
