"""
Offer (message) data access repository.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ridecycle.core.logging import get_logger
from ridecycle.database.models.message import (
    PENDING_OFFER_INDEX,
    Message,
    OfferStatus,
)

logger = get_logger(__name__)


class OfferRepositoryError(Exception):
    """Base exception for offer repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class DuplicatePendingOfferError(OfferRepositoryError):
    """Raised when the pending-offer unique index rejects an insert."""

    pass


def _is_pending_offer_violation(error: IntegrityError) -> bool:
    detail = str(error.orig)
    return PENDING_OFFER_INDEX in detail or (
        "messages.sender_id" in detail and "messages.bicycle_id" in detail
    )


class OfferRepository:
    """Repository for offer-carrying messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_offer(
        self,
        message_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Message]:
        stmt = select(Message).where(
            Message.id == message_id,
            Message.is_offer.is_(True),
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to load offer", message_id=str(message_id), error=str(e))
            raise OfferRepositoryError(
                "Failed to load offer", message_id=str(message_id)
            ) from e

    async def has_pending_offer(
        self,
        sender_id: uuid.UUID,
        bicycle_id: uuid.UUID,
    ) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(Message)
            .where(
                Message.sender_id == sender_id,
                Message.bicycle_id == bicycle_id,
                Message.is_offer.is_(True),
                Message.offer_status == OfferStatus.PENDING,
            )
        )
        return result.scalar_one() > 0

    async def list_pending_offers_for_bicycle(
        self,
        bicycle_id: uuid.UUID,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Sequence[Message]:
        stmt = (
            select(Message)
            .where(
                Message.bicycle_id == bicycle_id,
                Message.is_offer.is_(True),
                Message.offer_status == OfferStatus.PENDING,
            )
            .with_for_update()
        )
        if exclude_id is not None:
            stmt = stmt.where(Message.id != exclude_id)

        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_offers_for_bicycle(self, bicycle_id: uuid.UUID) -> Sequence[Message]:
        result = await self.session.execute(
            select(Message)
            .where(Message.bicycle_id == bicycle_id, Message.is_offer.is_(True))
            .order_by(Message.created_at.desc())
        )
        return result.scalars().all()

    async def insert_message(self, message: Message) -> Message:
        """
        Insert a message inside a savepoint.

        Raises:
            DuplicatePendingOfferError: If the sender already has a pending
                offer on the bicycle
            OfferRepositoryError: On any other database failure
        """
        try:
            async with self.session.begin_nested():
                self.session.add(message)
                await self.session.flush()
        except IntegrityError as e:
            if _is_pending_offer_violation(e):
                raise DuplicatePendingOfferError(
                    "Pending offer already exists",
                    sender_id=str(message.sender_id),
                    bicycle_id=str(message.bicycle_id),
                ) from e
            logger.error("Message insert failed - integrity error", error=str(e.orig))
            raise OfferRepositoryError("Message creation failed") from e
        except SQLAlchemyError as e:
            logger.error("Message insert failed - database error", error=str(e))
            raise OfferRepositoryError("Message creation failed") from e

        return message
