"""
Message model for buyer/seller conversations about a bicycle.

A message may carry a price offer. The offer sub-state moves exactly once
from ``pending`` to ``accepted``, ``rejected`` or ``expired``; plain
messages stay at ``none``. A partial unique index guarantees at most one
pending offer per (sender, bicycle).
"""

import enum
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ridecycle.database.base import BaseModel, enum_column

PENDING_OFFER_INDEX = "uq_messages_pending_offer_sender_bicycle"


class OfferStatus(str, enum.Enum):
    """Offer disposition carried by a message."""

    NONE = "none"
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"

    def is_terminal(self) -> bool:
        return self in {
            OfferStatus.ACCEPTED,
            OfferStatus.REJECTED,
            OfferStatus.EXPIRED,
        }


class Message(BaseModel):
    """Conversation message, optionally carrying a price offer."""

    __tablename__ = "messages"

    sender_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    recipient_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    bicycle_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bicycles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)

    is_offer: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Message carries a price offer",
    )

    offer_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Offered price, required for offers",
    )

    offer_status: Mapped[OfferStatus] = mapped_column(
        enum_column(OfferStatus, "offer_status"),
        nullable=False,
        default=OfferStatus.NONE,
    )

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index(
            PENDING_OFFER_INDEX,
            "sender_id",
            "bicycle_id",
            unique=True,
            postgresql_where=text("offer_status = 'pending'"),
            sqlite_where=text("offer_status = 'pending'"),
        ),
        Index("ix_messages_bicycle_offer_status", "bicycle_id", "offer_status"),
        CheckConstraint(
            "offer_amount IS NULL OR offer_amount > 0",
            name="ck_messages_offer_amount_positive",
        ),
    )

    @property
    def is_pending_offer(self) -> bool:
        return self.is_offer and self.offer_status == OfferStatus.PENDING

    def resolve_offer(self, outcome: OfferStatus) -> None:
        """
        Move a pending offer to a terminal status.

        Raises:
            ValueError: If the message is not a pending offer or the outcome
                is not terminal
        """
        if not self.is_pending_offer:
            raise ValueError(f"Message {self.id} is not a pending offer")
        if not outcome.is_terminal():
            raise ValueError(f"{outcome.value} is not a terminal offer status")
        self.offer_status = outcome
