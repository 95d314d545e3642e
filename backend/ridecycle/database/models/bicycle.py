"""
Bicycle listing model.

Only ``available`` listings can receive offers or be ordered. Accepting an
offer or opening an order reserves the listing; an admin approves the sale
(``sold``) or the reservation is released back to ``available``.
"""

import enum
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridecycle.database.base import BaseModel, enum_column

if TYPE_CHECKING:
    from ridecycle.database.models.user import User


class BicycleStatus(str, enum.Enum):
    """Listing lifecycle status."""

    DRAFT = "draft"
    PENDING = "pending"
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"
    ARCHIVED = "archived"

    @property
    def is_purchasable(self) -> bool:
        return self == BicycleStatus.AVAILABLE


class Bicycle(BaseModel):
    """Used bicycle listed for sale by a seller."""

    __tablename__ = "bicycles"

    seller_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Listing owner",
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Asking price",
    )

    condition: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    transmission: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[BicycleStatus] = mapped_column(
        enum_column(BicycleStatus, "bicycle_status"),
        nullable=False,
        default=BicycleStatus.DRAFT,
        comment="Listing lifecycle status",
    )

    seller: Mapped["User"] = relationship(
        "User",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_bicycles_status_seller", "status", "seller_id"),
        CheckConstraint("price >= 0", name="ck_bicycles_price_non_negative"),
    )

    @property
    def is_available(self) -> bool:
        return self.status.is_purchasable

    def reserve(self) -> None:
        self.status = BicycleStatus.RESERVED

    def release(self) -> bool:
        """Return a reserved listing to the market. Returns True if changed."""
        if self.status == BicycleStatus.RESERVED:
            self.status = BicycleStatus.AVAILABLE
            return True
        return False

    def mark_sold(self) -> None:
        self.status = BicycleStatus.SOLD
