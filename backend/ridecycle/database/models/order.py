"""
Order model for bicycle purchases.

An order is opened either from an accepted offer or directly at checkout.
It owns shipping, pricing and payment-method selection; all payment state
(status, deadline, proofs) lives on the one-to-one ``OrderPayment``
aggregate and is exposed here through read-only delegates.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridecycle.database.base import BaseModel, enum_column
from ridecycle.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
)

if TYPE_CHECKING:
    from ridecycle.database.models.bicycle import Bicycle
    from ridecycle.database.models.payment import OrderPayment
    from ridecycle.database.models.user import User


class Order(BaseModel):
    """
    Purchase of a single bicycle by a buyer.

    Attributes:
        order_number: Human-readable unique number (R-YYMMDD-XXXXXX)
        buyer_id: Purchasing user
        bicycle_id: Purchased bicycle (implies the seller)
        source_offer_id: Offer message the order was created from, if any
        total_price: Agreed item price
        shipping_method: Self pickup or assisted delivery
        shipping_distance: Delivery distance in km (assisted delivery only)
        shipping_cost: Derived shipping fee
        status: Order lifecycle status
        payment_method: Payment method (bank transfer)
        payment_instructions: Rendered transfer instructions
        company_account_info: Rendered platform account details
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    buyer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    bicycle_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bicycles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    source_offer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True,
        comment="Accepted offer this order was created from",
    )

    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    shipping_method: Mapped[ShippingMethod] = mapped_column(
        enum_column(ShippingMethod, "shipping_method"),
        nullable=False,
        default=ShippingMethod.SELF_PICKUP,
    )

    shipping_distance: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(8, 2),
        nullable=True,
        comment="Delivery distance in km",
    )

    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
    )

    status: Mapped[OrderStatus] = mapped_column(
        enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        enum_column(PaymentMethod, "payment_method"),
        nullable=False,
        default=PaymentMethod.BANK_TRANSFER,
    )

    payment_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    company_account_info: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    buyer: Mapped["User"] = relationship("User", lazy="selectin")
    bicycle: Mapped["Bicycle"] = relationship("Bicycle", lazy="selectin")
    payment: Mapped["OrderPayment"] = relationship(
        "OrderPayment",
        back_populates="order",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_buyer_status", "buyer_id", "status"),
        Index("ix_orders_bicycle_status", "bicycle_id", "status"),
        CheckConstraint("total_price > 0", name="ck_orders_total_price_positive"),
        CheckConstraint("shipping_cost >= 0", name="ck_orders_shipping_cost_non_negative"),
        CheckConstraint(
            "(shipping_method = 'assisted_delivery' AND shipping_distance > 0) "
            "OR (shipping_method = 'self_pickup' AND shipping_distance IS NULL)",
            name="ck_orders_shipping_distance_matches_method",
        ),
    )

    @property
    def seller_id(self) -> uuid.UUID:
        return self.bicycle.seller_id

    @property
    def grand_total(self) -> Decimal:
        """Amount the buyer transfers: item price plus shipping."""
        return self.total_price + self.shipping_cost

    # Payment delegates

    @property
    def payment_status(self) -> Optional[PaymentStatus]:
        return self.payment.status if self.payment else None

    @property
    def payment_deadline(self) -> Optional[datetime]:
        return self.payment.deadline if self.payment else None

    @property
    def expires_at(self) -> Optional[datetime]:
        return self.payment.expires_at if self.payment else None

    @property
    def paid_at(self) -> Optional[datetime]:
        return self.payment.paid_at if self.payment else None

    @property
    def failed_at(self) -> Optional[datetime]:
        return self.payment.failed_at if self.payment else None

    @property
    def failure_reason(self) -> Optional[str]:
        return self.payment.failure_reason if self.payment else None

    def involves(self, user_id: uuid.UUID) -> bool:
        """Check if the user is the buyer or the seller of this order."""
        return user_id in (self.buyer_id, self.seller_id)

    def to_dict(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        data = super().to_dict(exclude=exclude)
        data["grand_total"] = str(self.grand_total)
        if self.payment is not None:
            data["payment"] = self.payment.to_dict()
        return data
