"""
Payment aggregate for bank transfer orders.

``OrderPayment`` is the single owner of payment state: status, the frozen
deadline (mirrored into ``expires_at`` for the expiry sweeper), settlement
timestamps and the uploaded transfer proofs. Each ``PaymentProof`` row is
one upload with its own typed review record; the highest ``sequence`` is
the current proof and older uploads are kept.
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
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridecycle.database.base import BaseModel, enum_column
from ridecycle.services.orders.enums import PaymentMethod, PaymentStatus, ProofStatus

if TYPE_CHECKING:
    from ridecycle.database.models.order import Order


class OrderPayment(BaseModel):
    """
    Payment sub-state of an order.

    Attributes:
        order_id: Owning order (one-to-one)
        amount: Amount due (item price plus shipping)
        method: Payment method
        status: Payment status
        deadline: Transfer deadline, set once at creation
        expires_at: Copy of ``deadline`` used by the expiry sweeper
        paid_at: When the proof was approved
        failed_at: When the payment failed
        failure_reason: Why the payment failed
        refunded_at: When the payment was refunded
    """

    __tablename__ = "order_payments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    method: Mapped[PaymentMethod] = mapped_column(
        enum_column(PaymentMethod, "order_payment_method"),
        nullable=False,
        default=PaymentMethod.BANK_TRANSFER,
    )

    status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    deadline: Mapped[datetime] = mapped_column(
        DateTime(),
        nullable=False,
        comment="Bank transfer deadline; never recomputed",
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(),
        nullable=False,
        comment="Mirror of deadline for expiry queries",
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    order: Mapped["Order"] = relationship(
        "Order",
        back_populates="payment",
        lazy="selectin",
    )

    proofs: Mapped[list["PaymentProof"]] = relationship(
        "PaymentProof",
        back_populates="payment",
        order_by="PaymentProof.sequence",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_order_payments_status_expires_at", "status", "expires_at"),
        CheckConstraint("amount > 0", name="ck_order_payments_amount_positive"),
    )

    @property
    def current_proof(self) -> Optional["PaymentProof"]:
        """Newest upload, or None if nothing was uploaded."""
        return self.proofs[-1] if self.proofs else None

    @property
    def proof_status(self) -> ProofStatus:
        proof = self.current_proof
        return proof.status if proof else ProofStatus.NONE

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def to_dict(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        data = super().to_dict(exclude=exclude)
        data["proof_status"] = self.proof_status.value
        data["proofs"] = [proof.to_dict() for proof in self.proofs]
        return data


class PaymentProof(BaseModel):
    """One uploaded bank transfer receipt and its review outcome."""

    __tablename__ = "payment_proofs"

    payment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Upload number within the payment, newest is current",
    )

    storage_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Opaque key in proof storage",
    )

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    byte_size: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[ProofStatus] = mapped_column(
        enum_column(ProofStatus, "proof_status"),
        nullable=False,
        default=ProofStatus.PENDING,
    )

    uploaded_by_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    payment: Mapped["OrderPayment"] = relationship(
        "OrderPayment",
        back_populates="proofs",
        lazy="raise",
    )

    __table_args__ = (
        UniqueConstraint("payment_id", "sequence", name="uq_payment_proofs_sequence"),
        CheckConstraint("byte_size > 0", name="ck_payment_proofs_byte_size_positive"),
    )

    def metadata_blob(self) -> dict[str, Any]:
        """Review outcome in the attachment metadata shape."""
        return {
            "status": self.status.value,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewed_by_id": str(self.reviewed_by_id) if self.reviewed_by_id else None,
            "review_notes": self.review_notes,
        }
