"""
Payment service for manual bank transfer payments.

Buyers upload a transfer receipt (proof); an admin reviews it. Approval
settles the payment; rejection leaves it awaiting confirmation so the buyer
can upload a new receipt, with the original deadline unchanged. Admins then
approve the sale (bicycle sold) or reject it (order cancelled, payment
refunded, bicycle back on the market).
"""

import uuid
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridecycle.core.config import Settings, get_settings
from ridecycle.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ridecycle.core.logging import get_logger
from ridecycle.database.base import utcnow
from ridecycle.database.models.bicycle import BicycleStatus
from ridecycle.database.models.order import Order
from ridecycle.database.models.payment import OrderPayment, PaymentProof
from ridecycle.database.models.user import User
from ridecycle.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    ProofDecision,
    ProofStatus,
)
from ridecycle.services.orders.repository import OrderRepository
from ridecycle.services.orders.state_machine import OrderStateMachine
from ridecycle.services.payments.repository import PaymentRepository
from ridecycle.services.payments.state_machine import PaymentStateMachine
from ridecycle.services.payments.storage import ProofStorage, ProofStorageError

logger = get_logger(__name__)

UNAUTHORIZED_UPLOAD = "Unauthorized to upload payment proof for this order"
INVALID_UPLOAD_STATUS = "Cannot upload payment proof for this order status"
PROOF_REQUIRED = "Payment proof file is required"
INVALID_PROOF_FORMAT = "Invalid file format. Only JPEG, PNG, GIF, and PDF are allowed"
PROOF_UNDER_REVIEW = "A payment proof is already awaiting review"
PAYMENT_DEADLINE_PASSED = "Payment deadline has passed"
UPLOAD_SUCCESS_MESSAGE = "付款證明已成功上傳，我們將在24小時內確認您的付款"


class PaymentService:
    """
    Payment proof upload/review and admin sale decisions.

    Attributes:
        repository: Payment repository
        orders: Order repository
        storage: Proof file storage
        state_machine: Payment state machine
        order_state_machine: Order state machine for sale rejection
    """

    def __init__(
        self,
        session: AsyncSession,
        storage: Optional[ProofStorage] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock
        self.repository = PaymentRepository(session)
        self.orders = OrderRepository(session)
        self.storage = storage or ProofStorage(self.settings.proof_storage_dir)
        self.state_machine = PaymentStateMachine(clock=clock)
        self.order_state_machine = OrderStateMachine(self.state_machine, clock=clock)

    # Proof upload

    def validate_proof_file(
        self,
        filename: Optional[str],
        content_type: Optional[str],
        data: Optional[bytes],
    ) -> None:
        """
        Raises:
            ValidationError: If the file is missing, of a wrong type or too large
        """
        if not data or not filename:
            raise ValidationError(PROOF_REQUIRED, field="payment_proof")

        if content_type not in self.settings.proof_allowed_content_types:
            raise ValidationError(
                INVALID_PROOF_FORMAT,
                field="payment_proof",
                content_type=content_type,
            )

        if len(data) > self.settings.proof_max_bytes:
            raise ValidationError(
                f"File size too large. Maximum size is "
                f"{self.settings.proof_max_megabytes}MB",
                field="payment_proof",
                byte_size=len(data),
            )

    async def upload_proof(
        self,
        order_id: uuid.UUID,
        actor: User,
        filename: Optional[str],
        content_type: Optional[str],
        data: Optional[bytes],
    ) -> Order:
        """
        Attach a transfer receipt and move the payment to awaiting confirmation.

        Raises:
            NotFoundError: If the order does not exist
            AuthorizationError: Unless the actor is the buyer
            ConflictError: If the order or payment no longer accepts proofs,
                a proof is already under review, or the deadline has passed
            ValidationError: If the file is missing, of a wrong type or too large
        """
        actor_id = actor.id
        stored_key: Optional[str] = None

        try:
            order = await self._load_order(order_id)
            if order.buyer_id != actor_id:
                raise AuthorizationError(UNAUTHORIZED_UPLOAD, order_id=str(order_id))

            payment = await self._lock_payment(order)
            self._ensure_accepts_proof(order, payment)
            self.validate_proof_file(filename, content_type, data)

            stored_key = await self.storage.save(order.order_number, content_type, data)
            proof = PaymentProof(
                sequence=len(payment.proofs) + 1,
                storage_key=stored_key,
                filename=filename,
                content_type=content_type,
                byte_size=len(data),
                status=ProofStatus.PENDING,
                uploaded_by_id=actor_id,
            )
            payment.proofs.append(proof)
            self.state_machine.mark_awaiting_confirmation(payment)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            if stored_key is not None:
                await self.storage.delete(stored_key)
            raise

        logger.info(
            "Payment proof uploaded",
            order_id=str(order.id),
            order_number=order.order_number,
            proof_sequence=proof.sequence,
            byte_size=proof.byte_size,
        )
        return order

    def _ensure_accepts_proof(self, order: Order, payment: OrderPayment) -> None:
        context = {
            "order_id": str(order.id),
            "order_status": order.status.value,
            "payment_status": payment.status.value,
        }
        if order.status != OrderStatus.PENDING or not payment.status.accepts_proof():
            raise ConflictError(INVALID_UPLOAD_STATUS, **context)

        if payment.proof_status in (ProofStatus.PENDING, ProofStatus.APPROVED):
            raise ConflictError(
                PROOF_UNDER_REVIEW,
                proof_status=payment.proof_status.value,
                **context,
            )

        if payment.status == PaymentStatus.PENDING and payment.is_expired(self.clock()):
            raise ConflictError(
                PAYMENT_DEADLINE_PASSED,
                expires_at=payment.expires_at.isoformat(),
                **context,
            )

    # Proof review

    async def review_proof(
        self,
        order_id: uuid.UUID,
        decision: ProofDecision | str,
        reviewer: User,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Record an admin decision on the current proof.

        Raises:
            AuthorizationError: Unless the reviewer is an admin
            NotFoundError: If the order does not exist
            ConflictError: If there is no proof awaiting review
            ValidationError: On an unknown decision
        """
        reviewer_id, is_admin = reviewer.id, reviewer.is_admin
        if not is_admin:
            raise AuthorizationError("Only admins can review payment proofs")
        try:
            verdict = ProofDecision(getattr(decision, "value", decision))
        except ValueError as e:
            raise ValidationError(
                f"Invalid review decision: {decision}", field="decision"
            ) from e

        try:
            order = await self._load_order(order_id)
            payment = await self._lock_payment(order)
            proof = payment.current_proof
            if proof is None:
                raise ConflictError("No payment proof to review", order_id=str(order_id))
            if proof.status != ProofStatus.PENDING:
                raise ConflictError(
                    "Payment proof has already been reviewed",
                    order_id=str(order_id),
                    proof_status=proof.status.value,
                )

            now = self.clock()
            proof.status = verdict.proof_status
            proof.reviewed_at = now
            proof.reviewed_by_id = reviewer_id
            proof.review_notes = notes

            if verdict == ProofDecision.APPROVED:
                self.state_machine.mark_paid(payment, now)

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Payment proof reviewed",
            order_id=str(order.id),
            decision=verdict.value,
            reviewer_id=str(reviewer_id),
            payment_status=payment.status.value,
        )
        return order

    async def get_proof_file(
        self,
        order_id: uuid.UUID,
        actor: User,
    ) -> tuple[PaymentProof, bytes]:
        """
        Current proof of an order and its file contents (buyer or admin).

        Raises:
            NotFoundError: If the order, its proof or the stored file is missing
            AuthorizationError: Unless the actor is the buyer or an admin
        """
        order = await self._load_order(order_id)
        if not (actor.is_admin or order.buyer_id == actor.id):
            raise AuthorizationError(
                "You do not have access to this payment proof",
                order_id=str(order_id),
            )

        proof = order.payment.current_proof if order.payment else None
        if proof is None:
            raise NotFoundError("No payment proof uploaded", order_id=str(order_id))

        try:
            data = await self.storage.read(proof.storage_key)
        except ProofStorageError as e:
            logger.error(
                "Payment proof file missing",
                order_id=str(order_id),
                storage_key=proof.storage_key,
            )
            raise NotFoundError(
                "Payment proof file not found", order_id=str(order_id)
            ) from e
        return proof, data

    async def mark_failed(self, order_id: uuid.UUID, reason: str) -> Order:
        """
        Fail an order's payment. Repeating the call is a no-op.

        Raises:
            NotFoundError, StateTransitionError
        """
        try:
            order = await self._load_order(order_id)
            payment = await self._lock_payment(order)
            changed = self.state_machine.mark_failed(payment, reason)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Payment marked failed",
            order_id=str(order_id),
            reason=reason,
            changed=changed,
        )
        return order

    # Admin sale decisions

    async def approve_sale(self, order_id: uuid.UUID, admin: User) -> Order:
        """
        Confirm a paid sale: the bicycle is sold and the order starts processing.

        Raises:
            AuthorizationError, NotFoundError, ConflictError
        """
        admin_id = self._require_admin(admin)
        try:
            order = await self._load_order(order_id, for_update=True)
            if order.payment_status != PaymentStatus.PAID:
                raise ConflictError(
                    "Payment has not been confirmed for this order",
                    order_id=str(order_id),
                    payment_status=order.payment_status.value,
                )
            bicycle = await self.orders.get_bicycle(order.bicycle_id, for_update=True)
            if bicycle.status != BicycleStatus.RESERVED:
                raise ConflictError(
                    "Bicycle is not reserved for this order",
                    order_id=str(order_id),
                    bicycle_status=bicycle.status.value,
                )

            bicycle.mark_sold()
            if order.status == OrderStatus.PENDING:
                self.order_state_machine.apply_transition(
                    order, OrderStatus.PROCESSING, admin_id, "Sale approved"
                )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Sale approved",
            order_id=str(order.id),
            bicycle_id=str(order.bicycle_id),
            admin_id=str(admin_id),
        )
        return order

    async def reject_sale(
        self,
        order_id: uuid.UUID,
        admin: User,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Reverse a paid sale: order cancelled, payment refunded, bicycle released.

        Raises:
            AuthorizationError, NotFoundError, ConflictError
        """
        admin_id = self._require_admin(admin)
        try:
            order = await self._load_order(order_id, for_update=True)
            if order.payment_status != PaymentStatus.PAID:
                raise ConflictError(
                    "Only paid orders can be rejected",
                    order_id=str(order_id),
                    payment_status=order.payment_status.value,
                )
            self.order_state_machine.apply_transition(
                order,
                OrderStatus.CANCELLED,
                admin_id,
                reason or "Sale rejected by admin",
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Sale rejected",
            order_id=str(order.id),
            admin_id=str(admin_id),
            reason=order.cancel_reason,
        )
        return order

    def bank_account_info(self) -> dict[str, Any]:
        """Platform receiving account shown on the checkout page."""
        return {
            "bank_name": self.settings.bank_name,
            "bank_code": self.settings.bank_code,
            "account_number": self.settings.bank_account_number,
            "account_name": self.settings.bank_account_name,
            "branch": self.settings.bank_branch,
            "note": self.settings.bank_transfer_note,
        }

    @staticmethod
    def _require_admin(actor: User) -> uuid.UUID:
        if not actor.is_admin:
            raise AuthorizationError("Admin privileges required")
        return actor.id

    async def _load_order(self, order_id: uuid.UUID, for_update: bool = False) -> Order:
        order = await self.orders.get_order(order_id, for_update=for_update)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        return order

    async def _lock_payment(self, order: Order) -> OrderPayment:
        payment = await self.repository.get_payment_for_order(order.id, for_update=True)
        if payment is None:
            raise NotFoundError("Payment not found", order_id=str(order.id))
        return payment
