"""
Integration tests for payment proof upload, review and admin sale decisions.
"""

import uuid

import pytest
import pytest_asyncio

from ridecycle.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from ridecycle.database.models.bicycle import Bicycle, BicycleStatus
from ridecycle.database.models.order import Order
from ridecycle.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    ProofDecision,
    ProofStatus,
)
from ridecycle.services.orders.service import OrderService
from ridecycle.services.payments.service import (
    INVALID_PROOF_FORMAT,
    PAYMENT_DEADLINE_PASSED,
    PROOF_REQUIRED,
    PROOF_UNDER_REVIEW,
    UNAUTHORIZED_UPLOAD,
    PaymentService,
)

pytestmark = pytest.mark.integration

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 256


@pytest.fixture
def payments(session_factory, settings, proof_storage, clock):
    """
    Run one PaymentService method in its own session.

    Example:
        order = await payments("upload_proof", order_id, buyer, ...)
    """

    async def _run(method: str, *args, **kwargs):
        async with session_factory() as session:
            service = PaymentService(
                session, storage=proof_storage, settings=settings, clock=clock
            )
            return await getattr(service, method)(*args, **kwargs)

    return _run


@pytest_asyncio.fixture
async def order(session_factory, settings, clock, buyer, bicycle) -> Order:
    async with session_factory() as session:
        return await OrderService(session, settings=settings, clock=clock).create_order(
            buyer, bicycle.id
        )


@pytest.fixture
def upload(payments, buyer):
    async def _upload(
        order_id,
        actor=None,
        filename="receipt.png",
        content_type="image/png",
        data=PNG_BYTES,
    ):
        return await payments(
            "upload_proof", order_id, actor or buyer, filename, content_type, data
        )

    return _upload


# ============================================================================
# Proof Upload Tests
# ============================================================================


class TestUploadProof:
    """Tests for PaymentService.upload_proof."""

    @pytest.mark.asyncio
    async def test_upload_moves_payment_to_awaiting(
        self, upload, fetch, proof_storage, order, buyer
    ):
        updated = await upload(order.id)

        payment = updated.payment
        assert payment.status == PaymentStatus.AWAITING_CONFIRMATION
        assert payment.proof_status == ProofStatus.PENDING
        assert len(payment.proofs) == 1

        proof = payment.current_proof
        assert proof.sequence == 1
        assert proof.filename == "receipt.png"
        assert proof.byte_size == len(PNG_BYTES)
        assert proof.uploaded_by_id == buyer.id
        assert proof.storage_key.startswith(f"{order.order_number}/")
        assert await proof_storage.read(proof.storage_key) == PNG_BYTES

        stored = await fetch(Order, order.id)
        assert stored.payment_status == PaymentStatus.AWAITING_CONFIRMATION
        assert stored.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_only_buyer_can_upload(self, upload, order, seller):
        with pytest.raises(AuthorizationError) as exc_info:
            await upload(order.id, actor=seller)

        assert exc_info.value.message == UNAUTHORIZED_UPLOAD

    @pytest.mark.asyncio
    async def test_unknown_order(self, upload):
        with pytest.raises(NotFoundError):
            await upload(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_missing_file(self, upload, order):
        with pytest.raises(ValidationError) as exc_info:
            await upload(order.id, data=b"")

        assert exc_info.value.message == PROOF_REQUIRED

    @pytest.mark.asyncio
    async def test_wrong_content_type(self, upload, order):
        with pytest.raises(ValidationError) as exc_info:
            await upload(order.id, filename="receipt.txt", content_type="text/plain")

        assert exc_info.value.message == INVALID_PROOF_FORMAT

    @pytest.mark.asyncio
    async def test_file_too_large(self, upload, order, settings):
        with pytest.raises(ValidationError) as exc_info:
            await upload(order.id, data=b"\x00" * (settings.proof_max_bytes + 1))

        assert "Maximum size is 1MB" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_second_upload_while_under_review(self, upload, order):
        await upload(order.id)

        with pytest.raises(ConflictError) as exc_info:
            await upload(order.id)

        assert exc_info.value.message == PROOF_UNDER_REVIEW

    @pytest.mark.asyncio
    async def test_upload_after_deadline(self, upload, fetch, order, clock):
        clock.advance(days=3, seconds=1)

        with pytest.raises(ConflictError) as exc_info:
            await upload(order.id)

        assert exc_info.value.message == PAYMENT_DEADLINE_PASSED
        stored = await fetch(Order, order.id)
        assert stored.payment_status == PaymentStatus.PENDING
        assert stored.payment.proofs == []

    @pytest.mark.asyncio
    async def test_upload_on_cancelled_order(
        self, upload, session_factory, settings, order, buyer
    ):
        async with session_factory() as session:
            await OrderService(session, settings=settings).cancel_order(order.id, buyer)

        with pytest.raises(ConflictError):
            await upload(order.id)


# ============================================================================
# Proof Review Tests
# ============================================================================


class TestReviewProof:
    """Tests for PaymentService.review_proof."""

    @pytest.mark.asyncio
    async def test_approve_marks_paid(self, upload, payments, order, admin, clock):
        await upload(order.id)

        reviewed = await payments(
            "review_proof", order.id, ProofDecision.APPROVED, admin, "Looks good"
        )

        payment = reviewed.payment
        assert payment.status == PaymentStatus.PAID
        assert payment.paid_at == clock.now
        proof = payment.current_proof
        assert proof.status == ProofStatus.APPROVED
        assert proof.reviewed_by_id == admin.id
        assert proof.review_notes == "Looks good"

    @pytest.mark.asyncio
    async def test_approve_twice_keeps_paid_at(
        self, upload, payments, fetch, order, admin, clock
    ):
        await upload(order.id)
        await payments("review_proof", order.id, "approved", admin)
        first_paid_at = clock.now
        clock.advance(hours=2)

        with pytest.raises(ConflictError):
            await payments("review_proof", order.id, "approved", admin)

        stored = await fetch(Order, order.id)
        assert stored.paid_at == first_paid_at

    @pytest.mark.asyncio
    async def test_reject_then_reupload(self, upload, payments, fetch, order, admin):
        await upload(order.id)

        reviewed = await payments(
            "review_proof", order.id, ProofDecision.REJECTED, admin, "illegible"
        )

        assert reviewed.payment.status == PaymentStatus.AWAITING_CONFIRMATION
        assert reviewed.payment.proof_status == ProofStatus.REJECTED
        assert reviewed.payment.current_proof.review_notes == "illegible"
        original_deadline = reviewed.payment.deadline

        reuploaded = await upload(
            order.id, filename="receipt-2.pdf", content_type="application/pdf"
        )

        payment = reuploaded.payment
        assert payment.status == PaymentStatus.AWAITING_CONFIRMATION
        assert payment.proof_status == ProofStatus.PENDING
        assert [p.sequence for p in payment.proofs] == [1, 2]
        assert payment.deadline == original_deadline

        stored = await fetch(Order, order.id)
        assert [p.status for p in stored.payment.proofs] == [
            ProofStatus.REJECTED,
            ProofStatus.PENDING,
        ]

    @pytest.mark.asyncio
    async def test_proof_metadata_blob(self, upload, payments, order, admin, clock):
        uploaded = await upload(order.id)
        assert uploaded.payment.current_proof.metadata_blob() == {
            "status": "pending",
            "reviewed_at": None,
            "reviewed_by_id": None,
            "review_notes": None,
        }

        reviewed = await payments(
            "review_proof", order.id, ProofDecision.REJECTED, admin, "illegible"
        )

        assert reviewed.payment.current_proof.metadata_blob() == {
            "status": "rejected",
            "reviewed_at": clock.now.isoformat(),
            "reviewed_by_id": str(admin.id),
            "review_notes": "illegible",
        }

    @pytest.mark.asyncio
    async def test_review_without_proof(self, payments, order, admin):
        with pytest.raises(ConflictError):
            await payments("review_proof", order.id, "approved", admin)

    @pytest.mark.asyncio
    async def test_review_requires_admin(self, upload, payments, order, seller):
        await upload(order.id)

        with pytest.raises(AuthorizationError):
            await payments("review_proof", order.id, "approved", seller)

    @pytest.mark.asyncio
    async def test_unknown_decision(self, upload, payments, order, admin):
        await upload(order.id)

        with pytest.raises(ValidationError):
            await payments("review_proof", order.id, "maybe", admin)


# ============================================================================
# Payment Failure Tests
# ============================================================================


class TestMarkFailed:
    """Tests for PaymentService.mark_failed."""

    @pytest.mark.asyncio
    async def test_mark_failed_is_idempotent(self, payments, order, clock):
        failed = await payments("mark_failed", order.id, "Buyer unreachable")
        failed_at = failed.payment.failed_at
        clock.advance(minutes=10)

        again = await payments("mark_failed", order.id, "Second reason")

        assert again.payment.status == PaymentStatus.FAILED
        assert again.payment.failed_at == failed_at
        assert again.payment.failure_reason == "Buyer unreachable"

    @pytest.mark.asyncio
    async def test_paid_payment_cannot_fail(self, upload, payments, order, admin):
        await upload(order.id)
        await payments("review_proof", order.id, "approved", admin)

        with pytest.raises(StateTransitionError):
            await payments("mark_failed", order.id, "too late")


# ============================================================================
# Sale Decision Tests
# ============================================================================


class TestSaleDecisions:
    """Tests for approve_sale and reject_sale."""

    @pytest_asyncio.fixture
    async def paid_order(self, upload, payments, order, admin) -> Order:
        await upload(order.id)
        return await payments("review_proof", order.id, "approved", admin)

    @pytest.mark.asyncio
    async def test_approve_sale(self, payments, fetch, paid_order, admin, bicycle):
        approved = await payments("approve_sale", paid_order.id, admin)

        assert approved.status == OrderStatus.PROCESSING
        stored_bicycle = await fetch(Bicycle, bicycle.id)
        assert stored_bicycle.status == BicycleStatus.SOLD

    @pytest.mark.asyncio
    async def test_approve_sale_twice(self, payments, paid_order, admin):
        await payments("approve_sale", paid_order.id, admin)

        with pytest.raises(ConflictError):
            await payments("approve_sale", paid_order.id, admin)

    @pytest.mark.asyncio
    async def test_approve_unpaid_order(self, payments, order, admin):
        with pytest.raises(ConflictError):
            await payments("approve_sale", order.id, admin)

    @pytest.mark.asyncio
    async def test_sale_decisions_require_admin(self, payments, paid_order, seller):
        with pytest.raises(AuthorizationError):
            await payments("approve_sale", paid_order.id, seller)
        with pytest.raises(AuthorizationError):
            await payments("reject_sale", paid_order.id, seller)

    @pytest.mark.asyncio
    async def test_reject_sale_refunds_and_releases(
        self, payments, fetch, paid_order, admin, bicycle
    ):
        rejected = await payments(
            "reject_sale", paid_order.id, admin, "Listing was misdescribed"
        )

        assert rejected.status == OrderStatus.CANCELLED
        assert rejected.cancel_reason == "Listing was misdescribed"
        assert rejected.payment.status == PaymentStatus.REFUNDED
        assert rejected.payment.refunded_at is not None
        stored_bicycle = await fetch(Bicycle, bicycle.id)
        assert stored_bicycle.status == BicycleStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_reject_unpaid_sale(self, payments, order, admin):
        with pytest.raises(ConflictError):
            await payments("reject_sale", order.id, admin)


# ============================================================================
# Bank Account Info Tests
# ============================================================================


class TestBankAccountInfo:
    """Tests for the platform receiving account."""

    @pytest.mark.asyncio
    async def test_bank_account_info(self, session_factory, settings):
        async with session_factory() as session:
            info = PaymentService(session, settings=settings).bank_account_info()

        assert info["bank_code"] == settings.bank_code
        assert info["account_number"] == settings.bank_account_number
        assert set(info) == {
            "bank_name",
            "bank_code",
            "account_number",
            "account_name",
            "branch",
            "note",
        }
