"""
Integration tests for the offer workflow against the SQLite test database.

Each service call runs in its own session, the way each request does in
the application.
"""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from ridecycle.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ridecycle.database.models.bicycle import Bicycle, BicycleStatus
from ridecycle.database.models.message import Message, OfferStatus
from ridecycle.database.models.order import Order
from ridecycle.database.models.user import User
from ridecycle.services.offers.service import (
    DUPLICATE_PENDING_OFFER,
    OWN_BICYCLE,
    SELLER_BANK_ACCOUNT_INCOMPLETE,
    OfferService,
)
from ridecycle.services.orders.enums import OrderStatus, PaymentStatus
from ridecycle.services.orders.service import OrderService

pytestmark = pytest.mark.integration


@pytest.fixture
def make_offer(session_factory, settings):
    """Create a pending offer in its own session."""

    async def _make(sender, bicycle_id, amount="12000", content=None) -> Message:
        async with session_factory() as session:
            return await OfferService(session, settings=settings).create_offer(
                sender, bicycle_id, amount, content
            )

    return _make


@pytest.fixture
def accept(session_factory, settings, clock):
    async def _accept(offer_id, actor):
        async with session_factory() as session:
            service = OfferService(
                session,
                order_service=OrderService(session, settings=settings, clock=clock),
                settings=settings,
            )
            return await service.accept_offer(offer_id, actor)

    return _accept


@pytest.fixture
def reject(session_factory, settings):
    async def _reject(offer_id, actor):
        async with session_factory() as session:
            return await OfferService(session, settings=settings).reject_offer(
                offer_id, actor
            )

    return _reject


# ============================================================================
# Create Offer Tests
# ============================================================================


class TestCreateOffer:
    """Tests for OfferService.create_offer."""

    @pytest.mark.asyncio
    async def test_create_offer(self, make_offer, buyer, seller, bicycle):
        offer = await make_offer(buyer, bicycle.id, "12000")

        assert offer.is_offer is True
        assert offer.offer_status == OfferStatus.PENDING
        assert offer.offer_amount == Decimal("12000")
        assert offer.sender_id == buyer.id
        assert offer.recipient_id == seller.id
        assert offer.content == "出價: NT$12,000"

    @pytest.mark.asyncio
    async def test_keeps_content_that_mentions_offer(self, make_offer, buyer, bicycle):
        offer = await make_offer(buyer, bicycle.id, "12000", "My offer: 12000, cash ready")

        assert offer.content == "My offer: 12000, cash ready"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1", "abc"])
    async def test_rejects_non_positive_amount(self, make_offer, buyer, bicycle, amount):
        with pytest.raises(ValidationError) as exc_info:
            await make_offer(buyer, bicycle.id, amount)

        assert exc_info.value.context["field"] == "offer_amount"

    @pytest.mark.asyncio
    async def test_cannot_offer_on_own_bicycle(self, make_offer, seller, bicycle):
        with pytest.raises(ValidationError) as exc_info:
            await make_offer(seller, bicycle.id)

        assert exc_info.value.message == OWN_BICYCLE

    @pytest.mark.asyncio
    async def test_unavailable_bicycle(self, make_offer, make_bicycle, buyer):
        reserved = await make_bicycle(status=BicycleStatus.RESERVED)

        with pytest.raises(ValidationError):
            await make_offer(buyer, reserved.id)

    @pytest.mark.asyncio
    async def test_unknown_bicycle(self, make_offer, buyer):
        with pytest.raises(NotFoundError):
            await make_offer(buyer, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_duplicate_pending_offer(self, make_offer, buyer, bicycle):
        await make_offer(buyer, bicycle.id, "12000")

        with pytest.raises(ValidationError) as exc_info:
            await make_offer(buyer, bicycle.id, "13000")

        assert exc_info.value.message == DUPLICATE_PENDING_OFFER

    @pytest.mark.asyncio
    async def test_new_offer_allowed_after_rejection(
        self, make_offer, reject, buyer, seller, bicycle
    ):
        first = await make_offer(buyer, bicycle.id, "9000")
        await reject(first.id, seller)

        second = await make_offer(buyer, bicycle.id, "11000")

        assert second.offer_status == OfferStatus.PENDING


# ============================================================================
# Accept Offer Tests
# ============================================================================


class TestAcceptOffer:
    """Tests for OfferService.accept_offer."""

    @pytest.mark.asyncio
    async def test_accept_creates_order_at_offer_price(
        self, make_offer, accept, fetch, buyer, seller, bicycle, clock
    ):
        offer = await make_offer(buyer, bicycle.id, "15000")

        result = await accept(offer.id, seller)

        order = result.order
        assert order.total_price == Decimal("15000")
        assert order.status == OrderStatus.PENDING
        assert order.buyer_id == buyer.id
        assert order.source_offer_id == offer.id
        assert order.payment.status == PaymentStatus.PENDING
        assert order.payment.deadline == clock.now + timedelta(days=3)
        assert order.payment.expires_at == order.payment.deadline
        assert order.created_at == clock.now

        assert result.accepted_offer.offer_status == OfferStatus.ACCEPTED
        assert result.response_message.recipient_id == buyer.id
        assert result.response_message.is_offer is False
        assert "NT$15,000" in result.response_message.content
        assert order.order_number in result.response_message.content

        stored_bicycle = await fetch(Bicycle, bicycle.id)
        assert stored_bicycle.status == BicycleStatus.RESERVED
        stored_offer = await fetch(Message, offer.id)
        assert stored_offer.offer_status == OfferStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_accept_rejects_competing_offers(
        self, make_offer, accept, fetch, buyer, other_buyer, seller, bicycle
    ):
        winning = await make_offer(buyer, bicycle.id, "14000")
        losing = await make_offer(other_buyer, bicycle.id, "13000")

        await accept(winning.id, seller)

        stored_losing = await fetch(Message, losing.id)
        assert stored_losing.offer_status == OfferStatus.REJECTED

    @pytest.mark.asyncio
    async def test_accept_twice_creates_one_order(
        self, make_offer, accept, session_factory, buyer, seller, bicycle
    ):
        offer = await make_offer(buyer, bicycle.id, "15000")
        await accept(offer.id, seller)

        with pytest.raises(ConflictError):
            await accept(offer.id, seller)

        async with session_factory() as session:
            orders = (
                await session.execute(select(Order).where(Order.bicycle_id == bicycle.id))
            ).scalars().all()
        assert len(orders) == 1

    @pytest.mark.asyncio
    async def test_concurrent_accepts_open_one_order(
        self,
        make_offer,
        serialized_session_factory,
        session_factory,
        settings,
        clock,
        fetch,
        buyer,
        other_buyer,
        seller,
        bicycle,
    ):
        first = await make_offer(buyer, bicycle.id, "14000")
        second = await make_offer(other_buyer, bicycle.id, "13500")

        async def accept_in_own_session(offer_id):
            async with serialized_session_factory() as session:
                service = OfferService(
                    session,
                    order_service=OrderService(session, settings=settings, clock=clock),
                    settings=settings,
                )
                return await service.accept_offer(offer_id, seller)

        outcomes = await asyncio.gather(
            accept_in_own_session(first.id),
            accept_in_own_session(second.id),
            return_exceptions=True,
        )

        accepted = [o for o in outcomes if not isinstance(o, BaseException)]
        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(accepted) == 1
        assert len(conflicts) == 1

        async with session_factory() as session:
            orders = (
                await session.execute(select(Order).where(Order.bicycle_id == bicycle.id))
            ).scalars().all()
        assert len(orders) == 1
        assert orders[0].source_offer_id == accepted[0].accepted_offer.id

        statuses = {
            (await fetch(Message, first.id)).offer_status,
            (await fetch(Message, second.id)).offer_status,
        }
        assert statuses == {OfferStatus.ACCEPTED, OfferStatus.REJECTED}
        assert (await fetch(Bicycle, bicycle.id)).status == BicycleStatus.RESERVED

    @pytest.mark.asyncio
    async def test_accept_after_bicycle_reserved_elsewhere(
        self, make_offer, accept, session_factory, settings, buyer, other_buyer, seller, bicycle
    ):
        offer = await make_offer(buyer, bicycle.id, "14000")
        async with session_factory() as session:
            await OrderService(session, settings=settings).create_order(
                other_buyer, bicycle.id
            )

        with pytest.raises(ConflictError):
            await accept(offer.id, seller)

    @pytest.mark.asyncio
    async def test_only_seller_can_accept(
        self, make_offer, accept, buyer, other_buyer, bicycle
    ):
        offer = await make_offer(buyer, bicycle.id)

        with pytest.raises(AuthorizationError):
            await accept(offer.id, other_buyer)

    @pytest.mark.asyncio
    async def test_unknown_offer(self, accept, seller):
        with pytest.raises(NotFoundError):
            await accept(uuid.uuid4(), seller)

    @pytest.mark.asyncio
    async def test_seller_without_bank_account(
        self, make_offer, accept, session_factory, fetch, buyer, seller, bicycle
    ):
        offer = await make_offer(buyer, bicycle.id)
        async with session_factory() as session:
            stored = await session.get(User, seller.id)
            stored.bank_account_number = None
            await session.commit()

        with pytest.raises(ValidationError) as exc_info:
            await accept(offer.id, seller)

        assert exc_info.value.message == SELLER_BANK_ACCOUNT_INCOMPLETE
        stored_offer = await fetch(Message, offer.id)
        assert stored_offer.offer_status == OfferStatus.PENDING
        stored_bicycle = await fetch(Bicycle, bicycle.id)
        assert stored_bicycle.status == BicycleStatus.AVAILABLE


# ============================================================================
# Reject and List Tests
# ============================================================================


class TestRejectOffer:
    """Tests for rejecting and listing offers."""

    @pytest.mark.asyncio
    async def test_reject(self, make_offer, reject, fetch, buyer, seller, bicycle):
        offer = await make_offer(buyer, bicycle.id, "9000")

        result = await reject(offer.id, seller)

        assert result.rejected_offer.offer_status == OfferStatus.REJECTED
        assert "NT$9,000" in result.response_message.content
        stored_bicycle = await fetch(Bicycle, bicycle.id)
        assert stored_bicycle.status == BicycleStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_reject_twice(self, make_offer, reject, buyer, seller, bicycle):
        offer = await make_offer(buyer, bicycle.id)
        await reject(offer.id, seller)

        with pytest.raises(ConflictError):
            await reject(offer.id, seller)

    @pytest.mark.asyncio
    async def test_only_seller_can_reject(self, make_offer, reject, buyer, bicycle):
        offer = await make_offer(buyer, bicycle.id)

        with pytest.raises(AuthorizationError):
            await reject(offer.id, buyer)

    @pytest.mark.asyncio
    async def test_list_offers_for_bicycle(
        self, make_offer, session_factory, settings, buyer, other_buyer, seller, admin, bicycle
    ):
        await make_offer(buyer, bicycle.id, "9000")
        await make_offer(other_buyer, bicycle.id, "9500")

        async with session_factory() as session:
            service = OfferService(session, settings=settings)
            offers = await service.list_offers_for_bicycle(bicycle.id, seller)
            admin_view = await service.list_offers_for_bicycle(bicycle.id, admin)

            with pytest.raises(AuthorizationError):
                await service.list_offers_for_bicycle(bicycle.id, buyer)

        assert len(offers) == 2
        assert len(admin_view) == 2
