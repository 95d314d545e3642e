"""
Offer service: price offers carried on conversation messages.

Buyers make offers on available bicycles; the seller accepts or rejects
them. Accepting is one transaction: the offer is accepted, competing
pending offers on the same bicycle are rejected, the bicycle is reserved,
an order is opened at the offered price and a reply is posted to the buyer.
The bicycle row lock taken first makes concurrent acceptances on the same
bicycle serialize, so the loser sees a non-available bicycle and fails.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ridecycle.core.config import Settings, get_settings
from ridecycle.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ridecycle.core.logging import get_logger
from ridecycle.database.models.bicycle import Bicycle
from ridecycle.database.models.message import Message, OfferStatus
from ridecycle.database.models.order import Order
from ridecycle.database.models.user import User
from ridecycle.services.offers.repository import (
    DuplicatePendingOfferError,
    OfferRepository,
)
from ridecycle.services.orders.pricing import format_twd
from ridecycle.services.orders.repository import OrderRepository
from ridecycle.services.orders.service import OrderService

logger = get_logger(__name__)

BICYCLE_NOT_FOUND = "腳踏車不存在"
OWN_BICYCLE = "不能對自己發布的腳踏車出價"
BICYCLE_UNAVAILABLE_FOR_OFFER = "此腳踏車已不可購買"
DUPLICATE_PENDING_OFFER = "您已經有一個待回應的出價，請等待對方回應或先撤回之前的出價"
INVALID_OFFER_AMOUNT = "出價金額必須大於 0"
OFFER_NOT_FOUND = "出價訊息不存在"
OFFER_NOT_PENDING = "這個出價無法被接受"
OFFER_NOT_PENDING_REJECT = "這個出價無法被拒絕"
BICYCLE_UNAVAILABLE_FOR_ACCEPT = "腳踏車已不可購買"
SELLER_BANK_ACCOUNT_INCOMPLETE = "請先完成收款銀行帳戶設定，才能接受出價"


def forbidden_message(action: str) -> str:
    return f"您沒有權限{action}這個出價"


def accepted_reply(amount: Decimal, order_number: str) -> str:
    return (
        f"我接受了您的出價 {format_twd(amount)}！"
        f"您的訂單編號是 {order_number}。請聯繫我完成交易。"
    )


def rejected_reply(amount: Decimal) -> str:
    return f"很抱歉，我拒絕了您的出價 {format_twd(amount)}。"


@dataclass
class AcceptOfferResult:
    accepted_offer: Message
    response_message: Message
    order: Order


@dataclass
class RejectOfferResult:
    rejected_offer: Message
    response_message: Message


class OfferService:
    """
    Offer workflow on top of messages.

    Attributes:
        repository: Offer repository
        orders: Order service used to open the order on acceptance
    """

    def __init__(
        self,
        session: AsyncSession,
        order_service: Optional[OrderService] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repository = OfferRepository(session)
        self.bicycles = OrderRepository(session)
        self.orders = order_service or OrderService(session, settings=self.settings)

    async def create_offer(
        self,
        sender: User,
        bicycle_id: uuid.UUID,
        amount: Decimal | int | float | str,
        content: Optional[str] = None,
    ) -> Message:
        """
        Make a price offer on a bicycle.

        Raises:
            ValidationError: On a non-positive amount, an offer on one's own
                bicycle, an unavailable bicycle or an existing pending offer
            NotFoundError: If the bicycle does not exist
            ConflictError: If a concurrent request created a pending offer
        """
        sender_id = sender.id
        offer_amount = self._parse_amount(amount)

        try:
            bicycle = await self.bicycles.get_bicycle(bicycle_id, for_update=True)
            if bicycle is None:
                raise NotFoundError(BICYCLE_NOT_FOUND, bicycle_id=str(bicycle_id))
            if bicycle.seller_id == sender_id:
                raise ValidationError(OWN_BICYCLE, bicycle_id=str(bicycle_id))
            if not bicycle.is_available:
                raise ValidationError(
                    BICYCLE_UNAVAILABLE_FOR_OFFER,
                    bicycle_id=str(bicycle_id),
                    bicycle_status=bicycle.status.value,
                )
            if await self.repository.has_pending_offer(sender_id, bicycle_id):
                raise ValidationError(
                    DUPLICATE_PENDING_OFFER,
                    bicycle_id=str(bicycle_id),
                )

            offer = Message(
                sender_id=sender_id,
                recipient_id=bicycle.seller_id,
                bicycle_id=bicycle_id,
                content=self._offer_content(content, offer_amount),
                is_offer=True,
                offer_amount=offer_amount,
                offer_status=OfferStatus.PENDING,
            )
            try:
                await self.repository.insert_message(offer)
            except DuplicatePendingOfferError as e:
                raise ConflictError(DUPLICATE_PENDING_OFFER, **e.context) from e

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Offer created",
            offer_id=str(offer.id),
            sender_id=str(sender_id),
            bicycle_id=str(bicycle_id),
            offer_amount=str(offer_amount),
        )
        return offer

    async def accept_offer(self, offer_id: uuid.UUID, actor: User) -> AcceptOfferResult:
        """
        Accept a pending offer and open an order at the offered price.

        Raises:
            NotFoundError: If the offer does not exist
            AuthorizationError: Unless the actor is the bicycle's seller
            ConflictError: If the offer is no longer pending or the bicycle
                is no longer available
            ValidationError: If the seller has no complete payout account
        """
        actor_id = actor.id
        logger.info("Accepting offer", offer_id=str(offer_id), actor_id=str(actor_id))

        try:
            offer, bicycle = await self._load_for_decision(offer_id, actor_id, "接受")

            if offer.offer_status != OfferStatus.PENDING:
                raise ConflictError(
                    OFFER_NOT_PENDING,
                    offer_id=str(offer_id),
                    offer_status=offer.offer_status.value,
                )
            if not bicycle.is_available:
                raise ConflictError(
                    BICYCLE_UNAVAILABLE_FOR_ACCEPT,
                    offer_id=str(offer_id),
                    bicycle_status=bicycle.status.value,
                )
            if self.settings.require_seller_bank_account:
                seller = await self.session.get(User, actor_id)
                if seller is None or not seller.bank_account_complete:
                    raise ValidationError(
                        SELLER_BANK_ACCOUNT_INCOMPLETE,
                        seller_id=str(actor_id),
                    )

            order = await self.orders.open_order(
                buyer_id=offer.sender_id,
                bicycle=bicycle,
                total_price=offer.offer_amount,
                source_offer_id=offer.id,
            )

            offer.resolve_offer(OfferStatus.ACCEPTED)
            competing = await self.repository.list_pending_offers_for_bicycle(
                bicycle.id, exclude_id=offer.id
            )
            for other in competing:
                other.resolve_offer(OfferStatus.REJECTED)

            response = Message(
                sender_id=actor_id,
                recipient_id=offer.sender_id,
                bicycle_id=bicycle.id,
                content=accepted_reply(offer.offer_amount, order.order_number),
                is_offer=False,
                offer_status=OfferStatus.NONE,
            )
            self.session.add(response)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Offer accepted",
            offer_id=str(offer.id),
            order_id=str(order.id),
            order_number=order.order_number,
            auto_rejected=len(competing),
        )
        return AcceptOfferResult(
            accepted_offer=offer,
            response_message=response,
            order=order,
        )

    async def reject_offer(self, offer_id: uuid.UUID, actor: User) -> RejectOfferResult:
        """
        Reject a pending offer.

        Raises:
            NotFoundError, AuthorizationError, ConflictError
        """
        actor_id = actor.id

        try:
            offer, bicycle = await self._load_for_decision(offer_id, actor_id, "拒絕")

            if offer.offer_status != OfferStatus.PENDING:
                raise ConflictError(
                    OFFER_NOT_PENDING_REJECT,
                    offer_id=str(offer_id),
                    offer_status=offer.offer_status.value,
                )

            offer.resolve_offer(OfferStatus.REJECTED)
            response = Message(
                sender_id=actor_id,
                recipient_id=offer.sender_id,
                bicycle_id=bicycle.id,
                content=rejected_reply(offer.offer_amount),
                is_offer=False,
                offer_status=OfferStatus.NONE,
            )
            self.session.add(response)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("Offer rejected", offer_id=str(offer.id), actor_id=str(actor_id))
        return RejectOfferResult(rejected_offer=offer, response_message=response)

    async def list_offers_for_bicycle(
        self,
        bicycle_id: uuid.UUID,
        actor: User,
    ) -> Sequence[Message]:
        """
        All offers on a bicycle, newest first (seller or admin).

        Raises:
            NotFoundError, AuthorizationError
        """
        bicycle = await self.bicycles.get_bicycle(bicycle_id)
        if bicycle is None:
            raise NotFoundError(BICYCLE_NOT_FOUND, bicycle_id=str(bicycle_id))
        if not (actor.is_admin or bicycle.seller_id == actor.id):
            raise AuthorizationError(
                "只有賣家可以查看這台腳踏車的出價",
                bicycle_id=str(bicycle_id),
            )
        return await self.repository.list_offers_for_bicycle(bicycle_id)

    async def _load_for_decision(
        self,
        offer_id: uuid.UUID,
        actor_id: uuid.UUID,
        action: str,
    ) -> tuple[Message, Bicycle]:
        """Load an offer and lock its bicycle, then re-read the offer under the lock."""
        offer = await self.repository.get_offer(offer_id)
        if offer is None:
            raise NotFoundError(OFFER_NOT_FOUND, offer_id=str(offer_id))

        bicycle = await self.bicycles.get_bicycle(offer.bicycle_id, for_update=True)
        if bicycle is None:
            raise NotFoundError(BICYCLE_NOT_FOUND, bicycle_id=str(offer.bicycle_id))

        if bicycle.seller_id != actor_id:
            raise AuthorizationError(
                forbidden_message(action),
                offer_id=str(offer_id),
                actor_id=str(actor_id),
            )

        offer = await self.repository.get_offer(offer_id, for_update=True)
        return offer, bicycle

    @staticmethod
    def _parse_amount(amount: Decimal | int | float | str) -> Decimal:
        try:
            value = Decimal(str(amount))
        except InvalidOperation as e:
            raise ValidationError(INVALID_OFFER_AMOUNT, field="offer_amount") from e
        if not value.is_finite() or value <= 0:
            raise ValidationError(INVALID_OFFER_AMOUNT, field="offer_amount")
        return value

    @staticmethod
    def _offer_content(content: Optional[str], amount: Decimal) -> str:
        """Keep the buyer's text if it mentions the offer, otherwise use a summary."""
        text = (content or "").strip()
        if text and ("offer" in text.lower() or "出價" in text):
            return text
        return f"出價: {format_twd(amount)}"
