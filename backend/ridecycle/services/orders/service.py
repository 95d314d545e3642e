"""
Order service orchestrating checkout and order lifecycle.

This module implements the OrderService class: opening orders (at checkout
or from an accepted offer) with shipping fees, a unique order number, a
frozen payment deadline and rendered bank transfer texts; and driving the
order through its lifecycle (status updates, buyer completion,
cancellation). Each public mutating method is one transaction.
"""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Sequence

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
from ridecycle.database.models.bicycle import Bicycle
from ridecycle.database.models.message import OfferStatus
from ridecycle.database.models.order import Order
from ridecycle.database.models.payment import OrderPayment
from ridecycle.database.models.user import User
from ridecycle.services.offers.repository import OfferRepository
from ridecycle.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
)
from ridecycle.services.orders.pricing import (
    OrderNumberExhaustedError,
    OrderNumberGenerator,
    calculate_payment_deadline,
    calculate_shipping_cost,
    render_company_account_info,
    render_payment_instructions,
)
from ridecycle.services.orders.repository import (
    OrderNumberCollisionError,
    OrderRepository,
)
from ridecycle.services.orders.state_machine import OrderStateMachine

logger = get_logger(__name__)

BICYCLE_NOT_AVAILABLE = "Bicycle is not available for purchase"


def _coerce_shipping(
    shipping_method: ShippingMethod | str,
    shipping_distance: Optional[Decimal | float | int | str],
) -> tuple[ShippingMethod, Optional[Decimal]]:
    try:
        method = ShippingMethod(shipping_method)
    except ValueError as e:
        raise ValidationError(
            f"Unsupported shipping method: {shipping_method}",
            field="shipping_method",
        ) from e

    if shipping_distance is None:
        return method, None
    try:
        return method, Decimal(str(shipping_distance))
    except InvalidOperation as e:
        raise ValidationError(
            "Shipping distance must be a number",
            field="shipping_distance",
        ) from e


def _coerce_payment_method(payment_method: PaymentMethod | str) -> PaymentMethod:
    try:
        return PaymentMethod(payment_method)
    except ValueError as e:
        raise ValidationError(
            f"Unsupported payment method: {payment_method}",
            field="payment_method",
        ) from e


class OrderService:
    """
    Order service orchestrating checkout and lifecycle transitions.

    Attributes:
        repository: Order repository for data access
        offers: Offer repository, to expire offers on a bicycle sold by checkout
        state_machine: State machine for order lifecycle management
        settings: Pricing and deadline configuration
    """

    def __init__(
        self,
        session: AsyncSession,
        state_machine: Optional[OrderStateMachine] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.repository = OrderRepository(session)
        self.offers = OfferRepository(session)
        self.clock = clock
        self.state_machine = state_machine or OrderStateMachine(clock=clock)
        self.settings = settings or get_settings()

    # Checkout

    async def create_order(
        self,
        buyer: User,
        bicycle_id: uuid.UUID,
        shipping_method: ShippingMethod | str = ShippingMethod.SELF_PICKUP,
        shipping_distance: Optional[Decimal | float | int | str] = None,
        payment_method: PaymentMethod | str = PaymentMethod.BANK_TRANSFER,
        total_price: Optional[Decimal] = None,
    ) -> Order:
        """
        Check out an available bicycle, at its listed price unless
        ``total_price`` is given. Pending offers on the bicycle expire with the
        checkout.

        Raises:
            NotFoundError: If the bicycle does not exist
            ConflictError: If the bicycle is not available or is the
                buyer's own listing
            ValidationError: If shipping or payment input is invalid
        """
        buyer_id = buyer.id
        logger.info(
            "Creating order",
            buyer_id=str(buyer_id),
            bicycle_id=str(bicycle_id),
            shipping_method=str(shipping_method),
        )

        try:
            bicycle = await self.repository.get_bicycle(bicycle_id, for_update=True)
            if bicycle is None:
                raise NotFoundError("Bicycle not found", bicycle_id=str(bicycle_id))

            if not bicycle.is_available:
                raise ConflictError(
                    BICYCLE_NOT_AVAILABLE,
                    bicycle_id=str(bicycle_id),
                    bicycle_status=bicycle.status.value,
                )

            if bicycle.seller_id == buyer_id:
                raise ConflictError(
                    "You cannot purchase your own bicycle",
                    bicycle_id=str(bicycle_id),
                )

            order = await self.open_order(
                buyer_id=buyer_id,
                bicycle=bicycle,
                total_price=total_price if total_price is not None else bicycle.price,
                shipping_method=shipping_method,
                shipping_distance=shipping_distance,
                payment_method=payment_method,
            )
            expired_offers = await self.offers.list_pending_offers_for_bicycle(
                bicycle.id
            )
            for offer in expired_offers:
                offer.resolve_offer(OfferStatus.EXPIRED)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            grand_total=str(order.grand_total),
            expired_offers=len(expired_offers),
            payment_deadline=order.payment_deadline.isoformat(),
        )
        return order

    async def open_order(
        self,
        buyer_id: uuid.UUID,
        bicycle: Bicycle,
        total_price: Decimal,
        shipping_method: ShippingMethod | str = ShippingMethod.SELF_PICKUP,
        shipping_distance: Optional[Decimal | float | int | str] = None,
        payment_method: PaymentMethod | str = PaymentMethod.BANK_TRANSFER,
        source_offer_id: Optional[uuid.UUID] = None,
    ) -> Order:
        """
        Insert an order and its payment for a bicycle locked by the caller,
        then reserve the bicycle.

        Does not commit; the caller owns the transaction.

        Raises:
            ValidationError: If shipping or payment input is invalid
            OrderNumberExhaustedError: If no unique order number was found
        """
        method, distance = _coerce_shipping(shipping_method, shipping_distance)
        pay_method = _coerce_payment_method(payment_method)
        shipping_cost = calculate_shipping_cost(method, distance, self.settings)
        if not method.requires_distance:
            distance = None

        buyer = await self.session.get(User, buyer_id)
        if buyer is None:
            raise NotFoundError("Buyer not found", buyer_id=str(buyer_id))

        generator = OrderNumberGenerator(
            self.repository.order_number_exists,
            max_attempts=self.settings.order_number_max_attempts,
            clock=self.clock,
        )

        for attempt in range(1, self.settings.order_number_max_attempts + 1):
            created_at = self.clock()
            deadline = calculate_payment_deadline(created_at, self.settings)
            order = Order(
                order_number=await generator.generate_unique(),
                buyer=buyer,
                bicycle=bicycle,
                source_offer_id=source_offer_id,
                total_price=Decimal(total_price),
                shipping_method=method,
                shipping_distance=distance,
                shipping_cost=shipping_cost,
                status=OrderStatus.PENDING,
                payment_method=pay_method,
                created_at=created_at,
                updated_at=created_at,
            )
            order.payment = OrderPayment(
                amount=order.grand_total,
                method=pay_method,
                status=PaymentStatus.PENDING,
                deadline=deadline,
                expires_at=deadline,
                proofs=[],
            )
            self.refresh_payment_texts(order)

            try:
                await self.repository.insert_order(order)
                break
            except OrderNumberCollisionError:
                logger.warning(
                    "Order number taken at insert, retrying",
                    order_number=order.order_number,
                    attempt=attempt,
                )
        else:
            raise OrderNumberExhaustedError(
                "Unable to generate a unique order number",
                max_attempts=self.settings.order_number_max_attempts,
            )

        bicycle.reserve()
        return order

    def refresh_payment_texts(self, order: Order) -> None:
        """Re-render transfer instructions and account info for ``order``."""
        order.payment_instructions = render_payment_instructions(
            order.payment_method,
            order.grand_total,
            order.payment.deadline,
            self.settings,
        )
        order.company_account_info = render_company_account_info(
            order.payment_method,
            order.order_number,
            self.settings,
        )

    async def update_order_details(
        self,
        order_id: uuid.UUID,
        actor: User,
        shipping_method: Optional[ShippingMethod | str] = None,
        shipping_distance: Optional[Decimal | float | int | str] = None,
        payment_method: Optional[PaymentMethod | str] = None,
    ) -> Order:
        """
        Change shipping or payment method while the order awaits payment.

        Shipping cost, amount due and transfer texts are recomputed; the
        payment deadline is not.

        Raises:
            NotFoundError, AuthorizationError, ConflictError, ValidationError
        """
        actor_id = actor.id
        try:
            order = await self._load_order(order_id, for_update=True)
            if order.buyer_id != actor_id:
                raise AuthorizationError(
                    "Only the buyer can change order details",
                    order_id=str(order_id),
                )
            if (
                order.status != OrderStatus.PENDING
                or order.payment_status != PaymentStatus.PENDING
            ):
                raise ConflictError(
                    "Order details can only be changed before payment",
                    order_id=str(order_id),
                    status=order.status.value,
                    payment_status=order.payment_status.value,
                )

            method, distance = _coerce_shipping(
                shipping_method or order.shipping_method,
                shipping_distance
                if shipping_distance is not None
                else order.shipping_distance,
            )
            order.shipping_cost = calculate_shipping_cost(method, distance, self.settings)
            order.shipping_method = method
            order.shipping_distance = distance if method.requires_distance else None
            if payment_method is not None:
                order.payment_method = _coerce_payment_method(payment_method)
                order.payment.method = order.payment_method

            order.payment.amount = order.grand_total
            self.refresh_payment_texts(order)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Order details updated",
            order_id=str(order.id),
            shipping_method=order.shipping_method.value,
            grand_total=str(order.grand_total),
        )
        return order

    # Lifecycle

    async def get_order(self, order_id: uuid.UUID, actor: User) -> Order:
        """
        Raises:
            NotFoundError: If the order does not exist
            AuthorizationError: If the actor is neither party nor an admin
        """
        order = await self._load_order(order_id)
        if not (actor.is_admin or order.involves(actor.id)):
            raise AuthorizationError(
                "You do not have access to this order",
                order_id=str(order_id),
            )
        return order

    async def list_orders_for_user(
        self,
        actor: User,
        role: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Sequence[Order]:
        return await self.repository.list_orders_for_user(
            actor.id, role=role, status=status, limit=limit, offset=offset
        )

    async def list_all_orders(
        self,
        actor: User,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Order]:
        """Back office listing, e.g. payments awaiting proof review."""
        if not actor.is_admin:
            raise AuthorizationError("Admin privileges required")
        return await self.repository.list_orders(
            status=status, payment_status=payment_status, limit=limit, offset=offset
        )

    async def update_status(
        self,
        order_id: uuid.UUID,
        target_status: OrderStatus | str,
        actor: User,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Move an order along its lifecycle (seller or admin).

        Raises:
            NotFoundError, AuthorizationError, StateTransitionError
        """
        actor_id, is_admin = actor.id, actor.is_admin
        try:
            target = OrderStatus.from_string(str(getattr(target_status, "value", target_status)))
        except ValueError as e:
            raise ValidationError(str(e), field="status") from e

        try:
            order = await self._load_order(order_id, for_update=True)
            if not (is_admin or order.seller_id == actor_id):
                raise AuthorizationError(
                    "Only the seller or an admin can update order status",
                    order_id=str(order_id),
                )
            self.state_machine.apply_transition(order, target, actor_id, reason)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return order

    async def complete_order(self, order_id: uuid.UUID, actor: User) -> Order:
        """
        Buyer confirms receipt.

        Raises:
            NotFoundError, AuthorizationError, StateTransitionError
        """
        actor_id = actor.id
        try:
            order = await self._load_order(order_id, for_update=True)
            if order.buyer_id != actor_id:
                raise AuthorizationError(
                    "Only the buyer can complete this order",
                    order_id=str(order_id),
                )
            self.state_machine.apply_transition(order, OrderStatus.COMPLETED, actor_id)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return order

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        actor: User,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Cancel an order that has not shipped (buyer, seller or admin).

        Releases the bicycle reservation and settles the payment.

        Raises:
            NotFoundError, AuthorizationError, ConflictError
        """
        actor_id, is_admin = actor.id, actor.is_admin
        try:
            order = await self._load_order(order_id, for_update=True)
            if not (is_admin or order.involves(actor_id)):
                raise AuthorizationError(
                    "You do not have access to this order",
                    order_id=str(order_id),
                )
            if not order.status.can_cancel():
                raise ConflictError(
                    "Order cannot be cancelled in its current status",
                    order_id=str(order_id),
                    status=order.status.value,
                )
            self.state_machine.apply_transition(
                order, OrderStatus.CANCELLED, actor_id, reason
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return order

    async def _load_order(self, order_id: uuid.UUID, for_update: bool = False) -> Order:
        order = await self.repository.get_order(order_id, for_update=for_update)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        return order
