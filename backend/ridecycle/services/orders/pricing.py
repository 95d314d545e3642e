"""Order pricing, order numbers and bank transfer texts.

Pure helpers used by the order service: shipping fee calculation, payment
deadline arithmetic, human-readable order number generation with bounded
retry, and rendering of the transfer instructions shown to the buyer.
"""

import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from ridecycle.core.config import Settings, get_settings
from ridecycle.core.exceptions import ConflictError, ValidationError
from ridecycle.core.logging import get_logger
from ridecycle.database.base import utcnow
from ridecycle.services.orders.enums import PaymentMethod, ShippingMethod

logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "R"
ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_SUFFIX_LENGTH = 6


class OrderNumberExhaustedError(ConflictError):
    """Raised when no free order number was found within the attempt cap."""


def calculate_shipping_cost(
    method: ShippingMethod,
    distance: Optional[Decimal] = None,
    settings: Optional[Settings] = None,
) -> Decimal:
    """
    Compute the shipping fee for an order.

    Self pickup is free regardless of distance. Assisted delivery costs
    ``base_fee + distance * per_km_rate``.

    Raises:
        ValidationError: If assisted delivery has no positive distance
    """
    if method == ShippingMethod.SELF_PICKUP:
        return Decimal("0")

    settings = settings or get_settings()
    if distance is None or Decimal(distance) <= 0:
        raise ValidationError(
            "Shipping distance must be greater than 0 for assisted delivery",
            field="shipping_distance",
            shipping_method=method.value,
        )

    return settings.shipping_base_fee + Decimal(distance) * settings.shipping_per_km_rate


def calculate_payment_deadline(
    created_at: datetime,
    settings: Optional[Settings] = None,
) -> datetime:
    """Transfer deadline for an order created at ``created_at``."""
    settings = settings or get_settings()
    return created_at + timedelta(days=settings.payment_deadline_days)


def format_twd(amount: Decimal) -> str:
    """Format an amount as NT$ with thousands separators, e.g. NT$15,000."""
    value = Decimal(amount)
    if value == value.to_integral_value():
        return f"NT${int(value):,}"
    return f"NT${value:,.2f}"


class OrderNumberGenerator:
    """
    Generates ``R-YYMMDD-XXXXXX`` order numbers.

    ``exists`` is an async predicate (usually a repository lookup). The
    unique index on ``orders.order_number`` is the real guarantor; this
    loop only keeps collisions from reaching the insert.
    """

    def __init__(
        self,
        exists: Callable[[str], Awaitable[bool]],
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.exists = exists
        self.max_attempts = max_attempts or get_settings().order_number_max_attempts
        self.clock = clock

    def generate(self) -> str:
        """A random candidate; uniqueness is not checked."""
        date_part = self.clock().strftime("%y%m%d")
        suffix = "".join(
            secrets.choice(ORDER_NUMBER_ALPHABET)
            for _ in range(ORDER_NUMBER_SUFFIX_LENGTH)
        )
        return f"{ORDER_NUMBER_PREFIX}-{date_part}-{suffix}"

    async def generate_unique(self) -> str:
        """
        Return an order number not yet in use.

        Raises:
            OrderNumberExhaustedError: If every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            number = self.generate()
            if not await self.exists(number):
                return number
            logger.warning(
                "Order number collision",
                order_number=number,
                attempt=attempt,
                max_attempts=self.max_attempts,
            )

        logger.error("Order number generation exhausted", max_attempts=self.max_attempts)
        raise OrderNumberExhaustedError(
            "Unable to generate a unique order number",
            max_attempts=self.max_attempts,
        )


def render_payment_instructions(
    method: PaymentMethod,
    amount: Decimal,
    deadline: datetime,
    settings: Optional[Settings] = None,
) -> str:
    """Buyer-facing transfer instructions for the given payment method."""
    if method != PaymentMethod.BANK_TRANSFER:
        return ""

    settings = settings or get_settings()
    return (
        f"請於 {deadline:%Y-%m-%d %H:%M} (UTC) 前轉帳 {format_twd(amount)} 至下列帳戶，"
        f"並上傳轉帳收據作為付款證明。\n{settings.bank_transfer_note}"
    )


def render_company_account_info(
    method: PaymentMethod,
    order_number: str,
    settings: Optional[Settings] = None,
) -> str:
    """Platform receiving account, with the order number as transfer memo."""
    if method != PaymentMethod.BANK_TRANSFER:
        return ""

    settings = settings or get_settings()
    return (
        f"銀行：{settings.bank_name}（{settings.bank_code}）\n"
        f"分行：{settings.bank_branch}\n"
        f"帳號：{settings.bank_account_number}\n"
        f"戶名：{settings.bank_account_name}\n"
        f"轉帳備註：訂單編號 {order_number}"
    )
