"""
Tests for shipping cost, payment deadline and order number generation.
"""

import asyncio
import re
from datetime import datetime
from decimal import Decimal

import pytest

from ridecycle.core.config import Settings
from ridecycle.core.exceptions import ConflictError, ValidationError
from ridecycle.services.orders.enums import PaymentMethod, ShippingMethod
from ridecycle.services.orders.pricing import (
    OrderNumberExhaustedError,
    OrderNumberGenerator,
    calculate_payment_deadline,
    calculate_shipping_cost,
    format_twd,
    render_company_account_info,
    render_payment_instructions,
)

ORDER_NUMBER_PATTERN = re.compile(r"^R-\d{6}-[A-Z0-9]{6}$")


@pytest.fixture
def pricing_settings() -> Settings:
    return Settings(
        environment="test",
        shipping_base_fee=Decimal("100"),
        shipping_per_km_rate=Decimal("10"),
        payment_deadline_days=3,
    )


# ============================================================================
# Shipping Cost Tests
# ============================================================================


@pytest.mark.unit
class TestShippingCost:
    """Tests for calculate_shipping_cost."""

    def test_self_pickup_is_free(self, pricing_settings):
        assert calculate_shipping_cost(
            ShippingMethod.SELF_PICKUP, None, pricing_settings
        ) == Decimal("0")

    def test_self_pickup_ignores_distance(self, pricing_settings):
        assert calculate_shipping_cost(
            ShippingMethod.SELF_PICKUP, Decimal("42"), pricing_settings
        ) == Decimal("0")

    @pytest.mark.parametrize(
        "distance,expected",
        [
            (Decimal("1"), Decimal("110")),
            (Decimal("12.5"), Decimal("225")),
            (Decimal("40"), Decimal("500")),
        ],
    )
    def test_assisted_delivery_base_plus_per_km(
        self, pricing_settings, distance, expected
    ):
        assert (
            calculate_shipping_cost(
                ShippingMethod.ASSISTED_DELIVERY, distance, pricing_settings
            )
            == expected
        )

    @pytest.mark.parametrize("distance", [None, Decimal("0"), Decimal("-3")])
    def test_assisted_delivery_requires_positive_distance(
        self, pricing_settings, distance
    ):
        with pytest.raises(ValidationError) as exc_info:
            calculate_shipping_cost(
                ShippingMethod.ASSISTED_DELIVERY, distance, pricing_settings
            )

        assert exc_info.value.context["field"] == "shipping_distance"


# ============================================================================
# Deadline and Text Rendering Tests
# ============================================================================


@pytest.mark.unit
class TestPaymentTexts:
    """Tests for deadline arithmetic and bank transfer texts."""

    def test_deadline_is_three_days_after_creation(self, pricing_settings):
        created_at = datetime(2026, 3, 1, 10, 30)

        deadline = calculate_payment_deadline(created_at, pricing_settings)

        assert deadline == datetime(2026, 3, 4, 10, 30)

    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("15000"), "NT$15,000"),
            (Decimal("15000.00"), "NT$15,000"),
            (Decimal("1234.5"), "NT$1,234.50"),
        ],
    )
    def test_format_twd(self, amount, expected):
        assert format_twd(amount) == expected

    def test_instructions_mention_amount(self, pricing_settings):
        text = render_payment_instructions(
            PaymentMethod.BANK_TRANSFER,
            Decimal("15100"),
            datetime(2026, 3, 4, 10, 30),
            pricing_settings,
        )

        assert "NT$15,100" in text

    def test_company_account_info_mentions_account(self, pricing_settings):
        text = render_company_account_info(
            PaymentMethod.BANK_TRANSFER, "R-260301-ABC123", pricing_settings
        )

        assert pricing_settings.bank_account_number in text


# ============================================================================
# Order Number Generator Tests
# ============================================================================


@pytest.mark.unit
class TestOrderNumberGenerator:
    """Tests for OrderNumberGenerator."""

    def test_format(self):
        async def never_taken(number: str) -> bool:
            return False

        generator = OrderNumberGenerator(
            never_taken, max_attempts=5, clock=lambda: datetime(2026, 3, 1)
        )

        number = generator.generate()

        assert ORDER_NUMBER_PATTERN.match(number)
        assert number.startswith("R-260301-")

    @pytest.mark.asyncio
    async def test_concurrent_generation_is_unique(self):
        """1000 concurrent requests sharing one registry never collide."""
        claimed: set[str] = set()

        async def claim(number: str) -> bool:
            await asyncio.sleep(0)
            if number in claimed:
                return True
            claimed.add(number)
            return False

        generator = OrderNumberGenerator(claim, max_attempts=10)

        numbers = await asyncio.gather(
            *(generator.generate_unique() for _ in range(1000))
        )

        assert len(set(numbers)) == 1000
        assert all(ORDER_NUMBER_PATTERN.match(number) for number in numbers)

    @pytest.mark.asyncio
    async def test_retries_after_collision(self):
        calls = []

        async def taken_once(number: str) -> bool:
            calls.append(number)
            return len(calls) == 1

        generator = OrderNumberGenerator(taken_once, max_attempts=3)

        number = await generator.generate_unique()

        assert len(calls) == 2
        assert number == calls[-1]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_conflict(self):
        async def always_taken(number: str) -> bool:
            return True

        generator = OrderNumberGenerator(always_taken, max_attempts=4)

        with pytest.raises(OrderNumberExhaustedError) as exc_info:
            await generator.generate_unique()

        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.context["max_attempts"] == 4
