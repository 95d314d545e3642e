"""
Order Pydantic schemas for API request/response validation.

Covers checkout, order detail changes, status updates and the order
representation returned to buyers, sellers and admins, including the
nested bank transfer payment and its proof history.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ridecycle.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProofStatus,
    ShippingMethod,
)


class OrderCreateRequest(BaseModel):
    """Checkout request for an available bicycle."""

    model_config = ConfigDict(validate_assignment=True)

    bicycle_id: UUID = Field(..., description="Bicycle to purchase")
    shipping_method: ShippingMethod = Field(
        default=ShippingMethod.SELF_PICKUP,
        description="Self pickup or assisted delivery",
    )
    shipping_distance: Optional[Decimal] = Field(
        None,
        max_digits=8,
        decimal_places=2,
        description="Delivery distance in km (assisted delivery only)",
    )
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.BANK_TRANSFER,
        description="Payment method",
    )


class OrderUpdateRequest(BaseModel):
    """Change shipping or payment details while the order awaits payment."""

    model_config = ConfigDict(validate_assignment=True)

    shipping_method: Optional[ShippingMethod] = None
    shipping_distance: Optional[Decimal] = Field(
        None,
        max_digits=8,
        decimal_places=2,
    )
    payment_method: Optional[PaymentMethod] = None

    @model_validator(mode="after")
    def validate_has_changes(self) -> "OrderUpdateRequest":
        """Require at least one field."""
        if (
            self.shipping_method is None
            and self.shipping_distance is None
            and self.payment_method is None
        ):
            raise ValueError("At least one field must be provided")
        return self


class OrderStatusUpdate(BaseModel):
    """Order status change by the seller or an admin."""

    status: OrderStatus = Field(..., description="Target order status")
    reason: Optional[str] = Field(
        None,
        max_length=500,
        description="Reason recorded with the change",
    )


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentProofResponse(BaseModel):
    """Uploaded transfer receipt and its review outcome."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sequence: int
    filename: str
    content_type: str
    byte_size: int
    status: ProofStatus
    created_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by_id: Optional[UUID] = None
    review_notes: Optional[str] = None
    metadata_blob: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata_blob", mode="before")
    @classmethod
    def render_metadata_blob(cls, v: Any) -> Any:
        return v() if callable(v) else v


class OrderPaymentResponse(BaseModel):
    """Bank transfer payment attached to an order."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    deadline: datetime
    expires_at: datetime
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    proof_status: ProofStatus
    proofs: list[PaymentProofResponse] = Field(default_factory=list)


class OrderResponse(BaseModel):
    """Order as seen by its buyer, its seller or an admin."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    buyer_id: UUID
    bicycle_id: UUID
    source_offer_id: Optional[UUID] = None
    total_price: Decimal
    shipping_method: ShippingMethod
    shipping_distance: Optional[Decimal] = None
    shipping_cost: Decimal
    grand_total: Decimal
    status: OrderStatus
    payment_method: PaymentMethod
    payment_instructions: Optional[str] = None
    company_account_info: Optional[str] = None
    cancel_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    payment: Optional[OrderPaymentResponse] = None


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    limit: int
    offset: int
