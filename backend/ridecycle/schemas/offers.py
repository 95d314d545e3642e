"""
Offer Pydantic schemas for API request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ridecycle.database.models.message import OfferStatus
from ridecycle.schemas.orders import OrderResponse


class OfferCreateRequest(BaseModel):
    """Price offer on a bicycle."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {
                    "bicycle_id": "123e4567-e89b-12d3-a456-426614174000",
                    "offer_amount": "15000",
                    "content": "出價 NT$15,000，可以面交嗎？",
                }
            ]
        },
    )

    bicycle_id: UUID = Field(..., description="Bicycle being offered on")
    offer_amount: Decimal = Field(
        ...,
        max_digits=12,
        decimal_places=2,
        description="Offered price in TWD",
    )
    content: Optional[str] = Field(
        None,
        max_length=2000,
        description="Message to the seller",
    )


class MessageResponse(BaseModel):
    """Conversation message, optionally carrying an offer."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_id: UUID
    recipient_id: UUID
    bicycle_id: UUID
    content: str
    is_offer: bool
    offer_amount: Optional[Decimal] = None
    offer_status: OfferStatus
    is_read: bool
    created_at: datetime


class AcceptOfferResponse(BaseModel):
    """Result of accepting an offer."""

    model_config = ConfigDict(from_attributes=True)

    accepted_offer: MessageResponse
    response_message: MessageResponse
    order: OrderResponse


class RejectOfferResponse(BaseModel):
    """Result of rejecting an offer."""

    model_config = ConfigDict(from_attributes=True)

    rejected_offer: MessageResponse
    response_message: MessageResponse
