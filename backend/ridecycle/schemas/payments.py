"""
Bank transfer payment schemas.

This module defines Pydantic schemas for payment proof upload responses,
admin proof review and sale decisions, the platform bank account shown at
checkout, and expiry sweep reports.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ridecycle.schemas.orders import OrderResponse
from ridecycle.services.orders.enums import ProofDecision


class ProofUploadResponse(BaseModel):
    """Response after a successful payment proof upload."""

    message: str
    order: OrderResponse


class ProofReviewRequest(BaseModel):
    """Admin decision on the current payment proof."""

    decision: ProofDecision = Field(
        ...,
        description="approved settles the payment; rejected asks for a new receipt",
    )
    notes: Optional[str] = Field(
        None,
        max_length=1000,
        description="Review notes shown to the buyer",
    )

    @field_validator("notes")
    @classmethod
    def normalize_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"decision": "rejected", "notes": "illegible"},
                {"decision": "approved"},
            ]
        }
    }


class SaleRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BankAccountInfoResponse(BaseModel):
    """Platform receiving account for bank transfers."""

    bank_name: str
    bank_code: str
    account_number: str
    account_name: str
    branch: str
    note: str


class SweepResponse(BaseModel):
    """Outcome of one payment expiry sweep."""

    transitioned: int = Field(..., description="Payments expired in this run")
    failed: int = Field(..., description="Payments skipped after an error")
    iterations: int = Field(..., description="Batches processed")
