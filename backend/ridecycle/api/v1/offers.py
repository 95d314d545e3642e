"""
Offer API endpoints.

Buyers make price offers on bicycles; sellers list, accept and reject
them. Accepting an offer opens an order at the offered price. Domain errors
propagate to the application-level exception handler.
"""

from uuid import UUID

from fastapi import APIRouter, status

from ridecycle.api.deps import CurrentUser, OfferServiceDep
from ridecycle.core.logging import get_logger
from ridecycle.schemas.offers import (
    AcceptOfferResponse,
    MessageResponse,
    OfferCreateRequest,
    RejectOfferResponse,
)

logger = get_logger(__name__)

router = APIRouter(tags=["offers"])


@router.post(
    "/offers",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Make an offer",
    description="Send a price offer to the seller of an available bicycle",
)
async def create_offer(
    request: OfferCreateRequest,
    current_user: CurrentUser,
    service: OfferServiceDep,
) -> MessageResponse:
    offer = await service.create_offer(
        sender=current_user,
        bicycle_id=request.bicycle_id,
        amount=request.offer_amount,
        content=request.content,
    )
    return MessageResponse.model_validate(offer)


@router.get(
    "/bicycles/{bicycle_id}/offers",
    response_model=list[MessageResponse],
    summary="List offers on a bicycle",
    description="All offers on the seller's bicycle, newest first",
)
async def list_bicycle_offers(
    bicycle_id: UUID,
    current_user: CurrentUser,
    service: OfferServiceDep,
) -> list[MessageResponse]:
    offers = await service.list_offers_for_bicycle(bicycle_id, current_user)
    return [MessageResponse.model_validate(offer) for offer in offers]


@router.post(
    "/offers/{offer_id}/accept",
    response_model=AcceptOfferResponse,
    summary="Accept an offer",
    description=(
        "Accept a pending offer: competing offers are rejected, the bicycle is "
        "reserved and an order is created at the offered price"
    ),
)
async def accept_offer(
    offer_id: UUID,
    current_user: CurrentUser,
    service: OfferServiceDep,
) -> AcceptOfferResponse:
    result = await service.accept_offer(offer_id, current_user)
    return AcceptOfferResponse.model_validate(result)


@router.post(
    "/offers/{offer_id}/reject",
    response_model=RejectOfferResponse,
    summary="Reject an offer",
)
async def reject_offer(
    offer_id: UUID,
    current_user: CurrentUser,
    service: OfferServiceDep,
) -> RejectOfferResponse:
    result = await service.reject_offer(offer_id, current_user)
    return RejectOfferResponse.model_validate(result)
