"""
Back office API endpoints.

Admins review payment proofs, approve or reject paid sales, list orders
by payment state and trigger the payment expiry sweep on demand.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridecycle.api.deps import (
    CurrentAdmin,
    OrderServiceDep,
    PaymentServiceDep,
)
from ridecycle.api.v1.payments import proof_file_response
from ridecycle.core.config import get_settings
from ridecycle.core.logging import get_logger
from ridecycle.database.connection import get_session_factory
from ridecycle.schemas.orders import OrderListResponse, OrderResponse
from ridecycle.schemas.payments import (
    ProofReviewRequest,
    SaleRejectRequest,
    SweepResponse,
)
from ridecycle.services.orders.enums import OrderStatus, PaymentStatus
from ridecycle.services.payments.sweeper import PaymentExpirySweeper

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/orders",
    response_model=OrderListResponse,
    summary="List all orders",
)
async def list_all_orders(
    current_user: CurrentAdmin,
    service: OrderServiceDep,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> OrderListResponse:
    orders = await service.list_all_orders(
        current_user,
        status=status_filter,
        payment_status=payment_status,
        limit=limit,
        offset=offset,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        limit=limit,
        offset=offset,
    )


@router.post(
    "/orders/{order_id}/proof-review",
    response_model=OrderResponse,
    summary="Review payment proof",
    description="Approve (payment becomes paid) or reject the current proof",
)
async def review_payment_proof(
    order_id: UUID,
    request: ProofReviewRequest,
    current_user: CurrentAdmin,
    service: PaymentServiceDep,
) -> OrderResponse:
    order = await service.review_proof(
        order_id, request.decision, current_user, notes=request.notes
    )
    return OrderResponse.model_validate(order)


@router.get(
    "/orders/{order_id}/payment-proof",
    summary="View payment proof",
    description="Stream the current transfer receipt for review",
    response_class=Response,
)
async def view_payment_proof(
    order_id: UUID,
    current_user: CurrentAdmin,
    service: PaymentServiceDep,
) -> Response:
    proof, data = await service.get_proof_file(order_id, current_user)
    return proof_file_response(proof, data)


@router.post(
    "/orders/{order_id}/approve-sale",
    response_model=OrderResponse,
    summary="Approve sale",
    description="Mark the bicycle sold and start processing the paid order",
)
async def approve_sale(
    order_id: UUID,
    current_user: CurrentAdmin,
    service: PaymentServiceDep,
) -> OrderResponse:
    order = await service.approve_sale(order_id, current_user)
    return OrderResponse.model_validate(order)


@router.post(
    "/orders/{order_id}/reject-sale",
    response_model=OrderResponse,
    summary="Reject sale",
    description="Cancel the paid order, refund the payment and relist the bicycle",
)
async def reject_sale(
    order_id: UUID,
    current_user: CurrentAdmin,
    service: PaymentServiceDep,
    request: Optional[SaleRejectRequest] = None,
) -> OrderResponse:
    order = await service.reject_sale(
        order_id,
        current_user,
        reason=request.reason if request else None,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/payments/sweep",
    response_model=SweepResponse,
    summary="Expire overdue payments",
    description="Run the payment expiry sweep now",
)
async def sweep_expired_payments(
    current_user: CurrentAdmin,
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory)
    ],
) -> SweepResponse:
    logger.info("Manual payment expiry sweep", admin_id=str(current_user.id))
    sweeper = PaymentExpirySweeper(session_factory, settings=get_settings())
    result = await sweeper.sweep()
    return SweepResponse(**result.to_dict())
