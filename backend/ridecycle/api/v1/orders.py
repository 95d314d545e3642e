"""
Order management API endpoints.

Checkout, order listing and detail, shipping/payment changes before
payment, lifecycle transitions (seller status updates, buyer completion,
cancellation) and payment proof upload. Domain errors propagate to the
application-level exception handler.
"""

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, File, Query, Response, UploadFile, status

from ridecycle.api.deps import CurrentUser, OrderServiceDep, PaymentServiceDep
from ridecycle.core.logging import get_logger
from ridecycle.schemas.orders import (
    OrderCancelRequest,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    OrderUpdateRequest,
)
from ridecycle.api.v1.payments import proof_file_response
from ridecycle.schemas.payments import ProofUploadResponse
from ridecycle.services.orders.enums import OrderStatus
from ridecycle.services.payments.service import UPLOAD_SUCCESS_MESSAGE

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new order",
    description="Check out an available bicycle at its listed price",
)
async def create_order(
    request: OrderCreateRequest,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    order = await service.create_order(
        buyer=current_user,
        bicycle_id=request.bicycle_id,
        shipping_method=request.shipping_method,
        shipping_distance=request.shipping_distance,
        payment_method=request.payment_method,
    )
    return OrderResponse.model_validate(order)


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List user orders",
    description="Orders where the current user is the buyer or the seller",
)
async def list_orders(
    current_user: CurrentUser,
    service: OrderServiceDep,
    role: Optional[Literal["buyer", "seller"]] = Query(
        None, description="Only orders where the user is the buyer or the seller"
    ),
    status_filter: Optional[OrderStatus] = Query(
        None, alias="status", description="Filter by order status"
    ),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> OrderListResponse:
    orders = await service.list_orders_for_user(
        current_user,
        role=role,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order details",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    order = await service.get_order(order_id, current_user)
    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Change shipping or payment details",
    description="Allowed while the order and its payment are both pending",
)
async def update_order(
    order_id: UUID,
    request: OrderUpdateRequest,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    order = await service.update_order_details(
        order_id,
        current_user,
        shipping_method=request.shipping_method,
        shipping_distance=request.shipping_distance,
        payment_method=request.payment_method,
    )
    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
    description="Seller or admin moves the order along its lifecycle",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdate,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    order = await service.update_status(
        order_id, request.status, current_user, reason=request.reason
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/complete",
    response_model=OrderResponse,
    summary="Confirm receipt",
)
async def complete_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    order = await service.complete_order(order_id, current_user)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel order",
    description="Cancel a pending or processing order and release the bicycle",
)
async def cancel_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
    request: Optional[OrderCancelRequest] = None,
) -> OrderResponse:
    order = await service.cancel_order(
        order_id,
        current_user,
        reason=request.reason if request else None,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/payment-proof",
    response_model=ProofUploadResponse,
    summary="Upload payment proof",
    description="Upload a bank transfer receipt (JPEG, PNG, GIF or PDF, max 5MB)",
)
async def upload_payment_proof(
    order_id: UUID,
    current_user: CurrentUser,
    service: PaymentServiceDep,
    payment_proof: Optional[UploadFile] = File(None),
) -> ProofUploadResponse:
    filename = content_type = data = None
    if payment_proof is not None:
        filename = payment_proof.filename
        content_type = payment_proof.content_type
        data = await payment_proof.read()

    order = await service.upload_proof(
        order_id,
        current_user,
        filename=filename,
        content_type=content_type,
        data=data,
    )
    return ProofUploadResponse(
        message=UPLOAD_SUCCESS_MESSAGE,
        order=OrderResponse.model_validate(order),
    )


@router.get(
    "/{order_id}/payment-proof",
    summary="Download payment proof",
    description="The current transfer receipt of an order (buyer or admin)",
    response_class=Response,
)
async def download_payment_proof(
    order_id: UUID,
    current_user: CurrentUser,
    service: PaymentServiceDep,
) -> Response:
    proof, data = await service.get_proof_file(order_id, current_user)
    return proof_file_response(proof, data)
