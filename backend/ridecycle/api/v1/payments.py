"""
Payment API endpoints.
"""

from urllib.parse import quote

from fastapi import APIRouter, Response

from ridecycle.api.deps import CurrentUser, PaymentServiceDep
from ridecycle.database.models.payment import PaymentProof
from ridecycle.schemas.payments import BankAccountInfoResponse

router = APIRouter(prefix="/payments", tags=["payments"])


def proof_file_response(proof: PaymentProof, data: bytes) -> Response:
    """Serve a stored payment proof inline with its original filename."""
    return Response(
        content=data,
        media_type=proof.content_type,
        headers={
            "Content-Disposition": f"inline; filename*=UTF-8''{quote(proof.filename)}",
            "X-Proof-Status": proof.status.value,
        },
    )


@router.get(
    "/bank-info",
    response_model=BankAccountInfoResponse,
    summary="Platform bank account",
    description="Receiving account for bank transfer payments",
)
async def get_bank_info(
    current_user: CurrentUser,
    service: PaymentServiceDep,
) -> BankAccountInfoResponse:
    return BankAccountInfoResponse(**service.bank_account_info())
