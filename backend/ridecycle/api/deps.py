"""
FastAPI dependencies for authentication and authorization.

This module provides dependency functions for JWT bearer authentication,
admin access control, database session injection and the service objects
used by the routers.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ridecycle.core.logging import get_logger, set_user_id
from ridecycle.core.security import TokenError, decode_access_token, get_token_user_id
from ridecycle.database.connection import get_db
from ridecycle.database.models.user import User
from ridecycle.services.offers.service import OfferService
from ridecycle.services.orders.service import OrderService
from ridecycle.services.payments.service import PaymentService
from ridecycle.services.payments.storage import ProofStorage, get_proof_storage

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Validate the bearer token and load the authenticated user.

    Raises:
        HTTPException: 401 if the token is missing or invalid, or the user
            does not exist; 403 if the account is inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials)
        user_id = get_token_user_id(payload)
    except TokenError as e:
        logger.warning("Authentication failed", code=e.code, error=str(e))
        raise credentials_exception from e

    user = await db.get(User, user_id)
    if user is None:
        logger.warning("Authentication failed: User not found", user_id=str(user_id))
        raise credentials_exception

    if not user.is_active:
        logger.warning("Authentication failed: User account is inactive", user_id=str(user.id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )

    set_user_id(str(user.id))
    return user


async def get_current_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Raises:
        HTTPException: 403 unless the user is an admin
    """
    if not current_user.is_admin:
        logger.warning(
            "Access denied: Insufficient permissions",
            user_id=str(current_user.id),
            user_role=current_user.role.value,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return current_user


def get_offer_service(db: Annotated[AsyncSession, Depends(get_db)]) -> OfferService:
    return OfferService(db)


def get_order_service(db: Annotated[AsyncSession, Depends(get_db)]) -> OrderService:
    return OrderService(db)


def get_payment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    storage: Annotated[ProofStorage, Depends(get_proof_storage)],
) -> PaymentService:
    return PaymentService(db, storage=storage)


CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentAdmin = Annotated[User, Depends(get_current_admin)]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
OfferServiceDep = Annotated[OfferService, Depends(get_offer_service)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
