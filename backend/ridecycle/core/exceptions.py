"""
Marketplace error taxonomy and service result wrapper.

Every rejected workflow transition raises one of four recoverable error
types. Each carries an HTTP status so the API layer can translate outcomes
without embedding business rules, and a free-form ``context`` dict that is
logged and returned to the client.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Generic, Optional, TypeVar

from fastapi import status as http_codes

T = TypeVar("T")


class MarketplaceError(Exception):
    """Base exception for offer, order and payment workflow errors."""

    http_status: int = http_codes.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(MarketplaceError):
    """Bad input shape or values; user-correctable."""

    http_status = http_codes.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(MarketplaceError):
    """Referenced entity does not exist."""

    http_status = http_codes.HTTP_404_NOT_FOUND


class AuthorizationError(MarketplaceError):
    """Actor lacks permission for the action."""

    http_status = http_codes.HTTP_403_FORBIDDEN


class ConflictError(MarketplaceError):
    """State-machine precondition violated."""

    http_status = http_codes.HTTP_409_CONFLICT


class StateTransitionError(ConflictError):
    """Raised when a status change is not allowed from the current state."""

    def __init__(
        self,
        message: str,
        current_state: Any,
        target_state: Any,
        **context: Any,
    ):
        super().__init__(
            message,
            current_state=getattr(current_state, "value", current_state),
            target_state=getattr(target_state, "value", target_state),
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call in ``{success, data | errors}`` form.

    Example:
        result = await ServiceResult.capture(service.accept_offer(offer_id, user))
        if not result.success:
            return JSONResponse(result.to_dict(), status_code=result.status)
    """

    success: bool
    data: Optional[T] = None
    errors: list[str] = field(default_factory=list)
    status: int = http_codes.HTTP_200_OK
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: T, status_code: int = http_codes.HTTP_200_OK) -> "ServiceResult[T]":
        return cls(success=True, data=data, status=status_code)

    @classmethod
    def failure(cls, error: MarketplaceError) -> "ServiceResult[T]":
        return cls(
            success=False,
            errors=[error.message],
            status=error.http_status,
            context=error.context,
        )

    @classmethod
    async def capture(cls, awaitable: Awaitable[T]) -> "ServiceResult[T]":
        """Await a service call and fold marketplace errors into a result."""
        try:
            return cls.ok(await awaitable)
        except MarketplaceError as e:
            return cls.failure(e)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "errors": self.errors, "context": self.context}
