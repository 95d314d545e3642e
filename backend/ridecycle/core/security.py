"""
JWT bearer token helpers.

Login and password management belong to the account service; this backend
only issues tokens for internal callers (tests, admin tooling) and decodes
the tokens presented on every request.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import ExpiredSignatureError, JWTError, jwt

from ridecycle.core.config import get_settings
from ridecycle.core.logging import get_logger

logger = get_logger(__name__)


class TokenError(Exception):
    """Raised when a token cannot be issued or decoded."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


def create_access_token(
    subject: UUID | str,
    extra_claims: Optional[Dict[str, Any]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token for a user.

    Args:
        subject: User ID placed in the ``sub`` claim
        extra_claims: Additional claims such as ``role``
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT token string

    Example:
        >>> token = create_access_token(user.id, {"role": "admin"})
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta
        or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )

    claims: Dict[str, Any] = dict(extra_claims or {})
    claims.update(
        {
            "sub": str(subject),
            "exp": expire,
            "iat": now,
            "type": "access",
        }
    )

    token = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)

    logger.debug(
        "Access token created",
        subject=str(subject),
        expires_at=expire.isoformat(),
    )
    return token


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate an access token.

    Raises:
        TokenError: If the token is empty, expired, malformed or not an
            access token
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as e:
        logger.warning("Token has expired")
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e

    if payload.get("type") != "access":
        raise TokenError("Unexpected token type", code="TOKEN_TYPE_MISMATCH")

    return payload


def get_token_user_id(payload: Dict[str, Any]) -> UUID:
    """
    Extract the user ID from decoded claims.

    Raises:
        TokenError: If ``sub`` is missing or not a UUID
    """
    subject = payload.get("sub")
    if not subject:
        raise TokenError("Token missing subject", code="TOKEN_NO_SUBJECT")
    try:
        return UUID(subject)
    except ValueError as e:
        raise TokenError(
            "Token subject is not a valid user ID",
            code="TOKEN_BAD_SUBJECT",
            subject=subject,
        ) from e
