"""
Per-client request rate limiting.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from ridecycle.core.config import get_settings


def create_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit_default],
        enabled=settings.rate_limit_enabled,
    )


limiter = create_limiter()
