"""
Webhook rate limiting using slowapi.

Fixed window keyed by client address. Backed by Redis when it is configured
and reachable, otherwise by process memory.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import settings
from ..database import get_redis


def create_limiter() -> Limiter:
    """Create a configured Limiter instance."""
    storage_uri = settings.redis_url if get_redis() is not None else "memory://"
    return Limiter(
        key_func=get_remote_address,
        storage_uri=storage_uri,
        strategy="fixed-window",
        enabled=settings.rate_limit_enabled,
    )


limiter = create_limiter()
