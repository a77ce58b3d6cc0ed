"""Per-client rate limiting for endpoints that move chips."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from gamerit.config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
