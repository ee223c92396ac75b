"""
Request rate limiting (slowapi). Global default per client address, plus a tighter
limit for the credential endpoints (register, login).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

AUTH_RATE_LIMIT = settings.rate_limit_auth
