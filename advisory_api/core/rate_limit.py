from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from advisory_api.core.config import settings

# Keyed by client address. Applied to endpoints that issue OTPs or check passwords.
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.ENABLE_RATE_LIMITING,
    headers_enabled=False,
)

AUTH_LIMIT = settings.AUTH_RATE_LIMIT
