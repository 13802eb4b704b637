"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
(to apply per-route limits with @limiter.limit()).

A single shared instance keeps one in-memory counter store for every route;
separate instances per module would each count in isolation and never trip.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

# Limit for endpoints that accept guessable secrets (LOGIN_RATE_LIMIT).
# Must be a plain string: SlowAPIMiddleware only enforces static limits, and
# a callable would be parked as a dynamic limit that never fires. Read once
# at import, so a changed setting needs a restart.
CREDENTIAL_RATE_LIMIT: str = get_settings().login_rate_limit
