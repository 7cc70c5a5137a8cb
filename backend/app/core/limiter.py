"""
Shared slowapi limiter.

Counters live in Redis so every instance enforces the same budget; a
process-local map would let each replica grant its own allowance.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from backend.app.core.settings import get_settings


def client_key(request: Request) -> str:
    """Rate-limit per authenticated user when known, else per client address."""
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


_settings = get_settings()

limiter = Limiter(
    key_func=client_key,
    default_limits=[_settings.RATE_LIMIT_DEFAULT],
    storage_uri=_settings.redis_url if _settings.RATE_LIMIT_ENABLED else "memory://",
    enabled=_settings.RATE_LIMIT_ENABLED,
)
