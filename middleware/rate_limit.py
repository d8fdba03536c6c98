# middleware/rate_limit.py
"""
Rate limiting configuration using slowapi.

Adding a position spends Alpha Vantage quota (one or two provider calls on a
cache miss), so that route carries a tighter limit than the default.

Usage in route files:
    from middleware.rate_limit import limiter, ADD_POSITION_RATE_LIMIT

    @router.post("/positions")
    @limiter.limit(ADD_POSITION_RATE_LIMIT)
    async def add(request: Request, ...):
        ...
"""
import hashlib
import logging
import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-AlphaVantage-Key"


def _get_rate_limit_key(request: Request) -> str:
    """
    Bucket by provider key when the caller sends one (the quota belongs to the
    key), otherwise by client IP. The key itself is hashed, never stored.
    """
    api_key = (request.headers.get(API_KEY_HEADER) or "").strip()
    if api_key:
        digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
        return f"avkey:{digest}"
    return get_remote_address(request)


DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
ADD_POSITION_RATE_LIMIT = os.getenv("RATE_LIMIT_ADD_POSITION", "10/minute")

limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
    strategy="fixed-window",
)
