"""
Request logging middleware. Logs method, path, status, duration and where the
Alpha Vantage key came from. Query strings and header values are never logged.
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from middleware.rate_limit import API_KEY_HEADER

logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/health"})


def _level_for(path: str, status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    if path in QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        method = request.method
        path = request.scope.get("path", "")
        key_source = "header" if request.headers.get(API_KEY_HEADER) else "env"
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        status = response.status_code

        logger.log(
            _level_for(path, status),
            "request_finished method=%s path=%s status=%s duration_ms=%.1f key_source=%s",
            method, path, status, duration_ms, key_source,
        )
        return response
