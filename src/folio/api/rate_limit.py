"""Rate limiting for API endpoints."""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from folio.api.errors import ErrorCode, build_error_response, get_request_id
from folio.config import settings


def _rate_limit_key(request: Request) -> str:
    """Limit per acting user when known, else per client address."""
    return request.headers.get("X-User-ID") or get_remote_address(request)


limiter = Limiter(key_func=_rate_limit_key, enabled=settings.rate_limit_enabled)

limit_read = limiter.limit(settings.rate_limit_read)
limit_write = limiter.limit(settings.rate_limit_write)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render rate limit errors in the standard error envelope."""
    return JSONResponse(
        status_code=429,
        content=build_error_response(
            code=ErrorCode.RATE_LIMITED,
            message=f"Rate limit exceeded: {exc.detail}",
            request_id=get_request_id(request),
            status_code=429,
        ),
        headers={"Retry-After": "60"},
    )
