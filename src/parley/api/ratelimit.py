"""Rate limiting configuration for API endpoints.

Uses slowapi; storage comes from ``RATE_LIMIT_STORAGE_URI`` (in-memory by
default, Redis in production so limits hold across workers).
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from parley.config import get_settings
from parley.shared.logging import get_logger

logger = get_logger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    """Get rate limit key based on user or IP.

    For authenticated requests, use user_id.
    For unauthenticated requests, use IP address.
    """
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.id}"
    return get_remote_address(request)


def _create_limiter(storage_uri: str = "memory://") -> Limiter:
    """Create rate limiter with appropriate storage backend."""
    return Limiter(
        key_func=_get_rate_limit_key,
        storage_uri=storage_uri,
        strategy="fixed-window",
    )


limiter = _create_limiter(get_settings().rate_limit_storage_uri)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom handler for rate limit exceeded errors."""
    retry_after = getattr(exc, "retry_after", 60)
    logger.warning(
        "rate_limit_exceeded",
        path=request.url.path,
        method=request.method,
        key=_get_rate_limit_key(request),
        limit=str(exc.detail),
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "too_many_requests",
            "code": "RATE_LIMITED",
            "message": "Too many requests. Please wait a moment.",
            "detail": str(exc.detail),
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


# ----- Rate Limit Decorators -----
# Usage: @limiter.limit(RATE_LIMIT_CHAT)

RATE_LIMIT_CHAT = "20/minute"  # Starts a generation (expensive)
RATE_LIMIT_RESUME = "60/minute"
RATE_LIMIT_CANCEL = "60/minute"
RATE_LIMIT_HISTORY = "60/minute"
RATE_LIMIT_HEALTH = "60/minute"

