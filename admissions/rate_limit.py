"""
Rate limiting using slowapi.

Every route gets GENERAL_RATE_LIMIT per client through SlowAPIMiddleware;
the lead submission route adds LEAD_SUBMISSION_RATE_LIMIT on top. Requests
over quota are refused with 429, never queued.

Usage in a router:
    @router.post("")
    @limiter.limit(lead_submission_limit)
    async def create_lead(request: Request, ...):
        ...
"""
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from admissions.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def get_client_identifier(request: Request) -> str:
    """
    Get rate limit identifier.
    First X-Forwarded-For hop when behind a proxy, otherwise the peer IP.
    """
    forwarded_for = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded_for.split(",")[0].strip()
    if first_hop:
        return first_hop
    return get_remote_address(request)


def general_limit() -> str:
    return get_settings().GENERAL_RATE_LIMIT


def lead_submission_limit() -> str:
    return get_settings().LEAD_SUBMISSION_RATE_LIMIT


limiter = Limiter(
    key_func=get_client_identifier,
    default_limits=[general_limit],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)


def describe_window(seconds: int) -> str:
    """3600 -> '1 hour', 900 -> '15 minutes'."""
    for unit_seconds, unit in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= unit_seconds and seconds % unit_seconds == 0:
            count = seconds // unit_seconds
            return f"{count} {unit}" + ("s" if count != 1 else "")
    return f"{seconds} seconds"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom error response for rate limit exceeded."""
    limit_item = getattr(getattr(exc, "limit", None), "limit", None)
    retry_seconds = int(limit_item.get_expiry()) if limit_item is not None else 60
    retry_after = describe_window(retry_seconds)

    if request.method == "POST" and request.url.path.rstrip("/") == "/api/leads":
        message = f"Too many form submissions from this IP. Please try again after {retry_after}."
    else:
        message = "Too many requests from this IP, please try again later."

    logger.warning("Rate limit exceeded for %s on %s %s", get_client_identifier(request), request.method, request.url.path)
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "message": message,
            "errors": [],
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_seconds)},
    )
