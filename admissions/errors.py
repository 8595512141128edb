"""Error taxonomy and global exception handlers.

Every error leaves the API as ``{"success": false, "message": ..., "errors": [...]}``.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from admissions.config import get_settings

logger = logging.getLogger(__name__)

DUPLICATE_PHONE_MESSAGE = "This phone number is already registered. We will contact you soon!"


class LeadServiceError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationFailedError(LeadServiceError):
    """One or more submitted fields are malformed or missing."""

    status_code = 400
    default_message = "Validation failed"


class LeadSchemaError(ValidationFailedError):
    """A record reached the store without satisfying the lead invariants."""


class LeadNotFoundError(LeadServiceError):
    status_code = 404
    default_message = "Lead not found"


class DuplicateLeadError(LeadServiceError):
    """Unique phone index rejected the insert."""

    status_code = 409
    default_message = DUPLICATE_PHONE_MESSAGE

    def __init__(self, field: str = "phoneNumber", message: Optional[str] = None):
        self.field = field
        message = message or self.default_message
        super().__init__(message, errors=[{"field": field, "message": message}])


def error_body(message: str, errors: Optional[List[Dict[str, Any]]] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message, "errors": errors or []}
    body.update(extra)
    return body


def _field_name(loc: tuple) -> str:
    # ("body", "callStatus") -> "callStatus"; ("path", "lead_id") -> "lead_id"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(LeadServiceError)
    async def lead_service_error_handler(request: Request, exc: LeadServiceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.errors))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": _field_name(tuple(err.get("loc", ()))), "message": err.get("msg", "Invalid value")}
            for err in exc.errors()
        ]
        logger.info("Validation errors on %s %s: %s", request.method, request.url.path, errors)
        return JSONResponse(status_code=400, content=error_body("Validation failed", errors))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            message = f"Route {request.url.path} not found"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions: log, report to Sentry, clean 500."""
        logger.exception("Unhandled exception: %s %s", request.method, request.url)
        settings = get_settings()
        if settings.SENTRY_DSN:
            import sentry_sdk
            sentry_sdk.capture_exception(exc)
        extra = {"error": str(exc)} if settings.DEBUG else {}
        return JSONResponse(status_code=500, content=error_body("Internal server error", **extra))
