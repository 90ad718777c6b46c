"""
FastAPI Middleware for the Partner MDM API

CORS for the registration frontend, request logging tagged with the
acting user, and the mapping of domain errors onto the standard error body.
"""

import os
import re
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from partners.errors import (
    ExternalServiceError,
    NotFoundError,
    PartnerError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

EXPOSED_HEADERS = ["X-Request-ID", "X-Processing-Time-MS"]

# Headers the frontend sends: API key, request id and the acting user set
ALLOWED_HEADERS = [
    "Content-Type",
    "X-API-Key",
    "X-Request-ID",
    "X-User-Id",
    "X-User-Email",
    "X-User-Name",
    "X-User-Responsibilities",
]

_CONTROL_CHARS = re.compile(r'[\r\n\x00-\x1f\x7f-\x9f]')


def sanitize_for_logging(text: str, limit: int = 500) -> str:
    """Strip control characters so request data cannot forge log lines.

    Args:
        text: Untrusted text (path, header, error message)
        limit: Maximum length kept

    Returns:
        Single-line text, truncated to ``limit``
    """
    if not text:
        return ''
    sanitized = _CONTROL_CHARS.sub(' ', str(text))
    return ' '.join(sanitized.split())[:limit]


def setup_cors(app: FastAPI, allowed_origins: Optional[List[str]] = None) -> None:
    """Register CORS for the frontend origins.

    ``CORS_ORIGINS`` (comma-separated) replaces the configured list when set.
    """
    from_env = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()]
    origins = from_env or list(allowed_origins or [])

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=ALLOWED_HEADERS,
        expose_headers=EXPOSED_HEADERS,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its id, acting user and processing time."""

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        user_id = sanitize_for_logging(request.headers.get("X-User-Id", "-"), limit=64)
        request.state.request_id = request_id

        logger.info(
            "Request: method=%s path=%s user=%s request_id=%s",
            request.method,
            sanitize_for_logging(request.url.path),
            user_id,
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed: error=%s elapsed_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                int((time.perf_counter() - started) * 1000),
                request_id,
            )
            raise

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-MS"] = str(elapsed_ms)

        logger.info(
            "Response: status=%d elapsed_ms=%d user=%s request_id=%s",
            response.status_code,
            elapsed_ms,
            user_id,
            request_id,
        )
        return response


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion

    return JSONResponse(status_code=status_code, content={"error": error_detail})


def status_for_partner_error(exc: PartnerError) -> int:
    """HTTP status of a domain error"""
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, PermissionDeniedError):
        return 403
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ExternalServiceError):
        return 504 if exc.timed_out else 502
    return 500


async def partner_error_handler(request: Request, exc: PartnerError) -> JSONResponse:
    """Handler for domain errors raised by the partner services."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = status_for_partner_error(exc)

    logger.warning(
        "Domain error: type=%s status=%d message=%s request_id=%s",
        type(exc).__name__,
        status_code,
        sanitize_for_logging(exc.message),
        request_id,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=status_code,
        field=getattr(exc, "field", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for request bodies or parameters that fail schema validation."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    return create_error_response(
        code="VALIDATION_ERROR",
        message=first.get("msg", "Invalid request"),
        status_code=422,
        field=".".join(location) or None,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    if isinstance(exc, PartnerError):
        return await partner_error_handler(request, exc)

    if isinstance(exc, ConfigurationError):
        return await configuration_error_handler(request, exc)

    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s", sanitize_for_logging(str(exc)))
    return create_error_response(
        code="CONFIGURATION_ERROR",
        message="Service configuration is invalid. Please contact administrator.",
        status_code=503,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(PartnerError, partner_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
