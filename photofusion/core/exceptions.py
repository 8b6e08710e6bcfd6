"""
Global Exception Handling

Custom exceptions for the matting/fusion workflow and the FastAPI handlers
that turn them into structured JSON error responses.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from photofusion.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class FusionBaseException(Exception):
    """Base exception for the fusion service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(FusionBaseException):
    """Raised when request parameters or uploaded files are invalid."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class ExternalAPIError(FusionBaseException):
    """Raised when an upstream API (Stability, PiAPI, OpenRouter, downloads) fails."""

    def __init__(
        self,
        message: str,
        service: str,
        http_status: Optional[int] = None,
        upstream_error: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code=502, **kwargs)
        self.details["service"] = service
        self.details["http_status"] = http_status
        if upstream_error:
            self.details["upstream_error"] = upstream_error


class UpstreamTimeoutError(FusionBaseException):
    """Raised when an upstream request or generation job does not finish in time."""

    def __init__(self, message: str, service: str, **kwargs):
        super().__init__(message, code=504, **kwargs)
        self.details["service"] = service


class ImageProcessingError(FusionBaseException):
    """Raised when decoding, resizing or compositing an image fails."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class StorageError(FusionBaseException):
    """Raised when storage operations fail."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


def _error_body(message: Any, code: int, **extra) -> Dict[str, Any]:
    body = {
        "error": message,
        "request_id": request_id_var.get(),
        "code": code,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }
    body.update(extra)
    return body


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(FusionBaseException)
    async def fusion_exception_handler(request: Request, exc: FusionBaseException):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "fusion_exception",
            error=exc.message,
            code=exc.code,
            stage=exc.stage,
            details=exc.details,
            path=str(request.url.path)
        )

        return JSONResponse(
            status_code=exc.code,
            content=_error_body(
                exc.message,
                exc.code,
                request_id=exc.request_id or request_id_var.get(),
                stage=exc.stage,
                details=exc.details
            )
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.detail, exc.status_code)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid parameter '{field}': {first.get('msg')}" if field else "Invalid request"

        logger.warning("request_validation_failed", path=str(request.url.path), errors=str(errors))

        return JSONResponse(
            status_code=400,
            content=_error_body(message, 400)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        return unhandled_exception_response(request, exc)


def unhandled_exception_response(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected exception and build the generic 500 response."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=str(request.url.path),
        traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    )

    return JSONResponse(
        status_code=500,
        content=_error_body("Internal server error", 500)
    )
