"""
API error types and the handlers that render them.

Every failure leaves the API as ``{"error": "<message>"}``, with an
``error_code`` alongside when the raiser supplied one. Request body
validation failures are reported as 400s in the same shape.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class APIException(HTTPException):
    """HTTPException carrying a machine-readable error_code."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{message}: {identifier}"
        super().__init__(status.HTTP_404_NOT_FOUND, message, "NOT_FOUND")


class ValidationError(APIException):
    """400. ``field`` is folded into the code, e.g. VALIDATION_ERROR_WEIGHT."""

    def __init__(self, detail: str, field: Optional[str] = None):
        code = "VALIDATION_ERROR" if not field else f"VALIDATION_ERROR_{field.upper()}"
        super().__init__(status.HTTP_400_BAD_REQUEST, detail, code)


class UnauthorizedError(APIException):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            detail,
            "UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(APIException):
    def __init__(self, detail: str = "Access denied"):
        super().__init__(status.HTTP_403_FORBIDDEN, detail, "FORBIDDEN")


class ConflictError(APIException):
    def __init__(self, detail: str):
        super().__init__(status.HTTP_409_CONFLICT, detail, "CONFLICT")


class UpstreamError(APIException):
    """Novu / OneSignal rejected or failed a call made on the user's behalf."""

    def __init__(self, detail: str = "Upstream service error"):
        super().__init__(status.HTTP_502_BAD_GATEWAY, detail, "UPSTREAM_ERROR")


def error_body(message: Any, error_code: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message if isinstance(message, str) else str(message)}
    if error_code:
        body["error_code"] = error_code
    return body


def describe_validation_errors(exc: RequestValidationError) -> str:
    """First pydantic error as "field: message"."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.detail, getattr(exc, "error_code", None)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def on_invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(describe_validation_errors(exc), "VALIDATION_ERROR"),
        )

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception):
        logger.error(
            f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
            exc_info=True,
            extra={"extra_fields": {"method": request.method, "path": request.url.path}},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Internal server error"),
        )
