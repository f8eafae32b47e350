"""Request logging and structured error responses for the control API."""

from __future__ import annotations

import time
import uuid
from typing import Any

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from switchboard.models import ErrorDetail, ErrorResponse

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_CODE_MAP = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "INVALID_STATE",
    422: "VALIDATION_ERROR",
    503: "UNAVAILABLE",
}

# Polled by supervisors; logged at debug so it does not drown bridge events.
_QUIET_PATHS = frozenset({"/api/health"})


def _error_response(
    status_code: int, code: str, message: str, details: Any = None
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def request_logging_middleware(request: Request, call_next):
    """Bind a request id to the log context and log the outcome of each call.

    A caller-supplied ``X-Request-ID`` is reused so control-API calls can be
    correlated with the caller's own logs; it is echoed on the response.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    path = request.url.path
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=path,
    )
    started = time.monotonic()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "Control API request failed",
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        raise
    else:
        log = logger.debug if path in _QUIET_PATHS else logger.info
        log(
            "Control API request handled",
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
    finally:
        structlog.contextvars.clear_contextvars()


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors, including router 404/405s, in the error envelope."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return _error_response(
        exc.status_code,
        _CODE_MAP.get(exc.status_code, "INTERNAL_ERROR"),
        str(exc.detail),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    logger.info("Rejected invalid request body", error_count=len(errors))
    return _error_response(422, "VALIDATION_ERROR", "Invalid request", errors)
