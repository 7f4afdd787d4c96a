"""Exception handlers: every failure leaves the API in one JSON shape.

  {"success": false, "error": "<message>", "code": "<CODE>",
   "details": ..., "timestamp": ..., "path": ..., "method": ...}

CredentialServiceError subclasses carry their own status and code.
FastAPI's HTTPException (auth, rate limiting) and request validation
errors are folded into the same shape.  Anything else is a 500 whose
message and details are hidden in prod.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.core.clock import utcnow
from app.core.config import SETTINGS
from app.core.errors import CredentialServiceError

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "TOO_LARGE",
    429: "RATE_LIMITED",
}


def error_body(
    request: Request, status_code: int, message: str, code: str, details: Any = None
) -> dict[str, Any]:
    if SETTINGS.is_prod and status_code >= 500:
        message = "Internal Server Error"
        details = None
    body: dict[str, Any] = {"success": False, "error": message, "code": code}
    if details is not None:
        body["details"] = details
    body["timestamp"] = utcnow().isoformat()
    body["path"] = request.url.path
    body["method"] = request.method
    return body


async def _service_error(request: Request, exc: CredentialServiceError) -> JSONResponse:
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(
        "%s %s -> %d %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.code,
        exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.status_code, exc.message, exc.code, exc.details),
    )


async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    message = exc.detail if isinstance(exc.detail, str) else code
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.status_code, message, code),
        headers=exc.headers,
    )


async def _request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            request,
            status.HTTP_400_BAD_REQUEST,
            "Validation Error",
            "VALIDATION_ERROR",
            jsonable_encoder(exc.errors()),
        ),
    )


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(exc) or "Internal Server Error",
            "INTERNAL_ERROR",
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CredentialServiceError, _service_error)
    app.add_exception_handler(HTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(Exception, _unhandled_error)
