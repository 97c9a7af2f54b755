from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from subsync.apps.api.response import error_response, get_request_id
from subsync.core.errors import InputValidationError, SubsyncError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "PAYMENT_GATEWAY_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

GENERIC_ERROR_MESSAGE = "Internal server error"


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _expose_raw_errors(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings is not None and settings.is_development)


async def subsync_error_handler(request: Request, exc: SubsyncError) -> JSONResponse:
    # Domain errors carry their own status and code; 5xx messages are hidden outside development.
    message = exc.message
    if exc.status_code >= 500:
        logger.error(
            "request_failed request_id=%s path=%s code=%s",
            get_request_id(request),
            request.url.path,
            exc.code,
            exc_info=exc,
        )
        if not _expose_raw_errors(request) and exc.status_code == 500:
            message = GENERIC_ERROR_MESSAGE
    elif isinstance(exc, InputValidationError):
        logger.info("request_rejected path=%s reason=%s", request.url.path, message)
    return JSONResponse(content=error_response(code=exc.code, message=message), status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Routing misses (404/405) raised by Starlette use the same error shape.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies are client mistakes: 400, logged at info.
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{location}: {first.get('msg')}" if location else "Validation error"
    logger.info("request_rejected path=%s reason=%s", request.url.path, message)
    payload = error_response(code="VALIDATION_ERROR", message=message, details={"errors": errors})
    return JSONResponse(content=payload, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking internals outside development; always log the traceback.
    logger.error(
        "request_failed request_id=%s path=%s",
        get_request_id(request),
        request.url.path,
        exc_info=exc,
    )
    message = str(exc) if _expose_raw_errors(request) else GENERIC_ERROR_MESSAGE
    return JSONResponse(content=error_response(code="INTERNAL_ERROR", message=message), status_code=500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SubsyncError, subsync_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
