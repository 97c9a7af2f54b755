from __future__ import annotations

from typing import Any

from subsync.apps.api.response import ErrorBody


def _error_example(*, code: str, message: str) -> dict[str, Any]:
    # Build a consistent error body example for OpenAPI docs.
    return {"success": False, "error": message, "code": code}


def _error_response(description: str, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorBody,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _error_response("Bad request", "VALIDATION_ERROR", "Invalid email format"),
    500: _error_response("Internal error", "INTERNAL_ERROR", "Internal server error"),
}

AUTH_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    401: _error_response("Unauthorized", "AUTH_UNAUTHORIZED", "Access token required"),
    403: _error_response("Forbidden", "AUTH_FORBIDDEN", "Invalid or expired token"),
    404: _error_response("Not found", "NOT_FOUND", "User not found"),
}
