from __future__ import annotations

from typing import Any

from subgate.apps.api.response import ErrorBody


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"code": code, "message": message, "request_id": "req_example"}
    if details:
        payload["details"] = details
    return payload


def _response(description: str, *, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorBody,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", code="VALIDATION_ERROR", message="Validation error"),
    401: _response("Unauthorized", code="NOT_AUTHENTICATED", message="Not authenticated"),
    403: _response(
        "Forbidden",
        code="SUBSCRIPTION_EXPIRED",
        message="Your subscription has expired. Please renew to continue.",
    ),
    500: _response("Server error", code="SERVER_FAULT", message="Server error"),
}

NOT_FOUND_RESPONSE: dict[int | str, dict[str, Any]] = {
    404: _response("Not found", code="NOT_FOUND", message="Resource not found"),
}

CONFLICT_RESPONSE: dict[int | str, dict[str, Any]] = {
    409: _response(
        "Conflict",
        code="PACKAGE_IN_USE",
        message="Package is referenced by subscriptions; deactivate it instead",
    ),
}
