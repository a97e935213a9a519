from __future__ import annotations

from typing import Any

from inboxguard.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _error_response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    422: _error_response("Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    500: _error_response("Internal server error", code="INTERNAL_ERROR", message="Internal server error"),
}

OPS_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _error_response("Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    **DEFAULT_ERROR_RESPONSES,
}

NOTIFICATION_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    422: _error_response(
        "Invalid notification payload",
        code="INVALID_NOTIFICATION_PAYLOAD",
        message="Invalid notification payload",
    ),
    503: _error_response(
        "Notification neither delivered nor queued",
        code="NOTIFICATION_DELIVERY_FAILED",
        message="Notification delivery failed",
        details={"attempts": 3, "queued": False},
    ),
}
