"""
Typed API errors and the JSON error envelope.

Every non-2xx response produced by AdvisorQ has the shape
``{"error": {"code": ..., "message": ..., "details": ...}}`` where ``details``
is omitted when empty.  Domain code raises ApiError; the app's exception
handler renders it.
"""

from __future__ import annotations

from typing import Any

# Error codes shared by server and client
UNAUTHORIZED = "UNAUTHORIZED"
NOT_FOUND = "NOT_FOUND"
VALIDATION_ERROR = "VALIDATION_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"
RATE_LIMITED = "RATE_LIMITED"
ADVISOR_REGENERATE_COOLDOWN = "ADVISOR_REGENERATE_COOLDOWN"
ADVISOR_PROVIDER_RATE_LIMIT = "ADVISOR_PROVIDER_RATE_LIMIT"
ADVISOR_PROVIDER_INVALID_REQUEST = "ADVISOR_PROVIDER_INVALID_REQUEST"


class ApiError(Exception):
    """An error surfaced to the HTTP caller with a stable code."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    @property
    def retry_after_sec(self) -> int | None:
        value = self.details.get("retryAfterSec")
        return int(value) if isinstance(value, (int, float)) else None

    def to_payload(self) -> dict[str, Any]:
        return error_payload(self.code, self.message, self.details)

    def __repr__(self) -> str:
        return f"ApiError({self.code!r}, status={self.status_code})"


def error_payload(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"code": code, "message": message}
    if details:
        body["details"] = details
    return {"error": body}


def rate_limited() -> ApiError:
    return ApiError(
        RATE_LIMITED,
        "Too many advisor insight requests. Please retry in a minute.",
        429,
    )


def regenerate_cooldown(retry_after_sec: int) -> ApiError:
    return ApiError(
        ADVISOR_REGENERATE_COOLDOWN,
        "Please wait before regenerating advisor insights again.",
        429,
        {"retryAfterSec": retry_after_sec},
    )


def unauthorized(message: str = "Authentication required") -> ApiError:
    return ApiError(UNAUTHORIZED, message, 401)


def not_found() -> ApiError:
    return ApiError(NOT_FOUND, "Not found", 404)
