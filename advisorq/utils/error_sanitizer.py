"""
Error message sanitization utility.

Prevents information leakage by sanitizing error messages before they are
returned to clients or copied into diagnostics events.
"""

from __future__ import annotations

import re

from advisorq.observability.logging import get_logger

logger = get_logger(__name__)

# Patterns that might leak sensitive information
SENSITIVE_PATTERNS = [
    # File paths
    r"/[^\s]+\.py",
    r"[A-Za-z]:\\[^\s]+",
    # Stack trace indicators
    r"Traceback \(most recent call last\)",
    r"File \".*\"",
    r"line \d+",
    # Provider account paths and credentials
    r"/accounts/[^/\s]+",
    r"Bearer [A-Za-z0-9._-]+",
    r"[A-Za-z0-9_-]{32,}",
    # Internal module names
    r"advisorq\.[a-z_.]+",
]
SENSITIVE_REGEX = re.compile("|".join(SENSITIVE_PATTERNS), re.IGNORECASE)

# Generic error messages for different error types
GENERIC_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication required.",
    403: "Access denied.",
    404: "Resource not found.",
    422: "Invalid data format.",
    429: "Too many requests. Please try again later.",
    500: "An internal error occurred. Please try again later.",
    502: "Upstream service error.",
    503: "Service temporarily unavailable.",
}


def sanitize_error_message(
    message: str,
    status_code: int = 500,
    allow_field_names: bool = True,
) -> str:
    """
    Sanitize an error message to prevent information leakage.

    Args:
        message: The original error message
        status_code: HTTP status code (used to select generic fallback)
        allow_field_names: Whether to allow short validation messages through

    Returns:
        Sanitized error message safe for client consumption
    """
    generic = GENERIC_MESSAGES.get(status_code, "An error occurred.")
    if not message:
        return generic

    if SENSITIVE_REGEX.search(message):
        logger.warning("Sanitized sensitive error message (status=%d)", status_code)
        return generic

    if (
        400 <= status_code < 500
        and allow_field_names
        and len(message) < 100
        and not any(c in message for c in ["{", "}", "[", "]", "\n"])
    ):
        return message

    return generic


def scrub_detail(message: str | None, max_length: int = 180) -> str | None:
    """
    Mask sensitive fragments inside a diagnostic detail string and cap its length.

    Unlike sanitize_error_message() the message is kept; only the matching
    fragments are replaced, so provider error text stays useful for debugging.
    """
    if not message:
        return None
    trimmed = SENSITIVE_REGEX.sub("[scrubbed]", message.strip())
    if not trimmed:
        return None
    if len(trimmed) <= max_length:
        return trimmed
    return f"{trimmed[:max_length]}..."


def get_safe_error_detail(
    error: Exception,
    status_code: int = 500,
    context: str | None = None,
) -> str:
    """
    Get a safe error detail string for HTTP responses.

    Args:
        error: The exception that occurred
        status_code: HTTP status code
        context: Optional context used as the message for 5xx errors

    Returns:
        Safe error message for client
    """
    logger.error("Error (status=%d): %s - %s", status_code, type(error).__name__, str(error))

    if context and status_code >= 500:
        return context

    return sanitize_error_message(str(error), status_code)
