"""
Shared helpers for redacting sensitive information before logging or prompting.

Provides:
- redact(): Hash sensitive strings for correlation without exposure
- redact_payload(): Deep-redact diagnostic payloads by key name
- sanitize_free_text(): Mask emails and long digit runs in user-entered labels
- sanitize_for_prompt(): Remove potential prompt injection patterns
- preview_text(): Short, sanitized preview of provider output for diagnostics
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from hashlib import sha256
from typing import Any

from advisorq.config import DIAGNOSTICS_REDACTED_VALUE

# Key-name fragments whose values never reach the diagnostics buffer
REDACT_KEYS: tuple[str, ...] = ("token", "authorization", "email", "apikey", "api_key")

EMAIL_REGEX = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
LONG_NUMBER_REGEX = re.compile(r"\b\d{5,}\b")
WHITESPACE_REGEX = re.compile(r"\s+")

# Patterns that could be used for prompt injection through category/merchant labels
INJECTION_PATTERNS = [
    r"ignore\s+(previous|above|all)\s+instructions?",
    r"disregard\s+(previous|above|all)\s+instructions?",
    r"forget\s+(previous|above|all)\s+instructions?",
    r"new\s+instructions?:",
    r"system\s*:",
    r"assistant\s*:",
    r"user\s*:",
    r"\[INST\]",
    r"\[/INST\]",
    r"<\|im_start\|>",
    r"<\|im_end\|>",
]
INJECTION_REGEX = re.compile("|".join(INJECTION_PATTERNS), re.IGNORECASE)


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def should_redact_key(key: str, deny_list: Iterable[str] = REDACT_KEYS) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in deny_list)


def redact_payload(value: Any, marker: str = DIAGNOSTICS_REDACTED_VALUE) -> Any:
    """
    Recursively replace values of sensitive keys with ``marker``.

    Keys are matched by case-insensitive substring against REDACT_KEYS, so
    ``Authorization``, ``accessToken`` and ``user_email`` are all caught.
    Lists and tuples are walked element by element; the input is not mutated.
    """
    if isinstance(value, dict):
        redacted: dict[str, Any] = {}
        for key, nested in value.items():
            if should_redact_key(str(key)):
                redacted[key] = marker
            else:
                redacted[key] = redact_payload(nested, marker)
        return redacted

    if isinstance(value, (list, tuple)):
        return [redact_payload(item, marker) for item in value]

    return value


def sanitize_free_text(text: str | None, max_length: int = 120) -> str:
    """
    Mask emails and long digit runs (account/card numbers) in user-entered labels.

    Example:
        "Transfer to john@x.io ref 1234567" -> "Transfer to [redacted-email] ref [redacted-number]"
    """
    if not text:
        return ""

    text = EMAIL_REGEX.sub("[redacted-email]", text)
    text = LONG_NUMBER_REGEX.sub("[redacted-number]", text)
    text = WHITESPACE_REGEX.sub(" ", text).strip()
    return text[:max_length]


def sanitize_for_prompt(text: str | None, max_length: int = 120) -> str:
    """
    Sanitize a user-provided label before including it in the advisor prompt.

    Applies sanitize_free_text() and then strips known injection patterns and
    characters that might confuse prompt parsing.
    """
    text = sanitize_free_text(text, max_length=max_length)
    if not text:
        return ""

    text = INJECTION_REGEX.sub("[REDACTED]", text)
    text = re.sub(r"[<>{}|\\]", "", text)
    return text.strip()


def preview_text(text: str | None, max_length: int = 420) -> str:
    """Sanitized, length-capped preview of provider output for diagnostics."""
    if not text or not text.strip():
        return ""
    sanitized = sanitize_free_text(text, max_length=max_length + 1)
    if len(sanitized) <= max_length:
        return sanitized
    return f"{sanitized[:max_length]}..."
