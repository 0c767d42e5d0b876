"""
Text-generation provider client (Workers AI style HTTP API).

One request/response completion per call:

    POST {base}/accounts/{account_id}/ai/run/{model}
    Authorization: Bearer <token>
    {"messages": [...], "max_tokens": ..., "temperature": ..., "response_format": {...}}

Responses are ``{"success": bool, "result": ..., "errors": [{"code", "message"}]}``.
The ``result`` shape varies by model, so it is parsed into a tagged union and
matched exhaustively.  Every failure is raised as ProviderError with a reason
from a closed set; transport exceptions never escape this module.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx

from advisorq.config import PROVIDER_DETAIL_MAX_CHARS, PROVIDER_NAME, ProviderSettings
from advisorq.observability.logging import get_logger
from advisorq.observability.telemetry import counter
from advisorq.utils.error_sanitizer import scrub_detail

logger = get_logger(__name__)

DiagnosticCallback = Callable[[dict[str, Any]], None]

# Provider error codes (errors[].code) that override the HTTP status
REQUEST_INVALID_CODES = frozenset({"5006", "5007", "8001"})
QUOTA_EXHAUSTED_CODES = frozenset({"3036", "3040", "4006"})

# One request plus one retry on rate limit
MAX_PROVIDER_ATTEMPTS = 2


class ProviderFailureReason(str, Enum):
    RATE_LIMITED = "rate_limited"
    REQUEST_INVALID = "request_invalid"
    HTTP_ERROR = "http_error"
    TIMEOUT = "timeout"
    RESPONSE_PARSE_ERROR = "response_parse_error"
    RESPONSE_SHAPE_ERROR = "response_shape_error"
    REQUEST_ERROR = "request_error"


class ProviderError(Exception):
    """Structured provider failure; callers branch on ``reason``."""

    def __init__(
        self,
        message: str,
        reason: ProviderFailureReason,
        status: int | None = None,
        retry_after_sec: int | None = None,
        provider_code: str | None = None,
        cf_ray: str | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.status = status
        self.retry_after_sec = retry_after_sec
        self.provider_code = provider_code
        self.cf_ray = cf_ray

    def __repr__(self) -> str:
        return f"ProviderError(reason={self.reason.value}, status={self.status})"


@dataclass(frozen=True)
class ProviderRequest:
    system_prompt: str
    user_prompt: str
    max_tokens: int | None = None
    temperature: float | None = None


@dataclass(frozen=True)
class ProviderResult:
    text: str
    status: int
    model: str
    provider: str = PROVIDER_NAME
    cf_ray: str | None = None
    attempts: int = 1


@dataclass(frozen=True)
class ModelSearchResult:
    models: list[str]
    latency_ms: int
    status: int


# ---------------------------------------------------------------------------
# Response shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SingleTextResponse:
    """``result.response`` holds the whole completion."""

    text: str


@dataclass(frozen=True)
class ChatMessagesResponse:
    """``result.messages``: the last assistant message's text fragments."""

    fragments: list[str]

    @property
    def text(self) -> str:
        return "\n".join(self.fragments)


@dataclass(frozen=True)
class ChatChoicesResponse:
    """OpenAI-compatible ``result.choices[].message.content``."""

    text: str


@dataclass(frozen=True)
class UnrecognizedResponse:
    keys: list[str] = field(default_factory=list)


ProviderResponse = SingleTextResponse | ChatMessagesResponse | ChatChoicesResponse | UnrecognizedResponse


def _content_fragments(content: Any) -> list[str]:
    if isinstance(content, str):
        return [content.strip()] if content.strip() else []
    if isinstance(content, list):
        fragments = []
        for part in content:
            if isinstance(part, str) and part.strip():
                fragments.append(part.strip())
            elif isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip():
                fragments.append(part["text"].strip())
        return fragments
    return []


def parse_run_response(payload: Any) -> ProviderResponse:
    """Classify a decoded run response body into one of the known shapes."""
    if not isinstance(payload, dict):
        return UnrecognizedResponse()

    result = payload.get("result")
    if not isinstance(result, dict):
        return UnrecognizedResponse(keys=sorted(payload))

    response = result.get("response")
    if isinstance(response, str) and response.strip():
        return SingleTextResponse(text=response.strip())
    if isinstance(response, dict):
        # JSON mode on some models returns the object itself
        return SingleTextResponse(text=json.dumps(response, ensure_ascii=False))

    messages = result.get("messages")
    if isinstance(messages, list):
        for message in reversed(messages):
            if not isinstance(message, dict):
                continue
            if str(message.get("role", "")).lower() not in ("assistant", "model"):
                continue
            fragments = _content_fragments(message.get("content"))
            if fragments:
                return ChatMessagesResponse(fragments=fragments)

    choices = result.get("choices")
    if isinstance(choices, list):
        for choice in reversed(choices):
            message = choice.get("message") if isinstance(choice, dict) else None
            if isinstance(message, dict):
                fragments = _content_fragments(message.get("content"))
                if fragments:
                    return ChatChoicesResponse(text="\n".join(fragments))

    return UnrecognizedResponse(keys=sorted(result))


def extract_text(response: ProviderResponse) -> str:
    """
    Return the completion text of a parsed response.

    Raises:
        ProviderError: ``response_shape_error`` for UnrecognizedResponse
    """
    match response:
        case SingleTextResponse(text=text) | ChatChoicesResponse(text=text):
            return text
        case ChatMessagesResponse():
            return response.text
        case UnrecognizedResponse(keys=keys):
            raise ProviderError(
                f"Provider response did not contain assistant text (keys={keys})",
                ProviderFailureReason.RESPONSE_SHAPE_ERROR,
            )


# ---------------------------------------------------------------------------
# Endpoints and error classification
# ---------------------------------------------------------------------------


def build_run_endpoint(account_id: str, model: str, base_url: str | None = None) -> str:
    """
    Build the run URL.  The account id is escaped; the model id is a structural
    path (``@cf/meta/llama-3``) and keeps its ``/`` and ``@`` literal.
    """
    base = (base_url or ProviderSettings().base_url).rstrip("/")
    return f"{base}/accounts/{quote(account_id, safe='')}/ai/run/{quote(model, safe='/@:')}"


def build_models_search_endpoint(account_id: str, base_url: str | None = None) -> str:
    base = (base_url or ProviderSettings().base_url).rstrip("/")
    return f"{base}/accounts/{quote(account_id, safe='')}/ai/models/search"


def parse_retry_after(value: str | None, now: datetime | None = None) -> int | None:
    """Retry-After as whole seconds; accepts delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    delta = (retry_at - (now or datetime.now(UTC))).total_seconds()
    if delta <= 0:
        return 0
    return int(-(-delta // 1))


def first_provider_error(payload: Any) -> tuple[str | None, str | None]:
    """(code, message) of the first entry in ``errors[]``."""
    if not isinstance(payload, dict):
        return None, None
    errors = payload.get("errors")
    if not isinstance(errors, list) or not errors or not isinstance(errors[0], dict):
        return None, None
    code = errors[0].get("code")
    message = errors[0].get("message")
    return (
        str(code) if code is not None else None,
        message if isinstance(message, str) else None,
    )


def classify_failure(status: int, provider_code: str | None) -> ProviderFailureReason:
    if status == 429 or provider_code in QUOTA_EXHAUSTED_CODES:
        return ProviderFailureReason.RATE_LIMITED
    if status == 400 or provider_code in REQUEST_INVALID_CODES:
        return ProviderFailureReason.REQUEST_INVALID
    if 400 <= status < 500:
        return ProviderFailureReason.REQUEST_INVALID
    return ProviderFailureReason.HTTP_ERROR


def _detail(message: str | None) -> str | None:
    return scrub_detail(message, max_length=PROVIDER_DETAIL_MAX_CHARS)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ProviderClient:
    """
    Async client for the text-generation provider.

    Args:
        settings: credentials, model and tuning
        transport: optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        settings: ProviderSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.settings.configured

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.settings.timeout_seconds)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _emit(on_diagnostic: DiagnosticCallback | None, stage: str, **fields: Any) -> None:
        if on_diagnostic is None:
            return
        event = {"stage": stage, "provider": PROVIDER_NAME}
        event.update({key: value for key, value in fields.items() if value is not None})
        try:
            on_diagnostic(event)
        except Exception as e:  # noqa: BLE001
            logger.warning("Provider diagnostic callback failed: %s", type(e).__name__)

    async def generate_text(
        self,
        request: ProviderRequest,
        on_diagnostic: DiagnosticCallback | None = None,
    ) -> ProviderResult:
        """
        Run one completion, retrying ``rate_limited`` once if max_attempts allows.

        No sleep happens between attempts; pacing is the caller's concern.

        Raises:
            ProviderError: on any failure, with the reason of the last attempt
        """
        if not self.configured:
            raise ProviderError("Provider credentials are not configured", ProviderFailureReason.REQUEST_INVALID)

        settings = self.settings
        endpoint = build_run_endpoint(settings.account_id or "", settings.model, settings.base_url)
        payload = {
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "max_tokens": request.max_tokens or settings.max_tokens,
            "temperature": request.temperature if request.temperature is not None else settings.temperature,
            "response_format": {"type": "json_object"},
        }
        max_attempts = min(MAX_PROVIDER_ATTEMPTS, max(1, settings.max_attempts))

        attempt = 0
        async with self._client() as client:
            while True:
                attempt += 1
                try:
                    return await self._attempt(client, endpoint, payload, attempt, on_diagnostic)
                except ProviderError as e:
                    counter(f"provider.error.{e.reason.value}")
                    if e.reason == ProviderFailureReason.RATE_LIMITED and attempt < max_attempts:
                        logger.info("Provider rate limited on attempt %d, retrying", attempt)
                        continue
                    raise

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        payload: dict[str, Any],
        attempt: int,
        on_diagnostic: DiagnosticCallback | None,
    ) -> ProviderResult:
        model = self.settings.model
        self._emit(on_diagnostic, "provider_attempt", model=model, attempt=attempt)
        self._emit(on_diagnostic, "provider_request", model=model, attempt=attempt, payloadKeys=list(payload))

        started = time.perf_counter()
        try:
            response = await client.post(endpoint, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            self._emit(
                on_diagnostic,
                "provider_error",
                model=model,
                attempt=attempt,
                durationMs=int((time.perf_counter() - started) * 1000),
                reason=ProviderFailureReason.TIMEOUT.value,
            )
            raise ProviderError("Provider request timed out", ProviderFailureReason.TIMEOUT) from e
        except httpx.HTTPError as e:
            self._emit(
                on_diagnostic,
                "provider_error",
                model=model,
                attempt=attempt,
                durationMs=int((time.perf_counter() - started) * 1000),
                reason=ProviderFailureReason.REQUEST_ERROR.value,
                detail=_detail(type(e).__name__),
            )
            raise ProviderError("Provider request failed", ProviderFailureReason.REQUEST_ERROR) from e

        duration_ms = int((time.perf_counter() - started) * 1000)
        status = response.status_code
        cf_ray = response.headers.get("cf-ray")
        self._emit(
            on_diagnostic,
            "provider_response",
            model=model,
            attempt=attempt,
            durationMs=duration_ms,
            status=status,
            ok=response.is_success,
            cfRay=cf_ray,
        )

        try:
            body: Any = response.json() if response.content else {}
        except ValueError as e:
            if response.is_success:
                self._emit(
                    on_diagnostic,
                    "provider_error",
                    model=model,
                    attempt=attempt,
                    status=status,
                    cfRay=cf_ray,
                    reason=ProviderFailureReason.RESPONSE_PARSE_ERROR.value,
                )
                raise ProviderError(
                    "Provider returned invalid JSON",
                    ProviderFailureReason.RESPONSE_PARSE_ERROR,
                    status=status,
                    cf_ray=cf_ray,
                ) from e
            # Non-JSON error pages still classify by status
            body = {}

        provider_code, provider_message = first_provider_error(body)
        if not response.is_success or (isinstance(body, dict) and body.get("success") is False):
            error = self._status_error(status, provider_code, provider_message, response, cf_ray)
            self._emit(
                on_diagnostic,
                "provider_request_invalid"
                if error.reason == ProviderFailureReason.REQUEST_INVALID
                else "provider_error",
                model=model,
                attempt=attempt,
                durationMs=duration_ms,
                status=status,
                cfRay=cf_ray,
                reason=error.reason.value,
                errorCode=provider_code,
                retryAfterSec=error.retry_after_sec,
                detail=_detail(provider_message),
            )
            raise error

        parsed = parse_run_response(body)
        try:
            text = extract_text(parsed)
        except ProviderError as e:
            self._emit(
                on_diagnostic,
                "provider_error",
                model=model,
                attempt=attempt,
                status=status,
                cfRay=cf_ray,
                reason=e.reason.value,
                detail=_detail(str(e)),
            )
            raise ProviderError(str(e), e.reason, status=status, cf_ray=cf_ray) from e

        self._emit(
            on_diagnostic,
            "provider_response_body",
            attempt=attempt,
            status=status,
            responseShape=type(parsed).__name__,
        )
        return ProviderResult(
            text=text,
            status=status,
            model=model,
            cf_ray=cf_ray,
            attempts=attempt,
        )

    @staticmethod
    def _status_error(
        status: int,
        provider_code: str | None,
        provider_message: str | None,
        response: httpx.Response,
        cf_ray: str | None,
    ) -> ProviderError:
        reason = classify_failure(status, provider_code)
        return ProviderError(
            provider_message or f"Provider returned status {status}",
            reason,
            status=status,
            retry_after_sec=parse_retry_after(response.headers.get("retry-after")),
            provider_code=provider_code,
            cf_ray=cf_ray,
        )

    async def search_models(self, on_diagnostic: DiagnosticCallback | None = None) -> ModelSearchResult:
        """List model names visible to the account; used by the provider health check."""
        settings = self.settings
        endpoint = build_models_search_endpoint(settings.account_id or "", settings.base_url)
        started = time.perf_counter()
        async with self._client() as client:
            try:
                response = await client.get(endpoint, headers=self._headers())
            except httpx.TimeoutException as e:
                raise ProviderError("Model search timed out", ProviderFailureReason.TIMEOUT) from e
            except httpx.HTTPError as e:
                raise ProviderError("Model search failed", ProviderFailureReason.REQUEST_ERROR) from e

        latency_ms = int((time.perf_counter() - started) * 1000)
        try:
            body: Any = response.json() if response.content else {}
        except ValueError:
            body = {}

        self._emit(
            on_diagnostic,
            "provider_health",
            durationMs=latency_ms,
            status=response.status_code,
            ok=response.is_success,
            cfRay=response.headers.get("cf-ray"),
        )
        if not response.is_success:
            code, message = first_provider_error(body)
            raise self._status_error(response.status_code, code, message, response, response.headers.get("cf-ray"))

        return ModelSearchResult(
            models=collect_model_names(body),
            latency_ms=latency_ms,
            status=response.status_code,
        )


def collect_model_names(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        return []
    source = payload.get("result")
    if not isinstance(source, list):
        source = payload.get("models") if isinstance(payload.get("models"), list) else []

    names: list[str] = []
    for item in source:
        if not isinstance(item, dict):
            continue
        for key in ("name", "id", "model", "slug"):
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                if value.strip() not in names:
                    names.append(value.strip())
                break
    return names
