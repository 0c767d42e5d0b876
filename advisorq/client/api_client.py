"""
HTTP client for the advisor API.

Insight requests are instrumented: the request id reserved by the UI action
is claimed by (month, language, regenerate) at send time, sent as
``X-Advisor-Request-Id``, and the request lifecycle is recorded in the
diagnostics correlator.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from advisorq.advisor.types import AdvisorInsight, Language
from advisorq.config import CLIENT_API_BASE_URL, CLIENT_TIMEOUT_SECONDS
from advisorq.observability.diagnostics import DiagnosticsCorrelator
from advisorq.observability.logging import get_logger

logger = get_logger(__name__)

INSIGHTS_PATH = "/advisor/insights"
FREE_CHECK_PATH = "/advisor/insights/free-check"
REQUEST_ID_HEADER = "X-Advisor-Request-Id"

REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
SERVER_UNREACHABLE = "SERVER_UNREACHABLE"
UNKNOWN_ERROR = "UNKNOWN_ERROR"


class AdvisorClientError(Exception):
    """A failed advisor API call; ``status`` is 0 when no response arrived."""

    def __init__(
        self,
        code: str,
        message: str,
        status: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}

    @property
    def retry_after_sec(self) -> int | None:
        value = self.details.get("retryAfterSec")
        return int(value) if isinstance(value, (int, float)) else None

    def __repr__(self) -> str:
        return f"AdvisorClientError({self.code!r}, status={self.status})"


@dataclass
class _InsightRequestMeta:
    request_id: str
    month: str
    language: str
    regenerate: bool
    started_at: float = field(default_factory=time.perf_counter)


def summarize_insight_payload(payload: Any) -> dict[str, Any]:
    """Shape-only summary of an insight response; never includes advice text."""
    if not isinstance(payload, dict):
        return {
            "mode": None,
            "modeReason": None,
            "provider": None,
            "providerStatus": None,
            "hasAdvice": False,
            "adviceSummaryLen": 0,
            "topFindingsCount": 0,
            "suggestedActionsCount": 0,
        }

    advice = payload.get("advice") if isinstance(payload.get("advice"), dict) else None
    summary = advice.get("summary") if advice else None
    summary = summary.strip() if isinstance(summary, str) else ""

    def count(key: str) -> int:
        value = advice.get(key) if advice else None
        return len(value) if isinstance(value, list) else 0

    return {
        "mode": payload.get("mode") if isinstance(payload.get("mode"), str) else None,
        "modeReason": payload.get("modeReason") if isinstance(payload.get("modeReason"), str) else None,
        "provider": payload.get("provider") if isinstance(payload.get("provider"), str) else None,
        "providerStatus": payload.get("providerStatus") if isinstance(payload.get("providerStatus"), int) else None,
        "hasAdvice": advice is not None,
        "adviceSummaryLen": len(summary),
        "topFindingsCount": count("topFindings"),
        "suggestedActionsCount": count("suggestedActions"),
    }


def _error_from_response(response: httpx.Response) -> AdvisorClientError:
    try:
        body = response.json()
    except ValueError:
        body = None

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and isinstance(error.get("code"), str):
        details = error.get("details") if isinstance(error.get("details"), dict) else None
        return AdvisorClientError(
            error["code"],
            str(error.get("message") or error["code"]),
            response.status_code,
            details,
        )
    return AdvisorClientError(UNKNOWN_ERROR, f"Request failed with status {response.status_code}", response.status_code)


class AdvisorApiClient:
    """
    Async advisor API client.

    Args:
        base_url: API root, e.g. ``http://localhost:8000``
        correlator: diagnostics correlator shared with the UI layer
        transport: optional httpx transport (tests pass ASGI or mock transports)
        timeout: per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str = CLIENT_API_BASE_URL,
        correlator: DiagnosticsCorrelator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = CLIENT_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.correlator = correlator or DiagnosticsCorrelator()
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self._transport, timeout=self.timeout)

    @staticmethod
    def _auth_headers(token: str | None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _claim_request_id(self, month: str, language: str, regenerate: bool) -> _InsightRequestMeta:
        request_id = self.correlator.consume(month, language, regenerate) or self.correlator.create_request_id()
        return _InsightRequestMeta(request_id=request_id, month=month, language=language, regenerate=regenerate)

    async def _send(
        self,
        method: str,
        path: str,
        token: str | None,
        params: dict[str, str] | None = None,
        meta: _InsightRequestMeta | None = None,
    ) -> httpx.Response:
        headers = self._auth_headers(token)
        if meta is not None:
            headers[REQUEST_ID_HEADER] = meta.request_id
            self.correlator.record(
                "request_start",
                {
                    "requestId": meta.request_id,
                    "path": path,
                    "month": meta.month,
                    "language": meta.language,
                    "regenerate": meta.regenerate,
                    "timeoutSec": self.timeout,
                },
            )

        try:
            async with self._client() as client:
                response = await client.request(method, path, params=params, headers=headers)
        except httpx.TimeoutException as e:
            self._record_error(meta, e)
            raise AdvisorClientError(REQUEST_TIMEOUT, REQUEST_TIMEOUT) from e
        except httpx.HTTPError as e:
            self._record_error(meta, e)
            raise AdvisorClientError(SERVER_UNREACHABLE, SERVER_UNREACHABLE) from e

        if meta is not None:
            self.correlator.record(
                "request_end",
                {
                    "requestId": meta.request_id,
                    "status": response.status_code,
                    "durationMs": int((time.perf_counter() - meta.started_at) * 1000),
                },
            )
            try:
                payload: Any = response.json()
            except ValueError:
                payload = None
            self.correlator.record(
                "response_summary",
                {"requestId": meta.request_id, **summarize_insight_payload(payload)},
            )
        return response

    def _record_error(self, meta: _InsightRequestMeta | None, error: Exception) -> None:
        logger.warning("Advisor API request failed: %s", type(error).__name__)
        if meta is None:
            return
        self.correlator.record(
            "request_error",
            {
                "requestId": meta.request_id,
                "durationMs": int((time.perf_counter() - meta.started_at) * 1000),
                "errorName": type(error).__name__,
            },
        )

    async def get_advisor_insights(
        self,
        month: str,
        language: Language | str = Language.TR,
        regenerate: bool = False,
        token: str | None = None,
    ) -> AdvisorInsight:
        """
        Fetch an insight.

        Raises:
            AdvisorClientError: envelope code on an error response, or
                REQUEST_TIMEOUT / SERVER_UNREACHABLE when no response arrived
                or UNKNOWN_ERROR when the body is not an insight
        """
        language_code = Language(language).value
        params = {"month": month, "language": language_code}
        if regenerate:
            params["regenerate"] = "true"

        meta = self._claim_request_id(month, language_code, regenerate)
        response = await self._send("GET", INSIGHTS_PATH, token, params=params, meta=meta)
        if not response.is_success:
            raise _error_from_response(response)
        try:
            return AdvisorInsight.model_validate(response.json())
        except ValueError as e:
            raise AdvisorClientError(UNKNOWN_ERROR, "Malformed insight response", response.status_code) from e

    async def check_free_usage(self, token: str | None = None) -> dict[str, Any]:
        """POST free-check; returns ``{"allowFree": bool, "dayKey": str}``."""
        response = await self._send("POST", FREE_CHECK_PATH, token)
        if not response.is_success:
            raise _error_from_response(response)
        try:
            body = response.json()
        except ValueError as e:
            raise AdvisorClientError(UNKNOWN_ERROR, "Malformed free-check response", response.status_code) from e
        if not isinstance(body, dict) or not isinstance(body.get("allowFree"), bool):
            raise AdvisorClientError(UNKNOWN_ERROR, "Malformed free-check response", response.status_code)
        return body
