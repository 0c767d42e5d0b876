"""
Advisor service: the request-level pipeline behind the insight routes.

Order per request is fixed: rate limit (enforced by the route dependency
before query parsing), then regenerate cooldown, then cache lookup, then
generation.  Plain requests are served from cache when possible; regenerate
requests always generate and overwrite the cache entry.  Raised errors leave
the cache untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from advisorq.advisor.cache import InsightCache
from advisorq.advisor.gatekeeper import FreeUsageResult, RequestGatekeeper
from advisorq.advisor.generator import InsightGenerator
from advisorq.advisor.types import AdvisorInsight, Language
from advisorq.llm.provider import ProviderError
from advisorq.observability.diagnostics import DiagnosticsCorrelator
from advisorq.observability.logging import get_logger
from advisorq.observability.telemetry import counter, log_event
from advisorq.utils.redaction import redact

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderHealth:
    ok: bool
    model_configured: bool
    model_exists: bool
    latency_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "modelConfigured": self.model_configured,
            "modelExists": self.model_exists,
            "latencyMs": self.latency_ms,
        }


class AdvisorService:
    """Wire gatekeeper, cache, generator and diagnostics together."""

    def __init__(
        self,
        gatekeeper: RequestGatekeeper,
        cache: InsightCache,
        generator: InsightGenerator,
        correlator: DiagnosticsCorrelator,
    ) -> None:
        self.gatekeeper = gatekeeper
        self.cache = cache
        self.generator = generator
        self.correlator = correlator

    def enforce_rate_limit(self, user_id: str) -> None:
        self.gatekeeper.enforce_rate_limit(user_id)

    def consume_free_usage(self, user_id: str) -> FreeUsageResult:
        return self.gatekeeper.consume_free_usage(user_id)

    async def get_insight(
        self,
        user_id: str,
        month: str,
        language: Language,
        regenerate: bool = False,
        request_id: str | None = None,
    ) -> AdvisorInsight:
        """
        Serve one insight request.

        Args:
            user_id: authenticated user
            month: YYYY-MM
            language: response language
            regenerate: bypass the cache and ask for a fresh variant
            request_id: correlation id; also used as the variant nonce

        Raises:
            ApiError: cooldown (429) or provider errors surfaced by the generator
        """
        if regenerate:
            self.gatekeeper.enforce_regenerate_cooldown(user_id)
        else:
            cached = self.cache.get(user_id, month, language)
            if cached is not None:
                self.correlator.record(
                    "server_cache_hit",
                    {"requestId": request_id, "month": month, "language": language.value},
                )
                return cached

        def on_diagnostic(event: dict[str, Any]) -> None:
            stage = str(event.get("stage", "unknown"))
            payload = {key: value for key, value in event.items() if key != "stage"}
            payload["requestId"] = request_id
            self.correlator.record(f"server_{stage}", payload)

        insight = await self.generator.generate(
            user_id,
            month,
            language,
            regenerate=regenerate,
            variant_nonce=request_id,
            on_diagnostic=on_diagnostic,
        )
        self.cache.put(user_id, month, language, insight)

        counter(f"advisor.insight.{insight.mode.value}")
        log_event(
            "advisor.insight.served",
            user=redact(user_id),
            month=month,
            language=language.value,
            regenerate=regenerate,
            mode=insight.mode.value,
            mode_reason=insight.mode_reason.value if insight.mode_reason else None,
        )
        return insight

    async def provider_health(self) -> ProviderHealth:
        """Query the provider's model listing and check the configured model."""
        provider = self.generator.provider
        if provider is None or not provider.configured:
            return ProviderHealth(ok=False, model_configured=False, model_exists=False)

        def on_diagnostic(event: dict[str, Any]) -> None:
            self.correlator.record("server_provider_health", dict(event))

        try:
            result = await provider.search_models(on_diagnostic=on_diagnostic)
        except ProviderError as e:
            logger.warning("Provider health check failed: %s", e.reason.value)
            return ProviderHealth(ok=False, model_configured=True, model_exists=False)

        model_exists = provider.settings.model in result.models
        return ProviderHealth(
            ok=model_exists,
            model_configured=True,
            model_exists=model_exists,
            latency_ms=result.latency_ms,
        )
