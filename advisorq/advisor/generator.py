"""
Insight generator.

Builds the financial snapshot, asks the provider for advice, and falls back
to deterministic templates when the provider is not configured, fails, or
returns something that does not validate.  Only two provider failures escape
as errors:

- request_invalid: our request is wrong, which is an internal bug (500)
- rate_limited on an explicit regenerate: the user asked for a fresh answer
  and should be told to wait (429 with retryAfterSec)

Every stage transition is reported through ``on_diagnostic``; the generator
itself never decides how diagnostics are logged.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from advisorq.advisor.fallback import FALLBACK_COPY, build_fallback_advice
from advisorq.advisor.parsing import AdviceDraft, AdviceParseError, parse_advice_text
from advisorq.advisor.snapshot import SnapshotBuilder, normalize_for_match
from advisorq.advisor.types import (
    AdviceBody,
    AdvisorInsight,
    CutCandidate,
    EmergencyFundStatus,
    ExpenseOptimization,
    FinancialSnapshot,
    InsightMode,
    InvestmentAdvice,
    Language,
    ModeReason,
    RiskProfileAdvice,
    SavingsAdvice,
)
from advisorq.config import (
    EMERGENCY_FUND_MONTHS,
    PROVIDER_DEFAULT_RETRY_AFTER_SECONDS,
    PROVIDER_NAME,
)
from advisorq.errors import ADVISOR_PROVIDER_INVALID_REQUEST, ADVISOR_PROVIDER_RATE_LIMIT, ApiError
from advisorq.llm.prompts import PromptLoader
from advisorq.llm.provider import ProviderClient, ProviderError, ProviderFailureReason, ProviderRequest
from advisorq.observability.logging import get_logger
from advisorq.observability.telemetry import counter, time_block
from advisorq.utils.error_sanitizer import scrub_detail
from advisorq.utils.redaction import preview_text

logger = get_logger(__name__)

DiagnosticCallback = Callable[[dict[str, Any]], None]

FAILURE_MODE_REASONS: dict[ProviderFailureReason, ModeReason] = {
    ProviderFailureReason.RATE_LIMITED: ModeReason.PROVIDER_RATE_LIMITED,
    ProviderFailureReason.HTTP_ERROR: ModeReason.PROVIDER_HTTP_ERROR,
    ProviderFailureReason.TIMEOUT: ModeReason.PROVIDER_TIMEOUT,
    ProviderFailureReason.RESPONSE_PARSE_ERROR: ModeReason.PROVIDER_INVALID_RESPONSE,
    ProviderFailureReason.RESPONSE_SHAPE_ERROR: ModeReason.PROVIDER_INVALID_RESPONSE,
    ProviderFailureReason.REQUEST_ERROR: ModeReason.PROVIDER_UNKNOWN_ERROR,
}

# Identifiers never leave the process in a prompt
PROMPT_EXCLUDE: dict[str, Any] = {
    "category_breakdown": {"__all__": {"category_id"}},
    "budget_adherence": {"items": {"__all__": {"budget_id", "category_id"}}},
    "recurring_outflows": {"rules": {"__all__": {"rule_id", "next_run_at"}}},
}


def prompt_payload(snapshot: FinancialSnapshot, language: Language) -> dict[str, Any]:
    payload = snapshot.model_dump(by_alias=True, mode="json", exclude=PROMPT_EXCLUDE)
    payload["language"] = language.value
    return payload


def emergency_fund(snapshot: FinancialSnapshot) -> tuple[float, float, EmergencyFundStatus]:
    """(target, current, status): target covers three months of this month's spend."""
    target = round(max(0.0, snapshot.spend.current_month_expense * EMERGENCY_FUND_MONTHS), 2)
    current = round(max(0.0, snapshot.total_balance), 2)
    if target <= 0 or current >= target:
        status = EmergencyFundStatus.READY
    elif current > 0:
        status = EmergencyFundStatus.BUILDING
    else:
        status = EmergencyFundStatus.NOT_STARTED
    return target, current, status


def current_amount_for_label(label: str, snapshot: FinancialSnapshot) -> float:
    """Best-effort spend lookup for a cut candidate label (category, then merchant)."""
    wanted = normalize_for_match(label)
    if not wanted:
        return 0.0
    sources = [(item.name, item.total) for item in snapshot.category_breakdown]
    sources += [(item.label, item.total) for item in snapshot.recurring_outflows.merchants]
    for name, total in sources:
        candidate = normalize_for_match(name)
        if candidate and (candidate == wanted or candidate in wanted or wanted in candidate):
            return round(total, 2)
    return 0.0


def compose_advice(draft: AdviceDraft, snapshot: FinancialSnapshot, language: Language) -> AdviceBody:
    """Merge an authored draft with the numbers only the snapshot can supply."""
    target, current, status = emergency_fund(snapshot)

    cut_candidates = [
        CutCandidate(
            label=candidate.label,
            current_amount=current_amount_for_label(candidate.label, snapshot),
            suggested_reduction_percent=min(100.0, max(0.0, round(candidate.suggested_reduction_percent, 2))),
            alternative_action=candidate.alternative_action,
        )
        for candidate in draft.expense_optimization.cut_candidates
    ]
    if not cut_candidates:
        quick_win = FALLBACK_COPY[language].quick_wins[0]
        cut_candidates = [
            CutCandidate(
                label=item.name,
                current_amount=item.total,
                suggested_reduction_percent=10,
                alternative_action=quick_win,
            )
            for item in snapshot.category_breakdown[:3]
        ]

    return AdviceBody(
        summary=draft.summary,
        top_findings=draft.top_findings,
        suggested_actions=draft.suggested_actions,
        warnings=draft.warnings,
        savings=SavingsAdvice(
            target_rate=min(1.0, max(0.0, draft.savings.target_rate)),
            monthly_target_amount=round(max(0.0, draft.savings.monthly_target_amount), 2),
            next7_days_actions=draft.savings.next7_days_actions,
            auto_transfer_suggestion=draft.savings.auto_transfer_suggestion,
        ),
        investment=InvestmentAdvice(
            emergency_fund_target=target,
            emergency_fund_current=current,
            emergency_fund_status=status,
            profiles=[
                RiskProfileAdvice(
                    level=profile.level,
                    title=profile.title,
                    rationale=profile.rationale,
                    options=profile.options,
                )
                for profile in draft.investment.profiles
            ],
            guidance=draft.investment.guidance,
        ),
        expense_optimization=ExpenseOptimization(
            cut_candidates=cut_candidates,
            quick_wins=draft.expense_optimization.quick_wins,
        ),
        tips=draft.tips,
    )


class InsightGenerator:
    """
    Produce an AdvisorInsight for one (user, month, language).

    Args:
        snapshot_builder: ledger collaborator
        provider: provider client; None or unconfigured means fallback only
        prompts: prompt template loader
        clock: epoch-seconds clock used for generatedAt
    """

    def __init__(
        self,
        snapshot_builder: SnapshotBuilder,
        provider: ProviderClient | None = None,
        prompts: PromptLoader | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.snapshot_builder = snapshot_builder
        self.provider = provider
        self.prompts = prompts or PromptLoader()
        self._clock = clock

    @staticmethod
    def _emit(on_diagnostic: DiagnosticCallback | None, stage: str, **fields: Any) -> None:
        if on_diagnostic is None:
            return
        event = {"stage": stage}
        event.update({key: value for key, value in fields.items() if value is not None})
        try:
            on_diagnostic(event)
        except Exception as e:  # noqa: BLE001
            logger.warning("Insight diagnostic callback failed: %s", type(e).__name__)

    async def generate(
        self,
        user_id: str,
        month: str,
        language: Language,
        regenerate: bool = False,
        variant_nonce: str | None = None,
        on_diagnostic: DiagnosticCallback | None = None,
    ) -> AdvisorInsight:
        """
        Generate a fresh insight; never reads or writes the cache.

        Raises:
            ApiError: ADVISOR_PROVIDER_INVALID_REQUEST (500) on a request the
                provider rejected as invalid; ADVISOR_PROVIDER_RATE_LIMIT (429)
                when the provider is rate limited and ``regenerate`` is set
        """
        configured = self.provider is not None and self.provider.configured
        self._emit(
            on_diagnostic,
            "provider_config",
            provider=PROVIDER_NAME,
            keyConfigured=configured,
            model=self.provider.settings.model if self.provider else None,
        )

        snapshot = await self.snapshot_builder.build(user_id, month)

        draft: AdviceDraft | None = None
        mode_reason: ModeReason | None = None
        provider_name: str | None = None
        provider_status: int | None = None

        if not configured:
            mode_reason = ModeReason.PROVIDER_NOT_CONFIGURED
            self._emit(on_diagnostic, "fallback", reason=mode_reason.value)
        else:
            provider_name = PROVIDER_NAME
            draft, mode_reason, provider_status = await self._ask_provider(
                snapshot, language, regenerate, variant_nonce if regenerate else None, on_diagnostic
            )

        if draft is None:
            counter(f"advisor.fallback.{mode_reason.value if mode_reason else 'unknown'}")
            draft = build_fallback_advice(snapshot, language)
            mode = InsightMode.FALLBACK
            mode_reason = mode_reason or ModeReason.PROVIDER_UNKNOWN_ERROR
        else:
            counter("advisor.ai")
            mode = InsightMode.AI
            mode_reason = None

        insight = AdvisorInsight(
            month=month,
            language=language,
            mode=mode,
            mode_reason=mode_reason,
            provider=provider_name,
            provider_status=provider_status,
            generated_at=datetime.fromtimestamp(self._clock(), UTC),
            currency=snapshot.currency,
            overview=snapshot,
            advice=compose_advice(draft, snapshot, language),
        )
        self._emit(on_diagnostic, "generated", mode=mode.value, modeReason=mode_reason and mode_reason.value)
        return insight

    async def _ask_provider(
        self,
        snapshot: FinancialSnapshot,
        language: Language,
        regenerate: bool,
        variant_nonce: str | None,
        on_diagnostic: DiagnosticCallback | None,
    ) -> tuple[AdviceDraft | None, ModeReason | None, int | None]:
        """Return (draft, fallback reason, provider status); draft is None on fallback."""
        assert self.provider is not None
        request = ProviderRequest(
            system_prompt=self.prompts.get_system_prompt(),
            user_prompt=self.prompts.get_insight_prompt(
                language.value, prompt_payload(snapshot, language), variant_nonce
            ),
        )

        try:
            with time_block("advisor.provider.latency"):
                result = await self.provider.generate_text(request, on_diagnostic=on_diagnostic)
        except ProviderError as e:
            return None, self._handle_provider_error(e, regenerate, on_diagnostic), e.status

        try:
            draft = parse_advice_text(result.text)
        except AdviceParseError as e:
            counter("advisor.provider.invalid_response")
            logger.warning("Provider advice did not validate: %s", e)
            self._emit(
                on_diagnostic,
                "fallback",
                reason=ModeReason.PROVIDER_INVALID_RESPONSE.value,
                status=result.status,
                detail=f"{scrub_detail(str(e))} | preview={preview_text(result.text)!r}",
            )
            return None, ModeReason.PROVIDER_INVALID_RESPONSE, result.status

        return draft, None, result.status

    def _handle_provider_error(
        self,
        error: ProviderError,
        regenerate: bool,
        on_diagnostic: DiagnosticCallback | None,
    ) -> ModeReason:
        details = {
            "provider": PROVIDER_NAME,
            "providerStatus": error.status,
            "cfRay": error.cf_ray,
            "providerErrorCode": error.provider_code,
        }

        if error.reason == ProviderFailureReason.REQUEST_INVALID:
            logger.error("Provider rejected advisor request as invalid (status=%s)", error.status)
            raise ApiError(
                ADVISOR_PROVIDER_INVALID_REQUEST,
                "Advisor provider request is invalid",
                500,
                {**details, "providerStatus": error.status or 400},
            ) from error

        if error.reason == ProviderFailureReason.RATE_LIMITED and regenerate:
            retry_after = error.retry_after_sec
            if retry_after is None:
                retry_after = PROVIDER_DEFAULT_RETRY_AFTER_SECONDS
            raise ApiError(
                ADVISOR_PROVIDER_RATE_LIMIT,
                "Advisor provider rate limited this request",
                429,
                {**details, "providerStatus": error.status or 429, "retryAfterSec": retry_after},
            ) from error

        reason = FAILURE_MODE_REASONS.get(error.reason, ModeReason.PROVIDER_UNKNOWN_ERROR)
        logger.warning("Provider failed (%s), serving fallback advice", error.reason.value)
        self._emit(
            on_diagnostic,
            "fallback",
            reason=reason.value,
            status=error.status,
            cfRay=error.cf_ray,
            errorCode=error.provider_code,
            retryAfterSec=error.retry_after_sec,
            detail=scrub_detail(str(error)),
        )
        return reason
