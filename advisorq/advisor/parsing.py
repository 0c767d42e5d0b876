"""
Parse provider text into a validated advice draft.

The provider is asked for a strict JSON object, but models still wrap output
in markdown fences, add prose around it, or emit a bulleted string where a
list is expected.  parse_advice_text() tolerates those three cases and
rejects everything else with AdviceParseError.
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from advisorq.advisor.types import RiskLevel

FENCE_REGEX = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
OBJECT_REGEX = re.compile(r"\{[\s\S]*\}")
BULLET_PREFIX_REGEX = re.compile(r"^\s*[-*•\d.)]+\s*")

NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class AdviceParseError(ValueError):
    """Provider text could not be turned into a valid advice draft."""


class DraftModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SavingsDraft(DraftModel):
    target_rate: float = Field(ge=0, le=1)
    monthly_target_amount: float = Field(ge=0)
    next7_days_actions: list[NonBlankStr] = Field(alias="next7DaysActions", min_length=1, max_length=8)
    auto_transfer_suggestion: NonBlankStr = Field(max_length=320)


class RiskProfileDraft(DraftModel):
    level: RiskLevel
    title: NonBlankStr = Field(max_length=180)
    rationale: NonBlankStr = Field(max_length=400)
    options: list[NonBlankStr] = Field(min_length=1, max_length=6)


class InvestmentDraft(DraftModel):
    profiles: list[RiskProfileDraft] = Field(min_length=1, max_length=3)
    guidance: list[NonBlankStr] = Field(min_length=1, max_length=8)


class CutCandidateDraft(DraftModel):
    label: NonBlankStr = Field(max_length=120)
    suggested_reduction_percent: float = Field(ge=0, le=100)
    alternative_action: NonBlankStr = Field(max_length=320)


class ExpenseOptimizationDraft(DraftModel):
    cut_candidates: list[CutCandidateDraft] = Field(min_length=1, max_length=6)
    quick_wins: list[NonBlankStr] = Field(min_length=1, max_length=8)


class AdviceDraft(DraftModel):
    """Advice as authored by the provider (or by the fallback templates)."""

    summary: NonBlankStr = Field(max_length=1500)
    top_findings: list[NonBlankStr] = Field(min_length=1, max_length=8)
    suggested_actions: list[NonBlankStr] = Field(min_length=1, max_length=8)
    warnings: list[NonBlankStr] = Field(default_factory=list, max_length=8)
    savings: SavingsDraft
    investment: InvestmentDraft
    expense_optimization: ExpenseOptimizationDraft
    tips: list[NonBlankStr] = Field(min_length=1, max_length=10)


def extract_json_object(text: str) -> Any:
    """
    Decode the JSON payload in ``text``.

    Markdown fences are stripped first; if the remainder is not valid JSON the
    outermost ``{...}`` span is tried before giving up.
    """
    trimmed = text.strip()
    fenced = FENCE_REGEX.search(trimmed)
    candidate = fenced.group(1) if fenced else trimmed

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        match = OBJECT_REGEX.search(candidate)
        if not match:
            raise AdviceParseError("No JSON object found") from None
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise AdviceParseError(f"Invalid JSON object: {e.msg}") from e


def coerce_string_list(value: Any) -> Any:
    """Turn a bulleted or multi-line string into a list; leave other values alone."""
    if not isinstance(value, str):
        return value

    trimmed = value.strip()
    if not trimmed:
        return []

    lines = [BULLET_PREFIX_REGEX.sub("", line).strip() for line in trimmed.splitlines()]
    lines = [line for line in lines if line]
    return lines or [trimmed]


def _coerce_section(section: Any, list_fields: tuple[str, ...]) -> None:
    if not isinstance(section, dict):
        return
    for name in list_fields:
        if name in section:
            section[name] = coerce_string_list(section[name])


def coerce_advice_shape(candidate: Any) -> Any:
    """Repair common list-vs-string slips in place before validation."""
    if not isinstance(candidate, dict):
        return candidate

    for name in ("topFindings", "suggestedActions", "warnings", "tips"):
        if name in candidate:
            candidate[name] = coerce_string_list(candidate[name])

    _coerce_section(candidate.get("savings"), ("next7DaysActions",))
    _coerce_section(candidate.get("expenseOptimization"), ("quickWins",))

    investment = candidate.get("investment")
    if isinstance(investment, dict):
        _coerce_section(investment, ("guidance",))
        profiles = investment.get("profiles")
        if isinstance(profiles, dict):
            investment["profiles"] = profiles = [profiles]
        if isinstance(profiles, list):
            for profile in profiles:
                _coerce_section(profile, ("options",))

    return candidate


def describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0] if error.errors() else None
    if first is None:
        return "unknown validation error"
    path = ".".join(str(part) for part in first["loc"]) or "root"
    return f"{path}: {first['msg']}"


def parse_advice_text(text: str) -> AdviceDraft:
    """
    Parse provider text into an AdviceDraft.

    Raises:
        AdviceParseError: text holds no JSON object or it fails validation
    """
    data = coerce_advice_shape(extract_json_object(text))
    try:
        return AdviceDraft.model_validate(data)
    except ValidationError as e:
        raise AdviceParseError(describe_validation_error(e)) from e
