"""
Module: types
Purpose: Shared domain types for the advisor insight pipeline.

Wire models use camelCase aliases (``generatedAt``, ``topFindings``) and are
frozen: an insight is immutable once produced and a new generation replaces
it wholesale.  Python code constructs them with snake_case field names.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Language(str, Enum):
    TR = "tr"
    EN = "en"
    RU = "ru"


class InsightMode(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"


class ModeReason(str, Enum):
    """Why an insight was served in fallback mode."""

    PROVIDER_NOT_CONFIGURED = "provider_not_configured"
    PROVIDER_HTTP_ERROR = "provider_http_error"
    PROVIDER_RATE_LIMITED = "provider_rate_limited"
    PROVIDER_TIMEOUT = "provider_timeout"
    PROVIDER_INVALID_RESPONSE = "provider_invalid_response"
    PROVIDER_UNKNOWN_ERROR = "provider_unknown_error"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class BudgetStatus(str, Enum):
    ON_TRACK = "on_track"
    NEAR_LIMIT = "near_limit"
    OVER_LIMIT = "over_limit"


class EmergencyFundStatus(str, Enum):
    NOT_STARTED = "not_started"
    BUILDING = "building"
    READY = "ready"


class WireModel(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Financial snapshot (the insight's overview)
# ---------------------------------------------------------------------------


class SpendOverview(WireModel):
    last30_days_income: float = Field(default=0.0, alias="last30DaysIncome")
    last30_days_expense: float = Field(default=0.0, alias="last30DaysExpense")
    last30_days_net: float = Field(default=0.0, alias="last30DaysNet")
    current_month_income: float = 0.0
    current_month_expense: float = 0.0
    current_month_net: float = 0.0
    savings_rate: float = 0.0


class CategoryBreakdownItem(WireModel):
    category_id: str
    name: str
    total: float
    share_percent: float


class CashflowPoint(WireModel):
    month: str
    income_total: float
    expense_total: float
    net_total: float


class BudgetItem(WireModel):
    budget_id: str
    category_id: str
    category_name: str
    limit_amount: float
    spent_amount: float
    remaining_amount: float
    percent_used: float
    status: BudgetStatus


class BudgetAdherence(WireModel):
    tracked_count: int = 0
    on_track_count: int = 0
    near_limit_count: int = 0
    over_limit_count: int = 0
    items: list[BudgetItem] = Field(default_factory=list)


class RecurringRuleItem(WireModel):
    rule_id: str
    label: str
    cadence: str  # "weekly" | "monthly"
    amount: float
    next_run_at: datetime | None = None


class RecurringMerchantItem(WireModel):
    label: str
    total: float
    count: int


class RecurringOutflows(WireModel):
    rules: list[RecurringRuleItem] = Field(default_factory=list)
    merchants: list[RecurringMerchantItem] = Field(default_factory=list)


class SnapshotFlags(WireModel):
    overspending_category_names: list[str] = Field(default_factory=list)
    negative_cashflow: bool = False
    low_savings_rate: bool = False
    irregular_income: bool = False


class Preferences(WireModel):
    savings_target_rate: float = 20.0
    risk_profile: RiskLevel = RiskLevel.MEDIUM


class FinancialSnapshot(WireModel):
    """Aggregate, anonymized view of one user's month."""

    month: str
    currency: str | None = None
    preferences: Preferences = Field(default_factory=Preferences)
    account_count: int = 0
    total_balance: float = 0.0
    spend: SpendOverview = Field(default_factory=SpendOverview)
    category_breakdown: list[CategoryBreakdownItem] = Field(default_factory=list)
    cashflow_trend: list[CashflowPoint] = Field(default_factory=list)
    budget_adherence: BudgetAdherence = Field(default_factory=BudgetAdherence)
    recurring_outflows: RecurringOutflows = Field(default_factory=RecurringOutflows)
    flags: SnapshotFlags = Field(default_factory=SnapshotFlags)


# ---------------------------------------------------------------------------
# Advice body
# ---------------------------------------------------------------------------


class SavingsAdvice(WireModel):
    target_rate: float
    monthly_target_amount: float
    next7_days_actions: list[str] = Field(alias="next7DaysActions")
    auto_transfer_suggestion: str


class RiskProfileAdvice(WireModel):
    level: RiskLevel
    title: str
    rationale: str
    options: list[str]


class InvestmentAdvice(WireModel):
    emergency_fund_target: float
    emergency_fund_current: float
    emergency_fund_status: EmergencyFundStatus
    profiles: list[RiskProfileAdvice]
    guidance: list[str]


class CutCandidate(WireModel):
    label: str
    current_amount: float
    suggested_reduction_percent: float
    alternative_action: str


class ExpenseOptimization(WireModel):
    cut_candidates: list[CutCandidate]
    quick_wins: list[str]


class AdviceBody(WireModel):
    summary: str
    top_findings: list[str]
    suggested_actions: list[str]
    warnings: list[str] = Field(default_factory=list)
    savings: SavingsAdvice
    investment: InvestmentAdvice
    expense_optimization: ExpenseOptimization
    tips: list[str]


class AdvisorInsight(WireModel):
    """The generated advice payload for one user, month and language."""

    month: str
    language: Language
    mode: InsightMode
    mode_reason: ModeReason | None = None
    provider: str | None = None
    provider_status: int | None = None
    generated_at: datetime
    currency: str | None = None
    overview: FinancialSnapshot
    advice: AdviceBody

    @property
    def is_fallback(self) -> bool:
        return self.mode == InsightMode.FALLBACK
