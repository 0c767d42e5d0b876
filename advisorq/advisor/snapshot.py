"""
Financial snapshot assembly.

The generator only depends on the SnapshotBuilder protocol; the ledger
subsystem that owns accounts and transactions plugs in its own builder.
LedgerSnapshotBuilder is the reference implementation over an in-memory
LedgerStore, used by the dev server and tests.
"""

from __future__ import annotations

import time
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from advisorq.advisor.types import (
    BudgetAdherence,
    BudgetItem,
    BudgetStatus,
    CashflowPoint,
    CategoryBreakdownItem,
    FinancialSnapshot,
    Preferences,
    RecurringMerchantItem,
    RecurringOutflows,
    RecurringRuleItem,
    RiskLevel,
    SnapshotFlags,
    SpendOverview,
)
from advisorq.config import (
    BUDGET_NEAR_LIMIT_PERCENT,
    BUDGET_OVER_LIMIT_PERCENT,
    IRREGULAR_INCOME_RATIO,
    LOW_SAVINGS_RATE_THRESHOLD,
    SNAPSHOT_DEFAULT_RISK_PROFILE,
    SNAPSHOT_DEFAULT_SAVINGS_TARGET_RATE,
    SNAPSHOT_TOP_BUDGETS,
    SNAPSHOT_TOP_CATEGORIES,
    SNAPSHOT_TOP_RECURRING,
    SNAPSHOT_TRAILING_DAYS,
    SNAPSHOT_TREND_MONTHS,
)
from advisorq.utils.redaction import sanitize_for_prompt


class SnapshotBuilder(Protocol):
    async def build(self, user_id: str, month: str) -> FinancialSnapshot: ...


# ---------------------------------------------------------------------------
# Month helpers
# ---------------------------------------------------------------------------


def parse_month(month: str) -> tuple[int, int]:
    year_raw, month_raw = month.split("-")
    year, month_number = int(year_raw), int(month_raw)
    if not 1 <= month_number <= 12:
        raise ValueError(f"Invalid month: {month}")
    return year, month_number


def shift_month(month: str, delta: int) -> str:
    year, month_number = parse_month(month)
    index = year * 12 + (month_number - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def month_bounds(month: str) -> tuple[datetime, datetime]:
    """UTC start and exclusive end of ``month``."""
    year, month_number = parse_month(month)
    start = datetime(year, month_number, 1, tzinfo=UTC)
    next_year, next_month = parse_month(shift_month(month, 1))
    return start, datetime(next_year, next_month, 1, tzinfo=UTC)


def normalize_for_match(value: str) -> str:
    """Lowercase, strip diacritics and punctuation for fuzzy label matching."""
    decomposed = unicodedata.normalize("NFD", value.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = "".join(ch if ch.isalnum() or ch.isspace() else " " for ch in stripped)
    return " ".join(cleaned.split())


def _round(value: float) -> float:
    return round(value, 2)


# ---------------------------------------------------------------------------
# In-memory ledger
# ---------------------------------------------------------------------------


@dataclass
class Account:
    id: str
    name: str
    currency: str = "TRY"


@dataclass
class Category:
    id: str
    name: str


@dataclass
class Transaction:
    id: str
    account_id: str
    type: str  # "income" | "expense"
    amount: float
    occurred_at: datetime
    category_id: str | None = None
    description: str | None = None


@dataclass
class Budget:
    id: str
    category_id: str
    month: str
    limit_amount: float


@dataclass
class RecurringRule:
    id: str
    kind: str  # "normal" | "transfer"
    cadence: str  # "weekly" | "monthly"
    amount: float
    next_run_at: datetime | None = None
    description: str | None = None
    category_id: str | None = None
    from_account_id: str | None = None
    to_account_id: str | None = None
    is_paused: bool = False


@dataclass
class UserProfile:
    base_currency: str | None = None
    savings_target_rate: float = SNAPSHOT_DEFAULT_SAVINGS_TARGET_RATE
    risk_profile: RiskLevel = RiskLevel(SNAPSHOT_DEFAULT_RISK_PROFILE)


@dataclass
class UserLedger:
    profile: UserProfile = field(default_factory=UserProfile)
    accounts: dict[str, Account] = field(default_factory=dict)
    categories: dict[str, Category] = field(default_factory=dict)
    transactions: list[Transaction] = field(default_factory=list)
    budgets: list[Budget] = field(default_factory=list)
    recurring_rules: list[RecurringRule] = field(default_factory=list)


class LedgerStore:
    """Per-user in-memory ledger data."""

    def __init__(self) -> None:
        self._ledgers: dict[str, UserLedger] = {}

    def ledger(self, user_id: str) -> UserLedger:
        return self._ledgers.setdefault(user_id, UserLedger())

    def set_profile(self, user_id: str, profile: UserProfile) -> None:
        self.ledger(user_id).profile = profile

    def add_account(self, user_id: str, account: Account) -> None:
        self.ledger(user_id).accounts[account.id] = account

    def add_category(self, user_id: str, category: Category) -> None:
        self.ledger(user_id).categories[category.id] = category

    def add_transaction(self, user_id: str, transaction: Transaction) -> None:
        self.ledger(user_id).transactions.append(transaction)

    def add_budget(self, user_id: str, budget: Budget) -> None:
        self.ledger(user_id).budgets.append(budget)

    def add_recurring_rule(self, user_id: str, rule: RecurringRule) -> None:
        self.ledger(user_id).recurring_rules.append(rule)


# ---------------------------------------------------------------------------
# Snapshot builder
# ---------------------------------------------------------------------------


class LedgerSnapshotBuilder:
    """Compute a FinancialSnapshot for one user and month from a LedgerStore."""

    def __init__(self, store: LedgerStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock

    def _anchor_date(self, month_end: datetime) -> datetime:
        """Today (UTC midnight), or the month's last day for past months."""
        last_day = month_end - timedelta(days=1)
        now = datetime.fromtimestamp(self._clock(), UTC)
        today = datetime(now.year, now.month, now.day, tzinfo=UTC)
        return min(today, last_day)

    async def build(self, user_id: str, month: str) -> FinancialSnapshot:
        ledger = self.store.ledger(user_id)
        start, end = month_bounds(month)
        trend_months = [shift_month(month, -offset) for offset in range(SNAPSHOT_TREND_MONTHS - 1, -1, -1)]
        trend_start, _ = month_bounds(trend_months[0])

        anchor = self._anchor_date(end)
        trailing_from = anchor - timedelta(days=SNAPSHOT_TRAILING_DAYS - 1)
        trailing_to = anchor + timedelta(days=1)

        category_names = {
            category_id: sanitize_for_prompt(category.name) or "Uncategorized"
            for category_id, category in ledger.categories.items()
        }

        month_totals = {"income": 0.0, "expense": 0.0}
        trailing_totals = {"income": 0.0, "expense": 0.0}
        trend_totals = {m: {"income": 0.0, "expense": 0.0} for m in trend_months}
        expense_by_category: dict[str, float] = {}
        merchants: dict[str, dict[str, float | str | int]] = {}

        for tx in ledger.transactions:
            if not trend_start <= tx.occurred_at < end:
                continue
            kind = "income" if tx.type == "income" else "expense"

            trend_entry = trend_totals.get(to_month(tx.occurred_at))
            if trend_entry is not None:
                trend_entry[kind] += tx.amount

            if start <= tx.occurred_at < end:
                month_totals[kind] += tx.amount
                if kind == "expense" and tx.category_id:
                    expense_by_category[tx.category_id] = (
                        expense_by_category.get(tx.category_id, 0.0) + tx.amount
                    )

            if trailing_from <= tx.occurred_at < trailing_to:
                trailing_totals[kind] += tx.amount

            if kind == "expense" and tx.description:
                label = sanitize_for_prompt(tx.description)
                if label:
                    key = normalize_for_match(label)
                    entry = merchants.setdefault(key, {"label": label, "total": 0.0, "count": 0})
                    entry["total"] = float(entry["total"]) + tx.amount
                    entry["count"] = int(entry["count"]) + 1

        month_expense = _round(month_totals["expense"])
        category_breakdown = sorted(
            (
                CategoryBreakdownItem(
                    category_id=category_id,
                    name=category_names.get(category_id, "Uncategorized"),
                    total=_round(total),
                    share_percent=_round(total / month_expense * 100) if month_expense > 0 else 0.0,
                )
                for category_id, total in expense_by_category.items()
            ),
            key=lambda item: item.total,
            reverse=True,
        )[:SNAPSHOT_TOP_CATEGORIES]

        budget_adherence = self._budget_adherence(ledger, month, expense_by_category, category_names)
        recurring = RecurringOutflows(
            rules=self._recurring_rules(ledger, category_names),
            merchants=sorted(
                (
                    RecurringMerchantItem(
                        label=str(entry["label"]),
                        total=_round(float(entry["total"])),
                        count=int(entry["count"]),
                    )
                    for entry in merchants.values()
                    if int(entry["count"]) >= 2
                ),
                key=lambda item: item.total,
                reverse=True,
            )[:SNAPSHOT_TOP_RECURRING],
        )

        cashflow_trend = []
        for trend_month in trend_months:
            income = _round(trend_totals[trend_month]["income"])
            expense = _round(trend_totals[trend_month]["expense"])
            cashflow_trend.append(
                CashflowPoint(
                    month=trend_month,
                    income_total=income,
                    expense_total=expense,
                    net_total=_round(income - expense),
                )
            )

        month_income = _round(month_totals["income"])
        month_net = _round(month_income - month_expense)
        savings_rate = _round(month_net / month_income) if month_income > 0 else 0.0
        trailing_income = _round(trailing_totals["income"])
        trailing_expense = _round(trailing_totals["expense"])

        flags = SnapshotFlags(
            overspending_category_names=[
                item.category_name
                for item in budget_adherence.items
                if item.status == BudgetStatus.OVER_LIMIT
            ][:SNAPSHOT_TOP_BUDGETS],
            negative_cashflow=month_net < 0,
            low_savings_rate=month_income > 0 and savings_rate < LOW_SAVINGS_RATE_THRESHOLD,
            irregular_income=self._is_irregular([point.income_total for point in cashflow_trend]),
        )

        balance = sum(
            tx.amount if tx.type == "income" else -tx.amount for tx in ledger.transactions
        )
        profile = ledger.profile
        first_account = next(iter(ledger.accounts.values()), None)

        return FinancialSnapshot(
            month=month,
            currency=profile.base_currency or (first_account.currency if first_account else None),
            preferences=Preferences(
                savings_target_rate=profile.savings_target_rate,
                risk_profile=profile.risk_profile,
            ),
            account_count=len(ledger.accounts),
            total_balance=_round(balance),
            spend=SpendOverview(
                last30_days_income=trailing_income,
                last30_days_expense=trailing_expense,
                last30_days_net=_round(trailing_income - trailing_expense),
                current_month_income=month_income,
                current_month_expense=month_expense,
                current_month_net=month_net,
                savings_rate=savings_rate,
            ),
            category_breakdown=category_breakdown,
            cashflow_trend=cashflow_trend,
            budget_adherence=budget_adherence,
            recurring_outflows=recurring,
            flags=flags,
        )

    @staticmethod
    def _is_irregular(incomes: list[float]) -> bool:
        positive = [value for value in incomes if value > 0]
        if len(positive) >= 2:
            return max(positive) / max(1.0, min(positive)) >= IRREGULAR_INCOME_RATIO
        return len(positive) == 1 and any(value == 0 for value in incomes)

    @staticmethod
    def _budget_adherence(
        ledger: UserLedger,
        month: str,
        expense_by_category: dict[str, float],
        category_names: dict[str, str],
    ) -> BudgetAdherence:
        items = []
        for budget in ledger.budgets:
            if budget.month != month:
                continue
            spent = _round(expense_by_category.get(budget.category_id, 0.0))
            limit = _round(budget.limit_amount)
            percent_used = _round(spent / limit * 100) if limit > 0 else 0.0

            status = BudgetStatus.ON_TRACK
            if percent_used >= BUDGET_OVER_LIMIT_PERCENT:
                status = BudgetStatus.OVER_LIMIT
            elif percent_used >= BUDGET_NEAR_LIMIT_PERCENT:
                status = BudgetStatus.NEAR_LIMIT

            items.append(
                BudgetItem(
                    budget_id=budget.id,
                    category_id=budget.category_id,
                    category_name=category_names.get(budget.category_id, "Uncategorized"),
                    limit_amount=limit,
                    spent_amount=spent,
                    remaining_amount=_round(limit - spent),
                    percent_used=percent_used,
                    status=status,
                )
            )

        items.sort(key=lambda item: item.percent_used, reverse=True)
        items = items[:SNAPSHOT_TOP_BUDGETS]
        return BudgetAdherence(
            tracked_count=len(items),
            on_track_count=sum(1 for item in items if item.status == BudgetStatus.ON_TRACK),
            near_limit_count=sum(1 for item in items if item.status == BudgetStatus.NEAR_LIMIT),
            over_limit_count=sum(1 for item in items if item.status == BudgetStatus.OVER_LIMIT),
            items=items,
        )

    @staticmethod
    def _recurring_rules(ledger: UserLedger, category_names: dict[str, str]) -> list[RecurringRuleItem]:
        account_names = {
            account_id: sanitize_for_prompt(account.name) for account_id, account in ledger.accounts.items()
        }
        items = []
        for rule in ledger.recurring_rules:
            if rule.is_paused:
                continue
            if rule.kind == "transfer":
                parts = [
                    account_names.get(rule.from_account_id or ""),
                    account_names.get(rule.to_account_id or ""),
                ]
                label = " -> ".join(part for part in parts if part) or "Transfer"
            else:
                label = (
                    sanitize_for_prompt(rule.description)
                    or category_names.get(rule.category_id or "")
                    or "Recurring expense"
                )
            items.append(
                RecurringRuleItem(
                    rule_id=rule.id,
                    label=label,
                    cadence=rule.cadence,
                    amount=_round(rule.amount),
                    next_run_at=rule.next_run_at,
                )
            )

        items.sort(key=lambda item: item.amount, reverse=True)
        return items[:SNAPSHOT_TOP_RECURRING]
