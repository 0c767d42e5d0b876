"""Unit tests for the ledger snapshot builder"""

from __future__ import annotations

import asyncio

import pytest

from advisorq.advisor.snapshot import UserProfile, month_bounds, normalize_for_match, parse_month, shift_month
from advisorq.advisor.types import BudgetStatus, RiskLevel


@pytest.fixture
def snapshot(snapshot_builder):
    return asyncio.run(snapshot_builder.build("user-1", "2025-03"))


def test_month_helpers():
    assert parse_month("2025-03") == (2025, 3)
    assert shift_month("2025-01", -1) == "2024-12"
    assert shift_month("2025-11", 2) == "2026-01"

    start, end = month_bounds("2024-12")
    assert start.isoformat() == "2024-12-01T00:00:00+00:00"
    assert end.isoformat() == "2025-01-01T00:00:00+00:00"


def test_month_totals_and_savings_rate(snapshot):
    spend = snapshot.spend
    assert spend.current_month_income == 5000.0
    assert spend.current_month_expense == 3000.0
    assert spend.current_month_net == 2000.0
    assert spend.savings_rate == 0.4
    assert spend.last30_days_income == 5000.0
    assert spend.last30_days_expense == 3000.0


def test_category_breakdown_sorted_with_shares(snapshot):
    names = [item.name for item in snapshot.category_breakdown]
    assert names == ["Rent", "Groceries", "Entertainment"]
    assert snapshot.category_breakdown[0].share_percent == 50.0


def test_cashflow_trend_covers_three_months(snapshot):
    months = [point.month for point in snapshot.cashflow_trend]
    assert months == ["2025-01", "2025-02", "2025-03"]
    assert snapshot.cashflow_trend[1].expense_total == 2500.0
    assert snapshot.flags.irregular_income is False


def test_budget_adherence_and_flags(snapshot):
    adherence = snapshot.budget_adherence
    assert adherence.tracked_count == 2
    assert adherence.over_limit_count == 1
    assert adherence.items[0].category_name == "Groceries"
    assert adherence.items[0].status == BudgetStatus.OVER_LIMIT
    assert adherence.items[0].percent_used == 120.0
    assert snapshot.flags.overspending_category_names == ["Groceries"]
    assert snapshot.flags.negative_cashflow is False


def test_recurring_outflows_skip_paused_rules(snapshot):
    rules = snapshot.recurring_outflows.rules
    assert [rule.label for rule in rules] == ["Streamflix"]

    merchants = snapshot.recurring_outflows.merchants
    assert [(m.label, m.count, m.total) for m in merchants] == [("Market Store", 2, 1200.0)]


def test_balance_currency_and_accounts(snapshot):
    assert snapshot.total_balance == 9500.0
    assert snapshot.currency == "TRY"
    assert snapshot.account_count == 2


def test_unknown_user_gets_empty_snapshot(snapshot_builder):
    empty = asyncio.run(snapshot_builder.build("nobody", "2025-03"))

    assert empty.account_count == 0
    assert empty.category_breakdown == []
    assert empty.spend.savings_rate == 0.0
    assert empty.currency is None


def test_normalize_for_match():
    assert normalize_for_match("  Market-Store! ") == normalize_for_match("market store")


def test_profile_overrides_currency_and_preferences(ledger_store, snapshot_builder):
    ledger_store.set_profile("user-1", UserProfile(base_currency="EUR", savings_target_rate=30.0, risk_profile=RiskLevel.LOW))

    snapshot = asyncio.run(snapshot_builder.build("user-1", "2025-03"))

    assert snapshot.currency == "EUR"
    assert snapshot.preferences.savings_target_rate == 30.0
    assert snapshot.preferences.risk_profile == RiskLevel.LOW
