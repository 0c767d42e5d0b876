"""
Pytest configuration for AdvisorQ tests

Provides a controllable clock, a seeded in-memory ledger, provider settings
and canned provider responses shared across unit and integration tests.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from advisorq.advisor.fallback import build_fallback_advice
from advisorq.advisor.generator import compose_advice
from advisorq.advisor.snapshot import (
    Account,
    Budget,
    Category,
    LedgerSnapshotBuilder,
    LedgerStore,
    RecurringRule,
    Transaction,
)
from advisorq.advisor.types import AdvisorInsight, FinancialSnapshot, InsightMode, Language, ModeReason
from advisorq.config import ProviderSettings
from advisorq.observability.telemetry import reset_telemetry

# 2025-03-15T12:00:00Z
FIXED_NOW = 1742040000.0
TEST_MODEL = "@cf/meta/llama-3.1-8b-instruct"


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, now: float = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_telemetry()
    yield
    reset_telemetry()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


def _at(day: int, month: int = 3) -> datetime:
    return datetime(2025, month, day, 10, 0, tzinfo=UTC)


@pytest.fixture
def ledger_store() -> LedgerStore:
    """user-1 with salary, groceries over budget, rent and a monthly subscription"""
    store = LedgerStore()
    user = "user-1"
    store.add_account(user, Account(id="acc-1", name="Main Account", currency="TRY"))
    store.add_account(user, Account(id="acc-2", name="Savings", currency="TRY"))
    store.add_category(user, Category(id="cat-groceries", name="Groceries"))
    store.add_category(user, Category(id="cat-rent", name="Rent"))
    store.add_category(user, Category(id="cat-fun", name="Entertainment"))

    store.add_transaction(user, Transaction("t1", "acc-1", "income", 5000.0, _at(1), description="Salary"))
    store.add_transaction(user, Transaction("t2", "acc-1", "expense", 1500.0, _at(2), "cat-rent", "Rent March"))
    store.add_transaction(user, Transaction("t3", "acc-1", "expense", 700.0, _at(5), "cat-groceries", "Market Store"))
    store.add_transaction(user, Transaction("t4", "acc-1", "expense", 500.0, _at(12), "cat-groceries", "Market Store"))
    store.add_transaction(user, Transaction("t5", "acc-1", "expense", 300.0, _at(8), "cat-fun", "Streamflix"))
    # Previous months
    store.add_transaction(user, Transaction("t6", "acc-1", "income", 5000.0, _at(1, 2), description="Salary"))
    store.add_transaction(user, Transaction("t7", "acc-1", "expense", 2500.0, _at(3, 2), "cat-rent", "Rent February"))
    store.add_transaction(user, Transaction("t8", "acc-1", "income", 5000.0, _at(1, 1), description="Salary"))

    store.add_budget(user, Budget(id="b1", category_id="cat-groceries", month="2025-03", limit_amount=1000.0))
    store.add_budget(user, Budget(id="b2", category_id="cat-fun", month="2025-03", limit_amount=1000.0))
    store.add_recurring_rule(
        user,
        RecurringRule(id="r1", kind="normal", cadence="monthly", amount=300.0, description="Streamflix", category_id="cat-fun"),
    )
    store.add_recurring_rule(
        user,
        RecurringRule(id="r2", kind="normal", cadence="weekly", amount=50.0, description="Gym", is_paused=True),
    )
    return store


@pytest.fixture
def snapshot_builder(ledger_store, fake_clock) -> LedgerSnapshotBuilder:
    return LedgerSnapshotBuilder(ledger_store, clock=fake_clock)


@pytest.fixture
def provider_settings() -> ProviderSettings:
    return ProviderSettings(api_token="cf-test-token", account_id="acct-123", model=TEST_MODEL, max_attempts=2)


def advice_payload(**overrides: Any) -> dict[str, Any]:
    """A provider advice object that passes validation."""
    payload: dict[str, Any] = {
        "summary": "Spending is under control but groceries ran over budget.",
        "topFindings": ["Groceries exceeded the monthly budget."],
        "suggestedActions": ["Plan grocery trips once a week."],
        "warnings": [],
        "savings": {
            "targetRate": 0.2,
            "monthlyTargetAmount": 1000,
            "next7DaysActions": ["Move 250 to savings on Friday."],
            "autoTransferSuggestion": "Transfer 20% of salary on payday.",
        },
        "investment": {
            "profiles": [
                {"level": "medium", "title": "Balanced", "rationale": "Mix of stability and growth.", "options": ["Index funds"]},
            ],
            "guidance": ["Finish the emergency fund first."],
        },
        "expenseOptimization": {
            "cutCandidates": [
                {"label": "Groceries", "suggestedReductionPercent": 15, "alternativeAction": "Buy store brands."},
            ],
            "quickWins": ["Cancel unused subscriptions."],
        },
        "tips": ["Review spending every Sunday."],
    }
    payload.update(overrides)
    return payload


def provider_success(text: str | None = None, status: int = 200) -> httpx.Response:
    body = {"success": True, "result": {"response": text or json.dumps(advice_payload())}, "errors": []}
    return httpx.Response(status, json=body, headers={"cf-ray": "ray-ok"})


def provider_failure(status: int, code: int | None = None, headers: dict[str, str] | None = None) -> httpx.Response:
    errors = [{"code": code, "message": "provider failure"}] if code is not None else []
    return httpx.Response(status, json={"success": False, "result": None, "errors": errors}, headers=headers)


class ProviderStub:
    """Callable MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if "/ai/models/search" in request.url.path:
            return httpx.Response(200, json={"success": True, "result": [{"name": TEST_MODEL}], "errors": []})
        if len(self.responses) > 1:
            queued = self.responses.pop(0)
        else:
            queued = self.responses[0] if self.responses else provider_success()
        # Fresh response per call; httpx binds a response to the request that received it
        return httpx.Response(queued.status_code, headers=queued.headers, content=queued.content)

    @property
    def run_calls(self) -> int:
        return sum(1 for request in self.requests if "/ai/run/" in request.url.path)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def make_insight(month: str = "2025-03", language: Language = Language.EN) -> AdvisorInsight:
    """A fallback insight for an empty month, for cache and client tests."""
    snapshot = FinancialSnapshot(month=month)
    return AdvisorInsight(
        month=month,
        language=language,
        mode=InsightMode.FALLBACK,
        mode_reason=ModeReason.PROVIDER_NOT_CONFIGURED,
        generated_at=datetime(2025, 3, 15, tzinfo=UTC),
        overview=snapshot,
        advice=compose_advice(build_fallback_advice(snapshot, language), snapshot, language),
    )
