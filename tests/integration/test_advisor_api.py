"""
Integration tests for the advisor HTTP surface.

Runs the real FastAPI app with an in-memory ledger, a static token resolver,
a controllable clock and a mocked provider transport.
"""

from __future__ import annotations

import httpx
import pytest
from conftest import ProviderStub, provider_failure, provider_success
from fastapi.testclient import TestClient

from advisorq.api.app import create_app
from advisorq.api.middleware.user_auth import StaticTokenResolver
from advisorq.config import ProviderSettings

AUTH = {"Authorization": "Bearer token-1"}
INSIGHTS = "/advisor/insights"


@pytest.fixture
def make_client(snapshot_builder, provider_settings, fake_clock):
    """Build a TestClient around a fresh app; returns (client, app)."""

    def factory(stub: ProviderStub | None = None, settings: ProviderSettings | None = None, transport=None):
        app = create_app(
            provider_settings=settings or provider_settings,
            snapshot_builder=snapshot_builder,
            user_resolver=StaticTokenResolver({"token-1": "user-1", "token-2": "user-2"}),
            clock=fake_clock,
            transport=transport or (stub or ProviderStub()).transport(),
        )
        return TestClient(app), app

    return factory


def get_insight(client, month="2025-03", language="en", regenerate=False, headers=None):
    params = {"month": month, "language": language}
    if regenerate:
        params["regenerate"] = "true"
    return client.get(INSIGHTS, params=params, headers={**AUTH, **(headers or {})})


def test_plain_requests_are_served_from_cache(make_client, fake_clock):
    """Test that a repeated plain request returns the cached insight without a provider call"""
    stub = ProviderStub(provider_success())
    client, _ = make_client(stub)

    first = get_insight(client)
    fake_clock.advance(5)
    second = get_insight(client)

    assert first.status_code == 200
    body = first.json()
    assert body["mode"] == "ai"
    assert body["month"] == "2025-03"
    assert body["language"] == "en"
    assert body["overview"]["spend"]["currentMonthExpense"] == 3000.0
    assert "cutCandidates" in body["advice"]["expenseOptimization"]
    assert second.json()["generatedAt"] == body["generatedAt"]
    assert stub.run_calls == 1


def test_language_is_part_of_cache_key(make_client):
    stub = ProviderStub(provider_success())
    client, _ = make_client(stub)

    assert get_insight(client, language="en").json()["language"] == "en"
    assert get_insight(client, language="tr").json()["language"] == "tr"
    assert stub.run_calls == 2


def test_language_defaults_to_turkish(make_client):
    client, _ = make_client()
    response = client.get(INSIGHTS, params={"month": "2025-03"}, headers=AUTH)
    assert response.json()["language"] == "tr"


def test_regenerate_bypasses_and_overwrites_cache(make_client, fake_clock):
    """Test that regenerate always generates and the next plain request sees the new insight"""
    stub = ProviderStub(provider_success())
    client, _ = make_client(stub)

    original = get_insight(client).json()
    fake_clock.advance(30)
    regenerated = get_insight(client, regenerate=True).json()
    cached = get_insight(client).json()

    assert stub.run_calls == 2
    assert regenerated["generatedAt"] != original["generatedAt"]
    assert cached["generatedAt"] == regenerated["generatedAt"]


def test_provider_http_error_serves_fallback(make_client):
    client, _ = make_client(ProviderStub(provider_failure(500)))

    response = get_insight(client)

    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "fallback"
    assert body["modeReason"] == "provider_http_error"
    assert body["providerStatus"] == 500
    assert body["advice"]["topFindings"]


def test_unconfigured_provider_serves_fallback(make_client):
    client, _ = make_client(settings=ProviderSettings())

    body = get_insight(client).json()

    assert body["mode"] == "fallback"
    assert body["modeReason"] == "provider_not_configured"
    assert body["provider"] is None


def test_provider_rate_limit_on_regenerate_is_surfaced(make_client):
    """Test that a provider 429 during regenerate becomes a 429 with retry hint"""
    stub = ProviderStub(provider_failure(429, headers={"Retry-After": "5"}))
    client, _ = make_client(stub)

    response = get_insight(client, regenerate=True)

    assert response.status_code == 429
    error = response.json()["error"]
    assert error["code"] == "ADVISOR_PROVIDER_RATE_LIMIT"
    assert error["details"]["retryAfterSec"] == 5
    assert response.headers["Retry-After"] == "5"


def test_failed_regenerate_keeps_cached_insight(make_client, fake_clock):
    """Test that a regenerate rejected by the provider leaves the cached insight in place"""
    stub = ProviderStub(provider_success(), provider_failure(429, headers={"Retry-After": "5"}))
    client, app = make_client(stub)

    original = get_insight(client).json()
    fake_clock.advance(30)
    failed = get_insight(client, regenerate=True)
    cached = get_insight(client)

    assert failed.status_code == 429
    assert failed.json()["error"]["code"] == "ADVISOR_PROVIDER_RATE_LIMIT"
    assert cached.status_code == 200
    assert cached.json()["generatedAt"] == original["generatedAt"]
    assert cached.json()["mode"] == "ai"
    assert len(app.state.advisor_service.cache) == 1


def test_provider_rate_limit_on_plain_request_falls_back(make_client):
    client, _ = make_client(ProviderStub(provider_failure(429, headers={"Retry-After": "5"})))

    body = get_insight(client).json()

    assert body["mode"] == "fallback"
    assert body["modeReason"] == "provider_rate_limited"


def test_provider_invalid_request_is_internal_error(make_client):
    client, app = make_client(ProviderStub(provider_failure(400, code=5006)))

    response = get_insight(client)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "ADVISOR_PROVIDER_INVALID_REQUEST"
    assert len(app.state.advisor_service.cache) == 0


def test_regenerate_cooldown(make_client, fake_clock):
    """Test that a second regenerate within the cooldown is rejected with the remaining seconds"""
    client, _ = make_client()

    assert get_insight(client, regenerate=True).status_code == 200

    blocked = get_insight(client, regenerate=True)
    assert blocked.status_code == 429
    assert blocked.json()["error"]["code"] == "ADVISOR_REGENERATE_COOLDOWN"
    assert blocked.json()["error"]["details"]["retryAfterSec"] == 15
    assert blocked.headers["Retry-After"] == "15"

    fake_clock.advance(10)
    assert get_insight(client, regenerate=True).json()["error"]["details"]["retryAfterSec"] == 5

    fake_clock.advance(5)
    assert get_insight(client, regenerate=True).status_code == 200


def test_cooldown_does_not_block_plain_requests(make_client):
    client, _ = make_client()

    get_insight(client, regenerate=True)

    assert get_insight(client).status_code == 200


def test_rate_limit_window(make_client, fake_clock):
    """Test that the ninth request within a minute is rejected until the window resets"""
    client, _ = make_client()

    for _ in range(8):
        assert get_insight(client).status_code == 200

    limited = get_insight(client)
    assert limited.status_code == 429
    assert limited.json()["error"]["code"] == "RATE_LIMITED"

    # Another user has their own window
    other = client.get(INSIGHTS, params={"month": "2025-03"}, headers={"Authorization": "Bearer token-2"})
    assert other.status_code == 200

    fake_clock.advance(60)
    assert get_insight(client).status_code == 200


def test_rate_limit_applies_before_query_validation(make_client):
    client, _ = make_client()
    for _ in range(8):
        get_insight(client)

    response = get_insight(client, month="2025-13")

    assert response.status_code == 429


def test_requires_authentication(make_client):
    client, _ = make_client()

    response = client.get(INSIGHTS, params={"month": "2025-03"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.parametrize("params", [{"month": "2025-13"}, {"month": "March"}, {}])
def test_invalid_month_is_validation_error(make_client, params):
    client, _ = make_client()

    response = client.get(INSIGHTS, params=params, headers=AUTH)

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "month" in error["details"]["invalidFields"]


def test_invalid_language_is_validation_error(make_client):
    client, _ = make_client()

    response = get_insight(client, language="de")

    assert response.status_code == 422
    assert "language" in response.json()["error"]["details"]["invalidFields"]


def test_free_check_once_per_day(make_client, fake_clock):
    """Test that the first free-check of a UTC day is free and later ones are not"""
    client, _ = make_client()

    first = client.post(f"{INSIGHTS}/free-check", headers=AUTH).json()
    second = client.post(f"{INSIGHTS}/free-check", headers=AUTH).json()
    fake_clock.advance(24 * 60 * 60)
    next_day = client.post(f"{INSIGHTS}/free-check", headers=AUTH).json()

    assert first == {"allowFree": True, "dayKey": "2025-03-15"}
    assert second == {"allowFree": False, "dayKey": "2025-03-15"}
    assert next_day == {"allowFree": True, "dayKey": "2025-03-16"}


def test_free_check_requires_authentication(make_client):
    client, _ = make_client()
    assert client.post(f"{INSIGHTS}/free-check").status_code == 401


def test_provider_health_reports_model(make_client, monkeypatch):
    monkeypatch.setenv("ADVISORQ_ENV", "development")
    client, _ = make_client()

    body = client.get("/advisor/provider-health", headers=AUTH).json()

    assert body["ok"] is True
    assert body["modelConfigured"] is True
    assert body["modelExists"] is True
    assert isinstance(body["latencyMs"], int)


def test_provider_health_without_credentials(make_client, monkeypatch):
    monkeypatch.setenv("ADVISORQ_ENV", "development")
    client, _ = make_client(settings=ProviderSettings())

    body = client.get("/advisor/provider-health", headers=AUTH).json()

    assert body == {"ok": False, "modelConfigured": False, "modelExists": False, "latencyMs": None}


def test_provider_health_listing_failure(make_client, monkeypatch):
    monkeypatch.setenv("ADVISORQ_ENV", "development")
    client, _ = make_client(transport=httpx.MockTransport(lambda request: provider_failure(500)))

    body = client.get("/advisor/provider-health", headers=AUTH).json()

    assert body["ok"] is False
    assert body["modelConfigured"] is True
    assert body["modelExists"] is False


def test_provider_health_hidden_in_production(make_client, monkeypatch):
    monkeypatch.setenv("ADVISORQ_ENV", "production")
    client, _ = make_client()

    response = client.get("/advisor/provider-health", headers=AUTH)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_health(make_client):
    client, _ = make_client()

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["service"] == "AdvisorQ API"
    assert body["provider"] == {"configured": True}
    assert body["providerLatencyMs"]["count"] == 0
    assert body["counters"] == {}


def test_health_reports_advisor_counters(make_client):
    """Test that /health exposes the in-process counters and provider latency"""
    client, _ = make_client(ProviderStub(provider_success()))

    get_insight(client)
    get_insight(client)
    body = client.get("/health").json()

    assert body["counters"]["advisor.cache.miss"] == 1
    assert body["counters"]["advisor.cache.hit"] == 1
    assert body["counters"]["advisor.insight.ai"] == 1
    assert body["providerLatencyMs"]["count"] == 1


def test_server_diagnostics_carry_request_id(make_client):
    """Test that server-side diagnostics are tagged with the caller's request id"""
    client, app = make_client(ProviderStub(provider_success()))

    get_insight(client, regenerate=True, headers={"X-Advisor-Request-Id": "req-abc"})

    events = app.state.correlator.events()
    names = [event.event for event in events]
    assert "server_provider_config" in names
    assert "server_generated" in names
    assert all(event.payload.get("requestId") == "req-abc" for event in events if event.event.startswith("server_"))


def test_server_cache_hit_is_recorded(make_client):
    client, app = make_client()

    get_insight(client)
    get_insight(client, headers={"X-Advisor-Request-Id": "req-2"})

    last = app.state.correlator.events()[-1]
    assert last.event == "server_cache_hit"
    assert last.payload["requestId"] == "req-2"
