"""
End-to-end client/server tests: the API client talks to the real app over ASGI.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
from conftest import ProviderStub

from advisorq.api.app import create_app
from advisorq.api.middleware.user_auth import StaticTokenResolver
from advisorq.client.api_client import AdvisorApiClient, AdvisorClientError
from advisorq.client.free_usage import LocalFreeUsageStore, consume_daily_free_usage
from advisorq.client.inflight import InsightInflightRegistry
from advisorq.client.regenerate import AdvisorRegenerateFlow
from advisorq.observability.diagnostics import DiagnosticsCorrelator


@pytest.fixture
def server_app(snapshot_builder, provider_settings, fake_clock):
    return create_app(
        provider_settings=provider_settings,
        snapshot_builder=snapshot_builder,
        user_resolver=StaticTokenResolver({"token-1": "user-1"}),
        clock=fake_clock,
        transport=ProviderStub().transport(),
    )


@pytest.fixture
def api_client(server_app, fake_clock) -> AdvisorApiClient:
    return AdvisorApiClient(
        base_url="http://advisor.test",
        correlator=DiagnosticsCorrelator(clock=fake_clock),
        transport=httpx.ASGITransport(app=server_app),
    )


async def with_auth(runner):
    return await runner("token-1")


def test_request_id_reaches_server_diagnostics(server_app, api_client):
    """Test that one request id ties client and server diagnostics together"""
    api_client.correlator.reserve("req-e2e", month="2025-03", language="en", regenerate=True)

    insight = asyncio.run(api_client.get_advisor_insights("2025-03", "en", regenerate=True, token="token-1"))

    assert insight.month == "2025-03"
    client_ids = {event.payload.get("requestId") for event in api_client.correlator.events()}
    server_ids = {
        event.payload.get("requestId")
        for event in server_app.state.correlator.events()
        if event.event.startswith("server_")
    }
    assert client_ids == {"req-e2e"}
    assert server_ids == {"req-e2e"}


def test_unauthorized_maps_to_client_error(api_client):
    with pytest.raises(AdvisorClientError) as exc_info:
        asyncio.run(api_client.get_advisor_insights("2025-03", "en", token="bad-token"))

    assert exc_info.value.code == "UNAUTHORIZED"
    assert exc_info.value.status == 401


def test_cooldown_surfaces_retry_hint(api_client):
    asyncio.run(api_client.get_advisor_insights("2025-03", "en", regenerate=True, token="token-1"))

    with pytest.raises(AdvisorClientError) as exc_info:
        asyncio.run(api_client.get_advisor_insights("2025-03", "en", regenerate=True, token="token-1"))

    assert exc_info.value.code == "ADVISOR_REGENERATE_COOLDOWN"
    assert exc_info.value.retry_after_sec == 15


def test_free_usage_against_server(api_client, fake_clock):
    """Test the daily free check with a fresh local store each time (a reinstalled app)"""
    first = asyncio.run(
        consume_daily_free_usage("user-1", api_client, with_auth, LocalFreeUsageStore(clock=fake_clock))
    )
    second = asyncio.run(
        consume_daily_free_usage("user-1", api_client, with_auth, LocalFreeUsageStore(clock=fake_clock))
    )

    assert (first, second) == (True, False)


def test_free_regenerate_end_to_end(api_client, fake_clock):
    async def never_rewarded(on_ad_started):
        return False

    flow = AdvisorRegenerateFlow(
        InsightInflightRegistry(api_client),
        never_rewarded,
        LocalFreeUsageStore(clock=fake_clock),
    )

    first = asyncio.run(flow.regenerate("2025-03", "en", "user-1", with_auth))
    second = asyncio.run(flow.regenerate("2025-03", "en", "user-1", with_auth))

    assert first is not None
    assert first.mode.value == "ai"
    assert second is None
