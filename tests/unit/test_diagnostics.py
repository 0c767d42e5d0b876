"""Unit tests for the diagnostics correlator and payload redaction"""

from __future__ import annotations

from advisorq.observability.diagnostics import DiagnosticsCorrelator
from advisorq.utils.redaction import redact, redact_payload, sanitize_for_prompt, sanitize_free_text


def test_redaction_is_deep_and_case_insensitive():
    payload = {
        "Authorization": "Bearer secret",
        "user": {"Email": "a@b.com", "profile": [{"accessToken": "t"}]},
        "API_KEY": "k",
        "month": "2025-03",
    }

    redacted = redact_payload(payload)

    assert redacted["Authorization"] == "[redacted]"
    assert redacted["user"]["Email"] == "[redacted]"
    assert redacted["user"]["profile"][0]["accessToken"] == "[redacted]"
    assert redacted["API_KEY"] == "[redacted]"
    assert redacted["month"] == "2025-03"
    assert payload["Authorization"] == "Bearer secret"


def test_record_redacts_before_storing(fake_clock):
    correlator = DiagnosticsCorrelator(clock=fake_clock)

    event = correlator.record("request_start", {"headers": {"authorization": "Bearer x"}, "requestId": "r1"})

    assert event is not None
    assert event.payload == {"headers": {"authorization": "[redacted]"}, "requestId": "r1"}
    assert correlator.events()[0].to_dict()["event"] == "request_start"


def test_ring_buffer_keeps_latest_events(fake_clock):
    correlator = DiagnosticsCorrelator(max_events=3, clock=fake_clock)
    for index in range(5):
        correlator.record("tick", {"index": index})

    events = correlator.events()
    assert [event.payload["index"] for event in events] == [2, 3, 4]
    assert [event.seq for event in events] == [3, 4, 5]


def test_reservation_consumed_once_by_matching_key(fake_clock):
    correlator = DiagnosticsCorrelator(clock=fake_clock)
    correlator.reserve(" req-1 ", month="2025-03", language="en", regenerate=True)
    correlator.reserve("req-2", month="2025-03", language="en", regenerate=True)

    assert correlator.consume("2025-03", "en", False) is None
    assert correlator.consume("2025-03", "en", True) == "req-1"
    assert correlator.consume("2025-03", "en", True) == "req-2"
    assert correlator.consume("2025-03", "en", True) is None


def test_blank_reservation_is_ignored(fake_clock):
    correlator = DiagnosticsCorrelator(clock=fake_clock)
    correlator.reserve("   ", month="2025-03", language="en", regenerate=True)
    assert correlator.pending_reservations() == 0


def test_expired_reservations_are_dropped(fake_clock):
    correlator = DiagnosticsCorrelator(reservation_max_age=300, clock=fake_clock)
    correlator.reserve("req-old", month="2025-03", language="tr", regenerate=True)

    fake_clock.advance(301)

    assert correlator.consume("2025-03", "tr", True) is None


def test_listeners_notified_and_failures_contained(fake_clock):
    correlator = DiagnosticsCorrelator(clock=fake_clock)
    calls = []

    def broken():
        raise RuntimeError("listener bug")

    unsubscribe = correlator.subscribe(lambda: calls.append(1))
    correlator.subscribe(broken)

    correlator.record("one")
    unsubscribe()
    correlator.record("two")

    assert calls == [1]
    assert len(correlator.events()) == 2


def test_unserializable_payload_does_not_raise(fake_clock):
    correlator = DiagnosticsCorrelator(clock=fake_clock)
    assert correlator.record("odd", {"value": object()}) is not None


def test_request_id_format(fake_clock):
    request_id = DiagnosticsCorrelator(clock=fake_clock).create_request_id()
    millis, token = request_id.split("-")
    assert millis == str(int(fake_clock() * 1000))
    assert len(token) == 8


def test_free_text_sanitizers():
    assert sanitize_free_text("Pay john@x.io ref 1234567") == "Pay [redacted-email] ref [redacted-number]"
    assert "{" not in sanitize_for_prompt("Groceries {evil}")
    assert redact("user-1") == redact("user-1")
    assert redact("user-1") != "user-1"
