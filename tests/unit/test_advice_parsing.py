"""Unit tests for advice parsing: JSON extraction, shape repair and validation"""

from __future__ import annotations

import json

import pytest
from conftest import advice_payload

from advisorq.advisor.parsing import (
    AdviceParseError,
    coerce_string_list,
    extract_json_object,
    parse_advice_text,
)


def test_extract_plain_json():
    assert extract_json_object('{"a": 1}') == {"a": 1}


def test_extract_fenced_json():
    text = 'Here you go:\n```json\n{"a": [1, 2]}\n```\nThanks'
    assert extract_json_object(text) == {"a": [1, 2]}


def test_extract_object_embedded_in_prose():
    assert extract_json_object('Sure! {"a": "b"} hope this helps') == {"a": "b"}


def test_extract_rejects_text_without_object():
    with pytest.raises(AdviceParseError):
        extract_json_object("I cannot help with that.")


def test_coerce_string_list_splits_bullets():
    assert coerce_string_list("- one\n* two\n3. three") == ["one", "two", "three"]
    assert coerce_string_list("") == []
    assert coerce_string_list(["kept"]) == ["kept"]


def test_parse_valid_advice():
    draft = parse_advice_text(json.dumps(advice_payload()))

    assert draft.summary.startswith("Spending is under control")
    assert draft.savings.next7_days_actions == ["Move 250 to savings on Friday."]
    assert draft.expense_optimization.cut_candidates[0].label == "Groceries"


def test_parse_repairs_string_lists():
    """Test that string-valued list fields are turned into lists before validation"""
    payload = advice_payload(topFindings="- Rent is high\n- Groceries over budget", tips="Check weekly")
    payload["investment"]["profiles"] = payload["investment"]["profiles"][0]

    draft = parse_advice_text(json.dumps(payload))

    assert draft.top_findings == ["Rent is high", "Groceries over budget"]
    assert draft.tips == ["Check weekly"]
    assert len(draft.investment.profiles) == 1


def test_parse_rejects_missing_required_section():
    payload = advice_payload()
    del payload["savings"]

    with pytest.raises(AdviceParseError) as exc_info:
        parse_advice_text(json.dumps(payload))
    assert "savings" in str(exc_info.value)


def test_parse_rejects_empty_findings():
    with pytest.raises(AdviceParseError):
        parse_advice_text(json.dumps(advice_payload(topFindings=[])))


@pytest.mark.parametrize(
    "overrides",
    [{"topFindings": ["  "]}, {"tips": ["Check weekly", ""]}, {"summary": "   "}],
)
def test_parse_rejects_blank_text(overrides):
    with pytest.raises(AdviceParseError):
        parse_advice_text(json.dumps(advice_payload(**overrides)))


def test_parse_rejects_blank_nested_items():
    payload = advice_payload()
    payload["savings"]["next7DaysActions"] = ["\t"]
    with pytest.raises(AdviceParseError):
        parse_advice_text(json.dumps(payload))


def test_parse_rejects_out_of_range_rate():
    payload = advice_payload()
    payload["savings"]["targetRate"] = 20
    with pytest.raises(AdviceParseError):
        parse_advice_text(json.dumps(payload))
