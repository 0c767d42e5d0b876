"""Unit tests for the per-process insight cache"""

from __future__ import annotations

from conftest import make_insight

from advisorq.advisor.cache import InsightCache
from advisorq.advisor.types import Language
from advisorq.observability.telemetry import get_counter


def test_cache_keys_by_user_month_and_language():
    cache = InsightCache()
    insight = make_insight()
    cache.put("user-1", "2025-03", Language.EN, insight)

    assert cache.get("user-1", "2025-03", Language.EN) is insight
    assert cache.get("user-1", "2025-03", "en") is insight
    assert cache.get("user-1", "2025-03", Language.TR) is None
    assert cache.get("user-2", "2025-03", Language.EN) is None
    assert get_counter("advisor.cache.hit") == 2
    assert get_counter("advisor.cache.miss") == 2


def test_put_overwrites_existing_entry():
    cache = InsightCache()
    cache.put("user-1", "2025-03", Language.EN, make_insight())
    newer = make_insight()
    cache.put("user-1", "2025-03", Language.EN, newer)

    assert cache.get("user-1", "2025-03", Language.EN) is newer
    assert len(cache) == 1


def test_cache_evicts_least_recently_used():
    cache = InsightCache(max_entries=2)
    cache.put("user-1", "2025-01", Language.EN, make_insight("2025-01"))
    cache.put("user-1", "2025-02", Language.EN, make_insight("2025-02"))
    cache.get("user-1", "2025-01", Language.EN)
    cache.put("user-1", "2025-03", Language.EN, make_insight("2025-03"))

    assert cache.get("user-1", "2025-02", Language.EN) is None
    assert cache.get("user-1", "2025-01", Language.EN) is not None

    cache.clear()
    assert len(cache) == 0


def test_put_uses_the_given_key():
    """Test that the entry is stored under the caller's month and language"""
    cache = InsightCache()
    insight = make_insight("2025-03", Language.EN)
    cache.put("user-1", "2025-04", "tr", insight)

    assert cache.get("user-1", "2025-04", Language.TR) is insight
    assert cache.get("user-1", "2025-03", Language.EN) is None
