"""Per-process insight cache keyed by (user, month, language)."""

from __future__ import annotations

from cachetools import LRUCache

from advisorq.advisor.types import AdvisorInsight, Language
from advisorq.config import ADVISOR_CACHE_MAX_ENTRIES
from advisorq.observability.telemetry import counter

CacheKey = tuple[str, str, str]


def cache_key(user_id: str, month: str, language: Language | str) -> CacheKey:
    return (user_id, month, Language(language).value)


class InsightCache:
    """
    Bounded LRU of generated insights.

    Entries never expire; a regenerate overwrites the entry for its key.
    AdvisorInsight is frozen so handing out the cached object is safe.
    """

    def __init__(self, max_entries: int = ADVISOR_CACHE_MAX_ENTRIES) -> None:
        self._entries: LRUCache[CacheKey, AdvisorInsight] = LRUCache(maxsize=max_entries)

    def get(self, user_id: str, month: str, language: Language | str) -> AdvisorInsight | None:
        insight = self._entries.get(cache_key(user_id, month, language))
        counter("advisor.cache.hit" if insight is not None else "advisor.cache.miss")
        return insight

    def put(self, user_id: str, month: str, language: Language | str, insight: AdvisorInsight) -> None:
        self._entries[cache_key(user_id, month, language)] = insight

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
