"""
Request gatekeeping for advisor insights.

Three independent per-user policies, all in process memory:

- InsightRateLimiter: fixed window of 8 requests per 60 seconds
- RegenerateCooldown: 15 seconds between regenerations
- DailyFreeUsage: one free regeneration per UTC day

Each table is a TTLCache timed by the injected clock, so stale entries expire
on access and memory stays bounded without a background task.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from cachetools import TTLCache

from advisorq import errors
from advisorq.config import (
    ADVISOR_COOLDOWN_MAX_USERS,
    ADVISOR_FREE_USAGE_MAX_USERS,
    ADVISOR_FREE_USAGE_RETENTION_SECONDS,
    ADVISOR_RATE_LIMIT_MAX,
    ADVISOR_RATE_LIMIT_MAX_USERS,
    ADVISOR_RATE_LIMIT_WINDOW_SECONDS,
    ADVISOR_REGENERATE_COOLDOWN_SECONDS,
)
from advisorq.observability.telemetry import counter, log_event

Clock = Callable[[], float]


@dataclass
class _Window:
    # Mutated in place; re-assigning the key would push its expiry out
    count: int


class InsightRateLimiter:
    """Fixed-window limiter; rejected requests do not consume the window."""

    def __init__(
        self,
        max_requests: int = ADVISOR_RATE_LIMIT_MAX,
        window_seconds: float = ADVISOR_RATE_LIMIT_WINDOW_SECONDS,
        max_users: int = ADVISOR_RATE_LIMIT_MAX_USERS,
        clock: Clock = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        # Entry lifetime is the window: it expires window_seconds after the first request
        self._windows: TTLCache[str, _Window] = TTLCache(maxsize=max_users, ttl=window_seconds, timer=clock)

    def check(self, user_id: str) -> None:
        """
        Count one request for ``user_id``.

        Raises:
            ApiError: RATE_LIMITED (429) once the window is full
        """
        window = self._windows.get(user_id)
        if window is None:
            self._windows[user_id] = _Window(count=1)
            return

        if window.count >= self.max_requests:
            counter("advisor.rate_limited")
            log_event("advisor.rate_limited", window_count=window.count)
            raise errors.rate_limited()

        window.count += 1

    def __len__(self) -> int:
        return len(self._windows)


class RegenerateCooldown:
    """Minimum spacing between regenerations for the same user."""

    def __init__(
        self,
        cooldown_seconds: float = ADVISOR_REGENERATE_COOLDOWN_SECONDS,
        max_users: int = ADVISOR_COOLDOWN_MAX_USERS,
        clock: Clock = time.time,
    ) -> None:
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        # user_id -> timestamp of the last accepted regeneration
        self._last_regenerate: TTLCache[str, float] = TTLCache(
            maxsize=max_users, ttl=cooldown_seconds, timer=clock
        )

    def check(self, user_id: str) -> None:
        """
        Record a regeneration attempt for ``user_id``.

        Raises:
            ApiError: ADVISOR_REGENERATE_COOLDOWN (429) with retryAfterSec
                when the previous regeneration is too recent
        """
        now = self._clock()
        last = self._last_regenerate.get(user_id)
        if last is not None:
            elapsed = now - last
            if elapsed < self.cooldown_seconds:
                retry_after = max(1, math.ceil(self.cooldown_seconds - elapsed))
                counter("advisor.regenerate_cooldown")
                raise errors.regenerate_cooldown(retry_after)

        self._last_regenerate[user_id] = now

    def __len__(self) -> int:
        return len(self._last_regenerate)


@dataclass(frozen=True)
class FreeUsageResult:
    allow_free: bool
    day_key: str

    def to_dict(self) -> dict[str, object]:
        return {"allowFree": self.allow_free, "dayKey": self.day_key}


def day_key_for(timestamp: float) -> str:
    """UTC calendar day as YYYY-MM-DD."""
    return datetime.fromtimestamp(timestamp, UTC).strftime("%Y-%m-%d")


class DailyFreeUsage:
    """One free regeneration per user per UTC day."""

    def __init__(
        self,
        retention_seconds: float = ADVISOR_FREE_USAGE_RETENTION_SECONDS,
        max_users: int = ADVISOR_FREE_USAGE_MAX_USERS,
        clock: Clock = time.time,
    ) -> None:
        self.retention_seconds = retention_seconds
        self._clock = clock
        # user_id -> day key of the last consume; every consume refreshes the entry
        self._used: TTLCache[str, str] = TTLCache(maxsize=max_users, ttl=retention_seconds, timer=clock)

    def consume(self, user_id: str) -> FreeUsageResult:
        day_key = day_key_for(self._clock())
        previous = self._used.get(user_id)
        self._used[user_id] = day_key

        if previous == day_key:
            counter("advisor.free_usage.denied")
            return FreeUsageResult(allow_free=False, day_key=day_key)

        counter("advisor.free_usage.granted")
        return FreeUsageResult(allow_free=True, day_key=day_key)

    def __len__(self) -> int:
        return len(self._used)


class RequestGatekeeper:
    """Bundle of the per-user advisor policies sharing one clock."""

    def __init__(self, clock: Clock = time.time) -> None:
        self.rate_limiter = InsightRateLimiter(clock=clock)
        self.cooldown = RegenerateCooldown(clock=clock)
        self.free_usage = DailyFreeUsage(clock=clock)

    def enforce_rate_limit(self, user_id: str) -> None:
        self.rate_limiter.check(user_id)

    def enforce_regenerate_cooldown(self, user_id: str) -> None:
        self.cooldown.check(user_id)

    def consume_free_usage(self, user_id: str) -> FreeUsageResult:
        return self.free_usage.consume(user_id)
