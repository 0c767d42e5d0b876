"""Client-side daily free regeneration check."""

from __future__ import annotations

import time
from collections.abc import Callable

from advisorq.advisor.gatekeeper import day_key_for
from advisorq.client.api_client import AdvisorApiClient, AdvisorClientError
from advisorq.client.inflight import WithAuth
from advisorq.observability.logging import get_logger

logger = get_logger(__name__)


class LocalFreeUsageStore:
    """Per-user marker of the last UTC day a free regeneration was used."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._used: dict[str, str] = {}

    def today(self) -> str:
        return day_key_for(self._clock())

    def has_used(self, user_id: str, day_key: str) -> bool:
        return self._used.get(user_id) == day_key

    def mark_used(self, user_id: str, day_key: str) -> None:
        self._used[user_id] = day_key


async def consume_daily_free_usage(
    user_id: str | None,
    api_client: AdvisorApiClient,
    with_auth: WithAuth,
    store: LocalFreeUsageStore,
) -> bool:
    """
    Decide whether this regeneration is free.

    Anonymous users are always free.  A local marker for today means the free
    use is spent.  Otherwise the backend decides; when the backend cannot be
    reached the use counts as free and today is marked locally.
    """
    if not user_id:
        return True

    local_day = store.today()
    if store.has_used(user_id, local_day):
        return False

    try:
        result = await with_auth(lambda token: api_client.check_free_usage(token))
    except Exception as e:  # noqa: BLE001
        # Token refresh failures count as backend failures too
        reason = e.code if isinstance(e, AdvisorClientError) else type(e).__name__
        logger.warning("Free usage check failed (%s), allowing free regeneration", reason)
        store.mark_used(user_id, local_day)
        return True

    day_key = result.get("dayKey")
    store.mark_used(user_id, day_key if isinstance(day_key, str) and day_key else local_day)
    return result.get("allowFree") is True
