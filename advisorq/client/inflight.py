"""
Single-flight registry for insight regeneration.

At most one regenerate request per (month, language) is in flight; callers
arriving while it runs get the same task.  The entry is removed and
listeners are notified when the task settles, before its result reaches any
awaiter.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from advisorq.advisor.types import AdvisorInsight, Language
from advisorq.client.api_client import AdvisorApiClient
from advisorq.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
WithAuth = Callable[[Callable[[str], Awaitable[T]]], Awaitable[T]]
Listener = Callable[[], None]


def inflight_key(month: str, language: Language | str) -> str:
    return f"{month}|{Language(language).value}"


class InsightInflightRegistry:
    def __init__(self, api_client: AdvisorApiClient) -> None:
        self.api_client = api_client
        self._inflight: dict[str, asyncio.Task[AdvisorInsight]] = {}
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:  # noqa: BLE001
                logger.warning("Inflight listener failed: %s", type(e).__name__)

    def is_inflight(self, month: str, language: Language | str) -> bool:
        return inflight_key(month, language) in self._inflight

    def start(
        self,
        month: str,
        language: Language | str,
        with_auth: WithAuth,
    ) -> asyncio.Task[AdvisorInsight]:
        """
        Start (or join) a regenerate request for (month, language).

        Must be called from a running event loop.  The returned task is shared
        by every caller until it settles.
        """
        key = inflight_key(month, language)
        existing = self._inflight.get(key)
        if existing is not None:
            return existing

        async def run() -> AdvisorInsight:
            try:
                return await with_auth(
                    lambda token: self.api_client.get_advisor_insights(
                        month, language, regenerate=True, token=token
                    )
                )
            finally:
                self._inflight.pop(key, None)
                self._notify()

        task = asyncio.ensure_future(run())
        self._inflight[key] = task
        self._notify()
        return task
