"""
Rewarded regeneration flow.

A free regeneration starts immediately.  Otherwise the reward gate runs;
generation starts optimistically when the reward content starts so the
result is ready sooner, and is only returned when the reward is earned.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from advisorq.advisor.types import AdvisorInsight, Language
from advisorq.client.free_usage import LocalFreeUsageStore, consume_daily_free_usage
from advisorq.client.inflight import InsightInflightRegistry, WithAuth
from advisorq.observability.logging import get_logger

logger = get_logger(__name__)

# show_rewarded_ad(on_ad_started) -> rewarded
RewardGate = Callable[[Callable[[], None]], Awaitable[bool]]


class AdvisorRegenerateFlow:
    """
    Args:
        registry: single-flight registry (owns the API client and correlator)
        reward_gate: shows rewarded content, calling ``on_ad_started`` once it plays
        free_usage_store: local day markers
    """

    def __init__(
        self,
        registry: InsightInflightRegistry,
        reward_gate: RewardGate,
        free_usage_store: LocalFreeUsageStore | None = None,
    ) -> None:
        self.registry = registry
        self.reward_gate = reward_gate
        self.free_usage_store = free_usage_store or LocalFreeUsageStore()

    @property
    def correlator(self):
        return self.registry.api_client.correlator

    def _start_generation(
        self,
        month: str,
        language: Language,
        with_auth: WithAuth,
        request_id: str | None = None,
    ) -> asyncio.Task[AdvisorInsight]:
        request_id = request_id or self.correlator.create_request_id()
        self.correlator.reserve(request_id, month=month, language=language.value, regenerate=True)
        self.correlator.record(
            "regenerate_request_fired",
            {"requestId": request_id, "month": month, "language": language.value, "regenerate": True},
        )
        return self.registry.start(month, language, with_auth)

    async def regenerate(
        self,
        month: str,
        language: Language | str,
        user_id: str | None,
        with_auth: WithAuth,
    ) -> AdvisorInsight | None:
        """
        Run one regeneration.

        Returns:
            The new insight, or None when the reward gate was not passed
            (including when the request for this key is already in flight).
        """
        language = Language(language)
        if self.registry.is_inflight(month, language):
            return None

        allow_free = await consume_daily_free_usage(
            user_id, self.registry.api_client, with_auth, self.free_usage_store
        )
        if allow_free:
            return await self._start_generation(month, language, with_auth)

        generation: asyncio.Task[AdvisorInsight] | None = None
        request_id = self.correlator.create_request_id()

        def start_in_background() -> None:
            nonlocal generation
            if generation is None:
                generation = self._start_generation(month, language, with_auth, request_id)

        def on_ad_started() -> None:
            self.correlator.record("rewarded_open", {"month": month, "language": language.value})
            start_in_background()

        try:
            rewarded = await self.reward_gate(on_ad_started)
        except Exception as e:  # noqa: BLE001
            logger.warning("Reward gate failed: %s", type(e).__name__)
            rewarded = False

        if not rewarded:
            if generation is not None:
                # Result is discarded; retrieve it so a failure is not reported as unhandled
                generation.add_done_callback(lambda task: task.cancelled() or task.exception())
            return None

        self.correlator.record("rewarded_earned", {"month": month, "language": language.value})
        start_in_background()
        assert generation is not None
        return await generation
