"""
Advisor diagnostics correlator.

Correlates a UI action with the HTTP call it eventually causes and keeps a
bounded, redacted history of request lifecycle events:

- reserve()/consume(): a short-lived binding from (month, language, regenerate)
  to a request id, created before the call is issued and claimed by the HTTP
  instrumentation layer at send time.
- record(): deep-redacts the payload, appends it to a fixed-size ring buffer,
  notifies subscribers and logs it at DEBUG.

The same correlator type is used on the server, where generator stage
callbacks are recorded against the incoming request id.  Recording is
best-effort and never raises into the caller.
"""

from __future__ import annotations

import secrets
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from advisorq.config import DIAGNOSTICS_MAX_EVENTS, DIAGNOSTICS_RESERVATION_MAX_AGE_SECONDS
from advisorq.observability.logging import get_diagnostics_logger, get_logger
from advisorq.utils.redaction import redact_payload

logger = get_logger(__name__)
diagnostics_logger = get_diagnostics_logger()

Clock = Callable[[], float]
Listener = Callable[[], None]


@dataclass(frozen=True)
class DiagnosticEvent:
    """One redacted lifecycle event."""

    timestamp: str
    seq: int
    event: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "seq": self.seq,
            "event": self.event,
            "payload": self.payload,
        }


@dataclass
class ReservedRequestId:
    request_id: str
    month: str | None
    language: str | None
    regenerate: bool | None
    created_at: float


class DiagnosticsCorrelator:
    """Request-id reservations plus a redacted ring buffer of events."""

    def __init__(
        self,
        max_events: int = DIAGNOSTICS_MAX_EVENTS,
        reservation_max_age: float = DIAGNOSTICS_RESERVATION_MAX_AGE_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.max_events = max_events
        self.reservation_max_age = reservation_max_age
        self._clock = clock
        self._events: deque[DiagnosticEvent] = deque(maxlen=max_events)
        self._reservations: list[ReservedRequestId] = []
        self._listeners: list[Listener] = []
        self._seq = 0

    # ------------------------------------------------------------------
    # Request id reservations
    # ------------------------------------------------------------------

    def create_request_id(self) -> str:
        """Millisecond timestamp plus random hex, e.g. ``1718000000000-3f9a1c2b``."""
        return f"{int(self._clock() * 1000)}-{secrets.token_hex(4)}"

    def _drop_expired(self) -> None:
        now = self._clock()
        self._reservations = [
            item for item in self._reservations if now - item.created_at <= self.reservation_max_age
        ]

    def reserve(
        self,
        request_id: str,
        month: str | None = None,
        language: str | None = None,
        regenerate: bool | None = None,
    ) -> None:
        request_id = request_id.strip()
        if not request_id:
            return

        self._drop_expired()
        self._reservations.append(
            ReservedRequestId(
                request_id=request_id,
                month=month,
                language=language,
                regenerate=regenerate,
                created_at=self._clock(),
            )
        )

    def consume(
        self,
        month: str | None = None,
        language: str | None = None,
        regenerate: bool | None = None,
    ) -> str | None:
        """Claim the oldest live reservation matching all three fields."""
        self._drop_expired()
        for index, item in enumerate(self._reservations):
            if item.month == month and item.language == language and item.regenerate == regenerate:
                del self._reservations[index]
                return item.request_id
        return None

    def pending_reservations(self) -> int:
        self._drop_expired()
        return len(self._reservations)

    # ------------------------------------------------------------------
    # Event ring buffer
    # ------------------------------------------------------------------

    def record(self, event: str, payload: dict[str, Any] | None = None) -> DiagnosticEvent | None:
        try:
            safe_payload = redact_payload(payload or {})
            if not isinstance(safe_payload, dict):
                safe_payload = {}

            self._seq += 1
            entry = DiagnosticEvent(
                timestamp=datetime.fromtimestamp(self._clock(), UTC).isoformat(),
                seq=self._seq,
                event=event,
                payload=safe_payload,
            )
            self._events.append(entry)
            diagnostics_logger.debug("[advisor][diag] %s %s", event, safe_payload)
        except Exception as e:  # noqa: BLE001
            logger.warning("Dropped diagnostic event %s: %s", event, type(e).__name__)
            return None

        self._notify()
        return entry

    def events(self) -> list[DiagnosticEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()
        self._reservations.clear()
        self._notify()

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
                logger.warning("Diagnostics listener failed: %s", type(e).__name__)
