"""In-process event bus between the engine and its viewers.

Events are plain ``(name, payload)`` pairs; every payload carries a
``decision_id`` and subscribers only receive events for the decision they
subscribed to.  Delivery is synchronous and fire-and-forget: a failing
handler is logged and does not affect the publisher or other handlers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# Event names ---------------------------------------------------------------

DEBATE_STARTED = "debate-started"
DEBATE_AGENT_TOKEN = "debate-agent-token"
DEBATE_AGENT_RESPONSE = "debate-agent-response"
DEBATE_ROUND_COMPLETE = "debate-round-complete"
DEBATE_COMPLETE = "debate-complete"
DEBATE_CANCELLED = "debate-cancelled"
DEBATE_ERROR = "debate-error"
AUDIO_GENERATION_PROGRESS = "audio-generation-progress"
AUDIO_GENERATION_COMPLETE = "audio-generation-complete"
AUDIO_GENERATION_ERROR = "audio-generation-error"
SEGMENT_AUDIO_READY = "debate-segment-audio-ready"
SEGMENT_AUDIO_ERROR = "debate-segment-audio-error"
DECISION_SUMMARY_UPDATED = "decision-summary-updated"

# Events after which no more debate text will arrive for the run.
RUN_TERMINAL_EVENTS = frozenset({DEBATE_COMPLETE, DEBATE_CANCELLED, DEBATE_ERROR})

Handler = Callable[[str, dict[str, Any]], None]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`; ``close()`` detaches it."""

    def __init__(self, bus: EventBus, decision_id: str, handler: Handler) -> None:
        self._bus = bus
        self.decision_id = decision_id
        self.handler = handler
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self._bus._remove(self)
            self.closed = True

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventBus:
    """Decision-scoped publish/subscribe channel."""

    def __init__(self) -> None:
        self._subs: dict[str, list[Subscription]] = {}

    def subscribe(self, decision_id: str, handler: Handler) -> Subscription:
        sub = Subscription(self, decision_id, handler)
        self._subs.setdefault(decision_id, []).append(sub)
        return sub

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        decision_id = payload.get("decision_id")
        if decision_id is None:
            raise ValueError(f"Event {name!r} has no decision_id")
        for sub in list(self._subs.get(decision_id, ())):
            try:
                sub.handler(name, payload)
            except Exception:
                logger.exception("Handler for %s on %s failed", name, decision_id)

    def subscriber_count(self, decision_id: str) -> int:
        return len(self._subs.get(decision_id, ()))

    def _remove(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.decision_id, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subs.pop(sub.decision_id, None)
