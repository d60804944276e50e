"""Decision view session – one viewer's live queue plus reveal synchronizer.

Opening a session for a decision wires a :class:`LiveAudioQueue` and a
:class:`RevealSynchronizer` to that decision's events.  Closing it (or
switching to another decision) disposes both, dropping pending buffers,
timers and subscriptions.
"""

from __future__ import annotations

import logging
from typing import Any

from data.database import CommitteeDatabase
from orchestration.events import EventBus
from playback.live_queue import LiveAudioQueue
from playback.output import AudioOutput, create_output
from playback.reveal import RevealMode, RevealSynchronizer

logger = logging.getLogger(__name__)


class DecisionViewSession:
    """Async context manager bound to a single decision.

    Usage::

        async with DecisionViewSession(bus, db, decision_id, running) as view:
            ...
            view.sync.transcript
    """

    def __init__(
        self,
        bus: EventBus,
        db: CommitteeDatabase,
        decision_id: str,
        is_debate_running: bool = False,
        *,
        output: AudioOutput | None = None,
        mode: RevealMode = RevealMode.AUDIO_SYNCED,
        advance_delay_ms: int = 500,
        tick_ms: int = 35,
        min_reveal_ms: int = 900,
        flush_grace_ms: int = 1500,
    ) -> None:
        self.bus = bus
        self.db = db
        self.decision_id = decision_id
        self.is_debate_running = is_debate_running
        self.output = output or create_output()
        self.queue = LiveAudioQueue(self.output, advance_delay_ms=advance_delay_ms)
        self.sync = RevealSynchronizer(
            mode,
            is_audio_playing=lambda: self.queue.is_playing,
            tick_ms=tick_ms,
            min_reveal_ms=min_reveal_ms,
            flush_grace_ms=flush_grace_ms,
        )
        self.queue.add_segment_listener(self.sync.on_segment_start)

    @classmethod
    def from_config(
        cls,
        bus: EventBus,
        db: CommitteeDatabase,
        decision_id: str,
        is_debate_running: bool,
        playback_cfg: dict[str, Any],
        output: AudioOutput | None = None,
    ) -> DecisionViewSession:
        """Build a session from the ``playback`` config section."""
        return cls(
            bus,
            db,
            decision_id,
            is_debate_running,
            output=output or create_output(playback_cfg.get("output", "device")),
            mode=RevealMode(playback_cfg.get("reveal_mode", RevealMode.AUDIO_SYNCED.value)),
            advance_delay_ms=playback_cfg.get("live_advance_delay_ms", 500),
            tick_ms=playback_cfg.get("tick_ms", 35),
            min_reveal_ms=playback_cfg.get("min_reveal_ms", 900),
            flush_grace_ms=playback_cfg.get("flush_grace_ms", 1500),
        )

    async def open(self) -> DecisionViewSession:
        if not self.is_debate_running:
            turns = await self.db.load_turns(self.decision_id)
            self.sync.load_existing(turns)
        else:
            self.sync.on_run_started()
        # The synchronizer subscribes first so a run start resets it before
        # the queue can fire a segment listener.
        self.sync.observe(self.bus, self.decision_id)
        self.queue.observe(self.bus, self.decision_id, self.is_debate_running)
        logger.debug("Opened view for decision %s (running=%s)", self.decision_id, self.is_debate_running)
        return self

    def close(self) -> None:
        self.queue.dispose()
        self.sync.dispose()
        self.output.close()

    async def __aenter__(self) -> DecisionViewSession:
        return await self.open()

    async def __aexit__(self, *exc: object) -> None:
        self.close()
