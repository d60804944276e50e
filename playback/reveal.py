"""Transcript reveal synchronizer.

Merges three asynchronous sources into what a viewer sees:

* token events (``debate-agent-token``),
* finalized turns (``debate-agent-response``),
* the live queue's "segment started" signal and play/pause state.

In ``token_stream`` mode tokens are shown as they arrive and a finalized
turn moves straight into the transcript.  In ``audio_synced`` mode a
finalized turn waits, hidden, until its audio starts; its text is then
typed out at a rate matched to the segment's duration, advancing only
while audio is actually playing.  Turns whose audio never starts are
flushed into the transcript shortly after the run ends, so no text is
ever lost.  Every turn lands in the transcript exactly once.
"""

from __future__ import annotations

import asyncio
import bisect
import itertools
import logging
import math
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from data.models import DebateTurnRecord
from orchestration import events
from orchestration.events import EventBus, Subscription
from playback.live_queue import ReadySegment

logger = logging.getLogger(__name__)

TurnKey = tuple[int, int, str]  # (round_number, exchange_number, agent)

DEFAULT_TICK_MS = 35
MIN_REVEAL_MS = 900
FLUSH_GRACE_MS = 1500


class RevealMode(str, Enum):
    TOKEN_STREAM = "token_stream"
    AUDIO_SYNCED = "audio_synced"


def chars_per_tick(total_chars: int, duration_ms: int, tick_ms: int = DEFAULT_TICK_MS,
                   min_duration_ms: int = MIN_REVEAL_MS) -> int:
    """Characters revealed per tick so the text finishes with the audio."""
    duration = max(min_duration_ms, duration_ms)
    return max(1, math.ceil(total_chars / (duration / tick_ms)))


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RevealedTurn:
    round_number: int
    exchange_number: int
    agent: str
    content: str
    seq: int = field(default=0, compare=False)

    @property
    def key(self) -> TurnKey:
        return (self.round_number, self.exchange_number, self.agent)


class Transcript:
    """Permanent transcript kept as an ordered map keyed by (round, exchange).

    Slots are kept sorted as they are inserted; turns within a slot are
    ordered by the sequence number they were given on arrival, so a turn
    committed late still lands ahead of those that arrived after it.
    """

    def __init__(self) -> None:
        self._slots: list[tuple[int, int]] = []
        self._by_slot: dict[tuple[int, int], list[RevealedTurn]] = {}
        self._keys: set[TurnKey] = set()

    def add(self, turn: RevealedTurn) -> bool:
        """Append *turn*; returns ``False`` if its key is already present."""
        if turn.key in self._keys:
            return False
        slot = (turn.round_number, turn.exchange_number)
        if slot not in self._by_slot:
            bisect.insort(self._slots, slot)
            self._by_slot[slot] = []
        bisect.insort(self._by_slot[slot], turn, key=lambda t: t.seq)
        self._keys.add(turn.key)
        return True

    def clear(self) -> None:
        self._slots.clear()
        self._by_slot.clear()
        self._keys.clear()

    def grouped(self) -> list[tuple[tuple[int, int], list[RevealedTurn]]]:
        return [(slot, list(self._by_slot[slot])) for slot in self._slots]

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[RevealedTurn]:
        for slot in self._slots:
            yield from self._by_slot[slot]

    def __len__(self) -> int:
        return len(self._keys)


# ---------------------------------------------------------------------------
# Synchronizer
# ---------------------------------------------------------------------------

@dataclass
class PendingTurn:
    key: TurnKey
    content: str
    seq: int


@dataclass
class _ActiveReveal:
    key: TurnKey
    text: str
    per_tick: int
    seq: int
    shown: int = 0
    final_text: str | None = None


class RevealSynchronizer:
    """Per-decision view model of the debate transcript.

    Parameters
    ----------
    mode : RevealMode
        Preferred mode.  Audio-synced reveal only applies while the run has
        live audio; otherwise tokens are streamed.
    is_audio_playing : Callable[[], bool]
        Reports whether live audio is currently audible.
    tick_ms, min_reveal_ms, flush_grace_ms : int
        Reveal timer period, shortest reveal, and lost-content grace delay.
    auto_tick : bool
        Drive :meth:`tick` from an asyncio task.  Disable to tick manually.
    """

    def __init__(
        self,
        mode: RevealMode = RevealMode.AUDIO_SYNCED,
        *,
        is_audio_playing: Callable[[], bool] = lambda: False,
        tick_ms: int = DEFAULT_TICK_MS,
        min_reveal_ms: int = MIN_REVEAL_MS,
        flush_grace_ms: int = FLUSH_GRACE_MS,
        auto_tick: bool = True,
        live_audio: bool = True,
    ) -> None:
        self.mode = RevealMode(mode)
        self.is_audio_playing = is_audio_playing
        self.tick_ms = tick_ms
        self.min_reveal_ms = min_reveal_ms
        self.flush_grace_ms = flush_grace_ms
        self.auto_tick = auto_tick

        self.transcript = Transcript()
        self.displayed: dict[TurnKey, str] = {}
        self.pending: dict[TurnKey, PendingTurn] = {}
        self.live_audio = live_audio
        self.run_active = False
        self.saw_live_audio = False

        self._active: _ActiveReveal | None = None
        self._seq = itertools.count()
        self._ticker: asyncio.Task[None] | None = None
        self._flush: asyncio.TimerHandle | None = None
        self._subscription: Subscription | None = None

    @property
    def effective_mode(self) -> RevealMode:
        if self.mode == RevealMode.AUDIO_SYNCED and self.live_audio:
            return RevealMode.AUDIO_SYNCED
        return RevealMode.TOKEN_STREAM

    @property
    def active_key(self) -> TurnKey | None:
        return self._active.key if self._active else None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def observe(self, bus: EventBus, decision_id: str) -> Subscription:
        if self._subscription is not None:
            self._subscription.close()
        self._subscription = bus.subscribe(decision_id, self.handle_event)
        return self._subscription

    def handle_event(self, name: str, payload: dict[str, Any]) -> None:
        if name == events.DEBATE_STARTED:
            self.on_run_started(live_audio=payload.get("live_audio", True))
            return
        if name in events.RUN_TERMINAL_EVENTS:
            self.on_run_ended()
            return
        if name == events.SEGMENT_AUDIO_READY:
            self.saw_live_audio = True
            return
        if name not in (events.DEBATE_AGENT_TOKEN, events.DEBATE_AGENT_RESPONSE):
            return
        key = (payload["round_number"], payload.get("exchange_number", 1), payload["agent"])
        if name == events.DEBATE_AGENT_TOKEN:
            self.on_token(key, payload["token"])
        else:
            self.on_response(key, payload["content"])

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def on_run_started(self, live_audio: bool = True) -> None:
        self.reset()
        self.live_audio = live_audio
        self.run_active = True

    def on_run_ended(self) -> None:
        self.run_active = False
        # A half-streamed turn was never persisted; drop it.
        if self.effective_mode == RevealMode.TOKEN_STREAM:
            self.displayed.clear()
        if not self.pending and self._active is None:
            return
        delay_ms = self.flush_grace_ms if self.saw_live_audio else 0
        self._cancel_flush()
        if delay_ms <= 0:
            self.flush_pending()
        else:
            loop = asyncio.get_running_loop()
            self._flush = loop.call_later(delay_ms / 1000, self.flush_pending)

    def flush_pending(self) -> None:
        """Commit every turn whose audio never started, in transcript order."""
        self._flush = None
        if self._active is not None and not self.is_audio_playing():
            self._commit_active()
        remaining = sorted(
            self.pending.values(), key=lambda p: (p.key[0], p.key[1], p.seq)
        )
        self.pending.clear()
        for item in remaining:
            self.displayed.pop(item.key, None)
            self._commit(item.key, item.content, item.seq)
        if remaining:
            logger.info("Flushed %d turn(s) without audio into the transcript", len(remaining))

    # ------------------------------------------------------------------
    # Text sources
    # ------------------------------------------------------------------

    def on_token(self, key: TurnKey, token: str) -> None:
        if self.effective_mode != RevealMode.TOKEN_STREAM:
            return
        self.displayed[key] = self.displayed.get(key, "") + token

    def on_response(self, key: TurnKey, content: str) -> None:
        if self.effective_mode == RevealMode.TOKEN_STREAM:
            self.displayed.pop(key, None)
            self._commit(key, content, next(self._seq))
            return
        if key in self.transcript:
            return
        if self._active is not None and self._active.key == key:
            self._active.final_text = content
            return
        self.pending[key] = PendingTurn(key, content, next(self._seq))

    def on_segment_start(self, segment: ReadySegment) -> None:
        """Begin revealing the turn whose audio just started playing."""
        self.saw_live_audio = True
        if self.effective_mode != RevealMode.AUDIO_SYNCED:
            return
        if self._active is not None:
            self._commit_active()
        key = segment.key
        if key in self.transcript:
            return

        pending = self.pending.pop(key, None)
        text = pending.content if pending is not None else segment.text
        if not text:
            return
        self._active = _ActiveReveal(
            key=key,
            text=text,
            per_tick=chars_per_tick(len(text), segment.duration_ms, self.tick_ms, self.min_reveal_ms),
            seq=pending.seq if pending is not None else next(self._seq),
            final_text=pending.content if pending is not None else None,
        )
        self.displayed[key] = ""
        if self.auto_tick:
            self._ensure_ticker()

    # ------------------------------------------------------------------
    # Reveal timer
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """Advance the active reveal by one step, if audio is playing."""
        active = self._active
        if active is None or not self.is_audio_playing():
            return
        active.shown = min(len(active.text), active.shown + active.per_tick)
        self.displayed[active.key] = active.text[:active.shown]
        if active.shown >= len(active.text):
            self._commit_active()

    def _ensure_ticker(self) -> None:
        if self._ticker is None or self._ticker.done():
            self._ticker = asyncio.get_running_loop().create_task(self._tick_loop())

    async def _tick_loop(self) -> None:
        while self._active is not None:
            await asyncio.sleep(self.tick_ms / 1000)
            self.tick()

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _commit_active(self) -> None:
        active = self._active
        self._active = None
        if active is None:
            return
        self.displayed.pop(active.key, None)
        self._commit(active.key, active.final_text or active.text, active.seq)

    def _commit(self, key: TurnKey, content: str, seq: int) -> None:
        self.transcript.add(RevealedTurn(key[0], key[1], key[2], content, seq))

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def load_existing(self, turns: Iterable[DebateTurnRecord]) -> None:
        """Show an already-persisted run without any reveal."""
        self.reset()
        for turn in turns:
            self._commit(
                (turn.round_number, turn.exchange_number, turn.agent), turn.content, next(self._seq)
            )

    def reset(self) -> None:
        self._cancel_flush()
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        self._active = None
        self.transcript.clear()
        self.displayed.clear()
        self.pending.clear()
        self.run_active = False
        self.saw_live_audio = False

    def dispose(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self.reset()

    def _cancel_flush(self) -> None:
        if self._flush is not None:
            self._flush.cancel()
            self._flush = None
