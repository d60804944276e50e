"""Live audio queue – plays debate segments as they become ready.

Segment-ready events may arrive in any order; playback is strictly
sequential.  Segment *i + 1* is never started before segment *i* has
ended, and an unready next segment simply leaves the queue idle until its
ready event arrives.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from orchestration import events
from orchestration.events import EventBus, Subscription
from playback.output import AudioOutput, PlaybackError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadySegment:
    """Payload of a ``debate-segment-audio-ready`` event."""

    index: int
    agent: str
    round_number: int
    exchange_number: int
    audio_file: str
    duration_ms: int
    audio_dir: str
    text: str = ""

    @property
    def path(self) -> Path:
        return Path(self.audio_dir) / self.audio_file

    @property
    def key(self) -> tuple[int, int, str]:
        return (self.round_number, self.exchange_number, self.agent)

    @classmethod
    def from_event(cls, payload: dict[str, Any]) -> ReadySegment:
        return cls(
            index=payload["segment_index"],
            agent=payload["agent"],
            round_number=payload["round_number"],
            exchange_number=payload.get("exchange_number", 1),
            audio_file=payload["audio_file"],
            duration_ms=payload["duration_ms"],
            audio_dir=payload["audio_dir"],
            text=payload.get("text", ""),
        )


@dataclass(frozen=True)
class LiveAudioState:
    """Snapshot exposed to viewers."""

    is_playing: bool
    user_paused: bool
    next_index: int
    current_index: int | None
    current_agent: str | None
    segments_ready: int


SegmentListener = Callable[[ReadySegment], None]


class LiveAudioQueue:
    """Sequential player fed by segment-ready events.

    Parameters
    ----------
    output : AudioOutput
        Device the queue plays through; owned by the queue's viewer.
    advance_delay_ms : int
        Pause between one segment ending and the next one starting.
    """

    def __init__(self, output: AudioOutput, advance_delay_ms: int = 500) -> None:
        self.output = output
        self.advance_delay_ms = advance_delay_ms
        self.next_index = 0
        self.ready: dict[int, ReadySegment] = {}
        self.is_playing = False
        self.user_paused = False
        self.current: ReadySegment | None = None
        self._advance: asyncio.TimerHandle | None = None
        self._listeners: list[SegmentListener] = []
        self._subscription: Subscription | None = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def observe(self, bus: EventBus, decision_id: str, is_debate_running: bool) -> Subscription:
        """Follow *decision_id*'s events; a running debate starts a fresh queue."""
        if self._subscription is not None:
            self._subscription.close()
        if is_debate_running:
            self.reset()
        self._subscription = bus.subscribe(decision_id, self._handle_event)
        return self._subscription

    def add_segment_listener(self, listener: SegmentListener) -> None:
        """Call *listener* whenever a segment starts playing."""
        self._listeners.append(listener)

    def _handle_event(self, name: str, payload: dict[str, Any]) -> None:
        if name == events.DEBATE_STARTED:
            self.reset()
        elif name == events.SEGMENT_AUDIO_READY:
            self.on_segment_ready(ReadySegment.from_event(payload))

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def on_segment_ready(self, segment: ReadySegment) -> None:
        self.ready[segment.index] = segment
        if segment.index == self.next_index:
            self._try_play_next()

    def _try_play_next(self) -> None:
        if self.user_paused or self.is_playing or self._advance is not None:
            return
        segment = self.ready.get(self.next_index)
        if segment is None:
            return
        try:
            self.output.play(segment.path, segment.duration_ms, self._on_ended)
        except PlaybackError as exc:
            logger.warning("Cannot play segment %d: %s", segment.index, exc)
            self.current = None
            self.is_playing = False
            return
        self.current = segment
        self.is_playing = True
        for listener in list(self._listeners):
            listener(segment)

    def _on_ended(self) -> None:
        self.is_playing = False
        self.current = None
        self.next_index += 1
        loop = asyncio.get_running_loop()
        self._advance = loop.call_later(self.advance_delay_ms / 1000, self._advance_now)

    def _advance_now(self) -> None:
        self._advance = None
        self._try_play_next()

    def _cancel_advance(self) -> None:
        if self._advance is not None:
            self._advance.cancel()
            self._advance = None

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def toggle_pause(self) -> None:
        if self.is_playing:
            self.output.pause()
            self.is_playing = False
            self.user_paused = True
            return
        self.user_paused = False
        if self.current is not None and self.output.has_source:
            self.output.resume()
            self.is_playing = True
        else:
            self._cancel_advance()
            self._try_play_next()

    def stop(self) -> None:
        """Tear down the source; nothing auto-plays until :meth:`reset`."""
        self._cancel_advance()
        self.output.stop()
        self.current = None
        self.is_playing = False
        self.user_paused = True

    def skip(self) -> None:
        """Abandon the current segment and move on to the next index."""
        self._cancel_advance()
        self.output.stop()
        self.current = None
        self.is_playing = False
        self.next_index += 1
        self._try_play_next()

    def reset(self) -> None:
        self._cancel_advance()
        self.output.stop()
        self.ready.clear()
        self.next_index = 0
        self.current = None
        self.is_playing = False
        self.user_paused = False

    def dispose(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._listeners.clear()
        self.reset()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_idle(self) -> bool:
        """Nothing playing, no advance pending and the next segment not ready."""
        return (
            not self.is_playing
            and self._advance is None
            and (self.user_paused or self.next_index not in self.ready)
        )

    @property
    def state(self) -> LiveAudioState:
        return LiveAudioState(
            is_playing=self.is_playing,
            user_paused=self.user_paused,
            next_index=self.next_index,
            current_index=self.current.index if self.current else None,
            current_agent=self.current.agent if self.current else None,
            segments_ready=len(self.ready),
        )
