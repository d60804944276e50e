"""Manifest replay player.

Plays a finalized :class:`~data.models.AudioManifest` as one continuous
programme.  The global position is the current segment's ``start_ms`` plus
the time elapsed inside it, so a progress bar can span the whole debate.
Natural segment ends auto-advance after the same gap the manifest was laid
out with.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from audio.pipeline import gap_between
from data.models import AudioManifest, AudioSegment
from playback.output import AudioOutput, PlaybackError, create_output

logger = logging.getLogger(__name__)

SPEEDS: tuple[float, ...] = (1.0, 1.25, 1.5, 2.0)
RESTART_THRESHOLD_MS = 2000


class ReplayPlayer:
    """Transport controls over a persisted manifest.

    Segments are addressed by their *position* in ``manifest.segments``;
    positions stay contiguous even when failed segment indices are missing.

    Parameters
    ----------
    manifest : AudioManifest
        Timeline to play.
    audio_dir : Path
        Directory holding the manifest's audio files.
    output : AudioOutput
        Device to play through.
    """

    def __init__(self, manifest: AudioManifest, audio_dir: str | Path, output: AudioOutput) -> None:
        self.manifest = manifest
        self.audio_dir = Path(audio_dir)
        self.output = output
        self.position = 0
        self.speed = 1.0
        self.finished = False
        self._offset_ms = 0
        self._advance: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def segments(self) -> list[AudioSegment]:
        return self.manifest.segments

    @property
    def current(self) -> AudioSegment | None:
        if 0 <= self.position < len(self.segments):
            return self.segments[self.position]
        return None

    @property
    def is_playing(self) -> bool:
        return self.output.is_playing or self._advance is not None

    @property
    def segment_position_ms(self) -> int:
        """Elapsed time inside the current segment."""
        seg = self.current
        if seg is None:
            return 0
        if self.finished:
            return seg.duration_ms
        if self.output.has_source:
            return self.output.position_ms
        if self._advance is not None:
            return seg.duration_ms
        return self._offset_ms

    @property
    def global_position_ms(self) -> int:
        seg = self.current
        if seg is None:
            return 0
        return seg.start_ms + self.segment_position_ms

    @property
    def total_duration_ms(self) -> int:
        return self.manifest.total_duration_ms

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def play_pause(self) -> None:
        if self.output.is_playing:
            self.output.pause()
            self._offset_ms = self.output.position_ms
        elif self._advance is not None:
            # Paused during the gap: resume at the start of the next segment.
            self._cancel_advance()
            self.position += 1
            self._offset_ms = 0
        elif self.output.has_source:
            self.output.resume()
        else:
            if self.finished:
                self.position = 0
                self._offset_ms = 0
            self._start()

    def seek_to(self, ms: int) -> None:
        """Move within the current segment."""
        seg = self.current
        if seg is None:
            return
        ms = min(max(0, ms), seg.duration_ms)
        self.finished = False
        self._cancel_advance()
        if self.output.has_source:
            self.output.seek(ms)
        self._offset_ms = ms

    def skip_to_segment(self, position: int) -> None:
        if not 0 <= position < len(self.segments):
            raise IndexError(f"No segment at position {position}")
        self._jump(position)

    def set_speed(self, speed: float) -> None:
        if speed not in SPEEDS:
            raise ValueError(f"Speed must be one of {', '.join(str(s) for s in SPEEDS)}")
        self.speed = speed
        self.output.set_rate(speed)

    def next(self) -> None:
        if self.position + 1 < len(self.segments):
            self._jump(self.position + 1)

    def previous(self) -> None:
        """Restart the segment, or go back one if it has barely started."""
        if self.segment_position_ms > RESTART_THRESHOLD_MS or self.position == 0:
            self._jump(self.position)
        else:
            self._jump(self.position - 1)

    def close(self) -> None:
        self._cancel_advance()
        self.output.close()

    def __enter__(self) -> ReplayPlayer:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _jump(self, position: int) -> None:
        self._cancel_advance()
        self.output.stop()
        self.position = position
        self._offset_ms = 0
        self._start()

    def _start(self) -> None:
        seg = self.current
        if seg is None:
            return
        self.finished = False
        try:
            self.output.set_rate(self.speed)
            self.output.play(
                self.audio_dir / seg.audio_file,
                seg.duration_ms,
                self._on_ended,
                start_ms=self._offset_ms,
            )
        except PlaybackError as exc:
            logger.warning("Cannot play segment %d (%s): %s", seg.index, seg.audio_file, exc)

    def _on_ended(self) -> None:
        cur = self.current
        nxt_pos = self.position + 1
        if cur is None or nxt_pos >= len(self.segments):
            self.finished = True
            return
        gap_ms = gap_between(cur, self.segments[nxt_pos])
        loop = asyncio.get_running_loop()
        self._advance = loop.call_later(gap_ms / 1000 / self.speed, self._advance_now)

    def _advance_now(self) -> None:
        self._advance = None
        self.position += 1
        self._offset_ms = 0
        self._start()

    def _cancel_advance(self) -> None:
        if self._advance is not None:
            self._advance.cancel()
            self._advance = None


def load(
    manifest: AudioManifest,
    audio_base_dir: str | Path,
    output: AudioOutput | None = None,
) -> ReplayPlayer:
    """Create a player for *manifest*; nothing plays until :meth:`ReplayPlayer.play_pause`."""
    return ReplayPlayer(manifest, audio_base_dir, output or create_output())
