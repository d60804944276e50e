"""Audio output devices used by the live queue and the replay player.

``AudioOutput`` is the small surface both players drive.  The speakers are
driven by :class:`playback.device.DeviceOutput`.  ``TimedOutput`` is the
headless implementation: it validates the file, then keeps a clock-accurate
position on the running event loop and fires ``on_ended`` when the
segment's duration (scaled by the playback rate) has elapsed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class PlaybackError(RuntimeError):
    """The audio source could not be opened or played."""


class AudioOutput(Protocol):
    """One audio source at a time, with transport controls."""

    def play(
        self,
        path: Path,
        duration_ms: int,
        on_ended: Callable[[], None],
        start_ms: int = 0,
    ) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...

    def seek(self, position_ms: int) -> None: ...

    def set_rate(self, rate: float) -> None: ...

    def close(self) -> None: ...

    @property
    def position_ms(self) -> int: ...

    @property
    def is_playing(self) -> bool: ...

    @property
    def has_source(self) -> bool: ...


class TimedOutput:
    """Headless output that tracks playback time on the event loop."""

    def __init__(self) -> None:
        self._source: Path | None = None
        self._duration_ms = 0
        self._offset_ms = 0.0
        self._rate = 1.0
        self._playing = False
        self._started_at = 0.0
        self._on_ended: Callable[[], None] | None = None
        self._handle: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def play(
        self,
        path: Path,
        duration_ms: int,
        on_ended: Callable[[], None],
        start_ms: int = 0,
    ) -> None:
        path = Path(path)
        if not path.is_file():
            raise PlaybackError(f"Audio file not found: {path}")
        self.stop()
        self._source = path
        self._duration_ms = max(0, duration_ms)
        self._offset_ms = float(min(max(0, start_ms), self._duration_ms))
        self._on_ended = on_ended
        self._start_clock()

    def pause(self) -> None:
        if not self._playing:
            return
        self._offset_ms = self._current_position()
        self._cancel_timer()
        self._playing = False

    def resume(self) -> None:
        if self._source is not None and not self._playing:
            self._start_clock()

    def stop(self) -> None:
        self._cancel_timer()
        self._source = None
        self._playing = False
        self._offset_ms = 0.0
        self._on_ended = None

    def seek(self, position_ms: int) -> None:
        if self._source is None:
            return
        was_playing = self._playing
        self.pause()
        self._offset_ms = float(min(max(0, position_ms), self._duration_ms))
        if was_playing:
            self._start_clock()

    def set_rate(self, rate: float) -> None:
        if rate <= 0:
            raise ValueError("Playback rate must be positive")
        was_playing = self._playing
        self.pause()
        self._rate = rate
        if was_playing:
            self._start_clock()

    def close(self) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def position_ms(self) -> int:
        return int(self._current_position())

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def has_source(self) -> bool:
        return self._source is not None

    @property
    def rate(self) -> float:
        return self._rate

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _current_position(self) -> float:
        if not self._playing:
            return self._offset_ms
        elapsed = (asyncio.get_running_loop().time() - self._started_at) * 1000 * self._rate
        return min(float(self._duration_ms), self._offset_ms + elapsed)

    def _start_clock(self) -> None:
        loop = asyncio.get_running_loop()
        self._started_at = loop.time()
        self._playing = True
        remaining_s = (self._duration_ms - self._offset_ms) / self._rate / 1000
        self._handle = loop.call_later(max(0.0, remaining_s), self._finish)

    def _finish(self) -> None:
        self._handle = None
        callback = self._on_ended
        self._source = None
        self._playing = False
        self._offset_ms = float(self._duration_ms)
        self._on_ended = None
        if callback is not None:
            callback()

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


OUTPUT_KINDS = ("device", "headless")


def create_output(kind: str = "device") -> AudioOutput:
    """Build the output named by the ``playback.output`` config key."""
    if kind == "headless":
        return TimedOutput()
    if kind == "device":
        # Imported here: playback.device depends on this module.
        from playback.device import DeviceOutput

        return DeviceOutput()
    raise ValueError(f"Unknown audio output {kind!r}. Choose from: {', '.join(OUTPUT_KINDS)}")
