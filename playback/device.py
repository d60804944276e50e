"""Speaker output – decodes segments with pydub and plays them through PyAudio.

Decoding happens on the caller's thread so an unreadable file raises
:class:`PlaybackError` straight away.  The PCM is then written to a PyAudio
stream from a worker thread in short chunks; pause, seek and rate changes
stop the worker and start a new one at the held position.  ``on_ended`` is
delivered on the event loop that called :meth:`DeviceOutput.play`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from pathlib import Path

import pyaudio
from pydub import AudioSegment as Clip
from pydub.effects import speedup
from pydub.exceptions import CouldntDecodeError

from playback.output import PlaybackError

logger = logging.getLogger(__name__)

CHUNK_MS = 50


class DeviceOutput:
    """AudioOutput backed by the default PyAudio output device.

    Parameters
    ----------
    chunk_ms : int
        Length of each write to the device; also the longest a pause or
        stop waits for the worker to notice.
    """

    def __init__(self, chunk_ms: int = CHUNK_MS) -> None:
        self.chunk_ms = chunk_ms
        self._pa: pyaudio.PyAudio | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._clip: Clip | None = None
        self._duration_ms = 0
        self._position_ms = 0.0
        self._rate = 1.0
        self._playing = False
        self._on_ended: Callable[[], None] | None = None
        self._worker: threading.Thread | None = None
        self._halt = threading.Event()
        self._generation = 0

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
        try:
            clip = Clip.from_file(str(path))
        except (CouldntDecodeError, OSError) as exc:
            raise PlaybackError(f"Cannot decode {path.name}: {exc}") from exc
        if self._pa is None:
            try:
                self._pa = pyaudio.PyAudio()
            except OSError as exc:
                raise PlaybackError(f"No audio device: {exc}") from exc

        self.stop()
        self._loop = asyncio.get_running_loop()
        self._clip = clip
        # The decoded length wins over the manifest's bitrate estimate.
        self._duration_ms = len(clip) or duration_ms
        self._position_ms = float(min(max(0, start_ms), self._duration_ms))
        self._on_ended = on_ended
        self._start_worker()

    def pause(self) -> None:
        if self._playing:
            self._halt_worker()

    def resume(self) -> None:
        if self._clip is not None and not self._playing:
            self._start_worker()

    def stop(self) -> None:
        self._halt_worker()
        self._generation += 1
        self._clip = None
        self._position_ms = 0.0
        self._on_ended = None

    def seek(self, position_ms: int) -> None:
        if self._clip is None:
            return
        was_playing = self._playing
        self._halt_worker()
        self._position_ms = float(min(max(0, position_ms), self._duration_ms))
        if was_playing:
            self._start_worker()

    def set_rate(self, rate: float) -> None:
        if rate <= 0:
            raise ValueError("Playback rate must be positive")
        was_playing = self._playing
        self._halt_worker()
        self._rate = rate
        if was_playing:
            self._start_worker()

    def close(self) -> None:
        self.stop()
        if self._pa is not None:
            self._pa.terminate()
            self._pa = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def position_ms(self) -> int:
        return int(self._position_ms)

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def has_source(self) -> bool:
        return self._clip is not None

    @property
    def rate(self) -> float:
        return self._rate

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _start_worker(self) -> None:
        self._generation += 1
        self._halt = threading.Event()
        self._playing = True
        self._worker = threading.Thread(
            target=self._pump,
            args=(self._generation, self._halt, self._clip, self._position_ms, self._rate),
            name="audio-output",
            daemon=True,
        )
        self._worker.start()

    def _halt_worker(self) -> None:
        self._playing = False
        if self._worker is None:
            return
        self._halt.set()
        self._worker.join(timeout=max(1.0, self.chunk_ms * 4 / 1000))
        self._worker = None

    def _pump(
        self,
        generation: int,
        halt: threading.Event,
        clip: Clip,
        start_ms: float,
        rate: float,
    ) -> None:
        remaining = clip[int(start_ms):]
        # speedup() only shortens; slower rates play at normal speed.
        step = rate if rate > 1.0 else 1.0
        if step > 1.0 and len(remaining) > 0:
            remaining = speedup(remaining, playback_speed=step)

        pa = self._pa
        try:
            stream = pa.open(
                format=pa.get_format_from_width(clip.sample_width),
                channels=clip.channels,
                rate=clip.frame_rate,
                output=True,
            )
        except OSError as exc:
            logger.warning("Cannot open audio stream: %s", exc)
            self._notify(self._failed, generation)
            return

        try:
            played = 0
            total = len(remaining)
            while played < total:
                if halt.is_set():
                    return
                stream.write(remaining[played:played + self.chunk_ms].raw_data)
                played += self.chunk_ms
                if not halt.is_set():
                    self._position_ms = min(float(self._duration_ms), start_ms + played * step)
        except OSError as exc:
            logger.warning("Audio stream failed: %s", exc)
            self._notify(self._failed, generation)
            return
        finally:
            stream.stop_stream()
            stream.close()

        if not halt.is_set():
            self._notify(self._finish, generation)

    def _notify(self, callback: Callable[[int], None], generation: int) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(callback, generation)

    def _finish(self, generation: int) -> None:
        if generation != self._generation:
            return
        callback = self._on_ended
        self._worker = None
        self._playing = False
        self._clip = None
        self._position_ms = float(self._duration_ms)
        self._on_ended = None
        if callback is not None:
            callback()

    def _failed(self, generation: int) -> None:
        if generation != self._generation:
            return
        # The queue stops advancing rather than skipping ahead.
        self._worker = None
        self._playing = False
        self._clip = None
        self._on_ended = None
