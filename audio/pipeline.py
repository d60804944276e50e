"""TTS pipeline – turns finalized debate turns into an audio manifest.

Two paths share the same per-turn generator:

* **live** – :meth:`TTSPipeline.begin_live` returns a :class:`LiveAudioSession`;
  the orchestrator submits each turn the moment it is persisted and never
  waits on synthesis.  Segment indices are handed out in submission order,
  so they always match the turn's position in the transcript.
* **batch** – :meth:`TTSPipeline.generate_audio_for_decision` regenerates
  every segment of the latest run after the fact.

Synthesis requests are serialized through a semaphore (one in flight by
default).  A failed segment is logged, reported and left out of the
manifest; it never stops the remaining segments.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from agents.llm_provider import CancellationToken
from agents.prompts import normalize_spoken_output
from agents.registry import AgentRegistry
from audio.tts import TTSProvider
from data.database import CommitteeDatabase
from data.models import AudioManifest, AudioSegment, DebateTurnRecord
from orchestration import events
from orchestration.events import EventBus

logger = logging.getLogger(__name__)

INTER_SPEAKER_GAP_MS = 500
INTER_ROUND_GAP_MS = 1000

MANIFEST_FILENAME = "manifest.json"


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

def gap_between(prev: AudioSegment | None, cur: AudioSegment) -> int:
    """Silence inserted before *cur* when it follows *prev*."""
    if prev is None:
        return 0
    return INTER_SPEAKER_GAP_MS if prev.round_number == cur.round_number else INTER_ROUND_GAP_MS


def build_manifest(decision_id: str, segments: Iterable[AudioSegment]) -> AudioManifest:
    """Order *segments* by index and lay them out on one timeline.

    Each segment starts where the previous one ended plus the gap between
    them.  Indices of failed segments are simply absent.
    """
    ordered = sorted(segments, key=lambda s: s.index)
    laid_out: list[AudioSegment] = []
    cursor = 0
    prev: AudioSegment | None = None
    for seg in ordered:
        start = cursor + gap_between(prev, seg)
        placed = seg.model_copy(update={"start_ms": start})
        laid_out.append(placed)
        cursor = start + seg.duration_ms
        prev = placed
    return AudioManifest(decision_id=decision_id, segments=laid_out, total_duration_ms=cursor)


def segment_filename(index: int, agent: str, round_number: int) -> str:
    return f"{index + 1:03d}_{agent}_r{round_number}.mp3"


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class TTSPipeline:
    """Coordinates speech synthesis for debate turns.

    Parameters
    ----------
    tts : TTSProvider
        Backend used for every segment.
    db : CommitteeDatabase
        Source of turns for batch runs and sink for manifests.
    bus : EventBus
        Receives progress, ready, error and completion events.
    registry : AgentRegistry
        Supplies each agent's voice gender.
    data_dir : Path
        Audio is written to ``<data_dir>/debates/<decision_id>/``.
    concurrency : int
        Maximum synthesis requests in flight.
    """

    def __init__(
        self,
        tts: TTSProvider,
        db: CommitteeDatabase,
        bus: EventBus,
        registry: AgentRegistry,
        data_dir: str | Path,
        concurrency: int = 1,
    ) -> None:
        self.tts = tts
        self.db = db
        self.bus = bus
        self.registry = registry
        self.data_dir = Path(data_dir)
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    def audio_dir(self, decision_id: str) -> Path:
        return self.data_dir / "debates" / decision_id

    # ------------------------------------------------------------------
    # Single segment
    # ------------------------------------------------------------------

    async def generate_audio_for_turn(
        self, turn: DebateTurnRecord, index: int
    ) -> AudioSegment:
        """Synthesize *turn* as segment *index* and write its MP3 file.

        Raises :class:`~audio.tts.TTSError` on failure.  ``start_ms`` is left
        at 0; :func:`build_manifest` places the segment on the timeline.
        """
        meta = self.registry.get(turn.agent)
        voice_gender = meta.voice_gender if meta else "male"
        spoken = normalize_spoken_output(turn.content)

        async with self._semaphore:
            audio, duration_ms = await self.tts.synthesize(spoken, voice_gender, turn.agent)

        out_dir = self.audio_dir(turn.decision_id)
        out_dir.mkdir(parents=True, exist_ok=True)
        filename = segment_filename(index, turn.agent, turn.round_number)
        (out_dir / filename).write_bytes(audio)
        logger.debug("Wrote %s (%d ms)", filename, duration_ms)

        return AudioSegment(
            index=index,
            agent=turn.agent,
            round_number=turn.round_number,
            exchange_number=turn.exchange_number,
            text=turn.content,
            audio_file=filename,
            duration_ms=duration_ms,
        )

    # ------------------------------------------------------------------
    # Live path
    # ------------------------------------------------------------------

    def begin_live(self, decision_id: str) -> LiveAudioSession:
        return LiveAudioSession(self, decision_id)

    # ------------------------------------------------------------------
    # Batch path
    # ------------------------------------------------------------------

    async def generate_audio_for_decision(
        self,
        decision_id: str,
        cancel: CancellationToken | None = None,
    ) -> AudioManifest:
        """Regenerate audio for every turn of the decision's latest run.

        Segments are produced in transcript order.  *cancel* is checked
        before each request; a cancelled batch still saves what it has.
        """
        turns = await self.db.load_turns(decision_id)
        total = len(turns)
        segments: list[AudioSegment] = []
        failed = 0

        for index, turn in enumerate(turns):
            if cancel is not None and cancel.cancelled:
                logger.info("Audio generation for %s cancelled at %d/%d", decision_id, index, total)
                break
            self._publish(
                events.AUDIO_GENERATION_PROGRESS,
                decision_id,
                completed=index,
                total=total,
                current_agent=turn.agent,
            )
            try:
                segments.append(await self.generate_audio_for_turn(turn, index))
            except Exception as exc:  # noqa: BLE001
                failed += 1
                logger.warning("Segment %d (%s) failed: %s", index, turn.agent, exc)
                self._publish(
                    events.SEGMENT_AUDIO_ERROR,
                    decision_id,
                    segment_index=index,
                    agent=turn.agent,
                    error=str(exc),
                )

        self._publish(
            events.AUDIO_GENERATION_PROGRESS,
            decision_id,
            completed=len(segments) + failed,
            total=total,
            current_agent=None,
        )
        return await self.finalize(decision_id, segments, failed)

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    async def finalize(
        self, decision_id: str, segments: list[AudioSegment], failed: int
    ) -> AudioManifest:
        """Persist the manifest for *segments* and announce the outcome.

        The manifest replaces any earlier one, both in the database and as
        ``manifest.json`` next to the audio files.
        """
        manifest = build_manifest(decision_id, segments)
        if segments:
            out_dir = self.audio_dir(decision_id)
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / MANIFEST_FILENAME).write_text(
                manifest.model_dump_json(indent=2), encoding="utf-8"
            )
            await self.db.save_manifest(manifest)
            logger.info(
                "Saved audio manifest for %s: %d segments, %d ms",
                decision_id,
                len(manifest.segments),
                manifest.total_duration_ms,
            )

        if failed:
            self._publish(
                events.AUDIO_GENERATION_ERROR,
                decision_id,
                error=f"{failed} audio segment(s) failed to generate",
                failed=failed,
                manifest=manifest.model_dump(),
            )
        else:
            self._publish(
                events.AUDIO_GENERATION_COMPLETE,
                decision_id,
                manifest=manifest.model_dump(),
            )
        return manifest

    def _publish(self, name: str, decision_id: str, **payload: Any) -> None:
        self.bus.publish(name, {"decision_id": decision_id, **payload})


class LiveAudioSession:
    """Per-run live synthesis: fire-and-forget submits, one manifest at the end."""

    def __init__(self, pipeline: TTSPipeline, decision_id: str) -> None:
        self.pipeline = pipeline
        self.decision_id = decision_id
        self._next_index = 0
        self._tasks: list[asyncio.Task[None]] = []
        self._segments: list[AudioSegment] = []
        self._failed = 0

    @property
    def submitted(self) -> int:
        return self._next_index

    def submit(self, turn: DebateTurnRecord) -> int:
        """Schedule synthesis for *turn* and return its segment index."""
        index = self._next_index
        self._next_index += 1
        self._tasks.append(asyncio.create_task(self._generate(turn, index)))
        return index

    async def _generate(self, turn: DebateTurnRecord, index: int) -> None:
        try:
            seg = await self.pipeline.generate_audio_for_turn(turn, index)
        except Exception as exc:  # noqa: BLE001
            self._failed += 1
            logger.warning("Live segment %d (%s) failed: %s", index, turn.agent, exc)
            self.pipeline._publish(
                events.SEGMENT_AUDIO_ERROR,
                self.decision_id,
                segment_index=index,
                agent=turn.agent,
                round_number=turn.round_number,
                exchange_number=turn.exchange_number,
                error=str(exc),
            )
            return

        self._segments.append(seg)
        self.pipeline._publish(
            events.SEGMENT_AUDIO_READY,
            self.decision_id,
            segment_index=seg.index,
            agent=seg.agent,
            round_number=seg.round_number,
            exchange_number=seg.exchange_number,
            text=seg.text,
            audio_file=seg.audio_file,
            duration_ms=seg.duration_ms,
            audio_dir=str(self.pipeline.audio_dir(self.decision_id)),
        )
        self.pipeline._publish(
            events.AUDIO_GENERATION_PROGRESS,
            self.decision_id,
            completed=len(self._segments) + self._failed,
            total=self._next_index,
            current_agent=seg.agent,
        )

    async def finish(self) -> AudioManifest | None:
        """Wait for every submitted segment, then persist the manifest.

        Returns ``None`` when nothing was submitted.
        """
        if self._tasks:
            await asyncio.gather(*self._tasks)
        if not self._next_index:
            return None
        return await self.pipeline.finalize(self.decision_id, self._segments, self._failed)
