"""Tests for the TTS providers and the audio pipeline."""

from __future__ import annotations

import pytest

from agents.llm_provider import CancellationToken
from audio.pipeline import (
    INTER_ROUND_GAP_MS,
    INTER_SPEAKER_GAP_MS,
    TTSPipeline,
    build_manifest,
    gap_between,
    segment_filename,
)
from audio.tts import TTSError, create_tts_provider, estimate_duration_ms
from data.models import AudioSegment, DebateTurnRecord
from orchestration import events
from tests.conftest import FakeTTS


def _seg(index: int, round_number: int, duration_ms: int, agent: str = "a") -> AudioSegment:
    return AudioSegment(
        index=index,
        agent=agent,
        round_number=round_number,
        text="t",
        audio_file=segment_filename(index, agent, round_number),
        duration_ms=duration_ms,
    )


class TestTimeline:
    def test_gap_between(self):
        assert gap_between(None, _seg(0, 1, 10)) == 0
        assert gap_between(_seg(0, 1, 10), _seg(1, 1, 10)) == INTER_SPEAKER_GAP_MS
        assert gap_between(_seg(0, 1, 10), _seg(1, 2, 10)) == INTER_ROUND_GAP_MS

    def test_cumulative_start_times(self):
        manifest = build_manifest("d", [_seg(0, 1, 4000), _seg(1, 1, 3000), _seg(2, 2, 2000)])
        assert [s.start_ms for s in manifest.segments] == [0, 4500, 8500]
        assert manifest.total_duration_ms == 10500

    def test_sorted_by_index_with_gaps(self):
        manifest = build_manifest("d", [_seg(3, 1, 100), _seg(0, 1, 100)])
        assert [s.index for s in manifest.segments] == [0, 3]
        assert manifest.segments[1].start_ms == 600

    def test_empty(self):
        manifest = build_manifest("d", [])
        assert manifest.segments == []
        assert manifest.total_duration_ms == 0

    def test_segment_filename(self):
        assert segment_filename(0, "rationalist", 1) == "001_rationalist_r1.mp3"
        assert segment_filename(20, "moderator", 99) == "021_moderator_r99.mp3"


class TestTTSProvider:
    @pytest.mark.asyncio
    async def test_duration_estimate(self, fake_tts: FakeTTS):
        audio, duration_ms = await fake_tts.synthesize("x" * 500, "male", "advocate")
        assert len(audio) == 8000
        assert duration_ms == 500
        assert estimate_duration_ms(b"\x00" * 16_000) == 1000

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, fake_tts: FakeTTS):
        with pytest.raises(TTSError):
            await fake_tts.synthesize("   ", "male")

    @pytest.mark.asyncio
    async def test_voice_override_wins(self):
        tts = FakeTTS(voices={"advocate": "custom-voice"})
        await tts.synthesize("hi", "female", "advocate")
        await tts.synthesize("hi", "female", "visionary")
        assert [voice for _, voice, _ in tts.requests] == ["custom-voice", "fake-female"]

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown TTS provider"):
            create_tts_provider("festival")

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
        with pytest.raises(ValueError, match="No API key"):
            create_tts_provider("elevenlabs")

    def test_openai_default_voices(self):
        tts = create_tts_provider("openai", api_key="k")
        assert tts.voice_for("moderator", "male") == "alloy"
        assert tts.voice_for("economist", "female") == "nova"


def _turn(agent: str, content: str, round_number: int = 1, decision_id: str = "d") -> DebateTurnRecord:
    return DebateTurnRecord(decision_id=decision_id, round_number=round_number, agent=agent, content=content)


class TestSingleSegment:
    @pytest.mark.asyncio
    async def test_writes_file_and_speaks_plain_text(self, test_db, bus, registry, tmp_path):
        tts = FakeTTS()
        pipeline = TTSPipeline(tts, test_db, bus, registry, tmp_path)
        seg = await pipeline.generate_audio_for_turn(_turn("advocate", "**Position:** Stay."), 4)

        assert seg.index == 4
        assert seg.audio_file == "005_advocate_r1.mp3"
        assert seg.text == "**Position:** Stay."
        assert (tmp_path / "debates" / "d" / "005_advocate_r1.mp3").exists()
        # Markdown never reaches the speech backend
        assert tts.requests[0][0] == "Stay."
        assert tts.requests[0][1] == "fake-female"


class TestBatchGeneration:
    async def _save_turns(self, db, decision_id: str) -> None:
        await db.save_turn(decision_id, 1, 1, "rationalist", "First point made.")
        await db.save_turn(decision_id, 1, 1, "advocate", "Second point made.")
        await db.save_turn(decision_id, 99, 1, "moderator", "## Recommendation\nMove.")

    @pytest.mark.asyncio
    async def test_full_batch(self, test_db, bus, registry, recorder, ready_decision, tmp_path):
        bus.subscribe(ready_decision.id, recorder)
        await self._save_turns(test_db, ready_decision.id)
        pipeline = TTSPipeline(FakeTTS(), test_db, bus, registry, tmp_path)

        manifest = await pipeline.generate_audio_for_decision(ready_decision.id)

        assert [s.agent for s in manifest.segments] == ["rationalist", "advocate", "moderator"]
        assert [s.start_ms for s in manifest.segments][:2] == [0, manifest.segments[0].duration_ms + 500]
        assert (await test_db.load_manifest(ready_decision.id)) == manifest
        progress = recorder.of(events.AUDIO_GENERATION_PROGRESS)
        assert progress[0]["completed"] == 0
        assert progress[-1] == {
            "decision_id": ready_decision.id,
            "completed": 3,
            "total": 3,
            "current_agent": None,
        }
        assert recorder.names()[-1] == events.AUDIO_GENERATION_COMPLETE

    @pytest.mark.asyncio
    async def test_failed_segment_omitted(self, test_db, bus, registry, recorder, ready_decision, tmp_path):
        bus.subscribe(ready_decision.id, recorder)
        await self._save_turns(test_db, ready_decision.id)
        pipeline = TTSPipeline(FakeTTS(fail_for={"advocate"}), test_db, bus, registry, tmp_path)

        manifest = await pipeline.generate_audio_for_decision(ready_decision.id)

        assert [s.index for s in manifest.segments] == [0, 2]
        # Moderator round follows the round-1 segment with the round gap
        assert manifest.segments[1].start_ms == manifest.segments[0].duration_ms + 1000
        assert recorder.of(events.SEGMENT_AUDIO_ERROR)[0]["agent"] == "advocate"
        error = recorder.of(events.AUDIO_GENERATION_ERROR)[0]
        assert error["failed"] == 1
        assert len(error["manifest"]["segments"]) == 2

    @pytest.mark.asyncio
    async def test_cancelled_batch_saves_partial(self, test_db, bus, registry, ready_decision, tmp_path):
        await self._save_turns(test_db, ready_decision.id)
        token = CancellationToken()
        token.cancel()
        pipeline = TTSPipeline(FakeTTS(), test_db, bus, registry, tmp_path)

        manifest = await pipeline.generate_audio_for_decision(ready_decision.id, cancel=token)
        assert manifest.segments == []
        assert await test_db.load_manifest(ready_decision.id) is None


class TestLiveSession:
    @pytest.mark.asyncio
    async def test_indices_follow_submission_order(self, test_db, bus, registry, recorder, ready_decision, tmp_path):
        bus.subscribe(ready_decision.id, recorder)
        # The first segment finishes last
        tts = FakeTTS(delays={"rationalist": 0.05})
        pipeline = TTSPipeline(tts, test_db, bus, registry, tmp_path, concurrency=2)
        session = pipeline.begin_live(ready_decision.id)

        assert session.submit(_turn("rationalist", "Slow one.", decision_id=ready_decision.id)) == 0
        assert session.submit(_turn("advocate", "Fast one.", decision_id=ready_decision.id)) == 1
        manifest = await session.finish()

        ready = [p["segment_index"] for p in recorder.of(events.SEGMENT_AUDIO_READY)]
        assert ready == [1, 0]
        assert [s.index for s in manifest.segments] == [0, 1]
        assert manifest.segments[1].start_ms == manifest.segments[0].duration_ms + 500

    @pytest.mark.asyncio
    async def test_nothing_submitted(self, test_db, bus, registry, tmp_path):
        pipeline = TTSPipeline(FakeTTS(), test_db, bus, registry, tmp_path)
        assert await pipeline.begin_live("d").finish() is None
