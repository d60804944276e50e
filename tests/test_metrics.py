"""Tests for evaluation metrics."""

from __future__ import annotations

from audio.pipeline import build_manifest
from data.models import MODERATOR_ROUND, AudioSegment, DebateTurnRecord
from evaluation.metrics import (
    AgentStats,
    agreement_ratio,
    compute_debate_stats,
    vocabulary_diversity,
)


def _turn(agent: str, content: str, round_number: int = 1, exchange_number: int = 1) -> DebateTurnRecord:
    return DebateTurnRecord(
        decision_id="d",
        round_number=round_number,
        exchange_number=exchange_number,
        agent=agent,
        content=content,
    )


class TestVocabularyDiversity:
    def test_empty(self):
        assert vocabulary_diversity([]) == 0.0

    def test_repetition_lowers_score(self):
        varied = [_turn("a", "growth salary family commute rent")]
        repetitive = [_turn("a", "growth growth growth growth growth")]
        assert vocabulary_diversity(varied) > vocabulary_diversity(repetitive)

    def test_capped_at_one(self):
        assert vocabulary_diversity([_turn("a", "every word here is unique")]) == 1.0


class TestAgreementRatio:
    def test_no_signal_is_neutral(self):
        assert agreement_ratio([_turn("a", "Berlin is expensive.")]) == 0.5

    def test_disagree_not_counted_as_agree(self):
        assert agreement_ratio([_turn("a", "I disagree with that.")]) == 0.0

    def test_mixed(self):
        turns = [_turn("a", "I agree with the Rationalist."), _turn("b", "That framing is flawed.")]
        assert agreement_ratio(turns) == 0.5

    def test_moderator_excluded(self):
        turns = [_turn("moderator", "Everyone should agree.", MODERATOR_ROUND)]
        assert agreement_ratio(turns) == 0.5


class TestComputeDebateStats:
    def test_participation(self):
        turns = [
            _turn("rationalist", "one two three"),
            _turn("advocate", "four five"),
            _turn("rationalist", "six", 2),
        ]
        stats = compute_debate_stats(turns)
        assert stats.total_turns == 3
        assert stats.total_words == 6
        assert stats.rounds == [(1, 1), (2, 1)]
        assert stats.agents["rationalist"].turns == 2
        assert stats.agents["rationalist"].avg_words == 2.0
        assert stats.audio_coverage == 0.0

    def test_speaking_time_from_manifest(self):
        turns = [_turn("rationalist", "a"), _turn("advocate", "b")]
        manifest = build_manifest(
            "d",
            [AudioSegment(index=0, agent="rationalist", round_number=1, text="a", audio_file="f", duration_ms=1200)],
        )
        stats = compute_debate_stats(turns, manifest)
        assert stats.agents["rationalist"].speaking_ms == 1200
        assert stats.agents["advocate"].speaking_ms == 0
        assert stats.audio_duration_ms == 1200
        assert stats.audio_coverage == 0.5

    def test_to_dict_sections(self):
        stats = compute_debate_stats([_turn("a", "I agree completely")])
        data = stats.to_dict()
        assert set(data) == {"process", "agents", "audio", "text"}
        assert data["process"]["rounds"] == ["1.1"]
        assert data["agents"]["a"]["words"] == 3
        assert data["text"]["agreement_ratio"] == 1.0

    def test_agent_stats_without_turns(self):
        assert AgentStats("ghost").avg_words == 0.0
