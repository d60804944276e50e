"""Debate statistics.

Per-agent participation (turns, words, speaking time) plus two simple
text heuristics: vocabulary diversity and agreement language.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from data.models import AudioManifest, DebateTurnRecord


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass
class AgentStats:
    """Participation figures for one agent."""

    agent: str
    turns: int = 0
    words: int = 0
    characters: int = 0
    speaking_ms: int = 0

    @property
    def avg_words(self) -> float:
        return self.words / self.turns if self.turns else 0.0


@dataclass
class DebateStats:
    """Aggregate statistics for one debate run."""

    total_turns: int = 0
    total_words: int = 0
    rounds: list[tuple[int, int]] = field(default_factory=list)
    agents: dict[str, AgentStats] = field(default_factory=dict)
    audio_duration_ms: int = 0
    audio_coverage: float = 0.0
    vocabulary_diversity: float = 0.0
    agreement_ratio: float = 0.5

    def to_dict(self) -> dict[str, Any]:
        return {
            "process": {
                "total_turns": self.total_turns,
                "total_words": self.total_words,
                "rounds": [f"{r}.{e}" for r, e in self.rounds],
            },
            "agents": {
                key: {
                    "turns": s.turns,
                    "words": s.words,
                    "avg_words": round(s.avg_words, 1),
                    "speaking_ms": s.speaking_ms,
                }
                for key, s in self.agents.items()
            },
            "audio": {
                "duration_ms": self.audio_duration_ms,
                "coverage": round(self.audio_coverage, 3),
            },
            "text": {
                "vocabulary_diversity": round(self.vocabulary_diversity, 3),
                "agreement_ratio": round(self.agreement_ratio, 3),
            },
        }


# ---------------------------------------------------------------------------
# Text heuristics
# ---------------------------------------------------------------------------

def vocabulary_diversity(turns: Sequence[DebateTurnRecord]) -> float:
    """Type-token ratio across all turns, scaled so 0.5 maps to 1.0."""
    words: list[str] = []
    for turn in turns:
        words.extend(turn.content.lower().split())
    if not words:
        return 0.0
    return min(1.0, len(set(words)) / len(words) * 2)


_AGREEMENT = ("agree", "valid point", "fair", "concede", "acknowledge", "you're right")
_DISAGREEMENT = ("disagree", "wrong", "flawed", "overlook", "ignore", "reject")


def agreement_ratio(turns: Sequence[DebateTurnRecord]) -> float:
    """Share of agreement phrases among agreement/disagreement phrases.

    Moderator turns are excluded.  Returns 0.5 when neither appears.
    """
    agree = disagree = 0
    for turn in turns:
        if turn.is_moderator:
            continue
        text = turn.content.lower()
        # "disagree" contains "agree"
        agree += sum(text.count(w) for w in _AGREEMENT) - text.count("disagree")
        disagree += sum(text.count(w) for w in _DISAGREEMENT)
    total = agree + disagree
    return agree / total if total else 0.5


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------

def compute_debate_stats(
    turns: Sequence[DebateTurnRecord],
    manifest: AudioManifest | None = None,
) -> DebateStats:
    """Compute statistics for a run, with speaking time from *manifest*."""
    stats = DebateStats()
    for turn in turns:
        agent = stats.agents.setdefault(turn.agent, AgentStats(turn.agent))
        n_words = len(turn.content.split())
        agent.turns += 1
        agent.words += n_words
        agent.characters += len(turn.content)
        stats.total_turns += 1
        stats.total_words += n_words
        if turn.slot not in stats.rounds:
            stats.rounds.append(turn.slot)

    if manifest is not None:
        for seg in manifest.segments:
            agent = stats.agents.setdefault(seg.agent, AgentStats(seg.agent))
            agent.speaking_ms += seg.duration_ms
        stats.audio_duration_ms = manifest.total_duration_ms
        if turns:
            stats.audio_coverage = min(1.0, len(manifest.segments) / len(turns))

    stats.vocabulary_diversity = vocabulary_diversity(turns)
    stats.agreement_ratio = agreement_ratio(turns)
    return stats
