"""Evaluation – debate statistics and consistency validators."""

from evaluation.metrics import (
    AgentStats,
    DebateStats,
    agreement_ratio,
    compute_debate_stats,
    vocabulary_diversity,
)
from evaluation.validators import DebateValidator, ValidationResult

__all__ = [
    "AgentStats",
    "DebateStats",
    "DebateValidator",
    "ValidationResult",
    "agreement_ratio",
    "compute_debate_stats",
    "vocabulary_diversity",
]
