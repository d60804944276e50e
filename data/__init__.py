"""Data layer – SQLite storage and Pydantic models."""

from data.models import (
    MODERATOR_ROUND,
    AudioManifest,
    AudioSegment,
    ConversationRecord,
    DebateTurnRecord,
    DecisionRecord,
    DecisionStatus,
    InvalidStatusTransition,
    MessageRecord,
    validate_transition,
)
from data.database import CommitteeDatabase

__all__ = [
    "MODERATOR_ROUND",
    "AudioManifest",
    "AudioSegment",
    "CommitteeDatabase",
    "ConversationRecord",
    "DebateTurnRecord",
    "DecisionRecord",
    "DecisionStatus",
    "InvalidStatusTransition",
    "MessageRecord",
    "validate_transition",
]
