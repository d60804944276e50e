"""Pydantic models mirroring the SQLite schema."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MODERATOR_ROUND = 99


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Decision lifecycle
# ---------------------------------------------------------------------------

class DecisionStatus(str, Enum):
    """Lifecycle of a decision."""

    EXPLORING = "exploring"
    ANALYZING = "analyzing"
    DEBATING = "debating"
    RECOMMENDED = "recommended"
    DECIDED = "decided"
    REVIEWED = "reviewed"


_TRANSITIONS: dict[DecisionStatus, set[DecisionStatus]] = {
    DecisionStatus.EXPLORING: {DecisionStatus.ANALYZING, DecisionStatus.DEBATING},
    DecisionStatus.ANALYZING: {DecisionStatus.DEBATING},
    # Completion moves forward; cancellation/error reverts to the prior status.
    DecisionStatus.DEBATING: {
        DecisionStatus.RECOMMENDED,
        DecisionStatus.EXPLORING,
        DecisionStatus.ANALYZING,
    },
    DecisionStatus.RECOMMENDED: {DecisionStatus.DECIDED, DecisionStatus.DEBATING},
    DecisionStatus.DECIDED: {DecisionStatus.REVIEWED, DecisionStatus.EXPLORING},
    DecisionStatus.REVIEWED: {DecisionStatus.EXPLORING},
}


class InvalidStatusTransition(ValueError):
    """Raised when a decision is moved to a status it cannot reach."""

    def __init__(self, current: DecisionStatus, target: DecisionStatus) -> None:
        super().__init__(f"Cannot move decision from {current.value!r} to {target.value!r}")
        self.current = current
        self.target = target


def validate_transition(current: DecisionStatus | str, target: DecisionStatus | str) -> None:
    """Raise :class:`InvalidStatusTransition` if *current* → *target* is illegal.

    Re-asserting the current status is always allowed.
    """
    current = DecisionStatus(current)
    target = DecisionStatus(target)
    if current == target:
        return
    if target not in _TRANSITIONS[current]:
        raise InvalidStatusTransition(current, target)


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

class ConversationRecord(BaseModel):
    """Row in the ``conversations`` table."""

    id: str = Field(default_factory=_new_id)
    title: str = "New decision"
    created_at: datetime = Field(default_factory=_utcnow)


class MessageRecord(BaseModel):
    """Row in the ``messages`` table (prior chat context for a decision)."""

    id: int | None = None
    conversation_id: str
    role: str  # user | assistant
    content: str
    created_at: datetime = Field(default_factory=_utcnow)


class DecisionRecord(BaseModel):
    """Row in the ``decisions`` table."""

    id: str = Field(default_factory=_new_id)
    conversation_id: str
    title: str
    status: DecisionStatus = DecisionStatus.EXPLORING
    summary_json: str | None = None
    user_choice: str | None = None
    user_choice_reasoning: str | None = None
    outcome: str | None = None
    outcome_date: str | None = None
    debate_started_at: datetime | None = None
    debate_completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def summary(self) -> dict[str, Any] | None:
        """Parsed summary, or ``None`` when absent or unparseable."""
        if not self.summary_json:
            return None
        try:
            value = json.loads(self.summary_json)
        except json.JSONDecodeError:
            logger.warning("Decision %s has an unparseable summary; ignoring it", self.id)
            return None
        return value if isinstance(value, dict) else None


class DebateTurnRecord(BaseModel):
    """Row in the ``debate_turns`` table. Immutable once written."""

    id: int | None = None
    decision_id: str
    run_number: int = 1
    round_number: int
    exchange_number: int = 1
    agent: str
    content: str
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_moderator(self) -> bool:
        return self.round_number == MODERATOR_ROUND

    @property
    def slot(self) -> tuple[int, int]:
        return (self.round_number, self.exchange_number)


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------

class AudioSegment(BaseModel):
    """One synthesized turn plus its position on the debate timeline."""

    index: int
    agent: str
    round_number: int
    exchange_number: int = 1
    text: str
    audio_file: str
    duration_ms: int
    start_ms: int = 0


class AudioManifest(BaseModel):
    """Ordered description of every segment for one decision's debate."""

    decision_id: str
    segments: list[AudioSegment] = Field(default_factory=list)
    total_duration_ms: int = 0

    def segment(self, index: int) -> AudioSegment | None:
        """Look up a segment by its global index (indices may have gaps)."""
        for seg in self.segments:
            if seg.index == index:
                return seg
        return None
