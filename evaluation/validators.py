"""Consistency checks for persisted debates, manifests and transcripts."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from audio.pipeline import gap_between
from data.models import AudioManifest, DebateTurnRecord
from orchestration.protocols import DebateProtocol

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Outcome of a validation check."""

    valid: bool
    issues: list[str]

    def __bool__(self) -> bool:
        return self.valid


def _result(name: str, issues: list[str]) -> ValidationResult:
    if issues:
        logger.warning("%s validation failed: %s", name, "; ".join(issues))
    return ValidationResult(valid=len(issues) == 0, issues=issues)


class DebateValidator:
    """Validates debate runs against their schedule and audio timeline."""

    def validate_turns(
        self,
        turns: Sequence[DebateTurnRecord],
        protocol: DebateProtocol,
        debaters: list[str],
        moderator: str,
        complete: bool = False,
    ) -> ValidationResult:
        """Check that *turns* are a prefix of the protocol's schedule.

        With ``complete=True`` the run must also contain every slot,
        moderator included.
        """
        issues: list[str] = []
        schedule = protocol.schedule(debaters, moderator)

        seen: set[tuple[int, int, str]] = set()
        for turn in turns:
            key = (turn.round_number, turn.exchange_number, turn.agent)
            if key in seen:
                issues.append(f"Duplicate turn for {turn.agent} in round {turn.round_number}.{turn.exchange_number}")
            seen.add(key)

        if len(turns) > len(schedule):
            issues.append(f"{len(turns)} turns exceed the {len(schedule)}-slot schedule")
        for position, (turn, (slot, agent)) in enumerate(zip(turns, schedule)):
            if (turn.round_number, turn.exchange_number) != slot.key or turn.agent != agent:
                issues.append(
                    f"Turn {position} is {turn.agent} r{turn.round_number}.{turn.exchange_number}, "
                    f"expected {agent} r{slot.round_number}.{slot.exchange_number}"
                )
                break

        if complete and len(turns) < len(schedule):
            issues.append(f"Run is incomplete: {len(turns)} of {len(schedule)} turns")

        return _result("Turn order", issues)

    def validate_manifest(self, manifest: AudioManifest) -> ValidationResult:
        """Check segment order, gaps and the total duration."""
        issues: list[str] = []
        cursor = 0
        prev = None
        for seg in manifest.segments:
            if prev is not None and seg.index <= prev.index:
                issues.append(f"Segment {seg.index} is out of order after {prev.index}")
            if seg.duration_ms < 0:
                issues.append(f"Segment {seg.index} has a negative duration")
            expected = cursor + gap_between(prev, seg)
            if seg.start_ms != expected:
                issues.append(f"Segment {seg.index} starts at {seg.start_ms} ms, expected {expected} ms")
            cursor = seg.start_ms + seg.duration_ms
            prev = seg

        if manifest.total_duration_ms != cursor:
            issues.append(f"Total duration {manifest.total_duration_ms} ms, expected {cursor} ms")

        return _result("Manifest", issues)

    def validate_transcript(
        self,
        revealed: Iterable[tuple[int, int, str]],
        turns: Sequence[DebateTurnRecord],
    ) -> ValidationResult:
        """Every persisted turn must have been revealed exactly once."""
        issues: list[str] = []
        counts: dict[tuple[int, int, str], int] = {}
        for key in revealed:
            counts[key] = counts.get(key, 0) + 1

        for turn in turns:
            key = (turn.round_number, turn.exchange_number, turn.agent)
            n = counts.pop(key, 0)
            if n == 0:
                issues.append(f"Turn {turn.agent} r{turn.round_number}.{turn.exchange_number} was never shown")
            elif n > 1:
                issues.append(f"Turn {turn.agent} r{turn.round_number}.{turn.exchange_number} was shown {n} times")
        for key in counts:
            issues.append(f"Unknown turn {key[2]} r{key[0]}.{key[1]} was shown")

        return _result("Transcript", issues)
