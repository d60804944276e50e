"""Moderator output parsing – turns the synthesis into structured summary data."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import Any

from data.models import DebateTurnRecord

logger = logging.getLogger(__name__)

_VOTE_PREVIEW_CHARS = 200


def extract_section(text: str, heading: str) -> str:
    """Body of the ``## heading`` section, up to the next ``## `` heading."""
    marker = f"## {heading}"
    start = text.find(marker)
    if start < 0:
        return ""
    after = text[start + len(marker):]
    end = after.find("\n## ")
    return (after if end < 0 else after[:end]).strip()


def split_to_points(text: str) -> list[str]:
    """Split a section into bullet points, dropping markers and blank lines."""
    points = []
    for line in text.splitlines():
        point = line.strip().lstrip("-").lstrip("*").strip()
        if point:
            points.append(point)
    return points


def extract_bold_value(text: str, label: str) -> str | None:
    """Value following ``**label**:`` on the same line."""
    pattern = f"**{label}**:"
    pos = text.find(pattern)
    if pos < 0:
        return None
    value = text[pos + len(pattern):].split("\n", 1)[0].strip()
    return value or None


def parse_recommendation(full_text: str) -> dict[str, Any] | None:
    """Structured recommendation, or ``None`` if the moderator gave none."""
    section = extract_section(full_text, "Recommendation")
    if not section and "**Choice**" not in full_text:
        return None
    text = section or full_text

    choice = extract_bold_value(text, "Choice") or "See moderator's synthesis"
    confidence_raw = (extract_bold_value(text, "Confidence") or "medium").lower()
    reasoning = extract_bold_value(text, "Reasoning")
    if reasoning is None:
        reasoning = " ".join(
            line.strip()
            for line in section.splitlines()
            if line.strip() and not line.startswith("**")
        )

    if "high" in confidence_raw:
        confidence = "high"
    elif "low" in confidence_raw:
        confidence = "low"
    else:
        confidence = "medium"

    tradeoffs = extract_section(full_text, "What You're Giving Up")
    next_steps = split_to_points(extract_section(full_text, "Action Plan"))
    return {
        "choice": choice,
        "confidence": confidence,
        "reasoning": reasoning,
        "tradeoffs": tradeoffs or None,
        "next_steps": next_steps or None,
    }


_VOTE_LINE = re.compile(r"^(?P<name>.+?)\s*(?::|[—–-](?=\s))\s*(?P<choice>.+)$")


def parse_vote_tally(full_text: str, labels: dict[str, str]) -> dict[str, str]:
    """Map agent key → choice leaning from the ``## Votes`` section.

    *labels* maps agent key → display label; lines naming an unknown member
    are skipped.
    """
    by_label = {label.lower().removeprefix("the ").strip(): key for key, label in labels.items()}
    tally: dict[str, str] = {}
    for point in split_to_points(extract_section(full_text, "Votes")):
        match = _VOTE_LINE.match(point.replace("**", ""))
        if not match:
            continue
        name = match.group("name").lower().removeprefix("the ").strip()
        key = by_label.get(name)
        if key is not None:
            tally[key] = match.group("choice").strip()
    return tally


def build_summary_update(
    moderator_text: str,
    turns: Iterable[DebateTurnRecord],
    debaters: dict[str, str],
) -> dict[str, Any]:
    """Summary fields produced by a finished debate.

    *debaters* maps debater key → label.  ``final_votes`` previews each
    debater's last turn; ``vote_tally`` is the moderator's own reading.
    """
    turns = list(turns)
    final_votes: dict[str, str] = {}
    for key in debaters:
        own = [t for t in turns if t.agent == key]
        if own:
            final_votes[key] = own[-1].content[:_VOTE_PREVIEW_CHARS]

    update: dict[str, Any] = {
        "debate_summary": {
            "consensus_points": split_to_points(
                extract_section(moderator_text, "Where the Committee Agreed")
            ),
            "key_disagreements": split_to_points(
                extract_section(moderator_text, "Key Disagreements")
            ),
            "biases_identified": split_to_points(
                extract_section(moderator_text, "Biases & Blind Spots Identified")
            ),
            "final_votes": final_votes,
            "vote_tally": parse_vote_tally(moderator_text, debaters),
        }
    }
    recommendation = parse_recommendation(moderator_text)
    if recommendation is not None:
        update["recommendation"] = recommendation
    else:
        logger.warning("Moderator synthesis has no recommendation section")
    return update
