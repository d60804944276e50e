"""Decision brief, transcript formatting, and summary merging.

The brief is the shared context every committee member sees: who the
person is (profile notes on disk), the decision, the chat that led to it
and the structured summary built so far.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from data.models import DebateTurnRecord, DecisionRecord, MessageRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Summary helpers
# ---------------------------------------------------------------------------


def parse_summary(summary_json: str | None) -> dict[str, Any] | None:
    """Parse a stored summary; anything unparseable counts as no summary."""
    if not summary_json:
        return None
    try:
        value = json.loads(summary_json)
    except json.JSONDecodeError:
        logger.warning("Ignoring unparseable decision summary")
        return None
    return value if isinstance(value, dict) else None


def is_ready_for_debate(summary: dict[str, Any] | None) -> bool:
    """A debate needs at least one option and one variable."""
    if not summary:
        return False
    options = summary.get("options")
    variables = summary.get("variables")
    return (
        isinstance(options, list) and bool(options)
        and isinstance(variables, list) and bool(variables)
    )


def _merge_by_key(
    existing: list[Any], new_items: list[Any], key: str
) -> list[Any]:
    result = list(existing)
    for item in new_items:
        item_key = item.get(key) if isinstance(item, dict) else None
        for i, old in enumerate(result):
            if item_key is not None and isinstance(old, dict) and old.get(key) == item_key:
                result[i] = item
                break
        else:
            result.append(item)
    return result


_MERGE_KEYS = {"options": "label", "variables": "label", "pros_cons": "option"}


def merge_summary(existing_json: str | None, update: dict[str, Any]) -> str:
    """Merge *update* into the stored summary and return the new JSON.

    ``options``/``variables`` merge by ``label`` and ``pros_cons`` by
    ``option``; every other key (``recommendation``, ``debate_summary`` …)
    replaces the old value wholesale.
    """
    merged = parse_summary(existing_json) or {}
    for name, value in update.items():
        key = _MERGE_KEYS.get(name)
        if key is not None and isinstance(value, list):
            old = merged.get(name)
            merged[name] = _merge_by_key(old if isinstance(old, list) else [], value, key)
        else:
            merged[name] = value
    return json.dumps(merged)


# ---------------------------------------------------------------------------
# Brief
# ---------------------------------------------------------------------------


def read_profiles(data_dir: str | Path | None) -> dict[str, str]:
    """Markdown profile notes under ``<data_dir>/profile``, keyed by file name."""
    if data_dir is None:
        return {}
    profile_dir = Path(data_dir) / "profile"
    if not profile_dir.is_dir():
        return {}
    return {
        path.name: path.read_text(encoding="utf-8")
        for path in sorted(profile_dir.glob("*.md"))
    }


def _summary_sections(summary: dict[str, Any] | None) -> str:
    if summary is None:
        return "No structured summary available."
    parts: list[str] = []

    options = summary.get("options") or []
    if options:
        lines = []
        for opt in options:
            label = opt.get("label", "?")
            desc = opt.get("description", "")
            lines.append(f"- **{label}**: {desc}" if desc else f"- **{label}**")
        parts.append("## Options Under Consideration\n" + "\n".join(lines))

    variables = summary.get("variables") or []
    if variables:
        lines = [
            f"- **{v.get('label', '?')}**: {v.get('value', '?')} "
            f"(impact: {v.get('impact', 'medium')})"
            for v in variables
        ]
        parts.append("## Key Variables & Constraints\n" + "\n".join(lines))

    pros_cons = summary.get("pros_cons") or []
    if pros_cons:
        blocks = []
        for pc in pros_cons:
            score = pc.get("alignment_score")
            heading = pc.get("option", "?")
            if score is not None:
                heading += f" (alignment: {score}/10)"
            pros = "\n".join(f"  + {p}" for p in pc.get("pros", []))
            cons = "\n".join(f"  - {c}" for c in pc.get("cons", []))
            blocks.append(f"### {heading}\nPros:\n{pros}\nCons:\n{cons}")
        parts.append("## Initial Analysis\n" + "\n\n".join(blocks))

    return "\n\n".join(parts) or "No structured summary available."


def compile_brief(
    decision: DecisionRecord,
    messages: Iterable[MessageRecord],
    profiles: dict[str, str],
) -> str:
    """Render the markdown brief injected into every debate prompt."""
    if profiles:
        profile_text = "\n\n".join(
            f"### {name}\n{content}" for name, content in profiles.items()
        )
    else:
        profile_text = "No profile information available."

    conversation = "\n\n".join(
        f"{'User' if m.role == 'user' else 'AI'}: {m.content}" for m in messages
    )

    return (
        "# Decision Brief\n\n"
        f"## About the Person\n{profile_text}\n\n"
        f"## The Decision\n**{decision.title}**\n\n"
        f"### Conversation Context\n{conversation}\n\n"
        f"{_summary_sections(parse_summary(decision.summary_json))}"
    )


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


def slot_heading(round_number: int, exchange_number: int) -> str:
    if round_number == 1:
        return "Round 1 (opening)"
    if round_number == 2:
        return f"Round 2 (exchange {exchange_number})"
    if round_number == 3:
        return "Round 3 (final statements)"
    if round_number == 99:
        return "Moderator synthesis"
    return f"Round {round_number}"


def format_transcript(
    turns: Iterable[DebateTurnRecord],
    label_for: Callable[[str], str] = str,
) -> str:
    """Plain-text transcript with a heading whenever the slot changes."""
    sections: list[str] = []
    current: tuple[int, int] | None = None
    for turn in turns:
        if turn.slot != current:
            current = turn.slot
            sections.append(slot_heading(*current))
        sections.append(f"{label_for(turn.agent)}: {turn.content}")
    return "\n\n".join(sections)
