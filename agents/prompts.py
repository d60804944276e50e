"""Round-specific prompt templates and spoken-output normalisation.

Debaters see the decision brief plus the transcript so far, wrapped in an
instruction block that depends on the (round, exchange) slot.  Their output
is then flattened into plain conversational prose so the transcript text
and the synthesized speech say exactly the same thing.
"""

from __future__ import annotations

import re

SPOKEN_STYLE_OVERLAY = """\
You are speaking out loud in a live committee discussion that will be read
aloud by a text-to-speech voice. Talk the way a person talks in a meeting:
short sentences, no headings, no bullet points, no bold labels, no tables.
Address other members by name when you respond to them."""


def round1_prompt(brief: str) -> str:
    """Opening statement."""
    return f"""{brief}

You are in Round 1 of a committee debate. State your opening position on this decision.

Cover, in order:
- Which option you lean toward (one sentence)
- The most important factor from your viewpoint (two or three sentences)
- Your biggest worry (one or two sentences)

STRICT LIMIT: under 150 words. Be punchy and direct."""


def round2_prompt(brief: str, transcript: str, exchange: int) -> str:
    """Rebuttal; the first exchange reacts to openings, later ones to each other."""
    if exchange == 1:
        return f"""{brief}

Here is Round 1 of the committee debate:

{transcript}

You are in Round 2. Engage directly with what the others said.

- Address at least one specific member by name
- Challenge the weakest argument you heard
- Reinforce or adjust your own position based on what you heard

STRICT LIMIT: under 150 words."""
    return f"""{brief}

{transcript}

Continue the debate. Respond to the latest exchange specifically.

- Say directly whether your position has shifted
- Name the strongest counter-argument and answer it
- Note any emerging consensus or remaining disagreement

STRICT LIMIT: under 120 words."""


def round3_prompt(brief: str, transcript: str) -> str:
    """Closing statement with a vote."""
    return f"""{brief}

{transcript}

Final statement. Be brief and decisive.

- My vote: the option you choose, and one sentence why
- Shifted? yes or no, and if yes what convinced you
- Remember this: the one thing this person must not forget

STRICT LIMIT: under 80 words. No hedging."""


def moderator_prompt(brief: str, transcript: str) -> str:
    """Synthesis request; the section headings are parsed back out afterwards."""
    return f"""{brief}

Here is the full committee debate:

{transcript}

Synthesize this debate into a clear recommendation. Structure your response as:

## Where the Committee Agreed
[Key points of consensus]

## Key Disagreements
[Where members differed and who had the stronger argument]

## Biases & Blind Spots Identified
[Any cognitive biases surfaced during the debate]

## Recommendation
**Choice**: [Clear choice]
**Confidence**: [High/Medium/Low]
**Reasoning**: [Why this is the right call, weighing the debate]

## Votes
[One line per committee member: name, then the option they leaned toward]

## What You're Giving Up
[Explicit tradeoffs of the recommended choice]

## Action Plan
[Specific next steps with timeline]"""


# ---------------------------------------------------------------------------
# Spoken output normalisation
# ---------------------------------------------------------------------------

_STRUCTURE_LABELS = (
    "position:",
    "key argument:",
    "concern:",
    "my vote:",
    "shifted?:",
    "shifted?",
    "remember this:",
)

_HEADING = re.compile(r"^#+\s*")
_BULLET = re.compile(r"^(?:[-*•])\s+")
_NUMBERED = re.compile(r"^\d+\.\s+")
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([.,;:])")


def normalize_spoken_output(text: str) -> str:
    """Flatten markdown-ish model output into one paragraph of speech.

    Headings, list markers, emphasis marks and the structural labels the
    round prompts ask for are removed.  If nothing survives, the original
    text (stripped) is returned unchanged.
    """
    parts: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        line = _HEADING.sub("", line)
        line = _BULLET.sub("", line)
        line = _NUMBERED.sub("", line)
        line = line.replace("**", "").replace("__", "").replace("`", "")

        lower = line.lower()
        for label in _STRUCTURE_LABELS:
            if lower.startswith(label):
                line = line[len(label):].strip()
                break

        if line:
            parts.append(line)

    compact = " ".join(" ".join(parts).split())
    compact = _SPACE_BEFORE_PUNCT.sub(r"\1", compact)
    return compact or text.strip()
