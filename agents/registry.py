"""Agent registry – the catalog of committee personas.

Built-in personas (five debaters plus the moderator) always exist.  Custom
debaters are read from ``<data_dir>/agents.yaml`` and a persona's role text
can be replaced by dropping ``<data_dir>/agents/<key>.md`` on disk.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

MODERATOR_KEY = "moderator"


class AgentKind(str, Enum):
    DEBATER = "debater"
    MODERATOR = "moderator"


class AgentMeta(BaseModel):
    """One persona in the registry."""

    key: str
    label: str
    emoji: str = "🤖"
    color: str = "indigo"
    role_prompt: str
    kind: AgentKind = AgentKind.DEBATER
    builtin: bool = False
    sort_order: int = 100
    voice_gender: str = "male"  # male | female


# ---------------------------------------------------------------------------
# Built-in personas
# ---------------------------------------------------------------------------

_DEBATE_RULES = """
Debate style rules:
- Short, punchy points, two or three sentences each
- When responding to others, name them and give your counter
- Be direct and opinionated, not diplomatic or verbose
- No filler, no restating the question, no preamble"""

_RATIONALIST = """\
You are The Rationalist on a decision-making committee. You analyze decisions
through logic, expected value and probabilistic thinking. Quantify what can be
quantified (money, time, likelihood of outcomes), say which option maximizes
utility given the person's stated priorities, and point out where others let
emotion cloud judgment. Admit when a choice cannot be reduced to numbers.
""" + _DEBATE_RULES

_ADVOCATE = """\
You are The Advocate on a decision-making committee. You focus on the human
element: emotional wellbeing, relationships, personal fulfilment and alignment
with deeply held values. Ask how each option would feel day to day, surface
feelings the person may not be articulating, and push back when others reduce
a life to a spreadsheet.
""" + _DEBATE_RULES

_CONTRARIAN = """\
You are The Contrarian on a decision-making committee. You challenge the
emerging consensus, surface hidden risks and question assumptions so the
committee avoids groupthink. Name the cognitive biases at play (sunk cost,
anchoring, status quo bias, optimism bias) and ask what would have to be true
for the opposite choice to be correct.
""" + _DEBATE_RULES

_VISIONARY = """\
You are The Visionary on a decision-making committee. You think in timelines
of five to ten years. Project each option forward, weigh which one keeps the
most doors open, consider compounding effects on skills, network, wealth and
health, and flag which choices are hard to undo.
""" + _DEBATE_RULES

_PRAGMATIST = """\
You are The Pragmatist on a decision-making committee. You focus on what this
person can actually execute given their time, energy, money and situation.
Ask how they would start on Monday, break big decisions into small testable
steps, and suggest sequencing that de-risks the choice.
""" + _DEBATE_RULES

_MODERATOR = """\
You are The Moderator of a decision-making committee. You have just observed
a debate between the committee members about a personal decision. Synthesize
it into a clear, actionable recommendation: where they agreed, where they
disagreed and who argued better, which biases surfaced, what the person gives
up, and a concrete action plan. You must commit to a recommendation with a
confidence level. Be authoritative, balanced and decisive."""

BUILTIN_AGENTS: tuple[AgentMeta, ...] = (
    AgentMeta(key="rationalist", label="Rationalist", emoji="🧮", color="blue",
              role_prompt=_RATIONALIST, builtin=True, sort_order=0, voice_gender="male"),
    AgentMeta(key="advocate", label="Advocate", emoji="💜", color="purple",
              role_prompt=_ADVOCATE, builtin=True, sort_order=1, voice_gender="female"),
    AgentMeta(key="contrarian", label="Contrarian", emoji="🔴", color="red",
              role_prompt=_CONTRARIAN, builtin=True, sort_order=2, voice_gender="male"),
    AgentMeta(key="visionary", label="Visionary", emoji="🔭", color="teal",
              role_prompt=_VISIONARY, builtin=True, sort_order=3, voice_gender="female"),
    AgentMeta(key="pragmatist", label="Pragmatist", emoji="🔧", color="orange",
              role_prompt=_PRAGMATIST, builtin=True, sort_order=4, voice_gender="male"),
    AgentMeta(key=MODERATOR_KEY, label="Moderator", emoji="🎯", color="amber",
              role_prompt=_MODERATOR, kind=AgentKind.MODERATOR, builtin=True,
              sort_order=99, voice_gender="male"),
)

_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{1,31}$")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class AgentRegistry:
    """Ordered catalog of personas for one data directory.

    Parameters
    ----------
    data_dir : Path | None
        Root holding ``agents.yaml`` and ``agents/<key>.md`` overrides.
        ``None`` gives a registry of built-ins only.
    """

    def __init__(self, data_dir: str | Path | None = None) -> None:
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self._agents: dict[str, AgentMeta] = {}
        self.reload()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def reload(self) -> None:
        agents = [a.model_copy() for a in BUILTIN_AGENTS]
        agents.extend(self._load_custom())
        for agent in agents:
            override = self._read_prompt_override(agent.key)
            if override:
                agent.role_prompt = override
        agents.sort(key=lambda a: (a.sort_order, a.key))
        self._agents = {a.key: a for a in agents}

    def _load_custom(self) -> list[AgentMeta]:
        path = self._catalog_path
        if path is None or not path.exists():
            return []
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or []
        custom: list[AgentMeta] = []
        for entry in raw:
            meta = AgentMeta(**{**entry, "builtin": False, "kind": AgentKind.DEBATER})
            if meta.key in {a.key for a in BUILTIN_AGENTS}:
                logger.warning("Ignoring custom agent %r: key clashes with a built-in", meta.key)
                continue
            custom.append(meta)
        return custom

    def _read_prompt_override(self, key: str) -> str | None:
        if self.data_dir is None:
            return None
        path = self.data_dir / "agents" / f"{key}.md"
        if not path.exists():
            return None
        text = path.read_text(encoding="utf-8").strip()
        return text or None

    @property
    def _catalog_path(self) -> Path | None:
        return self.data_dir / "agents.yaml" if self.data_dir is not None else None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def all(self) -> list[AgentMeta]:
        return list(self._agents.values())

    def get(self, key: str) -> AgentMeta | None:
        return self._agents.get(key)

    def label(self, key: str) -> str:
        meta = self._agents.get(key)
        return meta.label if meta else key

    @property
    def moderator(self) -> AgentMeta:
        return self._agents[MODERATOR_KEY]

    def debaters(self, selected: set[str] | list[str] | None = None) -> list[AgentMeta]:
        """Debaters in registry order, optionally restricted to *selected* keys.

        Unknown keys in *selected* are ignored.
        """
        debaters = [a for a in self._agents.values() if a.kind == AgentKind.DEBATER]
        if selected is None:
            return debaters
        wanted = set(selected)
        return [a for a in debaters if a.key in wanted]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_custom(
        self,
        key: str,
        label: str,
        role_prompt: str,
        *,
        emoji: str = "🤖",
        color: str = "indigo",
        voice_gender: str = "male",
    ) -> AgentMeta:
        """Create a custom debater and persist it to ``agents.yaml``."""
        if self._catalog_path is None:
            raise RuntimeError("Registry has no data_dir; custom agents cannot be saved.")
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid agent key {key!r}")
        if key in self._agents:
            raise ValueError(f"Agent {key!r} already exists")
        if voice_gender not in ("male", "female"):
            raise ValueError("voice_gender must be 'male' or 'female'")

        custom_count = sum(1 for a in self._agents.values() if not a.builtin)
        meta = AgentMeta(
            key=key,
            label=label,
            emoji=emoji,
            color=color,
            role_prompt=role_prompt,
            builtin=False,
            sort_order=10 + custom_count,
            voice_gender=voice_gender,
        )
        entries: list[dict[str, Any]] = [
            a.model_dump(exclude={"builtin", "kind"}, mode="json")
            for a in self._agents.values()
            if not a.builtin
        ]
        entries.append(meta.model_dump(exclude={"builtin", "kind"}, mode="json"))

        self._catalog_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._catalog_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(entries, f, allow_unicode=True, sort_keys=False)
        logger.info("Added custom agent %s", key)
        self.reload()
        return self._agents[key]


def get_agent_registry(data_dir: str | Path | None = None) -> list[AgentMeta]:
    """Ordered list of every persona available under *data_dir*."""
    return AgentRegistry(data_dir).all()
