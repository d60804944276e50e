"""Debate visualization – charts and formatted text reports.

Generates matplotlib charts for participation and the audio timeline,
and exports a pretty-printed text transcript.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

import matplotlib

matplotlib.use("Agg")  # non-interactive backend
import matplotlib.pyplot as plt
import matplotlib.ticker as ticker

from data.models import AudioManifest, DebateTurnRecord
from evaluation.metrics import DebateStats
from orchestration.brief import slot_heading

logger = logging.getLogger(__name__)

# Hex values for the registry's colour names
_COLOURS: dict[str, str] = {
    "blue": "#2196F3",
    "purple": "#9C27B0",
    "red": "#F44336",
    "teal": "#009688",
    "orange": "#FF9800",
    "amber": "#FFC107",
    "green": "#4CAF50",
    "pink": "#E91E63",
}
_FALLBACK = "#607D8B"


class DebateVisualizer:
    """Generate charts and reports from a persisted debate.

    Parameters
    ----------
    output_dir : str | Path
        Where charts and transcripts are written.
    colours : dict[str, str]
        Agent key to registry colour name (or hex value).
    labels : dict[str, str]
        Agent key to display label.
    """

    def __init__(
        self,
        output_dir: str | Path = "viz/output",
        colours: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.colours = colours or {}
        self.labels = labels or {}

    def _colour(self, agent: str) -> str:
        name = self.colours.get(agent, "")
        if name.startswith("#"):
            return name
        return _COLOURS.get(name, _FALLBACK)

    def _label(self, agent: str) -> str:
        return self.labels.get(agent, agent)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_all(
        self,
        decision_id: str,
        turns: Sequence[DebateTurnRecord],
        stats: DebateStats,
        manifest: AudioManifest | None = None,
        title: str = "",
    ) -> list[Path]:
        """Generate every chart that has data, plus the transcript."""
        paths: list[Path] = [
            self.plot_participation(decision_id, stats),
            self.plot_response_lengths(decision_id, turns),
        ]
        if manifest is not None and manifest.segments:
            paths.append(self.plot_speaker_timeline(decision_id, manifest))
        paths.append(self.export_transcript(decision_id, turns, title))
        return paths

    # ------------------------------------------------------------------
    # Charts
    # ------------------------------------------------------------------

    def plot_participation(self, decision_id: str, stats: DebateStats) -> Path:
        """Bar chart of words spoken per agent."""
        agents = list(stats.agents)
        values = [stats.agents[a].words for a in agents]

        fig, ax = plt.subplots(figsize=(8, 4))
        ax.barh([self._label(a) for a in agents], values, color=[self._colour(a) for a in agents])
        ax.set_xlabel("Words")
        ax.set_title("Committee Participation")
        ax.xaxis.set_major_locator(ticker.MaxNLocator(integer=True))
        plt.tight_layout()

        path = self.output_dir / f"{decision_id}_participation.png"
        fig.savefig(path, dpi=150)
        plt.close(fig)
        logger.info("Saved %s", path)
        return path

    def plot_response_lengths(
        self, decision_id: str, turns: Sequence[DebateTurnRecord]
    ) -> Path:
        """Words per turn for each agent, in speaking order."""
        fig, ax = plt.subplots(figsize=(10, 4))

        by_agent: dict[str, tuple[list[int], list[int]]] = {}
        for position, turn in enumerate(turns):
            xs, ys = by_agent.setdefault(turn.agent, ([], []))
            xs.append(position + 1)
            ys.append(len(turn.content.split()))

        for agent, (xs, ys) in by_agent.items():
            ax.plot(xs, ys, "o-", label=self._label(agent), color=self._colour(agent), markersize=5)

        ax.set_xlabel("Turn")
        ax.set_ylabel("Words")
        ax.set_title("Response Lengths")
        if by_agent:
            ax.legend()
        ax.xaxis.set_major_locator(ticker.MaxNLocator(integer=True))
        plt.tight_layout()

        path = self.output_dir / f"{decision_id}_lengths.png"
        fig.savefig(path, dpi=150)
        plt.close(fig)
        logger.info("Saved %s", path)
        return path

    def plot_speaker_timeline(self, decision_id: str, manifest: AudioManifest) -> Path:
        """Gantt-style chart of who speaks when on the audio timeline."""
        agents: list[str] = []
        for seg in manifest.segments:
            if seg.agent not in agents:
                agents.append(seg.agent)

        fig, ax = plt.subplots(figsize=(12, 1 + 0.5 * len(agents)))
        for row, agent in enumerate(agents):
            spans = [
                (seg.start_ms / 1000, seg.duration_ms / 1000)
                for seg in manifest.segments
                if seg.agent == agent
            ]
            ax.broken_barh(spans, (row - 0.4, 0.8), color=self._colour(agent))

        ax.set_yticks(range(len(agents)))
        ax.set_yticklabels([self._label(a) for a in agents])
        ax.set_xlim(0, max(manifest.total_duration_ms / 1000, 1))
        ax.set_xlabel("Seconds")
        ax.set_title("Speaker Timeline")
        plt.tight_layout()

        path = self.output_dir / f"{decision_id}_timeline.png"
        fig.savefig(path, dpi=150)
        plt.close(fig)
        logger.info("Saved %s", path)
        return path

    # ------------------------------------------------------------------
    # Text transcript
    # ------------------------------------------------------------------

    def export_transcript(
        self,
        decision_id: str,
        turns: Sequence[DebateTurnRecord],
        title: str = "",
    ) -> Path:
        """Export a pretty-printed text transcript."""
        path = self.output_dir / f"{decision_id}_transcript.txt"
        path.write_text(render_transcript(turns, title, self._label), encoding="utf-8")
        logger.info("Saved %s", path)
        return path


def render_transcript(
    turns: Sequence[DebateTurnRecord],
    title: str = "",
    label_for: Callable[[str], str] = str,
) -> str:
    lines = [
        f"{'=' * 72}",
        "  COMMITTEE DEBATE TRANSCRIPT",
        f"  Decision: {title}",
        f"{'=' * 72}",
        "",
    ]
    current: tuple[int, int] | None = None
    for turn in turns:
        if turn.slot != current:
            current = turn.slot
            lines.append(f"--- {slot_heading(*current)} {'─' * 40}")
        lines.append(f"  [{label_for(turn.agent).upper()}]")
        lines.append("")
        for paragraph in turn.content.split("\n"):
            lines.append(f"    {paragraph}")
        lines.append("")

    lines.append(f"{'=' * 72}")
    lines.append("  END OF TRANSCRIPT")
    lines.append(f"{'=' * 72}")
    return "\n".join(lines)
