#!/usr/bin/env python3
"""Command-line interface for the decision committee.

Usage examples:
    python cli.py new-decision --title "Take the Berlin offer?" --option Stay --option Move --variable Salary
    python cli.py debate --decision-id 3f2a... --quick
    python cli.py debate --decision-id 3f2a... --agents rationalist,contrarian --no-audio
    python cli.py generate-audio --decision-id 3f2a...
    python cli.py replay --decision-id 3f2a... --speed 1.5
    python cli.py visualize --decision-id 3f2a...
    python cli.py list-decisions
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from agents import AgentMeta, AgentRegistry, CommitteeAgent, create_provider
from audio import TTSPipeline, create_tts_provider
from data import MODERATOR_ROUND, CommitteeDatabase, ConversationRecord, DecisionRecord, MessageRecord
from evaluation import DebateValidator, compute_debate_stats
from orchestration import EventBus, create_protocol, events, format_transcript
from orchestration.debate_manager import DebateError, DebateManager, DebateResult
from playback import SPEEDS, AudioOutput, DecisionViewSession, RevealSynchronizer, create_output
from playback import load as load_player
from viz.visualize import DebateVisualizer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Live debate display
# ---------------------------------------------------------------------------

# Registry colour name -> ANSI colour code for terminal output
_ANSI: dict[str, str] = {
    "blue": "\033[1;34m",
    "purple": "\033[1;35m",
    "red": "\033[1;31m",
    "teal": "\033[1;36m",
    "orange": "\033[1;33m",
    "amber": "\033[1;33m",
}
_RESET = "\033[0m"
_DIM = "\033[2m"


def _echo_header(registry: AgentRegistry, agent: str, round_number: int, exchange_number: int) -> None:
    meta = registry.get(agent)
    label = f"{meta.emoji} {meta.label}" if meta else agent
    colour = _ANSI.get(meta.color if meta else "", "\033[1m")
    stage = "Moderator" if round_number == MODERATOR_ROUND else f"Round {round_number}.{exchange_number}"
    click.echo(f"\n{colour}{'─' * 60}")
    click.echo(f"  [{label.upper()}]  {stage}")
    click.echo(f"{'─' * 60}{_RESET}")


class _DebatePrinter:
    """Event handler that streams a debate to the terminal.

    With ``show_text=False`` only audio and run-status lines are printed;
    the text comes from :class:`_RevealPrinter` instead.
    """

    def __init__(self, registry: AgentRegistry, show_text: bool = True) -> None:
        self.registry = registry
        self.show_text = show_text
        self._speaking: tuple[int, int, str] | None = None

    def __call__(self, name: str, payload: dict[str, Any]) -> None:
        if name == events.DEBATE_AGENT_TOKEN and self.show_text:
            key = (payload["round_number"], payload["exchange_number"], payload["agent"])
            if key != self._speaking:
                self._speaking = key
                _echo_header(self.registry, payload["agent"], payload["round_number"], payload["exchange_number"])
            click.echo(payload["token"], nl=False)
        elif name == events.DEBATE_AGENT_RESPONSE and self.show_text:
            self._speaking = None
            click.echo()
        elif name == events.SEGMENT_AUDIO_ERROR:
            click.echo(f"{_DIM}  [audio failed for {payload['agent']}: {payload['error']}]{_RESET}")
        elif name in (events.DEBATE_CANCELLED, events.DEBATE_ERROR):
            click.echo(f"\n{payload.get('message') or payload.get('error')}", err=True)


class _RevealPrinter:
    """Prints what a :class:`RevealSynchronizer` shows, as it changes.

    Text typed in step with the audio is echoed as it grows; turns that
    land in the transcript are completed (or printed whole, when they were
    flushed without audio) in transcript order.
    """

    def __init__(self, registry: AgentRegistry, sync: RevealSynchronizer) -> None:
        self.registry = registry
        self.sync = sync
        self._current: tuple[int, int, str] | None = None
        self._shown: dict[tuple[int, int, str], int] = {}
        self._done: set[tuple[int, int, str]] = set()

    def refresh(self) -> None:
        for turn in self.sync.transcript:
            if turn.key in self._done:
                continue
            self._select(turn.key)
            click.echo(turn.content[self._shown.get(turn.key, 0):])
            self._done.add(turn.key)
            self._current = None
        for key, text in list(self.sync.displayed.items()):
            shown = self._shown.get(key, 0)
            if key in self._done or len(text) <= shown:
                continue
            self._select(key)
            click.echo(text[shown:], nl=False)
            self._shown[key] = len(text)

    def _select(self, key: tuple[int, int, str]) -> None:
        if key == self._current:
            return
        if self._current is not None:
            click.echo()
        self._current = key
        _echo_header(self.registry, key[2], key[0], key[1])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_config(config_path: str = "config/default.yaml") -> dict[str, Any]:
    """Load and return the YAML config."""
    p = Path(config_path)
    if not p.exists():
        click.echo(f"Config not found: {p}. Using defaults.", err=True)
        return {}
    with open(p) as f:
        return yaml.safe_load(f) or {}


def _setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _data_dir(cfg: dict[str, Any]) -> Path:
    return Path(cfg.get("storage", {}).get("data_dir", "data"))


def _open_db(cfg: dict[str, Any]) -> CommitteeDatabase:
    return CommitteeDatabase(cfg.get("database", {}).get("path", "data/committee.db"))


def _agent_factory(cfg: dict[str, Any]):
    """Return a callable that builds a provider-backed agent for a persona."""
    api_cfg = cfg.get("api", {})
    llm_cfg = cfg.get("llm", {})
    agent_cfgs = cfg.get("agents", {})
    timeout = api_cfg.get("timeout", 60)

    def build(meta: AgentMeta) -> CommitteeAgent:
        acfg = agent_cfgs.get(meta.key, {})
        provider_name = acfg.get("provider") or llm_cfg.get("provider", "openrouter")
        provider_api_cfg = api_cfg.get(provider_name, {})

        # Model resolution order:
        #   1. Agent-level model (agents.contrarian.model)
        #   2. Global llm model, when the provider matches
        #   3. Provider-level model (api.anthropic.model)
        #   4. Provider class default
        model = acfg.get("model")
        if not model and provider_name == llm_cfg.get("provider"):
            model = llm_cfg.get("model")
        model = model or provider_api_cfg.get("model")

        provider_kwargs: dict[str, Any] = {"timeout": timeout}
        if provider_api_cfg.get("api_key_env"):
            provider_kwargs["api_key_env"] = provider_api_cfg["api_key_env"]
        if model:
            provider_kwargs["model"] = model

        return CommitteeAgent(
            meta,
            create_provider(provider_name, **provider_kwargs),
            temperature=acfg.get("temperature", llm_cfg.get("temperature", 0.7)),
            max_tokens=acfg.get("max_tokens", llm_cfg.get("max_tokens", 2048)),
        )

    return build


def _build_tts(
    cfg: dict[str, Any],
    db: CommitteeDatabase,
    bus: EventBus,
    registry: AgentRegistry,
) -> TTSPipeline | None:
    """TTS pipeline from config, or ``None`` when audio is off or has no key."""
    tts_cfg = cfg.get("tts", {})
    if not tts_cfg.get("enabled", True):
        return None
    kwargs: dict[str, Any] = {"voices": tts_cfg.get("voices") or {}}
    if tts_cfg.get("api_key_env"):
        kwargs["api_key_env"] = tts_cfg["api_key_env"]
    if tts_cfg.get("model"):
        kwargs["model"] = tts_cfg["model"]
    try:
        provider = create_tts_provider(tts_cfg.get("provider", "openai"), **kwargs)
    except ValueError as exc:
        logger.info("Live audio disabled: %s", exc)
        return None
    return TTSPipeline(
        provider,
        db,
        bus,
        registry,
        _data_dir(cfg),
        concurrency=tts_cfg.get("concurrency", 1),
    )


def _audio_output(cfg: dict[str, Any], silent: bool) -> AudioOutput:
    """Speakers by default; ``--silent`` or ``playback.output: headless`` keeps time only."""
    kind = "headless" if silent else cfg.get("playback", {}).get("output", "device")
    return create_output(kind)


async def _follow(
    task: asyncio.Task[DebateResult],
    view: DecisionViewSession,
    registry: AgentRegistry,
) -> DebateResult:
    """Print the revealed transcript until the run is over and its audio has played out."""
    printer = _RevealPrinter(registry, view.sync)
    interval = view.sync.tick_ms / 1000
    while not task.done():
        printer.refresh()
        await asyncio.sleep(interval)
    result = task.result()
    # Every segment-ready event has been published by now.
    while True:
        if view.queue.is_idle:
            view.sync.flush_pending()
        printer.refresh()
        if view.queue.is_idle and len(view.sync.transcript) >= len(result.turns):
            return result
        await asyncio.sleep(interval)


def _run(coro_fn) -> None:
    """Run ``coro_fn(db)`` against a connected database."""
    cfg = click.get_current_context().obj["config"]

    async def _main() -> None:
        db = _open_db(cfg)
        await db.connect()
        try:
            await coro_fn(db)
        finally:
            await db.close()

    asyncio.run(_main())


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", default="config/default.yaml", help="Path to YAML config")
@click.option("--log-level", default="INFO", help="Logging level")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str) -> None:
    """Decision Committee – AI personas debate your decision, out loud."""
    _setup_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = _load_config(config)
    ctx.obj["config_path"] = config


# ---- new-decision ---------------------------------------------------------

@cli.command("new-decision")
@click.option("--title", required=True, help="The decision to make")
@click.option("--option", "options", multiple=True, help="An option under consideration (repeatable)")
@click.option("--variable", "variables", multiple=True, help="A factor that matters (repeatable)")
@click.option("--context", "context", multiple=True, help="Background note from you (repeatable)")
@click.pass_context
def new_decision(
    ctx: click.Context,
    title: str,
    options: tuple[str, ...],
    variables: tuple[str, ...],
    context: tuple[str, ...],
) -> None:
    """Create a decision with its options and variables."""
    summary: dict[str, Any] = {}
    if options:
        summary["options"] = [{"label": o} for o in options]
    if variables:
        summary["variables"] = [{"label": v} for v in variables]

    async def _go(db: CommitteeDatabase) -> None:
        conversation_id = await db.create_conversation(ConversationRecord(title=title))
        for note in context:
            await db.add_message(MessageRecord(conversation_id=conversation_id, role="user", content=note))
        decision_id = await db.create_decision(
            DecisionRecord(
                conversation_id=conversation_id,
                title=title,
                summary_json=json.dumps(summary) if summary else None,
            )
        )
        click.echo(decision_id)

    _run(_go)


# ---- list-decisions -------------------------------------------------------

@cli.command("list-decisions")
@click.option("--limit", default=20, type=int, help="Number of decisions to list")
def list_decisions(limit: int) -> None:
    """List recent decisions stored in the database."""

    async def _go(db: CommitteeDatabase) -> None:
        decisions = await db.list_decisions(limit=limit)
        if not decisions:
            click.echo("No decisions found.")
            return

        click.echo(f"{'ID':<32}  {'Status':<12} {'Title'}")
        click.echo(f"{'─' * 32}  {'─' * 12} {'─' * 40}")
        for d in decisions:
            click.echo(f"{d.id:<32}  {d.status.value:<12} {d.title[:40]}")

    _run(_go)


# ---- agents ---------------------------------------------------------------

@cli.group()
def agents() -> None:
    """Show or extend the committee."""


@agents.command("list")
@click.pass_context
def agents_list(ctx: click.Context) -> None:
    """List every persona, moderator last."""
    registry = AgentRegistry(_data_dir(ctx.obj["config"]))
    for meta in registry.all():
        kind = "custom" if not meta.builtin else meta.kind.value
        click.echo(f"{meta.emoji} {meta.key:<14} {meta.label:<22} {kind:<10} voice={meta.voice_gender}")


@agents.command("add")
@click.option("--key", required=True, help="Lower-case identifier")
@click.option("--label", required=True, help="Display name")
@click.option("--prompt", "role_prompt", required=True, help="Persona description")
@click.option("--emoji", default="🤖")
@click.option("--color", default="indigo")
@click.option("--voice-gender", type=click.Choice(["male", "female"]), default="male")
@click.pass_context
def agents_add(
    ctx: click.Context,
    key: str,
    label: str,
    role_prompt: str,
    emoji: str,
    color: str,
    voice_gender: str,
) -> None:
    """Add a custom debater."""
    registry = AgentRegistry(_data_dir(ctx.obj["config"]))
    try:
        meta = registry.add_custom(
            key, label, role_prompt, emoji=emoji, color=color, voice_gender=voice_gender
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    click.echo(f"Added {meta.emoji} {meta.label} ({meta.key})")


# ---- debate ---------------------------------------------------------------

@cli.command()
@click.option("--decision-id", required=True, help="Decision to debate")
@click.option("--quick", is_flag=True, help="Opening statements only, then the moderator")
@click.option("--agents", "agent_keys", default=None, help="Comma-separated debater keys")
@click.option("--no-audio", is_flag=True, help="Skip live text-to-speech")
@click.option("--silent", is_flag=True, help="Generate audio but do not play it")
@click.pass_context
def debate(
    ctx: click.Context,
    decision_id: str,
    quick: bool,
    agent_keys: str | None,
    no_audio: bool,
    silent: bool,
) -> None:
    """Run a committee debate on a decision.

    With live audio the transcript is revealed in step with the spoken
    segments; without it tokens are printed as they stream.
    """
    cfg = ctx.obj["config"]
    data_dir = _data_dir(cfg)
    registry = AgentRegistry(data_dir)
    selected = [a.strip() for a in agent_keys.split(",")] if agent_keys else None
    if selected:
        unknown = [k for k in selected if registry.get(k) is None]
        if unknown:
            raise click.BadParameter(f"Unknown agent(s): {', '.join(unknown)}")

    async def _go(db: CommitteeDatabase) -> None:
        bus = EventBus()
        tts = None if no_audio else _build_tts(cfg, db, bus, registry)
        manager = DebateManager(db, bus, registry, _agent_factory(cfg), tts=tts, data_dir=data_dir)
        bus.subscribe(decision_id, _DebatePrinter(registry, show_text=tts is None))

        view = None
        if tts is not None:
            view = DecisionViewSession.from_config(
                bus, db, decision_id, True, cfg.get("playback", {}), output=_audio_output(cfg, silent)
            )
            await view.open()
        try:
            try:
                task = await manager.start_debate(decision_id, quick_mode=quick, selected_agents=selected)
            except DebateError as exc:
                click.echo(f"Cannot start debate: {exc}", err=True)
                return
            try:
                result = await (task if view is None else _follow(task, view, registry))
            except asyncio.CancelledError:
                manager.cancel_debate(decision_id)
                raise
        finally:
            if view is not None:
                view.close()

        click.echo(f"\n{'=' * 60}")
        click.echo(f"  DEBATE {result.status.upper()} – run {result.run_number}")
        click.echo(f"{'=' * 60}")
        click.echo(f"  Turns     : {len(result.turns)}")
        recommendation = (result.summary or {}).get("recommendation")
        if recommendation:
            click.echo(f"  Choice    : {recommendation['choice']}")
            click.echo(f"  Confidence: {recommendation['confidence']}")
        manifest = await db.load_manifest(decision_id)
        if manifest is not None and tts is not None:
            click.echo(f"  Audio     : {len(manifest.segments)} segments, {manifest.total_duration_ms / 1000:.1f}s")

    _run(_go)


# ---- generate-audio -------------------------------------------------------

@cli.command("generate-audio")
@click.option("--decision-id", required=True, help="Decision whose latest run to voice")
@click.pass_context
def generate_audio(ctx: click.Context, decision_id: str) -> None:
    """Regenerate the audio manifest for a finished debate."""
    cfg = ctx.obj["config"]

    async def _go(db: CommitteeDatabase) -> None:
        bus = EventBus()
        registry = AgentRegistry(_data_dir(cfg))
        pipeline = _build_tts(cfg, db, bus, registry)
        if pipeline is None:
            click.echo("Text-to-speech is disabled or has no API key.", err=True)
            return
        if not await db.load_turns(decision_id):
            click.echo(f"No debate turns for {decision_id}.", err=True)
            return

        def _progress(name: str, payload: dict[str, Any]) -> None:
            if name == events.AUDIO_GENERATION_PROGRESS and payload.get("current_agent"):
                click.echo(f"  [{payload['completed'] + 1}/{payload['total']}] {payload['current_agent']}")

        bus.subscribe(decision_id, _progress)
        manifest = await pipeline.generate_audio_for_decision(decision_id)
        click.echo(
            f"Saved {len(manifest.segments)} segments "
            f"({manifest.total_duration_ms / 1000:.1f}s) to {pipeline.audio_dir(decision_id)}"
        )

    _run(_go)


# ---- transcript -----------------------------------------------------------

@cli.command()
@click.option("--decision-id", required=True, help="Decision to print")
@click.option("--run", "run_number", default=None, type=int, help="Run number (default: latest)")
@click.pass_context
def transcript(ctx: click.Context, decision_id: str, run_number: int | None) -> None:
    """Print a debate transcript."""
    registry = AgentRegistry(_data_dir(ctx.obj["config"]))

    async def _go(db: CommitteeDatabase) -> None:
        turns = await db.load_turns(decision_id, run_number)
        if not turns:
            click.echo(f"No debate turns for {decision_id}.", err=True)
            return
        click.echo(format_transcript(turns, registry.label))

    _run(_go)


# ---- replay ---------------------------------------------------------------

@cli.command()
@click.option("--decision-id", required=True, help="Decision to replay")
@click.option("--speed", default="1", type=click.Choice([f"{s:g}" for s in SPEEDS]), help="Playback speed")
@click.option("--start", "start_position", default=1, type=int, help="Segment to start from (1-based)")
@click.option("--silent", is_flag=True, help="Track the timeline without playing sound")
@click.pass_context
def replay(ctx: click.Context, decision_id: str, speed: str, start_position: int, silent: bool) -> None:
    """Replay a debate's audio manifest."""
    cfg = ctx.obj["config"]
    registry = AgentRegistry(_data_dir(cfg))

    async def _go(db: CommitteeDatabase) -> None:
        manifest = await db.load_manifest(decision_id)
        if manifest is None or not manifest.segments:
            click.echo(f"No audio for {decision_id}. Run generate-audio first.", err=True)
            return
        if not 1 <= start_position <= len(manifest.segments):
            click.echo(f"--start must be between 1 and {len(manifest.segments)}", err=True)
            return

        audio_dir = _data_dir(cfg) / "debates" / decision_id
        with load_player(manifest, audio_dir, _audio_output(cfg, silent)) as player:
            player.set_speed(float(speed))
            player.skip_to_segment(start_position - 1)
            shown = -1
            while player.is_playing:
                if player.position != shown:
                    shown = player.position
                    seg = player.current
                    click.echo(
                        f"[{player.global_position_ms / 1000:6.1f}s] "
                        f"{registry.label(seg.agent)}: {seg.text[:70]}"
                    )
                await asyncio.sleep(0.1)
        click.echo(f"Replay finished ({manifest.total_duration_ms / 1000:.1f}s total).")

    _run(_go)


# ---- visualize ------------------------------------------------------------

@cli.command()
@click.option("--decision-id", required=True, help="Decision to visualize")
@click.option("--output-dir", default="viz/output", help="Where to write charts")
@click.pass_context
def visualize(ctx: click.Context, decision_id: str, output_dir: str) -> None:
    """Generate charts and a transcript for a finished debate."""
    registry = AgentRegistry(_data_dir(ctx.obj["config"]))

    async def _go(db: CommitteeDatabase) -> None:
        decision = await db.get_decision(decision_id)
        if decision is None:
            click.echo(f"Decision {decision_id} not found.", err=True)
            return
        turns = await db.load_turns(decision_id)
        if not turns:
            click.echo(f"No debate turns for {decision_id}.", err=True)
            return
        manifest = await db.load_manifest(decision_id)

        validator = DebateValidator()
        debaters = [t.agent for t in turns if t.round_number == 1]
        check = validator.validate_turns(
            turns,
            create_protocol(quick_mode=not any(t.round_number == 2 for t in turns)),
            debaters,
            registry.moderator.key,
        )
        if manifest is not None:
            m_check = validator.validate_manifest(manifest)
            check.issues.extend(m_check.issues)
        for issue in check.issues:
            click.echo(f"  ! {issue}", err=True)

        stats = compute_debate_stats(turns, manifest)
        viz = DebateVisualizer(
            output_dir,
            colours={a.key: a.color for a in registry.all()},
            labels={a.key: a.label for a in registry.all()},
        )
        paths = viz.generate_all(decision_id, turns, stats, manifest, title=decision.title)

        click.echo(f"Generated {len(paths)} files in {viz.output_dir}/:")
        for p in paths:
            click.echo(f"  - {p.name}")

    _run(_go)


# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
