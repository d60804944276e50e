"""DebateManager – orchestrates committee debates end-to-end.

Runs the speaking schedule one agent at a time, streams tokens onto the
event bus, persists each finalized turn, feeds the live TTS pipeline, and
closes with the moderator's synthesis merged into the decision summary.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from agents.base import CommitteeAgent
from agents.llm_provider import CancellationToken, LLMError, StreamCancelled
from agents.moderator import build_summary_update
from agents.prompts import moderator_prompt, round1_prompt, round2_prompt, round3_prompt
from agents.registry import AgentMeta, AgentRegistry
from audio.pipeline import LiveAudioSession, TTSPipeline
from data.database import CommitteeDatabase
from data.models import (
    DebateTurnRecord,
    DecisionRecord,
    DecisionStatus,
    InvalidStatusTransition,
    validate_transition,
)
from orchestration import events
from orchestration.brief import (
    compile_brief,
    format_transcript,
    is_ready_for_debate,
    merge_summary,
    parse_summary,
    read_profiles,
)
from orchestration.events import EventBus
from orchestration.protocols import DebateProtocol, Slot, create_protocol

logger = logging.getLogger(__name__)

AgentFactory = Callable[[AgentMeta], CommitteeAgent]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class DebateError(RuntimeError):
    """Base class for debate start-up failures."""


class DebateAlreadyRunning(DebateError):
    pass


class DecisionNotFound(DebateError):
    pass


class DebateNotReady(DebateError):
    pass


class NoDebatersSelected(DebateError):
    pass


class DecisionClosed(DebateError):
    """The decision's status does not allow a new debate (decided/reviewed)."""


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------

@dataclass
class DebateRun:
    """State of one active debate run."""

    decision_id: str
    run_number: int
    quick_mode: bool
    prior_status: DecisionStatus
    cancel: CancellationToken = field(default_factory=CancellationToken)
    turns: list[DebateTurnRecord] = field(default_factory=list)
    audio: LiveAudioSession | None = None
    task: asyncio.Task[DebateResult] | None = None


@dataclass
class DebateResult:
    """Outcome of a finished run."""

    decision_id: str
    run_number: int
    status: str  # completed | cancelled | failed
    turns: list[DebateTurnRecord]
    summary: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "run_number": self.run_number,
            "status": self.status,
            "total_turns": len(self.turns),
            "error": self.error,
        }


class DebateManager:
    """High-level controller for committee debates.

    Parameters
    ----------
    db : CommitteeDatabase
        Persistence for decisions and turns.
    bus : EventBus
        Outgoing event channel.
    registry : AgentRegistry
        Persona catalog; debaters speak in registry order.
    agent_factory : Callable[[AgentMeta], CommitteeAgent]
        Builds a provider-backed agent for a persona.
    tts : TTSPipeline | None
        Live audio pipeline; ``None`` disables audio.
    data_dir : Path | None
        Root for profile notes used in the brief.
    """

    def __init__(
        self,
        db: CommitteeDatabase,
        bus: EventBus,
        registry: AgentRegistry,
        agent_factory: AgentFactory,
        tts: TTSPipeline | None = None,
        data_dir: str | Path | None = None,
    ) -> None:
        self.db = db
        self.bus = bus
        self.registry = registry
        self.agent_factory = agent_factory
        self.tts = tts
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self._runs: dict[str, DebateRun] = {}
        # Decisions between the start check and run registration.
        self._starting: set[str] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_running(self, decision_id: str) -> bool:
        return decision_id in self._runs or decision_id in self._starting

    async def start_debate(
        self,
        decision_id: str,
        quick_mode: bool = False,
        selected_agents: set[str] | list[str] | None = None,
    ) -> asyncio.Task[DebateResult]:
        """Validate, mark the decision ``debating`` and launch the run.

        Returns the background task; awaiting it yields the
        :class:`DebateResult`.  Validation problems raise before anything
        is written.
        """
        if self.is_running(decision_id):
            raise DebateAlreadyRunning(f"A debate is already running for {decision_id}")

        # Claimed before the first await so a concurrent start sees it.
        self._starting.add(decision_id)
        try:
            decision = await self.db.get_decision(decision_id)
            if decision is None:
                raise DecisionNotFound(decision_id)
            try:
                validate_transition(decision.status, DecisionStatus.DEBATING)
            except InvalidStatusTransition as exc:
                raise DecisionClosed(
                    f"Decision is {decision.status.value}; reopen it before starting a debate."
                ) from exc
            if not is_ready_for_debate(parse_summary(decision.summary_json)):
                raise DebateNotReady(
                    "Decision needs at least one option and one variable before starting a debate."
                )
            debaters = self.registry.debaters(selected_agents)
            if not debaters:
                raise NoDebatersSelected("No debaters selected")

            await self.db.update_decision_status(
                decision_id,
                DecisionStatus.DEBATING,
                debate_started_at=datetime.now(timezone.utc),
            )
            run = DebateRun(
                decision_id=decision_id,
                run_number=await self.db.start_debate_run(decision_id),
                quick_mode=quick_mode,
                prior_status=decision.status,
            )
            if self.tts is not None:
                run.audio = self.tts.begin_live(decision_id)
            self._runs[decision_id] = run
        finally:
            self._starting.discard(decision_id)

        protocol = create_protocol(quick_mode)
        self._publish(
            events.DEBATE_STARTED,
            decision_id,
            run_number=run.run_number,
            quick_mode=quick_mode,
            agents=[d.key for d in debaters],
            live_audio=run.audio is not None,
        )
        logger.info(
            "Starting %s debate for %s (run %d, %d debaters)",
            protocol.name,
            decision_id,
            run.run_number,
            len(debaters),
        )
        run.task = asyncio.create_task(self._run(run, decision, protocol, debaters))
        return run.task

    def cancel_debate(self, decision_id: str) -> bool:
        """Request a cooperative stop. Returns ``False`` if nothing is running."""
        run = self._runs.get(decision_id)
        if run is None:
            return False
        run.cancel.cancel()
        logger.info("Cancellation requested for %s", decision_id)
        return True

    async def auto_start_if_ready(
        self, decision_id: str, quick_mode: bool = False
    ) -> asyncio.Task[DebateResult] | None:
        """Start a debate once the summary is complete enough, if idle."""
        if self.is_running(decision_id):
            return None
        decision = await self.db.get_decision(decision_id)
        if decision is None or decision.status not in (
            DecisionStatus.EXPLORING,
            DecisionStatus.ANALYZING,
        ):
            return None
        if not is_ready_for_debate(parse_summary(decision.summary_json)):
            return None
        try:
            return await self.start_debate(decision_id, quick_mode=quick_mode)
        except DebateAlreadyRunning:
            return None

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        run: DebateRun,
        decision: DecisionRecord,
        protocol: DebateProtocol,
        debaters: list[AgentMeta],
    ) -> DebateResult:
        decision_id = run.decision_id
        try:
            messages = await self.db.get_messages(decision.conversation_id)
            brief = compile_brief(decision, messages, read_profiles(self.data_dir))
            agents = {m.key: self.agent_factory(m) for m in debaters}
            agents[self.registry.moderator.key] = self.agent_factory(self.registry.moderator)

            schedule = protocol.schedule([d.key for d in debaters], self.registry.moderator.key)
            moderator_text = ""
            for position, (slot, key) in enumerate(schedule):
                transcript = format_transcript(run.turns, self.registry.label)
                turn = await self._take_turn(run, agents[key], slot, brief, transcript)
                if slot.is_moderator:
                    moderator_text = turn.content
                slot_done = position + 1 == len(schedule) or schedule[position + 1][0] != slot
                if slot_done:
                    self._publish(
                        events.DEBATE_ROUND_COMPLETE,
                        decision_id,
                        round_number=slot.round_number,
                        exchange_number=slot.exchange_number,
                    )

            summary = await self._apply_summary(run, moderator_text, debaters)
            await self.db.update_decision_status(
                decision_id,
                DecisionStatus.RECOMMENDED,
                debate_completed_at=datetime.now(timezone.utc),
            )
            self._publish(
                events.DEBATE_COMPLETE,
                decision_id,
                run_number=run.run_number,
                total_turns=len(run.turns),
            )
            logger.info("Debate for %s completed: %d turns", decision_id, len(run.turns))
            result = DebateResult(
                decision_id, run.run_number, "completed", run.turns, summary=summary
            )
        except StreamCancelled:
            await self._revert_status(run)
            self._publish(
                events.DEBATE_CANCELLED,
                decision_id,
                message="Debate cancelled",
                turns_saved=len(run.turns),
            )
            logger.info("Debate for %s cancelled after %d turns", decision_id, len(run.turns))
            result = DebateResult(decision_id, run.run_number, "cancelled", run.turns)
        except asyncio.CancelledError:
            await self._revert_status(run)
            self._publish(
                events.DEBATE_CANCELLED,
                decision_id,
                message="Debate interrupted",
                turns_saved=len(run.turns),
            )
            logger.warning("Debate task for %s was cancelled", decision_id)
            raise
        except Exception as exc:
            logger.exception("Debate for %s failed", decision_id)
            await self._revert_status(run)
            message = str(exc) if isinstance(exc, LLMError) else f"Debate failed: {exc}"
            self._publish(events.DEBATE_ERROR, decision_id, error=message)
            result = DebateResult(decision_id, run.run_number, "failed", run.turns, error=message)
        finally:
            self._runs.pop(decision_id, None)

        if run.audio is not None:
            await run.audio.finish()
        return result

    async def _take_turn(
        self,
        run: DebateRun,
        agent: CommitteeAgent,
        slot: Slot,
        brief: str,
        transcript: str,
    ) -> DebateTurnRecord:
        if run.cancel.cancelled:
            raise StreamCancelled()

        decision_id = run.decision_id
        tag = {
            "round_number": slot.round_number,
            "exchange_number": slot.exchange_number,
            "agent": agent.key,
        }

        def on_token(token: str) -> None:
            self._publish(events.DEBATE_AGENT_TOKEN, decision_id, token=token, **tag)

        spoken = await agent.speak(self._prompt_for(slot, brief, transcript), on_token, run.cancel)

        turn_id = await self.db.save_turn(
            decision_id,
            slot.round_number,
            slot.exchange_number,
            agent.key,
            spoken.content,
            run_number=run.run_number,
        )
        turn = DebateTurnRecord(
            id=turn_id,
            decision_id=decision_id,
            run_number=run.run_number,
            round_number=slot.round_number,
            exchange_number=slot.exchange_number,
            agent=agent.key,
            content=spoken.content,
        )
        run.turns.append(turn)
        self._publish(events.DEBATE_AGENT_RESPONSE, decision_id, content=turn.content, **tag)
        if run.audio is not None:
            run.audio.submit(turn)

        preview = turn.content[:80] + "…" if len(turn.content) > 80 else turn.content
        logger.info(
            "[R%d.%d] %s (%s/%s): %s",
            slot.round_number,
            slot.exchange_number,
            agent.key,
            spoken.provider,
            spoken.model,
            preview,
        )
        return turn

    @staticmethod
    def _prompt_for(slot: Slot, brief: str, transcript: str) -> str:
        if slot.is_moderator:
            return moderator_prompt(brief, transcript)
        if slot.round_number == 1:
            return round1_prompt(brief)
        if slot.round_number == 2:
            return round2_prompt(brief, transcript, slot.exchange_number)
        if slot.round_number == 3:
            return round3_prompt(brief, transcript)
        raise ValueError(f"No prompt for round {slot.round_number}")

    # ------------------------------------------------------------------
    # Status & summary
    # ------------------------------------------------------------------

    async def _apply_summary(
        self, run: DebateRun, moderator_text: str, debaters: list[AgentMeta]
    ) -> dict[str, Any]:
        update = build_summary_update(
            moderator_text,
            run.turns,
            {d.key: d.label for d in debaters},
        )
        decision = await self.db.get_decision(run.decision_id)
        merged = merge_summary(decision.summary_json if decision else None, update)
        await self.db.update_decision_summary(run.decision_id, merged)
        summary = parse_summary(merged) or {}
        self._publish(
            events.DECISION_SUMMARY_UPDATED,
            run.decision_id,
            summary=summary,
            status=DecisionStatus.RECOMMENDED.value,
        )
        return summary

    async def _revert_status(self, run: DebateRun) -> None:
        try:
            await self.db.update_decision_status(run.decision_id, run.prior_status)
        except Exception:
            logger.exception("Could not restore status of %s", run.decision_id)

    def _publish(self, name: str, decision_id: str, **payload: Any) -> None:
        self.bus.publish(name, {"decision_id": decision_id, **payload})
