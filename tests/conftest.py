"""Shared fixtures for the test suite.

Provides a MockProvider that streams scripted responses without network
calls, a FakeTTS backend, a manually-driven FakeOutput, and database,
registry and event fixtures for integration tests.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from agents.base import CommitteeAgent
from agents.llm_provider import LLMProvider
from agents.registry import AgentKind, AgentMeta, AgentRegistry
from audio.tts import TTSError, TTSProvider
from data.database import CommitteeDatabase
from data.models import ConversationRecord, DecisionRecord, MessageRecord
from orchestration.events import EventBus
from playback.output import PlaybackError


MODERATOR_TEXT = """\
## Where the Committee Agreed
- Salary matters less than growth
- The move is reversible

## Key Disagreements
- How much the commute matters

## Biases & Blind Spots Identified
- Status quo bias

## Recommendation
**Choice**: Move to Berlin
**Confidence**: High
**Reasoning**: The growth upside outweighs the disruption.

## Votes
- The Rationalist: Move
- The Contrarian: Stay

## What You're Giving Up
- Proximity to family

## Action Plan
1. Negotiate a start date
2. Visit the neighbourhood
"""


# ---------------------------------------------------------------------------
# Mock LLM provider
# ---------------------------------------------------------------------------

class MockProvider(LLMProvider):
    """Deterministic streaming provider for testing – no network calls.

    ``fail_on_call`` raises a transport error on that (0-based) call.
    ``gate`` pauses every stream after its first token until the event is set.
    """

    name = "mock"

    def __init__(
        self,
        model: str = "mock-v1",
        responses: list[str] | None = None,
        fail_on_call: int | None = None,
        gate: asyncio.Event | None = None,
        **kwargs: Any,
    ) -> None:
        # Bypass API-key validation
        self.model = model
        self.timeout = kwargs.get("timeout", 30)
        self.api_key = "mock-key"

        self._responses = responses or [
            "My position is clear. The growth opportunity outweighs the salary cut."
        ]
        self.fail_on_call = fail_on_call
        self.gate = gate
        self._call_count = 0
        self.call_log: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return self._call_count

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ):
        call = self._call_count
        self._call_count += 1
        self.call_log.append(
            {"messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        )
        if self.fail_on_call is not None and call == self.fail_on_call:
            raise ConnectionError("mock transport failure")

        text = self._responses[call % len(self._responses)]
        for i, word in enumerate(text.split(" ")):
            if i == 1 and self.gate is not None:
                await self.gate.wait()
            yield word if i == 0 else " " + word
            await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fake TTS backend
# ---------------------------------------------------------------------------

class FakeTTS(TTSProvider):
    """Returns 16 bytes of silence per character (1 ms of audio per char)."""

    name = "fake"

    def __init__(
        self,
        fail_for: set[str] | None = None,
        delays: dict[str, float] | None = None,
        voices: dict[str, str] | None = None,
    ) -> None:
        # Bypass API-key validation
        self.api_key = "fake-key"
        self.voices = dict(voices or {})
        self.timeout = 5
        self.fail_for = fail_for or set()
        self.delays = delays or {}
        self.requests: list[tuple[str, str, str | None]] = []

    def _default_voice(self, agent: str | None, voice_gender: str) -> str:
        return f"fake-{voice_gender}"

    async def _synthesize_api(self, text: str, voice: str, agent: str | None) -> bytes:
        self.requests.append((text, voice, agent))
        await asyncio.sleep(self.delays.get(agent or "", 0))
        if agent in self.fail_for:
            raise TTSError(f"fake failure for {agent}")
        return b"\x00" * (16 * len(text))


# ---------------------------------------------------------------------------
# Manually driven audio output
# ---------------------------------------------------------------------------

class FakeOutput:
    """AudioOutput whose segments end only when the test calls :meth:`end`."""

    def __init__(self, fail_paths: set[str] | None = None) -> None:
        self.fail_paths = fail_paths or set()
        self.played: list[Path] = []
        self.rate = 1.0
        self.position = 0
        self._playing = False
        self._source: Path | None = None
        self._on_ended: Callable[[], None] | None = None
        self.closed = False

    def play(self, path, duration_ms, on_ended, start_ms=0) -> None:
        path = Path(path)
        if path.name in self.fail_paths:
            raise PlaybackError(f"cannot decode {path.name}")
        self._source = path
        self._on_ended = on_ended
        self._playing = True
        self.position = start_ms
        self.played.append(path)

    def pause(self) -> None:
        self._playing = False

    def resume(self) -> None:
        if self._source is not None:
            self._playing = True

    def stop(self) -> None:
        self._source = None
        self._playing = False
        self._on_ended = None
        self.position = 0

    def seek(self, position_ms: int) -> None:
        self.position = position_ms

    def set_rate(self, rate: float) -> None:
        self.rate = rate

    def close(self) -> None:
        self.stop()
        self.closed = True

    @property
    def position_ms(self) -> int:
        return self.position

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def has_source(self) -> bool:
        return self._source is not None

    def end(self) -> None:
        """Simulate the current segment finishing naturally."""
        callback = self._on_ended
        self.stop()
        if callback is not None:
            callback()


# ---------------------------------------------------------------------------
# Event recording
# ---------------------------------------------------------------------------

class EventRecorder:
    """Bus handler that keeps every event it sees."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, name: str, payload: dict[str, Any]) -> None:
        self.events.append((name, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[dict[str, Any]]:
        return [payload for n, payload in self.events if n == name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def registry(tmp_path) -> AgentRegistry:
    return AgentRegistry(tmp_path)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def fake_tts() -> FakeTTS:
    return FakeTTS()


@pytest.fixture
def fake_output() -> FakeOutput:
    return FakeOutput()


def make_factory(
    debater_provider: LLMProvider,
    moderator_provider: LLMProvider | None = None,
) -> Callable[[AgentMeta], CommitteeAgent]:
    """Agent factory sharing one provider across debaters."""
    moderator_provider = moderator_provider or MockProvider(responses=[MODERATOR_TEXT])

    def build(meta: AgentMeta) -> CommitteeAgent:
        if meta.kind == AgentKind.MODERATOR:
            return CommitteeAgent(meta, moderator_provider)
        return CommitteeAgent(meta, debater_provider)

    return build


@pytest_asyncio.fixture
async def test_db(tmp_path) -> CommitteeDatabase:
    """Fresh SQLite database for testing."""
    db = CommitteeDatabase(db_path=tmp_path / "test_committee.db")
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def ready_decision(test_db: CommitteeDatabase) -> DecisionRecord:
    """A decision with options and variables, ready for a debate."""
    conversation_id = await test_db.create_conversation(
        ConversationRecord(title="Take the Berlin offer?")
    )
    await test_db.add_message(
        MessageRecord(
            conversation_id=conversation_id,
            role="user",
            content="I have two weeks to answer and my partner works remotely.",
        )
    )
    record = DecisionRecord(
        conversation_id=conversation_id,
        title="Take the Berlin offer?",
        summary_json=json.dumps(
            {
                "options": [{"label": "Stay"}, {"label": "Move to Berlin"}],
                "variables": [{"label": "Salary"}, {"label": "Career growth"}],
            }
        ),
    )
    await test_db.create_decision(record)
    return record
