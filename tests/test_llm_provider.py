"""Tests for agents.llm_provider module."""

from __future__ import annotations

import asyncio

import pytest

from agents.llm_provider import (
    CancellationToken,
    LLMError,
    LLMResponse,
    StreamCancelled,
    create_provider,
)
from tests.conftest import MockProvider


class TestMockProvider:
    """Verify the mock provider works correctly for downstream tests."""

    @pytest.mark.asyncio
    async def test_stream_returns_llm_response(self, mock_provider: MockProvider):
        resp = await mock_provider.stream(
            [{"role": "user", "content": "Hello"}],
            temperature=0.5,
            max_tokens=100,
        )
        assert isinstance(resp, LLMResponse)
        assert resp.provider == "mock"
        assert resp.model == "mock-v1"
        assert resp.text.startswith("My position is clear.")
        assert resp.chunks > 1
        assert resp.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_tokens_concatenate_to_text(self):
        provider = MockProvider(responses=["one two three"])
        tokens: list[str] = []
        resp = await provider.stream([{"role": "user", "content": "a"}], tokens.append)
        assert tokens == ["one", " two", " three"]
        assert "".join(tokens) == resp.text

    @pytest.mark.asyncio
    async def test_responses_cycle(self):
        provider = MockProvider(responses=["first", "second"])
        r1 = await provider.stream([{"role": "user", "content": "a"}])
        r2 = await provider.stream([{"role": "user", "content": "b"}])
        r3 = await provider.stream([{"role": "user", "content": "c"}])
        assert [r1.text, r2.text, r3.text] == ["first", "second", "first"]

    @pytest.mark.asyncio
    async def test_call_log_records_parameters(self, mock_provider: MockProvider):
        await mock_provider.stream(
            [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
            temperature=0.9,
            max_tokens=200,
        )
        log = mock_provider.call_log[0]
        assert log["temperature"] == 0.9
        assert log["max_tokens"] == 200
        assert len(log["messages"]) == 2


class TestStreamFailures:
    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        provider = MockProvider(fail_on_call=0)
        with pytest.raises(LLMError, match="mock transport failure"):
            await provider.stream([{"role": "user", "content": "a"}])

    @pytest.mark.asyncio
    async def test_empty_response_is_error(self):
        provider = MockProvider(responses=["   "])
        with pytest.raises(LLMError, match="empty response"):
            await provider.stream([{"role": "user", "content": "a"}])


class TestCancellation:
    @pytest.mark.asyncio
    async def test_already_cancelled_never_calls_api(self, mock_provider: MockProvider):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(StreamCancelled):
            await mock_provider.stream([{"role": "user", "content": "a"}], cancel=token)
        assert mock_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_stops_tokens(self):
        gate = asyncio.Event()
        provider = MockProvider(responses=["alpha beta gamma"], gate=gate)
        token = CancellationToken()
        tokens: list[str] = []

        task = asyncio.create_task(
            provider.stream([{"role": "user", "content": "a"}], tokens.append, token)
        )
        while not tokens:
            await asyncio.sleep(0)
        token.cancel()
        gate.set()

        with pytest.raises(StreamCancelled):
            await task
        await asyncio.sleep(0.01)
        assert tokens == ["alpha"]


class TestCreateProvider:
    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider("nonexistent", api_key="k")

    def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="No API key"):
            create_provider("openai")

    def test_openrouter_provider_created(self):
        provider = create_provider("openrouter", api_key="test-key", model="openai/gpt-4o")
        assert provider.name == "openrouter"
        assert provider.model == "openai/gpt-4o"

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("MY_ANTHROPIC_KEY", "secret")
        provider = create_provider("anthropic", api_key_env="MY_ANTHROPIC_KEY")
        assert provider.api_key == "secret"


class TestLLMResponse:
    def test_frozen_dataclass(self):
        resp = LLMResponse(text="hi", model="m", provider="p", latency_ms=10.0)
        assert resp.text == "hi"
        with pytest.raises(AttributeError):
            resp.text = "modified"  # type: ignore[misc]
