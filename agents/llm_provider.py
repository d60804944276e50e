"""LLM Provider abstraction layer for OpenAI, Anthropic, Cohere, and OpenRouter.

Provides a unified async *streaming* interface to multiple LLM backends.
Every provider yields text deltas; :meth:`LLMProvider.stream` forwards each
delta to an ``on_token`` callback and honours a :class:`CancellationToken`
so a debate can be stopped mid-sentence.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# Errors & cancellation
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Transport, API or malformed-response failure from a provider."""


class StreamCancelled(Exception):
    """Raised out of :meth:`LLMProvider.stream` once its token is cancelled."""


class CancellationToken:
    """Cooperative cancellation flag shared between a run and its streams."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LLMResponse:
    """Standardised result of a completed stream."""

    text: str
    model: str
    provider: str
    latency_ms: float
    chunks: int = 0


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class LLMProvider(ABC):
    """Provider-agnostic interface that all LLM backends implement."""

    name: str  # e.g. "openai", "anthropic", "cohere"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_key_env: str | None = None,
        timeout: int = 60,
    ) -> None:
        self.model = model
        self.timeout = timeout

        # Resolve API key: explicit > env var > raise
        self.api_key = api_key or os.getenv(api_key_env or "")
        if not self.api_key:
            raise ValueError(
                f"No API key for {self.name}. "
                f"Set {api_key_env!r} or pass api_key explicitly."
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def stream(
        self,
        messages: list[dict[str, str]],
        on_token: TokenCallback | None = None,
        cancel: CancellationToken | None = None,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        """Stream a completion, calling *on_token* for every text delta.

        Raises :class:`StreamCancelled` as soon as *cancel* fires, even while
        waiting on the network; ``on_token`` is never called after that.
        Any other failure (including an empty completion) is an
        :class:`LLMError`.  There is no retry.
        """
        if cancel is not None and cancel.cancelled:
            raise StreamCancelled()

        consumer = asyncio.ensure_future(
            self._consume(messages, on_token, cancel, temperature, max_tokens)
        )
        if cancel is None:
            return await consumer

        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {consumer, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if consumer in done:
                return consumer.result()
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # noqa: BLE001
                logger.debug("[%s] Discarding late stream outcome: %s", self.name, exc)
            raise StreamCancelled()
        finally:
            waiter.cancel()
            if not consumer.done():
                consumer.cancel()

    async def _consume(
        self,
        messages: list[dict[str, str]],
        on_token: TokenCallback | None,
        cancel: CancellationToken | None,
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        start = time.perf_counter()
        parts: list[str] = []
        deltas = self._stream_api(messages, temperature=temperature, max_tokens=max_tokens)
        try:
            async for delta in deltas:
                if cancel is not None and cancel.cancelled:
                    raise StreamCancelled()
                if not delta:
                    continue
                parts.append(delta)
                if on_token is not None:
                    on_token(delta)
        except (StreamCancelled, LLMError):
            raise
        except Exception as exc:
            raise LLMError(f"[{self.name}] {self.model} stream failed: {exc}") from exc
        finally:
            await deltas.aclose()

        if cancel is not None and cancel.cancelled:
            raise StreamCancelled()
        text = "".join(parts)
        if not text.strip():
            raise LLMError(f"[{self.name}] {self.model} returned an empty response")

        elapsed = round((time.perf_counter() - start) * 1000, 1)
        logger.debug(
            "[%s] %s streamed %d chunks (%.0f ms)", self.name, self.model, len(parts), elapsed
        )
        return LLMResponse(
            text=text,
            model=self.model,
            provider=self.name,
            latency_ms=elapsed,
            chunks=len(parts),
        )

    # ------------------------------------------------------------------
    # Backend-specific implementation (override in subclasses)
    # ------------------------------------------------------------------

    @abstractmethod
    def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        """Async generator yielding text deltas."""
        ...

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class OpenAIProvider(LLMProvider):
    """Async OpenAI provider using the ``openai>=1.0`` client."""

    name = "openai"
    base_url: str | None = None

    def __init__(self, model: str = "gpt-4o", **kwargs: Any) -> None:
        kwargs.setdefault("api_key_env", "OPENAI_API_KEY")
        super().__init__(model=model, **kwargs)
        import openai
        self._client = openai.AsyncOpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=self.timeout,
        )

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
        )
        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content


# ---------------------------------------------------------------------------
# OpenRouter
# ---------------------------------------------------------------------------

class OpenRouterProvider(OpenAIProvider):
    """OpenRouter via its OpenAI-compatible API.

    Model names use OpenRouter's format, e.g. ``"anthropic/claude-sonnet-4-5"``
    or ``"openai/gpt-4o"``.
    """

    name = "openrouter"
    base_url = "https://openrouter.ai/api/v1"

    def __init__(self, model: str = "anthropic/claude-sonnet-4-5", **kwargs: Any) -> None:
        kwargs.setdefault("api_key_env", "OPENROUTER_API_KEY")
        super().__init__(model=model, **kwargs)


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class AnthropicProvider(LLMProvider):
    """Async Anthropic provider using the ``anthropic>=0.18`` client."""

    name = "anthropic"

    def __init__(
        self, model: str = "claude-sonnet-4-5", **kwargs: Any
    ) -> None:
        kwargs.setdefault("api_key_env", "ANTHROPIC_API_KEY")
        super().__init__(model=model, **kwargs)
        import anthropic
        self._client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            timeout=self.timeout,
        )

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        # Anthropic uses a separate system parameter
        system_msg = ""
        api_messages: list[dict[str, str]] = []
        for msg in messages:
            if msg["role"] == "system":
                system_msg = msg["content"]
            else:
                api_messages.append(msg)

        stream_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": api_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system_msg:
            stream_kwargs["system"] = system_msg

        async with self._client.messages.stream(**stream_kwargs) as stream:
            async for text in stream.text_stream:
                yield text


# ---------------------------------------------------------------------------
# Cohere
# ---------------------------------------------------------------------------

class CohereProvider(LLMProvider):
    """Async Cohere provider using the ``cohere>=5.0`` client."""

    name = "cohere"

    def __init__(self, model: str = "command-r-plus", **kwargs: Any) -> None:
        kwargs.setdefault("api_key_env", "COHERE_API_KEY")
        super().__init__(model=model, **kwargs)
        import cohere
        self._client = cohere.AsyncClientV2(api_key=self.api_key)

    async def _stream_api(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        async for event in self._client.chat_stream(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        ):
            if event.type == "content-delta":
                yield event.delta.message.content.text


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, type[LLMProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "cohere": CohereProvider,
    "openrouter": OpenRouterProvider,
}


def create_provider(name: str, **kwargs: Any) -> LLMProvider:
    """Instantiate an LLM provider by its short name.

    >>> provider = create_provider("openrouter", model="openai/gpt-4o")
    """
    cls = _PROVIDERS.get(name.lower())
    if cls is None:
        raise ValueError(
            f"Unknown provider {name!r}. Choose from {list(_PROVIDERS)}"
        )
    return cls(**kwargs)
