"""Committee agent – binds a registry persona to an LLM provider.

Every committee member (debaters and the moderator) is a ``CommitteeAgent``:
- the persona's role text becomes the system prompt
- ``speak`` streams one turn through the provider, forwarding tokens
- debaters' output is normalised into spoken prose before it is returned
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agents.llm_provider import (
    CancellationToken,
    LLMProvider,
    LLMResponse,
    TokenCallback,
)
from agents.prompts import SPOKEN_STYLE_OVERLAY, normalize_spoken_output
from agents.registry import AgentKind, AgentMeta

logger = logging.getLogger(__name__)


@dataclass
class AgentTurn:
    """A finished turn: the text as the agent will be heard, plus provenance."""

    agent: str
    content: str
    raw: str
    provider: str
    model: str
    latency_ms: float


class CommitteeAgent:
    """Provider-agnostic committee member.

    Parameters
    ----------
    meta : AgentMeta
        Registry entry describing the persona.
    provider : LLMProvider
        The LLM backend used for generation.
    temperature : float
        Sampling temperature forwarded to the provider.
    max_tokens : int
        Max output tokens forwarded to the provider.
    """

    def __init__(
        self,
        meta: AgentMeta,
        provider: LLMProvider,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> None:
        self.meta = meta
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def key(self) -> str:
        return self.meta.key

    @property
    def is_moderator(self) -> bool:
        return self.meta.kind == AgentKind.MODERATOR

    @property
    def system_prompt(self) -> str:
        if self.is_moderator:
            return self.meta.role_prompt
        return f"{self.meta.role_prompt}\n\n{SPOKEN_STYLE_OVERLAY}"

    def build_messages(self, prompt: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]

    async def speak(
        self,
        prompt: str,
        on_token: TokenCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> AgentTurn:
        """Stream one turn. Propagates ``StreamCancelled`` and ``LLMError``."""
        resp: LLMResponse = await self.provider.stream(
            self.build_messages(prompt),
            on_token,
            cancel,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        # The moderator's markdown sections are parsed later; keep them intact.
        content = resp.text.strip() if self.is_moderator else normalize_spoken_output(resp.text)
        return AgentTurn(
            agent=self.key,
            content=content,
            raw=resp.text,
            provider=resp.provider,
            model=resp.model,
            latency_ms=resp.latency_ms,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(key={self.key!r}, provider={self.provider})"
