"""Committee agents – personas, prompts, LLM providers and moderator parsing."""

from agents.base import AgentTurn, CommitteeAgent
from agents.llm_provider import (
    AnthropicProvider,
    CancellationToken,
    CohereProvider,
    LLMError,
    LLMProvider,
    OpenAIProvider,
    OpenRouterProvider,
    StreamCancelled,
    create_provider,
)
from agents.moderator import build_summary_update, parse_recommendation
from agents.registry import MODERATOR_KEY, AgentKind, AgentMeta, AgentRegistry

__all__ = [
    "MODERATOR_KEY",
    "AgentKind",
    "AgentMeta",
    "AgentRegistry",
    "AgentTurn",
    "AnthropicProvider",
    "CancellationToken",
    "CohereProvider",
    "CommitteeAgent",
    "LLMError",
    "LLMProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "StreamCancelled",
    "build_summary_update",
    "create_provider",
    "parse_recommendation",
]
