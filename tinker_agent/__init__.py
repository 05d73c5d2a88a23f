"""
Tinker Agent

Multi-provider streaming LLM agent engine: vendor adapters over one canonical
stream model, a bounded tool-calling loop, Aider-style edit blocks and token
and cost accounting.
"""

from .agent import TinkerAgent, create_agent
from .agent_loop import AgentLoop, LoopResult
from .provider_runtime import GenerationCancelled, ProviderError, ProviderRuntime, create_provider
from .provider_routing import ProviderSettings
from .token_context import TokenContextManager

__all__ = [
    "AgentLoop",
    "GenerationCancelled",
    "LoopResult",
    "ProviderError",
    "ProviderRuntime",
    "ProviderSettings",
    "TinkerAgent",
    "TokenContextManager",
    "create_agent",
    "create_provider",
]
