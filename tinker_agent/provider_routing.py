"""
Vendor routing for the streaming runtimes.

Each supported vendor is a ``VendorDescriptor`` data record rather than a
subclass. The descriptor names the wire protocol the vendor speaks, where its
endpoint lives and which optional capabilities it has. ``select_shape``
decides the request shape for a concrete model, and the tool translators
turn neutral tool declarations into that shape.
"""
from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .provider_ir import ToolDeclaration


@dataclass(frozen=True)
class VendorDescriptor:
    """Describes how to talk to one vendor."""

    vendor_id: str
    label: str
    runtime_id: str
    default_model: str
    models: Tuple[str, ...]
    api_key_env: str
    base_url: Optional[str] = None
    supports_responses_shape: bool = False
    supports_stream_usage: bool = True
    usage_format: str = "openai"
    default_headers: Tuple[Tuple[str, str], ...] = ()


@dataclass
class ProviderSettings:
    """User-facing provider configuration passed to the runtime factory."""

    vendor: str = "openai"
    model: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    use_responses_api: bool = False
    temperature: float = 0.2
    max_tokens: int = 32000
    # azure
    azure_endpoint: Optional[str] = None
    azure_api_version: str = "2024-02-15-preview"
    azure_deployment: Optional[str] = None
    # bedrock
    aws_region: Optional[str] = None
    aws_access_key: Optional[str] = None
    aws_secret_key: Optional[str] = None
    aws_session_token: Optional[str] = None
    default_headers: Dict[str, str] = field(default_factory=dict)
    debug_logging: bool = False


VENDORS: Dict[str, VendorDescriptor] = {
    "openai": VendorDescriptor(
        vendor_id="openai",
        label="OpenAI",
        runtime_id="chat_completions",
        default_model="gpt-4o",
        models=("gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-4.1-mini", "gpt-5", "gpt-5-mini", "gpt-5-codex", "o3", "o4-mini"),
        api_key_env="OPENAI_API_KEY",
        supports_responses_shape=True,
        usage_format="openai",
    ),
    "azure": VendorDescriptor(
        vendor_id="azure",
        label="Azure OpenAI",
        runtime_id="chat_completions",
        default_model="gpt-4o",
        models=("gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-5", "gpt-5-codex"),
        api_key_env="AZURE_OPENAI_API_KEY",
        supports_responses_shape=True,
        usage_format="openai",
    ),
    "gemini": VendorDescriptor(
        vendor_id="gemini",
        label="Gemini",
        runtime_id="chat_completions",
        default_model="gemini-2.5-flash",
        models=("gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.0-flash"),
        api_key_env="GEMINI_API_KEY",
        base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
        usage_format="gemini",
    ),
    "openrouter": VendorDescriptor(
        vendor_id="openrouter",
        label="OpenRouter",
        runtime_id="chat_completions",
        default_model="anthropic/claude-sonnet-4",
        models=("anthropic/claude-sonnet-4", "openai/gpt-4o", "google/gemini-2.5-pro", "deepseek/deepseek-chat"),
        api_key_env="OPENROUTER_API_KEY",
        base_url="https://openrouter.ai/api/v1",
        usage_format="openai",
        default_headers=(("X-Title", "tinker-agent"),),
    ),
    "bedrock": VendorDescriptor(
        vendor_id="bedrock",
        label="Bedrock",
        runtime_id="native_tool_use",
        default_model="anthropic.claude-sonnet-4-20250514-v1:0",
        models=(
            "anthropic.claude-sonnet-4-20250514-v1:0",
            "anthropic.claude-opus-4-20250514-v1:0",
            "anthropic.claude-3-7-sonnet-20250219-v1:0",
            "anthropic.claude-3-5-sonnet-20241022-v2:0",
            "anthropic.claude-3-5-haiku-20241022-v1:0",
        ),
        api_key_env="AWS_ACCESS_KEY_ID",
        usage_format="anthropic",
    ),
    "anthropic": VendorDescriptor(
        vendor_id="anthropic",
        label="Anthropic",
        runtime_id="native_tool_use",
        default_model="claude-sonnet-4-20250514",
        models=("claude-sonnet-4-20250514", "claude-opus-4-20250514", "claude-3-5-haiku-20241022"),
        api_key_env="ANTHROPIC_API_KEY",
        usage_format="anthropic",
    ),
}


def get_vendor(vendor_id: str) -> VendorDescriptor:
    try:
        return VENDORS[vendor_id.lower()]
    except KeyError:
        raise ValueError(f"Unknown provider '{vendor_id}'. Known providers: {', '.join(sorted(VENDORS))}") from None


def select_shape(descriptor: VendorDescriptor, settings: ProviderSettings, model: Optional[str] = None) -> str:
    """Return the request shape for a vendor/model: ``chat``, ``responses`` or ``native``."""

    if descriptor.runtime_id == "native_tool_use":
        return "native"
    model_name = (model or settings.model or descriptor.default_model or "").lower()
    if descriptor.supports_responses_shape and (settings.use_responses_api or "codex" in model_name):
        return "responses"
    return "chat"


def resolve_api_key(descriptor: VendorDescriptor, settings: ProviderSettings) -> Optional[str]:
    return settings.api_key or os.getenv(descriptor.api_key_env)


# ---------------------------------------------------------------------------
# Tool schema translation
# ---------------------------------------------------------------------------


ToolLike = Union[ToolDeclaration, Dict[str, Any]]


def _as_declaration(tool: ToolLike) -> ToolDeclaration:
    return tool if isinstance(tool, ToolDeclaration) else ToolDeclaration.from_dict(tool)


class ToolSchemaTranslator(ABC):
    """Abstract base class for shape-specific tool schema translation"""

    @abstractmethod
    def translate_tool_schema(self, tool: ToolDeclaration) -> Dict[str, Any]:
        """Translate a neutral tool declaration to the wire format"""

    @abstractmethod
    def get_provider_format(self) -> str:
        """Return the shape identifier"""

    def translate_all(self, tools: Optional[Sequence[ToolLike]]) -> Optional[List[Dict[str, Any]]]:
        if not tools:
            return None
        return [self.translate_tool_schema(_as_declaration(tool)) for tool in tools]


class ChatToolTranslator(ToolSchemaTranslator):
    """Nested chat-completions function format"""

    def translate_tool_schema(self, tool: ToolDeclaration) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }

    def get_provider_format(self) -> str:
        return "chat"


class ResponsesToolTranslator(ToolSchemaTranslator):
    """Flat responses-style function format"""

    def translate_tool_schema(self, tool: ToolDeclaration) -> Dict[str, Any]:
        return {
            "type": "function",
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        }

    def get_provider_format(self) -> str:
        return "responses"


class NativeToolTranslator(ToolSchemaTranslator):
    """Native tool-use format with ``input_schema``"""

    def translate_tool_schema(self, tool: ToolDeclaration) -> Dict[str, Any]:
        return {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.parameters,
        }

    def get_provider_format(self) -> str:
        return "native"


_TRANSLATORS: Dict[str, ToolSchemaTranslator] = {
    "chat": ChatToolTranslator(),
    "responses": ResponsesToolTranslator(),
    "native": NativeToolTranslator(),
}


def get_tool_translator(shape: str) -> ToolSchemaTranslator:
    return _TRANSLATORS.get(shape, _TRANSLATORS["chat"])
