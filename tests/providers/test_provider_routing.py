import pytest

from tinker_agent.provider_ir import ToolDeclaration
from tinker_agent.provider_routing import (
    VENDORS,
    ProviderSettings,
    get_tool_translator,
    get_vendor,
    resolve_api_key,
    select_shape,
)
from tinker_agent.provider_runtime import (
    ChatCompletionsRuntime,
    NativeToolUseRuntime,
    ProviderError,
    ProviderRuntime,
    create_provider,
    provider_registry,
)
from tinker_agent.secrets_store import InMemorySecretStore


@pytest.mark.parametrize(
    "vendor,model,flag,expected",
    [
        ("openai", "gpt-4o", False, "chat"),
        ("openai", "gpt-4o", True, "responses"),
        ("openai", "gpt-5-codex", False, "responses"),
        ("azure", "gpt-5-codex", False, "responses"),
        ("gemini", "gemini-2.5-pro", True, "chat"),
        ("openrouter", "openai/gpt-5-codex", False, "chat"),
        ("bedrock", None, True, "native"),
        ("anthropic", None, False, "native"),
    ],
)
def test_select_shape(vendor, model, flag, expected):
    settings = ProviderSettings(vendor=vendor, model=model, use_responses_api=flag)
    assert select_shape(get_vendor(vendor), settings) == expected


def test_get_vendor_is_case_insensitive_and_rejects_unknown():
    assert get_vendor("OpenAI") is VENDORS["openai"]
    with pytest.raises(ValueError, match="Unknown provider 'mistral'"):
        get_vendor("mistral")


def test_create_provider_unknown_vendor_raises_provider_error():
    with pytest.raises(ProviderError) as excinfo:
        create_provider(ProviderSettings(vendor="mistral"))
    assert excinfo.value.vendor == "mistral"


@pytest.mark.parametrize(
    "vendor,runtime_cls",
    [
        ("openai", ChatCompletionsRuntime),
        ("azure", ChatCompletionsRuntime),
        ("gemini", ChatCompletionsRuntime),
        ("openrouter", ChatCompletionsRuntime),
        ("bedrock", NativeToolUseRuntime),
        ("anthropic", NativeToolUseRuntime),
    ],
)
def test_every_vendor_gets_a_runtime(vendor, runtime_cls):
    runtime = create_provider(ProviderSettings(vendor=vendor), client=object())
    assert type(runtime) is runtime_cls
    assert runtime.vendor_id == vendor


def test_secret_store_supplies_missing_api_key():
    settings = ProviderSettings(vendor="openrouter")
    create_provider(settings, secret_store=InMemorySecretStore({"openrouter.api_key": "sk-stored"}))
    assert settings.api_key == "sk-stored"

    explicit = ProviderSettings(vendor="openrouter", api_key="sk-explicit")
    create_provider(explicit, secret_store=InMemorySecretStore({"openrouter.api_key": "sk-stored"}))
    assert explicit.api_key == "sk-explicit"


def test_resolve_api_key_prefers_settings_over_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")
    descriptor = get_vendor("openai")
    assert resolve_api_key(descriptor, ProviderSettings()) == "env-key"
    assert resolve_api_key(descriptor, ProviderSettings(api_key="given")) == "given"


def test_translators_produce_each_wire_format():
    tool = ToolDeclaration(name="grep_search", description="Search", parameters={"type": "object"})
    assert get_tool_translator("chat").translate_all([tool]) == [
        {"type": "function", "function": {"name": "grep_search", "description": "Search", "parameters": {"type": "object"}}}
    ]
    assert get_tool_translator("responses").translate_all([tool]) == [
        {"type": "function", "name": "grep_search", "description": "Search", "parameters": {"type": "object"}}
    ]
    assert get_tool_translator("native").translate_all([tool]) == [
        {"name": "grep_search", "description": "Search", "input_schema": {"type": "object"}}
    ]
    assert get_tool_translator("chat").translate_all([]) is None


def test_registry_rejects_non_runtime_classes():
    with pytest.raises(TypeError):
        provider_registry.register_runtime("bogus", dict)
    assert issubclass(provider_registry.get_runtime_class("chat_completions"), ProviderRuntime)
