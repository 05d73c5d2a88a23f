import pytest
import yaml

from tinker_agent.core import (
    ConfigValidationError,
    EngineConfig,
    load_engine_config,
    validate_config_dict,
)
from tinker_agent.core.config_schema import _deep_merge


def _write(path, data):
    path.write_text(yaml.safe_dump(data))
    return path


def test_defaults():
    config = EngineConfig.from_dict({})
    assert config.provider.vendor == "openai"
    assert config.loop.max_turns == 25
    assert config.loop.max_tool_retries == 3
    assert config.loop.chunk_buffer_size == 256
    assert config.logging.debug is False
    assert config.workspace.apply_edits is False


def test_extends_merges_base_first_and_replaces_lists(tmp_path):
    _write(
        tmp_path / "base.yaml",
        {
            "provider": {"vendor": "openrouter", "model": "openai/gpt-4o", "default_headers": {"X-Title": "base"}},
            "loop": {"max_turns": 10, "tool_timeout": 5},
        },
    )
    (tmp_path / "profiles").mkdir()
    child = _write(
        tmp_path / "profiles" / "child.yaml",
        {"extends": "../base.yaml", "provider": {"model": "anthropic/claude-sonnet-4"}, "loop": {"max_turns": 4}},
    )

    config = load_engine_config(child)

    assert config.provider.vendor == "openrouter"
    assert config.provider.model == "anthropic/claude-sonnet-4"
    assert config.provider.default_headers == {"X-Title": "base"}
    assert config.loop.max_turns == 4
    assert config.loop.tool_timeout == 5


def test_multiple_extends_apply_in_order(tmp_path):
    _write(tmp_path / "a.yaml", {"logging": {"level": "DEBUG", "debug": True}})
    _write(tmp_path / "b.yaml", {"logging": {"level": "WARNING"}})
    top = _write(tmp_path / "top.yaml", {"extends": ["a.yaml", "b.yaml"]})
    config = load_engine_config(top)
    assert config.logging.level == "WARNING"
    assert config.logging.debug is True


def test_circular_extends_is_rejected(tmp_path):
    _write(tmp_path / "a.yaml", {"extends": "b.yaml"})
    _write(tmp_path / "b.yaml", {"extends": "a.yaml"})
    with pytest.raises(ConfigValidationError, match="Circular extends"):
        load_engine_config(tmp_path / "a.yaml")


def test_unknown_vendor_and_fields_fail_validation():
    with pytest.raises(ConfigValidationError) as excinfo:
        validate_config_dict({"provider": {"vendor": "mistral"}, "loop": {"max_turns": 0, "bogus": 1}})
    message = str(excinfo.value)
    assert message.startswith("Invalid engine config: ")
    assert "provider.vendor" in message
    assert "loop.max_turns" in message
    assert "'bogus' was unexpected" in message


def test_unreadable_and_malformed_files(tmp_path):
    with pytest.raises(ConfigValidationError, match="Cannot read config"):
        load_engine_config(tmp_path / "missing.yaml")

    bad = tmp_path / "bad.yaml"
    bad.write_text("provider: [unclosed\n")
    with pytest.raises(ConfigValidationError, match="Invalid YAML"):
        load_engine_config(bad)

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string\n")
    with pytest.raises(ConfigValidationError, match="must contain a mapping"):
        load_engine_config(scalar)


def test_deep_merge_does_not_mutate_inputs():
    base = {"a": {"b": 1, "c": [1, 2]}}
    merged = _deep_merge(base, {"a": {"c": [3]}})
    assert merged == {"a": {"b": 1, "c": [3]}}
    assert base == {"a": {"b": 1, "c": [1, 2]}}


def test_to_dict_round_trips_through_from_dict():
    config = EngineConfig.from_dict({"provider": {"vendor": "bedrock", "aws_region": "eu-west-1"}, "system_prompt": "hi"})
    data = config.to_dict()
    assert data["provider"]["aws_region"] == "eu-west-1"
    assert EngineConfig.from_dict(data) == config
