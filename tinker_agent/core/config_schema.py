"""
Engine configuration schema.

YAML files are loaded with ``extends:`` support (paths relative to the
including file, merged base-first, lists replaced rather than merged) and
validated against a JSON Schema before being mapped onto dataclasses.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from jsonschema import Draft7Validator

from ..provider_routing import VENDORS, ProviderSettings
from ..state.turn_budget import DEFAULT_MAX_TURNS
from ..tool_calling.tool_executor import MAX_TOOL_RETRIES


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class LoopConfig:
    max_turns: int = DEFAULT_MAX_TURNS
    max_tool_retries: int = MAX_TOOL_RETRIES
    # seconds per tool invocation
    tool_timeout: float = 60.0
    chunk_buffer_size: int = 256
    max_tokens: int = 32000


@dataclass
class LoggingConfig:
    level: str = "INFO"
    debug: bool = False
    debug_dir: str = "~/.tinker-debug"


@dataclass
class WorkspaceConfig:
    root: str = "."
    apply_edits: bool = False


@dataclass
class EngineConfig:
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    loop: LoopConfig = field(default_factory=LoopConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    system_prompt: Optional[str] = None
    model_config_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        validate_config_dict(data)
        return cls(
            provider=_build(ProviderSettings, data.get("provider")),
            loop=_build(LoopConfig, data.get("loop")),
            logging=_build(LoggingConfig, data.get("logging")),
            workspace=_build(WorkspaceConfig, data.get("workspace")),
            system_prompt=data.get("system_prompt"),
            model_config_path=data.get("model_config_path"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build(dc_type: Any, section: Optional[Dict[str, Any]]) -> Any:
    known = {f.name for f in fields(dc_type)}
    return dc_type(**{k: v for k, v in (section or {}).items() if k in known})


CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "extends": {"anyOf": [{"type": "string"}, {"type": "array", "items": {"type": "string"}}]},
        "provider": {
            "type": "object",
            "properties": {
                "vendor": {"type": "string", "enum": sorted(VENDORS.keys())},
                "model": {"type": ["string", "null"]},
                "api_key": {"type": ["string", "null"]},
                "base_url": {"type": ["string", "null"]},
                "use_responses_api": {"type": "boolean"},
                "temperature": {"type": "number", "minimum": 0, "maximum": 2},
                "max_tokens": {"type": "integer", "minimum": 1},
                "azure_endpoint": {"type": ["string", "null"]},
                "azure_api_version": {"type": "string"},
                "azure_deployment": {"type": ["string", "null"]},
                "aws_region": {"type": ["string", "null"]},
                "aws_access_key": {"type": ["string", "null"]},
                "aws_secret_key": {"type": ["string", "null"]},
                "aws_session_token": {"type": ["string", "null"]},
                "default_headers": {"type": "object", "additionalProperties": {"type": "string"}},
                "debug_logging": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "loop": {
            "type": "object",
            "properties": {
                "max_turns": {"type": "integer", "minimum": 1},
                "max_tool_retries": {"type": "integer", "minimum": 1},
                "tool_timeout": {"type": "number", "exclusiveMinimum": 0},
                "chunk_buffer_size": {"type": "integer", "minimum": 1},
                "max_tokens": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
        "logging": {
            "type": "object",
            "properties": {
                "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
                "debug": {"type": "boolean"},
                "debug_dir": {"type": "string"},
            },
            "additionalProperties": False,
        },
        "workspace": {
            "type": "object",
            "properties": {
                "root": {"type": "string"},
                "apply_edits": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "system_prompt": {"type": ["string", "null"]},
        "model_config_path": {"type": ["string", "null"]},
    },
    "additionalProperties": False,
}


def validate_config_dict(data: Any) -> None:
    if not isinstance(data, dict):
        raise ConfigValidationError("Engine config must be a mapping")
    errors = sorted(Draft7Validator(CONFIG_SCHEMA).iter_errors(data), key=lambda e: list(e.absolute_path))
    if errors:
        messages: List[str] = []
        for err in errors:
            where = ".".join(str(p) for p in err.absolute_path) or "<root>"
            messages.append(f"{where}: {err.message}")
        raise ConfigValidationError("Invalid engine config: " + "; ".join(messages))


def _load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigValidationError(f"Cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(doc, dict):
        raise ConfigValidationError(f"Config {path} must contain a mapping")
    return doc


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two dicts recursively. Lists/tuples are replaced, not merged.
    Scalars replace.
    """
    out: Dict[str, Any] = dict(base)
    for k, v in (override or {}).items():
        if isinstance(out.get(k), dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _resolve_extends(doc: Dict[str, Any], config_path: Path, seen: Optional[List[Path]] = None) -> Dict[str, Any]:
    extends_val = doc.get("extends")
    if not extends_val:
        return doc
    seen = list(seen or []) + [config_path]
    paths = list(extends_val) if isinstance(extends_val, (list, tuple)) else [extends_val]

    merged: Dict[str, Any] = {}
    for rel in paths:
        base_path = (config_path.parent / str(rel)).resolve()
        if base_path in seen:
            raise ConfigValidationError(f"Circular extends: {base_path}")
        base_doc = _resolve_extends(_load_yaml(base_path), base_path, seen)
        merged = _deep_merge(merged, base_doc)
    return _deep_merge(merged, {k: v for k, v in doc.items() if k != "extends"})


def load_engine_config(path: Union[str, Path]) -> EngineConfig:
    """Load, merge and validate an engine config file."""

    config_path = Path(path).resolve()
    doc = _resolve_extends(_load_yaml(config_path), config_path)
    return EngineConfig.from_dict(doc)
