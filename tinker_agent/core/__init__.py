"""
Engine configuration
"""

from .config_schema import (
    ConfigValidationError,
    EngineConfig,
    LoggingConfig,
    LoopConfig,
    WorkspaceConfig,
    load_engine_config,
    validate_config_dict,
)

__all__ = [
    "ConfigValidationError",
    "EngineConfig",
    "LoggingConfig",
    "LoopConfig",
    "WorkspaceConfig",
    "load_engine_config",
    "validate_config_dict",
]
