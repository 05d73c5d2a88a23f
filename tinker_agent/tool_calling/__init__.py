"""
Tool declarations, argument validation and the workspace tool executor
"""

from .tool_executor import (
    MAX_TOOL_RETRIES,
    ToolExecutor,
    ToolRetryTracker,
    ToolValidationError,
    ValidatingToolExecutor,
    is_validation_error,
)
from .tool_schemas import TOOL_SCHEMAS, get_tool_declarations
from .workspace_tools import WorkspaceTools

__all__ = [
    "MAX_TOOL_RETRIES",
    "TOOL_SCHEMAS",
    "ToolExecutor",
    "ToolRetryTracker",
    "ToolValidationError",
    "ValidatingToolExecutor",
    "WorkspaceTools",
    "get_tool_declarations",
    "is_validation_error",
]
