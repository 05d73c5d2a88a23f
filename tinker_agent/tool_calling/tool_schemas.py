"""JSON Schema declarations for the workspace tools.

Every tool requires a ``reason`` so the model states what it expects to find.
"""

from __future__ import annotations

from typing import Any, Dict, List

from ..provider_ir import ToolDeclaration

REASON_FIELD: Dict[str, Any] = {
    "type": "string",
    "description": "Brief explanation of why you are calling this tool and what you expect to find or accomplish",
}

COMMAND_TYPES = [
    "create_directory",
    "create_file",
    "package_manager",
    "git",
    "build",
    "test",
    "inspect",
    "shell",
]


def _object(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {"reason": REASON_FIELD, **properties},
        "required": ["reason", *required],
        "additionalProperties": False,
    }


TOOL_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "grep_search": _object(
        {
            "pattern": {"type": "string", "description": "The search pattern (supports regex)"},
            "file_pattern": {"type": "string", "description": "Glob of files to search in, e.g. *.py"},
            "case_insensitive": {"type": "boolean", "default": False},
            "max_results": {"type": "integer", "minimum": 1, "default": 50},
        },
        ["pattern"],
    ),
    "read_file": _object(
        {
            "file_path": {"type": "string", "description": "Path relative to the workspace root"},
            "start_line": {"type": "integer", "minimum": 1, "description": "First line to read (1-indexed)"},
            "end_line": {"type": "integer", "minimum": 1, "description": "Last line to read (1-indexed)"},
        },
        ["file_path"],
    ),
    "read_multiple_files": _object(
        {
            "file_paths": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": 1,
                "description": "Paths relative to the workspace root",
            },
        },
        ["file_paths"],
    ),
    "get_file_tree": _object(
        {
            "max_depth": {"type": "integer", "minimum": 0, "default": 5},
            "include_files": {"type": "boolean", "default": True},
        },
        [],
    ),
    "list_files": _object(
        {
            "pattern": {"type": "string", "description": "Glob pattern to match, e.g. src/**/*.py"},
            "max_results": {"type": "integer", "minimum": 1, "default": 100},
        },
        ["pattern"],
    ),
    "get_file_info": _object(
        {"file_path": {"type": "string", "description": "Path relative to the workspace root"}},
        ["file_path"],
    ),
    "run_command": _object(
        {
            "command": {"type": "string", "description": "The shell command to execute (read-only)"},
            "type": {"type": "string", "enum": COMMAND_TYPES},
            "cwd": {"type": "string", "description": "Working directory relative to the workspace root"},
            "timeout": {"type": "integer", "minimum": 1, "default": 30000, "description": "Milliseconds"},
        },
        ["command"],
    ),
}

TOOL_DESCRIPTIONS: Dict[str, str] = {
    "grep_search": "Search file contents in the workspace for a regex pattern. Returns matching lines with file and line number.",
    "read_file": "Read a file from the workspace, optionally limited to a line range. Lines are prefixed with their number.",
    "read_multiple_files": "Read several workspace files in one call.",
    "get_file_tree": "Show the workspace directory tree, skipping build and dependency folders.",
    "list_files": "List workspace files matching a glob pattern.",
    "get_file_info": "Return size, line count and modification time for a workspace file.",
    "run_command": (
        "Run a read-only shell command in the workspace (tests, builds, inspection). "
        "Commands that write files are rejected; use edit blocks in your reply instead."
    ),
}


def get_tool_declarations(names: List[str] = None) -> List[ToolDeclaration]:
    selected = names or list(TOOL_SCHEMAS)
    return [
        ToolDeclaration(name=name, description=TOOL_DESCRIPTIONS.get(name, ""), parameters=TOOL_SCHEMAS[name])
        for name in selected
        if name in TOOL_SCHEMAS
    ]
