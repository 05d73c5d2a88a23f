"""Read-only workspace tools exposed to the model."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..provider_ir import ToolDeclaration
from ..workspace_fs import LocalFileSystem, WorkspacePathError
from .tool_executor import ToolExecutor
from .tool_schemas import get_tool_declarations

logger = logging.getLogger(__name__)

IGNORED_DIRS = {
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    "out",
    "coverage",
    ".vscode",
    "__pycache__",
    "venv",
    ".venv",
    ".cache",
}
IGNORED_SUFFIXES = (".pyc", ".so", ".dll", ".exe", ".min.js", ".min.css", ".map", ".lock")
MAX_OUTPUT_CHARS = 20000

DANGEROUS_PATTERNS = [
    re.compile(r"\brm\s+-rf\b", re.I),
    re.compile(r"\bmkfs\b", re.I),
    re.compile(r"\bdd\s+if=", re.I),
    re.compile(r">\s*/dev/", re.I),
    re.compile(r"\bchmod\s+777\b", re.I),
    re.compile(r"\bsudo\b", re.I),
    re.compile(r":\(\)\s*\{\s*:\|:\s*&\s*\}\s*;", re.I),
]

WRITE_PATTERNS = [
    (re.compile(r"\bapply_patch\b", re.I), "apply_patch"),
    (re.compile(r"\bpatch\s+-p", re.I), "patch"),
    (re.compile(r"cat\s*<<\s*['\"]?\w+['\"]?", re.I), "heredoc"),
    (re.compile(r"\bcat\s+.*>\s*\S+", re.I), "cat redirect"),
    (re.compile(r"\becho\s+.*>\s*\S+", re.I), "echo redirect"),
    (re.compile(r"\bprintf\s+.*>\s*\S+", re.I), "printf redirect"),
    (re.compile(r"\bsed\s+-i\b", re.I), "sed -i (in-place edit)"),
    (re.compile(r"\bperl\s+-i\b", re.I), "perl -i (in-place edit)"),
    (re.compile(r"\btee\s+\S+", re.I), "tee"),
    (re.compile(r">>\s*\S+"), "append redirect"),
]


def _is_ignored(name: str) -> bool:
    return name in IGNORED_DIRS or name.endswith(IGNORED_SUFFIXES)


def _is_binary(content: str) -> bool:
    for char in content[:8000]:
        code = ord(char)
        if code == 0 or (code < 32 and char not in "\t\n\r"):
            return True
    return False


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + f"\n... [truncated {len(text) - MAX_OUTPUT_CHARS} chars]"


class WorkspaceTools(ToolExecutor):
    """Executes the workspace tools against files under ``root``."""

    def __init__(self, root: str) -> None:
        self.fs = LocalFileSystem(root)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "grep_search": self.grep_search,
            "read_file": self.read_file,
            "read_multiple_files": self.read_multiple_files,
            "get_file_tree": self.get_file_tree,
            "list_files": self.list_files,
            "get_file_info": self.get_file_info,
            "run_command": self.run_command,
        }

    @property
    def root(self) -> str:
        return self.fs.root

    def declarations(self) -> List[ToolDeclaration]:
        return get_tool_declarations(list(self._handlers))

    async def execute(self, name: str, args: Dict[str, Any]) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        return await handler(args)

    def _walk(self):
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if not _is_ignored(d))
            for filename in sorted(filenames):
                if not _is_ignored(filename):
                    yield os.path.join(dirpath, filename)

    # --- tools --------------------------------------------------------------
    async def grep_search(self, args: Dict[str, Any]) -> Dict[str, Any]:
        flags = re.I if args.get("case_insensitive") else 0
        try:
            regex = re.compile(args["pattern"], flags)
        except re.error as exc:
            return {"error": f"Invalid pattern: {exc}"}
        file_pattern = args.get("file_pattern") or ""
        max_results = int(args.get("max_results") or 50)

        results: List[Dict[str, Any]] = []
        truncated = False
        for full in self._walk():
            rel = self.fs.relpath(full)
            if file_pattern and not (
                fnmatch.fnmatch(os.path.basename(full), file_pattern) or fnmatch.fnmatch(rel, file_pattern)
            ):
                continue
            try:
                with open(full, "r", encoding="utf-8") as f:
                    lines = f.read().splitlines()
            except (OSError, UnicodeDecodeError):
                continue
            for number, line in enumerate(lines, start=1):
                if regex.search(line):
                    if len(results) >= max_results:
                        truncated = True
                        break
                    results.append({"file": rel, "line": number, "content": line})
            if truncated:
                break

        if not results:
            return {"results": [], "message": "No matches found"}
        return {"results": results, "total": len(results), "truncated": truncated}

    async def read_file(self, args: Dict[str, Any]) -> Dict[str, Any]:
        file_path = args["file_path"]
        try:
            content = self.fs.read_text(file_path)
        except (OSError, UnicodeDecodeError, WorkspacePathError) as exc:
            return {"error": f"Failed to read file: {exc}"}
        lines = content.split("\n")
        start = (args.get("start_line") or 1) - 1
        end = args.get("end_line") or len(lines)
        start = max(0, min(start, len(lines) - 1))
        end = max(start, min(end, len(lines)))
        numbered = "\n".join(f"{start + idx + 1}:{line}" for idx, line in enumerate(lines[start:end]))
        return {
            "file_path": file_path,
            "total_lines": len(lines),
            "start_line": start + 1,
            "end_line": end,
            "content": numbered,
        }

    async def read_multiple_files(self, args: Dict[str, Any]) -> Dict[str, Any]:
        files: List[Dict[str, Any]] = []
        errors: List[str] = []
        for file_path in args["file_paths"]:
            result = await self.read_file({"file_path": file_path})
            if "error" in result:
                errors.append(f"{file_path}: {result['error']}")
            else:
                files.append(result)
        out: Dict[str, Any] = {"files": files}
        if errors:
            out["errors"] = errors
        return out

    async def get_file_tree(self, args: Dict[str, Any]) -> Dict[str, Any]:
        max_depth = int(args.get("max_depth", 5))
        include_files = args.get("include_files", True)

        def build(path: str, depth: int, prefix: str) -> List[str]:
            if depth > max_depth:
                return []
            try:
                entries = [entry for entry in os.scandir(path) if not _is_ignored(entry.name)]
            except OSError as exc:
                return [f"{prefix}[Error: {exc}]"]
            entries.sort(key=lambda entry: (not entry.is_dir(), entry.name))
            if not include_files:
                entries = [entry for entry in entries if entry.is_dir()]
            out: List[str] = []
            for index, entry in enumerate(entries):
                last = index == len(entries) - 1
                connector = "└── " if last else "├── "
                if entry.is_dir():
                    out.append(f"{prefix}{connector}{entry.name}/")
                    out.extend(build(entry.path, depth + 1, prefix + ("    " if last else "│   ")))
                else:
                    out.append(f"{prefix}{connector}{entry.name}")
            return out

        name = os.path.basename(self.root)
        return {"root": name, "tree": "\n".join([f"{name}/"] + build(self.root, 0, ""))}

    async def list_files(self, args: Dict[str, Any]) -> Dict[str, Any]:
        pattern = args["pattern"]
        max_results = int(args.get("max_results") or 100)
        matches: List[str] = []
        try:
            candidates = sorted(Path(self.root).glob(pattern))
        except (ValueError, NotImplementedError) as exc:
            return {"error": f"Failed to list files: {exc}"}
        for path in candidates:
            rel = os.path.relpath(path, self.root)
            if not path.is_file() or any(_is_ignored(part) for part in Path(rel).parts):
                continue
            matches.append(rel)
            if len(matches) >= max_results:
                break
        return {"files": matches, "total": len(matches), "truncated": len(matches) >= max_results}

    async def get_file_info(self, args: Dict[str, Any]) -> Dict[str, Any]:
        file_path = args["file_path"]
        try:
            full = self.fs.resolve(file_path)
            stat = os.stat(full)
            with open(full, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except (OSError, WorkspacePathError) as exc:
            return {"error": f"Failed to get file info: {exc}"}
        return {
            "file_path": file_path,
            "size_bytes": stat.st_size,
            "size_kb": round(stat.st_size / 1024, 2),
            "last_modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            "total_lines": len(content.split("\n")),
            "is_binary": _is_binary(content),
        }

    async def run_command(self, args: Dict[str, Any]) -> Dict[str, Any]:
        command = args["command"]
        for pattern in DANGEROUS_PATTERNS:
            if pattern.search(command):
                return {"error": "Potentially dangerous command blocked for safety", "command": command}
        for pattern, label in WRITE_PATTERNS:
            if pattern.search(command):
                return {
                    "error": f"WRITE COMMAND BLOCKED: '{label}' is not allowed. run_command is READ-ONLY.",
                    "message": "To modify files, use SEARCH/REPLACE, REWRITE FILE or NEW FILE blocks in your reply.",
                    "blocked_command": command,
                }

        try:
            cwd = self.fs.resolve(args.get("cwd") or ".")
        except WorkspacePathError:
            return {"error": "Working directory must be within workspace", "command": command}
        timeout = int(args.get("timeout") or 30000) / 1000.0

        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.info("Command timed out after %.1fs: %s", timeout, command)
            return {"error": f"Command timed out after {timeout:g}s", "command": command, "cwd": cwd}

        out = _truncate(stdout.decode("utf-8", "replace").strip())
        err = _truncate(stderr.decode("utf-8", "replace").strip())
        if process.returncode != 0:
            return {
                "error": f"Command exited with code {process.returncode}",
                "stdout": out,
                "stderr": err,
                "exit_code": process.returncode,
                "command": command,
            }
        return {"success": True, "stdout": out, "stderr": err, "command": command, "cwd": cwd}
