"""Apply parsed edit blocks to files in a workspace.

Each block is applied independently. Failures are reported per block as an
:class:`ApplyResult` and never abort sibling blocks.
"""

from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .dialects.aider_diff import EditBlock, NewFileBlock, RewriteFileBlock, SearchReplaceBlock
from .workspace_fs import FileSystem, WorkspacePathError

logger = logging.getLogger(__name__)


class ApplyError(Exception):
    """A single edit block could not be applied."""


@dataclass
class ApplyResult:
    success: bool
    path: str
    message: Optional[str] = None
    error: Optional[str] = None
    match_kind: Optional[str] = None
    # (start_line, start_col, end_line, end_col), 0-based, of the replaced region
    range: Optional[Tuple[int, int, int, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "path": self.path}
        if self.message:
            data["message"] = self.message
        if self.error:
            data["error"] = self.error
        if self.match_kind:
            data["match_kind"] = self.match_kind
        if self.range:
            data["range"] = list(self.range)
        return data


def _position(content: str, offset: int) -> Tuple[int, int]:
    before = content[:offset]
    line = before.count("\n")
    col = offset - (before.rfind("\n") + 1)
    return line, col


def find_fuzzy_window(content_lines: Sequence[str], search_lines: Sequence[str]) -> int:
    """Index of the first window whose lines equal ``search_lines`` after trimming, else -1."""

    wanted = [line.strip() for line in search_lines]
    span = len(wanted)
    if span == 0:
        return -1
    for start in range(0, len(content_lines) - span + 1):
        if all(content_lines[start + offset].strip() == wanted[offset] for offset in range(span)):
            return start
    return -1


class DiffApplier:
    def __init__(self, fs: FileSystem):
        self.fs = fs

    # --- public API -------------------------------------------------------
    def apply_block(self, block: EditBlock) -> ApplyResult:
        try:
            if isinstance(block, NewFileBlock):
                return self._create(block)
            if isinstance(block, RewriteFileBlock):
                return self._rewrite(block)
            if isinstance(block, SearchReplaceBlock):
                return self._edit(block)
            raise ApplyError(f"Unknown block type: {type(block).__name__}")
        except (ApplyError, WorkspacePathError) as exc:
            logger.info("Edit block for %s not applied: %s", getattr(block, "path", "?"), exc)
            return ApplyResult(success=False, path=getattr(block, "path", ""), error=str(exc))
        except OSError as exc:
            logger.warning("Filesystem error applying edit to %s: %s", block.path, exc)
            return ApplyResult(success=False, path=block.path, error=f"Failed to apply changes: {exc}")

    def apply_all(self, blocks: Sequence[EditBlock]) -> List[ApplyResult]:
        return [self.apply_block(block) for block in blocks]

    def preview(self, block: EditBlock) -> str:
        """Unified diff of the change ``block`` would make, without writing."""

        original = ""
        if not isinstance(block, NewFileBlock) and self.fs.exists(block.path):
            original = self.fs.read_text(block.path)
        if isinstance(block, SearchReplaceBlock):
            updated = self._replace(original, block)[0] if block.search.strip() else None
            if updated is None:
                updated = original
        else:
            updated = block.content
        diff = difflib.unified_diff(
            original.splitlines(keepends=True),
            updated.splitlines(keepends=True),
            fromfile=f"a/{block.path}",
            tofile=f"b/{block.path}",
        )
        return "".join(diff)

    # --- block kinds ------------------------------------------------------
    def _create(self, block: NewFileBlock) -> ApplyResult:
        if self.fs.exists(block.path):
            raise ApplyError(f"File already exists: {block.path}")
        self.fs.write_text(block.path, block.content)
        return ApplyResult(success=True, path=block.path, message=f"Created new file: {block.path}", match_kind="created")

    def _rewrite(self, block: RewriteFileBlock) -> ApplyResult:
        if not self.fs.exists(block.path):
            raise ApplyError(f"File not found: {block.path}")
        self.fs.write_text(block.path, block.content)
        return ApplyResult(success=True, path=block.path, message=f"Rewrote file: {block.path}", match_kind="rewritten")

    def _edit(self, block: SearchReplaceBlock) -> ApplyResult:
        if not block.search.strip():
            raise ApplyError(
                f"Empty SEARCH section for {block.path}; use NEW FILE or REWRITE FILE to write whole files"
            )
        if not self.fs.exists(block.path):
            raise ApplyError(f"File not found: {block.path}")
        content = self.fs.read_text(block.path)
        updated, match_kind, span = self._replace(content, block)
        if updated is None:
            raise ApplyError(f"Could not find matching code in {block.path}")
        self.fs.write_text(block.path, updated)
        suffix = " (fuzzy match)" if match_kind == "fuzzy" else ""
        return ApplyResult(
            success=True,
            path=block.path,
            message=f"Applied changes to {block.path}{suffix}",
            match_kind=match_kind,
            range=span,
        )

    def _replace(
        self, content: str, block: SearchReplaceBlock
    ) -> Tuple[Optional[str], Optional[str], Optional[Tuple[int, int, int, int]]]:
        index = content.find(block.search)
        if index != -1:
            end = index + len(block.search)
            span = _position(content, index) + _position(content, end)
            return content[:index] + block.replace + content[end:], "exact", span

        content_lines = content.split("\n")
        search_lines = block.search.split("\n")
        if len(search_lines) > 1 and search_lines[-1] == "":
            search_lines = search_lines[:-1]
        start = find_fuzzy_window(content_lines, search_lines)
        if start == -1:
            return None, None, None
        stop = start + len(search_lines)
        replace_lines = block.replace.split("\n") if block.replace else []
        updated = "\n".join(content_lines[:start] + replace_lines + content_lines[stop:])
        return updated, "fuzzy", (start, 0, stop, 0)
