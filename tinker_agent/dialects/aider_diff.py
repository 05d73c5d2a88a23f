from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Union


@dataclass(frozen=True)
class NewFileBlock:
    path: str
    content: str
    kind: str = "new"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "file_path": self.path, "content": self.content}


@dataclass(frozen=True)
class RewriteFileBlock:
    path: str
    content: str
    kind: str = "rewrite"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "file_path": self.path, "content": self.content}


@dataclass(frozen=True)
class SearchReplaceBlock:
    path: str
    search: str
    replace: str
    kind: str = "edit"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "file_path": self.path, "search": self.search, "replace": self.replace}


EditBlock = Union[NewFileBlock, RewriteFileBlock, SearchReplaceBlock]


class AiderDiffDialect:
    """
    Parse Aider-style edit blocks out of free-form model text.

    Three block kinds are recognised inside fenced code regions whose first
    non-empty line is the target path: NEW FILE, REWRITE FILE and one or more
    SEARCH/REPLACE pairs. When no fenced region yields a block, the raw text is
    scanned for a path line directly followed by a marker pair. Fragments that
    do not parse are dropped; parsing never raises.
    """

    type_id: str = "diff"

    _FENCE_RE = re.compile(r"^[ \t]*```[^\n]*\n(?P<body>.*?)^[ \t]*```", re.M | re.S)
    _RAW_BLOCK_RE = re.compile(
        r"^(?P<path>[^\n]+)\n[ \t]*<{3,}[ \t]*(?P<kind>SEARCH|NEW FILE|REWRITE FILE)\b.*?"
        r"^[ \t]*>{3,}[ \t]*(?:REPLACE|NEW FILE|REWRITE FILE)[ \t]*$"
        # further pairs for the same path, separated by blank lines at most
        r"(?:\s*^[ \t]*<{3,}[ \t]*SEARCH\b.*?^[ \t]*>{3,}[ \t]*REPLACE[ \t]*$)*",
        re.M | re.S,
    )

    _NEW_FILE_RE = re.compile(
        r"^[ \t]*<{3,}[ \t]*NEW FILE[ \t]*\n(?:(?P<content>.*?)\n)?[ \t]*>{3,}[ \t]*NEW FILE[ \t]*$",
        re.M | re.S,
    )
    _REWRITE_RE = re.compile(
        r"^<{7}[ \t]*REWRITE FILE[ \t]*\n(?:(?P<content>.*?)\n)?>{7}[ \t]*REWRITE FILE[ \t]*$",
        re.M | re.S,
    )
    _SEARCH_REPLACE_RE = re.compile(
        r"^<{7}[ \t]*SEARCH[ \t]*\n(?:(?P<search>.*?)\n)?={7}[ \t]*\n(?:(?P<replace>.*?)\n)?>{7}[ \t]*REPLACE[ \t]*$",
        re.M | re.S | re.I,
    )
    _MARKER_LINE_RE = re.compile(r"^(?:<{3,}|={3,}|>{3,})")

    def prompt_for_edits(self) -> str:
        return (
            "### Editing files\n"
            "Emit every change as a fenced block whose first line is the file path.\n"
            "To change part of a file:\n"
            "```\n"
            "path/to/file.py\n"
            "<<<<<<< SEARCH\n"
            "exact lines currently in the file\n"
            "=======\n"
            "replacement lines\n"
            ">>>>>>> REPLACE\n"
            "```\n"
            "To create a file use `<<<<<<< NEW FILE` ... `>>>>>>> NEW FILE`; to replace a whole file use\n"
            "`<<<<<<< REWRITE FILE` ... `>>>>>>> REWRITE FILE`. A block may hold several SEARCH/REPLACE pairs.\n"
        )

    def parse_blocks(self, text: str) -> List[EditBlock]:
        blocks: List[EditBlock] = []
        if not text:
            return blocks
        for match in self._FENCE_RE.finditer(text):
            blocks.extend(self._parse_region(match.group("body")))
        if blocks:
            return blocks
        for match in self._RAW_BLOCK_RE.finditer(text):
            blocks.extend(self._parse_region(match.group(0)))
        return blocks

    def _extract_path(self, region: str) -> str:
        for line in region.splitlines():
            candidate = line.strip()
            if not candidate:
                continue
            if self._MARKER_LINE_RE.match(candidate):
                return ""
            return candidate.strip("`*\"' ")
        return ""

    def _parse_region(self, region: str) -> List[EditBlock]:
        path = self._extract_path(region)
        if not path:
            return []

        new_match = self._NEW_FILE_RE.search(region)
        if new_match:
            return [NewFileBlock(path=path, content=new_match.group("content") or "")]

        rewrite_match = self._REWRITE_RE.search(region)
        if rewrite_match:
            return [RewriteFileBlock(path=path, content=rewrite_match.group("content") or "")]

        return [
            SearchReplaceBlock(path=path, search=pair.group("search") or "", replace=pair.group("replace") or "")
            for pair in self._SEARCH_REPLACE_RE.finditer(region)
        ]


_default_dialect = AiderDiffDialect()


def parse_edit_blocks(text: str) -> List[EditBlock]:
    return _default_dialect.parse_blocks(text)
