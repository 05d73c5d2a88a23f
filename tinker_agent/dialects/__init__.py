"""
Dialects for edit blocks embedded in model text
"""

from .aider_diff import AiderDiffDialect, EditBlock, NewFileBlock, RewriteFileBlock, SearchReplaceBlock, parse_edit_blocks

__all__ = [
    "AiderDiffDialect",
    "EditBlock",
    "NewFileBlock",
    "RewriteFileBlock",
    "SearchReplaceBlock",
    "parse_edit_blocks",
]
