"""
Message formatting for tool exchanges and turn continuations
"""

import json
from typing import Any, Dict, List

from ..provider_ir import HistoryShape

CONTINUE_PREFIX = "Continue EXACTLY from where you left off. "
CONTINUE_IN_CODE_BLOCK = (
    "You were in the middle of a code block - continue the code WITHOUT starting a new ``` block. "
)
CONTINUE_IN_SEARCH_BLOCK = (
    "You were in the middle of a SEARCH/REPLACE block - continue without repeating the file path "
    "or markers you already output. "
)
CONTINUE_SUFFIX = "Do NOT repeat any content you already generated."
TOOL_PLACEHOLDER_TEXT = "Using tools..."
INTERRUPTED_MARKER = "\n\n*Message interrupted*"
INTERRUPTED_BY_ERROR_MARKER = "\n\n*Message interrupted by error*"


class MessageFormatter:
    """Builds history entries in the shape the active provider expects"""

    def __init__(self, shape: HistoryShape = "chat"):
        self.shape = shape

    @staticmethod
    def dump_json(value: Any, indent: Any = None) -> str:
        return json.dumps(value, indent=indent, default=str, ensure_ascii=False)

    def format_tool_exchange(self, turn_text: str, tool_calls: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """History entries for one tool-using turn.

        ``tool_calls`` items carry ``call_id``, ``name``, ``args`` and ``result``.
        """

        entries: List[Dict[str, Any]] = []
        if self.shape == "responses":
            if turn_text:
                entries.append({"role": "assistant", "content": turn_text})
            for call in tool_calls:
                entries.append(
                    {
                        "type": "function_call",
                        "call_id": call["call_id"],
                        "name": call["name"],
                        "arguments": self.dump_json(call["args"]),
                    }
                )
                entries.append(
                    {
                        "type": "function_call_output",
                        "call_id": call["call_id"],
                        "output": self.dump_json(call["result"]),
                    }
                )
            return entries

        entries.append({"role": "assistant", "content": turn_text or TOOL_PLACEHOLDER_TEXT})
        for call in tool_calls:
            entries.append({"role": "user", "content": self.format_tool_result(call["name"], call["result"])})
        return entries

    def format_tool_result(self, tool_name: str, result: Any) -> str:
        return f"Tool result for {tool_name}:\n```json\n{self.dump_json(result, indent=2)}\n```\n\nContinue."

    @staticmethod
    def continuation_prompt(partial_text: str) -> str:
        """Instruction sent after a truncated turn so the model resumes without repeating itself."""

        prompt = CONTINUE_PREFIX
        if partial_text.count("```") % 2 == 1:
            prompt += CONTINUE_IN_CODE_BLOCK
        if partial_text.rfind("<<<<<<< SEARCH") > partial_text.rfind(">>>>>>> REPLACE"):
            prompt += CONTINUE_IN_SEARCH_BLOCK
        return prompt + CONTINUE_SUFFIX

    def format_continuation(self, partial_text: str) -> List[Dict[str, Any]]:
        return [
            {"role": "assistant", "content": partial_text},
            {"role": "user", "content": self.continuation_prompt(partial_text)},
        ]
