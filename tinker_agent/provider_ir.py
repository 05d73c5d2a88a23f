"""Provider-agnostic intermediate representation for streamed turns and tool use."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union


Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["stop", "length", "tool_calls", "incomplete"]
HistoryShape = Literal["chat", "responses"]


@dataclass
class ToolDeclaration:
    """A tool offered to the model: name, description and JSON Schema parameters."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolDeclaration":
        params = data.get("parameters") or data.get("input_schema") or {"type": "object", "properties": {}}
        return cls(name=data["name"], description=data.get("description", ""), parameters=params)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass
class ToolCall:
    """A fully assembled tool call. Finalized exactly once by the assembler."""

    id: str
    name: str
    arguments: Dict[str, Any]
    turn: int = 0
    raw_arguments: str = ""
    arguments_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Canonical stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    key: str
    call_id: Optional[str]
    name: Optional[str]


@dataclass(frozen=True)
class ToolCallArgDelta:
    key: str
    fragment: str


@dataclass(frozen=True)
class ToolCallDone:
    key: str
    # Full argument text when the vendor re-sends it on completion.
    arguments: Optional[str] = None


@dataclass(frozen=True)
class UsageEvent:
    raw: Dict[str, Any]


@dataclass(frozen=True)
class Finish:
    reason: FinishReason
    raw_reason: Optional[str] = None


StreamEvent = Union[ContentDelta, ToolCallStart, ToolCallArgDelta, ToolCallDone, UsageEvent, Finish]


@dataclass
class StreamResult:
    """Uniform result of one streamed provider turn."""

    content: str
    finish_reason: FinishReason
    was_truncated: bool
    usage: Optional[Dict[str, Any]] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    suspect_tool_arguments: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "finish_reason": self.finish_reason,
            "was_truncated": self.was_truncated,
            "usage": self.usage,
            "tool_calls": [
                {"id": call.id, "name": call.name, "arguments": call.arguments} for call in self.tool_calls
            ],
        }
