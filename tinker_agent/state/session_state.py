"""
Session state for one agent run
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional


@dataclass
class ToolCallRecord:
    tool: str
    args: Dict[str, Any]
    result: Any
    call_id: str
    turn: int
    # validation retries the user never sees
    hidden: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SessionState:
    """Owns the conversation buffer and tool-call records for a single run"""

    def __init__(self, conversation_id: Optional[str] = None, history: Optional[List[Dict[str, Any]]] = None):
        self.conversation_id = conversation_id
        self.messages: List[Dict[str, Any]] = [dict(message) for message in (history or [])]
        self.tool_calls: List[ToolCallRecord] = []

    def add_message(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    def add_messages(self, messages: List[Dict[str, Any]]) -> None:
        self.messages.extend(messages)

    def record_tool_call(self, record: ToolCallRecord) -> None:
        self.tool_calls.append(record)

    @property
    def visible_tool_calls(self) -> List[ToolCallRecord]:
        return [record for record in self.tool_calls if not record.hidden]
