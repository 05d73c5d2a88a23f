"""
State management for the agent loop
"""

from .conversation_store import ConversationStore, InMemoryConversationStore, JSONConversationStore
from .session_state import SessionState, ToolCallRecord
from .turn_budget import TurnBudget

__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "JSONConversationStore",
    "SessionState",
    "ToolCallRecord",
    "TurnBudget",
]
