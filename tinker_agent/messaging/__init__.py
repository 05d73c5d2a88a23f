"""
Message formatting and UI events for the agent loop
"""

from .events import ChunkBuffer, EventChannel
from .message_formatter import MessageFormatter

__all__ = ["ChunkBuffer", "EventChannel", "MessageFormatter"]
