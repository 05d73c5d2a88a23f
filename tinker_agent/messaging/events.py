"""
One-way UI event channel with content-delta batching
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

CONTENT_DELTA = "content_delta"
TOOL_CALL_STARTED = "tool_call_started"
TOOL_CALL_RESULT = "tool_call_result"
TURN_USAGE_UPDATE = "turn_usage_update"
ASSISTANT_COMPLETE = "assistant_complete"
ERROR = "error"
GENERATION_STOPPED = "generation_stopped"

EVENT_TYPES = (
    CONTENT_DELTA,
    TOOL_CALL_STARTED,
    TOOL_CALL_RESULT,
    TURN_USAGE_UPDATE,
    ASSISTANT_COMPLETE,
    ERROR,
    GENERATION_STOPPED,
)

DEFAULT_CHUNK_BUFFER_SIZE = 256

Listener = Callable[[str, Dict[str, Any]], Any]


class EventChannel:
    """Pushes ``(event_type, payload)`` pairs to subscribers.

    Listeners may be plain callables or coroutine functions. A listener that
    raises is logged and skipped; the remaining listeners still see the event.
    With ``keep_history`` every emitted event is also kept in ``history`` for
    inspection; leave it off for long-lived channels.
    """

    def __init__(self, keep_history: bool = False) -> None:
        self._listeners: List[Listener] = []
        self.keep_history = keep_history
        self.history: List[Dict[str, Any]] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        payload = payload or {}
        if self.keep_history:
            self.history.append({"type": event_type, "payload": payload})
        for listener in list(self._listeners):
            try:
                outcome = listener(event_type, payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.warning("Event listener failed on %s: %s", event_type, exc)

    def events_of(self, event_type: str) -> List[Dict[str, Any]]:
        return [entry["payload"] for entry in self.history if entry["type"] == event_type]


class ChunkBuffer:
    """Batches content deltas into ``content_delta`` events of roughly ``size`` chars."""

    def __init__(self, channel: EventChannel, size: int = DEFAULT_CHUNK_BUFFER_SIZE) -> None:
        self.channel = channel
        self.size = max(1, size)
        self._parts: List[str] = []
        self._length = 0

    async def add(self, text: str) -> None:
        if not text:
            return
        self._parts.append(text)
        self._length += len(text)
        if self._length >= self.size:
            await self.flush()

    async def flush(self) -> None:
        if not self._parts:
            return
        text = "".join(self._parts)
        self._parts = []
        self._length = 0
        await self.channel.emit(CONTENT_DELTA, {"text": text})
