"""Normalize raw vendor stream events into canonical stream events.

Three wire protocols are understood:

* chat completions chunks (``choices[].delta`` with indexed ``tool_calls``)
* responses events (``response.output_item.added``, argument deltas keyed by item id)
* native tool-use events (``content_block_start`` / ``input_json_delta`` / ``content_block_stop``)

Each normalizer turns one raw event into zero or more events from
:mod:`tinker_agent.provider_ir`. :class:`ToolCallAssembler` then folds the
tool-call events into finalized :class:`ToolCall` objects, threading the
single open call explicitly through ``advance``.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .provider_ir import (
    ContentDelta,
    Finish,
    FinishReason,
    StreamEvent,
    ToolCall,
    ToolCallArgDelta,
    ToolCallDone,
    ToolCallStart,
    UsageEvent,
)

logger = logging.getLogger(__name__)


_STOP_REASONS = {"stop", "end_turn", "stop_sequence", "completed"}
_LENGTH_REASONS = {"length", "max_tokens", "max_output_tokens", "incomplete"}
_TOOL_REASONS = {"tool_calls", "tool_use", "function_call"}


def map_finish_reason(raw_reason: Optional[str]) -> FinishReason:
    """Map a vendor finish/stop reason onto the canonical set."""

    if not raw_reason:
        return "incomplete"
    reason = str(raw_reason).lower()
    if reason in _STOP_REASONS:
        return "stop"
    if reason in _LENGTH_REASONS:
        return "length"
    if reason in _TOOL_REASONS:
        return "tool_calls"
    return "incomplete"


def looks_like_tool_arguments(text: str) -> bool:
    """True when a plain text reply is really a serialized tool-argument object."""

    candidate = (text or "").strip()
    if not candidate.startswith("{"):
        return False
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return False
    return isinstance(parsed, dict) and len(parsed) <= 3 and "reason" in parsed


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _to_dict(obj: Any) -> Optional[Dict[str, Any]]:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return dict(obj)
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        try:
            return dump()
        except Exception:  # pragma: no cover - depends on SDK object internals
            pass
    try:
        return dict(vars(obj))
    except TypeError:
        return None


# ---------------------------------------------------------------------------
# Per-protocol normalizers
# ---------------------------------------------------------------------------


class StreamNormalizer:
    """Interface: convert one raw vendor event into canonical events."""

    def feed(self, raw: Any) -> List[StreamEvent]:
        raise NotImplementedError


class ChatCompletionsNormalizer(StreamNormalizer):
    """Chat completions chunks. Tool calls are keyed by their stream index."""

    def feed(self, raw: Any) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for choice in _get_attr(raw, "choices", None) or []:
            delta = _get_attr(choice, "delta")
            content = _get_attr(delta, "content")
            if content:
                events.append(ContentDelta(text=str(content)))
            for fragment in _get_attr(delta, "tool_calls", None) or []:
                index = _get_attr(fragment, "index", 0)
                key = str(index if index is not None else 0)
                call_id = _get_attr(fragment, "id")
                function = _get_attr(fragment, "function")
                name = _get_attr(function, "name")
                arguments = _get_attr(function, "arguments")
                if call_id or name:
                    events.append(ToolCallStart(key=key, call_id=call_id, name=name))
                if arguments:
                    events.append(ToolCallArgDelta(key=key, fragment=str(arguments)))
            raw_reason = _get_attr(choice, "finish_reason")
            if raw_reason:
                events.append(Finish(reason=map_finish_reason(raw_reason), raw_reason=str(raw_reason)))

        usage = _to_dict(_get_attr(raw, "usage"))
        if usage:
            events.append(UsageEvent(raw=usage))
        return events


class ResponsesNormalizer(StreamNormalizer):
    """Responses-style events. Tool calls are keyed by output item id."""

    def feed(self, raw: Any) -> List[StreamEvent]:
        event_type = _get_attr(raw, "type", "")
        events: List[StreamEvent] = []

        if event_type == "response.output_text.delta":
            delta = _get_attr(raw, "delta")
            if delta:
                events.append(ContentDelta(text=str(delta)))
        elif event_type == "response.output_item.added":
            item = _get_attr(raw, "item")
            if _get_attr(item, "type") == "function_call":
                key = str(_get_attr(item, "id") or _get_attr(item, "call_id"))
                events.append(
                    ToolCallStart(
                        key=key,
                        call_id=_get_attr(item, "call_id") or _get_attr(item, "id"),
                        name=_get_attr(item, "name"),
                    )
                )
                initial = _get_attr(item, "arguments")
                if initial:
                    events.append(ToolCallArgDelta(key=key, fragment=str(initial)))
        elif event_type == "response.function_call_arguments.delta":
            delta = _get_attr(raw, "delta")
            if delta:
                events.append(ToolCallArgDelta(key=str(_get_attr(raw, "item_id")), fragment=str(delta)))
        elif event_type == "response.function_call_arguments.done":
            events.append(ToolCallDone(key=str(_get_attr(raw, "item_id")), arguments=_get_attr(raw, "arguments")))
        elif event_type == "response.output_item.done":
            item = _get_attr(raw, "item")
            if _get_attr(item, "type") == "function_call":
                key = str(_get_attr(item, "id") or _get_attr(item, "call_id"))
                events.append(ToolCallDone(key=key, arguments=_get_attr(item, "arguments")))
        elif event_type in {"response.completed", "response.done", "response.incomplete", "response.failed"}:
            response = _get_attr(raw, "response")
            usage = _to_dict(_get_attr(response, "usage"))
            if usage:
                events.append(UsageEvent(raw=usage))
            status = _get_attr(response, "status") or event_type.rsplit(".", 1)[-1]
            raw_reason = status
            if status == "incomplete":
                details = _get_attr(response, "incomplete_details")
                raw_reason = _get_attr(details, "reason") or "incomplete"
            elif status == "done":
                raw_reason = "completed"
            events.append(Finish(reason=map_finish_reason(raw_reason), raw_reason=str(raw_reason)))
        return events


class NativeToolUseNormalizer(StreamNormalizer):
    """Native tool-use (Messages API) events. Tool calls are keyed by block id."""

    def __init__(self) -> None:
        self._tool_blocks: Dict[int, str] = {}

    def feed(self, raw: Any) -> List[StreamEvent]:
        event_type = _get_attr(raw, "type", "")
        events: List[StreamEvent] = []

        if event_type == "message_start":
            usage = _to_dict(_get_attr(_get_attr(raw, "message"), "usage"))
            if usage:
                events.append(UsageEvent(raw=usage))
        elif event_type == "content_block_start":
            index = _get_attr(raw, "index", 0)
            block = _get_attr(raw, "content_block")
            block_type = _get_attr(block, "type")
            if block_type == "tool_use":
                block_id = str(_get_attr(block, "id") or f"toolu_{index}")
                self._tool_blocks[index] = block_id
                events.append(ToolCallStart(key=block_id, call_id=block_id, name=_get_attr(block, "name")))
            elif block_type == "text":
                text = _get_attr(block, "text")
                if text:
                    events.append(ContentDelta(text=str(text)))
        elif event_type == "content_block_delta":
            index = _get_attr(raw, "index", 0)
            delta = _get_attr(raw, "delta")
            delta_type = _get_attr(delta, "type")
            if delta_type == "text_delta":
                text = _get_attr(delta, "text")
                if text:
                    events.append(ContentDelta(text=str(text)))
            elif delta_type == "input_json_delta":
                partial = _get_attr(delta, "partial_json")
                key = self._tool_blocks.get(index)
                if partial and key is not None:
                    events.append(ToolCallArgDelta(key=key, fragment=str(partial)))
        elif event_type == "content_block_stop":
            key = self._tool_blocks.pop(_get_attr(raw, "index", 0), None)
            if key is not None:
                events.append(ToolCallDone(key=key))
        elif event_type == "message_delta":
            usage = _to_dict(_get_attr(raw, "usage"))
            if usage:
                events.append(UsageEvent(raw=usage))
            raw_reason = _get_attr(_get_attr(raw, "delta"), "stop_reason")
            if raw_reason:
                events.append(Finish(reason=map_finish_reason(raw_reason), raw_reason=str(raw_reason)))
        return events


# ---------------------------------------------------------------------------
# Tool-call assembly
# ---------------------------------------------------------------------------


@dataclass
class PendingToolCall:
    """The single tool call currently receiving argument fragments."""

    key: str
    call_id: Optional[str]
    name: Optional[str]
    fragments: List[str] = field(default_factory=list)
    full_arguments: Optional[str] = None


def _generate_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class ToolCallAssembler:
    """Fold tool-call stream events into finalized :class:`ToolCall` objects.

    At most one call is open at a time. A start for a new key finalizes the
    previous call; ``ToolCallDone`` and ``Finish`` finalize the open call, as
    does :meth:`flush` at stream end. Argument fragments concatenate in
    arrival order.
    """

    def __init__(self, turn: int = 0, id_factory: Optional[Callable[[], str]] = None) -> None:
        self.turn = turn
        self._id_factory = id_factory or _generate_call_id

    def advance(
        self, pending: Optional[PendingToolCall], event: StreamEvent
    ) -> Tuple[Optional[PendingToolCall], List[ToolCall]]:
        if isinstance(event, ToolCallStart):
            if pending is not None and pending.key == event.key and (
                event.call_id is None or pending.call_id in (None, event.call_id)
            ):
                pending.call_id = pending.call_id or event.call_id
                pending.name = pending.name or event.name
                return pending, []
            ready = [self.finalize(pending)] if pending is not None else []
            opened = PendingToolCall(
                key=event.key,
                call_id=event.call_id or self._id_factory(),
                name=event.name,
            )
            return opened, ready

        if isinstance(event, ToolCallArgDelta):
            if pending is not None and pending.key == event.key:
                pending.fragments.append(event.fragment)
                return pending, []
            ready = [self.finalize(pending)] if pending is not None else []
            opened = PendingToolCall(key=event.key, call_id=self._id_factory(), name=None)
            opened.fragments.append(event.fragment)
            return opened, ready

        if isinstance(event, ToolCallDone):
            if pending is None or pending.key != event.key:
                logger.debug("Ignoring completion for tool call %s that is not open", event.key)
                return pending, []
            if event.arguments is not None:
                pending.full_arguments = event.arguments
            return None, [self.finalize(pending)]

        if isinstance(event, Finish):
            return self.flush(pending)

        return pending, []

    def flush(self, pending: Optional[PendingToolCall]) -> Tuple[None, List[ToolCall]]:
        if pending is None:
            return None, []
        return None, [self.finalize(pending)]

    def finalize(self, pending: PendingToolCall) -> ToolCall:
        raw_arguments = "".join(pending.fragments) if pending.fragments else (pending.full_arguments or "")
        arguments: Dict[str, Any] = {}
        error: Optional[str] = None
        if raw_arguments.strip():
            try:
                parsed = json.loads(raw_arguments)
            except ValueError as exc:
                error = f"Invalid JSON in tool arguments: {exc}"
            else:
                if isinstance(parsed, dict):
                    arguments = parsed
                else:
                    error = f"Tool arguments must be a JSON object, got {type(parsed).__name__}"
        if error:
            logger.warning("Tool call %s (%s): %s", pending.call_id, pending.name, error)
        return ToolCall(
            id=pending.call_id or self._id_factory(),
            name=pending.name or "",
            arguments=arguments,
            turn=self.turn,
            raw_arguments=raw_arguments,
            arguments_error=error,
        )


def create_normalizer(protocol: str) -> StreamNormalizer:
    if protocol == "responses":
        return ResponsesNormalizer()
    if protocol == "native":
        return NativeToolUseNormalizer()
    return ChatCompletionsNormalizer()
