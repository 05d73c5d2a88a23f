"""Bounded multi-turn tool-calling loop.

One :class:`AgentLoop` run drives turns against a :class:`ProviderRuntime`
until the model answers without tools, the turn budget runs out, the caller
cancels, or the provider fails. Every exit path returns a :class:`LoopResult`;
partial text is kept and persisted as interrupted instead of being dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .core.config_schema import LoopConfig
from .dialects.aider_diff import EditBlock, parse_edit_blocks
from .error_handling.error_handler import ErrorHandler
from .messaging import events as ev
from .messaging.events import ChunkBuffer, EventChannel
from .messaging.message_formatter import (
    INTERRUPTED_BY_ERROR_MARKER,
    INTERRUPTED_MARKER,
    MessageFormatter,
)
from .provider_ir import ToolCall
from .provider_runtime import GenerationCancelled, ProviderError, ProviderRuntime
from .state.conversation_store import ConversationStore
from .state.session_state import SessionState, ToolCallRecord
from .state.turn_budget import TurnBudget
from .token_context import ContextStatus, CostBreakdown, TokenContextManager, UsageCounters
from .tool_calling.tool_executor import (
    ToolExecutor,
    ToolRetryTracker,
    ToolValidationError,
    ValidatingToolExecutor,
    is_validation_error,
)

logger = logging.getLogger(__name__)

FINAL_TURN_REFUSAL = "Tool limit reached. This call was not executed. Respond with your final answer now."
RETRY_INSTRUCTION = "Please fix the tool call arguments and try again. {hint}"
BAD_JSON_HINT = "Send the arguments as a single valid JSON object."


@dataclass
class LoopResult:
    text: str = ""
    edit_blocks: List[EditBlock] = field(default_factory=list)
    usage: UsageCounters = field(default_factory=UsageCounters)
    cost: Optional[CostBreakdown] = None
    context_status: Optional[ContextStatus] = None
    turns: int = 0
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    # completed | max_turns | cancelled | error
    stop_reason: str = "completed"
    interrupted: bool = False
    error: Optional[Dict[str, Any]] = None
    suspect_tool_arguments: bool = False
    conversation_id: Optional[str] = None
    messages: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "edit_blocks": [block.to_dict() for block in self.edit_blocks],
            "usage": self.usage.to_dict(),
            "cost": self.cost.to_dict() if self.cost else None,
            "context_status": self.context_status.to_dict() if self.context_status else None,
            "turns": self.turns,
            "tool_calls": [record.to_dict() for record in self.tool_calls],
            "stop_reason": self.stop_reason,
            "interrupted": self.interrupted,
            "error": self.error,
            "suspect_tool_arguments": self.suspect_tool_arguments,
            "conversation_id": self.conversation_id,
        }


class _RunState:
    """Mutable per-run bookkeeping shared by the turn callbacks."""

    def __init__(self, session: SessionState, budget: TurnBudget, retries: ToolRetryTracker) -> None:
        self.session = session
        self.budget = budget
        self.retries = retries
        self.full_parts: List[str] = []
        self.usage = UsageCounters()
        self.cost: Optional[CostBreakdown] = None
        self.suspect = False

    @property
    def text(self) -> str:
        return "".join(self.full_parts)


class AgentLoop:
    def __init__(
        self,
        provider: ProviderRuntime,
        tool_executor: ToolExecutor,
        *,
        system_prompt: str = "",
        events: Optional[EventChannel] = None,
        token_manager: Optional[TokenContextManager] = None,
        store: Optional[ConversationStore] = None,
        config: Optional[LoopConfig] = None,
        error_handler: Optional[ErrorHandler] = None,
        model: Optional[str] = None,
    ) -> None:
        self.provider = provider
        if not isinstance(tool_executor, ValidatingToolExecutor):
            tool_executor = ValidatingToolExecutor(tool_executor)
        self.tool_executor = tool_executor
        self.system_prompt = system_prompt
        self.events = events or EventChannel()
        self.token_manager = token_manager or TokenContextManager()
        self.store = store
        self.config = config or LoopConfig()
        self.error_handler = error_handler or ErrorHandler()
        self.model = provider.resolve_model(model)
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def vendor(self) -> str:
        return self.provider.vendor_id

    def stop(self) -> None:
        """Request cancellation of the running generation."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def run(
        self,
        history: List[Dict[str, Any]],
        *,
        conversation_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LoopResult:
        self._cancel_event = cancel_event or asyncio.Event()
        conversation_id = await self._prepare_conversation(conversation_id)
        state = _RunState(
            SessionState(conversation_id, history),
            TurnBudget(self.config.max_turns),
            ToolRetryTracker(self.config.max_tool_retries),
        )
        result = LoopResult(conversation_id=conversation_id)
        formatter = MessageFormatter(self.provider.history_shape)
        buffer = ChunkBuffer(self.events, self.config.chunk_buffer_size)

        try:
            result.stop_reason = await self._run_turns(state, formatter, buffer)
        except GenerationCancelled:
            await buffer.flush()
            await self._finish_interrupted(state, result, cancelled=True)
            return result
        except Exception as exc:
            await buffer.flush()
            if not isinstance(exc, ProviderError):
                logger.exception("Agent loop failed on turn %d", state.budget.current_turn)
            result.error = self.error_handler.handle_provider_error(exc)
            await self.events.emit(ev.ERROR, result.error)
            await self._finish_interrupted(state, result, cancelled=False)
            return result

        await self._finish_completed(state, result)
        return result

    # --- turns ------------------------------------------------------------
    async def _run_turns(self, state: _RunState, formatter: MessageFormatter, buffer: ChunkBuffer) -> str:
        budget = state.budget
        while not budget.exhausted:
            turn = budget.start_turn()
            final_turn = budget.is_final_turn
            logger.info("Turn %d/%d starting (%s/%s)", turn, budget.max_turns, self.vendor, self.model)

            messages = [{"role": "system", "content": self.system_prompt + budget.advisory()}]
            messages.extend(state.session.messages)
            tools = None if final_turn else self.tool_executor.declarations() or None

            turn_parts: List[str] = []
            exchanges: List[Dict[str, Any]] = []

            async def on_chunk(text: str) -> None:
                turn_parts.append(text)
                state.full_parts.append(text)
                await buffer.add(text)

            async def on_tool_call(call: ToolCall) -> None:
                await buffer.flush()
                exchanges.append(await self._handle_tool_call(call, state, final_turn))

            stream = await self.provider.stream_chat(
                messages,
                on_chunk,
                tools=tools,
                on_tool_call=on_tool_call,
                cancel_event=self._cancel_event,
                model=self.model,
                max_tokens=self.config.max_tokens,
                turn=turn,
            )
            await buffer.flush()
            await self._record_usage(state, stream.usage, turn)
            if stream.suspect_tool_arguments:
                state.suspect = True

            turn_text = "".join(turn_parts)
            if not stream.tool_calls:
                if stream.was_truncated and not budget.exhausted:
                    logger.info("Turn %d truncated; requesting continuation", turn)
                    state.session.add_messages(formatter.format_continuation(turn_text))
                    continue
                state.session.add_message({"role": "assistant", "content": turn_text})
                logger.info("Turn %d finished without tool calls (%s)", turn, stream.finish_reason)
                return "completed"

            state.session.add_messages(formatter.format_tool_exchange(turn_text, exchanges))

        logger.info("Turn budget of %d exhausted", budget.max_turns)
        return "max_turns"

    async def _handle_tool_call(self, call: ToolCall, state: _RunState, final_turn: bool) -> Dict[str, Any]:
        """Run one assembled call and return the exchange entry fed back to the model."""

        exchange: Dict[str, Any] = {"call_id": call.id, "name": call.name, "args": call.arguments}
        session = state.session

        if final_turn:
            logger.info("Refusing %s on the final turn", call.name)
            exchange["result"] = {"error": FINAL_TURN_REFUSAL}
            session.record_tool_call(
                ToolCallRecord(call.name, call.arguments, exchange["result"], call.id, call.turn, hidden=True, error=FINAL_TURN_REFUSAL)
            )
            return exchange

        validation = self._validate(call)
        if validation is not None:
            exchange["result"] = await self._handle_validation_failure(call, validation, state)
            return exchange

        await self.events.emit(
            ev.TOOL_CALL_STARTED,
            {"call_id": call.id, "name": call.name, "args": call.arguments, "turn": call.turn},
        )
        output = await self._execute(call)
        if is_validation_error(output):
            exchange["result"] = await self._handle_validation_failure(call, output, state, announced=True)
            return exchange

        state.retries.record_success(call.id, call.name)
        error = output.get("error") if isinstance(output, dict) else None
        session.record_tool_call(ToolCallRecord(call.name, call.arguments, output, call.id, call.turn, error=error))
        await self.events.emit(
            ev.TOOL_CALL_RESULT,
            {"call_id": call.id, "name": call.name, "result": output, "error": error},
        )
        exchange["result"] = output
        return exchange

    def _validate(self, call: ToolCall) -> Optional[Dict[str, Any]]:
        if call.arguments_error:
            return ToolValidationError(
                call.name,
                f"Invalid JSON arguments for {call.name}: {call.arguments_error}",
                hint=BAD_JSON_HINT,
            ).to_result(call.raw_arguments)
        try:
            self.tool_executor.validate(call.name, call.arguments)
        except ToolValidationError as exc:
            return exc.to_result(call.arguments)
        return None

    async def _execute(self, call: ToolCall) -> Any:
        logger.info("Executing tool %s (%s)", call.name, call.id)
        try:
            return await asyncio.wait_for(
                self.tool_executor.inner.execute(call.name, call.arguments),
                timeout=self.config.tool_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", call.name, self.config.tool_timeout)
            return self.error_handler.handle_timeout(call.name, call.arguments, self.config.tool_timeout)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            return self.error_handler.handle_execution_error(exc, call.name, call.arguments)

    async def _handle_validation_failure(
        self,
        call: ToolCall,
        failure: Dict[str, Any],
        state: _RunState,
        *,
        announced: bool = False,
    ) -> Dict[str, Any]:
        attempt = state.retries.record_failure(call.id, call.name)
        hint = failure.get("hint") or ""
        if state.retries.exhausted(attempt):
            message = f"Validation failed after {attempt} attempts: {failure.get('error')}"
            logger.warning("Tool %s: %s", call.name, message)
            payload = {"error": message, "validation_error": True, "hint": hint, "details": failure.get("details", [])}
            state.session.record_tool_call(
                ToolCallRecord(call.name, call.arguments, payload, call.id, call.turn, error=message)
            )
            if not announced:
                await self.events.emit(
                    ev.TOOL_CALL_STARTED,
                    {"call_id": call.id, "name": call.name, "args": call.arguments, "turn": call.turn},
                )
            await self.events.emit(
                ev.TOOL_CALL_RESULT,
                {"call_id": call.id, "name": call.name, "result": payload, "error": message},
            )
            return payload

        logger.info("Tool %s validation failed (attempt %d/%d)", call.name, attempt, state.retries.max_attempts)
        payload = {
            "error": failure.get("error"),
            "validation_error": True,
            "hint": hint,
            "details": failure.get("details", []),
            "retry_attempt": attempt,
            "instruction": RETRY_INSTRUCTION.format(hint=hint).strip(),
        }
        state.session.record_tool_call(
            ToolCallRecord(call.name, call.arguments, payload, call.id, call.turn, hidden=True, error=payload["error"])
        )
        if announced:
            await self.events.emit(
                ev.TOOL_CALL_RESULT,
                {"call_id": call.id, "name": call.name, "result": payload, "error": payload["error"]},
            )
        return payload

    async def _record_usage(self, state: _RunState, raw_usage: Optional[Dict[str, Any]], turn: int) -> None:
        usage = self.token_manager.normalize_usage(raw_usage, self.vendor)
        if usage is not None:
            state.usage.add(usage)
            self.token_manager.add_cumulative_tokens(usage.total_tokens)
        state.cost = self.token_manager.calculate_cost(state.usage, self.model, self.vendor)
        logger.info(self.token_manager.format_usage_log(usage, state.cost, self.vendor, self.model))
        live = self.token_manager.get_context_status(self.token_manager.get_cumulative_tokens(), self.model, self.vendor)
        await self.events.emit(
            ev.TURN_USAGE_UPDATE,
            {
                "turn": turn,
                "usage": state.usage.to_dict(),
                "turn_usage": usage.to_dict() if usage else None,
                "cost": state.cost.to_dict() if state.cost else None,
                "context_status": live.to_dict(),
            },
        )

    # --- completion -------------------------------------------------------
    def _usage_payload(self, state: _RunState) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(state.usage.to_dict())
        payload["cost"] = state.cost.total_cost if state.cost else None
        payload["provider"] = self.vendor
        payload["model"] = self.model
        return payload

    def _fill_result(self, state: _RunState, result: LoopResult) -> None:
        result.text = state.text
        result.usage = state.usage
        result.cost = state.cost
        result.turns = state.budget.current_turn
        result.tool_calls = state.session.visible_tool_calls
        result.suspect_tool_arguments = state.suspect
        result.messages = state.session.messages

    async def _finish_completed(self, state: _RunState, result: LoopResult) -> None:
        self._fill_result(state, result)
        result.edit_blocks = parse_edit_blocks(result.text)
        result.context_status = self.token_manager.get_context_status(
            state.usage.input_tokens + state.usage.output_tokens, self.model, self.vendor
        )
        usage_payload = self._usage_payload(state)
        await self.events.emit(
            ev.ASSISTANT_COMPLETE,
            {
                "message": result.text,
                "blocks": [block.to_dict() for block in result.edit_blocks],
                "usage": usage_payload,
                "context_status": result.context_status.to_dict(),
                "stop_reason": result.stop_reason,
            },
        )
        logger.info(
            "Run finished after %d turn(s): %s, %d tool call(s)",
            result.turns,
            result.stop_reason,
            len(result.tool_calls),
        )
        await self._persist(
            state,
            {
                "role": "assistant",
                "content": result.text,
                "provider": self.vendor,
                "model": self.model,
                "tool_calls": [record.to_dict() for record in result.tool_calls],
                "code_blocks": [block.to_dict() for block in result.edit_blocks],
                "usage": usage_payload,
            },
            context_max_tokens=result.context_status.max_tokens,
        )

    async def _finish_interrupted(self, state: _RunState, result: LoopResult, *, cancelled: bool) -> None:
        self._fill_result(state, result)
        result.interrupted = True
        result.stop_reason = "cancelled" if cancelled else "error"
        if cancelled:
            logger.info("Generation stopped on turn %d", state.budget.current_turn)
            await self.events.emit(ev.GENERATION_STOPPED, {"text": result.text, "interrupted": True})
        if not result.text:
            return
        marker = INTERRUPTED_MARKER if cancelled else INTERRUPTED_BY_ERROR_MARKER
        await self._persist(
            state,
            {
                "role": "assistant",
                "content": result.text + marker,
                "provider": self.vendor,
                "model": self.model,
                "tool_calls": [record.to_dict() for record in result.tool_calls],
                "usage": self._usage_payload(state),
                "interrupted": True,
            },
        )

    async def _prepare_conversation(self, conversation_id: Optional[str]) -> Optional[str]:
        # Context fullness carries over only from a stored conversation.
        self.token_manager.set_cumulative_tokens(0)
        if self.store is None:
            return conversation_id
        try:
            if conversation_id is None:
                conversation = await self.store.create_conversation()
                return conversation["id"]
            conversation = await self.store.get_conversation(conversation_id)
        except Exception as exc:
            logger.warning("Conversation store unavailable: %s", exc)
            return conversation_id
        if conversation:
            self.token_manager.set_cumulative_tokens(conversation.get("cumulative_tokens"))
        return conversation_id

    async def _persist(
        self,
        state: _RunState,
        message: Dict[str, Any],
        context_max_tokens: Optional[int] = None,
    ) -> None:
        conversation_id = state.session.conversation_id
        if self.store is None or conversation_id is None:
            return
        updates: Dict[str, Any] = {"cumulative_tokens": self.token_manager.get_cumulative_tokens()}
        if context_max_tokens is not None:
            updates["context_max_tokens"] = context_max_tokens
        try:
            await self.store.add_message(conversation_id, message)
            await self.store.update_conversation(conversation_id, updates)
        except Exception as exc:
            logger.error("Failed to persist message for conversation %s: %s", conversation_id, exc)
