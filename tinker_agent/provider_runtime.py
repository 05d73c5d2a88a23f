"""Streaming runtimes for model providers.

One runtime class per wire protocol (chat completions, responses, native
tool-use). Vendors are selected by :func:`create_provider` from a
``VendorDescriptor``; all runtimes share the stream consumption loop in
:class:`ProviderRuntime`, so normalization, tool-call assembly, cancellation
and error wrapping live in one place.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type

try:  # pragma: no cover - import guard exercised in runtime
    from openai import AsyncAzureOpenAI, AsyncOpenAI
except ImportError:  # pragma: no cover - covered via error path tests
    AsyncOpenAI = None  # type: ignore[assignment]
    AsyncAzureOpenAI = None  # type: ignore[assignment]

try:  # pragma: no cover - import guard exercised in runtime
    from anthropic import AsyncAnthropic, AsyncAnthropicBedrock
except ImportError:  # pragma: no cover - covered via error path tests
    AsyncAnthropic = None  # type: ignore[assignment]
    AsyncAnthropicBedrock = None  # type: ignore[assignment]

from .provider_ir import ContentDelta, Finish, HistoryShape, StreamResult, ToolCall, UsageEvent
from .provider_normalizer import (
    PendingToolCall,
    StreamNormalizer,
    ToolCallAssembler,
    create_normalizer,
    looks_like_tool_arguments,
)
from .provider_routing import (
    ProviderSettings,
    VendorDescriptor,
    get_tool_translator,
    get_vendor,
    resolve_api_key,
    select_shape,
)

logger = logging.getLogger(__name__)

OnChunk = Callable[[str], Any]
OnToolCall = Callable[[ToolCall], Awaitable[Any]]

_COMPLETION_TOKENS_MODEL_RE = re.compile(r"^(gpt-5|o\d)")
_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.S)
_CANCELLED = object()


class ProviderError(RuntimeError):
    """Raised when a provider call fails. Never retried by the runtime."""

    def __init__(
        self,
        message: str,
        *,
        vendor: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.vendor = vendor
        self.details: Dict[str, Any] = details or {}


class GenerationCancelled(Exception):
    """Raised when a stream is abandoned because cancellation was requested."""

    def __init__(self, partial: str = "", tool_calls: Optional[List[ToolCall]] = None) -> None:
        super().__init__("Generation aborted")
        self.partial = partial
        self.tool_calls = tool_calls or []


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _next_raw(iterator: Any) -> Tuple[bool, Any]:
    try:
        return False, await iterator.__anext__()
    except StopAsyncIteration:
        return True, None


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _uses_completion_tokens(model: str) -> bool:
    return bool(_COMPLETION_TOKENS_MODEL_RE.match(model.lower().rsplit("/", 1)[-1]))


# ---------------------------------------------------------------------------
# Base runtime + registry
# ---------------------------------------------------------------------------


class ProviderRuntime:
    """Uniform provider contract: chat, stream_chat, validate_api_key, list_models."""

    shape = "chat"

    def __init__(
        self,
        descriptor: VendorDescriptor,
        settings: Optional[ProviderSettings] = None,
        *,
        client: Any = None,
        debug_log: Any = None,
    ) -> None:
        self.descriptor = descriptor
        self.settings = settings or ProviderSettings(vendor=descriptor.vendor_id)
        self._client = client
        self.debug_log = debug_log

    # --- client ---------------------------------------------------------
    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self.create_client()
        return self._client

    def create_client(self) -> Any:
        raise NotImplementedError

    @property
    def vendor_id(self) -> str:
        return self.descriptor.vendor_id

    @property
    def history_shape(self) -> HistoryShape:
        return "responses" if self.shape == "responses" else "chat"

    def resolve_model(self, model: Optional[str] = None) -> str:
        return model or self.settings.model or self.descriptor.default_model

    def _require_api_key(self) -> str:
        api_key = resolve_api_key(self.descriptor, self.settings)
        if not api_key:
            raise ProviderError(
                f"{self.descriptor.label} Error: API key not configured "
                f"(set {self.descriptor.api_key_env} or provide one in settings)",
                vendor=self.vendor_id,
            )
        return api_key

    # --- protocol hooks -------------------------------------------------
    def build_request(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        tools: Optional[Sequence[Any]],
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def open_stream(self, request: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def create_normalizer(self) -> StreamNormalizer:
        return create_normalizer(self.shape)

    # --- public API -----------------------------------------------------
    async def chat(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        result = await self.stream_chat(
            messages, None, model=model, max_tokens=max_tokens, temperature=temperature
        )
        return result.content

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        on_chunk: Optional[OnChunk],
        *,
        tools: Optional[Sequence[Any]] = None,
        on_tool_call: Optional[OnToolCall] = None,
        cancel_event: Optional[asyncio.Event] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        turn: int = 0,
    ) -> StreamResult:
        resolved_model = self.resolve_model(model)
        request = self.build_request(
            messages,
            model=resolved_model,
            tools=tools,
            max_tokens=max_tokens or self.settings.max_tokens,
            temperature=self.settings.temperature if temperature is None else temperature,
        )
        self._debug("stream_request", {"vendor": self.vendor_id, "shape": self.shape, "request": request})

        try:
            stream = await self.open_stream(request)
        except ProviderError:
            raise
        except Exception as exc:
            error = self._wrap_error(exc)
            self._debug("stream_error", {"vendor": self.vendor_id, "error": str(error), "details": error.details})
            raise error from exc

        try:
            result = await self._consume(
                stream,
                on_chunk=on_chunk,
                on_tool_call=on_tool_call,
                cancel_event=cancel_event,
                turn=turn,
            )
        except ProviderError as error:
            self._debug("stream_error", {"vendor": self.vendor_id, "error": str(error), "details": error.details})
            raise
        finally:
            await self._close_stream(stream)

        self._debug("stream_response", {"vendor": self.vendor_id, "result": result.to_dict()})
        return result

    async def validate_api_key(self) -> bool:
        try:
            await self._probe()
        except Exception as exc:
            logger.warning("%s API key validation failed: %s", self.descriptor.label, exc)
            return False
        return True

    async def list_models(self) -> List[str]:
        return list(self.descriptor.models)

    async def _probe(self) -> None:
        await self.chat([{"role": "user", "content": "ping"}], max_tokens=1)

    # --- stream consumption --------------------------------------------
    async def _consume(
        self,
        stream: Any,
        *,
        on_chunk: Optional[OnChunk],
        on_tool_call: Optional[OnToolCall],
        cancel_event: Optional[asyncio.Event],
        turn: int,
    ) -> StreamResult:
        normalizer = self.create_normalizer()
        assembler = ToolCallAssembler(turn=turn)
        pending: Optional[PendingToolCall] = None
        parts: List[str] = []
        calls: List[ToolCall] = []
        usage: Dict[str, Any] = {}
        finish: Optional[Finish] = None

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        async def dispatch(ready: List[ToolCall]) -> None:
            for call in ready:
                calls.append(call)
                if on_tool_call is not None:
                    await on_tool_call(call)

        iterator = stream.__aiter__()
        while True:
            if cancelled():
                raise GenerationCancelled("".join(parts), calls)
            try:
                exhausted, raw = await self._next_event(iterator, cancel_event)
            except (GenerationCancelled, ProviderError):
                raise
            except Exception as exc:
                raise self._wrap_error(exc) from exc
            if exhausted:
                break
            if raw is _CANCELLED:
                raise GenerationCancelled("".join(parts), calls)

            self._raise_for_stream_error(raw)
            for event in normalizer.feed(raw):
                if cancelled():
                    raise GenerationCancelled("".join(parts), calls)
                if isinstance(event, ContentDelta):
                    parts.append(event.text)
                    if on_chunk is not None:
                        await _maybe_await(on_chunk(event.text))
                    continue
                if isinstance(event, UsageEvent):
                    for key, value in event.raw.items():
                        if value is not None:
                            usage[key] = value
                    continue
                if isinstance(event, Finish):
                    finish = event
                pending, ready = assembler.advance(pending, event)
                await dispatch(ready)

        # A call may be complete while the vendor reports plain "stop".
        pending, ready = assembler.flush(pending)
        await dispatch(ready)

        content = "".join(parts)
        reason = finish.reason if finish is not None else "incomplete"
        suspect = not calls and looks_like_tool_arguments(content)
        if suspect:
            logger.warning("%s returned text that looks like tool arguments", self.descriptor.label)
        return StreamResult(
            content=content,
            finish_reason=reason,
            was_truncated=reason == "length",
            usage=usage or None,
            tool_calls=calls,
            suspect_tool_arguments=suspect,
        )

    async def _next_event(self, iterator: Any, cancel_event: Optional[asyncio.Event]) -> Tuple[bool, Any]:
        """Read the next raw event; returns ``(False, _CANCELLED)`` when cancellation wins the race."""

        if cancel_event is None:
            return await _next_raw(iterator)
        read_task = asyncio.ensure_future(_next_raw(iterator))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({read_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
        if read_task in done:
            return read_task.result()
        read_task.cancel()
        try:
            await read_task
        except (asyncio.CancelledError, StopAsyncIteration):
            pass
        return False, _CANCELLED

    async def _close_stream(self, stream: Any) -> None:
        closer = getattr(stream, "aclose", None) or getattr(stream, "close", None)
        if not callable(closer):
            return
        try:
            await _maybe_await(closer())
        except Exception as exc:  # pragma: no cover - transport specific
            logger.debug("Ignoring error while closing %s stream: %s", self.descriptor.label, exc)

    def _raise_for_stream_error(self, raw: Any) -> None:
        event_type = _get_attr(raw, "type")
        if event_type == "error":
            error = _get_attr(raw, "error") or raw
            message = _get_attr(error, "message") or str(error)
        elif event_type == "response.failed":
            error = _get_attr(_get_attr(raw, "response"), "error")
            message = _get_attr(error, "message") or "response failed"
        else:
            return
        raise ProviderError(
            f"{self.descriptor.label} Error: {message}",
            vendor=self.vendor_id,
            details={"event_type": event_type},
        )

    def _wrap_error(self, exc: Exception) -> ProviderError:
        details: Dict[str, Any] = {"error_type": type(exc).__name__}
        status_code = getattr(exc, "status_code", None)
        if status_code is not None:
            details["status_code"] = status_code
        request_id = getattr(exc, "request_id", None)
        if request_id:
            details["request_id"] = request_id
        return ProviderError(f"{self.descriptor.label} Error: {exc}", vendor=self.vendor_id, details=details)

    def _debug(self, kind: str, payload: Dict[str, Any]) -> None:
        if self.debug_log is not None:
            self.debug_log.write(kind, payload)


class ProviderRuntimeRegistry:
    """Registry that maps runtime identifiers to implementation classes."""

    def __init__(self) -> None:
        self._runtime_classes: Dict[str, Type[ProviderRuntime]] = {}

    def register_runtime(self, runtime_id: str, runtime_cls: Type[ProviderRuntime]) -> None:
        if not issubclass(runtime_cls, ProviderRuntime):
            raise TypeError(f"Runtime {runtime_cls!r} must inherit ProviderRuntime")
        self._runtime_classes[runtime_id] = runtime_cls

    def get_runtime_class(self, runtime_id: str) -> Optional[Type[ProviderRuntime]]:
        return self._runtime_classes.get(runtime_id)


provider_registry = ProviderRuntimeRegistry()


# ---------------------------------------------------------------------------
# Chat completions runtime (OpenAI, Azure, Gemini, OpenRouter)
# ---------------------------------------------------------------------------


class ChatCompletionsRuntime(ProviderRuntime):
    """Runtime for OpenAI-compatible Chat Completions streaming."""

    shape = "chat"

    def create_client(self) -> Any:
        if AsyncOpenAI is None:
            raise ProviderError("openai package not installed", vendor=self.vendor_id)
        api_key = self._require_api_key()
        if self.vendor_id == "azure":
            endpoint = self.settings.azure_endpoint or self.settings.base_url
            if not endpoint:
                raise ProviderError("Azure OpenAI Error: azure_endpoint not configured", vendor=self.vendor_id)
            kwargs: Dict[str, Any] = {
                "api_key": api_key,
                "azure_endpoint": endpoint,
                "api_version": self.settings.azure_api_version,
            }
            if self.settings.azure_deployment:
                kwargs["azure_deployment"] = self.settings.azure_deployment
            return AsyncAzureOpenAI(**kwargs)

        kwargs = {"api_key": api_key}
        base_url = self.settings.base_url or self.descriptor.base_url
        if base_url:
            kwargs["base_url"] = base_url
        headers = dict(self.descriptor.default_headers)
        headers.update(self.settings.default_headers or {})
        if headers:
            kwargs["default_headers"] = headers
        return AsyncOpenAI(**kwargs)

    def resolve_model(self, model: Optional[str] = None) -> str:
        if self.vendor_id == "azure" and self.settings.azure_deployment and not model:
            return self.settings.azure_deployment
        return super().resolve_model(model)

    # --- data conversion helpers -----------------------------------------
    def convert_messages(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for message in messages:
            item_type = message.get("type")
            if item_type == "function_call":
                tool_call = {
                    "id": message.get("call_id"),
                    "type": "function",
                    "function": {"name": message.get("name"), "arguments": message.get("arguments") or "{}"},
                }
                previous = converted[-1] if converted else None
                if previous and previous.get("role") == "assistant" and previous.get("tool_calls"):
                    previous["tool_calls"].append(tool_call)
                else:
                    converted.append({"role": "assistant", "content": None, "tool_calls": [tool_call]})
                continue
            if item_type == "function_call_output":
                converted.append(
                    {"role": "tool", "tool_call_id": message.get("call_id"), "content": str(message.get("output", ""))}
                )
                continue
            entry = {"role": message.get("role", "user"), "content": message.get("content")}
            for key in ("tool_calls", "tool_call_id", "name"):
                if key in message:
                    entry[key] = message[key]
            converted.append(entry)
        return converted

    def build_request(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        tools: Optional[Sequence[Any]],
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": model,
            "messages": self.convert_messages(messages),
            "stream": True,
        }
        if self.descriptor.supports_stream_usage:
            request["stream_options"] = {"include_usage": True}
        if _uses_completion_tokens(model):
            request["max_completion_tokens"] = max_tokens
        else:
            request["max_tokens"] = max_tokens
            request["temperature"] = temperature
        translated = get_tool_translator(self.shape).translate_all(tools)
        if translated:
            request["tools"] = translated
        return request

    async def open_stream(self, request: Dict[str, Any]) -> Any:
        return await self.client.chat.completions.create(**request)

    async def list_models(self) -> List[str]:
        if self.vendor_id == "azure":
            return list(self.descriptor.models)
        try:
            page = await self.client.models.list()
        except Exception as exc:
            logger.info("Falling back to built-in model list for %s: %s", self.descriptor.label, exc)
            return list(self.descriptor.models)
        ids = [_get_attr(model, "id") for model in (_get_attr(page, "data", None) or [])]
        return [model_id for model_id in ids if model_id] or list(self.descriptor.models)

    async def _probe(self) -> None:
        if self.vendor_id == "azure":
            await super()._probe()
            return
        await self.client.models.list()


provider_registry.register_runtime("chat_completions", ChatCompletionsRuntime)


# ---------------------------------------------------------------------------
# Responses runtime (OpenAI / Azure structured shape)
# ---------------------------------------------------------------------------


class ResponsesRuntime(ChatCompletionsRuntime):
    """Runtime for the Responses API shape."""

    shape = "responses"

    def convert_messages(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for message in messages:
            item_type = message.get("type")
            if item_type == "function_call":
                converted.append(
                    {
                        "type": "function_call",
                        "call_id": message.get("call_id"),
                        "name": message.get("name"),
                        "arguments": message.get("arguments") or "{}",
                    }
                )
                continue
            if item_type == "function_call_output":
                converted.append(
                    {
                        "type": "function_call_output",
                        "call_id": message.get("call_id"),
                        "output": str(message.get("output", "")),
                    }
                )
                continue

            role = message.get("role", "user")
            content = message.get("content")
            if role == "tool":
                converted.append({"role": "user", "content": f"Tool result:\n{content}"})
                continue
            if isinstance(content, list):
                converted.append({"role": role, "content": self._convert_parts(role, content)})
            else:
                converted.append({"role": role, "content": content or ""})
        return converted

    def _convert_parts(self, role: str, parts: List[Any]) -> List[Dict[str, Any]]:
        text_type = "output_text" if role == "assistant" else "input_text"
        converted: List[Dict[str, Any]] = []
        for part in parts:
            if isinstance(part, str):
                converted.append({"type": text_type, "text": part})
                continue
            part_type = part.get("type")
            if part_type in {"text", "input_text", "output_text"}:
                converted.append({"type": text_type, "text": part.get("text", "")})
            elif part_type in {"image_url", "input_image"}:
                image = part.get("image_url")
                url = image.get("url") if isinstance(image, dict) else image
                converted.append({"type": "input_image", "image_url": url})
            else:
                converted.append(dict(part))
        return converted

    def build_request(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        tools: Optional[Sequence[Any]],
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": model,
            "input": self.convert_messages(messages),
            "stream": True,
            "max_output_tokens": max_tokens,
        }
        if not _uses_completion_tokens(model) and "codex" not in model.lower():
            request["temperature"] = temperature
        translated = get_tool_translator(self.shape).translate_all(tools)
        if translated:
            request["tools"] = translated
        return request

    async def open_stream(self, request: Dict[str, Any]) -> Any:
        return await self.client.responses.create(**request)


provider_registry.register_runtime("responses", ResponsesRuntime)


# ---------------------------------------------------------------------------
# Native tool-use runtime (Bedrock / Anthropic Messages)
# ---------------------------------------------------------------------------


class NativeToolUseRuntime(ProviderRuntime):
    """Runtime for the Messages API with native ``tool_use`` blocks."""

    shape = "native"

    def create_client(self) -> Any:
        if self.vendor_id == "bedrock":
            if AsyncAnthropicBedrock is None:
                raise ProviderError("anthropic package not installed", vendor=self.vendor_id)
            kwargs: Dict[str, Any] = {}
            if self.settings.aws_region:
                kwargs["aws_region"] = self.settings.aws_region
            if self.settings.aws_access_key:
                kwargs["aws_access_key"] = self.settings.aws_access_key
            if self.settings.aws_secret_key:
                kwargs["aws_secret_key"] = self.settings.aws_secret_key
            if self.settings.aws_session_token:
                kwargs["aws_session_token"] = self.settings.aws_session_token
            return AsyncAnthropicBedrock(**kwargs)

        if AsyncAnthropic is None:
            raise ProviderError("anthropic package not installed", vendor=self.vendor_id)
        kwargs = {"api_key": self._require_api_key()}
        if self.settings.base_url:
            kwargs["base_url"] = self.settings.base_url
        return AsyncAnthropic(**kwargs)

    def convert_messages(self, messages: List[Dict[str, Any]]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        system_parts: List[str] = []
        converted: List[Dict[str, Any]] = []

        def append(role: str, blocks: List[Dict[str, Any]]) -> None:
            if not blocks:
                return
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": list(blocks)})

        for message in messages:
            item_type = message.get("type")
            if item_type == "function_call":
                append("assistant", [self._tool_use_block(message.get("call_id"), message.get("name"), message.get("arguments"))])
                continue
            if item_type == "function_call_output":
                append("user", [self._tool_result_block(message.get("call_id"), message.get("output"))])
                continue

            role = message.get("role", "user")
            content = message.get("content")
            if role == "system":
                system_parts.append(content if isinstance(content, str) else json.dumps(content))
                continue
            if role == "tool":
                append("user", [self._tool_result_block(message.get("tool_call_id"), content)])
                continue

            blocks = self._convert_content(content)
            if role == "assistant":
                for tool_call in message.get("tool_calls") or []:
                    function = tool_call.get("function", {})
                    blocks.append(self._tool_use_block(tool_call.get("id"), function.get("name"), function.get("arguments")))
            append("assistant" if role == "assistant" else "user", blocks)

        system_prompt = "\n\n".join(part for part in system_parts if part) or None
        return system_prompt, converted

    def _convert_content(self, content: Any) -> List[Dict[str, Any]]:
        if content is None:
            return []
        if isinstance(content, str):
            return [{"type": "text", "text": content}] if content else []
        blocks: List[Dict[str, Any]] = []
        for part in content:
            if isinstance(part, str):
                blocks.append({"type": "text", "text": part})
                continue
            part_type = part.get("type")
            if part_type in {"text", "input_text", "output_text"}:
                blocks.append({"type": "text", "text": part.get("text", "")})
            elif part_type in {"image_url", "input_image"}:
                image = part.get("image_url")
                url = image.get("url") if isinstance(image, dict) else image
                match = _DATA_URL_RE.match(url or "")
                if match:
                    source = {"type": "base64", "media_type": match.group("mime"), "data": match.group("data")}
                else:
                    source = {"type": "url", "url": url}
                blocks.append({"type": "image", "source": source})
            else:
                blocks.append(dict(part))
        return blocks

    def _tool_use_block(self, call_id: Optional[str], name: Optional[str], arguments: Any) -> Dict[str, Any]:
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except ValueError:
                arguments = {"raw": arguments}
        return {"type": "tool_use", "id": call_id, "name": name, "input": arguments or {}}

    def _tool_result_block(self, call_id: Optional[str], output: Any) -> Dict[str, Any]:
        if not isinstance(output, str):
            output = json.dumps(output)
        return {"type": "tool_result", "tool_use_id": call_id, "content": output}

    def build_request(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        tools: Optional[Sequence[Any]],
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        system_prompt, converted = self.convert_messages(messages)
        request: Dict[str, Any] = {
            "model": model,
            "messages": converted,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": True,
        }
        if system_prompt:
            request["system"] = system_prompt
        translated = get_tool_translator(self.shape).translate_all(tools)
        if translated:
            request["tools"] = translated
        return request

    async def open_stream(self, request: Dict[str, Any]) -> Any:
        return await self.client.messages.create(**request)


provider_registry.register_runtime("native_tool_use", NativeToolUseRuntime)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_provider(
    settings: ProviderSettings,
    *,
    client: Any = None,
    secret_store: Any = None,
    debug_log: Any = None,
) -> ProviderRuntime:
    """Build the runtime for ``settings.vendor``, choosing the request shape for its model."""

    try:
        descriptor = get_vendor(settings.vendor)
    except ValueError as exc:
        raise ProviderError(str(exc), vendor=settings.vendor) from exc

    if not settings.api_key and secret_store is not None:
        stored = secret_store.get(f"{descriptor.vendor_id}.api_key")
        if stored:
            settings.api_key = stored

    shape = select_shape(descriptor, settings)
    runtime_id = "responses" if shape == "responses" else descriptor.runtime_id
    runtime_cls = provider_registry.get_runtime_class(runtime_id)
    if runtime_cls is None:
        raise ProviderError(f"Unknown provider runtime '{runtime_id}' for provider '{descriptor.vendor_id}'")
    logger.debug("Using %s runtime for %s", runtime_id, descriptor.vendor_id)
    return runtime_cls(descriptor, settings, client=client, debug_log=debug_log)
