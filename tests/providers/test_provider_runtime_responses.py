import pytest

from stream_fakes import FakeOpenAIClient, responses_call, responses_completed, responses_text
from tinker_agent.provider_routing import ProviderSettings
from tinker_agent.provider_runtime import ResponsesRuntime, create_provider


def _runtime(streams, **settings):
    client = FakeOpenAIClient(streams)
    settings.setdefault("vendor", "openai")
    runtime = create_provider(ProviderSettings(**settings), client=client)
    return runtime, client


def test_codex_models_and_flag_select_responses_shape():
    runtime, _ = _runtime([], model="gpt-5-codex")
    assert isinstance(runtime, ResponsesRuntime)
    assert runtime.history_shape == "responses"

    runtime, _ = _runtime([], vendor="azure", use_responses_api=True)
    assert isinstance(runtime, ResponsesRuntime)

    runtime, _ = _runtime([], vendor="gemini", use_responses_api=True)
    assert not isinstance(runtime, ResponsesRuntime)


@pytest.mark.asyncio
async def test_responses_request_and_tool_call_stream():
    events = [responses_text("Checking. ")]
    events += responses_call("fc_1", "call_1", "read_file", ['{"file_', 'path": "a.py"}'])
    events.append(responses_completed({"input_tokens": 30, "output_tokens": 6, "total_tokens": 36}))
    runtime, client = _runtime([events], use_responses_api=True)
    calls = []

    async def on_tool_call(call):
        calls.append(call)

    result = await runtime.stream_chat(
        [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "read a.py"},
            {"type": "function_call", "call_id": "old", "name": "grep_search", "arguments": "{}"},
            {"type": "function_call_output", "call_id": "old", "output": "[]"},
        ],
        None,
        tools=[{"name": "read_file", "description": "Read", "parameters": {"type": "object"}}],
        on_tool_call=on_tool_call,
    )

    assert result.content == "Checking. "
    assert result.finish_reason == "stop"
    assert result.usage["total_tokens"] == 36
    assert [(c.id, c.arguments) for c in calls] == [("call_1", {"file_path": "a.py"})]

    request = client.requests[0]
    assert request["max_output_tokens"] == 32000
    assert request["temperature"] == 0.2
    assert request["tools"] == [{"type": "function", "name": "read_file", "description": "Read", "parameters": {"type": "object"}}]
    assert request["input"][0] == {"role": "system", "content": "sys"}
    assert request["input"][2] == {"type": "function_call", "call_id": "old", "name": "grep_search", "arguments": "{}"}
    assert request["input"][3] == {"type": "function_call_output", "call_id": "old", "output": "[]"}


@pytest.mark.asyncio
async def test_codex_request_omits_temperature():
    runtime, client = _runtime([[responses_completed()]], model="gpt-5-codex")
    await runtime.stream_chat([{"role": "user", "content": "x"}], None)
    assert "temperature" not in client.requests[0]


@pytest.mark.asyncio
async def test_incomplete_response_is_truncated():
    events = [responses_text("half"), responses_completed(status="incomplete", reason="max_output_tokens")]
    runtime, _ = _runtime([events], use_responses_api=True)
    result = await runtime.stream_chat([{"role": "user", "content": "x"}], None)
    assert result.was_truncated is True


def test_image_parts_convert_to_input_image():
    runtime, _ = _runtime([], use_responses_api=True)
    converted = runtime.convert_messages(
        [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "what is this"},
                    {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA"}},
                ],
            },
            {"role": "tool", "content": "out"},
        ]
    )
    assert converted[0]["content"] == [
        {"type": "input_text", "text": "what is this"},
        {"type": "input_image", "image_url": "data:image/png;base64,AAA"},
    ]
    assert converted[1] == {"role": "user", "content": "Tool result:\nout"}
