import json

import pytest

from tinker_agent.messaging import ChunkBuffer, EventChannel, MessageFormatter
from tinker_agent.messaging.events import CONTENT_DELTA, ERROR
from tinker_agent.messaging.message_formatter import CONTINUE_IN_CODE_BLOCK, CONTINUE_IN_SEARCH_BLOCK

CALLS = [{"call_id": "c1", "name": "read_file", "args": {"file_path": "a.py"}, "result": {"content": "1:x"}}]


def test_chat_shape_tool_exchange():
    entries = MessageFormatter("chat").format_tool_exchange("", CALLS)
    assert entries[0] == {"role": "assistant", "content": "Using tools..."}
    assert entries[1]["role"] == "user"
    assert entries[1]["content"].startswith("Tool result for read_file:\n```json\n")
    assert entries[1]["content"].endswith("\n```\n\nContinue.")


def test_responses_shape_tool_exchange():
    entries = MessageFormatter("responses").format_tool_exchange("Looking.", CALLS)
    assert entries[0] == {"role": "assistant", "content": "Looking."}
    assert entries[1] == {"type": "function_call", "call_id": "c1", "name": "read_file", "arguments": '{"file_path": "a.py"}'}
    assert json.loads(entries[2]["output"]) == {"content": "1:x"}


@pytest.mark.parametrize(
    "partial,in_code,in_search",
    [
        ("plain prose", False, False),
        ("```python\nprint(1)", True, False),
        ("```\nf.py\n<<<<<<< SEARCH\nold", True, True),
        ("```\nf.py\n<<<<<<< SEARCH\nold\n=======\nnew\n>>>>>>> REPLACE\n```\n", False, False),
    ],
)
def test_continuation_prompt_describes_open_blocks(partial, in_code, in_search):
    prompt = MessageFormatter.continuation_prompt(partial)
    assert prompt.startswith("Continue EXACTLY from where you left off. ")
    assert prompt.endswith("Do NOT repeat any content you already generated.")
    assert (CONTINUE_IN_CODE_BLOCK in prompt) is in_code
    assert (CONTINUE_IN_SEARCH_BLOCK in prompt) is in_search


def test_format_continuation_pairs_partial_with_instruction():
    entries = MessageFormatter().format_continuation("half")
    assert entries[0] == {"role": "assistant", "content": "half"}
    assert entries[1]["role"] == "user"


@pytest.mark.asyncio
async def test_event_channel_sync_async_and_failing_listeners(caplog):
    channel = EventChannel(keep_history=True)
    seen = []

    def failing(event_type, payload):
        raise RuntimeError("boom")

    async def async_listener(event_type, payload):
        seen.append(("async", event_type))

    channel.subscribe(failing)
    unsubscribe = channel.subscribe(lambda t, p: seen.append(("sync", t)))
    channel.subscribe(async_listener)

    await channel.emit(ERROR, {"error": "x"})
    unsubscribe()
    await channel.emit(CONTENT_DELTA, {"text": "y"})

    assert seen == [("sync", ERROR), ("async", ERROR), ("async", CONTENT_DELTA)]
    assert "Event listener failed on error: boom" in caplog.text
    assert channel.events_of(CONTENT_DELTA) == [{"text": "y"}]


@pytest.mark.asyncio
async def test_chunk_buffer_batches_until_size_then_flushes():
    channel = EventChannel(keep_history=True)
    buffer = ChunkBuffer(channel, size=5)
    await buffer.add("ab")
    await buffer.add("")
    assert channel.events_of(CONTENT_DELTA) == []
    await buffer.add("cde")
    await buffer.add("f")
    await buffer.flush()
    await buffer.flush()
    assert channel.events_of(CONTENT_DELTA) == [{"text": "abcde"}, {"text": "f"}]


@pytest.mark.asyncio
async def test_event_channel_keeps_no_history_by_default():
    channel = EventChannel()
    seen = []
    channel.subscribe(lambda t, p: seen.append(p))
    await channel.emit(CONTENT_DELTA, {"text": "x"})
    assert seen == [{"text": "x"}]
    assert channel.history == []
