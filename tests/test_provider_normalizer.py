import json

import pytest

from stream_fakes import (
    chat_chunk,
    native_message_delta,
    native_message_start,
    native_text,
    native_tool,
    responses_call,
    responses_completed,
    responses_text,
    tool_delta,
)
from tinker_agent.provider_ir import (
    ContentDelta,
    Finish,
    ToolCallArgDelta,
    ToolCallDone,
    ToolCallStart,
    UsageEvent,
)
from tinker_agent.provider_normalizer import (
    ChatCompletionsNormalizer,
    NativeToolUseNormalizer,
    ResponsesNormalizer,
    ToolCallAssembler,
    create_normalizer,
    looks_like_tool_arguments,
    map_finish_reason,
)


def _assemble(events, turn=1):
    assembler = ToolCallAssembler(turn=turn, id_factory=lambda: "call_generated")
    pending = None
    calls = []
    for event in events:
        pending, ready = assembler.advance(pending, event)
        calls.extend(ready)
    pending, ready = assembler.flush(pending)
    calls.extend(ready)
    return calls


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("stop", "stop"),
        ("end_turn", "stop"),
        ("completed", "stop"),
        ("length", "length"),
        ("max_tokens", "length"),
        ("max_output_tokens", "length"),
        ("tool_calls", "tool_calls"),
        ("tool_use", "tool_calls"),
        ("content_filter", "incomplete"),
        (None, "incomplete"),
    ],
)
def test_map_finish_reason(raw, expected):
    assert map_finish_reason(raw) == expected


def test_chat_normalizer_emits_text_tool_and_finish_events():
    normalizer = ChatCompletionsNormalizer()
    events = []
    events += normalizer.feed(chat_chunk("Hi"))
    events += normalizer.feed(chat_chunk(tool_calls=[tool_delta(0, "call_1", "read_file", '{"file_')]))
    events += normalizer.feed(chat_chunk(tool_calls=[tool_delta(0, arguments='path": "a.py"}')]))
    events += normalizer.feed(chat_chunk(finish_reason="tool_calls"))
    events += normalizer.feed(chat_chunk(usage={"prompt_tokens": 3, "completion_tokens": 4}))

    assert events[0] == ContentDelta(text="Hi")
    assert events[1] == ToolCallStart(key="0", call_id="call_1", name="read_file")
    assert events[2] == ToolCallArgDelta(key="0", fragment='{"file_')
    assert events[3] == ToolCallArgDelta(key="0", fragment='path": "a.py"}')
    assert events[4] == Finish(reason="tool_calls", raw_reason="tool_calls")
    assert events[5] == UsageEvent(raw={"prompt_tokens": 3, "completion_tokens": 4})


def test_chat_normalizer_accepts_plain_dicts():
    raw = {"choices": [{"delta": {"content": "x"}, "finish_reason": "length"}]}
    events = ChatCompletionsNormalizer().feed(raw)
    assert events == [ContentDelta(text="x"), Finish(reason="length", raw_reason="length")]


def test_responses_normalizer_tool_call_and_incomplete_reason():
    normalizer = ResponsesNormalizer()
    events = []
    events += normalizer.feed(responses_text("Hello"))
    for raw in responses_call("fc_1", "call_9", "grep_search", ['{"pattern":', '"x"}'], done_arguments='{"pattern":"x"}'):
        events += normalizer.feed(raw)
    events += normalizer.feed(responses_completed({"input_tokens": 5}, status="incomplete", reason="max_output_tokens"))

    assert events[0] == ContentDelta(text="Hello")
    assert events[1] == ToolCallStart(key="fc_1", call_id="call_9", name="grep_search")
    assert isinstance(events[-3], ToolCallDone) and events[-3].arguments == '{"pattern":"x"}'
    assert events[-2] == UsageEvent(raw={"input_tokens": 5})
    assert events[-1] == Finish(reason="length", raw_reason="max_output_tokens")


def test_native_normalizer_maps_blocks_to_events():
    normalizer = NativeToolUseNormalizer()
    raws = [native_message_start(7)]
    raws += native_text(0, "Look", "ing")
    raws += native_tool(1, "toolu_1", "read_file", ['{"file_path"', ': "a.py"}'])
    raws.append(native_message_delta("tool_use", 12))
    events = [event for raw in raws for event in normalizer.feed(raw)]

    assert events[0] == UsageEvent(raw={"input_tokens": 7, "output_tokens": 1})
    assert [e.text for e in events if isinstance(e, ContentDelta)] == ["Look", "ing"]
    assert ToolCallStart(key="toolu_1", call_id="toolu_1", name="read_file") in events
    assert ToolCallDone(key="toolu_1") in events
    assert events[-1] == Finish(reason="tool_calls", raw_reason="tool_use")


def test_create_normalizer_by_protocol():
    assert isinstance(create_normalizer("responses"), ResponsesNormalizer)
    assert isinstance(create_normalizer("native"), NativeToolUseNormalizer)
    assert isinstance(create_normalizer("chat"), ChatCompletionsNormalizer)


ARGS = {"file_path": "src/app.py", "reason": "inspect \"quoted\" {braces}", "start_line": 10}


@pytest.mark.parametrize("cuts", [(), (1,), (5, 6), (3, 17, 30), tuple(range(1, 60, 7))])
def test_fragmentation_does_not_change_parsed_arguments(cuts):
    text = json.dumps(ARGS)
    bounds = [0] + [c for c in cuts if c < len(text)] + [len(text)]
    fragments = [text[a:b] for a, b in zip(bounds, bounds[1:]) if text[a:b]]

    events = [ToolCallStart(key="0", call_id="call_1", name="read_file")]
    events += [ToolCallArgDelta(key="0", fragment=fragment) for fragment in fragments]
    events.append(Finish(reason="tool_calls"))

    calls = _assemble(events)
    assert len(calls) == 1
    assert calls[0].arguments == ARGS
    assert calls[0].arguments_error is None


def test_new_key_finalizes_previous_call():
    events = [
        ToolCallStart(key="0", call_id="a", name="read_file"),
        ToolCallArgDelta(key="0", fragment='{"file_path": "x"}'),
        ToolCallStart(key="1", call_id="b", name="grep_search"),
        ToolCallArgDelta(key="1", fragment='{"pattern": "y"}'),
    ]
    calls = _assemble(events, turn=3)
    assert [(c.id, c.name, c.turn) for c in calls] == [("a", "read_file", 3), ("b", "grep_search", 3)]


def test_done_dispatches_before_stream_end():
    assembler = ToolCallAssembler()
    pending, ready = assembler.advance(None, ToolCallStart(key="k", call_id="c1", name="t"))
    pending, ready = assembler.advance(pending, ToolCallArgDelta(key="k", fragment="{}"))
    assert ready == []
    pending, ready = assembler.advance(pending, ToolCallDone(key="k"))
    assert pending is None
    assert [call.id for call in ready] == ["c1"]


def test_done_full_arguments_used_when_no_fragments():
    events = [ToolCallStart(key="k", call_id="c1", name="t"), ToolCallDone(key="k", arguments='{"a": 1}')]
    assert _assemble(events)[0].arguments == {"a": 1}


def test_argument_delta_without_start_gets_generated_id():
    calls = _assemble([ToolCallArgDelta(key="0", fragment='{"a": 2}')])
    assert calls[0].id == "call_generated"
    assert calls[0].arguments == {"a": 2}


def test_invalid_json_marks_call_instead_of_raising():
    calls = _assemble([ToolCallStart(key="0", call_id="c", name="t"), ToolCallArgDelta(key="0", fragment='{"a": ')])
    assert calls[0].arguments == {}
    assert "Invalid JSON" in calls[0].arguments_error
    assert calls[0].raw_arguments == '{"a": '


def test_non_object_arguments_are_rejected():
    calls = _assemble([ToolCallStart(key="0", call_id="c", name="t"), ToolCallArgDelta(key="0", fragment="[1, 2]")])
    assert calls[0].arguments_error.startswith("Tool arguments must be a JSON object")


def test_empty_arguments_parse_as_empty_object():
    calls = _assemble([ToolCallStart(key="0", call_id="c", name="t")])
    assert calls[0].arguments == {}
    assert calls[0].arguments_error is None


def test_repeated_start_for_same_call_merges():
    events = [
        ToolCallStart(key="0", call_id="c", name=None),
        ToolCallStart(key="0", call_id=None, name="read_file"),
        ToolCallArgDelta(key="0", fragment="{}"),
    ]
    calls = _assemble(events)
    assert len(calls) == 1
    assert calls[0].name == "read_file"


def test_looks_like_tool_arguments():
    assert looks_like_tool_arguments('{"reason": "check", "file_path": "a"}')
    assert not looks_like_tool_arguments("The answer is 42.")
    assert not looks_like_tool_arguments('{"a": 1, "b": 2, "c": 3, "reason": "x"}')
    assert not looks_like_tool_arguments("{not json")
