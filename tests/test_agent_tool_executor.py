import pytest

from tinker_agent.tool_calling import (
    TOOL_SCHEMAS,
    ToolExecutor,
    ToolRetryTracker,
    ToolValidationError,
    ValidatingToolExecutor,
    WorkspaceTools,
    get_tool_declarations,
    is_validation_error,
)


class _EchoTools(ToolExecutor):
    def __init__(self):
        self.calls = []

    def declarations(self):
        return get_tool_declarations(["read_file", "grep_search"])

    async def execute(self, name, args):
        self.calls.append((name, args))
        return {"ok": name}


def test_every_schema_requires_reason_and_rejects_extras():
    for name, schema in TOOL_SCHEMAS.items():
        assert schema["required"][0] == "reason", name
        assert schema["additionalProperties"] is False, name
    assert TOOL_SCHEMAS["read_file"]["required"] == ["reason", "file_path"]
    assert TOOL_SCHEMAS["grep_search"]["required"] == ["reason", "pattern"]


def test_valid_arguments_pass():
    executor = ValidatingToolExecutor(_EchoTools())
    executor.validate("read_file", {"reason": "inspect", "file_path": "a.py", "start_line": 1})


def test_missing_required_field_is_reported():
    executor = ValidatingToolExecutor(_EchoTools())
    with pytest.raises(ToolValidationError) as excinfo:
        executor.validate("read_file", {"file_path": "a.py"})
    error = excinfo.value
    assert error.tool_name == "read_file"
    assert error.details == [{"path": "<root>", "message": "'reason' is a required property", "validator": "required"}]
    assert str(error) == "Invalid arguments for read_file: <root>: 'reason' is a required property"


def test_wrong_type_produces_field_hint():
    executor = ValidatingToolExecutor(_EchoTools())
    with pytest.raises(ToolValidationError) as excinfo:
        executor.validate("read_file", {"reason": "r", "file_path": 3})
    assert excinfo.value.hint == "Field \"file_path\" has wrong type. 3 is not of type 'string'"


def test_unexpected_property_is_rejected():
    executor = ValidatingToolExecutor(_EchoTools())
    with pytest.raises(ToolValidationError, match="Additional properties"):
        executor.validate("grep_search", {"reason": "r", "pattern": "x", "path": "src"})


def test_unknown_tool_lists_available_tools():
    executor = ValidatingToolExecutor(_EchoTools())
    with pytest.raises(ToolValidationError) as excinfo:
        executor.validate("write_file", {})
    assert str(excinfo.value) == "Unknown tool: write_file"
    assert excinfo.value.hint == "Call one of the available tools: grep_search, read_file"


@pytest.mark.asyncio
async def test_execute_returns_structured_result_instead_of_raising():
    inner = _EchoTools()
    executor = ValidatingToolExecutor(inner)

    rejected = await executor.execute("grep_search", {"reason": "r"})
    assert is_validation_error(rejected)
    assert rejected["provided_args"] == {"reason": "r"}
    assert inner.calls == []

    accepted = await executor.execute("grep_search", {"reason": "r", "pattern": "x"})
    assert accepted == {"ok": "grep_search"}
    assert not is_validation_error(accepted)


def test_explicit_declarations_override_inner(tmp_path):
    executor = ValidatingToolExecutor(WorkspaceTools(str(tmp_path)), get_tool_declarations(["read_file"]))
    assert [decl.name for decl in executor.declarations()] == ["read_file"]
    with pytest.raises(ToolValidationError):
        executor.validate("grep_search", {"reason": "r", "pattern": "x"})


def test_retry_chain_counts_same_tool_and_exhausts():
    tracker = ToolRetryTracker()
    assert tracker.record_failure("c1", "read_file") == 1
    assert tracker.record_failure("c2", "read_file") == 2
    assert tracker.record_failure("c3", "read_file") == 3
    assert not tracker.exhausted(3)
    attempt = tracker.record_failure("c4", "read_file")
    assert attempt == 4
    assert tracker.exhausted(attempt)


def test_exhausted_chain_stops_counting():
    tracker = ToolRetryTracker(max_attempts=2)
    assert [tracker.record_failure(f"c{i}", "grep_search") for i in range(5)] == [1, 2, 3, 3, 3]
    assert tracker.attempts("c0", "grep_search") == 3


def test_success_closes_the_chain():
    tracker = ToolRetryTracker(max_attempts=2)
    tracker.record_failure("c1", "grep_search")
    tracker.record_success("c2", "grep_search")
    assert tracker.record_failure("c3", "grep_search") == 1


def test_reused_call_id_continues_its_chain_and_tools_are_independent():
    tracker = ToolRetryTracker()
    tracker.record_failure("c1", "read_file")
    assert tracker.record_failure("c9", "grep_search") == 1
    assert tracker.record_failure("c1", "read_file") == 2
    assert tracker.attempts("c1", "read_file") == 2
    assert tracker.attempts("zzz", "list_files") == 0
