import os

import pytest

from tinker_agent.tool_calling import WorkspaceTools


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("def main():\n    return 'TODO'\n")
    (tmp_path / "README.md").write_text("TODO list\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.py").write_text("TODO = 1\n")
    return tmp_path


@pytest.fixture
def tools(workspace):
    return WorkspaceTools(str(workspace))


@pytest.mark.asyncio
async def test_read_file_numbers_lines_and_honours_range(tools):
    result = await tools.execute("read_file", {"reason": "r", "file_path": "src/app.py", "start_line": 2, "end_line": 2})
    assert result["content"] == "2:    return 'TODO'"
    assert result["total_lines"] == 3
    assert (result["start_line"], result["end_line"]) == (2, 2)

    whole = await tools.read_file({"file_path": "README.md"})
    assert whole["content"] == "1:TODO list\n2:"


@pytest.mark.asyncio
async def test_read_file_errors_are_results(tools):
    missing = await tools.read_file({"file_path": "nope.py"})
    assert missing["error"].startswith("Failed to read file")
    escaped = await tools.read_file({"file_path": "../../etc/passwd"})
    assert "escapes workspace root" in escaped["error"]


@pytest.mark.asyncio
async def test_read_multiple_files_collects_errors(tools):
    result = await tools.read_multiple_files({"file_paths": ["README.md", "missing.txt"]})
    assert [f["file_path"] for f in result["files"]] == ["README.md"]
    assert result["errors"][0].startswith("missing.txt: Failed to read file")


@pytest.mark.asyncio
async def test_grep_search_skips_ignored_dirs(tools):
    result = await tools.grep_search({"pattern": "TODO"})
    assert [(r["file"], r["line"]) for r in result["results"]] == [("README.md", 1), (os.path.join("src", "app.py"), 2)]
    assert result["truncated"] is False


@pytest.mark.asyncio
async def test_grep_search_filters_and_limits(tools):
    only_py = await tools.grep_search({"pattern": "todo", "case_insensitive": True, "file_pattern": "*.py"})
    assert [r["file"] for r in only_py["results"]] == [os.path.join("src", "app.py")]

    limited = await tools.grep_search({"pattern": "TODO", "max_results": 1})
    assert limited["total"] == 1
    assert limited["truncated"] is True

    assert await tools.grep_search({"pattern": "absent"}) == {"results": [], "message": "No matches found"}
    assert (await tools.grep_search({"pattern": "("}))["error"].startswith("Invalid pattern")


@pytest.mark.asyncio
async def test_file_tree(tools, workspace):
    name = workspace.name
    tree = await tools.get_file_tree({})
    assert tree["tree"] == f"{name}/\n├── src/\n│   └── app.py\n└── README.md"

    dirs_only = await tools.get_file_tree({"include_files": False})
    assert dirs_only["tree"] == f"{name}/\n└── src/"


@pytest.mark.asyncio
async def test_list_files_and_info(tools):
    listed = await tools.list_files({"pattern": "**/*.py"})
    assert listed["files"] == [os.path.join("src", "app.py")]

    info = await tools.get_file_info({"file_path": "README.md"})
    assert info["size_bytes"] == len("TODO list\n")
    assert info["total_lines"] == 2
    assert info["is_binary"] is False


@pytest.mark.asyncio
async def test_run_command_blocks_writes_and_dangerous_commands(tools):
    write = await tools.run_command({"command": "echo hi > out.txt"})
    assert write["error"].startswith("WRITE COMMAND BLOCKED: 'echo redirect'")
    danger = await tools.run_command({"command": "sudo ls"})
    assert danger["error"] == "Potentially dangerous command blocked for safety"
    outside = await tools.run_command({"command": "ls", "cwd": "../"})
    assert outside["error"] == "Working directory must be within workspace"


@pytest.mark.asyncio
async def test_run_command_reports_output_and_exit_codes(tools):
    ok = await tools.run_command({"command": "echo hello"})
    assert ok["success"] is True
    assert ok["stdout"] == "hello"

    failed = await tools.run_command({"command": "exit 3"})
    assert failed["exit_code"] == 3

    timed_out = await tools.run_command({"command": "sleep 5", "timeout": 100})
    assert timed_out["error"] == "Command timed out after 0.1s"


@pytest.mark.asyncio
async def test_unknown_tool_raises(tools):
    with pytest.raises(ValueError, match="Unknown tool"):
        await tools.execute("delete_everything", {})
