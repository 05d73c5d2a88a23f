import pytest

from tinker_agent.dialects.aider_diff import NewFileBlock, RewriteFileBlock, SearchReplaceBlock, parse_edit_blocks
from tinker_agent.diff_applier import DiffApplier, find_fuzzy_window
from tinker_agent.workspace_fs import LocalFileSystem, WorkspacePathError


@pytest.fixture
def fs(tmp_path):
    return LocalFileSystem(str(tmp_path))


@pytest.fixture
def applier(fs):
    return DiffApplier(fs)


def test_exact_edit_and_reapply_reports_not_found(fs, applier):
    fs.write_text("src/app.py", "def old():\n    return 1\n")
    blocks = parse_edit_blocks(
        "```\nsrc/app.py\n<<<<<<< SEARCH\ndef old():\n    return 1\n=======\ndef new():\n    return 2\n>>>>>>> REPLACE\n```\n"
    )

    first = applier.apply_block(blocks[0])
    assert first.success is True
    assert first.match_kind == "exact"
    assert first.range == (0, 0, 1, 12)
    assert first.message == "Applied changes to src/app.py"
    assert fs.read_text("src/app.py") == "def new():\n    return 2\n"

    again = applier.apply_block(blocks[0])
    assert again.success is False
    assert again.error == "Could not find matching code in src/app.py"
    assert fs.read_text("src/app.py") == "def new():\n    return 2\n"


def test_fuzzy_match_ignores_indentation(fs, applier):
    fs.write_text("a.py", "class A:\n    def f(self):\n        return 1\n")
    block = SearchReplaceBlock(path="a.py", search="def f(self):\nreturn 1\n", replace="    def f(self):\n        return 2")

    result = applier.apply_block(block)

    assert result.success is True
    assert result.match_kind == "fuzzy"
    assert result.message.endswith("(fuzzy match)")
    assert result.range == (1, 0, 3, 0)
    assert fs.read_text("a.py") == "class A:\n    def f(self):\n        return 2\n"


def test_fuzzy_match_takes_first_window():
    lines = ["x = 1", "  y", "x = 1", "y"]
    assert find_fuzzy_window(lines, ["x = 1", "y"]) == 0
    assert find_fuzzy_window(lines, ["z"]) == -1
    assert find_fuzzy_window(lines, []) == -1


def test_exact_match_replaces_only_first_occurrence(fs, applier):
    fs.write_text("dup.txt", "a\na\n")
    applier.apply_block(SearchReplaceBlock(path="dup.txt", search="a", replace="b"))
    assert fs.read_text("dup.txt") == "b\na\n"


def test_empty_search_is_rejected(fs, applier):
    fs.write_text("a.txt", "keep\n")
    result = applier.apply_block(SearchReplaceBlock(path="a.txt", search="  \n", replace="clobber"))
    assert result.success is False
    assert "Empty SEARCH section" in result.error
    assert fs.read_text("a.txt") == "keep\n"


def test_new_and_rewrite_files(fs, applier):
    created = applier.apply_block(NewFileBlock(path="pkg/new.py", content="print('hi')\n"))
    assert created.success and created.message == "Created new file: pkg/new.py"
    assert fs.read_text("pkg/new.py") == "print('hi')\n"

    duplicate = applier.apply_block(NewFileBlock(path="pkg/new.py", content="x"))
    assert duplicate.error == "File already exists: pkg/new.py"

    rewritten = applier.apply_block(RewriteFileBlock(path="pkg/new.py", content="pass\n"))
    assert rewritten.match_kind == "rewritten"
    assert fs.read_text("pkg/new.py") == "pass\n"

    missing = applier.apply_block(RewriteFileBlock(path="nope.py", content=""))
    assert missing.error == "File not found: nope.py"


def test_paths_outside_workspace_are_refused(fs, applier, tmp_path):
    result = applier.apply_block(NewFileBlock(path="../escape.py", content="x"))
    assert result.success is False
    assert "escapes workspace root" in result.error
    assert not (tmp_path.parent / "escape.py").exists()
    with pytest.raises(WorkspacePathError):
        fs.resolve("/etc/passwd")


def test_failures_do_not_stop_sibling_blocks(fs, applier):
    fs.write_text("a.txt", "one\n")
    results = applier.apply_all(
        [
            SearchReplaceBlock(path="missing.txt", search="x", replace="y"),
            SearchReplaceBlock(path="a.txt", search="one", replace="two"),
        ]
    )
    assert [r.success for r in results] == [False, True]
    assert results[0].to_dict() == {"success": False, "path": "missing.txt", "error": "File not found: missing.txt"}
    assert results[1].to_dict()["range"] == [0, 0, 0, 3]
    assert fs.read_text("a.txt") == "two\n"


def test_preview_does_not_write(fs, applier):
    fs.write_text("a.py", "x = 1\n")
    diff = applier.preview(SearchReplaceBlock(path="a.py", search="x = 1", replace="x = 2"))
    assert "--- a/a.py" in diff
    assert "-x = 1" in diff
    assert "+x = 2" in diff
    assert fs.read_text("a.py") == "x = 1\n"

    assert applier.preview(SearchReplaceBlock(path="a.py", search="nothing", replace="y")) == ""
    assert "+hello" in applier.preview(NewFileBlock(path="b.py", content="hello\n"))


def test_local_filesystem_helpers(fs):
    fs.write_text("d/e/f.txt", "z")
    assert fs.is_dir("d/e")
    assert fs.list_dir("d") == ["e"]
    assert fs.list_dir("absent") == []
    assert fs.relpath(fs.resolve("d/e/f.txt")) == "d/e/f.txt"
