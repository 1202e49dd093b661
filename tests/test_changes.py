"""
Tests for code-change extraction and truncation.
"""

import json

import pytest

from claude_conv_views.changes import (
    calculate_change_statistics,
    display_file_name,
    enrich_with_code_changes,
    extract_all_code_changes,
    extract_code_changes,
    group_changes_by_file,
    infer_language_from_path,
    is_large_diff,
    truncate_change,
    truncate_diff,
)
from claude_conv_views.core import CodeChangeInfo, MessageNode, build_tree

from conftest import rec


def tool_node(*envelopes, id="a"):
    content = [{"type": "tool_use", "name": name, "input": tool_input} for name, tool_input in envelopes]
    return MessageNode(record=rec(id, "assistant", {"role": "assistant", "content": content}))


def numbered(count):
    return "\n".join(f"line{i}" for i in range(count))


class TestExtractCodeChanges:
    def test_write_creates_file(self):
        node = tool_node(("write", {"file_path": "src/app.py", "content": numbered(10)}))
        changes = extract_code_changes(node)
        assert len(changes) == 1
        change = changes[0]
        assert change.change_type == "create"
        assert change.lines_added == 10
        assert change.lines_removed is None
        assert change.to_dict()["linesAdded"] == 10
        assert "linesRemoved" not in change.to_dict()

    def test_tool_names_case_insensitive(self):
        node = tool_node(
            ("Write", {"file_path": "a.py", "content": "x"}),
            ("CREATE", {"path": "b.py", "content": "y"}),
        )
        assert [c.file_path for c in extract_code_changes(node)] == ["a.py", "b.py"]

    def test_edit(self):
        node = tool_node(("edit", {
            "file_path": "a.py",
            "old_text": "a\nb",
            "new_text": "a\nb\nc",
            "start_line": 4,
            "end_line": "5",
        }))
        change = extract_code_changes(node)[0]
        assert change.change_type == "update"
        assert change.lines_added == 3
        assert change.lines_removed == 2
        assert change.start_line == 4
        assert change.end_line == 5

    def test_edit_string_aliases(self):
        node = tool_node(("Edit", {"file_path": "a.py", "old_string": "x", "new_string": "y\nz"}))
        change = extract_code_changes(node)[0]
        assert change.old_text == "x"
        assert change.new_text == "y\nz"
        assert change.tool_name == "Edit"

    def test_delete(self):
        node = tool_node(("remove", {"path": "old.txt", "content": "one\ntwo"}))
        change = extract_code_changes(node)[0]
        assert change.change_type == "delete"
        assert change.lines_removed == 2
        assert change.lines_added == 0

    def test_envelope_embedded_in_text(self):
        envelope = json.dumps({"name": "write", "input": {"file_path": "x.md", "content": "# hi"}})
        node = MessageNode(record=rec("a", "assistant", f"I'll create it: {envelope} done {{oops"))
        changes = extract_code_changes(node)
        assert [c.file_path for c in changes] == ["x.md"]

    def test_malformed_envelopes_skipped(self):
        node = tool_node(
            ("write", {"file_path": "no_content.py"}),
            ("write", {"content": "no path"}),
            ("edit", {"file_path": "a.py"}),
            ("read", {"file_path": "a.py"}),
            ("write", {"file_path": "ok.py", "content": ""}),
        )
        changes = extract_code_changes(node)
        assert [c.file_path for c in changes] == ["ok.py"]
        assert changes[0].lines_added == 0

    def test_truncated_json_text_yields_nothing(self):
        node = MessageNode(record=rec("a", "assistant", '{"name": "write", "input": {"file_path": "a.py"'))
        assert extract_code_changes(node) == []

    def test_plain_text_node(self):
        assert extract_code_changes(MessageNode(record=rec("u", "user", "hello"))) == []


class TestEnrichment:
    def test_enrich_returns_copy(self):
        node = tool_node(("write", {"file_path": "a.py", "content": "x"}))
        enriched = enrich_with_code_changes(node)
        assert node.code_changes is None
        assert len(enriched.code_changes) == 1
        assert enriched.to_dict()["codeChanges"][0]["filePath"] == "a.py"

    def test_cached_changes_returned(self):
        cached = (CodeChangeInfo(file_path="cached.py", change_type="create"),)
        node = MessageNode(record=rec("u", "user", "no tools here"), code_changes=cached)
        assert extract_code_changes(node) == list(cached)


class TestStatistics:
    @pytest.fixture
    def tree(self):
        return build_tree([
            rec("u", "user", "please"),
            rec("a1", "assistant", {"content": [
                {"type": "tool_use", "name": "write", "input": {"file_path": "a.py", "content": "1\n2"}},
            ]}, parent="u"),
            rec("a2", "assistant", {"content": [
                {"type": "tool_use", "name": "edit",
                 "input": {"file_path": "a.py", "old_text": "1\n2", "new_text": "1\n2\n3"}},
                {"type": "tool_use", "name": "delete", "input": {"file_path": "b.py"}},
            ]}, parent="a1"),
        ])

    def test_statistics(self, tree):
        stats = calculate_change_statistics(tree)
        assert stats.total_files == 2
        assert stats.files_created == 1
        assert stats.files_updated == 1
        assert stats.files_deleted == 1
        assert stats.lines_added == 5
        assert stats.lines_removed == 2

    def test_subtree_statistics(self, tree):
        stats = calculate_change_statistics(tree.find("a2"))
        assert stats.files_created == 0
        assert stats.total_files == 2

    def test_group_by_file(self, tree):
        grouped = group_changes_by_file(extract_all_code_changes(tree))
        assert list(grouped) == ["a.py", "b.py"]
        assert [c.change_type for c in grouped["a.py"]] == ["create", "update"]

    def test_empty_tree(self):
        assert calculate_change_statistics(build_tree([])).to_dict()["totalFiles"] == 0


class TestPathHelpers:
    def test_display_file_name(self):
        assert display_file_name("/home/me/project/src/main.py") == ".../src/main.py"
        assert display_file_name("src/main.py") == "src/main.py"

    def test_infer_language(self):
        assert infer_language_from_path("src/App.TSX") == "typescript"
        assert infer_language_from_path("C:\\work\\lib.rs") == "rust"
        assert infer_language_from_path("Dockerfile") == "dockerfile"
        assert infer_language_from_path("Makefile") == "text"
        assert infer_language_from_path("notes.unknown") == "text"


class TestTruncateDiff:
    def test_large_text_truncated(self):
        result = truncate_diff(numbered(5000))
        lines = result.split("\n")
        assert len(lines) == 601
        assert lines[0] == "line0"
        assert lines[299] == "line299"
        assert lines[300] == "... (4400 lines omitted, 5000 total)"
        assert lines[301] == "line4700"
        assert lines[-1] == "line4999"

    def test_at_limit_unchanged(self):
        text = numbered(1000)
        assert truncate_diff(text) is text

    def test_just_over_limit(self):
        lines = truncate_diff(numbered(1001)).split("\n")
        assert len(lines) == 601
        assert lines[300] == "... (401 lines omitted, 1001 total)"

    def test_too_short_to_elide(self):
        text = numbered(7)
        assert truncate_diff(text, max_lines=5, keep_lines=3) == text

    def test_negative_arguments(self):
        with pytest.raises(ValueError):
            truncate_diff("x", max_lines=-1)
        with pytest.raises(ValueError):
            truncate_diff("x", keep_lines=-1)

    def test_sides_truncated_independently(self):
        change = CodeChangeInfo(
            file_path="big.py",
            change_type="update",
            old_text=numbered(50),
            new_text=numbered(5000),
        )
        assert is_large_diff(change)
        truncated = truncate_change(change)
        assert truncated.old_text == change.old_text
        assert len(truncated.new_text.split("\n")) == 601
        assert not is_large_diff(truncated)
