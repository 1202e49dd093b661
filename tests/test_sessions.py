"""
Tests for session sources and view caching.
"""

import json
import logging

import pytest

from claude_conv_views.core import (
    InvalidViewLevelError,
    SessionNotFoundError,
    ViewLevel,
)
from claude_conv_views.exporters import ExportOptions
from claude_conv_views.sessions import (
    JsonlSessionSource,
    SessionSource,
    SessionViews,
    ViewCache,
    read_session_file,
    record_from_entry,
)

from conftest import SESSION_ENTRIES, rec, write_jsonl


class InMemorySource(SessionSource):
    """Minimal backend that counts tree builds."""

    def __init__(self, sessions):
        self.sessions = sessions
        self.preferences = {}
        self.builds = 0

    def get_records(self, session_id):
        if session_id not in self.sessions:
            raise SessionNotFoundError(session_id)
        return self.sessions[session_id]

    def get_tree(self, session_id):
        self.builds += 1
        return super().get_tree(session_id)

    def get_view_level_preference(self, session_id):
        return self.preferences.get(session_id, ViewLevel.QA_PAIRS)

    def save_view_level_preference(self, session_id, level):
        self.preferences[session_id] = ViewLevel.parse(level)


@pytest.fixture
def memory_source():
    return InMemorySource({
        "s1": [
            rec("q", "user", "Q", ts="2025-01-01T00:00:00Z"),
            rec("a", "assistant", "A", parent="q", ts="2025-01-01T00:00:01Z"),
            rec("t", "tool", "done", parent="a", ts="2025-01-01T00:00:02Z"),
        ],
    })


class TestRecordFromEntry:
    def test_roles_and_markers(self):
        records = {e["uuid"]: record_from_entry(e) for e in SESSION_ENTRIES if "uuid" in e}
        assert records["u1"].role == "user"
        assert records["u1"].metadata == {"cwd": "/work/app"}
        assert records["a1"].msg_type == "thinking"
        assert records["a1"].metadata == {"model": "claude-test"}
        assert records["a2"].role == "tool"
        assert records["a2"].msg_type == "tool_use"
        assert records["r1"].role == "tool"
        assert records["r1"].msg_type == "tool_result"
        assert records["a3"].role == "assistant"
        assert records["a3"].parent_id == "r1"

    def test_non_message_lines_ignored(self):
        assert record_from_entry({"type": "summary", "summary": "x", "leafUuid": "u1"}) is None
        assert record_from_entry({"type": "file-history-snapshot", "uuid": "f"}) is None
        assert record_from_entry({"type": "user"}) is None

    def test_sidechain_thread(self):
        record = record_from_entry({"type": "user", "uuid": "s", "isSidechain": True, "message": {"content": "x"}})
        assert record.thread_id == "sidechain"
        record = record_from_entry({"type": "user", "uuid": "s", "agentId": "ag1", "message": {"content": "x"}})
        assert record.thread_id == "ag1"

    def test_meta_marked(self):
        record = record_from_entry({"type": "user", "uuid": "m", "isMeta": True, "message": {"content": "x"}})
        assert record.msg_type == "meta"


class TestReadSessionFile:
    def test_reads_records_and_summaries(self, projects_dir):
        records, summaries = read_session_file(projects_dir / "-work-app" / "sess1.jsonl")
        assert [r.id for r in records] == ["u1", "a1", "a2", "r1", "a3", "u2"]
        assert summaries == {"u2": "Adding a config file"}

    def test_skips_undecodable_lines(self, tmp_path, caplog):
        path = tmp_path / "broken.jsonl"
        with open(path, 'w', encoding='utf-8') as f:
            f.write(json.dumps(SESSION_ENTRIES[0]) + '\n')
            f.write('{"type": "user", "uuid": \n')
            f.write('\n')
            f.write('[1, 2]\n')
            f.write(json.dumps(SESSION_ENTRIES[4]) + '\n')

        with caplog.at_level(logging.WARNING, logger="claude_conv_views.sessions"):
            records, _ = read_session_file(path)

        assert [r.id for r in records] == ["u1", "a3"]
        assert "broken.jsonl:2" in caplog.text


class TestJsonlSessionSource:
    def test_tree(self, projects_dir):
        tree = JsonlSessionSource(projects_dir).get_tree("sess1")
        assert tree.total_count == 6
        assert tree.max_depth == 5
        assert tree.thread_count == 1

    def test_preview_length(self, projects_dir):
        tree = JsonlSessionSource(projects_dir, preview_length=6).get_tree("sess1")
        assert tree.roots[0].extracted_text == "How do..."

    def test_lookup_by_path(self, projects_dir):
        path = projects_dir / "-work-app" / "sess1.jsonl"
        source = JsonlSessionSource(projects_dir / "elsewhere")
        assert len(source.get_records(str(path))) == 6

    def test_missing_session(self, projects_dir):
        with pytest.raises(SessionNotFoundError) as exc:
            JsonlSessionSource(projects_dir).get_records("nope")
        assert exc.value.session_id == "nope"
        assert isinstance(exc.value, LookupError)

    def test_list_sessions_skips_agent_logs(self, projects_dir):
        project = projects_dir / "-work-app"
        write_jsonl(project / "agent-123.jsonl", SESSION_ENTRIES[:1])
        (project / "notes.txt").write_text("x")
        assert [p.name for p in JsonlSessionSource(projects_dir).list_sessions()] == ["sess1.jsonl"]

    def test_list_sessions_missing_dir(self, tmp_path):
        assert JsonlSessionSource(tmp_path / "none").list_sessions() == []

    def test_session_info_uses_summary(self, projects_dir):
        info = JsonlSessionSource(projects_dir).get_session_info("sess1")
        assert info.id == "sess1"
        assert info.title == "Adding a config file"
        assert info.project_path == "-work-app"
        assert info.created_at == "2025-01-01T10:00:00Z"
        assert info.updated_at == "2025-01-01T10:01:00Z"

    def test_session_info_falls_back_to_first_prompt(self, tmp_path):
        project = tmp_path / "proj"
        project.mkdir()
        write_jsonl(project / "s.jsonl", SESSION_ENTRIES[:-1])
        info = JsonlSessionSource(tmp_path).get_session_info("s")
        assert info.title == "How do I add a config file?"

    def test_messages_by_level(self, projects_dir):
        source = JsonlSessionSource(projects_dir)
        records = source.get_messages_by_level("sess1", "clean_flow")
        assert [r.id for r in records] == ["u1", "a3", "u2"]

    def test_qa_pairs_by_level(self, projects_dir):
        source = JsonlSessionSource(projects_dir)
        pairs = source.get_qa_pairs_by_level("sess1", ViewLevel.QA_PAIRS)
        assert [(p.question.id, p.answer and p.answer.id) for p in pairs] == [("u1", "a3"), ("u2", None)]
        with pytest.raises(InvalidViewLevelError):
            source.get_qa_pairs_by_level("sess1", ViewLevel.FULL)

    def test_export_session(self, projects_dir):
        content = JsonlSessionSource(projects_dir).export_session("sess1", "full", "markdown")
        assert content.startswith("# Adding a config file")
        assert content.split("\n").count("---") == 6


class TestPreferences:
    def test_default_level(self, projects_dir):
        source = JsonlSessionSource(projects_dir, default_level=ViewLevel.FULL)
        assert source.get_view_level_preference("sess1") is ViewLevel.FULL

    def test_persisted_to_file(self, projects_dir, tmp_path):
        prefs = tmp_path / "state" / "prefs.json"
        JsonlSessionSource(projects_dir, preferences_path=prefs).save_view_level_preference("sess1", "clean_flow")

        assert json.loads(prefs.read_text()) == {"sess1": "clean_flow"}
        reloaded = JsonlSessionSource(projects_dir, preferences_path=prefs)
        assert reloaded.get_view_level_preference("sess1") is ViewLevel.CLEAN_FLOW

    def test_invalid_stored_level(self, projects_dir, tmp_path):
        prefs = tmp_path / "prefs.json"
        prefs.write_text(json.dumps({"sess1": "everything"}))
        source = JsonlSessionSource(projects_dir, preferences_path=prefs)
        assert source.get_view_level_preference("sess1") is ViewLevel.QA_PAIRS

    def test_corrupt_file_ignored(self, projects_dir, tmp_path):
        prefs = tmp_path / "prefs.json"
        prefs.write_text("{not json")
        source = JsonlSessionSource(projects_dir, preferences_path=prefs)
        assert source.get_view_level_preference("sess1") is ViewLevel.QA_PAIRS

    def test_save_rejects_invalid_level(self, projects_dir):
        with pytest.raises(InvalidViewLevelError):
            JsonlSessionSource(projects_dir).save_view_level_preference("sess1", "bogus")


class TestViewCache:
    def test_least_recent_session_evicted(self):
        cache = ViewCache(max_sessions=2)
        cache.put("a", ViewLevel.FULL, ["a-full"])
        cache.put("a", ViewLevel.QA_PAIRS, ["a-qa"])
        cache.put("b", ViewLevel.FULL, ["b-full"])
        assert cache.get("a", ViewLevel.FULL) == ["a-full"]

        cache.put("c", ViewLevel.FULL, ["c-full"])

        assert ("b", ViewLevel.FULL) not in cache
        assert ("a", ViewLevel.QA_PAIRS) in cache
        assert ("c", ViewLevel.FULL) in cache
        assert len(cache) == 3

    def test_invalid_bound(self):
        with pytest.raises(ValueError):
            ViewCache(max_sessions=0)

    def test_put_get_invalidate(self):
        cache = ViewCache()
        cache.put("s", ViewLevel.FULL, ["x"])
        cache.put("s", ViewLevel.QA_PAIRS, ["y"])
        cache.put("other", ViewLevel.FULL, ["z"])

        assert cache.get("s", ViewLevel.FULL) == ["x"]
        assert ("s", ViewLevel.QA_PAIRS) in cache

        cache.invalidate("s", ViewLevel.FULL)
        assert cache.get("s", ViewLevel.FULL) is None
        assert len(cache) == 2

        cache.invalidate("s")
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0


class TestSessionViews:
    def test_uses_preference_and_caches(self, memory_source):
        views = SessionViews(memory_source)
        first = views.get_view("s1")
        second = views.get_view("s1")

        assert [(p.question.id, p.answer.id) for p in first] == [("q", "a")]
        assert [p.index for p in second] == [1]
        assert memory_source.builds == 1
        assert ("s1", ViewLevel.QA_PAIRS) in views.cache

    def test_order_applied_per_call(self, memory_source):
        views = SessionViews(memory_source)
        assert [n.id for n in views.get_view("s1", "full", "desc")] == ["t", "a", "q"]
        assert [n.id for n in views.get_view("s1", "full")] == ["q", "a", "t"]
        assert memory_source.builds == 1

    def test_preference_change_invalidates(self, memory_source):
        views = SessionViews(memory_source)
        views.get_view("s1")
        views.get_view("s1", ViewLevel.FULL)
        assert len(views.cache) == 2

        assert views.set_view_level("s1", "clean_flow") is ViewLevel.CLEAN_FLOW
        assert len(views.cache) == 0
        assert [n.id for n in views.get_view("s1")] == ["q", "a"]
        assert memory_source.builds == 3

    def test_refresh(self, memory_source):
        views = SessionViews(memory_source)
        views.get_view("s1")
        views.refresh("s1")
        views.get_view("s1")
        assert memory_source.builds == 2

    def test_unknown_session(self, memory_source):
        with pytest.raises(SessionNotFoundError):
            SessionViews(memory_source).get_view("missing")

    def test_export(self, projects_dir):
        views = SessionViews(JsonlSessionSource(projects_dir))
        result = views.export("sess1", ExportOptions(format="json"), "clean_flow")
        assert result.filename.startswith("Adding_a_config_file_")
        data = json.loads(result.content)
        assert [m["role"] for m in data["messages"]] == ["user", "assistant", "user"]
