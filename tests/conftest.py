"""
Shared fixtures: record builders and a fake projects directory.
"""

import json

import pytest

from claude_conv_views.core import Record


def rec(id, role, content="", parent=None, ts="", thread=None, msg_type=None):
    return Record(
        id=id,
        role=role,
        raw_content=content,
        parent_id=parent,
        timestamp=ts,
        thread_id=thread,
        msg_type=msg_type,
    )


def write_jsonl(path, entries):
    with open(path, 'w', encoding='utf-8') as f:
        for entry in entries:
            f.write(json.dumps(entry) + '\n')


SESSION_ENTRIES = [
    {"type": "user", "uuid": "u1", "parentUuid": None, "timestamp": "2025-01-01T10:00:00Z",
     "cwd": "/work/app", "message": {"role": "user", "content": "How do I add a config file?"}},
    {"type": "assistant", "uuid": "a1", "parentUuid": "u1", "timestamp": "2025-01-01T10:00:05Z",
     "message": {"role": "assistant", "model": "claude-test",
                 "content": [{"type": "thinking", "thinking": "Let me consider"}]}},
    {"type": "assistant", "uuid": "a2", "parentUuid": "a1", "timestamp": "2025-01-01T10:00:10Z",
     "message": {"role": "assistant", "content": [
         {"type": "tool_use", "name": "Write",
          "input": {"file_path": "/work/app/config.toml", "content": "a = 1\nb = 2"}}]}},
    {"type": "user", "uuid": "r1", "parentUuid": "a2", "timestamp": "2025-01-01T10:00:11Z",
     "message": {"role": "user", "content": [
         {"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]}},
    {"type": "assistant", "uuid": "a3", "parentUuid": "r1", "timestamp": "2025-01-01T10:00:20Z",
     "message": {"role": "assistant", "content": [{"type": "text", "text": "Created config.toml."}]}},
    {"type": "user", "uuid": "u2", "parentUuid": "a3", "timestamp": "2025-01-01T10:01:00Z",
     "message": {"role": "user", "content": "Thanks!"}},
    {"type": "summary", "summary": "Adding a config file", "leafUuid": "u2"},
]


@pytest.fixture
def projects_dir(tmp_path):
    """A projects directory holding one session, 'sess1'."""
    project = tmp_path / "projects" / "-work-app"
    project.mkdir(parents=True)
    write_jsonl(project / "sess1.jsonl", SESSION_ENTRIES)
    return tmp_path / "projects"
