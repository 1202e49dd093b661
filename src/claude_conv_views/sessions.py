"""
Session sources and view caching.

A SessionSource is whatever owns the conversation logs: it hands out
records (or a built tree) per session and stores each session's preferred
view level. JsonlSessionSource reads Claude Code's .jsonl session files
directly. SessionViews puts an explicit (session, level) cache in front of
a source.
"""

import json
import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Optional, Union

from .content import extract_content
from .core import (
    DEFAULT_PREVIEW_LENGTH,
    ConversationTree,
    InvalidViewLevelError,
    QAPair,
    Record,
    SessionNotFoundError,
    ViewLevel,
    build_tree,
)
from .exporters import ExportOptions, ExportResult, SessionInfo, export_view
from .views import SortOrder, View, filter_by_level, sort_view, view_messages


logger = logging.getLogger(__name__)

SESSION_TYPES = ('user', 'assistant', 'system')
CONTINUATION_PREFIX = 'This session is being continued'
DEFAULT_CACHED_SESSIONS = 8


class SessionSource:
    """The backend contract the view engine consumes."""

    preview_length = DEFAULT_PREVIEW_LENGTH

    def get_records(self, session_id: str) -> list[Record]:
        raise NotImplementedError

    def get_tree(self, session_id: str) -> ConversationTree:
        return build_tree(self.get_records(session_id), self.preview_length)

    def get_session_info(self, session_id: str) -> SessionInfo:
        return SessionInfo(id=session_id)

    def get_view_level_preference(self, session_id: str) -> ViewLevel:
        raise NotImplementedError

    def save_view_level_preference(self, session_id: str, level: Union[ViewLevel, str]) -> None:
        raise NotImplementedError

    def get_messages_by_level(self, session_id: str, level: Union[ViewLevel, str]) -> list[Record]:
        view = filter_by_level(self.get_tree(session_id), level)
        return [node.record for node in view_messages(view)]

    def get_qa_pairs_by_level(self, session_id: str, level: Union[ViewLevel, str]) -> list[QAPair]:
        level = ViewLevel.parse(level)
        if level is not ViewLevel.QA_PAIRS:
            raise InvalidViewLevelError(level.value)
        return filter_by_level(self.get_tree(session_id), level)

    def export_session(self, session_id: str, level: Union[ViewLevel, str],
                       export_format: str) -> str:
        view = filter_by_level(self.get_tree(session_id), level)
        options = ExportOptions(format=export_format)
        return export_view(view, options, self.get_session_info(session_id)).content


# =============================================================================
# Claude Code JSONL Files
# =============================================================================

def _content_blocks(message: Any) -> list:
    if isinstance(message, dict) and isinstance(message.get('content'), list):
        return [c for c in message['content'] if isinstance(c, dict)]
    return []


def record_from_entry(entry: dict) -> Optional[Record]:
    """
    Convert one decoded .jsonl line into a Record.

    User lines that only carry tool results become 'tool' records, as do
    assistant lines that only carry tool calls. Assistant lines made only
    of thinking blocks are marked as thinking.

    Returns:
        Record, or None for lines that aren't conversation turns
    """
    entry_type = entry.get('type')
    if entry_type not in SESSION_TYPES or not entry.get('uuid'):
        return None

    message = entry.get('message')
    raw_content = message if message is not None else entry.get('content')
    block_types = {c.get('type') for c in _content_blocks(message)}

    role = entry_type
    msg_type = None
    if entry_type == 'user' and block_types == {'tool_result'}:
        role = 'tool'
        msg_type = 'tool_result'
    elif entry_type == 'assistant' and block_types == {'tool_use'}:
        role = 'tool'
        msg_type = 'tool_use'
    elif entry_type == 'assistant' and block_types == {'thinking'}:
        msg_type = 'thinking'
    elif entry.get('isMeta'):
        msg_type = 'meta'

    thread_id = entry.get('agentId') or ('sidechain' if entry.get('isSidechain') else None)

    metadata = {
        key: entry[key] for key in ('cwd', 'gitBranch', 'version')
        if entry.get(key)
    }
    if isinstance(message, dict) and message.get('model'):
        metadata['model'] = message['model']

    return Record(
        id=entry['uuid'],
        parent_id=entry.get('parentUuid'),
        role=role,
        raw_content=raw_content,
        timestamp=entry.get('timestamp') or '',
        thread_id=thread_id,
        msg_type=msg_type,
        metadata=metadata or None,
    )


def read_session_file(path: Path) -> tuple[list[Record], dict[str, str]]:
    """
    Parse a .jsonl conversation file.

    Returns:
        tuple: (records in file order, dict mapping leafUuid -> summary)
    """
    records = []
    summaries = {}

    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("%s:%d: skipping undecodable line", path.name, line_no)
                continue
            if not isinstance(data, dict):
                continue

            if data.get('type') == 'summary' and data.get('leafUuid'):
                summaries[data['leafUuid']] = data.get('summary', '')
                continue

            try:
                record = record_from_entry(data)
            except ValueError as e:
                logger.warning("%s:%d: %s", path.name, line_no, e)
                continue
            if record is not None:
                records.append(record)

    return records, summaries


def first_user_prompt(records: list[Record], max_length: int = 50) -> Optional[str]:
    """The first meaningful user prompt, cut to max_length characters."""
    for record in records:
        if record.role != 'user' or record.msg_type == 'meta':
            continue
        text = extract_content(record.raw_content, record.role).strip()
        if not text or text.startswith('<ide_') or text.startswith(CONTINUATION_PREFIX):
            continue
        return text[:max_length] + '...' if len(text) > max_length else text
    return None


def is_session_file(path: Path) -> bool:
    return (
        path.suffix == '.jsonl'
        and not path.name.startswith('agent-')
        and not path.name.endswith('.backup')
    )


class JsonlSessionSource(SessionSource):
    """
    Session source backed by a Claude Code projects directory.

    Session ids are .jsonl file stems; a path to a .jsonl file is also
    accepted. Preferences live in memory and, when preferences_path is
    set, in a JSON file.
    """

    def __init__(self, projects_dir: Path, preferences_path: Optional[Path] = None,
                 default_level: ViewLevel = ViewLevel.QA_PAIRS,
                 preview_length: int = DEFAULT_PREVIEW_LENGTH):
        self.projects_dir = Path(projects_dir)
        self.preview_length = preview_length
        self.preferences_path = preferences_path
        self.default_level = default_level
        self._preferences = self._load_preferences()

    def list_sessions(self) -> list[Path]:
        """All session files, newest first."""
        if not self.projects_dir.exists():
            return []
        files = [
            f for project in self.projects_dir.iterdir() if project.is_dir()
            for f in project.iterdir() if is_session_file(f)
        ]
        files.sort(key=lambda f: f.stat().st_mtime, reverse=True)
        return files

    def find_session_file(self, session_id: str) -> Path:
        candidate = Path(session_id)
        if candidate.suffix == '.jsonl' and candidate.is_file():
            return candidate
        if self.projects_dir.exists():
            for project in self.projects_dir.iterdir():
                path = project / f"{session_id}.jsonl"
                if path.is_file():
                    return path
        raise SessionNotFoundError(session_id)

    def get_records(self, session_id: str) -> list[Record]:
        records, _ = read_session_file(self.find_session_file(session_id))
        return records

    def get_session_info(self, session_id: str) -> SessionInfo:
        path = self.find_session_file(session_id)
        records, summaries = read_session_file(path)

        title = None
        if records and summaries:
            by_id = {r.id: r for r in records}
            leaves = [leaf for leaf in summaries if leaf in by_id]
            if leaves:
                latest = max(leaves, key=lambda leaf: by_id[leaf].timestamp)
                title = summaries[latest]
        if title is None:
            title = first_user_prompt(records)

        timestamps = sorted(r.timestamp for r in records if r.timestamp)
        return SessionInfo(
            id=path.stem,
            title=title,
            project_path=path.parent.name,
            created_at=timestamps[0] if timestamps else None,
            updated_at=timestamps[-1] if timestamps else None,
        )

    def _load_preferences(self) -> dict[str, str]:
        if self.preferences_path is None or not self.preferences_path.exists():
            return {}
        try:
            with open(self.preferences_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read view preferences from %s: %s", self.preferences_path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get_view_level_preference(self, session_id: str) -> ViewLevel:
        stored = self._preferences.get(session_id)
        if stored is None:
            return self.default_level
        try:
            return ViewLevel.parse(stored)
        except InvalidViewLevelError:
            logger.warning("Stored view level %r for %s is invalid", stored, session_id)
            return self.default_level

    def save_view_level_preference(self, session_id: str, level: Union[ViewLevel, str]) -> None:
        self._preferences[session_id] = ViewLevel.parse(level).value
        if self.preferences_path is None:
            return
        self.preferences_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.preferences_path, 'w', encoding='utf-8') as f:
            json.dump(self._preferences, f, indent=2)


# =============================================================================
# Caching
# =============================================================================

class ViewCache:
    """
    Filtered views keyed by (session id, level), invalidated explicitly.

    At most max_sessions sessions are kept; storing a view for another
    session evicts every level of the least recently used one.
    """

    def __init__(self, max_sessions: int = DEFAULT_CACHED_SESSIONS):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self._views: dict[tuple[str, ViewLevel], View] = {}
        self._recent: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id: str, level: ViewLevel) -> Optional[View]:
        with self._lock:
            view = self._views.get((session_id, level))
            if view is not None:
                self._recent.move_to_end(session_id)
            return view

    def put(self, session_id: str, level: ViewLevel, view: View) -> None:
        with self._lock:
            self._views[(session_id, level)] = view
            self._recent[session_id] = None
            self._recent.move_to_end(session_id)
            while len(self._recent) > self.max_sessions:
                oldest, _ = self._recent.popitem(last=False)
                self._drop_session(oldest)
                logger.debug("Evicted cached views of %s", oldest)

    def _drop_session(self, session_id: str) -> None:
        for key in [k for k in self._views if k[0] == session_id]:
            del self._views[key]

    def invalidate(self, session_id: str, level: Optional[ViewLevel] = None) -> None:
        """Drop one level of a session, or every level when level is None."""
        with self._lock:
            if level is not None:
                self._views.pop((session_id, level), None)
                if not any(k[0] == session_id for k in self._views):
                    self._recent.pop(session_id, None)
                return
            self._drop_session(session_id)
            self._recent.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._views.clear()
            self._recent.clear()

    def __contains__(self, key: tuple[str, ViewLevel]) -> bool:
        with self._lock:
            return key in self._views

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)


class SessionViews:
    """Views of sessions from a source, cached until the session changes."""

    def __init__(self, source: SessionSource, cache: Optional[ViewCache] = None):
        self.source = source
        self.cache = cache if cache is not None else ViewCache()

    def get_view(self, session_id: str, level: Optional[Union[ViewLevel, str]] = None,
                 order: Optional[Union[SortOrder, str]] = None) -> View:
        """
        Get a session's view, using its saved level when none is given.

        The cache holds views in ingestion order; sorting is applied per call.
        """
        if level is None:
            level = self.source.get_view_level_preference(session_id)
        level = ViewLevel.parse(level)

        view = self.cache.get(session_id, level)
        if view is None:
            view = filter_by_level(self.source.get_tree(session_id), level)
            self.cache.put(session_id, level, view)
        return sort_view(view, order)

    def set_view_level(self, session_id: str, level: Union[ViewLevel, str]) -> ViewLevel:
        level = ViewLevel.parse(level)
        self.source.save_view_level_preference(session_id, level)
        self.cache.invalidate(session_id)
        return level

    def refresh(self, session_id: str) -> None:
        """Forget cached views after the session's log changed."""
        self.cache.invalidate(session_id)

    def export(self, session_id: str, options: ExportOptions,
               level: Optional[Union[ViewLevel, str]] = None) -> ExportResult:
        view = self.get_view(session_id, level)
        return export_view(view, options, self.source.get_session_info(session_id))
