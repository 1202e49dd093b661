"""
Code-change extraction and diff truncation.

Assistant messages carry tool invocations shaped like
``{"name": "write", "input": {...}}``, either as structured content or
embedded in text. Write/edit/delete invocations are turned into
CodeChangeInfo records with line statistics.
"""

import dataclasses
import json
import logging
from collections.abc import Mapping
from typing import Any, Iterable, Iterator, Optional, Union

from .core import ChangeStatistics, CodeChangeInfo, ConversationTree, MessageNode


logger = logging.getLogger(__name__)

DEFAULT_MAX_LINES = 1000
DEFAULT_KEEP_LINES = 300

WRITE_TOOLS = {"write", "create"}
EDIT_TOOLS = {"edit", "update"}
DELETE_TOOLS = {"delete", "remove"}

LANGUAGES = {
    'py': 'python',
    'ts': 'typescript',
    'tsx': 'typescript',
    'js': 'javascript',
    'jsx': 'javascript',
    'rs': 'rust',
    'go': 'go',
    'java': 'java',
    'cs': 'csharp',
    'c': 'c',
    'h': 'c',
    'cpp': 'cpp',
    'cc': 'cpp',
    'hpp': 'cpp',
    'rb': 'ruby',
    'php': 'php',
    'swift': 'swift',
    'kt': 'kotlin',
    'html': 'html',
    'css': 'css',
    'scss': 'scss',
    'json': 'json',
    'yaml': 'yaml',
    'yml': 'yaml',
    'toml': 'toml',
    'md': 'markdown',
    'sql': 'sql',
    'sh': 'bash',
    'bash': 'bash',
    'ps1': 'powershell',
    'xml': 'xml',
}


def count_lines(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(text.split("\n"))


# =============================================================================
# Envelope Scanning
# =============================================================================

def _decode_embedded(text: str) -> list[dict]:
    """Decode every JSON object embedded in text, skipping broken fragments."""
    decoder = json.JSONDecoder()
    found = []
    pos = text.find("{")
    while pos != -1:
        try:
            value, end = decoder.raw_decode(text, pos)
        except ValueError:
            pos = text.find("{", pos + 1)
            continue
        found.append(value)
        pos = text.find("{", end)
    return found


def find_tool_envelopes(raw: Any) -> list[tuple[str, Mapping]]:
    """
    Collect every ``{name, input}`` envelope in a record's content.

    Structured content is walked directly; strings are scanned for embedded
    JSON objects. Order follows the content, left to right.
    """
    envelopes = []
    stack = [raw]
    while stack:
        value = stack.pop()
        if isinstance(value, str):
            if "{" in value:
                stack.extend(reversed(_decode_embedded(value)))
        elif isinstance(value, Mapping):
            name = value.get("name")
            tool_input = value.get("input")
            if isinstance(name, str) and isinstance(tool_input, Mapping):
                envelopes.append((name, tool_input))
                continue
            stack.extend(reversed(list(value.values())))
        elif isinstance(value, (list, tuple)):
            stack.extend(reversed(value))
    return envelopes


def _first_str(tool_input: Mapping, *keys: str) -> Optional[str]:
    for key in keys:
        value = tool_input.get(key)
        if isinstance(value, str):
            return value
    return None


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def change_from_envelope(name: str, tool_input: Mapping) -> Optional[CodeChangeInfo]:
    """Convert one tool invocation into a code change, or None if it isn't one."""
    tool = name.lower()
    file_path = _first_str(tool_input, "file_path", "path")
    if not file_path:
        return None

    if tool in WRITE_TOOLS:
        content = _first_str(tool_input, "content")
        if content is None:
            return None
        return CodeChangeInfo(
            file_path=file_path,
            change_type="create",
            new_text=content,
            lines_added=count_lines(content),
            tool_name=name,
        )

    if tool in EDIT_TOOLS:
        old_text = _first_str(tool_input, "old_text", "old_string")
        new_text = _first_str(tool_input, "new_text", "new_string")
        if not old_text and not new_text:
            return None
        return CodeChangeInfo(
            file_path=file_path,
            change_type="update",
            old_text=old_text,
            new_text=new_text,
            lines_added=count_lines(new_text),
            lines_removed=count_lines(old_text),
            start_line=_optional_int(tool_input.get("start_line")),
            end_line=_optional_int(tool_input.get("end_line")),
            tool_name=name,
        )

    if tool in DELETE_TOOLS:
        old_text = _first_str(tool_input, "content", "old_text")
        return CodeChangeInfo(
            file_path=file_path,
            change_type="delete",
            old_text=old_text,
            lines_removed=count_lines(old_text),
            tool_name=name,
        )

    return None


# =============================================================================
# Node and Tree Extraction
# =============================================================================

def extract_code_changes(node: MessageNode) -> list[CodeChangeInfo]:
    """
    Extract the code changes a message node performed.

    Returns the node's cached changes when it was already enriched.
    """
    if node.code_changes is not None:
        return list(node.code_changes)

    changes = []
    for name, tool_input in find_tool_envelopes(node.raw_content):
        change = change_from_envelope(name, tool_input)
        if change is None:
            logger.debug("Ignoring tool call %r in node %s", name, node.id)
            continue
        changes.append(change)
    return changes


def enrich_with_code_changes(node: MessageNode) -> MessageNode:
    """Return a copy of the node with its code changes cached on it."""
    return dataclasses.replace(node, code_changes=tuple(extract_code_changes(node)))


def _iter_source(source: Union[ConversationTree, MessageNode, Iterable[MessageNode]]) -> Iterator[MessageNode]:
    if isinstance(source, ConversationTree):
        return source.iter_nodes()
    if isinstance(source, MessageNode):
        return source.iter_subtree()
    return iter(source)


def extract_all_code_changes(source) -> list[CodeChangeInfo]:
    """Changes from a whole tree, a node's subtree, or a flat list of nodes."""
    changes = []
    for node in _iter_source(source):
        changes.extend(extract_code_changes(node))
    return changes


def group_changes_by_file(changes: Iterable[CodeChangeInfo]) -> dict[str, list[CodeChangeInfo]]:
    grouped: dict[str, list[CodeChangeInfo]] = {}
    for change in changes:
        grouped.setdefault(change.file_path, []).append(change)
    return grouped


def calculate_change_statistics(source) -> ChangeStatistics:
    """Aggregate file and line counts over every change in the source."""
    stats = ChangeStatistics()
    unique_files = set()

    for change in extract_all_code_changes(source):
        unique_files.add(change.file_path)
        stats.lines_added += change.lines_added or 0
        stats.lines_removed += change.lines_removed or 0

        if change.change_type == "create":
            stats.files_created += 1
        elif change.change_type == "update":
            stats.files_updated += 1
        elif change.change_type == "delete":
            stats.files_deleted += 1

    stats.total_files = len(unique_files)
    return stats


def display_file_name(path: str) -> str:
    """Shorten a path to its last two components."""
    parts = path.split('/')
    if len(parts) <= 2:
        return path
    return '.../' + '/'.join(parts[-2:])


def infer_language_from_path(path: str) -> str:
    """Guess a code-fence language from a file extension."""
    name = path.replace('\\', '/').split('/')[-1].lower()
    if name == 'dockerfile':
        return 'dockerfile'
    if '.' not in name:
        return 'text'
    return LANGUAGES.get(name.rsplit('.', 1)[1], 'text')


# =============================================================================
# Truncation
# =============================================================================

def truncate_diff(text: str, max_lines: int = DEFAULT_MAX_LINES,
                  keep_lines: int = DEFAULT_KEEP_LINES) -> str:
    """
    Bound the size of a large content block.

    Text over max_lines keeps its first and last keep_lines lines with a
    single marker line in between stating how many lines were left out.

    Args:
        text: The content to bound
        max_lines: Line count at or below which text is returned unchanged
        keep_lines: Lines kept at each end when truncating

    Returns:
        The original or truncated text
    """
    if max_lines < 0 or keep_lines < 0:
        raise ValueError("max_lines and keep_lines must not be negative")

    lines = text.split("\n")
    total = len(lines)
    if total <= max_lines or total <= 2 * keep_lines + 1:
        return text

    omitted = total - 2 * keep_lines
    marker = f"... ({omitted} lines omitted, {total} total)"
    return "\n".join(lines[:keep_lines] + [marker] + lines[total - keep_lines:])


def is_large_diff(change: CodeChangeInfo, max_lines: int = DEFAULT_MAX_LINES) -> bool:
    return max(count_lines(change.old_text), count_lines(change.new_text)) > max_lines


def truncate_change(change: CodeChangeInfo, max_lines: int = DEFAULT_MAX_LINES,
                    keep_lines: int = DEFAULT_KEEP_LINES) -> CodeChangeInfo:
    """Truncate the old and new sides of a change, each by its own length."""
    old_text = change.old_text
    new_text = change.new_text
    if old_text is not None:
        old_text = truncate_diff(old_text, max_lines, keep_lines)
    if new_text is not None:
        new_text = truncate_diff(new_text, max_lines, keep_lines)
    return dataclasses.replace(change, old_text=old_text, new_text=new_text)
