"""
Core data model for Claude Conversation Views.

This module contains the record/node/tree types shared by every view and
the builder that links a flat, append-only list of records into a
conversation tree.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Iterable, Iterator, Optional, Union

from .content import extract_content, preview_text


logger = logging.getLogger(__name__)

ROLES = ("user", "assistant", "system", "tool")
THINKING_MARKER = "thinking"
DEFAULT_PREVIEW_LENGTH = 200


# =============================================================================
# Errors
# =============================================================================

class ConvViewsError(Exception):
    """Base class for errors raised by the view engine."""


class InvalidViewLevelError(ConvViewsError, ValueError):
    """A view level outside the supported set was requested."""

    def __init__(self, level):
        self.level = level
        super().__init__(f"Invalid view level: {level!r}")


class UnsupportedFormatError(ConvViewsError, ValueError):
    """An export format outside the supported set was requested."""

    def __init__(self, export_format):
        self.format = export_format
        super().__init__(f"Unsupported export format: {export_format!r}")


class SessionNotFoundError(ConvViewsError, LookupError):
    """The session source has no log for the requested session id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


# =============================================================================
# View levels
# =============================================================================

class ViewLevel(str, Enum):
    """Filtering granularity applied to a conversation."""
    FULL = "full"
    CLEAN_FLOW = "clean_flow"
    QA_PAIRS = "qa_pairs"

    @classmethod
    def parse(cls, value: Union["ViewLevel", str]) -> "ViewLevel":
        """Parse a level from its wire value (or the legacy 'conversation' alias)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key == "conversation":
                return cls.CLEAN_FLOW
            for level in cls:
                if level.value == key:
                    return level
        raise InvalidViewLevelError(value)

    @property
    def display_name(self) -> str:
        return _LEVEL_LABELS[self][0]

    @property
    def description(self) -> str:
        return _LEVEL_LABELS[self][1]


_LEVEL_LABELS = {
    ViewLevel.FULL: ("Full", "Every record, including tool calls and system notices"),
    ViewLevel.CLEAN_FLOW: ("Clean flow", "User and assistant messages without interim reasoning"),
    ViewLevel.QA_PAIRS: ("Q&A pairs", "Each question paired with the assistant's answer"),
}


# =============================================================================
# Data Models
# =============================================================================

@dataclass(frozen=True)
class Record:
    """One raw conversational turn as received from the backend."""
    id: str
    role: str
    raw_content: Any = None
    parent_id: Optional[str] = None
    timestamp: str = ""
    thread_id: Optional[str] = None
    msg_type: Optional[str] = None
    metadata: Optional[dict] = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown role {self.role!r} for record {self.id}")

    @classmethod
    def from_dict(cls, data: dict) -> "Record":
        """Build a record from the backend's camelCase dict form."""
        return cls(
            id=str(data["id"]),
            role=data["role"],
            raw_content=data.get("rawContent", data.get("raw_content")),
            parent_id=data.get("parentId", data.get("parent_id")),
            timestamp=data.get("timestamp") or "",
            thread_id=data.get("threadId", data.get("thread_id")),
            msg_type=data.get("msgType", data.get("msg_type")),
            metadata=data.get("metadata"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "role": self.role,
            "rawContent": self.raw_content,
            "timestamp": self.timestamp,
            "threadId": self.thread_id,
            "msgType": self.msg_type,
        }


@dataclass(frozen=True)
class CodeChangeInfo:
    """A create/update/delete diff extracted from a tool invocation."""
    file_path: str
    change_type: str
    old_text: Optional[str] = None
    new_text: Optional[str] = None
    lines_added: int = 0
    lines_removed: Optional[int] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    tool_name: str = ""

    def to_dict(self) -> dict:
        data = {
            "filePath": self.file_path,
            "changeType": self.change_type,
            "oldText": self.old_text,
            "newText": self.new_text,
            "linesAdded": self.lines_added,
            "linesRemoved": self.lines_removed,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "toolName": self.tool_name,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class ChangeStatistics:
    """Tree-wide summary of code changes."""
    total_files: int = 0
    files_created: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    lines_added: int = 0
    lines_removed: int = 0

    def to_dict(self) -> dict:
        return {
            "totalFiles": self.total_files,
            "filesCreated": self.files_created,
            "filesUpdated": self.files_updated,
            "filesDeleted": self.files_deleted,
            "linesAdded": self.lines_added,
            "linesRemoved": self.lines_removed,
        }


@dataclass(eq=False)
class MessageNode:
    """A record enriched with its tree position and derived text.

    Nodes are rebuilt on every build and treated as immutable afterwards;
    enrichment (code changes) produces a copy instead of touching the node.
    """
    record: Record
    depth: int = 0
    children: list["MessageNode"] = field(default_factory=list)
    code_changes: Optional[tuple[CodeChangeInfo, ...]] = None
    preview_length: int = DEFAULT_PREVIEW_LENGTH

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def parent_id(self) -> Optional[str]:
        return self.record.parent_id

    @property
    def role(self) -> str:
        return self.record.role

    @property
    def timestamp(self) -> str:
        return self.record.timestamp

    @property
    def thread_id(self) -> Optional[str]:
        return self.record.thread_id

    @property
    def msg_type(self) -> Optional[str]:
        return self.record.msg_type

    @property
    def raw_content(self) -> Any:
        return self.record.raw_content

    @cached_property
    def extracted_full_text(self) -> str:
        return extract_content(self.record.raw_content, self.record.role)

    @cached_property
    def extracted_text(self) -> str:
        """Preview of the extracted text for list rendering."""
        return preview_text(self.extracted_full_text, self.preview_length)

    @property
    def has_more(self) -> bool:
        """Whether the preview hides part of the full text ("show more")."""
        return self.extracted_text != self.extracted_full_text

    def iter_subtree(self) -> Iterator["MessageNode"]:
        """Walk this node and its descendants, parent before children."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    @property
    def subtree_size(self) -> int:
        return sum(1 for _ in self.iter_subtree())

    def to_dict(self) -> dict:
        """Flat wire form (children are not included)."""
        data = {
            "id": self.id,
            "parentId": self.parent_id,
            "depth": self.depth,
            "role": self.role,
            "msgType": self.msg_type,
            "timestamp": self.timestamp,
            "threadId": self.thread_id,
            "content": self.extracted_text,
            "fullContent": self.extracted_full_text,
        }
        if self.code_changes is not None:
            data["codeChanges"] = [c.to_dict() for c in self.code_changes]
        return data


@dataclass(frozen=True)
class QAPair:
    """A user question and the assistant reply that closed it."""
    question: MessageNode
    answer: Optional[MessageNode]
    index: int

    @property
    def timestamp(self) -> str:
        return self.question.timestamp

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "question": self.question.to_dict(),
            "answer": self.answer.to_dict() if self.answer is not None else None,
            "timestamp": self.timestamp,
        }


@dataclass
class ConversationTree:
    """A forest of message nodes plus summary counts."""
    roots: list[MessageNode] = field(default_factory=list)
    total_count: int = 0
    max_depth: int = 0
    thread_count: int = 0

    def iter_nodes(self) -> Iterator[MessageNode]:
        """Depth-first walk over every root, parent before children."""
        for root in self.roots:
            yield from root.iter_subtree()

    def find(self, node_id: str) -> Optional[MessageNode]:
        found = None
        for node in self.iter_nodes():
            if node.id == node_id:
                found = node
        return found

    def to_dict(self) -> dict:
        """Nested wire form, built without recursion so deep chains are safe."""
        root_dicts = []
        stack = [(root, root_dicts) for root in reversed(self.roots)]
        while stack:
            node, siblings = stack.pop()
            data = node.to_dict()
            data["children"] = []
            siblings.append(data)
            for child in reversed(node.children):
                stack.append((child, data["children"]))
        return {
            "roots": root_dicts,
            "totalCount": self.total_count,
            "maxDepth": self.max_depth,
            "threadCount": self.thread_count,
        }


# =============================================================================
# Tree Building
# =============================================================================

def count_threads(records: list[Record]) -> int:
    """Distinct thread ids plus one for untagged records (at least 1 if any)."""
    if not records:
        return 0
    thread_ids = {r.thread_id for r in records if r.thread_id is not None}
    untagged = any(r.thread_id is None for r in records)
    return max(1, len(thread_ids) + (1 if untagged else 0))


def _assign_depths(start: list[MessageNode], visited: set[int]) -> int:
    """Breadth-first depth assignment; returns the deepest level reached."""
    deepest = 0
    queue = deque((node, 0) for node in start)
    while queue:
        node, depth = queue.popleft()
        if id(node) in visited:
            continue
        visited.add(id(node))
        node.depth = depth
        deepest = max(deepest, depth)
        for child in node.children:
            queue.append((child, depth + 1))
    return deepest


def build_tree(records: Iterable[Union[Record, dict]],
               preview_length: int = DEFAULT_PREVIEW_LENGTH) -> ConversationTree:
    """
    Link flat records into a conversation tree.

    Records whose parent id is missing or does not resolve become roots.
    When ids are duplicated the last record wins the lookup; every record
    still becomes a node, so no data is dropped.

    Args:
        records: Records (or their dict form) in ingestion order
        preview_length: Characters kept in each node's extracted_text

    Returns:
        A freshly built ConversationTree
    """
    records = [r if isinstance(r, Record) else Record.from_dict(r) for r in records]
    nodes = [MessageNode(record=r, preview_length=preview_length) for r in records]

    index: dict[str, MessageNode] = {}
    for node in nodes:
        index[node.id] = node

    roots = []
    parent_of: dict[int, MessageNode] = {}
    for node in nodes:
        parent = index.get(node.parent_id) if node.parent_id is not None else None
        if parent is None or parent is node:
            if node.parent_id is not None:
                logger.debug("Record %s has unresolved parent %s; treating as root",
                             node.id, node.parent_id)
            roots.append(node)
            continue
        parent.children.append(node)
        parent_of[id(node)] = parent

    visited: set[int] = set()
    max_depth = _assign_depths(roots, visited)

    # Parent cycles leave nodes unreachable from any root; detach one
    # member of each cycle and promote it.
    if len(visited) < len(nodes):
        for node in nodes:
            if id(node) in visited:
                continue
            seen = set()
            member = node
            while id(member) not in seen:
                seen.add(id(member))
                member = parent_of[id(member)]
            logger.warning("Record %s is part of a parent cycle; promoting to root", member.id)
            parent_of[id(member)].children.remove(member)
            roots.append(member)
            max_depth = max(max_depth, _assign_depths([member], visited))

    return ConversationTree(
        roots=roots,
        total_count=len(nodes),
        max_depth=max_depth,
        thread_count=count_threads(records),
    )


def ensure_tree(source: Union[ConversationTree, Iterable[Union[Record, dict]]]) -> ConversationTree:
    """Accept either a pre-built tree or the records to build one from."""
    if isinstance(source, ConversationTree):
        return source
    return build_tree(source)
