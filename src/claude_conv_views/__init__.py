"""
Claude Conversation Views
=========================

Tree and multi-level views of Claude Code conversations.

Key insight: a session log is a flat, append-only list of records linked
by parent ids. Rebuilding the tree on every request and deriving views
from it (full, clean flow, Q&A pairs) keeps every view consistent with
the log without storing anything.
"""

__version__ = "0.1.0"

from .content import extract_content
from .core import (
    ChangeStatistics,
    CodeChangeInfo,
    ConversationTree,
    ConvViewsError,
    InvalidViewLevelError,
    MessageNode,
    QAPair,
    Record,
    SessionNotFoundError,
    UnsupportedFormatError,
    ViewLevel,
    build_tree,
)
from .views import SortOrder, filter_by_level
from .changes import calculate_change_statistics, extract_code_changes, truncate_diff
from .exporters import ExportFormat, ExportOptions, ExportResult, SessionInfo, export_view

__all__ = [
    "ChangeStatistics",
    "CodeChangeInfo",
    "ConversationTree",
    "ConvViewsError",
    "ExportFormat",
    "ExportOptions",
    "ExportResult",
    "InvalidViewLevelError",
    "MessageNode",
    "QAPair",
    "Record",
    "SessionInfo",
    "SessionNotFoundError",
    "SortOrder",
    "UnsupportedFormatError",
    "ViewLevel",
    "build_tree",
    "calculate_change_statistics",
    "export_view",
    "extract_code_changes",
    "extract_content",
    "filter_by_level",
    "truncate_diff",
]
