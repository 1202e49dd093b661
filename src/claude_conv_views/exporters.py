"""
Export of filtered conversation views.

Supports three formats: a structured JSON document, CSV for spreadsheets,
and a readable Markdown transcript.
"""

import csv
import io
import json
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Iterable, Optional, Union

from .changes import (
    DEFAULT_KEEP_LINES,
    DEFAULT_MAX_LINES,
    extract_code_changes,
    infer_language_from_path,
    truncate_diff,
)
from .core import UnsupportedFormatError
from .views import View, view_messages


CSV_CELL_LIMIT = 1000
CSV_CODE_PREVIEW = 100

_TITLE_UNSAFE = re.compile(r'[^a-zA-Z0-9\u4e00-\u9fa5]')

ROLE_LABELS = {
    'user': 'User',
    'assistant': 'Assistant',
    'tool': 'Tool',
}


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    MARKDOWN = "markdown"

    @classmethod
    def parse(cls, value: Union["ExportFormat", str]) -> "ExportFormat":
        if isinstance(value, cls):
            return value
        for export_format in cls:
            if export_format.value == value:
                return export_format
        raise UnsupportedFormatError(value)


EXTENSIONS = {
    ExportFormat.JSON: 'json',
    ExportFormat.CSV: 'csv',
    ExportFormat.MARKDOWN: 'md',
}

MIME_TYPES = {
    ExportFormat.JSON: 'application/json',
    ExportFormat.CSV: 'text/csv',
    ExportFormat.MARKDOWN: 'text/markdown',
}


@dataclass
class ExportOptions:
    """What to render and how."""
    format: Union[ExportFormat, str] = ExportFormat.MARKDOWN
    include_metadata: bool = False
    include_code_blocks: bool = False
    include_timestamps: bool = False
    csv_delimiter: str = ','
    markdown_heading_level: int = 1
    csv_cell_limit: int = CSV_CELL_LIMIT
    max_diff_lines: int = DEFAULT_MAX_LINES
    keep_diff_lines: int = DEFAULT_KEEP_LINES

    def __post_init__(self):
        self.format = ExportFormat.parse(self.format)
        if self.csv_delimiter not in (',', ';', '\t'):
            raise ValueError(f"Unsupported CSV delimiter: {self.csv_delimiter!r}")
        if self.markdown_heading_level not in (1, 2, 3):
            raise ValueError(f"Heading level must be 1-3, got {self.markdown_heading_level}")


@dataclass
class SessionInfo:
    """Session-level fields shown in export headers."""
    id: str
    title: Optional[str] = None
    project_path: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class ExportStats:
    total_messages: int
    total_tokens: Optional[int] = None
    code_changes: Optional[int] = None

    def to_dict(self) -> dict:
        data = {
            "totalMessages": self.total_messages,
            "totalTokens": self.total_tokens,
            "codeChanges": self.code_changes,
        }
        return _drop_none(data)


@dataclass
class ExportItem:
    """One message ready for rendering."""
    role: str
    content: str
    timestamp: Optional[str] = None
    code_blocks: list[dict] = field(default_factory=list)
    metadata: Optional[dict] = None


@dataclass
class ExportData:
    session: SessionInfo
    messages: list[ExportItem]
    stats: Optional[ExportStats] = None


@dataclass
class ExportResult:
    filename: str
    content: str
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content.encode('utf-8'))


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


# =============================================================================
# View -> Export Data
# =============================================================================

def build_export_data(view: View, session: SessionInfo,
                      max_diff_lines: int = DEFAULT_MAX_LINES,
                      keep_diff_lines: int = DEFAULT_KEEP_LINES) -> ExportData:
    """
    Collect what the exporters render from a filtered view.

    Code changes become code blocks (large ones truncated) and are counted
    in the stats. QA pairs are exported as question then answer.
    """
    items = []
    change_count = 0

    for node in view_messages(view):
        changes = extract_code_changes(node)
        change_count += len(changes)

        code_blocks = []
        for change in changes:
            code = change.new_text if change.new_text is not None else change.old_text
            if code is None:
                continue
            code_blocks.append({
                'language': infer_language_from_path(change.file_path),
                'code': truncate_diff(code, max_diff_lines, keep_diff_lines),
            })

        metadata = _drop_none({
            'id': node.id,
            'parentId': node.parent_id,
            'depth': node.depth,
            'threadId': node.thread_id,
            'msgType': node.msg_type,
        })
        if node.record.metadata:
            metadata.update(node.record.metadata)
        if changes:
            metadata['codeChanges'] = [
                _drop_none({
                    'filePath': c.file_path,
                    'changeType': c.change_type,
                    'linesAdded': c.lines_added,
                    'linesRemoved': c.lines_removed,
                })
                for c in changes
            ]

        items.append(ExportItem(
            role=node.role,
            content=node.extracted_full_text,
            timestamp=node.timestamp or None,
            code_blocks=code_blocks,
            metadata=metadata,
        ))

    stats = ExportStats(total_messages=len(items), code_changes=change_count or None)
    return ExportData(session=session, messages=items, stats=stats)


def sanitize_title(title: str) -> str:
    return _TITLE_UNSAFE.sub('_', title)


def generate_filename(session_id: str, export_format: ExportFormat,
                      title: Optional[str] = None, today: Optional[date] = None) -> str:
    """Build '<title or session id>_<YYYY-MM-DD>.<ext>'."""
    stamp = (today or date.today()).isoformat()
    base = sanitize_title(title) if title else ''
    return f"{base or session_id}_{stamp}.{EXTENSIONS[export_format]}"


# =============================================================================
# Formats
# =============================================================================

def _render_json(data: ExportData, options: ExportOptions) -> str:
    session: dict[str, Any] = _drop_none({
        'id': data.session.id,
        'title': data.session.title,
        'projectPath': data.session.project_path,
        'createdAt': data.session.created_at,
        'updatedAt': data.session.updated_at,
    })
    if options.include_metadata and data.stats is not None:
        session['stats'] = data.stats.to_dict()

    messages = []
    for msg in data.messages:
        item: dict[str, Any] = {'role': msg.role, 'content': msg.content}
        if options.include_timestamps and msg.timestamp:
            item['timestamp'] = msg.timestamp
        if options.include_code_blocks and msg.code_blocks:
            item['codeBlocks'] = msg.code_blocks
        if options.include_metadata and msg.metadata:
            item['metadata'] = msg.metadata
        messages.append(item)

    return json.dumps({'session': session, 'messages': messages}, indent=2, ensure_ascii=False)


def _render_csv(data: ExportData, options: ExportOptions) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=options.csv_delimiter, lineterminator='\n')

    headers = ['Timestamp', 'Role', 'Content']
    if options.include_code_blocks:
        headers.append('Code Blocks')
    if options.include_metadata:
        headers.append('Metadata')
    writer.writerow(headers)

    for msg in data.messages:
        row = [(msg.timestamp or '') if options.include_timestamps else '', msg.role]
        row.append(msg.content.replace('\n', ' ')[:options.csv_cell_limit])

        if options.include_code_blocks:
            row.append('; '.join(
                f"[{block['language']}] {block['code'][:CSV_CODE_PREVIEW]}..."
                for block in msg.code_blocks
            ))
        if options.include_metadata:
            row.append(json.dumps(msg.metadata, ensure_ascii=False) if msg.metadata else '')

        writer.writerow(row)

    return buffer.getvalue()


def _render_markdown(data: ExportData, options: ExportOptions) -> str:
    level = options.markdown_heading_level
    heading = '#' * level
    sub_heading = '#' * (level + 1)
    message_heading = '#' * (level + 2)

    lines = [f"{heading} {data.session.title or 'Session Export'}", ""]

    if options.include_metadata:
        lines.append(f"{sub_heading} Session Information")
        lines.append("")
        lines.append(f"- **Session ID**: {data.session.id}")
        if data.session.project_path:
            lines.append(f"- **Project Path**: {data.session.project_path}")
        if data.session.created_at:
            lines.append(f"- **Created**: {data.session.created_at}")
        if data.session.updated_at:
            lines.append(f"- **Updated**: {data.session.updated_at}")
        if data.stats is not None:
            lines.append(f"- **Messages**: {data.stats.total_messages}")
            if data.stats.total_tokens:
                lines.append(f"- **Tokens**: {data.stats.total_tokens}")
            if data.stats.code_changes:
                lines.append(f"- **Code Changes**: {data.stats.code_changes}")
        lines.append("")

    lines.append(f"{sub_heading} Conversation")
    lines.append("")

    for msg in data.messages:
        label = ROLE_LABELS.get(msg.role, 'System')
        stamp = f" *({msg.timestamp})*" if options.include_timestamps and msg.timestamp else ""
        lines.append(f"{message_heading} {label}{stamp}")
        lines.append("")
        lines.append(msg.content)
        lines.append("")

        if options.include_code_blocks:
            for block in msg.code_blocks:
                lines.append(f"```{block['language']}")
                lines.append(block['code'])
                lines.append("```")
                lines.append("")

        if options.include_metadata and msg.metadata:
            lines.append(f"*Metadata: {json.dumps(msg.metadata, ensure_ascii=False)}*")
            lines.append("")

        lines.append("---")
        lines.append("")

    return "\n".join(lines)


RENDERERS = {
    ExportFormat.JSON: _render_json,
    ExportFormat.CSV: _render_csv,
    ExportFormat.MARKDOWN: _render_markdown,
}


def export_data(data: ExportData, options: ExportOptions,
                today: Optional[date] = None) -> ExportResult:
    export_format = ExportFormat.parse(options.format)
    return ExportResult(
        filename=generate_filename(data.session.id, export_format, data.session.title, today),
        content=RENDERERS[export_format](data, options),
        mime_type=MIME_TYPES[export_format],
    )


def export_view(view: View, options: ExportOptions, session: Optional[SessionInfo] = None,
                today: Optional[date] = None) -> ExportResult:
    """
    Render a filtered view as a document.

    Args:
        view: Output of filter_by_level (message nodes or QA pairs)
        options: Format and content switches
        session: Header fields; defaults to an untitled 'session'
        today: Date used in the filename (defaults to today)

    Returns:
        ExportResult with filename, content and MIME type
    """
    data = build_export_data(
        view,
        session or SessionInfo(id='session'),
        options.max_diff_lines,
        options.keep_diff_lines,
    )
    return export_data(data, options, today)


def export_batch(items: Iterable[tuple[View, SessionInfo]], options: ExportOptions,
                 today: Optional[date] = None) -> list[ExportResult]:
    return [export_view(view, options, session, today) for view, session in items]


def format_file_size(size: int) -> str:
    """Format a byte count as Bytes/KB/MB/GB."""
    if size == 0:
        return '0 Bytes'
    units = ['Bytes', 'KB', 'MB', 'GB']
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"
