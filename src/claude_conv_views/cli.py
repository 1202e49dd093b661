"""
Command-line interface for Claude Conversation Views.
"""

import argparse
import io
import logging
import sys
from pathlib import Path

# Fix Unicode output on Windows
if sys.platform == 'win32':
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

from . import __version__
from .changes import calculate_change_statistics, display_file_name, extract_all_code_changes
from .config import load_settings
from .content import extract_content, preview_text
from .core import ConvViewsError, QAPair, ViewLevel
from .exporters import ExportFormat, ExportOptions
from .sessions import JsonlSessionSource, SessionViews


logger = logging.getLogger(__name__)


def _make_views(settings) -> SessionViews:
    source = JsonlSessionSource(
        settings.projects_dir,
        preferences_path=settings.preferences_path,
        default_level=settings.default_view_level,
        preview_length=settings.preview_length,
    )
    return SessionViews(source)


def _role_tag(role: str) -> str:
    return f"[{role}]"


def cmd_list(args, settings):
    """List session files in the projects directory."""
    source = JsonlSessionSource(settings.projects_dir)
    sessions = source.list_sessions()

    if not sessions:
        print(f"No sessions found in {settings.projects_dir}")
        return 1

    print(f"\nSessions ({len(sessions)} found)")
    print("=" * 70)
    for path in sessions[:args.limit]:
        print(f"  {path.stem}  {path.parent.name}")
    return 0


def cmd_tree(args, settings):
    """Print the conversation tree of a session."""
    tree = _make_views(settings).source.get_tree(args.session)

    print(f"\nConversation Tree")
    print("=" * 70)
    print(f"Messages: {tree.total_count}")
    print(f"Roots: {len(tree.roots)}")
    print(f"Max depth: {tree.max_depth}")
    print(f"Threads: {tree.thread_count}")
    print("-" * 70)

    for node in tree.iter_nodes():
        if args.max_depth is not None and node.depth > args.max_depth:
            continue
        text = preview_text(node.extracted_full_text.replace('\n', ' '), 60)
        indent = "  " * min(node.depth, 20)
        print(f"{indent}{_role_tag(node.role):12} {text}")

    return 0


def cmd_view(args, settings):
    """Print a session at a view level."""
    views = _make_views(settings)
    level = ViewLevel.parse(args.level) if args.level else None
    view = views.get_view(args.session, level, args.order)

    for item in view:
        if isinstance(item, QAPair):
            print(f"\n## Q{item.index}  {item.timestamp}")
            print(_render_body(item.question, args, settings))
            print(f"\n-> Answer")
            print(_render_body(item.answer, args, settings) if item.answer else "(no answer)")
        else:
            print(f"\n{_role_tag(item.role)} {item.timestamp}")
            print(_render_body(item, args, settings))

    print(f"\n{len(view)} {'pairs' if view and isinstance(view[0], QAPair) else 'messages'}")
    return 0


def _render_body(node, args, settings) -> str:
    if args.raw:
        return extract_content(node.raw_content, node.role, 'raw')
    if args.full:
        return node.extracted_full_text
    return node.extracted_text


def cmd_changes(args, settings):
    """Summarize code changes made in a session."""
    tree = _make_views(settings).source.get_tree(args.session)
    changes = extract_all_code_changes(tree)
    stats = calculate_change_statistics(tree)

    print(f"\nCode Changes")
    print("=" * 70)
    for change in changes:
        removed = f"-{change.lines_removed}" if change.lines_removed is not None else ""
        print(f"  {change.change_type:7} +{change.lines_added}{removed:>6}  {display_file_name(change.file_path)}")

    print("-" * 70)
    print(f"Files: {stats.total_files} "
          f"({stats.files_created} created, {stats.files_updated} updated, {stats.files_deleted} deleted)")
    print(f"Lines: +{stats.lines_added} -{stats.lines_removed}")
    return 0


def cmd_export(args, settings):
    """Export a session view to a file."""
    views = _make_views(settings)
    options = ExportOptions(
        format=args.format,
        include_metadata=args.metadata,
        include_code_blocks=args.code_blocks,
        include_timestamps=args.timestamps,
        csv_delimiter='\t' if args.delimiter == 'tab' else args.delimiter,
        csv_cell_limit=settings.csv_cell_limit,
        max_diff_lines=settings.max_diff_lines,
        keep_diff_lines=settings.keep_diff_lines,
    )
    result = views.export(args.session, options, args.level)

    output = Path(args.output) if args.output else Path(result.filename)
    if output.is_dir():
        output = output / result.filename
    output.write_text(result.content, encoding='utf-8')

    print(f"[OK] Exported {result.size} bytes to {output}")
    return 0


def cmd_gui(args, settings):
    """Launch the desktop viewer."""
    from .gui import run_gui
    run_gui()
    return 0


def main(argv=None):
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog='claude-conv-views',
        description='Browse Claude Code conversations as trees, clean flows and Q&A pairs'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Show debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    list_parser = subparsers.add_parser('list', help='List session files')
    list_parser.add_argument('--limit', type=int, default=30, help='Maximum sessions to show')

    tree_parser = subparsers.add_parser('tree', help='Show the conversation tree')
    tree_parser.add_argument('session', help='Session id or path to .jsonl file')
    tree_parser.add_argument('--max-depth', type=int, help='Hide nodes deeper than this')

    levels = [level.value for level in ViewLevel]

    view_parser = subparsers.add_parser('view', help='Show a session at a view level')
    view_parser.add_argument('session', help='Session id or path to .jsonl file')
    view_parser.add_argument('--level', '-l', choices=levels, help='View level (default: saved preference)')
    view_parser.add_argument('--order', choices=['asc', 'desc'], help='Sort by timestamp')
    view_parser.add_argument('--full', action='store_true', help='Show full text instead of previews')
    view_parser.add_argument('--raw', action='store_true', help='Show raw content')

    changes_parser = subparsers.add_parser('changes', help='Summarize code changes')
    changes_parser.add_argument('session', help='Session id or path to .jsonl file')

    export_parser = subparsers.add_parser('export', help='Export a session view')
    export_parser.add_argument('session', help='Session id or path to .jsonl file')
    export_parser.add_argument('--format', '-f', choices=[f.value for f in ExportFormat], default='markdown')
    export_parser.add_argument('--level', '-l', choices=levels, help='View level (default: saved preference)')
    export_parser.add_argument('--output', '-o', help='Output file or directory')
    export_parser.add_argument('--metadata', action='store_true', help='Include metadata')
    export_parser.add_argument('--code-blocks', action='store_true', help='Include code changes')
    export_parser.add_argument('--timestamps', action='store_true', help='Include timestamps')
    export_parser.add_argument('--delimiter', choices=[',', ';', 'tab'], default=',', help='CSV delimiter')

    subparsers.add_parser('gui', help='Open the desktop viewer')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        'list': cmd_list,
        'tree': cmd_tree,
        'view': cmd_view,
        'changes': cmd_changes,
        'export': cmd_export,
        'gui': cmd_gui,
    }

    settings = load_settings()
    logger.debug("Projects directory: %s", settings.projects_dir)

    try:
        return commands[args.command](args, settings)
    except ConvViewsError as e:
        print(f"[FAILED] {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
