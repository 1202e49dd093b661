"""
Settings for Claude Conversation Views.

Defaults match the engine's built-in thresholds; each can be overridden
with a CLAUDE_CONV_VIEWS_* environment variable.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .changes import DEFAULT_KEEP_LINES, DEFAULT_MAX_LINES
from .core import DEFAULT_PREVIEW_LENGTH, ViewLevel
from .exporters import CSV_CELL_LIMIT


logger = logging.getLogger(__name__)

ENV_PREFIX = "CLAUDE_CONV_VIEWS_"


def get_claude_projects_dir() -> Path:
    """Get the Claude projects directory for the current OS."""
    if sys.platform == 'win32':
        base = os.environ.get('USERPROFILE', '')
    else:
        base = os.path.expanduser('~')
    return Path(base) / '.claude' / 'projects'


@dataclass
class ViewSettings:
    max_diff_lines: int = DEFAULT_MAX_LINES
    keep_diff_lines: int = DEFAULT_KEEP_LINES
    preview_length: int = DEFAULT_PREVIEW_LENGTH
    csv_cell_limit: int = CSV_CELL_LIMIT
    default_view_level: ViewLevel = ViewLevel.QA_PAIRS
    projects_dir: Path = field(default_factory=get_claude_projects_dir)
    preferences_path: Optional[Path] = None


_INT_SETTINGS = ("max_diff_lines", "keep_diff_lines", "preview_length", "csv_cell_limit")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> ViewSettings:
    """
    Build settings from the environment.

    Invalid values are logged and the default is kept.

    Args:
        environ: Mapping to read instead of os.environ

    Returns:
        ViewSettings with overrides applied
    """
    if environ is None:
        environ = os.environ

    settings = ViewSettings()

    for name in _INT_SETTINGS:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        try:
            value = int(raw)
        except ValueError:
            logger.warning("Ignoring %s%s=%r: not an integer", ENV_PREFIX, name.upper(), raw)
            continue
        if value < 0:
            logger.warning("Ignoring %s%s=%r: must not be negative", ENV_PREFIX, name.upper(), raw)
            continue
        setattr(settings, name, value)

    level = environ.get(ENV_PREFIX + "DEFAULT_VIEW_LEVEL")
    if level:
        try:
            settings.default_view_level = ViewLevel.parse(level)
        except ValueError:
            logger.warning("Ignoring %sDEFAULT_VIEW_LEVEL=%r", ENV_PREFIX, level)

    projects_dir = environ.get(ENV_PREFIX + "PROJECTS_DIR")
    if projects_dir:
        settings.projects_dir = Path(projects_dir).expanduser()

    preferences = environ.get(ENV_PREFIX + "PREFERENCES")
    if preferences:
        settings.preferences_path = Path(preferences).expanduser()

    return settings
