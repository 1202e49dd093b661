"""
Content extraction for conversation records.

Record content arrives in several shapes: plain strings, JSON text,
message documents with a ``content`` field, and bare lists of content
parts. Shape detection happens once in ``classify_content``; each shape
then has a single handler. Nothing here raises on unexpected data - the
worst case is showing the original content.
"""

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any


class ContentShape(Enum):
    TEXT = "text"
    DOCUMENT = "document"
    PARTS = "parts"
    OTHER = "other"


class ExtractMode(str, Enum):
    RAW = "raw"
    EXTRACTED = "extracted"


def unescape_newlines(text: str) -> str:
    """Turn literal two-character ``\\n`` sequences into real line breaks."""
    return text.replace("\\n", "\n")


def preview_text(text: str, max_length: int) -> str:
    """Cut text to max_length characters, marking the cut with '...'."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def _decode_document(text: str):
    """Decode a string holding a JSON object; None for anything else."""
    if not text.lstrip().startswith("{"):
        return None
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def classify_content(raw: Any) -> tuple[ContentShape, Any]:
    """
    Work out which shape a record's content has.

    Returns:
        tuple: (shape, value) where value is the decoded document for
        JSON text and the content itself otherwise
    """
    if isinstance(raw, str):
        document = _decode_document(raw)
        if document is None:
            return ContentShape.TEXT, raw
        return ContentShape.DOCUMENT, document
    if isinstance(raw, Mapping):
        return ContentShape.DOCUMENT, raw
    if isinstance(raw, (list, tuple)):
        return ContentShape.PARTS, raw
    return ContentShape.OTHER, raw


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _join_parts(parts) -> str:
    texts = []
    for part in parts:
        if isinstance(part, Mapping) and part.get("text") is not None:
            texts.append(_stringify(part["text"]))
    return "\n\n".join(texts)


def _from_document(document: Mapping, role: str, original: Any) -> str:
    if "content" in document:
        inner = document["content"]
        if isinstance(inner, str):
            return inner
        if isinstance(inner, (list, tuple)):
            return _join_parts(inner)
        return _stringify(inner)

    if role == "assistant" and "text" in document:
        return _stringify(document["text"])

    return _stringify(original)


def _dump(raw: Any) -> str:
    if isinstance(raw, str):
        document = _decode_document(raw)
        if document is None:
            return raw
        raw = document
    if raw is None:
        return ""
    return json.dumps(raw, indent=2, ensure_ascii=False, default=str)


def extract_content(raw: Any, role: str = "user", mode: str = ExtractMode.EXTRACTED) -> str:
    """
    Produce display text for a record's raw content.

    Args:
        raw: The record's raw content (string or small object graph)
        role: The record's role; only assistants fall back to a top-level 'text'
        mode: 'extracted' for best-effort human text, 'raw' for a structural dump

    Returns:
        The text to display; never raises for unexpected shapes
    """
    if ExtractMode(mode) is ExtractMode.RAW:
        return _dump(raw)

    shape, value = classify_content(raw)
    if shape is ContentShape.TEXT:
        return unescape_newlines(value)
    if shape is ContentShape.DOCUMENT:
        return _from_document(value, role, raw)
    if shape is ContentShape.PARTS:
        return _join_parts(value) or _stringify(raw)
    return _stringify(raw)
