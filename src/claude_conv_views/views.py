"""
View-level filtering.

Turns a conversation tree into one of three views: every record (full),
user/assistant flow without noise (clean flow), or question/answer pairs.
Filtering never modifies the tree; every call returns a new list.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Union

from .core import (
    THINKING_MARKER,
    ConversationTree,
    MessageNode,
    QAPair,
    Record,
    ViewLevel,
    ensure_tree,
)


logger = logging.getLogger(__name__)

View = Union[list[MessageNode], list[QAPair]]

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


def flatten_tree(tree: ConversationTree) -> list[MessageNode]:
    """Depth-first, parent-before-children list of every node."""
    return list(tree.iter_nodes())


def is_thinking(node: MessageNode) -> bool:
    """Whether an assistant node is interim reasoning rather than a reply.

    The upstream msg_type marker decides. Nodes without a marker whose
    text is empty are also treated as interim; that fallback is logged.
    """
    if node.role != "assistant":
        return False
    if node.msg_type == THINKING_MARKER:
        return True
    if not node.extracted_full_text.strip():
        logger.debug("Assistant node %s has no text; classifying as thinking", node.id)
        return True
    return False


def clean_flow(nodes: Iterable[MessageNode]) -> list[MessageNode]:
    """Keep user and assistant replies; drop system/tool records and thinking."""
    return [
        node for node in nodes
        if node.role in ("user", "assistant") and not is_thinking(node)
    ]


def pair_questions(nodes: Iterable[MessageNode]) -> list[QAPair]:
    """
    Pair each user question with the final assistant reply that follows it.

    Consecutive replies replace one another, so the last reply before the
    next user message is the answer. A question with no reply by then (or
    by the end of the list) is emitted with no answer.
    """
    pairs: list[QAPair] = []
    question: Optional[MessageNode] = None
    answer: Optional[MessageNode] = None

    for node in nodes:
        if node.role == "user":
            if question is not None:
                pairs.append(QAPair(question=question, answer=answer, index=len(pairs) + 1))
            question = node
            answer = None
        elif node.role == "assistant" and question is not None and not is_thinking(node):
            answer = node

    if question is not None:
        pairs.append(QAPair(question=question, answer=answer, index=len(pairs) + 1))

    return pairs


def _timestamp_key(item: Union[MessageNode, QAPair]) -> datetime:
    value = item.timestamp
    if not value:
        return _EARLIEST
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return _EARLIEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_view(view: View, order: Optional[Union[SortOrder, str]] = None) -> View:
    """Order a filtered view by timestamp; None keeps ingestion order."""
    if order is None:
        return list(view)
    order = SortOrder(order)
    return sorted(view, key=_timestamp_key, reverse=order is SortOrder.DESC)


def filter_by_level(
    source: Union[ConversationTree, Iterable[Union[Record, dict]]],
    level: Union[ViewLevel, str],
    order: Optional[Union[SortOrder, str]] = None,
) -> View:
    """
    Produce the message list (or QA pair list) for a view level.

    Args:
        source: A built tree, or records to build one from
        level: The view level; invalid values raise InvalidViewLevelError
        order: Optional 'asc'/'desc' timestamp sort applied after filtering

    Returns:
        list of MessageNode for full/clean flow, list of QAPair for QA pairs
    """
    level = ViewLevel.parse(level)
    nodes = flatten_tree(ensure_tree(source))

    if level is ViewLevel.FULL:
        view = nodes
    elif level is ViewLevel.CLEAN_FLOW:
        view = clean_flow(nodes)
    else:
        view = pair_questions(clean_flow(nodes))

    return sort_view(view, order)


def view_messages(view: View) -> list[MessageNode]:
    """Flatten a view to its message nodes (QA pairs become question, answer)."""
    messages = []
    for item in view:
        if isinstance(item, QAPair):
            messages.append(item.question)
            if item.answer is not None:
                messages.append(item.answer)
        else:
            messages.append(item)
    return messages


def view_to_dicts(view: View) -> list[dict]:
    """Wire form of a view, matching the backend's response shape."""
    return [item.to_dict() for item in view]
