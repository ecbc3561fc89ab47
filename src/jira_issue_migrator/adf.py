"""Structural repair of Atlassian Document Format (ADF) trees.

Descriptions and comments are written to the target as ADF. The target's
document parser rejects a lot of what the source happily stores: node types
it does not render, empty table attrs, paragraphs nested in paragraphs, list
items that do not start with a paragraph, and so on. ``sanitize`` rewrites a
tree into a shape the target accepts, ``validate_final_adf`` is a second,
independent shape check run on the final tree, and ``to_plain_text`` is the
last-resort flattening used when a structured write is still rejected.

All functions here are pure and never mutate their input.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Final

from .models import AdfNode

MAX_DEPTH: Final[int] = 10

ALLOWED_TYPES: Final[frozenset[str]] = frozenset(
    {
        "doc",
        "paragraph",
        "text",
        "heading",
        "bulletList",
        "orderedList",
        "listItem",
        "table",
        "tableRow",
        "tableCell",
        "tableHeader",
        "mediaSingle",
        "media",
        "blockquote",
        "codeBlock",
        "panel",
        "rule",
        "hardBreak",
        "emoji",
    }
)

ALLOWED_KEYS: Final[tuple[str, ...]] = ("type", "content", "text", "marks", "attrs", "version")

TABLE_TYPES: Final[frozenset[str]] = frozenset({"table", "tableRow", "tableCell", "tableHeader"})
LIST_TYPES: Final[frozenset[str]] = frozenset({"bulletList", "orderedList"})
# Nodes whose children are inline (text, hardBreak, emoji)
INLINE_CONTAINERS: Final[frozenset[str]] = frozenset({"paragraph", "heading"})
# Containers the target rejects when they end up with no children
NON_EMPTY_CONTAINERS: Final[frozenset[str]] = frozenset(
    {"bulletList", "orderedList", "table", "tableRow", "blockquote", "panel", "mediaSingle"}
)

TRUNCATED_TEXT: Final[str] = "[Content truncated]"
EMPTY_TEXT: Final[str] = "[No valid content preserved]"


def text(value: str) -> AdfNode:
    return {"type": "text", "text": value}


def paragraph(value: str | None = None) -> AdfNode:
    """A paragraph holding one text run, or an empty paragraph when ``value`` is None."""
    return {"type": "paragraph", "content": [] if value is None else [text(value)]}


def document(*blocks: AdfNode) -> AdfNode:
    return {"type": "doc", "version": 1, "content": list(blocks)}


def _truncated(parent_type: str) -> AdfNode:
    """Placeholder child that is valid inside a ``parent_type`` node."""
    if parent_type in INLINE_CONTAINERS:
        return text(TRUNCATED_TEXT)
    if parent_type in LIST_TYPES:
        return {"type": "listItem", "content": [paragraph(TRUNCATED_TEXT)]}
    if parent_type == "table":
        return {"type": "tableRow", "content": [{"type": "tableCell", "content": [paragraph(TRUNCATED_TEXT)]}]}
    if parent_type == "tableRow":
        return {"type": "tableCell", "content": [paragraph(TRUNCATED_TEXT)]}
    return paragraph(TRUNCATED_TEXT)


def _is_valid_mark(mark: Any) -> bool:  # noqa: ANN401
    return isinstance(mark, dict) and isinstance(mark.get("type"), str) and bool(mark["type"])


def _splice_documents(content: list[Any]) -> list[Any]:
    """Replace every ``doc`` child with its own children, recursively."""
    result: list[Any] = []
    for child in content:
        if isinstance(child, dict) and child.get("type") == "doc":
            inner = child.get("content")
            if isinstance(inner, list):
                result.extend(_splice_documents(inner))
        else:
            result.append(child)
    return result


def _unnest_paragraphs(content: list[Any]) -> list[Any]:
    """Lift the children of paragraph-in-paragraph nodes up to sibling level."""
    result: list[Any] = []
    for child in content:
        if isinstance(child, dict) and child.get("type") == "paragraph":
            inner = child.get("content")
            if isinstance(inner, list):
                result.extend(_unnest_paragraphs(inner))
        else:
            result.append(child)
    return result


def _sanitize_children(content: list[Any], depth: int, *, in_table_cell: bool) -> list[AdfNode]:
    children: list[AdfNode] = []
    for child in content:
        cleaned = sanitize(child, depth, in_table_cell=in_table_cell)
        if cleaned is not None:
            children.append(cleaned)
    return children


def sanitize(node: Any, depth: int = 0, *, in_table_cell: bool = False) -> AdfNode | None:  # noqa: ANN401, C901, PLR0912
    """Return a cleaned copy of ``node``, or None if nothing worth keeping remains.

    Args:
        node: an ADF node (normally the ``doc`` root)
        depth: depth of ``node`` below the root being sanitized
        in_table_cell: whether ``node`` sits somewhere inside a table cell or header

    Every node in the result has a type from ``ALLOWED_TYPES``, ``content``
    that is a list, object-shaped ``attrs`` and well-formed ``marks``.
    Children that would sit deeper than ``MAX_DEPTH`` are replaced by a
    single "[Content truncated]" placeholder.
    """
    if depth > MAX_DEPTH or not isinstance(node, dict):
        return None
    node_type = node.get("type")
    if not isinstance(node_type, str) or node_type not in ALLOWED_TYPES:
        return None

    result: AdfNode = {key: node[key] for key in ALLOWED_KEYS if key in node}

    if "attrs" in result:
        attrs = result["attrs"]
        if not isinstance(attrs, dict) or (not attrs and node_type in TABLE_TYPES):
            del result["attrs"]
        else:
            result["attrs"] = dict(attrs)

    if "marks" in result:
        marks = result["marks"]
        valid = [dict(m) for m in marks if _is_valid_mark(m)] if isinstance(marks, list) else []
        if valid:
            result["marks"] = valid
        else:
            del result["marks"]

    # Headings cannot live in table cells
    if node_type == "heading" and in_table_cell:
        node_type = "paragraph"
        result["type"] = node_type
        if "attrs" in result:
            result["attrs"].pop("level", None)
            if not result["attrs"]:
                del result["attrs"]

    if "content" in result:
        content = result["content"]
        if not isinstance(content, list):
            del result["content"]
        else:
            content = _splice_documents(content)
            if content and depth + 1 > MAX_DEPTH:
                result["content"] = [_truncated(node_type)]
            else:
                result["content"] = _sanitize_content(node_type, content, depth + 1, in_table_cell=in_table_cell)

    match node_type:
        case "paragraph" if not result.get("content"):
            return None
        case "text":
            value = result.get("text")
            if not isinstance(value, str) or not value.strip():
                return None
            result.pop("content", None)
        case "heading":
            level = result.get("attrs", {}).get("level")
            if level is None or not result.get("content"):
                return None
        case _ if node_type in NON_EMPTY_CONTAINERS and not result.get("content"):
            return None

    return result


def _sanitize_content(node_type: str, content: list[Any], depth: int, *, in_table_cell: bool) -> list[AdfNode]:
    match node_type:
        case "tableCell" | "tableHeader":
            children = _sanitize_children(content, depth, in_table_cell=True)
            return children or [paragraph()]
        case "listItem":
            children = _sanitize_children(content, depth, in_table_cell=in_table_cell)
            paragraphs = [c for c in children if c["type"] == "paragraph"]
            lists = [c for c in children if c["type"] in LIST_TYPES]
            return (paragraphs or [paragraph("")]) + lists
        case "paragraph":
            return _sanitize_children(_unnest_paragraphs(content), depth, in_table_cell=in_table_cell)
        case _:
            return _sanitize_children(content, depth, in_table_cell=in_table_cell)


def validate_final_adf(node: AdfNode) -> AdfNode:
    """Second, independent shape pass over an already-built tree.

    Forces ``content`` to be a list of nodes (or removes it), drops malformed
    ``marks`` entries and non-object ``attrs``. Node types are not checked
    here; that is the sanitizer's job.
    """
    result = dict(node)
    if "content" in result:
        content = result["content"]
        if isinstance(content, list):
            result["content"] = [validate_final_adf(c) for c in content if isinstance(c, dict)]
        else:
            del result["content"]
    if "marks" in result:
        marks = result["marks"]
        valid = [m for m in marks if _is_valid_mark(m)] if isinstance(marks, list) else []
        if valid:
            result["marks"] = valid
        else:
            del result["marks"]
    if "attrs" in result and not isinstance(result["attrs"], dict):
        del result["attrs"]
    return result


def finalize_document(node: AdfNode) -> AdfNode:
    """Run the final shape pass and guarantee a ``doc`` root with non-empty content."""
    checked = validate_final_adf(node)
    if checked.get("type") != "doc":
        checked = document(checked)
    content = checked.get("content") or [paragraph(EMPTY_TEXT)]
    return {"type": "doc", "version": checked.get("version", 1), "content": content}


def prepare_document(node: AdfNode | None, relocate: Callable[[AdfNode], AdfNode | None]) -> AdfNode | None:
    """Relocate attachments, then sanitize, then finalize.

    ``relocate`` runs first because it synthesizes paragraphs and link marks
    that only the sanitizer normalizes. Returns None when nothing survives
    relocation or sanitization.
    """
    if not node:
        return None
    relocated = relocate(node)
    if relocated is None:
        return None
    sanitized = sanitize(relocated)
    if sanitized is None:
        return None
    return finalize_document(sanitized)


def _collect_text(node: Any) -> str:  # noqa: ANN401
    if not isinstance(node, dict):
        return ""
    parts: list[str] = []
    value = node.get("text")
    if isinstance(value, str):
        parts.append(value)
    content = node.get("content")
    if isinstance(content, list) and content:
        parts.extend(_collect_text(child) for child in content)
        parts.append("\n")
    return "".join(parts)


def to_plain_text(node: AdfNode | None) -> str:
    """Depth-first concatenation of all text leaves, one newline per closed container."""
    return _collect_text(node).strip()
