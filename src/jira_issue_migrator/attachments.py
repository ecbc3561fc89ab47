"""Attachment migration between source and target Jira issues."""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from . import adf
from .exceptions import JiraApiError

if TYPE_CHECKING:
    from .jira_utils import JiraProject
    from .models import AdfNode, Attachment

logger: logging.Logger = logging.getLogger(__name__)

# Node types that are complete without children
LEAF_TYPES: Final[frozenset[str]] = frozenset({"text", "codeBlock", "hardBreak", "rule", "emoji"})
MISSING_ATTACHMENT_TEXT: Final[str] = "Attachment missing"


def _str_attr(attrs: dict[str, Any], name: str) -> str | None:
    value = attrs.get(name)
    return value if isinstance(value, str) and value else None


def link_paragraph(label: str, href: str) -> AdfNode:
    return {
        "type": "paragraph",
        "content": [{"type": "text", "text": label, "marks": [{"type": "link", "attrs": {"href": href}}]}],
    }


class AttachmentRelocator:
    """Copies attachments referenced from documents and rewrites the references.

    Media nodes cannot be carried across sites: they point at media ids that
    only exist on the source. Each one is replaced by a paragraph with a link
    to the copy uploaded to the target issue.
    """

    _source: JiraProject
    _target: JiraProject
    _logger: logging.Logger
    _source_attachments: dict[str, list[Attachment]]
    uploaded_files_count: int
    reused_count: int

    def __init__(self, source: JiraProject, target: JiraProject, logger: logging.Logger | None = None) -> None:
        self._source = source
        self._target = target
        self._logger = logger or logging.getLogger(__name__)
        self._source_attachments = {}
        self.uploaded_files_count = 0
        self.reused_count = 0

    def source_attachments(self, source_key: str) -> list[Attachment]:
        """Attachments of a source issue (cached, the source is read-only)."""
        if source_key not in self._source_attachments:
            self._source_attachments[source_key] = self._source.get_attachments(source_key)
        return self._source_attachments[source_key]

    def clear_cache(self) -> None:
        """Drop cached source listings once the issues they belong to are done."""
        self._source_attachments.clear()

    def relocate(self, node: AdfNode, source_key: str, target_key: str) -> AdfNode | None:
        """Return a copy of ``node`` with every media reference replaced by a link paragraph.

        The result still has to go through ``adf.sanitize``. Returns None when
        nothing is left of the node.
        """
        if not isinstance(node, dict):
            return None

        match node.get("type"):
            case "mediaGroup":
                return self._relocate_group(node, source_key, target_key)
            case "media":
                return self._relocate_media(node, source_key, target_key)

        result = dict(node)
        content = node.get("content")
        if isinstance(content, list):
            children: list[AdfNode] = []
            for child in content:
                relocated = self.relocate(child, source_key, target_key)
                if relocated is not None:
                    children.append(relocated)
            result["content"] = children
            if node.get("type") == "mediaSingle" and len(children) == 1 and children[0].get("type") == "paragraph":
                return children[0]

        if not result.get("content") and result.get("type") not in LEAF_TYPES:
            return None
        return result

    def _relocate_group(self, node: AdfNode, source_key: str, target_key: str) -> AdfNode | None:
        substitutes: list[AdfNode] = []
        for child in node.get("content") or []:
            if not isinstance(child, dict) or child.get("type") != "media":
                self._logger.warning(f"Dropping non-media node in mediaGroup of {source_key}: {json.dumps(child)}")
                continue
            substitutes.append(self._relocate_media(child, source_key, target_key))

        if not substitutes:
            return None
        if len(substitutes) == 1:
            return substitutes[0]
        return {"type": "doc", "content": substitutes}

    def _relocate_media(self, node: AdfNode, source_key: str, target_key: str) -> AdfNode:
        attrs: dict[str, Any] = node.get("attrs") if isinstance(node.get("attrs"), dict) else {}
        filename = _str_attr(attrs, "alt")
        media_id = _str_attr(attrs, "id")

        source_attachment = self._find_source_attachment(source_key, filename) if filename else None
        if filename is None or source_attachment is None:
            self._logger.warning(
                f"Attachment not found on {source_key}: filename={filename!r}, media id={media_id!r}, "
                f"node={json.dumps(node)}"
            )
            return adf.paragraph(filename or media_id or MISSING_ATTACHMENT_TEXT)

        href = filename
        try:
            uploaded = self.upload_attachment(target_key, source_attachment)
            if uploaded is not None and uploaded.content_url:
                href = uploaded.content_url
        except JiraApiError as e:
            self._logger.error(f"Failed to copy attachment {filename} from {source_key} to {target_key}\n{e.describe()}")
        except Exception:
            self._logger.exception(f"Failed to copy attachment {filename} from {source_key} to {target_key}")

        return link_paragraph(filename, href)

    def _find_source_attachment(self, source_key: str, filename: str) -> Attachment | None:
        try:
            attachments = self.source_attachments(source_key)
        except JiraApiError as e:
            self._logger.error(f"Failed to list attachments of {source_key}\n{e.describe()}")
            return None
        return next((a for a in attachments if a.filename == filename), None)

    def upload_attachment(self, target_key: str, attachment: Attachment) -> Attachment | None:
        """Copy one source attachment to the target issue, unless it is already there.

        The target is checked by filename before anything is downloaded, so a
        repeated call returns the existing attachment and uploads nothing.
        """
        existing = self._target.find_attachment(target_key, attachment.filename)
        if existing is not None:
            self.reused_count += 1
            self._logger.debug(f"Attachment {attachment.filename} already on {target_key}")
            return existing

        if not attachment.content_url:
            self._logger.warning(f"Attachment {attachment.filename} has no content URL, skipping")
            return None

        content = self._source.download_attachment(attachment.content_url)

        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(delete=False, suffix=Path(attachment.filename).suffix) as f:
                temp_path = f.name
                f.write(content)
            uploaded = self._target.upload_attachment(target_key, temp_path, attachment.filename)
        finally:
            if temp_path:
                p = Path(temp_path)
                if p.exists():
                    p.unlink()

        self.uploaded_files_count += 1
        self._logger.debug(f"Uploaded {attachment.filename} to {target_key}")
        return uploaded
