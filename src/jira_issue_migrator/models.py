"""Typed records for the Jira entities the migrator reads and writes.

API responses are decoded once, at the boundary in ``jira_utils``, into these
records. Everything past that boundary works with named optional fields
instead of nested dict lookups. Rich-text documents (ADF) are the one
exception: they stay JSON-shaped dicts because that is also the wire format
they are written back in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

AdfNode = dict[str, Any]


def _name(data: Any, key: str = "name") -> str | None:  # noqa: ANN401
    if isinstance(data, dict):
        value = data.get(key)
        return value if isinstance(value, str) and value else None
    return None


@dataclass(frozen=True)
class IssueType:
    """An entry of an issue-type catalog."""

    id: str
    name: str
    subtask: bool = False
    # 1 for Epic-level types, whatever their (possibly localized) name
    hierarchy_level: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> IssueType:
        return cls(
            id=str(data.get("id", "")),
            name=data["name"],
            subtask=bool(data.get("subtask", False)),
            hierarchy_level=data.get("hierarchyLevel"),
        )


@dataclass(frozen=True)
class IssueRef:
    """A reference to an issue by key, with its type name when known."""

    key: str
    type_name: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> IssueRef:
        fields = data.get("fields") or {}
        return cls(key=data["key"], type_name=_name(fields.get("issuetype")))


@dataclass(frozen=True)
class IssueLink:
    """A typed link as seen from one issue.

    Jira reports each link from the perspective of the issue it was fetched
    with: exactly one of ``outward_key`` / ``inward_key`` is normally set.
    """

    type_name: str | None
    outward_key: str | None = None
    inward_key: str | None = None

    @property
    def linked_key(self) -> str | None:
        return self.outward_key or self.inward_key

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> IssueLink:
        outward = data.get("outwardIssue") or {}
        inward = data.get("inwardIssue") or {}
        return cls(
            type_name=_name(data.get("type")),
            outward_key=outward.get("key") or None,
            inward_key=inward.get("key") or None,
        )


@dataclass(frozen=True)
class Attachment:
    """A file attached to an issue. ``filename`` is unique within an issue."""

    id: str
    filename: str
    content_url: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            id=str(data.get("id", "")),
            filename=data.get("filename") or "",
            content_url=data.get("content") or None,
        )


@dataclass(frozen=True)
class Comment:
    """A comment on an issue; ``body`` is an ADF document."""

    id: str
    body: AdfNode | None = None
    author: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Comment:
        body = data.get("body")
        return cls(
            id=str(data.get("id", "")),
            body=body if isinstance(body, dict) else None,
            author=_name(data.get("author"), "displayName"),
        )


@dataclass(frozen=True)
class Transition:
    """A workflow transition currently available on an issue."""

    id: str
    name: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Transition:
        return cls(id=str(data["id"]), name=data.get("name") or "")


@dataclass
class Issue:
    """An issue with the fields the migrator carries over."""

    key: str
    id: str = ""
    type_name: str = "Task"
    is_subtask: bool = False
    summary: str = ""
    description: AdfNode | None = None
    status: str | None = None
    priority: str | None = None
    reporter: str | None = None
    components: list[str] = field(default_factory=list)
    fix_versions: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    parent: IssueRef | None = None
    links: list[IssueLink] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Issue:
        fields: dict[str, Any] = data.get("fields") or {}
        issue_type = fields.get("issuetype") or {}
        description = fields.get("description")
        parent = fields.get("parent")
        return cls(
            key=data["key"],
            id=str(data.get("id", "")),
            type_name=_name(issue_type) or "Task",
            is_subtask=bool(issue_type.get("subtask", False)),
            summary=fields.get("summary") or "",
            description=description if isinstance(description, dict) else None,
            status=_name(fields.get("status")),
            priority=_name(fields.get("priority")),
            reporter=_name(fields.get("reporter"), "displayName"),
            components=[n for c in fields.get("components") or [] if (n := _name(c))],
            fix_versions=[n for v in fields.get("fixVersions") or [] if (n := _name(v))],
            labels=[label for label in fields.get("labels") or [] if isinstance(label, str)],
            parent=IssueRef.from_api(parent) if isinstance(parent, dict) and parent.get("key") else None,
            links=[IssueLink.from_api(link) for link in fields.get("issuelinks") or [] if isinstance(link, dict)],
        )


@dataclass
class SearchPage:
    """One page of a JQL search."""

    issues: list[Issue]
    total: int
    start_at: int = 0
