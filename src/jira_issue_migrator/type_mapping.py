"""
Issue type and link type translation between source and target Jira projects.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from .models import Issue, IssueType

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_TASK_TYPE: Final[str] = "Task"
DEFAULT_SUBTASK_TYPE: Final[str] = "Subtask"
DEFAULT_LINK_TYPE: Final[str] = "Relates"
EPIC_HIERARCHY_LEVEL: Final[int] = 1


def normalize(type_name: str) -> str:
    """Case- and hyphen-insensitive form of a type name ("Sub-Task" -> "subtask")."""
    return type_name.lower().replace("-", "")


def build_issue_type_map(
    target_types: Sequence[IssueType],
    source_types: Sequence[IssueType],
    overrides: Mapping[str, str] | None = None,
) -> Mapping[str, str]:
    """Map every source issue type name to a target issue type name.

    Resolution order per source type:
    1. an explicit override for the exact source name
    2. a target type with the same normalized name (target casing wins)
    3. fallbacks: "support" and anything unrecognized become the target's task
       type, sub-task variants become the target's sub-task type

    The returned mapping is read-only.
    """
    overrides = overrides or {}
    target_by_normalized = {normalize(t.name): t.name for t in target_types}
    task_type = target_by_normalized.get("task", DEFAULT_TASK_TYPE)
    subtask_type = next((t.name for t in target_types if t.subtask), DEFAULT_SUBTASK_TYPE)

    mapping: dict[str, str] = {}
    for source_type in source_types:
        name = source_type.name
        normalized = normalize(name)
        if name in overrides:
            mapping[name] = overrides[name]
        elif normalized in target_by_normalized:
            mapping[name] = target_by_normalized[normalized]
        elif normalized == "support":
            mapping[name] = task_type
        elif source_type.subtask or normalized == "subtask":
            mapping[name] = subtask_type
        else:
            logger.info(f"No target issue type matches {name!r}, using {task_type!r}")
            mapping[name] = task_type

    # Overrides also cover names missing from the source catalog
    for name, target_name in overrides.items():
        mapping.setdefault(name, target_name)

    return MappingProxyType(mapping)


class IssueTypeMapper:
    """Resolves the target issue type for a source issue."""

    type_map: Mapping[str, str]
    task_type: str
    subtask_type: str
    _subtask_types: frozenset[str]
    _epic_types: frozenset[str]

    def __init__(
        self,
        target_types: Sequence[IssueType],
        source_types: Sequence[IssueType],
        overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.type_map = build_issue_type_map(target_types, source_types, overrides)
        self.task_type = next((t.name for t in target_types if normalize(t.name) == "task"), DEFAULT_TASK_TYPE)
        self._subtask_types = frozenset(t.name for t in target_types if t.subtask)
        self._epic_types = frozenset(t.name for t in target_types if t.hierarchy_level == EPIC_HIERARCHY_LEVEL)
        self.subtask_type = next((t.name for t in target_types if t.subtask), DEFAULT_SUBTASK_TYPE)

    def map(self, source_type_name: str) -> str:
        """Target type for a source type name; names outside the source catalog fall back to the task type."""
        mapped = self.type_map.get(source_type_name)
        if mapped is not None:
            return mapped
        if normalize(source_type_name) == "subtask":
            return self.subtask_type
        return self.task_type

    def is_subtask(self, issue: Issue) -> bool:
        return (
            issue.is_subtask
            or normalize(issue.type_name) == "subtask"
            or self.map(issue.type_name) in self._subtask_types
        )

    def is_epic(self, type_name: str) -> bool:
        return type_name in self._epic_types or normalize(type_name) == "epic"

    def effective_type(self, issue: Issue, parent_type: str | None) -> str:
        """Target type for ``issue`` once its parent has been resolved in the target.

        Args:
            issue: the source issue
            parent_type: target type name of the resolved parent, None if it has none

        A sub-task cannot be created without a parent, nor directly under an
        Epic. Both cases are created as the task type instead.
        """
        mapped = self.map(issue.type_name)
        if not self.is_subtask(issue):
            return mapped
        if parent_type is None:
            logger.info(f"{issue.key} is a sub-task without a parent, creating it as {self.task_type!r}")
            return self.task_type
        if self.is_epic(parent_type):
            logger.info(f"{issue.key} is a sub-task of an Epic, creating it as {self.task_type!r}")
            return self.task_type
        return mapped


class LinkTypeMapper:
    """Explicit source -> target link type table.

    Every link type known to the target maps to itself; overrides are applied
    on top. Names without an entry map to "Relates".
    """

    table: Mapping[str, str]

    def __init__(self, known_types: Iterable[str] = (), overrides: Mapping[str, str] | None = None) -> None:
        table = {name: name for name in known_types}
        table.update(overrides or {})
        self.table = MappingProxyType(table)

    def map(self, source_link_type: str | None) -> str | None:
        """Target link type name, or None when the source link carries no type at all."""
        if not source_link_type:
            return None
        return self.table.get(source_link_type, DEFAULT_LINK_TYPE)
