"""
Main migration class for Jira project to Jira project migration.
"""

from __future__ import annotations

import enum
import functools
import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from . import adf
from . import jira_utils as ju
from .attachments import AttachmentRelocator
from .exceptions import IssueCreationError, JiraApiError, ParentCycleError
from .models import IssueRef
from .type_mapping import IssueTypeMapper, LinkTypeMapper
from .utils import format_duration

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .config import CustomFieldIds, MigrationConfig
    from .jira_utils import JiraProject
    from .models import AdfNode, Comment, Issue

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE: Final[int] = 100
MAX_RESOLUTION_DEPTH: Final[int] = 16
SUMMARY_MAX_LENGTH: Final[int] = 255
UNDETERMINED_PRIORITY: Final[str] = "Undetermined"
ISSUE_FIELDS: Final[str] = (
    "parent,project,key,summary,description,issuetype,components,status,reporter,priority,fixVersions,labels,issuelinks"
)


class IssueOutcome(enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RunCounters:
    """Statistics collected during one run."""

    issues: int = 0
    errors: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    duration: float = 0.0


def sanitize_summary(key: str, summary: str) -> str:
    """Prefix the summary with the source key, collapse whitespace and cap the length."""
    result = re.sub(r"\s+", " ", f"{key}: {summary}").strip()
    if len(result) > SUMMARY_MAX_LENGTH:
        result = result[: SUMMARY_MAX_LENGTH - 3] + "..."
    return result


def sanitize_label(label: str) -> str:
    """Strip everything but letters, digits and whitespace, then turn spaces into hyphens."""
    return re.sub(r"[^a-zA-Z0-9\s]", "", label).replace(" ", "-")


def _quoted_keys(keys: Sequence[str]) -> str:
    return ",".join(f'"{key}"' for key in keys)


class JiraIssueMigrator:
    """Synchronizes issues from a source Jira project into a target project.

    The origin-key custom field on target issues is the only record of what
    has already been migrated. It is queried fresh for every issue, so a run
    can be interrupted at any point and resumed with a later start index.
    """

    source: JiraProject
    target: JiraProject
    custom_fields: CustomFieldIds
    type_mapper: IssueTypeMapper
    link_mapper: LinkTypeMapper
    relocator: AttachmentRelocator
    skip_existing: bool
    issue_delay: float
    counters: RunCounters
    _logger: logging.Logger
    _resolving: set[str]

    def __init__(
        self,
        source: JiraProject,
        target: JiraProject,
        custom_fields: CustomFieldIds,
        *,
        type_mapper: IssueTypeMapper | None = None,
        link_mapper: LinkTypeMapper | None = None,
        skip_existing: bool = False,
        issue_delay: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.source = source
        self.target = target
        self.custom_fields = custom_fields
        self.type_mapper = type_mapper or IssueTypeMapper(target.issue_types, source.issue_types)
        self.link_mapper = link_mapper or LinkTypeMapper(target.get_link_types())
        self.skip_existing = skip_existing
        self.issue_delay = issue_delay
        self._logger = logger or logging.getLogger(__name__)
        self.relocator = AttachmentRelocator(source, target, logger=self._logger)
        self.counters = RunCounters()
        self._resolving = set()

        self._logger.info(f"Initialized migrator for {source.project_key} -> {target.project_key}")

    @classmethod
    def from_config(
        cls, config: MigrationConfig, *, skip_existing: bool = False, logger: logging.Logger | None = None
    ) -> JiraIssueMigrator:
        """Connect to both sites and build the type maps once for the run."""
        source = ju.get_client(config.source_domain, config.username, config.api_token, config.source_project)
        target = ju.get_client(config.target_domain, config.username, config.api_token, config.target_project)
        return cls(
            source,
            target,
            config.custom_fields,
            type_mapper=IssueTypeMapper(target.issue_types, source.issue_types, config.type_overrides),
            link_mapper=LinkTypeMapper(target.get_link_types(), config.link_type_overrides),
            skip_existing=skip_existing,
            issue_delay=config.issue_delay,
            logger=logger,
        )

    @property
    def origin_field(self) -> str:
        return self.custom_fields.field_name(self.custom_fields.origin_key)

    def _log_failure(self, message: str, error: Exception) -> None:
        if isinstance(error, JiraApiError):
            self._logger.error(f"{message}: {error}\n{error.describe()}")
        else:
            self._logger.error(f"{message}: {error}", exc_info=error)

    # Batch loop

    def sync_issues(
        self,
        *,
        keys: Sequence[str] | None = None,
        start: int = 0,
        end: int | None = None,
        batches: int | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> RunCounters:
        """Sync a selection of source issues and return the run's counters.

        Args:
            keys: explicit source keys; excludes ``start``, ``end`` and ``batches``
            start: index of the first source issue (project order)
            end: index to stop before; excludes ``batches``
            batches: number of pages to process
            batch_size: page size of the source search

        One failing issue is logged and counted, and the run carries on.
        """
        if keys and (start or end is not None or batches is not None):
            msg = "An explicit key list cannot be combined with start, end or batches"
            raise ValueError(msg)
        if end is not None and batches is not None:
            msg = "end and batches are mutually exclusive"
            raise ValueError(msg)

        self.counters = RunCounters()
        started = time.monotonic()

        if keys:
            jql = f"key IN ({_quoted_keys(keys)})"
            start = 0
        else:
            jql = f'project = "{self.source.project_key}" ORDER BY created ASC'
        self._logger.info(f"Source query: {jql}")

        start_at = start
        batch = 0
        total = 0
        while batches is None or batch < batches:
            if end is not None and start_at >= end:
                break
            try:
                page = self.source.search(jql, start_at=start_at, max_results=batch_size, fields=ISSUE_FIELDS)
            except JiraApiError as e:
                self.counters.errors += 1
                self._log_failure(f"Error fetching issues for {jql}", e)
                break
            if not page.issues:
                break
            batch += 1
            total = page.total
            print(f"Starting batch {batch}: issues {start_at + 1}-{start_at + len(page.issues)} of {total}")

            for i, issue in enumerate(page.issues):
                if end is not None and start_at + i >= end:
                    break
                self._process(issue)

            start_at += len(page.issues)
            print(
                f"Batch {batch} completed. Processed {self.counters.issues} issues with {self.counters.errors} errors. "
                f"Created: {self.counters.created}, updated: {self.counters.updated}, "
                f"skipped: {self.counters.skipped}. Duration: {format_duration(time.monotonic() - started)}"
            )
            if start_at >= total:
                break

        self.counters.duration = time.monotonic() - started
        print(
            f"Total issues processed: {self.counters.issues} with {self.counters.errors} errors "
            f"out of {total} matching source issues"
        )
        print(
            f"Created: {self.counters.created}, updated: {self.counters.updated}, skipped: {self.counters.skipped}. "
            f"Duration: {format_duration(self.counters.duration)}"
        )
        return self.counters

    def _process(self, issue: Issue) -> IssueOutcome:
        self.counters.issues += 1
        try:
            outcome, target_key = self.sync_issue(issue)
        except Exception as e:  # noqa: BLE001 - one issue must not abort the batch
            self.counters.errors += 1
            self._log_failure(f"Error processing issue {issue.key}", e)
            outcome = IssueOutcome.FAILED
        else:
            match outcome:
                case IssueOutcome.CREATED:
                    self.counters.created += 1
                case IssueOutcome.UPDATED:
                    self.counters.updated += 1
                case IssueOutcome.SKIPPED:
                    self.counters.skipped += 1
            self._logger.info(f"{issue.key} -> {target_key}: {outcome.value}")
        finally:
            self.relocator.clear_cache()
            if self.issue_delay:
                time.sleep(self.issue_delay)
        return outcome

    # Single issue

    def sync_issue(self, issue: Issue) -> tuple[IssueOutcome, str]:
        """Create or update the target counterpart of ``issue``, then sync its details."""
        existing = self.target.find_issue_by_origin_key(self.custom_fields.origin_key, issue.key)
        if existing is not None:
            if self.skip_existing:
                self._logger.info(f"Skipping existing issue {existing.key} for {issue.key}")
                return IssueOutcome.SKIPPED, existing.key
            self._logger.info(f"Updating existing issue {existing.key} from {issue.key}")
            self.update_issue(existing.key, issue)
            self.sync_details(issue, existing.key)
            return IssueOutcome.UPDATED, existing.key

        self._logger.info(f"No target issue for {issue.key}, creating one")
        created = self.create_issue(issue)
        self.sync_details(issue, created.key)
        return IssueOutcome.CREATED, created.key

    def resolve_target(self, source_key: str) -> IssueRef:
        """Find the target issue for a source key, creating it (and its parents) if needed."""
        existing = self.target.find_issue_by_origin_key(self.custom_fields.origin_key, source_key)
        if existing is not None:
            return existing
        if source_key in self._resolving:
            msg = f"Cycle detected while resolving {source_key}: {sorted(self._resolving)}"
            raise ParentCycleError(msg)
        self._logger.info(f"{source_key} is not in the target yet, creating it")
        return self.create_issue(self.source.get_issue(source_key, fields=ISSUE_FIELDS))

    def create_issue(self, issue: Issue) -> IssueRef:
        """Create the target issue with a minimal payload, then layer the remaining fields on with an update.

        Raises:
            ParentCycleError: if the parent chain loops back or is too deep
            IssueCreationError: if the target returns no key
        """
        if issue.key in self._resolving:
            msg = f"Cycle detected while resolving {issue.key}: {sorted(self._resolving)}"
            raise ParentCycleError(msg)
        if len(self._resolving) >= MAX_RESOLUTION_DEPTH:
            msg = f"Parent chain of {issue.key} is deeper than {MAX_RESOLUTION_DEPTH}"
            raise ParentCycleError(msg)

        self._resolving.add(issue.key)
        try:
            parent = self.resolve_target(issue.parent.key) if issue.parent else None
            issue_type = self.type_mapper.effective_type(issue, parent.type_name if parent else None)

            fields: dict[str, Any] = {
                "project": {"key": self.target.project_key},
                "summary": sanitize_summary(issue.key, issue.summary),
                "issuetype": {"name": issue_type},
                self.origin_field: issue.key,
            }
            if parent is not None:
                fields["parent"] = {"key": parent.key}

            target_key = self.target.create_issue({"fields": fields})
            if not target_key:
                msg = f"Failed to create issue in target project {self.target.project_key} for {issue.key}"
                raise IssueCreationError(msg)
            self._logger.info(f"Created {target_key} ({issue_type}) from {issue.key}")

            self.update_issue(target_key, issue)
            return IssueRef(key=target_key, type_name=issue_type)
        finally:
            self._resolving.discard(issue.key)

    def update_issue(self, target_key: str, issue: Issue) -> None:
        self.target.update_issue(target_key, {"fields": self.build_fields(issue, target_key)})

    def _relocate_for(self, issue: Issue, target_key: str) -> Callable[[AdfNode], AdfNode | None]:
        return functools.partial(self.relocator.relocate, source_key=issue.key, target_key=target_key)

    def build_fields(self, issue: Issue, target_key: str) -> dict[str, Any]:
        """Update payload fields; every optional field is left out when the source has no value."""
        cf = self.custom_fields
        fields: dict[str, Any] = {
            "summary": sanitize_summary(issue.key, issue.summary),
            self.origin_field: issue.key,
        }

        if issue.description:
            description = adf.prepare_document(issue.description, self._relocate_for(issue, target_key))
            if description is not None:
                fields["description"] = description
            else:
                self._logger.info(f"Description of {issue.key} is empty after sanitization, not syncing it")

        if issue.components:
            fields[cf.field_name(cf.components)] = [sanitize_label(c) for c in issue.components]
        if issue.fix_versions:
            fields[cf.field_name(cf.fix_version)] = list(issue.fix_versions)
        if issue.priority and issue.priority != UNDETERMINED_PRIORITY:
            fields["priority"] = {"name": issue.priority}
        if issue.labels:
            fields["labels"] = [sanitize_label(label) for label in issue.labels]
        if issue.reporter:
            fields[cf.field_name(cf.reporter_name)] = issue.reporter
        return fields

    # Details

    def sync_details(self, issue: Issue, target_key: str) -> None:
        """Links, status, attachments and comments; each step fails on its own."""
        steps = (
            ("links", self.sync_links),
            ("status", self.sync_status),
            ("attachments", self.sync_attachments),
            ("comments", self.sync_comments),
        )
        for name, step in steps:
            try:
                step(issue, target_key)
            except Exception as e:  # noqa: BLE001
                self._log_failure(f"Failed to sync {name} of {issue.key} to {target_key}", e)
        self._logger.debug(f"Finished syncing {issue.key} to {target_key}")

    def sync_links(self, issue: Issue, target_key: str) -> None:
        if not issue.links:
            return
        existing = self.target.get_issue_links(target_key)
        linked_keys = {key for link in existing for key in (link.outward_key, link.inward_key) if key}

        for link in issue.links:
            link_type = self.link_mapper.map(link.type_name)
            linked_key = link.linked_key
            if not link_type or not linked_key:
                self._logger.warning(f"Skipping link of {issue.key} with missing type or linked issue: {link}")
                continue
            try:
                linked = self.resolve_target(linked_key)
                if linked.key in linked_keys:
                    self._logger.debug(f"{target_key} is already linked to {linked.key}")
                    continue
                self.target.link_issues(target_key, linked.key, link_type)
                linked_keys.add(linked.key)
                self._logger.info(f"Linked {target_key} to {linked.key} ({link_type})")
            except Exception as e:  # noqa: BLE001
                self._log_failure(f"Failed to link {issue.key} to {linked_key}", e)

    def sync_status(self, issue: Issue, target_key: str) -> None:
        if not issue.status:
            return
        transitions = self.target.get_transitions(target_key)
        if not transitions:
            self._logger.info(f"No transitions available for {target_key}")
            return
        transition = next((t for t in transitions if t.name == issue.status), None)
        if transition is None:
            self._logger.info(f"No transition named {issue.status!r} available for {target_key}")
            return
        self.target.transition_issue(target_key, transition.id)

    def sync_attachments(self, issue: Issue, target_key: str) -> None:
        for attachment in self.relocator.source_attachments(issue.key):
            try:
                self.relocator.upload_attachment(target_key, attachment)
            except Exception as e:  # noqa: BLE001
                self._log_failure(f"Error uploading attachment {attachment.filename} of {issue.key}", e)

    def sync_comments(self, issue: Issue, target_key: str) -> None:
        """Copy comments, unless the target issue already has any."""
        if self.target.get_comments(target_key):
            self._logger.debug(f"{target_key} already has comments, not syncing them")
            return

        for comment in self.source.get_comments(issue.key):
            try:
                self._sync_comment(issue, target_key, comment)
            except Exception as e:  # noqa: BLE001
                self._log_failure(f"Failed to copy comment {comment.id} of {issue.key}", e)

    def _sync_comment(self, issue: Issue, target_key: str, comment: Comment) -> None:
        if not comment.body:
            return
        body = adf.prepare_document(comment.body, self._relocate_for(issue, target_key))
        if body is None:
            self._logger.info(f"Comment {comment.id} of {issue.key} is empty after sanitization, not syncing it")
            return

        attribution = adf.paragraph(f"(Originally commented by {comment.author})") if comment.author else None
        if attribution is not None:
            body["content"].append(attribution)

        try:
            self.target.add_comment(target_key, body)
        except JiraApiError as e:
            if not e.is_bad_request:
                raise
            self._logger.warning(
                f"Falling back to plain text for comment {comment.id} on {target_key}: {e}\n{e.describe()}"
            )
            self.target.add_comment(target_key, self._plain_text_comment(comment.body, attribution))

    @staticmethod
    def _plain_text_comment(original: AdfNode, attribution: AdfNode | None) -> AdfNode:
        content = original.get("content")
        blocks = list(content) if isinstance(content, list) else []
        if attribution is not None:
            blocks.append(attribution)
        plain = adf.to_plain_text({**original, "content": blocks}) or adf.EMPTY_TEXT
        return adf.document(adf.paragraph(plain))
