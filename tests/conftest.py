"""
Pytest configuration and fixtures.

This module configures pytest behavior for different test types:
- Integration tests: Fail on any warnings from the code under test
- Unit tests: Allow warnings

It also provides ``FakeJiraProject``, an in-memory stand-in for
``jira_utils.JiraProject`` that keeps enough state (issues, custom fields,
comments, attachments, links) for the migrator's idempotence checks to run
for real.
"""

from __future__ import annotations

import itertools
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from typing_extensions import override

import pytest

from jira_issue_migrator.config import CustomFieldIds
from jira_issue_migrator.exceptions import JiraApiError
from jira_issue_migrator.migrator import JiraIssueMigrator
from jira_issue_migrator.models import (
    Attachment,
    Comment,
    Issue,
    IssueLink,
    IssueRef,
    IssueType,
    SearchPage,
    Transition,
)

if TYPE_CHECKING:
    from collections.abc import Generator

# Store warning records during test execution
_integration_test_warnings: dict[str, list[logging.LogRecord]] = {}


class IntegrationTestWarningHandler(logging.Handler):
    """Custom logging handler to capture warnings during integration tests."""

    test_nodeid: str

    def __init__(self, test_nodeid: str) -> None:
        super().__init__()
        self.test_nodeid = test_nodeid
        self.setLevel(logging.WARNING)

    @override
    def emit(self, record: logging.LogRecord) -> None:
        """Capture WARNING and above level logs."""
        _integration_test_warnings.setdefault(self.test_nodeid, []).append(record)


@pytest.fixture(autouse=True)
def fail_on_log_warnings_for_integration_tests(
    request: pytest.FixtureRequest,
) -> Generator[None]:
    """
    Automatically fail integration tests if any WARNING level logs are emitted from the code under test.

    A full run over well-formed data is expected to be quiet; a warning there
    means the migrator degraded something it should have carried over.
    """
    is_integration_test = request.node.get_closest_marker("integration") is not None

    if not is_integration_test:
        yield
        return

    test_nodeid = request.node.nodeid
    _integration_test_warnings[test_nodeid] = []

    handler = IntegrationTestWarningHandler(test_nodeid)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)

    try:
        yield
    finally:
        root_logger.removeHandler(handler)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(
    item: pytest.Item, call: pytest.CallInfo[None]
) -> Generator[None]:  # type: ignore[misc]
    """
    Hook to check for warnings after test execution and mark test as failed if warnings were detected.
    """
    outcome = yield
    report = outcome.get_result()

    if call.when == "call" and report.outcome == "passed":
        test_nodeid = item.nodeid
        warning_records = _integration_test_warnings.get(test_nodeid, [])

        if warning_records:
            warning_messages = [
                f"{record.levelname}: {record.getMessage()} (in {record.name}:{record.lineno})"
                for record in warning_records
            ]
            report.outcome = "failed"
            report.longrepr = f"Integration test failed: {len(warning_records)} warning(s) detected:\n" + "\n".join(
                f"  - {msg}" for msg in warning_messages
            )

        _integration_test_warnings.pop(test_nodeid, None)


ORIGIN_FIELD_ID = "10001"

DEFAULT_ISSUE_TYPES = [
    IssueType(id="1", name="Task"),
    IssueType(id="2", name="Story"),
    IssueType(id="3", name="Bug"),
    IssueType(id="4", name="Epic"),
    IssueType(id="5", name="Subtask", subtask=True),
]


def client_error(message: str = "rejected", status: int = 400) -> JiraApiError:
    return JiraApiError(
        message,
        method="POST",
        url="https://target.example/rest/api/3/issue/T-1/comment",
        payload={"body": {}},
        http_status=status,
        response='{"errorMessages": ["INVALID_INPUT"]}',
    )


class FakeJiraProject:
    """In-memory implementation of the ``JiraProject`` interface."""

    def __init__(
        self,
        project_key: str,
        *,
        issue_types: list[IssueType] | None = None,
        link_types: list[str] | None = None,
        transitions: list[Transition] | None = None,
    ) -> None:
        self.project_key = project_key
        self.project_id = "10000"
        self.issue_types = list(DEFAULT_ISSUE_TYPES if issue_types is None else issue_types)
        self.link_types = ["Relates", "Blocks"] if link_types is None else link_types
        self.transitions = [] if transitions is None else transitions

        self.issues: dict[str, Issue] = {}
        self.fields: dict[str, dict[str, Any]] = {}
        self.comments: dict[str, list[Comment]] = {}
        self.attachments: dict[str, list[Attachment]] = {}
        self.links: list[tuple[str, str, str]] = []
        self.downloads: dict[str, bytes] = {}

        self.created_payloads: list[dict[str, Any]] = []
        self.updated_payloads: list[tuple[str, dict[str, Any]]] = []
        self.executed_transitions: list[tuple[str, str]] = []
        self.uploads: list[tuple[str, str, bytes]] = []
        self.search_calls: list[dict[str, Any]] = []
        self.comment_rejections = 0
        self.failing_keys: set[str] = set()
        self._ids = itertools.count(1)

    # Helpers for tests

    def add_issue(self, issue: Issue) -> Issue:
        self.issues[issue.key] = issue
        return issue

    def add_attachment(self, key: str, filename: str, content: bytes = b"data") -> Attachment:
        attachment_id = str(next(self._ids))
        url = f"https://{self.project_key.lower()}.example/attachment/content/{attachment_id}"
        attachment = Attachment(id=attachment_id, filename=filename, content_url=url)
        self.attachments.setdefault(key, []).append(attachment)
        self.downloads[url] = content
        return attachment

    def add_comment_record(self, key: str, body: dict[str, Any], author: str | None = None) -> Comment:
        comment = Comment(id=str(next(self._ids)), body=body, author=author)
        self.comments.setdefault(key, []).append(comment)
        return comment

    def issues_with_origin(self, source_key: str) -> list[str]:
        field = f"customfield_{ORIGIN_FIELD_ID}"
        return [key for key, fields in self.fields.items() if fields.get(field) == source_key]

    # JiraProject interface

    def search(self, jql: str, *, start_at: int = 0, max_results: int = 50, fields: str = "*all") -> SearchPage:
        self.search_calls.append({"jql": jql, "start_at": start_at, "max_results": max_results, "fields": fields})
        issues = list(self.issues.values())
        if jql.startswith("key IN"):
            wanted = re.findall(r'"([^"]+)"', jql)
            issues = [i for i in issues if i.key in wanted]
        return SearchPage(issues=issues[start_at : start_at + max_results], total=len(issues), start_at=start_at)

    def get_issue(self, key: str, fields: str = "*all") -> Issue:
        if key not in self.issues:
            raise JiraApiError(
                "GET request failed: HTTP 404", method="GET", url=f"/rest/api/3/issue/{key}", http_status=404
            )
        return self.issues[key]

    def create_issue(self, payload: dict[str, Any]) -> str | None:
        self.created_payloads.append(payload)
        fields = payload["fields"]
        key = f"{self.project_key}-{len(self.fields) + 1}"
        parent = fields.get("parent")
        self.fields[key] = dict(fields)
        self.issues[key] = Issue(
            key=key,
            type_name=fields["issuetype"]["name"],
            summary=fields["summary"],
            parent=IssueRef(key=parent["key"]) if parent else None,
        )
        return key

    def update_issue(self, key: str, payload: dict[str, Any]) -> None:
        if key in self.failing_keys:
            raise JiraApiError(
                "PUT request failed: HTTP 500", method="PUT", url=f"/rest/api/3/issue/{key}", http_status=500
            )
        self.updated_payloads.append((key, payload))
        self.fields[key].update(payload["fields"])

    def find_issue_by_origin_key(self, field_id: str, source_key: str) -> IssueRef | None:
        field = f"customfield_{field_id}"
        for key, fields in self.fields.items():
            if fields.get(field) == source_key:
                return IssueRef(key=key, type_name=fields["issuetype"]["name"])
        return None

    def get_comments(self, key: str) -> list[Comment]:
        return list(self.comments.get(key, []))

    def add_comment(self, key: str, body: dict[str, Any]) -> None:
        if self.comment_rejections:
            self.comment_rejections -= 1
            raise client_error()
        self.add_comment_record(key, body)

    def get_transitions(self, key: str) -> list[Transition]:
        return list(self.transitions)

    def transition_issue(self, key: str, transition_id: str, comment: dict[str, Any] | None = None) -> None:
        self.executed_transitions.append((key, transition_id))

    def link_issues(self, inward_key: str, outward_key: str, link_type: str = "Relates") -> None:
        self.links.append((inward_key, outward_key, link_type))

    def get_issue_links(self, key: str) -> list[IssueLink]:
        result: list[IssueLink] = []
        for inward, outward, link_type in self.links:
            if inward == key:
                result.append(IssueLink(type_name=link_type, outward_key=outward))
            elif outward == key:
                result.append(IssueLink(type_name=link_type, inward_key=inward))
        return result

    def get_link_types(self) -> list[str]:
        return list(self.link_types)

    def get_attachments(self, key: str) -> list[Attachment]:
        return list(self.attachments.get(key, []))

    def find_attachment(self, key: str, filename: str) -> Attachment | None:
        return next((a for a in self.attachments.get(key, []) if a.filename == filename), None)

    def upload_attachment(self, key: str, file_path: str | Path, filename: str | None = None) -> Attachment | None:
        content = Path(file_path).read_bytes()
        name = filename or Path(file_path).name
        self.uploads.append((key, name, content))
        return self.add_attachment(key, name, content)

    def download_attachment(self, url: str) -> bytes:
        return self.downloads[url]


@pytest.fixture
def custom_fields() -> CustomFieldIds:
    return CustomFieldIds(origin_key=ORIGIN_FIELD_ID, components="10002", fix_version="10003", reporter_name="10004")


@pytest.fixture
def source() -> FakeJiraProject:
    return FakeJiraProject("ME")


@pytest.fixture
def target() -> FakeJiraProject:
    return FakeJiraProject("T", transitions=[Transition(id="11", name="In Progress"), Transition(id="31", name="Done")])


@pytest.fixture
def migrator(source: FakeJiraProject, target: FakeJiraProject, custom_fields: CustomFieldIds) -> JiraIssueMigrator:
    return JiraIssueMigrator(source, target, custom_fields, issue_delay=0)  # type: ignore[arg-type]
