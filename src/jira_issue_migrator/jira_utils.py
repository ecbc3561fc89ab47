"""Jira REST endpoints used by the migrator, bound to one project."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Final
from urllib.parse import quote

from . import utils
from .exceptions import ConfigurationError, JiraApiError
from .models import AdfNode, Attachment, Comment, Issue, IssueLink, IssueRef, IssueType, SearchPage, Transition
from .transport import JiraTransport

if TYPE_CHECKING:
    from pathlib import Path

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_TOKEN_ENV_VAR: Final[str] = "JIRA_API_TOKEN"  # noqa: S105
_TOKEN_PASS_PATH_ENV_VAR: Final[str] = "JIRA_API_TOKEN_PASS_PATH"  # noqa: S105
_DEFAULT_TOKEN_PASS_PATH: Final[str] = "jira/api_token"  # noqa: S105

SEARCH: Final[str] = "/rest/api/3/search"
ISSUE: Final[str] = "/rest/api/3/issue"
ISSUE_BY_KEY: Final[str] = "/rest/api/3/issue/{key}"
COMMENTS: Final[str] = "/rest/api/3/issue/{key}/comment"
TRANSITIONS: Final[str] = "/rest/api/3/issue/{key}/transitions"
ATTACHMENTS: Final[str] = "/rest/api/3/issue/{key}/attachments"
ISSUE_LINK: Final[str] = "/rest/api/3/issueLink"
ISSUE_LINK_TYPES: Final[str] = "/rest/api/3/issueLinkType"
PROJECT: Final[str] = "/rest/api/3/project/{key}"
PROJECT_ISSUE_TYPES: Final[str] = "/rest/api/3/issuetype/project"

_ORIGIN_LOOKUP_PAGE: Final[int] = 50


def get_token(environ: dict[str, str] | None = None) -> str | None:
    """Get the Jira API token from env var JIRA_API_TOKEN, or from the pass utility."""
    env = os.environ if environ is None else environ
    token = env.get(_TOKEN_ENV_VAR)
    if token:
        return token

    pass_path = env.get(_TOKEN_PASS_PATH_ENV_VAR, _DEFAULT_TOKEN_PASS_PATH)
    try:
        return utils.get_pass_value(pass_path)
    except (ValueError, utils.PassError):
        logger.warning("No Jira API token specified nor found")
        return None


def _jql_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class JiraProject:
    """Endpoint wrapper for one Jira project.

    Construction talks to the tracker: it resolves the project id and loads
    the project's issue-type catalog, so a bad domain, bad credentials or an
    unknown project key fail here, before any issue is processed.
    """

    transport: JiraTransport
    project_key: str
    project_id: str
    issue_types: list[IssueType]

    def __init__(self, transport: JiraTransport, project_key: str) -> None:
        self.transport = transport
        self.project_key = project_key
        self.project_id = self._get_project_id()
        self.issue_types = self._load_issue_types()
        logger.info(f"Connected to project {project_key} (id {self.project_id}) at {transport.base_url}")

    def _get_project_id(self) -> str:
        path = PROJECT.format(key=quote(self.project_key))
        response = self.transport.get(path)
        if not isinstance(response, dict) or "id" not in response:
            msg = f"Project id not found for key: {self.project_key}"
            raise JiraApiError(msg, method="GET", url=path, http_status=200, response=str(response))
        return str(response["id"])

    def _load_issue_types(self) -> list[IssueType]:
        response = self.transport.get(PROJECT_ISSUE_TYPES, params={"projectId": self.project_id}) or []
        return [IssueType.from_api(t) for t in response if isinstance(t, dict) and t.get("name")]

    # Search

    def search_raw(self, jql: str, *, start_at: int = 0, max_results: int = 50, fields: str = "*all") -> dict[str, Any]:
        params = {"jql": jql, "startAt": start_at, "maxResults": max_results, "fields": fields}
        return self.transport.get(SEARCH, params=params) or {}

    def search(self, jql: str, *, start_at: int = 0, max_results: int = 50, fields: str = "*all") -> SearchPage:
        data = self.search_raw(jql, start_at=start_at, max_results=max_results, fields=fields)
        issues = [Issue.from_api(i) for i in data.get("issues") or []]
        return SearchPage(issues=issues, total=int(data.get("total") or 0), start_at=start_at)

    def _single_issue_field(self, key: str, field: str) -> list[dict[str, Any]]:
        jql = f"project = {_jql_string(self.project_key)} AND key = {_jql_string(key)}"
        issues = self.search_raw(jql, fields=field).get("issues") or []
        if not issues:
            return []
        value = (issues[0].get("fields") or {}).get(field)
        return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []

    def find_issue_by_origin_key(self, field_id: str, source_key: str) -> IssueRef | None:
        """Find the issue whose origin-key custom field equals ``source_key``.

        The JQL ``~`` operator is a text match, so results are re-checked for
        exact equality before one is accepted.
        """
        field_name = f"customfield_{field_id}"
        jql = f"project = {_jql_string(self.project_key)} AND cf[{field_id}] ~ {_jql_string(source_key)}"
        data = self.search_raw(jql, max_results=_ORIGIN_LOOKUP_PAGE, fields=f"key,issuetype,{field_name}")
        for raw in data.get("issues") or []:
            value = (raw.get("fields") or {}).get(field_name)
            if isinstance(value, str) and value.strip() == source_key:
                return IssueRef.from_api(raw)
        return None

    # Issues

    def get_issue(self, key: str, fields: str = "*all") -> Issue:
        return Issue.from_api(self.transport.get(ISSUE_BY_KEY.format(key=quote(key)), params={"fields": fields}))

    def create_issue(self, payload: dict[str, Any]) -> str | None:
        """Create an issue and return its key (None if the response carried none)."""
        response = self.transport.post(ISSUE, payload) or {}
        return response.get("key")

    def update_issue(self, key: str, payload: dict[str, Any]) -> None:
        # 204 No Content on success
        self.transport.put(ISSUE_BY_KEY.format(key=quote(key)), payload)

    # Comments

    def get_comments(self, key: str) -> list[Comment]:
        response = self.transport.get(COMMENTS.format(key=quote(key))) or {}
        return [Comment.from_api(c) for c in response.get("comments") or []]

    def add_comment(self, key: str, body: AdfNode) -> None:
        self.transport.post(COMMENTS.format(key=quote(key)), {"body": body})

    # Transitions

    def get_transitions(self, key: str) -> list[Transition]:
        response = self.transport.get(TRANSITIONS.format(key=quote(key))) or {}
        return [Transition.from_api(t) for t in response.get("transitions") or [] if t.get("id") is not None]

    def transition_issue(self, key: str, transition_id: str, comment: AdfNode | None = None) -> None:
        data: dict[str, Any] = {"transition": {"id": transition_id}}
        if comment:
            data["update"] = {"comment": [{"add": {"body": comment}}]}
        self.transport.post(TRANSITIONS.format(key=quote(key)), data)

    # Links

    def link_issues(self, inward_key: str, outward_key: str, link_type: str = "Relates") -> None:
        self.transport.post(
            ISSUE_LINK,
            {
                "type": {"name": link_type},
                "inwardIssue": {"key": inward_key},
                "outwardIssue": {"key": outward_key},
            },
        )

    def get_issue_links(self, key: str) -> list[IssueLink]:
        return [IssueLink.from_api(link) for link in self._single_issue_field(key, "issuelinks")]

    def get_link_types(self) -> list[str]:
        response = self.transport.get(ISSUE_LINK_TYPES) or {}
        return [t["name"] for t in response.get("issueLinkTypes") or [] if t.get("name")]

    # Attachments

    def get_attachments(self, key: str) -> list[Attachment]:
        return [Attachment.from_api(a) for a in self._single_issue_field(key, "attachment")]

    def find_attachment(self, key: str, filename: str) -> Attachment | None:
        for attachment in self.get_attachments(key):
            if attachment.filename == filename:
                return attachment
        return None

    def upload_attachment(self, key: str, file_path: str | Path, filename: str | None = None) -> Attachment | None:
        response = self.transport.post_file(ATTACHMENTS.format(key=quote(key)), file_path, filename)
        if isinstance(response, list) and response and isinstance(response[0], dict):
            return Attachment.from_api(response[0])
        return None

    def download_attachment(self, url: str) -> bytes:
        return self.transport.download_binary(url)


def get_client(base_url: str, username: str, api_token: str, project_key: str) -> JiraProject:
    """Build a connected ``JiraProject`` for one site/project pair."""
    if not base_url or not project_key:
        msg = "Both a Jira base URL and a project key are required"
        raise ConfigurationError(msg)
    return JiraProject(JiraTransport(base_url, username, api_token), project_key)
