"""Tests for the Jira HTTP transport."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from email.utils import format_datetime
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
import requests
from requests.auth import HTTPBasicAuth

from jira_issue_migrator.exceptions import JiraApiError
from jira_issue_migrator.transport import JiraTransport, _parse_retry_after


def make_response(
    status: int = 200, body: Any = None, *, raw: bytes | None = None, headers: dict[str, str] | None = None
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    if raw is not None:
        response._content = raw
    else:
        response._content = json.dumps(body).encode() if body is not None else b""
    response.headers.update(headers or {})
    return response


@pytest.mark.unit
class TestParseRetryAfter:
    def test_seconds(self) -> None:
        assert _parse_retry_after("7") == 7.0

    def test_http_date(self) -> None:
        when = datetime.now(UTC) + timedelta(seconds=30)

        wait = _parse_retry_after(format_datetime(when, usegmt=True))

        assert wait is not None
        assert 25 <= wait <= 31

    def test_missing_or_garbage(self) -> None:
        assert _parse_retry_after(None) is None
        assert _parse_retry_after("soon") is None


@pytest.mark.unit
class TestJiraTransport:
    def setup_method(self) -> None:
        self.session = requests.Session()
        self.transport = JiraTransport(
            "https://source.atlassian.net/", "me@example.com", "secret", session=self.session
        )

    def test_auth_and_headers(self) -> None:
        assert isinstance(self.session.auth, HTTPBasicAuth)
        assert self.session.headers["Accept"] == "application/json"

    def test_bearer_auth(self) -> None:
        session = requests.Session()
        JiraTransport("https://x.atlassian.net", bearer_token="tok", session=session)

        assert session.headers["Authorization"] == "Bearer tok"
        assert session.auth is None

    def test_get_decodes_json(self) -> None:
        with patch.object(self.session, "request", return_value=make_response(body={"id": "1"})) as request:
            result = self.transport.get("/rest/api/3/project/ME", params={"expand": "x"})

        assert result == {"id": "1"}
        args, kwargs = request.call_args
        assert args == ("GET", "https://source.atlassian.net/rest/api/3/project/ME")
        assert kwargs["params"] == {"expand": "x"}
        assert kwargs["timeout"] == 60

    def test_empty_body_is_none(self) -> None:
        with patch.object(self.session, "request", return_value=make_response(204)):
            assert self.transport.put("/rest/api/3/issue/T-1", {"fields": {}}) is None

    def test_post_sends_utf8_json(self) -> None:
        with patch.object(self.session, "request", return_value=make_response(201, {"key": "T-1"})) as request:
            self.transport.post("/rest/api/3/issue", {"fields": {"summary": "Café"}})

        kwargs = request.call_args.kwargs
        assert json.loads(kwargs["data"].decode("utf-8")) == {"fields": {"summary": "Café"}}
        assert kwargs["headers"] == {"Content-Type": "application/json"}

    def test_absolute_url_is_used_as_is(self) -> None:
        with patch.object(self.session, "request", return_value=make_response(body=[])) as request:
            self.transport.get("https://other.example/thing")

        assert request.call_args.args[1] == "https://other.example/thing"

    def test_error_response_raises_with_context(self) -> None:
        error_body = {"errorMessages": ["Field 'priority' cannot be set"]}
        with patch.object(self.session, "request", return_value=make_response(400, error_body)):
            with pytest.raises(JiraApiError) as exc_info:
                self.transport.post("/rest/api/3/issue", {"fields": {"priority": {"name": "P1"}}})

        error = exc_info.value
        assert error.http_status == 400
        assert error.is_bad_request
        assert error.method == "POST"
        assert error.url == "https://source.atlassian.net/rest/api/3/issue"
        assert error.payload == {"fields": {"priority": {"name": "P1"}}}
        assert error.to_context()["response"] == error_body
        assert "HTTP 400" in error.describe()

    def test_transport_failure_raises_with_status_zero(self) -> None:
        with patch.object(self.session, "request", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(JiraApiError) as exc_info:
                self.transport.get("/rest/api/3/issue/ME-1")

        assert exc_info.value.http_status == 0
        assert not exc_info.value.is_bad_request

    def test_non_json_body_raises(self) -> None:
        with patch.object(self.session, "request", return_value=make_response(raw=b"<html>")):
            with pytest.raises(JiraApiError, match="non-JSON"):
                self.transport.get("/rest/api/3/issue/ME-1")

    @patch("jira_issue_migrator.transport.time.sleep")
    def test_rate_limit_is_retried(self, mock_sleep) -> None:
        responses = [make_response(429, headers={"Retry-After": "2"}), make_response(body={"ok": True})]
        with patch.object(self.session, "request", side_effect=responses) as request:
            result = self.transport.get("/rest/api/3/search")

        assert result == {"ok": True}
        assert request.call_count == 2
        mock_sleep.assert_called_once_with(2.0)

    @patch("jira_issue_migrator.transport.time.sleep")
    def test_backoff_without_retry_after(self, mock_sleep) -> None:
        responses = [make_response(503), make_response(503), make_response(body={})]
        with patch.object(self.session, "request", side_effect=responses):
            self.transport.get("/rest/api/3/search")

        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    @patch("jira_issue_migrator.transport.time.sleep")
    def test_rate_limit_retries_are_bounded(self, mock_sleep) -> None:
        with patch.object(self.session, "request", return_value=make_response(429)) as request:
            with pytest.raises(JiraApiError) as exc_info:
                self.transport.get("/rest/api/3/search")

        assert exc_info.value.http_status == 429
        assert request.call_count == 4
        assert mock_sleep.call_count == 3

    @patch("jira_issue_migrator.transport.time.sleep")
    def test_retry_after_is_capped(self, mock_sleep) -> None:
        responses = [make_response(429, headers={"Retry-After": "3600"}), make_response(body={})]
        with patch.object(self.session, "request", side_effect=responses):
            self.transport.get("/rest/api/3/search")

        mock_sleep.assert_called_once_with(60.0)

    def test_post_file_sends_multipart(self, tmp_path: Path) -> None:
        file_path = tmp_path / "upload.bin"
        file_path.write_bytes(b"payload")
        uploaded = [{"id": "5", "filename": "report.pdf", "content": "https://x/5"}]

        with patch.object(self.session, "request", return_value=make_response(200, uploaded)) as request:
            result = self.transport.post_file("/rest/api/3/issue/T-1/attachments", file_path, "report.pdf")

        assert result == uploaded
        kwargs = request.call_args.kwargs
        assert kwargs["files"] == {"file": ("report.pdf", b"payload")}
        assert kwargs["headers"] == {"X-Atlassian-Token": "no-check"}

    def test_download_binary_follows_redirects(self) -> None:
        with patch.object(self.session, "request", return_value=make_response(raw=b"\x89PNG")) as request:
            content = self.transport.download_binary("https://source.atlassian.net/rest/api/3/attachment/content/1")

        assert content == b"\x89PNG"
        assert request.call_args.kwargs["allow_redirects"] is True
