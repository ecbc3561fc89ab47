"""
Custom exception classes for the Jira issue migration tool.
"""

from __future__ import annotations

import json
from typing import Any


class MigrationError(Exception):
    """Base exception for migration errors."""


class ConfigurationError(MigrationError):
    """Raised when required configuration is missing or invalid."""


class IssueCreationError(MigrationError):
    """Raised when the target tracker accepts a create call but returns no issue key."""


class ParentCycleError(MigrationError):
    """Raised when parent or linked-issue resolution revisits a source key already being resolved."""


class JiraApiError(MigrationError):
    """Raised for any non-2xx response or transport failure.

    Carries the full request/response context so a failing call can be
    reproduced by hand. ``http_status`` is 0 when no response was received
    (connection error, timeout).
    """

    method: str
    url: str
    payload: Any
    http_status: int
    response: str | None

    def __init__(
        self,
        message: str,
        *,
        method: str,
        url: str,
        payload: Any = None,  # noqa: ANN401 - any JSON-serializable body
        http_status: int = 0,
        response: str | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.url = url
        self.payload = payload
        self.http_status = http_status
        self.response = response

    @property
    def is_bad_request(self) -> bool:
        """True for a 400, i.e. the tracker could not accept the payload as sent."""
        return self.http_status == 400

    def to_context(self) -> dict[str, Any]:
        """Return the request/response context as a dict for logging."""
        response: Any = self.response
        if self.response:
            try:
                response = json.loads(self.response)
            except ValueError:
                response = self.response
        return {
            "method": self.method,
            "url": self.url,
            "httpStatus": self.http_status,
            "payload": self.payload,
            "response": response,
        }

    def describe(self) -> str:
        """Multi-line description of the failed call for the log file."""
        payload = json.dumps(self.payload, ensure_ascii=False) if self.payload is not None else "-"
        return (
            f"{self.method} {self.url} -> HTTP {self.http_status}\n"
            f"  payload: {payload}\n"
            f"  response: {self.response or '-'}"
        )
