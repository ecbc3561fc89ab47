"""HTTP transport for the Jira Cloud REST API."""

from __future__ import annotations

import email.utils
import json
import logging
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import requests
from requests.auth import HTTPBasicAuth

from .exceptions import JiraApiError

logger: logging.Logger = logging.getLogger(__name__)

_RETRY_STATUSES: Final[frozenset[int]] = frozenset({429, 503})
_INITIAL_BACKOFF: Final[float] = 1.0
_MAX_BACKOFF: Final[float] = 60.0


def _parse_retry_after(raw: str | None) -> float | None:
    """Parse a Retry-After header given either in seconds or as an HTTP-date."""
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


class JiraTransport:
    """Thin JSON client bound to one Jira site.

    Every method raises ``JiraApiError`` on a non-2xx response or when the
    request cannot be sent at all. Rate-limit responses (429/503) are retried
    a bounded number of times before surfacing.
    """

    base_url: str
    timeout: float
    max_retries: int
    _session: requests.Session

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        api_token: str | None = None,
        *,
        bearer_token: str | None = None,
        timeout: float = 60,
        max_retries: int = 3,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._session = session or requests.Session()
        self._session.headers["Accept"] = "application/json"
        if username and api_token:
            self._session.auth = HTTPBasicAuth(username, api_token)
        elif bearer_token:
            self._session.headers["Authorization"] = f"Bearer {bearer_token}"

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, method: str, url: str, payload: Any = None, **kwargs: Any) -> requests.Response:  # noqa: ANN401
        backoff = _INITIAL_BACKOFF
        attempt = 0
        while True:
            try:
                response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                msg = f"{method} request failed: {e}"
                raise JiraApiError(msg, method=method, url=url, payload=payload) from e

            if response.status_code not in _RETRY_STATUSES or attempt >= self.max_retries:
                break

            wait = _parse_retry_after(response.headers.get("Retry-After"))
            wait = min(wait if wait is not None else backoff, _MAX_BACKOFF)
            logger.warning(f"HTTP {response.status_code} from {method} {url}; retrying in {wait:.1f}s")
            time.sleep(wait)
            backoff = min(backoff * 2, _MAX_BACKOFF)
            attempt += 1

        if not response.ok:
            msg = f"{method} request failed: HTTP {response.status_code}"
            raise JiraApiError(
                msg,
                method=method,
                url=url,
                payload=payload,
                http_status=response.status_code,
                response=response.text,
            )
        return response

    def _json_request(self, method: str, path: str, body: Any = None, params: dict[str, Any] | None = None) -> Any:  # noqa: ANN401
        url = self._url(path)
        kwargs: dict[str, Any] = {}
        if params:
            kwargs["params"] = params
        if body is not None:
            kwargs["data"] = json.dumps(body, ensure_ascii=False).encode("utf-8")
            kwargs["headers"] = {"Content-Type": "application/json"}
        response = self._send(method, url, body, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            msg = f"{method} returned a non-JSON body"
            raise JiraApiError(
                msg, method=method, url=url, payload=body, http_status=response.status_code, response=response.text
            ) from e

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:  # noqa: ANN401
        return self._json_request("GET", path, params=params)

    def post(self, path: str, body: Any) -> Any:  # noqa: ANN401
        return self._json_request("POST", path, body)

    def put(self, path: str, body: Any) -> Any:  # noqa: ANN401
        return self._json_request("PUT", path, body)

    def post_file(self, path: str, file_path: str | Path, filename: str | None = None) -> Any:  # noqa: ANN401
        """Upload a file as multipart field ``file``."""
        url = self._url(path)
        file_path = Path(file_path)
        name = filename or file_path.name
        # bytes rather than a file handle so a retried request re-sends the full body
        content = file_path.read_bytes()
        response = self._send(
            "POST",
            url,
            {"file": name},
            files={"file": (name, content)},
            headers={"X-Atlassian-Token": "no-check"},
        )
        return response.json() if response.content else None

    def download_binary(self, url: str) -> bytes:
        """Fetch raw bytes, following redirects (attachment content URLs redirect to media storage)."""
        response = self._send("GET", self._url(url), allow_redirects=True)
        return response.content
