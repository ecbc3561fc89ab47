"""
Environment-driven configuration for the Jira issue migration tool.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from . import jira_utils
from .exceptions import ConfigurationError

_REQUIRED: tuple[str, ...] = (
    "JIRA_USERNAME",
    "SOURCE_JIRA_DOMAIN",
    "TARGET_JIRA_DOMAIN",
    "SOURCE_PROJECT_KEY",
    "TARGET_PROJECT_KEY",
    "CF_COMPONENTS",
    "CF_FIX_VERSION",
    "CF_REPORTER_NAME",
)
_ORIGIN_KEY_VARS: tuple[str, ...] = ("CF_ORIGIN_KEY", "CF_CONSORTIUM_JIRA_ISSUE")
DEFAULT_ISSUE_DELAY: float = 1.0


@dataclass(frozen=True)
class CustomFieldIds:
    """Numeric ids of the target custom fields the migrator writes."""

    origin_key: str
    components: str
    fix_version: str
    reporter_name: str

    @staticmethod
    def field_name(field_id: str) -> str:
        return f"customfield_{field_id}"


@dataclass(frozen=True)
class MigrationConfig:
    username: str
    api_token: str
    source_domain: str
    target_domain: str
    source_project: str
    target_project: str
    custom_fields: CustomFieldIds
    type_overrides: dict[str, str] = field(default_factory=dict)
    link_type_overrides: dict[str, str] = field(default_factory=dict)
    issue_delay: float = DEFAULT_ISSUE_DELAY

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MigrationConfig:
        """Load configuration from the environment.

        Raises:
            ConfigurationError: if required variables are missing or a value cannot be parsed
        """
        env = os.environ if environ is None else environ

        missing = [name for name in _REQUIRED if not env.get(name)]
        origin_key = next((env[name] for name in _ORIGIN_KEY_VARS if env.get(name)), None)
        if origin_key is None:
            missing.append(_ORIGIN_KEY_VARS[0])
        if missing:
            msg = f"Missing required environment variables: {', '.join(missing)}"
            raise ConfigurationError(msg)

        api_token = jira_utils.get_token(dict(env))
        if not api_token:
            msg = "No Jira API token: set JIRA_API_TOKEN or store it in pass at JIRA_API_TOKEN_PASS_PATH"
            raise ConfigurationError(msg)

        return cls(
            username=env["JIRA_USERNAME"],
            api_token=api_token,
            source_domain=env["SOURCE_JIRA_DOMAIN"],
            target_domain=env["TARGET_JIRA_DOMAIN"],
            source_project=env["SOURCE_PROJECT_KEY"],
            target_project=env["TARGET_PROJECT_KEY"],
            custom_fields=CustomFieldIds(
                origin_key=origin_key,
                components=env["CF_COMPONENTS"],
                fix_version=env["CF_FIX_VERSION"],
                reporter_name=env["CF_REPORTER_NAME"],
            ),
            type_overrides=_json_mapping(env, "JIRA_TYPE_MAPPING"),
            link_type_overrides=_json_mapping(env, "JIRA_LINK_TYPE_MAPPING"),
            issue_delay=_float(env, "JIRA_ISSUE_DELAY", DEFAULT_ISSUE_DELAY),
        )


def _json_mapping(env: Mapping[str, str], name: str) -> dict[str, str]:
    raw = env.get(name)
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        msg = f"{name} is not valid JSON: {e}"
        raise ConfigurationError(msg) from e
    if not isinstance(value, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        msg = f"{name} must be a JSON object mapping names to names"
        raise ConfigurationError(msg)
    return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        msg = f"{name} must be a number, got {raw!r}"
        raise ConfigurationError(msg) from e
    if value < 0:
        msg = f"{name} must not be negative"
        raise ConfigurationError(msg)
    return value
