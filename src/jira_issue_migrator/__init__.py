"""
Jira Issue Migration Tool

Migrates issues between Jira projects, including descriptions, comments,
attachments, issue links, parent/child relationships and status. Re-runs are
safe: target issues are matched to their source through an origin-key field.
"""

from __future__ import annotations

from .cli import main
from .exceptions import ConfigurationError, JiraApiError, MigrationError, ParentCycleError
from .migrator import JiraIssueMigrator, RunCounters
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "JiraApiError",
    "JiraIssueMigrator",
    "MigrationError",
    "ParentCycleError",
    "RunCounters",
    "main",
    "setup_logging",
]
