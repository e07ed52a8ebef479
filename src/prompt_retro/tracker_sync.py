"""Refresh the local issue cache from the configured issue tracker."""

from __future__ import annotations

import logging

from issue_tracker import IssueTrackerError, JiraClient

from .config import RetroConfig
from .ingestion.repository import IngestionRepository

LOGGER = logging.getLogger(__name__)


def create_jira_client(config: RetroConfig) -> JiraClient | None:
    """Build a Jira client when credentials are configured."""
    if config.jira is None:
        return None
    return JiraClient(
        base_url=config.jira.url,
        username=config.jira.username,
        api_token=config.jira.api_token,
    )


def sync_issue_cache(repository: IngestionRepository, client: JiraClient, days_back: int = 30) -> int:
    """Refresh cached issues; tracker failures are logged and leave the cache as-is."""
    repository.ensure_schema()
    try:
        issues = client.fetch_assigned_issues(days_back=days_back)
    except IssueTrackerError as exc:
        LOGGER.warning("Issue sync failed, continuing with cached data: %s", exc)
        return 0

    with repository.transaction():
        synced = repository.upsert_tracked_issues(issue for issue in issues if issue.issue_key)
    LOGGER.info("Synced %d issues into the local cache.", synced)
    return synced
