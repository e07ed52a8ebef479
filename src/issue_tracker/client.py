"""Jira REST client used to refresh the local issue cache."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime
import logging
import re
from typing import Any, Callable
import urllib.error
import urllib.request

import orjson

LOGGER = logging.getLogger(__name__)
DEFAULT_DAYS_BACK = 30
DEFAULT_MAX_RESULTS = 1000
STORY_POINTS_FIELD = "customfield_10016"
SPRINT_FIELD = "customfield_10020"
_SPRINT_NAME_PATTERN = re.compile(r"name=([^,\]]+)")


class IssueTrackerError(RuntimeError):
    """Raised when the issue tracker cannot be queried."""


@dataclass(frozen=True)
class TrackedIssue:
    """One issue as cached from the tracker."""

    issue_key: str
    summary: str
    status: str | None
    story_points: float | None
    sprint: str | None
    assignee: str | None
    updated_at: datetime | None


RequestSender = Callable[[urllib.request.Request], dict[str, Any]]


def _send_request(request: urllib.request.Request) -> dict[str, Any]:
    """Send one request and decode the JSON response."""
    try:
        with urllib.request.urlopen(request, timeout=30) as response:
            return orjson.loads(response.read())
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise IssueTrackerError(f"Jira API error ({exc.code}): {detail}") from exc
    except (urllib.error.URLError, OSError, orjson.JSONDecodeError) as exc:
        raise IssueTrackerError(f"Jira request to {request.full_url} failed: {exc}") from exc


class JiraClient:
    """Fetch issues assigned to the authenticated user."""

    def __init__(
        self,
        base_url: str,
        username: str,
        api_token: str,
        send_request: RequestSender | None = None,
    ) -> None:
        if not base_url or not username or not api_token:
            raise IssueTrackerError("Jira configuration is incomplete.")
        self._base_url = base_url.rstrip("/")
        self._username = username
        self._api_token = api_token
        self._send_request = send_request or _send_request

    @property
    def base_url(self) -> str:
        return self._base_url

    def fetch_assigned_issues(self, days_back: int = DEFAULT_DAYS_BACK) -> list[TrackedIssue]:
        """Return issues assigned to the current user that changed in the last `days_back` days."""
        jql = f"assignee = currentUser() AND updated >= -{days_back}d ORDER BY updated DESC"
        payload = self._post(
            "search",
            {
                "jql": jql,
                "fields": ["summary", "status", "assignee", "updated", STORY_POINTS_FIELD, SPRINT_FIELD],
                "maxResults": DEFAULT_MAX_RESULTS,
            },
        )
        raw_issues = payload.get("issues")
        if not isinstance(raw_issues, list):
            raise IssueTrackerError("Jira search response is missing the 'issues' list.")

        issues = [self._parse_issue(raw_issue) for raw_issue in raw_issues if isinstance(raw_issue, dict)]
        LOGGER.info("Fetched %d Jira issues updated in the last %d days.", len(issues), days_back)
        return issues

    def _post(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        request = urllib.request.Request(
            f"{self._base_url}/rest/api/3/{endpoint}",
            data=orjson.dumps(body),
            method="POST",
        )
        request.add_header("Authorization", f"Basic {self._auth_token()}")
        request.add_header("Accept", "application/json")
        request.add_header("Content-Type", "application/json")
        return self._send_request(request)

    def _auth_token(self) -> str:
        return base64.b64encode(f"{self._username}:{self._api_token}".encode("utf-8")).decode("ascii")

    def _parse_issue(self, raw_issue: dict[str, Any]) -> TrackedIssue:
        fields = raw_issue.get("fields") or {}
        status = fields.get("status") or {}
        assignee = fields.get("assignee") or {}
        story_points = fields.get(STORY_POINTS_FIELD)
        return TrackedIssue(
            issue_key=str(raw_issue.get("key", "")).upper(),
            summary=str(fields.get("summary") or ""),
            status=status.get("name") or "Unknown",
            story_points=float(story_points) if isinstance(story_points, (int, float)) else None,
            sprint=_extract_sprint(fields.get(SPRINT_FIELD)),
            assignee=assignee.get("displayName") or self._username,
            updated_at=_parse_updated(fields.get("updated")),
        )


def _extract_sprint(raw_sprint: Any) -> str | None:
    """Return the most recent sprint name from Jira's sprint field."""
    if not isinstance(raw_sprint, list) or not raw_sprint:
        return None
    latest = raw_sprint[-1]
    if isinstance(latest, dict):
        name = latest.get("name")
        return str(name) if name else None
    if isinstance(latest, str):
        match = _SPRINT_NAME_PATTERN.search(latest)
        return match.group(1) if match else None
    return None


def _parse_updated(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    # Jira renders offsets as +0000
    normalized = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", value.replace("Z", "+00:00"))
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        LOGGER.warning("Ignoring unparseable Jira updated timestamp: %s", value)
        return None
