"""Issue tracker client for refreshing the local issue cache."""

from .client import IssueTrackerError, JiraClient, TrackedIssue

__all__ = ["IssueTrackerError", "JiraClient", "TrackedIssue"]
