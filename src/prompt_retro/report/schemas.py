"""Typed schemas used by the retrospective report pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class SessionSummary:
    """One stored session loaded from DuckDB."""

    session_id: str
    start_time: float
    end_time: float
    cwd: str | None
    duration_minutes: float
    prompt_count: int
    commit_count: int = 0


@dataclass(frozen=True)
class IssueWork:
    """Time and commits attributed to one issue key."""

    issue_key: str
    summary: str | None
    status: str | None
    story_points: float | None
    sprint: str | None
    session_count: int
    total_minutes: float
    commit_count: int
    max_confidence: float
    sources: tuple[str, ...]


@dataclass(frozen=True)
class SummaryStats:
    """Headline numbers for a reporting period."""

    total_sessions: int = 0
    total_minutes: float = 0.0
    unique_issues: int = 0
    total_commits: int = 0
    avg_session_minutes: float = 0.0


@dataclass(frozen=True)
class CommitSummary:
    """A commit linked to at least one session in the period."""

    commit_hash: str
    timestamp: int
    message: str
    author: str
    repo_path: str


@dataclass
class UntrackedDirectoryGroup:
    """Untracked sessions accumulated per working directory."""

    directory: str
    sessions: list[SessionSummary] = field(default_factory=list)
    total_minutes: float = 0.0
    commit_count: int = 0

    def add(self, session: SessionSummary) -> None:
        """Accumulate one untracked session into this group."""
        self.sessions.append(session)
        self.total_minutes += session.duration_minutes
        self.commit_count += session.commit_count


@dataclass(frozen=True)
class RetroReport:
    """Everything needed to render one retrospective."""

    period_start: datetime
    period_end: datetime
    stats: SummaryStats
    work_by_issue: list[IssueWork]
    untracked_groups: list[UntrackedDirectoryGroup]
    commits: list[CommitSummary]
    issue_base_url: str | None = None

    @property
    def tracked_minutes(self) -> float:
        return sum(work.total_minutes for work in self.work_by_issue)

    @property
    def untracked_minutes(self) -> float:
        return sum(group.total_minutes for group in self.untracked_groups)

    @property
    def alignment_percent(self) -> float:
        """Share of attributed minutes that were linked to an issue."""
        total = self.tracked_minutes + self.untracked_minutes
        if total == 0:
            return 0.0
        return self.tracked_minutes / total * 100
