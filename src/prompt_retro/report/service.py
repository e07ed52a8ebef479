"""Assembly of retrospective reports from stored sessions."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from .repository import ReportRepository
from .schemas import RetroReport, SessionSummary, UntrackedDirectoryGroup

DEFAULT_REPORT_DAYS = 7
UNKNOWN_DIRECTORY = "Unknown"


class ReportService:
    """Collect the figures of one retrospective period."""

    def __init__(self, repository: ReportRepository, issue_base_url: str | None = None) -> None:
        self._repository = repository
        self._issue_base_url = issue_base_url

    def build_report(self, start: datetime, end: datetime) -> RetroReport:
        """Query every report section for sessions fully inside `[start, end]`."""
        untracked = self._repository.fetch_untracked_sessions(start, end)
        return RetroReport(
            period_start=start,
            period_end=end,
            stats=self._repository.fetch_summary_stats(start, end),
            work_by_issue=self._repository.fetch_work_by_issue(start, end),
            untracked_groups=group_untracked_by_directory(untracked),
            commits=self._repository.fetch_commits(start, end),
            issue_base_url=self._issue_base_url,
        )


def group_untracked_by_directory(sessions: list[SessionSummary]) -> list[UntrackedDirectoryGroup]:
    """Group untracked sessions by working directory, largest total time first."""
    groups: dict[str, UntrackedDirectoryGroup] = {}
    for session in sessions:
        directory = session.cwd or UNKNOWN_DIRECTORY
        if directory not in groups:
            groups[directory] = UntrackedDirectoryGroup(directory=directory)
        groups[directory].add(session)
    return sorted(groups.values(), key=lambda group: (-group.total_minutes, group.directory))


def resolve_report_period(
    now: datetime,
    days: int = DEFAULT_REPORT_DAYS,
    start: date | None = None,
    end: date | None = None,
) -> tuple[datetime, datetime]:
    """Resolve the inclusive period boundaries in the timezone of `now`.

    Explicit dates cover whole days from the start of `start` to the end of
    `end`. Otherwise the period ends at the end of today and begins at the
    start of the day `days` days earlier.
    """
    tzinfo = now.tzinfo
    if start is not None and end is not None:
        if start > end:
            raise ValueError(f"Report start {start} is after report end {end}.")
        first_day, last_day = start, end
    else:
        if days < 0:
            raise ValueError(f"Report days must not be negative, got {days}.")
        last_day = now.date()
        first_day = last_day - timedelta(days=days)

    period_start = datetime.combine(first_day, time.min, tzinfo=tzinfo)
    period_end = datetime.combine(last_day, time.max, tzinfo=tzinfo)
    return period_start, period_end
