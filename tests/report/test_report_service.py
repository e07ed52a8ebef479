"""Tests for retrospective report queries and assembly."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from issue_tracker import TrackedIssue
from prompt_retro.ingestion.repository import IngestionRepository
from prompt_retro.ingestion.schemas import CommitRecord, IssueCandidate, LogEntry, Session
from prompt_retro.report.repository import ReportRepository, ReportRepositoryError
from prompt_retro.report.schemas import SessionSummary
from prompt_retro.report.service import ReportService, group_untracked_by_directory, resolve_report_period

PERIOD_START = datetime(2026, 2, 1, tzinfo=UTC)
PERIOD_END = datetime(2026, 2, 7, 23, 59, 59, tzinfo=UTC)


def test_summary_stats_are_not_inflated_by_joins(tmp_path: Path) -> None:
    """Sessions with several issues and commits are still counted once."""
    database_path = _seed_database(tmp_path)
    repository = ReportRepository(database_path)

    stats = repository.fetch_summary_stats(PERIOD_START, PERIOD_END)

    assert stats.total_sessions == 4
    assert stats.total_minutes == 200.0
    assert stats.unique_issues == 2
    assert stats.total_commits == 3
    assert stats.avg_session_minutes == 50.0
    repository.close()


def test_work_by_issue_aggregates_sessions_and_cache(tmp_path: Path) -> None:
    """Issue work sums session time once per session and joins cached issue details."""
    database_path = _seed_database(tmp_path)
    repository = ReportRepository(database_path)

    work = repository.fetch_work_by_issue(PERIOD_START, PERIOD_END)

    assert [item.issue_key for item in work] == ["AB-1", "CD-2"]
    ab_1, cd_2 = work
    assert (ab_1.session_count, ab_1.total_minutes, ab_1.commit_count) == (2, 90.0, 2)
    assert ab_1.max_confidence == 1.0
    assert ab_1.sources == ("branch", "commit", "prompt")
    assert (ab_1.summary, ab_1.status, ab_1.story_points, ab_1.sprint) == ("Login fails", "In Progress", 5.0, "Sprint 4")
    assert (cd_2.session_count, cd_2.total_minutes, cd_2.commit_count) == (1, 30.0, 1)
    assert cd_2.sources == ("directory",)
    assert cd_2.summary is None
    repository.close()


def test_sessions_untracked_and_commits_respect_period(tmp_path: Path) -> None:
    """Only sessions fully inside the period are reported."""
    database_path = _seed_database(tmp_path)
    repository = ReportRepository(database_path)

    sessions = repository.fetch_sessions(PERIOD_START, PERIOD_END)
    untracked = repository.fetch_untracked_sessions(PERIOD_START, PERIOD_END)
    commits = repository.fetch_commits(PERIOD_START, PERIOD_END)

    assert [session.session_id for session in sessions] == ["s1", "s2", "s3", "s4"]
    assert [session.commit_count for session in sessions] == [2, 1, 1, 0]
    assert [session.session_id for session in untracked] == ["s3", "s4"]
    assert [commit.commit_hash for commit in commits] == ["c3", "c2", "c1"]
    repository.close()


def test_report_service_builds_alignment_and_directory_groups(tmp_path: Path) -> None:
    database_path = _seed_database(tmp_path)
    repository = ReportRepository(database_path)

    report = ReportService(repository, issue_base_url="https://jira.example.com").build_report(PERIOD_START, PERIOD_END)

    assert [group.directory for group in report.untracked_groups] == ["/work/tools", "Unknown"]
    assert report.untracked_groups[0].commit_count == 1
    assert report.tracked_minutes == 120.0
    assert report.untracked_minutes == 110.0
    assert report.alignment_percent == pytest.approx(120 / 230 * 100)
    assert report.issue_base_url == "https://jira.example.com"
    repository.close()


def test_group_untracked_by_directory_orders_by_total_time() -> None:
    groups = group_untracked_by_directory(
        [
            SessionSummary("a", 0.0, 600.0, "/work/x", 10.0, 2, 1),
            SessionSummary("b", 0.0, 1200.0, "/work/y", 20.0, 3, 0),
            SessionSummary("c", 0.0, 900.0, "/work/x", 15.0, 1, 2),
        ]
    )

    assert [(group.directory, group.total_minutes, group.commit_count) for group in groups] == [
        ("/work/x", 25.0, 3),
        ("/work/y", 20.0, 0),
    ]
    assert [session.session_id for session in groups[0].sessions] == ["a", "c"]


def test_resolve_report_period_uses_whole_days() -> None:
    """Relative periods end today; explicit periods cover whole days."""
    local = timezone(timedelta(hours=2))
    now = datetime(2026, 2, 10, 15, 30, tzinfo=local)

    start, end = resolve_report_period(now=now, days=7)
    assert start == datetime(2026, 2, 3, 0, 0, tzinfo=local)
    assert (end.date(), end.hour, end.minute) == (date(2026, 2, 10), 23, 59)

    start, end = resolve_report_period(now=now, start=date(2026, 1, 5), end=date(2026, 1, 5))
    assert start == datetime(2026, 1, 5, tzinfo=local)
    assert end.date() == date(2026, 1, 5)

    with pytest.raises(ValueError):
        _ = resolve_report_period(now=now, start=date(2026, 1, 6), end=date(2026, 1, 5))


def test_report_repository_raises_for_missing_tables(tmp_path: Path) -> None:
    """Querying a database that was never processed fails with a readable error."""
    database_path = tmp_path / "empty.duckdb"
    IngestionRepository(database_path).close()
    repository = ReportRepository(database_path)

    with pytest.raises(ReportRepositoryError, match="prompt-retro process"):
        _ = repository.fetch_sessions(PERIOD_START, PERIOD_END)
    repository.close()


def _seed_database(tmp_path: Path) -> Path:
    database_path = tmp_path / "retro.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()
    commits = {
        "c1": CommitRecord("c1", _ts(2, 10, 15), "dev", "[AB-1] Fix login", "/work/app"),
        "c2": CommitRecord("c2", _ts(2, 10, 45), "dev", "AB-1: tests", "/work/app"),
        "c3": CommitRecord("c3", _ts(4, 15, 0), "dev", "Tooling", "/work/tools"),
    }
    seeded = [
        (_session("s1", _ts(2, 10, 0), 60, "/work/app"), ["c1", "c2"], [IssueCandidate("AB-1", "branch,commit", 1.0)]),
        (
            _session("s2", _ts(3, 9, 0), 30, "/work/app"),
            ["c2"],
            [IssueCandidate("AB-1", "prompt", 0.7), IssueCandidate("CD-2", "directory", 0.5)],
        ),
        (_session("s3", _ts(4, 14, 0), 90, "/work/tools"), ["c3"], []),
        (_session("s4", _ts(5, 8, 0), 20, None), [], []),
        (_session("s5", datetime(2026, 1, 20, tzinfo=UTC).timestamp(), 45, "/work/app"), [], []),
    ]
    with repository.transaction():
        repository.insert_commits(commits.values())
        for session, commit_hashes, issues in seeded:
            repository.upsert_session(session)
            repository.insert_prompts(session)
            repository.link_session_commits(session.session_id, [commits[key] for key in commit_hashes])
            repository.upsert_issue_links(session.session_id, issues)
        repository.upsert_tracked_issues(
            [
                TrackedIssue(
                    issue_key="AB-1",
                    summary="Login fails",
                    status="In Progress",
                    story_points=5.0,
                    sprint="Sprint 4",
                    assignee="Dev One",
                    updated_at=datetime(2026, 2, 1, tzinfo=UTC),
                )
            ]
        )
    repository.close()
    return database_path


def _session(session_id: str, start_time: float, minutes: int, cwd: str | None) -> Session:
    end_time = start_time + minutes * 60
    entries = (
        LogEntry(timestamp=start_time, session_key=session_id, cwd=cwd),
        LogEntry(timestamp=end_time, session_key=session_id, cwd=cwd),
    )
    return Session(
        session_id=session_id,
        session_key=session_id,
        start_time=start_time,
        end_time=end_time,
        cwd=cwd,
        entries=entries,
    )


def _ts(day: int, hour: int, minute: int) -> int:
    return int(datetime(2026, 2, day, hour, minute, tzinfo=UTC).timestamp())
