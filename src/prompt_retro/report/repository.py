"""DuckDB repository for retrospective report queries."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import duckdb

from .schemas import CommitSummary, IssueWork, SessionSummary, SummaryStats

MISSING_DATA_HINT = "Run `prompt-retro process` first."


class ReportRepositoryError(RuntimeError):
    """Raised when report queries cannot be executed."""


class ReportRepository:
    """Read-only repository over ingested sessions, commits, and issue links.

    Every query selects sessions that lie entirely inside the period, i.e.
    `start_time >= period_start AND end_time <= period_end`.
    """

    def __init__(self, database_path: Path) -> None:
        try:
            self._connection = duckdb.connect(str(database_path), read_only=True)
        except duckdb.Error as exc:
            raise ReportRepositoryError(f"Failed to open {database_path}. {MISSING_DATA_HINT}") from exc

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._connection.close()

    def fetch_sessions(self, start: datetime, end: datetime) -> list[SessionSummary]:
        """Load sessions in the period in chronological order."""
        rows = self._query(
            """
SELECT
    s.session_id,
    s.start_time,
    s.end_time,
    s.cwd,
    s.duration_minutes,
    s.prompt_count,
    COALESCE(c.commit_count, 0) AS commit_count
FROM sessions AS s
LEFT JOIN (
    SELECT session_id, COUNT(*) AS commit_count
    FROM session_commits
    GROUP BY session_id
) AS c ON c.session_id = s.session_id
WHERE s.start_time >= ? AND s.end_time <= ?
ORDER BY s.start_time, s.session_id
            """,
            [start.timestamp(), end.timestamp()],
        )
        return [_session_from_row(row) for row in rows]

    def fetch_work_by_issue(self, start: datetime, end: datetime) -> list[IssueWork]:
        """Aggregate linked sessions per issue key, joined with the issue cache."""
        rows = self._query(
            """
WITH ranged AS (
    SELECT session_id, duration_minutes
    FROM sessions
    WHERE start_time >= ? AND end_time <= ?
),
links AS (
    SELECT si.issue_key, si.session_id, si.source, si.confidence
    FROM session_issues AS si
    INNER JOIN ranged AS r ON r.session_id = si.session_id
),
issue_time AS (
    SELECT l.issue_key, COUNT(*) AS session_count, SUM(r.duration_minutes) AS total_minutes
    FROM (SELECT DISTINCT issue_key, session_id FROM links) AS l
    INNER JOIN ranged AS r ON r.session_id = l.session_id
    GROUP BY l.issue_key
),
issue_commits AS (
    SELECT l.issue_key, COUNT(DISTINCT sc.commit_hash) AS commit_count
    FROM links AS l
    INNER JOIN session_commits AS sc ON sc.session_id = l.session_id
    GROUP BY l.issue_key
),
issue_detection AS (
    SELECT issue_key, MAX(confidence) AS max_confidence, LIST(DISTINCT source) AS sources
    FROM links
    GROUP BY issue_key
)
SELECT
    t.issue_key,
    ic.summary,
    ic.status,
    ic.story_points,
    ic.sprint,
    t.session_count,
    t.total_minutes,
    COALESCE(c.commit_count, 0) AS commit_count,
    d.max_confidence,
    d.sources
FROM issue_time AS t
INNER JOIN issue_detection AS d ON d.issue_key = t.issue_key
LEFT JOIN issue_commits AS c ON c.issue_key = t.issue_key
LEFT JOIN issue_cache AS ic ON ic.issue_key = t.issue_key
ORDER BY t.total_minutes DESC, t.issue_key
            """,
            [start.timestamp(), end.timestamp()],
        )
        return [
            IssueWork(
                issue_key=str(row[0]),
                summary=row[1],
                status=row[2],
                story_points=None if row[3] is None else float(row[3]),
                sprint=row[4],
                session_count=int(row[5]),
                total_minutes=float(row[6] or 0.0),
                commit_count=int(row[7]),
                max_confidence=float(row[8]),
                sources=_split_sources(row[9]),
            )
            for row in rows
        ]

    def fetch_untracked_sessions(self, start: datetime, end: datetime) -> list[SessionSummary]:
        """Load sessions in the period that have no issue link."""
        rows = self._query(
            """
SELECT
    s.session_id,
    s.start_time,
    s.end_time,
    s.cwd,
    s.duration_minutes,
    s.prompt_count,
    COALESCE(c.commit_count, 0) AS commit_count
FROM sessions AS s
LEFT JOIN (
    SELECT session_id, COUNT(*) AS commit_count
    FROM session_commits
    GROUP BY session_id
) AS c ON c.session_id = s.session_id
WHERE s.start_time >= ? AND s.end_time <= ?
    AND NOT EXISTS (SELECT 1 FROM session_issues AS si WHERE si.session_id = s.session_id)
ORDER BY s.start_time, s.session_id
            """,
            [start.timestamp(), end.timestamp()],
        )
        return [_session_from_row(row) for row in rows]

    def fetch_summary_stats(self, start: datetime, end: datetime) -> SummaryStats:
        """Compute headline numbers; each figure is aggregated on its own so joins never multiply rows."""
        rows = self._query(
            """
WITH ranged AS (
    SELECT session_id, duration_minutes
    FROM sessions
    WHERE start_time >= ? AND end_time <= ?
)
SELECT
    (SELECT COUNT(*) FROM ranged) AS total_sessions,
    (SELECT COALESCE(SUM(duration_minutes), 0) FROM ranged) AS total_minutes,
    (
        SELECT COUNT(DISTINCT si.issue_key)
        FROM session_issues AS si
        INNER JOIN ranged AS r ON r.session_id = si.session_id
    ) AS unique_issues,
    (
        SELECT COUNT(DISTINCT sc.commit_hash)
        FROM session_commits AS sc
        INNER JOIN ranged AS r ON r.session_id = sc.session_id
    ) AS total_commits,
    (SELECT COALESCE(AVG(duration_minutes), 0) FROM ranged) AS avg_session_minutes
            """,
            [start.timestamp(), end.timestamp()],
        )
        row = rows[0]
        return SummaryStats(
            total_sessions=int(row[0]),
            total_minutes=float(row[1]),
            unique_issues=int(row[2]),
            total_commits=int(row[3]),
            avg_session_minutes=float(row[4]),
        )

    def fetch_commits(self, start: datetime, end: datetime) -> list[CommitSummary]:
        """Load commits linked to sessions in the period, newest first."""
        rows = self._query(
            """
SELECT gc.commit_hash, gc.timestamp, gc.message, gc.author, gc.repo_path
FROM git_commits AS gc
WHERE gc.commit_hash IN (
    SELECT sc.commit_hash
    FROM session_commits AS sc
    INNER JOIN sessions AS s ON s.session_id = sc.session_id
    WHERE s.start_time >= ? AND s.end_time <= ?
)
ORDER BY gc.timestamp DESC, gc.commit_hash
            """,
            [start.timestamp(), end.timestamp()],
        )
        return [
            CommitSummary(
                commit_hash=str(row[0]),
                timestamp=int(row[1]),
                message=str(row[2]),
                author=str(row[3]),
                repo_path=str(row[4]),
            )
            for row in rows
        ]

    def _query(self, sql: str, parameters: list[Any]) -> list[tuple[Any, ...]]:
        try:
            return self._connection.execute(sql, parameters).fetchall()
        except duckdb.Error as exc:
            raise ReportRepositoryError(f"Failed to query retrospective data. {MISSING_DATA_HINT}") from exc


def _session_from_row(row: tuple[Any, ...]) -> SessionSummary:
    return SessionSummary(
        session_id=str(row[0]),
        start_time=float(row[1]),
        end_time=float(row[2]),
        cwd=row[3],
        duration_minutes=float(row[4]),
        prompt_count=int(row[5]),
        commit_count=int(row[6]),
    )


def _split_sources(labels: list[str] | None) -> tuple[str, ...]:
    """Flatten stored source labels, some of which are comma-joined ties."""
    sources: set[str] = set()
    for label in labels or []:
        sources.update(part for part in label.split(",") if part)
    return tuple(sorted(sources))
