"""DuckDB repository for session, commit, and issue-link persistence."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Protocol

import duckdb

from issue_tracker import TrackedIssue

from ..database import parse_db_timestamp
from .errors import PersistenceError
from .schemas import (
    CommitRecord,
    IssueCandidate,
    LogFileIdentity,
    ProcessingRecord,
    Session,
)

LOGGER = logging.getLogger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
CREATE TABLE IF NOT EXISTS sessions (
    session_id VARCHAR PRIMARY KEY,
    session_key VARCHAR NOT NULL,
    start_time DOUBLE NOT NULL,
    end_time DOUBLE NOT NULL,
    cwd VARCHAR,
    duration_minutes DOUBLE NOT NULL,
    prompt_count INTEGER NOT NULL DEFAULT 0,
    ingested_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
    """,
    "CREATE SEQUENCE IF NOT EXISTS prompt_id_seq START 1",
    """
CREATE TABLE IF NOT EXISTS prompts (
    prompt_id BIGINT PRIMARY KEY DEFAULT nextval('prompt_id_seq'),
    session_id VARCHAR NOT NULL REFERENCES sessions (session_id),
    timestamp DOUBLE NOT NULL,
    prompt_preview VARCHAR,
    prompt_length INTEGER NOT NULL,
    cwd VARCHAR,
    git_branch VARCHAR,
    git_remote VARCHAR
)
    """,
    """
CREATE TABLE IF NOT EXISTS git_commits (
    commit_hash VARCHAR PRIMARY KEY,
    timestamp BIGINT NOT NULL,
    message VARCHAR NOT NULL,
    author VARCHAR NOT NULL,
    repo_path VARCHAR NOT NULL,
    ingested_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
    """,
    """
CREATE TABLE IF NOT EXISTS session_commits (
    session_id VARCHAR NOT NULL REFERENCES sessions (session_id),
    commit_hash VARCHAR NOT NULL REFERENCES git_commits (commit_hash),
    PRIMARY KEY (session_id, commit_hash)
)
    """,
    """
CREATE TABLE IF NOT EXISTS issue_cache (
    issue_key VARCHAR PRIMARY KEY,
    summary VARCHAR NOT NULL,
    status VARCHAR,
    story_points DOUBLE,
    sprint VARCHAR,
    assignee VARCHAR,
    updated_at TIMESTAMPTZ,
    synced_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
    """,
    """
CREATE TABLE IF NOT EXISTS session_issues (
    session_id VARCHAR NOT NULL REFERENCES sessions (session_id),
    issue_key VARCHAR NOT NULL,
    source VARCHAR NOT NULL,
    confidence DOUBLE NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
    PRIMARY KEY (session_id, issue_key, source)
)
    """,
    """
CREATE TABLE IF NOT EXISTS processing_log (
    log_file VARCHAR NOT NULL,
    file_size_bytes BIGINT NOT NULL,
    file_mtime TIMESTAMPTZ NOT NULL,
    entries_count INTEGER NOT NULL,
    sessions_created INTEGER NOT NULL,
    errors_count INTEGER NOT NULL DEFAULT 0,
    processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (log_file, file_size_bytes, file_mtime)
)
    """,
    "CREATE INDEX IF NOT EXISTS idx_prompts_session ON prompts (session_id)",
    "CREATE INDEX IF NOT EXISTS idx_commits_timestamp ON git_commits (timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_session_issues_issue ON session_issues (issue_key)",
)


class ProcessingLedger(Protocol):
    """Durable record of intake files that were already ingested."""

    def has(self, identity: LogFileIdentity) -> bool: ...

    def record(self, record: ProcessingRecord) -> None: ...


class IngestionRepository:
    """DuckDB-backed repository for ingested sessions and their links."""

    def __init__(self, database_path: Path) -> None:
        self._database_path = database_path
        self._connection = duckdb.connect(str(database_path))
        self._ledger = DuckDBProcessingLedger(self._connection)

    @property
    def ledger(self) -> ProcessingLedger:
        """Return the processing ledger sharing this repository's connection."""
        return self._ledger

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._connection.close()

    def ensure_schema(self) -> None:
        """Create ingestion tables, sequences, and indexes when missing."""
        for statement in SCHEMA_STATEMENTS:
            _ = self._connection.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Open a DB transaction scope."""
        _ = self._connection.execute("BEGIN TRANSACTION")
        try:
            yield
        except Exception:
            _ = self._connection.execute("ROLLBACK")
            raise
        else:
            _ = self._connection.execute("COMMIT")

    def upsert_session(self, session: Session) -> None:
        """Insert a session or replace the stored row with the same session_id."""
        _ = self._connection.execute(
            """
INSERT INTO sessions (
    session_id,
    session_key,
    start_time,
    end_time,
    cwd,
    duration_minutes,
    prompt_count
)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (session_id)
DO UPDATE SET
    session_key = EXCLUDED.session_key,
    start_time = EXCLUDED.start_time,
    end_time = EXCLUDED.end_time,
    cwd = EXCLUDED.cwd,
    duration_minutes = EXCLUDED.duration_minutes,
    prompt_count = EXCLUDED.prompt_count,
    ingested_at = NOW()
            """,
            [
                session.session_id,
                session.session_key,
                session.start_time,
                session.end_time,
                session.cwd,
                session.duration_minutes,
                session.prompt_count,
            ],
        )

    def insert_prompts(self, session: Session) -> int:
        """Append the session's prompts and return the number of rows written."""
        if not session.entries:
            return 0

        _ = self._connection.executemany(
            """
INSERT INTO prompts (
    session_id,
    timestamp,
    prompt_preview,
    prompt_length,
    cwd,
    git_branch,
    git_remote
)
VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                [
                    session.session_id,
                    entry.timestamp,
                    entry.prompt_preview,
                    entry.prompt_length,
                    entry.cwd,
                    entry.git_branch,
                    entry.git_remote,
                ]
                for entry in session.entries
            ],
        )
        return len(session.entries)

    def insert_commits(self, commits: Iterable[CommitRecord]) -> None:
        """Insert commits; rows already recorded are left unchanged."""
        rows = [
            [commit.commit_hash, commit.timestamp, commit.message, commit.author, commit.repo_path]
            for commit in commits
        ]
        if not rows:
            return

        _ = self._connection.executemany(
            """
INSERT INTO git_commits (
    commit_hash,
    timestamp,
    message,
    author,
    repo_path
)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT (commit_hash) DO NOTHING
            """,
            rows,
        )

    def link_session_commits(self, session_id: str, commits: Iterable[CommitRecord]) -> None:
        """Link a session to commits made during its window."""
        rows = [[session_id, commit.commit_hash] for commit in commits]
        if not rows:
            return

        _ = self._connection.executemany(
            """
INSERT INTO session_commits (session_id, commit_hash)
VALUES (?, ?)
ON CONFLICT (session_id, commit_hash) DO NOTHING
            """,
            rows,
        )

    def upsert_issue_links(self, session_id: str, issues: Iterable[IssueCandidate]) -> None:
        """Insert issue links or replace confidence for an existing (session, key, source)."""
        rows = [[session_id, issue.issue_key, issue.source, issue.confidence] for issue in issues]
        if not rows:
            return

        _ = self._connection.executemany(
            """
INSERT INTO session_issues (session_id, issue_key, source, confidence)
VALUES (?, ?, ?, ?)
ON CONFLICT (session_id, issue_key, source)
DO UPDATE SET confidence = EXCLUDED.confidence
            """,
            rows,
        )

    def get_commit(self, commit_hash: str) -> CommitRecord | None:
        """Fetch one stored commit by hash."""
        row = self._connection.execute(
            """
SELECT commit_hash, timestamp, author, message, repo_path
FROM git_commits
WHERE commit_hash = ?
            """,
            [commit_hash],
        ).fetchone()
        if row is None:
            return None
        return CommitRecord(
            commit_hash=str(row[0]),
            timestamp=int(row[1]),
            author=str(row[2]),
            message=str(row[3]),
            repo_path=str(row[4]),
        )

    def upsert_tracked_issues(self, issues: Iterable[TrackedIssue]) -> int:
        """Refresh issue cache rows from tracker data and return the number written."""
        rows = [
            [
                issue.issue_key,
                issue.summary,
                issue.status,
                issue.story_points,
                issue.sprint,
                issue.assignee,
                issue.updated_at,
            ]
            for issue in issues
        ]
        if not rows:
            return 0

        _ = self._connection.executemany(
            """
INSERT INTO issue_cache (
    issue_key,
    summary,
    status,
    story_points,
    sprint,
    assignee,
    updated_at
)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (issue_key)
DO UPDATE SET
    summary = EXCLUDED.summary,
    status = EXCLUDED.status,
    story_points = EXCLUDED.story_points,
    sprint = EXCLUDED.sprint,
    assignee = EXCLUDED.assignee,
    updated_at = EXCLUDED.updated_at,
    synced_at = NOW()
            """,
            rows,
        )
        return len(rows)

    def issue_cache_age_days(self, now: datetime) -> float | None:
        """Return days since the last issue cache sync, or None when the cache is empty."""
        row = self._connection.execute("SELECT CAST(MAX(synced_at) AS VARCHAR) FROM issue_cache").fetchone()
        last_synced = parse_db_timestamp(row[0] if row is not None else None)
        if last_synced is None:
            return None
        return (now - last_synced).total_seconds() / 86400


class DuckDBProcessingLedger:
    """ProcessingLedger stored in the `processing_log` table."""

    def __init__(self, connection: duckdb.DuckDBPyConnection) -> None:
        self._connection = connection

    def has(self, identity: LogFileIdentity) -> bool:
        """Return True when this exact file identity was already processed."""
        rows = self._connection.execute(
            """
SELECT CAST(file_mtime AS VARCHAR)
FROM processing_log
WHERE log_file = ?
  AND file_size_bytes = ?
            """,
            [identity.log_file, identity.file_size_bytes],
        ).fetchall()
        return any(parse_db_timestamp(row[0]) == identity.file_mtime for row in rows)

    def record(self, record: ProcessingRecord) -> None:
        """Mark a file identity as processed."""
        _ = self._connection.execute(
            """
INSERT INTO processing_log (
    log_file,
    file_size_bytes,
    file_mtime,
    entries_count,
    sessions_created,
    errors_count
)
VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                record.identity.log_file,
                record.identity.file_size_bytes,
                record.identity.file_mtime,
                record.entries_count,
                record.sessions_created,
                record.errors_count,
            ],
        )

    def list_records(self) -> list[ProcessingRecord]:
        """Return every ledger row ordered by processing time."""
        rows = self._connection.execute(
            """
SELECT
    log_file,
    file_size_bytes,
    CAST(file_mtime AS VARCHAR),
    entries_count,
    sessions_created,
    errors_count,
    CAST(processed_at AS VARCHAR)
FROM processing_log
ORDER BY processed_at, log_file
            """
        ).fetchall()
        records: list[ProcessingRecord] = []
        for row in rows:
            file_mtime = parse_db_timestamp(row[2])
            if file_mtime is None:
                raise PersistenceError(f"Processing log row for {row[0]} has no file_mtime.")
            records.append(
                ProcessingRecord(
                    identity=LogFileIdentity(
                        log_file=str(row[0]),
                        file_size_bytes=int(row[1]),
                        file_mtime=file_mtime,
                    ),
                    entries_count=int(row[3]),
                    sessions_created=int(row[4]),
                    errors_count=int(row[5]),
                    processed_at=parse_db_timestamp(row[6]),
                )
            )
        return records
