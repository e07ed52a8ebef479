"""Service orchestration for prompt log ingestion."""

from __future__ import annotations

import gzip
import logging
import shutil
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable

import duckdb

from ..config import RetroConfig
from .correlator import GitCommandSource, VersionControlSource, commits_in_window
from .errors import IngestionError, PersistenceError
from .issues import compile_custom_patterns, extract_from_session
from .parser import parse_log_file
from .repository import IngestionRepository
from .schemas import (
    CorrelatedSession,
    IngestionCounters,
    LogFileIdentity,
    ParsedLogFile,
    ProcessingRecord,
    RotationResult,
)
from .sessions import build_sessions, detect_long_sessions, sessions_by_date, total_hours

LOGGER = logging.getLogger(__name__)
RETENTION_DAYS = 30


class IngestionService:
    """Coordinates discovery, parsing, session grouping, correlation, and persistence."""

    def __init__(
        self,
        repository: IngestionRepository,
        config: RetroConfig,
        version_control: VersionControlSource | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._config = config
        self._version_control = version_control or GitCommandSource()
        self._now = now or (lambda: datetime.now(tz=UTC))
        self._custom_patterns = compile_custom_patterns(config.issue_key_patterns)

    def ingest(self) -> IngestionCounters:
        """Run one batch pass over unprocessed intake logs and return operation counters."""
        self._repository.ensure_schema()
        counters = IngestionCounters()

        for log_file_path in discover_log_files(self._config.intake_dir):
            counters.files_scanned += 1
            try:
                self._ingest_file(log_file_path, counters)
            except (IngestionError, duckdb.Error, OSError) as exc:
                counters.failed_files.append(str(log_file_path))
                LOGGER.error("Failed to ingest %s: %s", log_file_path, exc)

        rotation = rotate_processed_logs(
            self._config.processed_dir,
            self._config.archive_dir,
            now=self._now(),
        )
        counters.files_rotated += len(rotation.rotated)
        return counters

    def _ingest_file(self, log_file_path: Path, counters: IngestionCounters) -> None:
        identity = build_file_identity(log_file_path)
        if self._repository.ledger.has(identity):
            counters.files_skipped_processed += 1
            LOGGER.info("Skipping already processed log %s", log_file_path)
            return

        parsed = parse_log_file(log_file_path)
        if parsed.errors:
            LOGGER.warning("%d rejected lines in %s", len(parsed.errors), log_file_path)
            for line_error in parsed.errors:
                LOGGER.debug("%s:%d: %s", log_file_path, line_error.line_number, line_error.reason)

        correlated = self.correlate(parsed)

        prompts_inserted = 0
        try:
            with self._repository.transaction():
                for item in correlated:
                    self._repository.upsert_session(item.session)
                    prompts_inserted += self._repository.insert_prompts(item.session)
                    self._repository.insert_commits(item.commits)
                    self._repository.link_session_commits(item.session.session_id, item.commits)
                    self._repository.upsert_issue_links(item.session.session_id, item.issues)
                self._repository.ledger.record(
                    ProcessingRecord(
                        identity=identity,
                        entries_count=len(parsed.entries),
                        sessions_created=len(correlated),
                        errors_count=len(parsed.errors),
                    )
                )
        except duckdb.Error as exc:
            raise PersistenceError(f"Failed to persist {log_file_path}: {exc}") from exc

        counters.files_ingested += 1
        counters.entries_parsed += len(parsed.entries)
        counters.line_errors += len(parsed.errors)
        counters.sessions_created += len(correlated)
        counters.prompts_inserted += prompts_inserted
        counters.commits_linked += sum(len(item.commits) for item in correlated)
        counters.issues_linked += sum(len(item.issues) for item in correlated)
        sessions = [item.session for item in correlated]
        LOGGER.info(
            "Ingested %s: %d entries, %d sessions over %d day(s) (%.1fh), %d rejected lines",
            log_file_path,
            len(parsed.entries),
            len(sessions),
            len(sessions_by_date(sessions)),
            total_hours(sessions),
            len(parsed.errors),
        )
        long_sessions = detect_long_sessions(sessions)
        if long_sessions:
            LOGGER.info("%d session(s) in %s ran longer than 4 hours", len(long_sessions), log_file_path)

        try:
            archive_log_file(log_file_path, self._config.processed_dir, now=self._now())
        except OSError as exc:
            LOGGER.error("Ingested %s but failed to archive it: %s", log_file_path, exc)
            return
        counters.files_archived += 1

    def correlate(self, parsed: ParsedLogFile) -> list[CorrelatedSession]:
        """Group parsed entries into sessions and attach commits and issue keys."""
        correlated: list[CorrelatedSession] = []
        for session in build_sessions(parsed.entries, self._config.session_gap_minutes):
            commits = commits_in_window(
                self._version_control,
                session.working_directories,
                session.start_time,
                session.end_time,
            )
            issues = extract_from_session(session, commits, self._custom_patterns)
            correlated.append(CorrelatedSession(session=session, commits=commits, issues=issues))
        return correlated


def discover_log_files(intake_dir: Path) -> list[Path]:
    """Discover intake JSONL files in sorted path order, ignoring hidden files."""
    if not intake_dir.exists():
        return []
    return sorted(
        path for path in intake_dir.glob("*.jsonl") if path.is_file() and not path.name.startswith(".")
    )


def build_file_identity(log_file_path: Path) -> LogFileIdentity:
    """Build the ledger identity of a log file from filesystem metadata."""
    stat_result = log_file_path.stat()
    return LogFileIdentity(
        log_file=str(log_file_path.resolve()),
        file_size_bytes=stat_result.st_size,
        file_mtime=datetime.fromtimestamp(stat_result.st_mtime, tz=UTC),
    )


def archive_log_file(log_file_path: Path, processed_dir: Path, now: datetime) -> Path:
    """Move an ingested log out of the intake directory so it is never rediscovered."""
    processed_dir.mkdir(parents=True, exist_ok=True)
    archived_path = processed_dir / f"{int(now.timestamp())}-{log_file_path.name}"
    _ = shutil.move(str(log_file_path), str(archived_path))
    # the retention window counts from archive time
    archived_path.touch()
    LOGGER.info("Archived %s to %s", log_file_path, archived_path)
    return archived_path


def rotate_processed_logs(
    processed_dir: Path,
    archive_dir: Path,
    now: datetime,
    retention_days: int = RETENTION_DAYS,
) -> RotationResult:
    """Compress processed logs older than the retention window into cold storage."""
    rotated: list[Path] = []
    failed: list[Path] = []
    if not processed_dir.exists():
        return RotationResult(rotated=rotated, failed=failed)

    cutoff = (now - timedelta(days=retention_days)).timestamp()
    for processed_path in sorted(processed_dir.iterdir()):
        if not processed_path.is_file() or processed_path.stat().st_mtime >= cutoff:
            continue
        compressed_path = archive_dir / f"{processed_path.name}.gz"
        try:
            archive_dir.mkdir(parents=True, exist_ok=True)
            with processed_path.open("rb") as source, gzip.open(compressed_path, "wb") as target:
                shutil.copyfileobj(source, target)
            processed_path.unlink()
        except OSError as exc:
            failed.append(processed_path)
            LOGGER.warning("Failed to archive %s: %s", processed_path, exc)
            continue
        rotated.append(compressed_path)

    if rotated:
        LOGGER.info("Compressed %d processed log(s) into %s", len(rotated), archive_dir)
    return RotationResult(rotated=rotated, failed=failed)


def run_continuously(
    run_once: Callable[[], IngestionCounters],
    interval_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
    max_runs: int | None = None,
) -> int:
    """Re-run the batch pass on a fixed polling interval; return the number of passes."""
    runs = 0
    while max_runs is None or runs < max_runs:
        if runs > 0:
            sleep(interval_seconds)
        try:
            counters = run_once()
        except (IngestionError, duckdb.Error) as exc:
            LOGGER.error("Processing pass failed: %s", exc)
        else:
            LOGGER.info(
                "Processing pass finished: %d files ingested, %d errors",
                counters.files_ingested,
                counters.errors,
            )
        runs += 1
    return runs
