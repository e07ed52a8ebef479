"""Typed schemas used by the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


@dataclass(frozen=True)
class LogEntry:
    """One validated prompt event from an intake log."""

    timestamp: float
    session_key: str
    prompt_preview: str | None = None
    prompt_length: int = 0
    cwd: str | None = None
    git_branch: str | None = None
    git_remote: str | None = None
    line_number: int = 0


@dataclass(frozen=True)
class LineError:
    """A rejected intake line and the reason it was rejected."""

    line_number: int
    reason: str


@dataclass(frozen=True)
class ParsedLogFile:
    """Parser output for one intake log."""

    entries: list[LogEntry]
    errors: list[LineError]


@dataclass(frozen=True)
class Session:
    """A contiguous span of prompt activity bounded by inactivity gaps."""

    session_id: str
    session_key: str
    start_time: float
    end_time: float
    cwd: str | None
    entries: tuple[LogEntry, ...]

    @property
    def duration_minutes(self) -> float:
        """Return elapsed minutes between the first and last entry."""
        return (self.end_time - self.start_time) / 60

    @property
    def prompt_count(self) -> int:
        """Return the number of prompts in the session."""
        return len(self.entries)

    @property
    def working_directories(self) -> list[str]:
        """Return distinct non-empty cwd values in first-seen order."""
        seen: dict[str, None] = {}
        for entry in self.entries:
            if entry.cwd:
                seen.setdefault(entry.cwd, None)
        return list(seen)


@dataclass(frozen=True)
class CommitRecord:
    """One commit read from version-control history."""

    commit_hash: str
    timestamp: int
    author: str
    message: str
    repo_path: str


@dataclass(frozen=True)
class IssueCandidate:
    """An issue key found in one or more session sources."""

    issue_key: str
    source: str
    confidence: float

    @property
    def sources(self) -> tuple[str, ...]:
        """Return the individual source labels merged into this candidate."""
        return tuple(self.source.split(","))


@dataclass(frozen=True)
class LogFileIdentity:
    """Filesystem identity of an intake log used by the processing ledger."""

    log_file: str
    file_size_bytes: int
    file_mtime: datetime


@dataclass(frozen=True)
class ProcessingRecord:
    """One processing ledger row."""

    identity: LogFileIdentity
    entries_count: int
    sessions_created: int
    errors_count: int
    processed_at: datetime | None = None


@dataclass(frozen=True)
class CorrelatedSession:
    """A session with its correlated commits and extracted issue keys."""

    session: Session
    commits: list[CommitRecord]
    issues: list[IssueCandidate]


@dataclass
class IngestionCounters:
    """Ingestion counters emitted by service.ingest()."""

    files_scanned: int = 0
    files_ingested: int = 0
    files_skipped_processed: int = 0
    entries_parsed: int = 0
    sessions_created: int = 0
    prompts_inserted: int = 0
    commits_linked: int = 0
    issues_linked: int = 0
    line_errors: int = 0
    files_archived: int = 0
    files_rotated: int = 0
    failed_files: list[str] = field(default_factory=list)

    @property
    def errors(self) -> int:
        """Return line-level errors plus failed files."""
        return self.line_errors + len(self.failed_files)


@dataclass(frozen=True)
class RotationResult:
    """Outcome of one retention sweep over processed logs."""

    rotated: list[Path]
    failed: list[Path]
