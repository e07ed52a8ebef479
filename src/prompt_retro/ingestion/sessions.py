"""Gap-based reconstruction of work sessions from prompt entries."""

from __future__ import annotations

import hashlib
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime

from .schemas import LogEntry, Session

DEFAULT_GAP_MINUTES = 30


def partition_by_session_key(entries: Iterable[LogEntry]) -> dict[str, list[LogEntry]]:
    """Group entries by their capture-time session key, keeping first-seen key order."""
    groups: dict[str, list[LogEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.session_key, []).append(entry)
    return groups


def group_sessions(entries: Sequence[LogEntry], gap_minutes: float = DEFAULT_GAP_MINUTES) -> list[Session]:
    """Segment entries into sessions wherever the idle gap exceeds `gap_minutes`.

    Entries are expected to share one session key; use `build_sessions` for
    mixed input.
    """
    if not entries:
        return []

    gap_seconds = gap_minutes * 60
    ordered = sorted(entries, key=lambda entry: entry.timestamp)

    sessions: list[Session] = []
    current: list[LogEntry] = []
    for entry in ordered:
        if current and entry.timestamp - current[-1].timestamp > gap_seconds:
            sessions.append(_close_session(current))
            current = []
        current.append(entry)

    sessions.append(_close_session(current))
    return sessions


def build_sessions(entries: Iterable[LogEntry], gap_minutes: float = DEFAULT_GAP_MINUTES) -> list[Session]:
    """Partition entries by session key, then segment each group by inactivity gap."""
    sessions: list[Session] = []
    for group in partition_by_session_key(entries).values():
        sessions.extend(group_sessions(group, gap_minutes))
    return sessions


def derive_session_id(first_entry: LogEntry) -> str:
    """Derive a stable session id from the first entry's timestamp, cwd, and key."""
    seed = f"{_format_timestamp(first_entry.timestamp)}-{first_entry.cwd or ''}-{first_entry.session_key}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


def total_hours(sessions: Iterable[Session]) -> float:
    """Return the summed session duration in hours."""
    return sum(session.duration_minutes for session in sessions) / 60


def sessions_by_date(sessions: Iterable[Session]) -> dict[date, list[Session]]:
    """Group sessions by the UTC date they started on."""
    by_date: dict[date, list[Session]] = defaultdict(list)
    for session in sessions:
        by_date[datetime.fromtimestamp(session.start_time, tz=UTC).date()].append(session)
    return dict(by_date)


def detect_long_sessions(sessions: Iterable[Session], threshold_hours: float = 4) -> list[Session]:
    """Return sessions longer than the threshold, which usually means missed breaks."""
    return [session for session in sessions if session.duration_minutes > threshold_hours * 60]


def _close_session(entries: list[LogEntry]) -> Session:
    first_entry = entries[0]
    cwd: str | None = None
    for entry in entries:
        if entry.cwd:
            cwd = entry.cwd
    return Session(
        session_id=derive_session_id(first_entry),
        session_key=first_entry.session_key,
        start_time=first_entry.timestamp,
        end_time=entries[-1].timestamp,
        cwd=cwd,
        entries=tuple(entries),
    )


def _format_timestamp(timestamp: float) -> str:
    """Render integral timestamps without a fractional part."""
    if float(timestamp).is_integer():
        return str(int(timestamp))
    return repr(float(timestamp))
