"""Parsing helpers for prompt intake logs."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import orjson

from .errors import LogFileReadError, RecordValidationError
from .schemas import LineError, LogEntry, ParsedLogFile

LOGGER = logging.getLogger(__name__)

SESSION_KEY_FIELDS: tuple[str, ...] = ("sessionKey", "session_key", "session_id")
PROMPT_FIELDS: tuple[str, ...] = ("userPrompt", "user_prompt", "promptPreview", "prompt_preview")
PROMPT_LENGTH_FIELDS: tuple[str, ...] = ("promptLength", "prompt_length")
BRANCH_FIELDS: tuple[str, ...] = ("gitBranch", "git_branch")
REMOTE_FIELDS: tuple[str, ...] = ("gitRemote", "git_remote")


def parse_log_file(log_file_path: Path) -> ParsedLogFile:
    """Parse one intake JSONL file, collecting per-line errors."""
    try:
        with log_file_path.open("rb") as handle:
            raw_lines = handle.readlines()
    except OSError as exc:
        raise LogFileReadError(f"Failed to read log file {log_file_path}: {exc}") from exc

    return parse_log_lines(raw_lines, source=str(log_file_path))


def parse_log_lines(raw_lines: Iterable[bytes | str], source: str = "<lines>") -> ParsedLogFile:
    """Parse raw JSONL lines; blank lines are skipped without being counted."""
    entries: list[LogEntry] = []
    errors: list[LineError] = []

    for line_number, raw_line in enumerate(raw_lines, start=1):
        if not raw_line.strip():
            continue
        try:
            entries.append(parse_log_record(raw_line, line_number))
        except RecordValidationError as exc:
            errors.append(LineError(line_number=line_number, reason=str(exc)))

    LOGGER.debug("Parsed %s: %d entries, %d rejected lines", source, len(entries), len(errors))
    return ParsedLogFile(entries=entries, errors=errors)


def parse_log_record(raw_line: bytes | str, line_number: int = 0) -> LogEntry:
    """Validate one JSONL line into a LogEntry."""
    try:
        payload = orjson.loads(raw_line)
    except orjson.JSONDecodeError as exc:
        raise RecordValidationError(f"Malformed JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise RecordValidationError(f"Expected JSON object, got {type(payload).__name__}.")

    timestamp = payload.get("timestamp")
    if timestamp is None:
        raise RecordValidationError("Missing required field: timestamp.")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise RecordValidationError(f"Invalid timestamp: expected number, got {type(timestamp).__name__}.")
    try:
        datetime.fromtimestamp(timestamp, tz=UTC)
    except (ValueError, OverflowError, OSError) as exc:
        raise RecordValidationError(f"Invalid timestamp: {timestamp!r} is out of range.") from exc

    session_key = _first_present(payload, SESSION_KEY_FIELDS)
    if session_key is None or session_key == "":
        raise RecordValidationError("Missing required field: sessionKey.")
    if not isinstance(session_key, str):
        raise RecordValidationError(f"Invalid sessionKey: expected str, got {type(session_key).__name__}.")

    return LogEntry(
        timestamp=float(timestamp),
        session_key=session_key,
        prompt_preview=_optional_str(payload, PROMPT_FIELDS),
        prompt_length=_prompt_length(payload),
        cwd=_optional_str(payload, ("cwd",)),
        git_branch=_optional_str(payload, BRANCH_FIELDS),
        git_remote=_optional_str(payload, REMOTE_FIELDS),
        line_number=line_number,
    )


def _first_present(payload: dict[str, Any], field_names: tuple[str, ...]) -> Any:
    """Return the value of the first alias present in the payload."""
    for field_name in field_names:
        if field_name in payload:
            return payload[field_name]
    return None


def _optional_str(payload: dict[str, Any], field_names: tuple[str, ...]) -> str | None:
    value = _first_present(payload, field_names)
    if value is None:
        return None
    if not isinstance(value, str):
        raise RecordValidationError(
            f"Invalid {field_names[0]}: expected str or null, got {type(value).__name__}."
        )
    return value or None


def _prompt_length(payload: dict[str, Any]) -> int:
    value = _first_present(payload, PROMPT_LENGTH_FIELDS)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise RecordValidationError(f"Invalid promptLength: expected non-negative int, got {value!r}.")
    return value
