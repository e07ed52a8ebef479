"""Tests for intake log parsing."""

from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from prompt_retro.ingestion.errors import LogFileReadError, RecordValidationError
from prompt_retro.ingestion.parser import parse_log_file, parse_log_lines, parse_log_record


def test_parse_log_file_keeps_valid_lines_and_reports_bad_ones(tmp_path: Path) -> None:
    """Three valid lines plus one without timestamp yield three entries and one error."""
    log_file = tmp_path / "prompts-2026-02.jsonl"
    _write_jsonl(
        log_file,
        [
            {"timestamp": 1_700_000_000, "sessionKey": "s1", "userPrompt": "fix the login bug", "cwd": "/work/app"},
            {"timestamp": 1_700_000_060, "sessionKey": "s1", "promptLength": 42},
            {"sessionKey": "s1", "userPrompt": "no timestamp here"},
            {"timestamp": 1_700_000_120.5, "sessionKey": "s1", "gitBranch": "feature/PROJ-1"},
        ],
    )

    parsed = parse_log_file(log_file)

    assert [entry.timestamp for entry in parsed.entries] == [1_700_000_000.0, 1_700_000_060.0, 1_700_000_120.5]
    assert [entry.line_number for entry in parsed.entries] == [1, 2, 4]
    assert len(parsed.errors) == 1
    assert parsed.errors[0].line_number == 3
    assert "timestamp" in parsed.errors[0].reason


def test_parse_log_lines_skips_blank_lines_and_flags_truncated_tail() -> None:
    """Blank lines are ignored; a truncated final line is a line error."""
    parsed = parse_log_lines(
        [
            b'{"timestamp": 10, "sessionKey": "a"}\n',
            b"\n",
            b"   \n",
            b'{"timestamp": 20, "sessionKey": "a", "userPr',
        ]
    )

    assert len(parsed.entries) == 1
    assert [error.line_number for error in parsed.errors] == [4]
    assert parsed.errors[0].reason.startswith("Malformed JSON")


def test_parse_log_record_maps_aliases_and_empty_strings() -> None:
    """Snake-case aliases are accepted and empty optional strings become None."""
    entry = parse_log_record(
        orjson.dumps(
            {
                "timestamp": 0,
                "session_id": "hook-session",
                "user_prompt": "",
                "prompt_length": 3,
                "cwd": "",
                "git_branch": "main",
                "git_remote": "git@example.com:team/app.git",
            }
        ),
        line_number=7,
    )

    assert entry.timestamp == 0.0
    assert entry.session_key == "hook-session"
    assert entry.prompt_preview is None
    assert entry.prompt_length == 3
    assert entry.cwd is None
    assert entry.git_branch == "main"
    assert entry.git_remote == "git@example.com:team/app.git"
    assert entry.line_number == 7


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"timestamp": "1700000000", "sessionKey": "a"}, "timestamp"),
        ({"timestamp": True, "sessionKey": "a"}, "timestamp"),
        ({"timestamp": 1_700_000_000_000, "sessionKey": "a"}, "out of range"),
        ({"timestamp": 1}, "sessionKey"),
        ({"timestamp": 1, "sessionKey": ""}, "sessionKey"),
        ({"timestamp": 1, "sessionKey": 5}, "sessionKey"),
        ({"timestamp": 1, "sessionKey": "a", "promptLength": -1}, "promptLength"),
        ({"timestamp": 1, "sessionKey": "a", "cwd": 12}, "cwd"),
        ([1, 2, 3], "JSON object"),
    ],
)
def test_parse_log_record_rejects_invalid_records(payload: object, message: str) -> None:
    """Invalid records raise a validation error naming the offending field."""
    with pytest.raises(RecordValidationError, match=message):
        _ = parse_log_record(orjson.dumps(payload))


def test_parse_log_file_raises_for_missing_file(tmp_path: Path) -> None:
    """An unreadable file is a file-level failure, not a line error."""
    with pytest.raises(LogFileReadError):
        _ = parse_log_file(tmp_path / "missing.jsonl")


def _write_jsonl(path: Path, rows: list[dict[str, object]]) -> None:
    with path.open("wb") as handle:
        for row in rows:
            handle.write(orjson.dumps(row))
            handle.write(b"\n")
