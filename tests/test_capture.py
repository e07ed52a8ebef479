"""Tests for prompt capture into the intake log."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import orjson
import pytest

from prompt_retro.capture import apply_privacy_mode, capture_prompt, intake_log_path
from prompt_retro.config import RetroConfig
from prompt_retro.ingestion.parser import parse_log_file
from prompt_retro.ingestion.schemas import CommitRecord


class FakeVersionControl:
    def __init__(self, branch: str | None, remote: str | None) -> None:
        self._branch = branch
        self._remote = remote

    def is_repository(self, path: str) -> bool:
        return True

    def commits_in_window(self, path: str, start_time: float, end_time: float) -> list[CommitRecord]:
        return []

    def current_branch(self, path: str) -> str | None:
        return self._branch

    def remote_url(self, path: str) -> str | None:
        return self._remote


@pytest.mark.parametrize(
    ("privacy_mode", "expected"),
    [
        ("minimal", None),
        ("summary", "x" * 200),
        ("full", "x" * 250),
    ],
)
def test_apply_privacy_mode(privacy_mode: str, expected: str | None) -> None:
    assert apply_privacy_mode("x" * 250, privacy_mode) == expected


def test_capture_prompt_appends_parseable_records(tmp_path: Path) -> None:
    """Captured records land in the monthly file and parse back as entries."""
    config = RetroConfig(data_dir=tmp_path, privacy_mode="summary")
    now = datetime(2026, 2, 14, 9, 30, tzinfo=UTC)
    version_control = FakeVersionControl(branch="feature/AB-1-login", remote="git@example.com:team/app.git")

    first = capture_prompt(
        {"session_id": "hook-1", "prompt": "fix AB-1 " + "y" * 300, "cwd": "/work/app"},
        config,
        version_control=version_control,
        now=now,
    )
    second = capture_prompt(
        {"session_id": "hook-1", "prompt": "again", "cwd": "/work/app", "timestamp": 1_771_061_500},
        config,
        version_control=version_control,
        now=now,
    )

    assert first == second == tmp_path / "logs" / "prompts-2026-02.jsonl"
    lines = first.read_bytes().splitlines()
    record = orjson.loads(lines[0])
    assert record["timestamp"] == now.timestamp()
    assert record["sessionKey"] == "hook-1"
    assert record["promptLength"] == 309
    assert len(record["userPrompt"]) == 200
    assert record["gitBranch"] == "feature/AB-1-login"
    assert record["gitRemote"] == "git@example.com:team/app.git"

    parsed = parse_log_file(first)
    assert parsed.errors == []
    assert [entry.timestamp for entry in parsed.entries] == [now.timestamp(), 1_771_061_500.0]


def test_capture_prompt_minimal_mode_without_cwd(tmp_path: Path) -> None:
    """Minimal privacy drops prompt text; without cwd no version-control lookup happens."""
    config = RetroConfig(data_dir=tmp_path, privacy_mode="minimal")
    now = datetime(2026, 3, 1, tzinfo=UTC)

    log_path = capture_prompt({"prompt": "secret plans"}, config, version_control=FakeVersionControl("main", None), now=now)

    record = orjson.loads(log_path.read_bytes())
    assert log_path == intake_log_path(config.intake_dir, now)
    assert record["userPrompt"] is None
    assert record["promptLength"] == len("secret plans")
    assert record["sessionKey"] == "default"
    assert record["cwd"] is None
    assert record["gitBranch"] is None
