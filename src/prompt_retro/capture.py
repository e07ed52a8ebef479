"""Append captured prompts to the monthly intake log."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import orjson

from .config import RetroConfig
from .ingestion.correlator import VersionControlSource

LOGGER = logging.getLogger(__name__)
SUMMARY_PREVIEW_CHARS = 200
DEFAULT_SESSION_KEY = "default"


def intake_log_path(intake_dir: Path, now: datetime) -> Path:
    """Return the intake file for the capture period containing `now`."""
    return intake_dir / f"prompts-{now:%Y-%m}.jsonl"


def apply_privacy_mode(prompt: str, privacy_mode: str) -> str | None:
    """Reduce prompt text according to the configured privacy mode."""
    if privacy_mode == "minimal":
        return None
    if privacy_mode == "summary":
        return prompt[:SUMMARY_PREVIEW_CHARS]
    return prompt


def build_capture_record(
    hook_payload: dict[str, Any],
    config: RetroConfig,
    version_control: VersionControlSource | None,
    now: datetime,
) -> dict[str, Any]:
    """Build one intake record from a hook payload."""
    prompt = hook_payload.get("prompt") or hook_payload.get("user_prompt") or hook_payload.get("userPrompt") or ""
    if not isinstance(prompt, str):
        prompt = str(prompt)
    cwd = hook_payload.get("cwd") or None
    session_key = (
        hook_payload.get("session_id") or hook_payload.get("sessionKey") or DEFAULT_SESSION_KEY
    )
    timestamp = hook_payload.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        timestamp = now.timestamp()

    git_branch = hook_payload.get("git_branch") or hook_payload.get("gitBranch")
    git_remote = hook_payload.get("git_remote") or hook_payload.get("gitRemote")
    if cwd and version_control is not None:
        if not git_branch:
            git_branch = version_control.current_branch(cwd)
        if not git_remote:
            git_remote = version_control.remote_url(cwd)

    return {
        "timestamp": timestamp,
        "sessionKey": str(session_key),
        "userPrompt": apply_privacy_mode(prompt, config.privacy_mode),
        "promptLength": len(prompt),
        "cwd": cwd,
        "gitBranch": git_branch or None,
        "gitRemote": git_remote or None,
    }


def capture_prompt(
    hook_payload: dict[str, Any],
    config: RetroConfig,
    version_control: VersionControlSource | None = None,
    now: datetime | None = None,
) -> Path:
    """Append one privacy-filtered prompt record and return the intake file path."""
    current_time = now or datetime.now(tz=UTC)
    record = build_capture_record(hook_payload, config, version_control, current_time)

    log_path = intake_log_path(config.intake_dir, current_time)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("ab") as handle:
        handle.write(orjson.dumps(record))
        handle.write(b"\n")
    LOGGER.debug("Captured prompt for session %s into %s", record["sessionKey"], log_path)
    return log_path
