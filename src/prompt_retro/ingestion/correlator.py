"""Correlate sessions with commits from version-control history."""

from __future__ import annotations

import logging
import math
import subprocess
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from .errors import VersionControlError
from .schemas import CommitRecord

LOGGER = logging.getLogger(__name__)

FIELD_SEPARATOR = "\x1f"
GIT_LOG_FORMAT = FIELD_SEPARATOR.join(("%H", "%ct", "%an", "%s"))
DEFAULT_GIT_TIMEOUT_SECONDS = 30


class VersionControlSource(Protocol):
    """Read-only capability interface over a version-control backend."""

    def is_repository(self, path: str) -> bool: ...

    def commits_in_window(self, path: str, start_time: float, end_time: float) -> list[CommitRecord]: ...

    def current_branch(self, path: str) -> str | None: ...

    def remote_url(self, path: str) -> str | None: ...


class GitCommandSource:
    """VersionControlSource backed by the `git` executable."""

    def __init__(self, git_executable: str = "git", timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS) -> None:
        self._git_executable = git_executable
        self._timeout_seconds = timeout_seconds

    def is_repository(self, path: str) -> bool:
        """Return True when `path` lies inside a git work tree."""
        if not Path(path).is_dir():
            return False
        try:
            output = self._run_git(path, ["rev-parse", "--is-inside-work-tree"])
        except VersionControlError:
            return False
        return output.strip() == "true"

    def commits_in_window(self, path: str, start_time: float, end_time: float) -> list[CommitRecord]:
        """Return commits on any ref whose commit time lies in `[start_time, end_time]`."""
        try:
            since = _to_iso(math.floor(start_time))
            until = _to_iso(math.ceil(end_time))
        except (ValueError, OverflowError, OSError) as exc:
            raise VersionControlError(
                f"Commit window {start_time!r}..{end_time!r} is out of range for {path}: {exc}"
            ) from exc
        output = self._run_git(
            path,
            ["log", "--all", f"--format={GIT_LOG_FORMAT}", f"--since={since}", f"--until={until}"],
        )
        commits: list[CommitRecord] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            commit = _parse_log_line(line, path)
            if start_time <= commit.timestamp <= end_time:
                commits.append(commit)
        return commits

    def current_branch(self, path: str) -> str | None:
        """Return the checked-out branch name, or None when unavailable."""
        if not self.is_repository(path):
            return None
        try:
            branch = self._run_git(path, ["rev-parse", "--abbrev-ref", "HEAD"]).strip()
        except VersionControlError:
            return None
        return branch or None

    def remote_url(self, path: str) -> str | None:
        """Return the `origin` remote URL, or None when unavailable."""
        if not self.is_repository(path):
            return None
        try:
            url = self._run_git(path, ["remote", "get-url", "origin"]).strip()
        except VersionControlError:
            return None
        return url or None

    def _run_git(self, path: str, arguments: list[str]) -> str:
        try:
            completed = subprocess.run(
                [self._git_executable, *arguments],
                cwd=path,
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=True,
            )
        except subprocess.CalledProcessError as exc:
            raise VersionControlError(
                f"git {' '.join(arguments[:1])} failed in {path}: {exc.stderr.strip() or exc.returncode}"
            ) from exc
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise VersionControlError(f"git {' '.join(arguments[:1])} failed in {path}: {exc}") from exc
        return completed.stdout


def commits_in_window(
    source: VersionControlSource,
    repo_paths: Iterable[str | None],
    start_time: float,
    end_time: float,
) -> list[CommitRecord]:
    """Collect commits inside the window across repositories, deduped and time-sorted."""
    unique_paths = list(dict.fromkeys(path for path in repo_paths if path))

    commits_by_hash: dict[str, CommitRecord] = {}
    for repo_path in unique_paths:
        if not source.is_repository(repo_path):
            continue
        try:
            repo_commits = source.commits_in_window(repo_path, start_time, end_time)
        except VersionControlError as exc:
            LOGGER.warning("Skipping commit lookup for %s: %s", repo_path, exc)
            continue
        for commit in repo_commits:
            commits_by_hash.setdefault(commit.commit_hash, commit)

    return sorted(commits_by_hash.values(), key=lambda commit: commit.timestamp)


def _parse_log_line(line: str, repo_path: str) -> CommitRecord:
    parts = line.split(FIELD_SEPARATOR, 3)
    if len(parts) != 4:
        raise VersionControlError(f"Unexpected git log line in {repo_path}: {line!r}")
    commit_hash, raw_timestamp, author, message = parts
    try:
        timestamp = int(raw_timestamp)
    except ValueError as exc:
        raise VersionControlError(f"Invalid commit timestamp {raw_timestamp!r} in {repo_path}.") from exc
    return CommitRecord(
        commit_hash=commit_hash,
        timestamp=timestamp,
        author=author,
        message=message,
        repo_path=repo_path,
    )


def _to_iso(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=UTC).isoformat()
