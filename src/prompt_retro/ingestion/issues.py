"""Issue-key extraction from session sources with confidence scoring.

Keys are searched in four places, each with a fixed confidence:

- the branch recorded on the session's first entry (1.0)
- messages of commits correlated with the session (1.0)
- prompt preview text of every entry (0.7)
- path segments of every entry's working directory (0.5)

Two built-in formats are always tried: the strict `[A-Z]{1,3}-\\d+` key,
matched case-insensitively, and the broader `[A-Z]+-\\d+` project key, matched
case-sensitively. Custom patterns are tried in addition; their matches are kept
only when they pass `is_valid_issue_key`.

When the same key is found more than once, the candidate with strictly higher
confidence wins. Ties keep the existing confidence and merge source labels
into one comma-joined value.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import replace
from pathlib import PurePosixPath

from .schemas import CommitRecord, IssueCandidate, Session

LOGGER = logging.getLogger(__name__)

SOURCE_CONFIDENCE: dict[str, float] = {
    "branch": 1.0,
    "commit": 1.0,
    "prompt": 0.7,
    "directory": 0.5,
}

ISSUE_KEY_FORMAT = r"[A-Z]{1,3}-\d+"
PROJECT_KEY_FORMAT = r"[A-Z]+-\d+"

VALID_ISSUE_KEY_PATTERN = re.compile(rf"^{ISSUE_KEY_FORMAT}$", re.IGNORECASE)
WORD_KEY_PATTERN = re.compile(rf"\b({ISSUE_KEY_FORMAT})\b", re.IGNORECASE)
PROJECT_KEY_PATTERN = re.compile(rf"\b({PROJECT_KEY_FORMAT})\b")
COMMIT_KEY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"\[({ISSUE_KEY_FORMAT})\]", re.IGNORECASE),
    re.compile(rf"^({ISSUE_KEY_FORMAT}):", re.IGNORECASE),
    re.compile(rf"^({ISSUE_KEY_FORMAT})\s", re.IGNORECASE),
)
SEGMENT_KEY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(ISSUE_KEY_FORMAT, re.IGNORECASE),
    re.compile(PROJECT_KEY_FORMAT),
)


def is_valid_issue_key(key: str) -> bool:
    """Return True when `key` is a 1-3 letter prefix, a hyphen, and digits."""
    return VALID_ISSUE_KEY_PATTERN.match(key) is not None


def compile_custom_patterns(patterns: Iterable[str | re.Pattern[str]]) -> list[re.Pattern[str]]:
    """Compile configured custom patterns; already-compiled patterns pass through."""
    return [pattern if isinstance(pattern, re.Pattern) else re.compile(pattern) for pattern in patterns]


def extract_from_branch(
    branch_name: str | None,
    custom_patterns: Sequence[str | re.Pattern[str]] = (),
) -> list[IssueCandidate]:
    """Extract issue keys from a branch name such as `feature/PROJ-123-fix`."""
    if not branch_name:
        return []
    keys = _search_builtin(branch_name, (WORD_KEY_PATTERN, PROJECT_KEY_PATTERN))
    keys.extend(_search_custom(branch_name, custom_patterns))
    return _candidates(keys, "branch")


def extract_from_commit_message(
    message: str | None,
    custom_patterns: Sequence[str | re.Pattern[str]] = (),
) -> list[IssueCandidate]:
    """Extract issue keys from a commit message such as `[AB-12] Fix login`."""
    if not message:
        return []
    keys = _search_builtin(message, (*COMMIT_KEY_PATTERNS, PROJECT_KEY_PATTERN))
    keys.extend(_search_custom(message, custom_patterns))
    return _candidates(keys, "commit")


def extract_from_prompt(
    prompt_text: str | None,
    custom_patterns: Sequence[str | re.Pattern[str]] = (),
) -> list[IssueCandidate]:
    """Extract issue keys mentioned in prompt text."""
    if not prompt_text:
        return []
    keys = _search_builtin(prompt_text, (WORD_KEY_PATTERN, PROJECT_KEY_PATTERN))
    keys.extend(_search_custom(prompt_text, custom_patterns))
    return _candidates(keys, "prompt")


def extract_from_path(
    path: str | None,
    custom_patterns: Sequence[str | re.Pattern[str]] = (),
) -> list[IssueCandidate]:
    """Extract issue keys that occupy a whole segment of a directory path."""
    if not path:
        return []

    compiled_custom = compile_custom_patterns(custom_patterns)
    keys: list[str] = []
    for segment in PurePosixPath(path.replace("\\", "/")).parts:
        if any(pattern.fullmatch(segment) for pattern in SEGMENT_KEY_PATTERNS):
            keys.append(segment.upper())
            continue
        for pattern in compiled_custom:
            match = pattern.fullmatch(segment)
            if match is None:
                continue
            key = _match_key(match)
            if is_valid_issue_key(key):
                keys.append(key)
    return _candidates(keys, "directory")


def extract_from_session(
    session: Session,
    commits: Iterable[CommitRecord] = (),
    custom_patterns: Sequence[str | re.Pattern[str]] = (),
) -> list[IssueCandidate]:
    """Extract and merge issue keys from every source of one session."""
    compiled_custom = compile_custom_patterns(custom_patterns)
    merged: dict[str, IssueCandidate] = {}

    if session.entries:
        for candidate in extract_from_branch(session.entries[0].git_branch, compiled_custom):
            merge_candidate(merged, candidate)

    for commit in commits:
        for candidate in extract_from_commit_message(commit.message, compiled_custom):
            merge_candidate(merged, candidate)

    for entry in session.entries:
        for candidate in extract_from_prompt(entry.prompt_preview, compiled_custom):
            merge_candidate(merged, candidate)
        for candidate in extract_from_path(entry.cwd, compiled_custom):
            merge_candidate(merged, candidate)

    LOGGER.debug("Extracted %d issue keys for session %s", len(merged), session.session_id)
    return list(merged.values())


def merge_candidate(merged: dict[str, IssueCandidate], candidate: IssueCandidate) -> None:
    """Fold one candidate into `merged`, keeping the highest-confidence source(s)."""
    existing = merged.get(candidate.issue_key)
    if existing is None or candidate.confidence > existing.confidence:
        merged[candidate.issue_key] = candidate
        return
    if candidate.confidence == existing.confidence and candidate.source not in existing.sources:
        merged[candidate.issue_key] = replace(existing, source=f"{existing.source},{candidate.source}")


def _search_builtin(text: str, patterns: Iterable[re.Pattern[str]]) -> list[str]:
    keys: list[str] = []
    for pattern in patterns:
        keys.extend(match.group(1).upper() for match in pattern.finditer(text))
    return keys


def _search_custom(text: str, custom_patterns: Sequence[str | re.Pattern[str]]) -> list[str]:
    keys: list[str] = []
    for pattern in compile_custom_patterns(custom_patterns):
        for match in pattern.finditer(text):
            key = _match_key(match)
            if is_valid_issue_key(key):
                keys.append(key)
    return keys


def _match_key(match: re.Match[str]) -> str:
    value = match.group(1) if match.re.groups and match.group(1) else match.group(0)
    return value.upper()


def _candidates(keys: Iterable[str], source: str) -> list[IssueCandidate]:
    confidence = SOURCE_CONFIDENCE[source]
    return [IssueCandidate(issue_key=key, source=source, confidence=confidence) for key in dict.fromkeys(keys)]
