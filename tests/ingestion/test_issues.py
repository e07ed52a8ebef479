"""Tests for issue-key extraction and confidence merging."""

from __future__ import annotations

from prompt_retro.ingestion.issues import (
    extract_from_branch,
    extract_from_commit_message,
    extract_from_path,
    extract_from_prompt,
    extract_from_session,
    is_valid_issue_key,
    merge_candidate,
)
from prompt_retro.ingestion.schemas import CommitRecord, IssueCandidate, LogEntry, Session


def test_extract_from_branch_finds_project_key_with_full_confidence() -> None:
    """`feature/PROJ-123-fix` yields PROJ-123 from the branch at confidence 1.0."""
    candidates = extract_from_branch("feature/PROJ-123-fix")

    assert candidates == [IssueCandidate(issue_key="PROJ-123", source="branch", confidence=1.0)]


def test_extract_from_path_requires_whole_segment_match() -> None:
    """Directory keys must fill a whole path segment."""
    assert extract_from_path("/home/u/TASK-7/app") == [
        IssueCandidate(issue_key="TASK-7", source="directory", confidence=0.5)
    ]
    assert extract_from_path("/home/u/TASK-7x/app") == []
    assert extract_from_path("/home/u/ab-12") == [IssueCandidate(issue_key="AB-12", source="directory", confidence=0.5)]


def test_extract_from_commit_message_recognizes_prefix_and_bracket_forms() -> None:
    """Commit keys are found in brackets or at the start of the subject line."""
    assert [c.issue_key for c in extract_from_commit_message("[AB-12] Fix login")] == ["AB-12"]
    assert [c.issue_key for c in extract_from_commit_message("XY-3: tidy imports")] == ["XY-3"]
    assert [c.issue_key for c in extract_from_commit_message("Q-9 bump deps")] == ["Q-9"]
    assert extract_from_commit_message("Refactor parser") == []
    assert all(c.confidence == 1.0 and c.source == "commit" for c in extract_from_commit_message("[AB-12] x"))


def test_extract_from_prompt_uppercases_and_dedupes_keys() -> None:
    """Prompt matches are case-insensitive for the strict format and reported once."""
    candidates = extract_from_prompt("look at ab-12 and AB-12 then DATA-7")

    assert [c.issue_key for c in candidates] == ["AB-12", "DATA-7"]
    assert {c.confidence for c in candidates} == {0.7}


def test_custom_patterns_only_keep_valid_keys() -> None:
    """Custom pattern matches must still look like valid issue keys."""
    custom = [r"ticket[-_](\w+-\d+)", r"LONGPROJECT-\d+"]

    candidates = extract_from_prompt("ticket_xy-99 and LONGPROJECT-1", custom_patterns=custom)

    assert "XY-99" in [c.issue_key for c in candidates]
    assert "LONGPROJECT-1" in [c.issue_key for c in candidates]  # found by the built-in project format
    assert is_valid_issue_key("ab-1")
    assert not is_valid_issue_key("ABCD-1")
    assert not is_valid_issue_key("AB-")


def test_merge_candidate_prefers_higher_confidence_and_joins_ties() -> None:
    """Higher confidence replaces; equal confidence merges source labels once."""
    merged: dict[str, IssueCandidate] = {}

    merge_candidate(merged, IssueCandidate("AB-1", "directory", 0.5))
    merge_candidate(merged, IssueCandidate("AB-1", "prompt", 0.7))
    assert merged["AB-1"] == IssueCandidate("AB-1", "prompt", 0.7)

    merge_candidate(merged, IssueCandidate("AB-1", "directory", 0.5))
    assert merged["AB-1"] == IssueCandidate("AB-1", "prompt", 0.7)

    merge_candidate(merged, IssueCandidate("AB-1", "branch", 1.0))
    merge_candidate(merged, IssueCandidate("AB-1", "commit", 1.0))
    merge_candidate(merged, IssueCandidate("AB-1", "commit", 1.0))
    assert merged["AB-1"].source == "branch,commit"
    assert merged["AB-1"].sources == ("branch", "commit")
    assert merged["AB-1"].confidence == 1.0


def test_extract_from_session_combines_all_sources() -> None:
    """Branch, commits, prompts, and directories all contribute keys."""
    entries = (
        LogEntry(
            timestamp=0.0,
            session_key="k",
            prompt_preview="continue work on AB-1",
            cwd="/work/CD-2",
            git_branch="feature/AB-1-login",
        ),
        LogEntry(timestamp=60.0, session_key="k", prompt_preview="also EF-3", cwd="/work/CD-2", git_branch="other/GH-4"),
    )
    session = Session(
        session_id="s1",
        session_key="k",
        start_time=0.0,
        end_time=60.0,
        cwd="/work/CD-2",
        entries=entries,
    )
    commits = [CommitRecord("abc123", 30, "dev", "[AB-1] Fix login", "/work/CD-2")]

    issues = {candidate.issue_key: candidate for candidate in extract_from_session(session, commits)}

    assert issues["AB-1"].source == "branch,commit"
    assert issues["AB-1"].confidence == 1.0
    assert issues["CD-2"] == IssueCandidate("CD-2", "directory", 0.5)
    assert issues["EF-3"] == IssueCandidate("EF-3", "prompt", 0.7)
    # only the first entry's branch is consulted
    assert "GH-4" not in issues
