"""Markdown, JSON, and Rich rendering for retrospective reports."""

from __future__ import annotations

from datetime import UTC, datetime

import orjson
from rich.console import Console
from rich.table import Table

from .schemas import RetroReport

TABLE_ROW_STYLES = ["white", "yellow"]
RECENT_COMMITS_LIMIT = 10
UNTRACKED_SUGGESTION_MINUTES = 30
LONG_SESSION_MINUTES = 240
SHORT_SESSION_MINUTES = 30


def format_hours(minutes: float | None) -> str:
    """Format a minute count as hours with one decimal, e.g. `1.5h`."""
    if not minutes:
        return "0.0h"
    return f"{minutes / 60:.1f}h"


def render_markdown(report: RetroReport) -> str:
    """Render a report as a Markdown document."""
    alignment = report.alignment_percent
    stats = report.stats
    lines = [
        "# Development Retrospective",
        "",
        f"**Period:** {_format_day(report.period_start)} - {_format_day(report.period_end)}",
        "",
        "## Summary",
        "",
        f"- **Total Work Time:** {format_hours(stats.total_minutes)} across {stats.total_sessions} sessions",
        f"- **Average Session:** {format_hours(stats.avg_session_minutes)}",
        f"- **Issues Worked On:** {stats.unique_issues}",
        f"- **Commits Made:** {stats.total_commits}",
        f"- **Work Alignment:** {alignment:.1f}% tracked to issues",
        "",
        "## Work by Issue",
        "",
    ]

    if not report.work_by_issue:
        lines.extend(["No tracked work found for this period.", ""])
    for work in report.work_by_issue:
        heading = work.issue_key
        if report.issue_base_url:
            heading = f"[{work.issue_key}]({report.issue_base_url.rstrip('/')}/browse/{work.issue_key})"
        lines.append(f"### {heading}")
        if work.summary:
            lines.extend([f"**{work.summary}**", ""])
        lines.append(f"- Time: {format_hours(work.total_minutes)} ({work.session_count} sessions)")
        lines.append(f"- Commits: {work.commit_count}")
        if work.status:
            lines.append(f"- Status: {work.status}")
        if work.story_points:
            lines.append(f"- Story Points: {work.story_points:g}")
        if work.sprint:
            lines.append(f"- Sprint: {work.sprint}")
        lines.append(f"- Detection: {', '.join(work.sources)} (confidence: {work.max_confidence * 100:.0f}%)")
        lines.append("")

    if report.untracked_groups:
        lines.extend(["## Untracked Work", ""])
        for group in report.untracked_groups:
            name = group.directory.rstrip("/").rsplit("/", 1)[-1] or group.directory
            lines.append(f"### {name}")
            lines.extend([f"**Directory:** `{group.directory}`", ""])
            lines.append(f"- Time: {format_hours(group.total_minutes)} ({len(group.sessions)} sessions)")
            lines.append(f"- Commits: {group.commit_count}")
            lines.append("")
            if group.total_minutes > UNTRACKED_SUGGESTION_MINUTES:
                lines.extend(
                    [
                        f"> {format_hours(group.total_minutes)} of untracked work; consider creating an issue.",
                        "",
                    ]
                )
        lines.extend(
            [
                f"**Total Untracked:** {format_hours(report.untracked_minutes)} ({100 - alignment:.1f}% of work)",
                "",
            ]
        )

    lines.extend(["## Insights", ""])
    lines.extend(_insights(report))
    lines.append("")

    if report.commits:
        lines.extend(["## Recent Commits", ""])
        for commit in report.commits[:RECENT_COMMITS_LIMIT]:
            committed_at = datetime.fromtimestamp(commit.timestamp, tz=UTC).strftime("%b %d, %H:%M")
            lines.append(f"- `{commit.commit_hash[:7]}` {commit.message} ({committed_at})")
        lines.append("")

    return "\n".join(lines)


def render_json(report: RetroReport) -> bytes:
    """Render a report as indented JSON."""
    payload = {
        "period_start": report.period_start,
        "period_end": report.period_end,
        "stats": report.stats,
        "alignment_percent": round(report.alignment_percent, 1),
        "tracked_minutes": report.tracked_minutes,
        "untracked_minutes": report.untracked_minutes,
        "work_by_issue": report.work_by_issue,
        "untracked_groups": report.untracked_groups,
        "commits": report.commits,
    }
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2)


def render_tables(report: RetroReport, console: Console) -> None:
    """Render a report as Rich tables."""
    stats = report.stats
    if stats.total_sessions == 0:
        console.print("No sessions found for the selected period.")
        return

    console.print(
        f"Period {_format_day(report.period_start)} - {_format_day(report.period_end)}: "
        f"{format_hours(stats.total_minutes)} over {stats.total_sessions} sessions, "
        f"{stats.total_commits} commits, {report.alignment_percent:.1f}% tracked to issues"
    )
    console.print("\n")

    issue_table = Table(title="Work by Issue", show_footer=True, footer_style="bold", title_justify="left")
    issue_table.add_column("Issue", footer="Total", justify="left")
    issue_table.add_column("Summary", justify="left")
    issue_table.add_column("Status", justify="left")
    issue_table.add_column("Sessions", justify="right")
    issue_table.add_column("Hours", justify="right")
    issue_table.add_column("Commits", justify="right")
    issue_table.add_column("Detection", justify="left")
    for index, work in enumerate(report.work_by_issue):
        issue_table.add_row(
            work.issue_key,
            work.summary or "",
            work.status or "",
            str(work.session_count),
            format_hours(work.total_minutes),
            str(work.commit_count),
            f"{', '.join(work.sources)} ({work.max_confidence * 100:.0f}%)",
            style=TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)],
        )
    issue_table.columns[4].footer = format_hours(report.tracked_minutes)
    console.print(issue_table)
    console.print("\n")

    untracked_table = Table(title="Untracked Work", show_footer=True, footer_style="bold", title_justify="left")
    untracked_table.add_column("Directory", footer="Total", justify="left")
    untracked_table.add_column("Sessions", justify="right")
    untracked_table.add_column("Hours", justify="right")
    untracked_table.add_column("Commits", justify="right")
    for index, group in enumerate(report.untracked_groups):
        untracked_table.add_row(
            group.directory,
            str(len(group.sessions)),
            format_hours(group.total_minutes),
            str(group.commit_count),
            style=TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)],
        )
    untracked_table.columns[2].footer = format_hours(report.untracked_minutes)
    console.print(untracked_table)


def _insights(report: RetroReport) -> list[str]:
    alignment = report.alignment_percent
    stats = report.stats
    if alignment >= 80:
        insights = [f"- Strong alignment ({alignment:.1f}%): most work is tracked to issues."]
    elif alignment >= 60:
        insights = [f"- Moderate alignment ({alignment:.1f}%): consider tracking more work in issues."]
    else:
        insights = [f"- Low alignment ({alignment:.1f}%): significant untracked work detected."]

    if stats.total_sessions and stats.avg_session_minutes > LONG_SESSION_MINUTES:
        insights.append(f"- Long average session ({format_hours(stats.avg_session_minutes)}).")
    elif stats.total_sessions and stats.avg_session_minutes < SHORT_SESSION_MINUTES:
        insights.append(f"- Short average session ({format_hours(stats.avg_session_minutes)}); many brief sessions.")

    if stats.total_commits > 0 and stats.total_minutes > 0:
        insights.append(f"- Commit frequency: {stats.total_commits / (stats.total_minutes / 60):.1f} commits per hour")
    return insights


def _format_day(value: datetime) -> str:
    return value.strftime("%b %d, %Y")
