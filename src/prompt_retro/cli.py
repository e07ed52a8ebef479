"""CLI entrypoints for prompt-retro."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import duckdb
import orjson
import typer
from rich.console import Console

from .capture import capture_prompt
from .config import ConfigError, RetroConfig, load_config
from .ingestion.correlator import GitCommandSource
from .ingestion.repository import IngestionRepository
from .ingestion.schemas import IngestionCounters
from .ingestion.service import IngestionService, run_continuously
from .paths import get_default_config_path, get_default_data_dir
from .report.render import render_json, render_markdown, render_tables
from .report.repository import ReportRepository, ReportRepositoryError
from .report.service import DEFAULT_REPORT_DAYS, ReportService, resolve_report_period
from .tracker_sync import create_jira_client, sync_issue_cache

LOGGER = logging.getLogger(__name__)
REPORT_FORMATS = ("markdown", "json", "table")
DEFAULT_INTERVAL_MINUTES = 5.0
CAPTURE_GIT_TIMEOUT_SECONDS = 5

TYPER_APP = typer.Typer(help="Reconstruct prompt work sessions and report on them.")

CONFIG_OPTION_HELP = "JSON config file path. Defaults to $PROMPT_RETRO_CONFIG or the XDG config directory."


@TYPER_APP.callback()
def main() -> None:
    """Root CLI callback."""


@TYPER_APP.command("process")
def process_command(
    config_path: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    watch: bool = typer.Option(False, "--watch", help="Keep polling the intake directory."),
    interval_minutes: float = typer.Option(
        DEFAULT_INTERVAL_MINUTES,
        "--interval-minutes",
        min=0.1,
        help="Polling interval used with --watch.",
    ),
    skip_issue_sync: bool = typer.Option(
        False,
        "--skip-issue-sync",
        help="Do not refresh the issue cache after ingesting.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info-level logging."),
) -> None:
    """Ingest captured prompt logs into DuckDB, correlating commits and issues."""
    _configure_logging(verbose)
    config = _load_config_or_exit(config_path)
    config.data_dir.mkdir(parents=True, exist_ok=True)

    try:
        repository = IngestionRepository(config.database_path)
        repository.ensure_schema()
    except duckdb.Error as exc:
        typer.echo(f"Failed to prepare database {config.database_path}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    try:
        service = IngestionService(repository=repository, config=config)

        def run_once() -> IngestionCounters:
            counters = service.ingest()
            issues_synced = None if skip_issue_sync else _sync_issues(repository, config)
            _emit_summary(counters, issues_synced)
            return counters

        if watch:
            typer.echo(f"Watching {config.intake_dir} every {interval_minutes:g} minute(s). Press Ctrl+C to stop.")
            try:
                run_continuously(run_once, interval_seconds=interval_minutes * 60)
            except KeyboardInterrupt:
                typer.echo("Stopped.")
        else:
            run_once()
    finally:
        repository.close()


@TYPER_APP.command("capture")
def capture_command(
    config_path: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    prompt: str | None = typer.Option(
        None,
        "--prompt",
        help="Prompt text. When omitted, a hook payload is read from stdin as JSON.",
    ),
    cwd: str | None = typer.Option(None, "--cwd", help="Working directory of the prompt."),
    session_key: str | None = typer.Option(None, "--session-key", help="Session grouping hint."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info-level logging."),
) -> None:
    """Append one prompt to the intake log. Never fails the calling hook."""
    _configure_logging(verbose)
    try:
        config = load_config(config_path or get_default_config_path())
        payload = _read_hook_payload(prompt=prompt, cwd=cwd, session_key=session_key)
        if payload is None:
            return
        log_path = capture_prompt(
            payload,
            config,
            version_control=GitCommandSource(timeout_seconds=CAPTURE_GIT_TIMEOUT_SECONDS),
        )
    except (ConfigError, OSError, orjson.JSONDecodeError) as exc:
        LOGGER.warning("Prompt capture skipped: %s", exc)
        return
    LOGGER.info("Prompt captured into %s", log_path)


@TYPER_APP.command("report")
def report_command(
    config_path: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    days: int = typer.Option(DEFAULT_REPORT_DAYS, "--days", "-d", min=0, help="Number of days to look back."),
    start: str | None = typer.Option(None, "--start", "-s", help="Period start date (YYYY-MM-DD)."),
    end: str | None = typer.Option(None, "--end", "-e", help="Period end date (YYYY-MM-DD)."),
    output_format: str = typer.Option(
        "markdown",
        "--format",
        "-f",
        help="Output format: markdown, json, or table.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info-level logging."),
) -> None:
    """Print a retrospective of sessions, issues, and commits for a period."""
    _configure_logging(verbose)
    if output_format not in REPORT_FORMATS:
        raise typer.BadParameter(f"Invalid --format value: {output_format}. Expected one of {', '.join(REPORT_FORMATS)}.")
    if (start is None) != (end is None):
        raise typer.BadParameter("--start and --end must be given together.")

    config = _load_config_or_exit(config_path)
    if not config.database_path.exists():
        raise typer.BadParameter(f"Database file not found: {config.database_path}. Run `prompt-retro process` first.")

    try:
        period_start, period_end = resolve_report_period(
            now=datetime.now().astimezone(),
            days=days,
            start=_parse_date_option("--start", start),
            end=_parse_date_option("--end", end),
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    repository: ReportRepository | None = None
    try:
        repository = ReportRepository(config.database_path)
        issue_base_url = config.jira.url if config.jira is not None else None
        report = ReportService(repository, issue_base_url=issue_base_url).build_report(period_start, period_end)
    except ReportRepositoryError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        if repository is not None:
            repository.close()

    if output_format == "json":
        typer.echo(render_json(report).decode("utf-8"))
    elif output_format == "table":
        render_tables(report, Console())
    else:
        typer.echo(render_markdown(report))


@TYPER_APP.command("sync-issues")
def sync_issues_command(
    config_path: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    days_back: int = typer.Option(30, "--days-back", min=1, help="Fetch issues updated within this many days."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info-level logging."),
) -> None:
    """Refresh the local issue cache from Jira."""
    _configure_logging(verbose)
    config = _load_config_or_exit(config_path)
    client = create_jira_client(config)
    if client is None:
        typer.echo("Issue tracker is not configured; set jiraUrl, jiraUsername and jiraApiToken.")
        return

    config.data_dir.mkdir(parents=True, exist_ok=True)
    repository = IngestionRepository(config.database_path)
    try:
        synced = sync_issue_cache(repository, client, days_back=days_back)
        cache_age_days = repository.issue_cache_age_days(datetime.now(tz=UTC))
    except duckdb.Error as exc:
        typer.echo(f"Failed to update issue cache in {config.database_path}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        repository.close()

    typer.echo(f"issues_synced={synced}")
    if cache_age_days is not None:
        typer.echo(f"issue_cache_age_days={cache_age_days:.2f}")


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="[%(asctime)s][%(levelname)s][%(name)s] %(message)s",
    )


def _load_config_or_exit(config_path: Path | None) -> RetroConfig:
    resolved_path = config_path or get_default_config_path()
    try:
        return load_config(resolved_path)
    except ConfigError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        if not resolved_path.exists():
            example = orjson.dumps({"dataDir": str(get_default_data_dir())}).decode("utf-8")
            typer.echo(f"Create {resolved_path} with at least: {example}", err=True)
        raise typer.Exit(code=1) from exc


def _sync_issues(repository: IngestionRepository, config: RetroConfig) -> int | None:
    """Refresh the issue cache when a tracker is configured."""
    client = create_jira_client(config)
    if client is None:
        LOGGER.info("Issue sync skipped; no issue tracker configured.")
        return None
    try:
        return sync_issue_cache(repository, client)
    except duckdb.Error as exc:
        LOGGER.error("Failed to store synced issues: %s", exc)
        return None


def _emit_summary(counters: IngestionCounters, issues_synced: int | None = None) -> None:
    typer.echo("\nSummary:")
    typer.echo(f"files_scanned={counters.files_scanned}")
    typer.echo(f"files_ingested={counters.files_ingested}")
    typer.echo(f"files_skipped_processed={counters.files_skipped_processed}")
    typer.echo(f"entries_parsed={counters.entries_parsed}")
    typer.echo(f"sessions_created={counters.sessions_created}")
    typer.echo(f"prompts_inserted={counters.prompts_inserted}")
    typer.echo(f"commits_linked={counters.commits_linked}")
    typer.echo(f"issues_linked={counters.issues_linked}")
    typer.echo(f"line_errors={counters.line_errors}")
    typer.echo(f"files_archived={counters.files_archived}")
    typer.echo(f"files_rotated={counters.files_rotated}")
    typer.echo(f"failed_files={len(counters.failed_files)}")
    if issues_synced is not None:
        typer.echo(f"issues_synced={issues_synced}")


def _read_hook_payload(prompt: str | None, cwd: str | None, session_key: str | None) -> dict[str, Any] | None:
    """Build the capture payload from options, or from a JSON hook payload on stdin."""
    if prompt is not None:
        payload: dict[str, Any] = {"prompt": prompt}
    else:
        raw_payload = typer.get_binary_stream("stdin").read()
        if not raw_payload.strip():
            LOGGER.warning("Prompt capture skipped: empty hook payload.")
            return None
        decoded = orjson.loads(raw_payload)
        if not isinstance(decoded, dict):
            LOGGER.warning("Prompt capture skipped: hook payload is not a JSON object.")
            return None
        payload = decoded

    if cwd is not None:
        payload["cwd"] = cwd
    if session_key is not None:
        payload["session_id"] = session_key
    return payload


def _parse_date_option(option_name: str, value: str | None) -> date | None:
    """Parse a YYYY-MM-DD option value into a date."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid {option_name} value: {value}. Expected YYYY-MM-DD.") from exc


def module_cli_entry_point() -> None:
    TYPER_APP()
