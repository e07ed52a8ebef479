"""Configuration loading and validation for prompt-retro."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import orjson

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION_GAP_MINUTES = 30
PRIVACY_MODES: tuple[str, ...] = ("minimal", "summary", "full")
SECRET_REFERENCE_PREFIX = "op://"


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass(frozen=True)
class JiraSettings:
    """Credentials for the Jira issue tracker."""

    url: str
    username: str
    api_token: str


@dataclass(frozen=True)
class RetroConfig:
    """Resolved configuration passed into every pipeline entry point."""

    data_dir: Path
    session_gap_minutes: int = DEFAULT_SESSION_GAP_MINUTES
    issue_key_patterns: tuple[str, ...] = ()
    privacy_mode: str = "summary"
    jira: JiraSettings | None = None

    @property
    def database_path(self) -> Path:
        return self.data_dir / "retro.duckdb"

    @property
    def intake_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def processed_dir(self) -> Path:
        return self.intake_dir / ".processed"

    @property
    def archive_dir(self) -> Path:
        return self.intake_dir / "archive"


def load_config(
    config_path: Path,
    resolve_secret: Callable[[str], str] | None = None,
) -> RetroConfig:
    """Load, validate, and resolve a JSON config file."""
    try:
        raw_config = orjson.loads(config_path.read_bytes())
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found at {config_path}.") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read configuration file {config_path}: {exc}") from exc
    except orjson.JSONDecodeError as exc:
        raise ConfigError(f"Malformed JSON in configuration file {config_path}: {exc}") from exc

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Expected a JSON object in {config_path}, got {type(raw_config).__name__}.")
    return parse_config(raw_config, resolve_secret=resolve_secret or resolve_secret_reference)


def parse_config(
    raw_config: dict[str, Any],
    resolve_secret: Callable[[str], str] | None = None,
) -> RetroConfig:
    """Validate a decoded config mapping into a RetroConfig."""
    resolve = resolve_secret or resolve_secret_reference

    data_dir = raw_config.get("dataDir")
    if not isinstance(data_dir, str) or not data_dir:
        raise ConfigError("Config key 'dataDir' is required and must be a non-empty string.")

    gap_minutes = raw_config.get("sessionGapMinutes", DEFAULT_SESSION_GAP_MINUTES)
    if isinstance(gap_minutes, bool) or not isinstance(gap_minutes, int) or gap_minutes <= 0:
        raise ConfigError(f"Config key 'sessionGapMinutes' must be a positive integer, got {gap_minutes!r}.")

    patterns = raw_config.get("issueKeyPatterns", [])
    if not isinstance(patterns, list) or not all(isinstance(pattern, str) for pattern in patterns):
        raise ConfigError("Config key 'issueKeyPatterns' must be a list of regular expression strings.")
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ConfigError(f"Invalid issue key pattern {pattern!r}: {exc}") from exc

    privacy_mode = raw_config.get("privacyMode", "summary")
    if privacy_mode not in PRIVACY_MODES:
        raise ConfigError(f"Config key 'privacyMode' must be one of {', '.join(PRIVACY_MODES)}, got {privacy_mode!r}.")

    return RetroConfig(
        data_dir=Path(data_dir).expanduser(),
        session_gap_minutes=gap_minutes,
        issue_key_patterns=tuple(patterns),
        privacy_mode=privacy_mode,
        jira=_parse_jira_settings(raw_config, resolve),
    )


def resolve_secret_reference(value: str) -> str:
    """Resolve `op://vault/item/field[?account=...]` references through the 1Password CLI."""
    if not value.startswith(SECRET_REFERENCE_PREFIX):
        return value

    reference, _, account = value.partition("?account=")
    command = ["op", "read", reference]
    if account:
        command.extend(["--account", account])
    try:
        completed = subprocess.run(command, capture_output=True, text=True, check=True, timeout=30)
    except (OSError, subprocess.SubprocessError) as exc:
        raise ConfigError(f"Failed to resolve secret reference {reference}: {exc}") from exc
    return completed.stdout.strip()


def _parse_jira_settings(raw_config: dict[str, Any], resolve: Callable[[str], str]) -> JiraSettings | None:
    values: dict[str, str] = {}
    for key in ("jiraUrl", "jiraUsername", "jiraApiToken"):
        value = raw_config.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ConfigError(f"Config key '{key}' must be a string, got {type(value).__name__}.")
        values[key] = resolve(value)

    if not values:
        return None
    if len(values) < 3:
        LOGGER.warning("Jira configuration is incomplete; issue sync is disabled.")
        return None
    return JiraSettings(
        url=values["jiraUrl"].rstrip("/"),
        username=values["jiraUsername"],
        api_token=values["jiraApiToken"],
    )
