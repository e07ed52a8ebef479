"""Shared database utilities for prompt-retro."""

from __future__ import annotations

import re
from datetime import UTC, datetime

_HOUR_ONLY_OFFSET = re.compile(r"[+-]\d{2}$")


def parse_db_timestamp(value: str | None) -> datetime | None:
    """Parse DuckDB TIMESTAMPTZ string output into an aware datetime."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected timestamp string from DB, got {type(value).__name__}.")
    normalized = value.replace(" ", "T")
    if _HOUR_ONLY_OFFSET.search(normalized):
        normalized = f"{normalized}:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
