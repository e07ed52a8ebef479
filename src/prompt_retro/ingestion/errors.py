"""Custom exceptions for prompt log ingestion failures."""


class IngestionError(Exception):
    """Base exception for ingestion errors."""


class LogFileReadError(IngestionError):
    """Raised when an intake log file cannot be opened or read."""


class VersionControlError(IngestionError):
    """Raised when a version-control query fails for one repository."""


class PersistenceError(IngestionError):
    """Raised when the ingestion store rejects a write."""


class RecordValidationError(IngestionError):
    """Raised when one intake line is malformed or misses required fields."""
