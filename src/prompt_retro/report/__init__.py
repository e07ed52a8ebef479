"""Retrospective reports over ingested sessions."""

from .repository import ReportRepository, ReportRepositoryError
from .service import ReportService

__all__ = ["ReportRepository", "ReportRepositoryError", "ReportService"]
