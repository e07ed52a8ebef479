"""Ingestion pipeline for prompt activity logs."""

from .schemas import IngestionCounters
from .service import IngestionService

__all__ = ["IngestionCounters", "IngestionService"]
