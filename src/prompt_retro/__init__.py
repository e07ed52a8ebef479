"""Reconstruct prompt work sessions and correlate them with commits and issues."""

__version__ = "0.1.0"
