"""Report query package."""

from reconciler.queries.reports import CheckpointReports

__all__ = ["CheckpointReports"]
