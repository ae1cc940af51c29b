"""releasewatch: deduplicating ingestion of merchandise releases."""

__version__ = "0.1.0"
