"""Ingestion layer: candidate sources, the ingestion lock, and runs.

Usage::

    from releasewatch.ingestion import IngestionRun, JsonLinesCandidateSource
    result = IngestionRun().run(JsonLinesCandidateSource("feed.jsonl").collect())
"""

from releasewatch.ingestion.base import CandidateSource, JsonLinesCandidateSource
from releasewatch.ingestion.lock import IngestionLockManager, LockLease, new_holder_token
from releasewatch.ingestion.pipeline import IngestionResult, IngestionRun, run_with_retry

__all__ = [
    "CandidateSource",
    "JsonLinesCandidateSource",
    "IngestionLockManager",
    "LockLease",
    "new_holder_token",
    "IngestionRun",
    "IngestionResult",
    "run_with_retry",
]
