"""Ingestion run: resolve and store a batch of candidates under the lock."""

from __future__ import annotations

import time
import uuid
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from releasewatch.core.config import RetryConfig, get_config
from releasewatch.core.exceptions import (
    AmbiguousMatchError,
    ConstraintViolationError,
    IngestionError,
    StoreUnavailable,
)
from releasewatch.core.logger import get_logger, log_context
from releasewatch.core.models import ReleaseCandidate
from releasewatch.dedup.resolver import DuplicateResolver
from releasewatch.ingestion.lock import IngestionLockManager
from releasewatch.storage.release_repository import ReleaseRepository

logger = get_logger(__name__)


@dataclass
class IngestionResult:
    """Outcome of one ingestion run.

    Attributes:
        lock_name: Lock the run was serialized on.
        acquired: Whether the lock was obtained at all.
        success: False if the run was skipped or aborted.
        retryable: True when a later attempt may succeed (lock busy or
            store unavailable).
        elapsed_sec: Wall time of the run.
        candidates_seen: Candidates taken from the input.
        inserted: New releases stored.
        duplicates: Candidates matched to an existing release.
        inserted_ids: Ids of the new releases, in input order.
        reasons: Duplicate count per match tier.
        errors: One dict per candidate-level or run-level failure.
    """

    lock_name: str
    acquired: bool = False
    success: bool = True
    retryable: bool = False
    elapsed_sec: float = 0.0
    candidates_seen: int = 0
    inserted: int = 0
    duplicates: int = 0
    inserted_ids: list[str] = field(default_factory=list)
    reasons: Counter[str] = field(default_factory=Counter)
    errors: list[dict[str, Any]] = field(default_factory=list)


class IngestionRun:
    """Process candidates one at a time while holding the ingestion lock.

    Each candidate is either inserted as a new release or attached to the
    release it duplicates (article attribution plus a missing image). Either
    way its writes commit in one transaction, so an outage never leaves a
    release without its attribution.
    Candidates are handled sequentially so that later ones see earlier
    inserts. A store outage stops the run; an ambiguous match only skips
    the affected candidate.

    Args:
        repository: Release record store.
        resolver: Duplicate resolver over the same store.
        lock_manager: Lock manager; the run is skipped if the lock is held.
        lock_name: Lock to hold; defaults to the manager's default.
    """

    name: str = "ingestion"

    def __init__(
        self,
        repository: ReleaseRepository | None = None,
        resolver: DuplicateResolver | None = None,
        lock_manager: IngestionLockManager | None = None,
        lock_name: str | None = None,
    ) -> None:
        self._repository = repository or ReleaseRepository()
        self._resolver = resolver or DuplicateResolver(repository=self._repository)
        self._locks = lock_manager or IngestionLockManager()
        self._lock_name = lock_name or self._locks.default_lock_name

    def run(self, candidates: Iterable[ReleaseCandidate]) -> IngestionResult:
        """Run ingestion over ``candidates``.

        Never raises for store or lock problems; those are reported on the
        result with ``retryable`` set.
        """
        result = IngestionResult(lock_name=self._lock_name)
        run_id = uuid.uuid4().hex[:8]

        with log_context(run_id=run_id, lock_name=self._lock_name):
            logger.info("ingestion_started", workflow=self.name)
            start = time.monotonic()
            try:
                with self._locks.hold(self._lock_name) as lease:
                    if lease is None:
                        result.success = False
                        result.retryable = True
                        logger.warning("ingestion_skipped_lock_held")
                    else:
                        result.acquired = True
                        for candidate in candidates:
                            self._ingest_one(candidate, result)
            except StoreUnavailable as e:
                result.success = False
                result.retryable = True
                result.errors.append({"step": "store", "error": str(e), "type": type(e).__name__})
                logger.error("ingestion_aborted", error=str(e))
            except IngestionError as e:
                result.success = False
                result.errors.append({"step": "insert", "error": str(e), "type": type(e).__name__})
                logger.error("ingestion_aborted", error=str(e))
            except Exception as e:
                result.success = False
                result.errors.append({"step": "ingestion", "error": str(e), "type": type(e).__name__})
                logger.error(
                    "ingestion_unexpected_error",
                    error=str(e),
                    error_type=type(e).__name__,
                )

            result.elapsed_sec = round(time.monotonic() - start, 2)
            logger.info(
                "ingestion_completed",
                success=result.success,
                acquired=result.acquired,
                elapsed_sec=result.elapsed_sec,
                seen=result.candidates_seen,
                inserted=result.inserted,
                duplicates=result.duplicates,
                error_count=len(result.errors),
            )
        return result

    def _ingest_one(self, candidate: ReleaseCandidate, result: IngestionResult) -> None:
        result.candidates_seen += 1
        try:
            verdict = self._resolver.resolve(candidate)
        except AmbiguousMatchError as e:
            result.errors.append({
                "step": "resolve",
                "title": candidate.title,
                "error": str(e),
                "type": type(e).__name__,
            })
            logger.warning("candidate_skipped_ambiguous", title=candidate.title)
            return

        if verdict.is_duplicate:
            self._attach(candidate, verdict.matched_id, str(verdict.reason), result)
            return

        try:
            record = self._repository.insert_candidate(candidate)
        except ConstraintViolationError:
            # A writer outside the lock stored the same fingerprint first.
            verdict = self._resolver.resolve(candidate)
            if not verdict.is_duplicate:
                raise IngestionError(
                    "Insert rejected but no matching release found",
                    {"title": candidate.title, "source_url": candidate.source_url},
                ) from None
            self._attach(candidate, verdict.matched_id, str(verdict.reason), result)
            return

        result.inserted += 1
        result.inserted_ids.append(record.id)

    def _attach(
        self,
        candidate: ReleaseCandidate,
        release_id: str,
        reason: str,
        result: IngestionResult,
    ) -> None:
        image_url = candidate.image_url
        if not self._resolver.is_usable_image(image_url):
            image_url = None
        self._repository.attach_candidate(release_id, candidate, image_url)
        result.duplicates += 1
        result.reasons[reason] += 1


def _log_retry(state: RetryCallState) -> None:
    outcome = state.outcome.result() if state.outcome is not None else None
    logger.warning(
        "ingestion_retry_scheduled",
        attempt=state.attempt_number,
        lock_name=getattr(outcome, "lock_name", None),
        acquired=getattr(outcome, "acquired", None),
        wait_sec=round(state.next_action.sleep, 2) if state.next_action else None,
    )


def run_with_retry(
    run_fn: Callable[[], IngestionResult],
    retry_config: RetryConfig | None = None,
) -> IngestionResult:
    """Call ``run_fn`` until its result is not retryable.

    Uses exponential backoff between attempts. After the last attempt the
    final (still retryable) result is returned rather than raised.

    Args:
        run_fn: Zero-argument callable running one ingestion attempt.
        retry_config: Attempt count and backoff bounds; defaults to config.

    Returns:
        The last attempt's result.
    """
    if retry_config is None:
        retry_config = get_config().retry

    retrying = Retrying(
        retry=retry_if_result(lambda r: r.retryable),
        stop=stop_after_attempt(retry_config.max_attempts),
        wait=wait_exponential(
            min=retry_config.wait_exponential_min,
            max=retry_config.wait_exponential_max,
        ),
        before_sleep=_log_retry,
        retry_error_callback=lambda state: state.outcome.result(),
    )
    return retrying(run_fn)
