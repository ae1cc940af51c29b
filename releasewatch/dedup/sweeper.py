"""Retroactive duplicate sweep over already-stored releases."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from releasewatch.core.config import DedupConfig, get_config
from releasewatch.core.exceptions import MergeError
from releasewatch.core.logger import get_logger
from releasewatch.core.models import ReleaseRecord
from releasewatch.dedup.similarity import SimilarityScorer
from releasewatch.ingestion.lock import IngestionLockManager
from releasewatch.storage.release_repository import ReleaseRepository

logger = get_logger(__name__)

SAME_SOURCE = "same_source"
CROSS_SOURCE = "cross_source"


@dataclass(slots=True)
class DuplicateGroup:
    """The earliest release of a group and the later ones it absorbs."""

    keep: ReleaseRecord
    duplicates: list[ReleaseRecord]
    reason: str


@dataclass
class SweepResult:
    dry_run: bool
    acquired: bool = True
    groups: list[DuplicateGroup] = field(default_factory=list)
    merged: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return sum(len(g.duplicates) for g in self.groups)


class DuplicateSweeper:
    """Find and merge duplicates that slipped past ingestion.

    Two passes over live releases, earliest first:

    1. releases sharing a ``source_url`` whose word overlap reaches
       ``sweep_same_source_threshold``;
    2. the remaining releases across all sources, with the stricter
       ``sweep_cross_source_threshold``.

    In each group the earliest release is kept. Dry run by default; a
    live sweep merges (never deletes) while holding the ingestion lock.
    """

    def __init__(
        self,
        repository: ReleaseRepository | None = None,
        lock_manager: IngestionLockManager | None = None,
        scorer: SimilarityScorer | None = None,
        settings: DedupConfig | None = None,
    ) -> None:
        if settings is None:
            settings = get_config().dedup
        self._settings = settings
        self._repository = repository or ReleaseRepository()
        self._locks = lock_manager or IngestionLockManager()
        self._scorer = scorer or SimilarityScorer()

    def plan(self) -> list[DuplicateGroup]:
        """Group live duplicates without changing anything."""
        live = self._repository.list_live()
        claimed: set[str] = set()
        groups: list[DuplicateGroup] = []

        by_source: dict[str, list[ReleaseRecord]] = defaultdict(list)
        for record in live:
            if record.source_url:
                by_source[record.source_url].append(record)
        for records in by_source.values():
            if len(records) > 1:
                groups.extend(self._group(
                    records, self._settings.sweep_same_source_threshold, SAME_SOURCE, claimed,
                ))

        remaining = [r for r in live if r.id not in claimed]
        groups.extend(self._group(
            remaining, self._settings.sweep_cross_source_threshold, CROSS_SOURCE, claimed,
        ))

        logger.info(
            "sweep_planned",
            live=len(live),
            groups=len(groups),
            duplicates=sum(len(g.duplicates) for g in groups),
        )
        return groups

    def sweep(self, dry_run: bool = True, lock_name: str | None = None) -> SweepResult:
        """Plan and, unless ``dry_run``, merge every group.

        Returns:
            The planned groups and, for a live sweep, the merge count.
            ``acquired`` is False when the lock was busy.
        """
        if dry_run:
            return SweepResult(dry_run=True, groups=self.plan())

        with self._locks.hold(lock_name) as lease:
            if lease is None:
                logger.warning("sweep_skipped_lock_held", lock_name=lock_name)
                return SweepResult(dry_run=False, acquired=False)

            result = SweepResult(dry_run=False, groups=self.plan())
            for group in result.groups:
                for duplicate in group.duplicates:
                    try:
                        self._repository.merge(duplicate.id, group.keep.id)
                        result.merged += 1
                    except MergeError as e:
                        result.errors.append({"id": duplicate.id, "error": str(e)})
                        logger.warning("sweep_merge_failed", id=duplicate.id, error=str(e))

        logger.info("sweep_completed", merged=result.merged, errors=len(result.errors))
        return result

    def _group(
        self,
        records: list[ReleaseRecord],
        threshold: float,
        reason: str,
        claimed: set[str],
    ) -> list[DuplicateGroup]:
        groups = []
        for i, keep in enumerate(records):
            if keep.id in claimed or not keep.title_normalized:
                continue
            duplicates = [
                other for other in records[i + 1:]
                if other.id not in claimed
                and self._scorer.word_overlap(keep.title_normalized, other.title_normalized)
                >= threshold
            ]
            if not duplicates:
                continue
            claimed.add(keep.id)
            claimed.update(d.id for d in duplicates)
            groups.append(DuplicateGroup(keep=keep, duplicates=duplicates, reason=reason))
        return groups
