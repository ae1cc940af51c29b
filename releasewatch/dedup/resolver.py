"""Multi-tier duplicate resolution for incoming release candidates."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from releasewatch.core.config import DedupConfig, get_config
from releasewatch.core.exceptions import AmbiguousMatchError
from releasewatch.core.logger import get_logger
from releasewatch.core.models import (
    DuplicateVerdict,
    MatchReason,
    ReleaseCandidate,
    ReleaseRecord,
)
from releasewatch.dedup.fingerprint import fingerprint
from releasewatch.dedup.normalizer import TitleNormalizer
from releasewatch.dedup.similarity import SimilarityScorer, split_words
from releasewatch.storage.release_repository import ReleaseRepository

logger = get_logger(__name__)


@dataclass(slots=True)
class _Prepared:
    candidate: ReleaseCandidate
    normalized_title: str
    fingerprint: str


@dataclass(slots=True)
class SimilarRelease:
    """A review suggestion: a live release resembling another one."""

    release_id: str
    title_normalized: str
    score: float


class DuplicateResolver:
    """Decide whether a candidate is an already-stored release.

    Tiers run in a fixed order and the first one that matches wins:

    1. exact fingerprint,
    2. same source URL and normalized title,
    3. same (non-placeholder) image URL,
    4. trigram similarity of normalized titles,
    5. word overlap of normalized titles.

    Only live records (not merged into another) are ever matched. The
    resolver never writes; it raises ``StoreUnavailable`` unchanged when
    the record store fails.

    Args:
        repository: Record store to query.
        normalizer: Title normalizer; defaults to the configured vocabulary.
        scorer: Similarity measures for tiers 4 and 5.
        settings: Thresholds; defaults to the application config.
    """

    def __init__(
        self,
        repository: ReleaseRepository | None = None,
        normalizer: TitleNormalizer | None = None,
        scorer: SimilarityScorer | None = None,
        settings: DedupConfig | None = None,
    ) -> None:
        if settings is None:
            settings = get_config().dedup
        self._settings = settings
        self._normalizer = normalizer or TitleNormalizer.from_config()
        self._repository = repository or ReleaseRepository(normalizer=self._normalizer)
        self._scorer = scorer or SimilarityScorer()
        self._tiers: tuple[Callable[[_Prepared], DuplicateVerdict | None], ...] = (
            self._match_exact_hash,
            self._match_url_title,
            self._match_image,
            self._match_similar_title,
            self._match_word_overlap,
        )

    @property
    def settings(self) -> DedupConfig:
        return self._settings

    def resolve(self, candidate: ReleaseCandidate) -> DuplicateVerdict:
        """Resolve one candidate against the live records.

        Args:
            candidate: The incoming release.

        Returns:
            The first matching tier's verdict, or a no-match verdict that
            still carries the candidate's normalized title and fingerprint.

        Raises:
            AmbiguousMatchError: If tier 1 or 2 finds several live records.
            StoreUnavailable: If the record store cannot be queried.
        """
        normalized = self._normalizer.normalize(candidate.title)
        prepared = _Prepared(
            candidate=candidate,
            normalized_title=normalized,
            fingerprint=fingerprint(candidate.source_url, normalized),
        )

        for tier in self._tiers:
            verdict = tier(prepared)
            if verdict is not None:
                logger.info(
                    "duplicate_detected",
                    title=candidate.title,
                    matched_id=verdict.matched_id,
                    reason=str(verdict.reason),
                    score=round(verdict.score, 3),
                )
                return verdict

        logger.debug("no_duplicate", title=candidate.title, key=normalized)
        return DuplicateVerdict.no_match(normalized, prepared.fingerprint)

    def is_duplicate(self, candidate: ReleaseCandidate) -> bool:
        """Shorthand for ``resolve(candidate).is_duplicate``."""
        return self.resolve(candidate).is_duplicate

    def find_potential_duplicates(
        self,
        release_id: str,
        threshold: float | None = None,
    ) -> list[SimilarRelease]:
        """List other live releases whose titles resemble ``release_id``'s.

        Meant for manual review, so the threshold is looser than the
        ingestion one.

        Args:
            release_id: The release to compare against.
            threshold: Minimum trigram similarity; defaults to
                ``review_threshold``.

        Returns:
            Suggestions ordered best first, then earliest created.
        """
        if threshold is None:
            threshold = self._settings.review_threshold
        record = self._repository.get_by_id(release_id)
        if record is None or not record.title_normalized:
            return []

        suggestions = []
        for other_id, key in self._repository.list_match_keys():
            if other_id == release_id or not key:
                continue
            score = self._scorer.trigram(record.title_normalized, key)
            if score >= threshold:
                suggestions.append(SimilarRelease(other_id, key, score))
        # list_match_keys is already in (created_at, id) order; sort is stable.
        suggestions.sort(key=lambda s: s.score, reverse=True)
        return suggestions

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def _match_exact_hash(self, prepared: _Prepared) -> DuplicateVerdict | None:
        matches = self._repository.find_by_hash(prepared.fingerprint, limit=2)
        return self._exact(prepared, matches, MatchReason.EXACT_HASH_MATCH)

    def _match_url_title(self, prepared: _Prepared) -> DuplicateVerdict | None:
        source_url = prepared.candidate.source_url
        if not source_url:
            return None
        matches = self._repository.find_by_url_and_title(
            source_url, prepared.normalized_title, limit=2,
        )
        return self._exact(prepared, matches, MatchReason.EXACT_URL_TITLE_MATCH)

    def _match_image(self, prepared: _Prepared) -> DuplicateVerdict | None:
        image_url = prepared.candidate.image_url
        if not self.is_usable_image(image_url):
            return None
        matches = self._repository.find_by_image(image_url, limit=1)
        if not matches:
            return None
        return self._verdict(prepared, matches[0].id, MatchReason.EXACT_IMAGE_MATCH, 1.0)

    def _match_similar_title(self, prepared: _Prepared) -> DuplicateVerdict | None:
        return self._best_scoring(
            prepared,
            self._scorer.trigram,
            self._settings.similarity_threshold,
            MatchReason.SIMILAR_TITLE,
        )

    def _match_word_overlap(self, prepared: _Prepared) -> DuplicateVerdict | None:
        return self._best_scoring(
            prepared,
            self._scorer.word_overlap,
            self._settings.word_overlap_threshold,
            MatchReason.WORD_OVERLAP,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def is_usable_image(self, image_url: str | None) -> bool:
        """True for a non-empty image URL that is not a placeholder."""
        return bool(image_url) and self._settings.placeholder_marker not in image_url

    def _exact(
        self,
        prepared: _Prepared,
        matches: list[ReleaseRecord],
        reason: MatchReason,
    ) -> DuplicateVerdict | None:
        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousMatchError(
                "Several live releases match one candidate",
                {
                    "reason": str(reason),
                    "title": prepared.candidate.title,
                    "matched_ids": [m.id for m in matches],
                },
            )
        return self._verdict(prepared, matches[0].id, reason, 1.0)

    def _best_scoring(
        self,
        prepared: _Prepared,
        score_fn: Callable[[str, str], float],
        threshold: float,
        reason: MatchReason,
    ) -> DuplicateVerdict | None:
        if not split_words(prepared.normalized_title):
            return None
        best = _best_match(
            prepared.normalized_title,
            self._repository.list_match_keys(),
            score_fn,
        )
        if best is None or best[1] < threshold:
            return None
        return self._verdict(prepared, best[0], reason, best[1])

    @staticmethod
    def _verdict(
        prepared: _Prepared,
        matched_id: str,
        reason: MatchReason,
        score: float,
    ) -> DuplicateVerdict:
        return DuplicateVerdict(
            is_duplicate=True,
            matched_id=matched_id,
            reason=reason,
            score=score,
            normalized_title=prepared.normalized_title,
            fingerprint=prepared.fingerprint,
        )


def _best_match(
    key: str,
    keys: Iterable[tuple[str, str]],
    score_fn: Callable[[str, str], float],
) -> tuple[str, float] | None:
    """Highest-scoring ``(id, score)`` over ``keys``.

    ``keys`` must be in ``(created_at, id)`` order: only a strictly higher
    score replaces the current best, so ties keep the earliest record.
    Records without a key are skipped.
    """
    best: tuple[str, float] | None = None
    for record_id, other in keys:
        if not other:
            continue
        score = score_fn(key, other)
        if best is None or score > best[1]:
            best = (record_id, score)
    return best
