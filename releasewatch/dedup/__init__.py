"""Title normalization, fingerprints and similarity measures.

The resolver and sweeper depend on the storage layer and are imported
from their modules directly::

    from releasewatch.dedup import normalize_title, fingerprint
    from releasewatch.dedup.resolver import DuplicateResolver
"""

from releasewatch.dedup.fingerprint import fingerprint
from releasewatch.dedup.normalizer import NormalizedKey, TitleNormalizer, normalize_title
from releasewatch.dedup.similarity import (
    SimilarityScorer,
    trigram_similarity,
    word_overlap,
)

__all__ = [
    "NormalizedKey",
    "TitleNormalizer",
    "normalize_title",
    "fingerprint",
    "SimilarityScorer",
    "trigram_similarity",
    "word_overlap",
]
