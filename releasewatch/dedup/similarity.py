"""Similarity measures over normalized title keys.

Both measures take canonical keys (``TitleNormalizer`` output), never raw
titles.
"""

from __future__ import annotations

from functools import lru_cache


@lru_cache(maxsize=4096)
def trigrams(key: str) -> frozenset[str]:
    """Return the padded character trigrams of ``key``.

    The key is padded with two leading blanks and one trailing blank so
    that word starts weigh more than word ends. Hyphens are ordinary
    characters. An empty key has no trigrams.
    """
    if not key:
        return frozenset()
    padded = f"  {key} "
    return frozenset(padded[i:i + 3] for i in range(len(padded) - 2))


def trigram_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the trigram sets of two keys, in [0, 1]."""
    grams_a = trigrams(a)
    grams_b = trigrams(b)
    if not grams_a or not grams_b:
        return 0.0
    shared = len(grams_a & grams_b)
    return shared / (len(grams_a) + len(grams_b) - shared)


def split_words(key: str) -> list[str]:
    """Split a canonical key into its non-empty words."""
    return [w for w in key.split("-") if w]


def word_overlap(a: str, b: str) -> float:
    """Share of the shorter key's words that also appear in the other key.

    Returns:
        ``|distinct shared words| / min(len(words_a), len(words_b))``, or
        0.0 when either key has no words.
    """
    words_a = split_words(a)
    words_b = split_words(b)
    if not words_a or not words_b:
        return 0.0
    shared = len(set(words_a) & set(words_b))
    return shared / min(len(words_a), len(words_b))


class SimilarityScorer:
    """Injectable pair of similarity measures used by the resolver."""

    def trigram(self, a: str, b: str) -> float:
        return trigram_similarity(a, b)

    def word_overlap(self, a: str, b: str) -> float:
        return word_overlap(a, b)
