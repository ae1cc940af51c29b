"""Title normalization into canonical comparison keys.

The step order below is fixed: stored fingerprints were computed with it,
so reordering or merging steps silently changes every historical hash.

    "Mickey's New Ears!"            -> "mickey-ears"
    "Stitch loungefly backpack - NEW" -> "stitch-loungefly-backpack"
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from releasewatch.core.config import DEFAULT_BRAND_WORDS, DEFAULT_STOP_WORDS, get_config

# re.ASCII keeps \b on ASCII word characters only.
_POSSESSIVE = re.compile(r"'s\b", re.ASCII)
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


class NormalizedKey(str):
    """A canonical key produced by :class:`TitleNormalizer`.

    Only values of this type skip the pipeline when normalized again. A
    raw title that merely looks like a key (``"spider-man"``) is still
    cleaned like any other title.
    """

    __slots__ = ()


def _word_pattern(words: Iterable[str]) -> re.Pattern[str] | None:
    escaped = sorted({re.escape(w) for w in words if w}, key=len, reverse=True)
    if not escaped:
        return None
    return re.compile(r"\b(?:" + "|".join(escaped) + r")\b", re.ASCII)


class TitleNormalizer:
    """Turn raw release titles into hyphen-joined canonical keys.

    Pure and total: never raises, and empty or all-stop-word titles
    normalize to ``""``. Callers must treat ``""`` as "no key", never as
    equal to another empty key.

    Args:
        stop_words: Articles, prepositions and marketing filler to drop.
        brand_words: Brand/venue words common to nearly every title in
            the catalog, dropped so they do not dominate overlap scoring.
    """

    def __init__(
        self,
        stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
        brand_words: Iterable[str] = DEFAULT_BRAND_WORDS,
    ) -> None:
        self._stop_pattern = _word_pattern(w.lower() for w in stop_words)
        self._brand_pattern = _word_pattern(w.lower() for w in brand_words)

    @classmethod
    def from_config(cls, config=None) -> TitleNormalizer:
        """Build a normalizer from a NormalizerConfig (default: app config)."""
        if config is None:
            config = get_config().normalizer
        return cls(stop_words=config.stop_words, brand_words=config.brand_words)

    def normalize(self, title: str | None) -> NormalizedKey:
        """Return the canonical key for ``title``.

        A :class:`NormalizedKey` is returned as is, so normalizing a key
        again is a no-op. Keys read back from storage are plain strings
        and must not be fed through here.
        """
        if isinstance(title, NormalizedKey):
            return title
        if not title:
            return NormalizedKey()

        result = title.lower()
        result = _POSSESSIVE.sub("", result)
        result = result.replace("'", "")
        result = _NON_ALNUM.sub("", result)
        if self._stop_pattern is not None:
            result = self._stop_pattern.sub("", result)
        if self._brand_pattern is not None:
            result = self._brand_pattern.sub("", result)
        result = _WHITESPACE.sub(" ", result).strip()
        return NormalizedKey(result.replace(" ", "-"))

    __call__ = normalize


_default_normalizer = TitleNormalizer()


def normalize_title(title: str | None) -> NormalizedKey:
    """Normalize ``title`` with the default vocabulary."""
    return _default_normalizer.normalize(title)
