"""Content fingerprints for exact-match deduplication."""

from __future__ import annotations

import hashlib


def fingerprint(source_url: str | None, normalized_title: str) -> str:
    """Hash a source URL and a normalized title into a stable fingerprint.

    The URL is used raw (no trimming or canonicalization) so that two
    ingestions of the same literal URL collide. A missing URL hashes as
    the empty string: URL-less candidates with the same normalized title
    are treated as the same release.

    Args:
        source_url: The candidate's source URL, or None.
        normalized_title: Output of ``TitleNormalizer.normalize``.

    Returns:
        32-character hex MD5 digest of ``"{source_url}::{normalized_title}"``.
    """
    payload = f"{source_url or ''}::{normalized_title}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()
