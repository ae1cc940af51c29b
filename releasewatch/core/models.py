"""Domain models and enums for releasewatch."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


# ============================================================
# Enums
# ============================================================


class MatchReason(StrEnum):
    """Which resolver tier produced a duplicate verdict."""

    EXACT_HASH_MATCH = "exact_hash_match"
    EXACT_URL_TITLE_MATCH = "exact_url_title_match"
    EXACT_IMAGE_MATCH = "exact_image_match"
    SIMILAR_TITLE = "similar_title"
    WORD_OVERLAP = "word_overlap"


# ============================================================
# Base models
# ============================================================


def _utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BaseEntity(BaseModel):
    """Base model with UUID id and ORM compatibility."""

    model_config = {"from_attributes": True}

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class TimestampMixin(BaseModel):
    """Mixin that adds a created_at timestamp."""

    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


# ============================================================
# Domain models
# ============================================================


class ReleaseCandidate(BaseModel):
    """An incoming release handed over by a feed or scraper.

    Never persisted as such; consumed once per ingestion attempt.
    """

    title: str
    source_url: str | None = None
    image_url: str | None = None
    source_name: str = ""
    article_title: str = ""


class ReleaseRecord(BaseEntity, TimestampMixin):
    """A stored merchandise release.

    ``title_normalized`` and ``source_product_hash`` are derived by the
    repository on every write of ``title`` or ``source_url``.
    """

    title: str
    title_normalized: str = ""
    source_url: str | None = None
    image_url: str | None = None
    source_product_hash: str = ""
    merged_into_id: str | None = None

    @property
    def is_merged(self) -> bool:
        return self.merged_into_id is not None


class ReleaseSource(BaseEntity, TimestampMixin):
    """An article or feed entry that mentioned a release."""

    release_id: str
    source_url: str
    source_name: str = ""
    article_title: str = ""


class IngestionLock(BaseEntity):
    """A named, expiring mutual-exclusion lock row."""

    lock_name: str
    locked_by: str = ""
    locked_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime

    @field_validator("locked_at", "expires_at")
    @classmethod
    def _lock_times_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True once ``expires_at`` has passed."""
        return self.expires_at < as_utc(now or _utcnow())


@dataclass(slots=True)
class DuplicateVerdict:
    """Outcome of resolving one candidate against the record store.

    Attributes:
        is_duplicate: Whether a live record matched.
        matched_id: Id of the matched record, or None.
        reason: Tier that matched, or None.
        score: Confidence in [0, 1]; 1.0 for exact tiers, 0.0 on no match.
        normalized_title: The candidate's canonical key.
        fingerprint: The candidate's content hash.
    """

    is_duplicate: bool
    matched_id: str | None
    reason: MatchReason | None
    score: float
    normalized_title: str = ""
    fingerprint: str = ""

    @classmethod
    def no_match(cls, normalized_title: str = "", fingerprint: str = "") -> DuplicateVerdict:
        return cls(
            is_duplicate=False,
            matched_id=None,
            reason=None,
            score=0.0,
            normalized_title=normalized_title,
            fingerprint=fingerprint,
        )
