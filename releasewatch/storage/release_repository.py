"""Repository for release records: the dedup engine's record store."""

from __future__ import annotations

from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from releasewatch.core.database import (
    ReleaseDB,
    ReleaseSourceDB,
    SessionFactory,
    pydantic_to_orm,
)
from releasewatch.core.exceptions import MergeError
from releasewatch.core.logger import get_logger
from releasewatch.core.models import ReleaseCandidate, ReleaseRecord
from releasewatch.dedup.fingerprint import fingerprint
from releasewatch.dedup.normalizer import TitleNormalizer
from releasewatch.storage.base import BaseRepository
from releasewatch.storage.source_repository import upsert_source

logger = get_logger(__name__)

_UPDATABLE_FIELDS = frozenset({"title", "source_url", "image_url"})
_MAX_MERGE_HOPS = 16


class ReleaseRepository(BaseRepository[ReleaseRecord]):
    """Release records with the lookups the duplicate resolver needs.

    Every write that touches ``title`` or ``source_url`` recomputes
    ``title_normalized`` and ``source_product_hash`` here, so no stored
    record carries a stale fingerprint. Lookups only ever return live
    records (``merged_into_id IS NULL``), ordered earliest first.

    Args:
        session_factory: Optional sessionmaker.
        normalizer: Title normalizer; defaults to the configured vocabulary.
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        normalizer: TitleNormalizer | None = None,
    ) -> None:
        super().__init__(session_factory)
        self._normalizer = normalizer or TitleNormalizer.from_config()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def derive(self, title: str, source_url: str | None) -> tuple[str, str]:
        """Compute ``(title_normalized, source_product_hash)``."""
        normalized = str(self._normalizer.normalize(title))
        return normalized, fingerprint(source_url, normalized)

    def create(self, model: ReleaseRecord) -> ReleaseRecord:
        """Insert a record, deriving its normalized key and fingerprint.

        Raises:
            ConstraintViolationError: If a live record already has the
                same fingerprint.
        """
        normalized, digest = self.derive(model.title, model.source_url)
        model = model.model_copy(update={
            "title_normalized": normalized,
            "source_product_hash": digest,
        })
        return super().create(model)

    def create_release(
        self,
        title: str,
        source_url: str | None = None,
        image_url: str | None = None,
    ) -> ReleaseRecord:
        """Insert a new release from its raw fields."""
        record = self.create(ReleaseRecord(
            title=title,
            source_url=source_url,
            image_url=image_url,
        ))
        logger.info(
            "release_created",
            id=record.id,
            title=title,
            title_normalized=record.title_normalized,
        )
        return record

    def insert_candidate(self, candidate: ReleaseCandidate) -> ReleaseRecord:
        """Store a new release and its article attribution in one transaction.

        Raises:
            ConstraintViolationError: If a live record already has the
                candidate's fingerprint. Nothing is written.
            StoreUnavailable: If either write fails. Nothing is written.
        """
        normalized, digest = self.derive(candidate.title, candidate.source_url)
        record = ReleaseRecord(
            title=candidate.title,
            source_url=candidate.source_url,
            image_url=candidate.image_url,
            title_normalized=normalized,
            source_product_hash=digest,
        )
        with self._session() as session:
            row = pydantic_to_orm(record)
            session.add(row)
            session.flush()
            if candidate.source_url:
                upsert_source(
                    session,
                    row.id,
                    candidate.source_url,
                    candidate.source_name,
                    candidate.article_title,
                )
            result = self._orm_to_pydantic(row)
        logger.info(
            "release_created",
            id=result.id,
            title=candidate.title,
            title_normalized=normalized,
        )
        return result

    def attach_candidate(
        self,
        release_id: str,
        candidate: ReleaseCandidate,
        image_url: str | None = None,
    ) -> bool:
        """Record ``candidate`` as another mention of ``release_id``.

        The attribution and the image fill commit together or not at all.

        Args:
            release_id: Live release the candidate duplicates.
            candidate: The duplicate candidate.
            image_url: Image to set if the release has none; callers pass
                None for placeholder images.

        Returns:
            True if the image was filled.
        """
        with self._session() as session:
            if candidate.source_url:
                upsert_source(
                    session,
                    release_id,
                    candidate.source_url,
                    candidate.source_name,
                    candidate.article_title,
                )
            filled = bool(image_url) and self._fill_image(session, release_id, image_url)
        logger.debug("release_source_added", release_id=release_id, image_filled=filled)
        return filled

    def update_release(self, release_id: str, **updates: Any) -> ReleaseRecord | None:
        """Update display fields, keeping the derived fields consistent.

        If the recomputed fingerprint collides with another live record,
        the updated record is merged into that record instead of letting
        both stand.

        Args:
            release_id: Record id.
            **updates: Any of ``title``, ``source_url``, ``image_url``.

        Returns:
            The updated record, or None if it does not exist.

        Raises:
            ValueError: If an unknown field is passed.
        """
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        with self._session() as session:
            row = session.get(ReleaseDB, release_id)
            if row is None:
                return None

            title = updates.get("title", row.title)
            source_url = updates.get("source_url", row.source_url)
            normalized, digest = self.derive(title, source_url)

            conflict = None
            if row.merged_into_id is None and digest != row.source_product_hash:
                conflict = session.scalars(
                    select(ReleaseDB)
                    .where(ReleaseDB.source_product_hash == digest)
                    .where(ReleaseDB.merged_into_id.is_(None))
                    .where(ReleaseDB.id != row.id)
                    .limit(1),
                ).first()

            for key, value in updates.items():
                setattr(row, key, value)
            row.title_normalized = normalized
            row.source_product_hash = digest

            if conflict is not None:
                self._merge_rows(session, row, conflict)
                logger.warning(
                    "fingerprint_conflict_merged",
                    id=row.id,
                    merged_into=conflict.id,
                    hash=digest,
                )
            session.flush()
            result = self._orm_to_pydantic(row)
        logger.debug("release_updated", id=release_id, fields=sorted(updates))
        return result

    def fill_missing_image(self, release_id: str, image_url: str) -> bool:
        """Set ``image_url`` only if the record has none.

        Returns:
            True if the image was written.
        """
        with self._session() as session:
            return self._fill_image(session, release_id, image_url)

    def merge(self, source_id: str, target_id: str) -> ReleaseRecord:
        """Mark ``source_id`` as a superseded duplicate of ``target_id``.

        The target is first resolved to its live root, records already
        merged into the source are repointed to that root, and the
        source's article attributions move along with it.

        Returns:
            The merged (now superseded) source record.

        Raises:
            MergeError: On self-merge, unknown ids, or a source that is
                already merged.
        """
        if source_id == target_id:
            raise MergeError("Cannot merge a release into itself", {"id": source_id})

        with self._session() as session:
            source = session.get(ReleaseDB, source_id)
            target = session.get(ReleaseDB, target_id)
            if source is None or target is None:
                raise MergeError(
                    "Release not found",
                    {"source_id": source_id, "target_id": target_id},
                )
            if source.merged_into_id is not None:
                raise MergeError(
                    "Release is already merged",
                    {"source_id": source_id, "merged_into_id": source.merged_into_id},
                )
            root = self._resolve_root(session, target)
            if root.id == source.id:
                raise MergeError(
                    "Merge would create a cycle",
                    {"source_id": source_id, "target_id": target_id},
                )
            self._merge_rows(session, source, root)
            session.flush()
            result = self._orm_to_pydantic(source)

        logger.info("release_merged", id=source_id, merged_into=result.merged_into_id)
        return result

    def backfill_derived_fields(self) -> tuple[int, int]:
        """Recompute keys and fingerprints for every record.

        Needed after the normalizer vocabulary changes. Live records whose
        new fingerprint collides with an earlier live record are merged
        into the earliest one.

        Returns:
            ``(updated, merged)`` record counts.
        """
        updated = 0
        merged = 0
        with self._session() as session:
            rows = session.scalars(
                select(ReleaseDB).order_by(ReleaseDB.created_at, ReleaseDB.id),
            ).all()
            derived = {row.id: self.derive(row.title, row.source_url) for row in rows}
            changed = [
                row for row in rows
                if derived[row.id] != (row.title_normalized, row.source_product_hash)
            ]
            if not changed:
                return 0, 0

            # Park changed rows on unique placeholder hashes so that the
            # final assignments cannot collide with stale values mid-flush.
            for row in changed:
                row.source_product_hash = f"pending:{row.id}"
            session.flush()

            live_by_hash = {
                row.source_product_hash: row
                for row in rows
                if row.merged_into_id is None and row not in changed
            }
            for row in changed:
                normalized, digest = derived[row.id]
                updated += 1
                earlier = live_by_hash.get(digest) if row.merged_into_id is None else None
                if earlier is not None:
                    # Retire the loser before the hash lands on the live row.
                    survivor, loser = sorted(
                        (earlier, row), key=lambda r: (r.created_at, r.id),
                    )
                    self._merge_rows(session, loser, survivor)
                    live_by_hash[digest] = survivor
                    merged += 1
                elif row.merged_into_id is None:
                    live_by_hash[digest] = row
                row.title_normalized = normalized
                row.source_product_hash = digest
            session.flush()

        logger.info("derived_fields_backfilled", updated=updated, merged=merged)
        return updated, merged

    # ------------------------------------------------------------------
    # Resolver lookups
    # ------------------------------------------------------------------

    def find_by_hash(self, digest: str, limit: int = 2) -> list[ReleaseRecord]:
        """Live records whose fingerprint equals ``digest``."""
        return self._find_live(ReleaseDB.source_product_hash == digest, limit=limit)

    def find_by_url_and_title(
        self,
        source_url: str,
        title_normalized: str,
        limit: int = 2,
    ) -> list[ReleaseRecord]:
        """Live records sharing both the raw URL and the normalized title."""
        return self._find_live(
            ReleaseDB.source_url == source_url,
            ReleaseDB.title_normalized == title_normalized,
            limit=limit,
        )

    def find_by_image(self, image_url: str, limit: int = 1) -> list[ReleaseRecord]:
        """Live records with exactly this image URL."""
        return self._find_live(ReleaseDB.image_url == image_url, limit=limit)

    def list_match_keys(self) -> list[tuple[str, str]]:
        """``(id, title_normalized)`` of every live record, earliest first."""
        with self._session() as session:
            rows = session.execute(
                select(ReleaseDB.id, ReleaseDB.title_normalized)
                .where(ReleaseDB.merged_into_id.is_(None))
                .order_by(ReleaseDB.created_at, ReleaseDB.id),
            ).all()
            return [(row.id, row.title_normalized or "") for row in rows]

    def list_live(self) -> list[ReleaseRecord]:
        """All live records, earliest first."""
        with self._session() as session:
            rows = session.scalars(
                select(ReleaseDB)
                .where(ReleaseDB.merged_into_id.is_(None))
                .order_by(ReleaseDB.created_at, ReleaseDB.id),
            ).all()
            return [self._orm_to_pydantic(row) for row in rows]

    def get_many_by_ids(self, ids: list[str]) -> dict[str, ReleaseRecord]:
        """Fetch several records at once, keyed by id."""
        if not ids:
            return {}
        with self._session() as session:
            rows = session.scalars(select(ReleaseDB).where(ReleaseDB.id.in_(ids))).all()
            return {row.id: self._orm_to_pydantic(row) for row in rows}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _find_live(self, *criteria: Any, limit: int) -> list[ReleaseRecord]:
        with self._session() as session:
            stmt = (
                select(ReleaseDB)
                .where(ReleaseDB.merged_into_id.is_(None), *criteria)
                .order_by(ReleaseDB.created_at, ReleaseDB.id)
                .limit(limit)
            )
            return [self._orm_to_pydantic(row) for row in session.scalars(stmt).all()]

    @staticmethod
    def _fill_image(session: Session, release_id: str, image_url: str) -> bool:
        result = session.execute(
            update(ReleaseDB)
            .where(ReleaseDB.id == release_id)
            .where(or_(ReleaseDB.image_url.is_(None), ReleaseDB.image_url == ""))
            .values(image_url=image_url),
        )
        filled = result.rowcount > 0
        if filled:
            logger.info("release_image_filled", id=release_id)
        return filled

    @staticmethod
    def _resolve_root(session: Session, row: ReleaseDB) -> ReleaseDB:
        """Follow ``merged_into_id`` to the live record at the end of the chain."""
        seen = {row.id}
        while row.merged_into_id is not None:
            parent = session.get(ReleaseDB, row.merged_into_id)
            if parent is None or parent.id in seen or len(seen) > _MAX_MERGE_HOPS:
                raise MergeError(
                    "Broken merge chain",
                    {"id": row.id, "merged_into_id": row.merged_into_id},
                )
            seen.add(parent.id)
            row = parent
        return row

    @staticmethod
    def _merge_rows(session: Session, source: ReleaseDB, target: ReleaseDB) -> None:
        """Point ``source`` (and anything merged into it) at ``target``."""
        # Set first: later queries autoflush, and source must leave the
        # live set before its fingerprint is written.
        source.merged_into_id = target.id

        children = session.scalars(
            select(ReleaseDB).where(ReleaseDB.merged_into_id == source.id),
        ).all()
        for child in children:
            child.merged_into_id = target.id

        target_urls = set(session.scalars(
            select(ReleaseSourceDB.source_url)
            .where(ReleaseSourceDB.release_id == target.id),
        ).all())
        moved = session.scalars(
            select(ReleaseSourceDB).where(ReleaseSourceDB.release_id == source.id),
        ).all()
        for attribution in moved:
            if attribution.source_url in target_urls:
                session.delete(attribution)
            else:
                attribution.release_id = target.id
                target_urls.add(attribution.source_url)

        if not target.image_url and source.image_url:
            target.image_url = source.image_url
