"""Repository for article attributions of releases."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from releasewatch.core.database import ReleaseSourceDB
from releasewatch.core.logger import get_logger
from releasewatch.core.models import ReleaseSource
from releasewatch.storage.base import BaseRepository

logger = get_logger(__name__)


def upsert_source(
    session: Session,
    release_id: str,
    source_url: str,
    source_name: str = "",
    article_title: str = "",
) -> ReleaseSourceDB:
    """Insert or refresh the ``(release_id, source_url)`` row in ``session``.

    Does not commit, so callers can write it together with the release.
    Empty names and titles never overwrite stored ones.
    """
    row = session.scalars(
        select(ReleaseSourceDB)
        .where(ReleaseSourceDB.release_id == release_id)
        .where(ReleaseSourceDB.source_url == source_url),
    ).first()
    if row is None:
        row = ReleaseSourceDB(
            id=str(uuid.uuid4()),
            release_id=release_id,
            source_url=source_url,
            source_name=source_name,
            article_title=article_title,
        )
        session.add(row)
    else:
        if source_name:
            row.source_name = source_name
        if article_title:
            row.article_title = article_title
    session.flush()
    return row


class ReleaseSourceRepository(BaseRepository[ReleaseSource]):
    """Which articles mentioned which release, one row per (release, URL)."""

    def add_source(
        self,
        release_id: str,
        source_url: str,
        source_name: str = "",
        article_title: str = "",
    ) -> ReleaseSource:
        """Attach an article to a release, updating it if already attached.

        Args:
            release_id: Live release the article refers to.
            source_url: Article URL.
            source_name: Feed or site name.
            article_title: Headline of the article.

        Returns:
            The stored attribution.
        """
        with self._session() as session:
            row = upsert_source(session, release_id, source_url, source_name, article_title)
            result = self._orm_to_pydantic(row)
        logger.debug("release_source_added", release_id=release_id, source_url=source_url)
        return result

    def get_for_release(self, release_id: str) -> list[ReleaseSource]:
        """All attributions of a release, newest first."""
        return self.get_many(
            filters={"release_id": release_id},
            order_by="created_at",
            descending=True,
        )
