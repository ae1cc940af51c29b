"""Repository for named ingestion lock rows."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select

from releasewatch.core.database import IngestionLockDB
from releasewatch.core.exceptions import ConstraintViolationError
from releasewatch.core.logger import get_logger
from releasewatch.core.models import IngestionLock, as_utc
from releasewatch.storage.base import BaseRepository

logger = get_logger(__name__)


class IngestionLockRepository(BaseRepository[IngestionLock]):
    """Lock rows keyed by a unique ``lock_name``.

    Each method runs in its own transaction; the unique constraint on
    ``lock_name`` is what makes ``try_insert`` a mutual-exclusion primitive.
    """

    def get_by_name(self, lock_name: str) -> IngestionLock | None:
        """Return the current row for ``lock_name``, expired or not."""
        with self._session() as session:
            row = session.scalars(
                select(IngestionLockDB).where(IngestionLockDB.lock_name == lock_name),
            ).first()
            return self._orm_to_pydantic(row) if row is not None else None

    def delete_expired(self, now: datetime, lock_name: str | None = None) -> int:
        """Delete rows whose ``expires_at`` is before ``now``.

        Args:
            now: Reference time.
            lock_name: Restrict the sweep to one lock.

        Returns:
            Number of rows removed.
        """
        stmt = delete(IngestionLockDB).where(IngestionLockDB.expires_at < as_utc(now))
        if lock_name is not None:
            stmt = stmt.where(IngestionLockDB.lock_name == lock_name)
        with self._session() as session:
            removed = session.execute(stmt).rowcount
        if removed:
            logger.info("expired_locks_removed", count=removed, lock_name=lock_name)
        return removed

    def try_insert(self, lock: IngestionLock) -> bool:
        """Insert ``lock``; return False if the name is already held."""
        try:
            self.create(lock)
        except ConstraintViolationError:
            return False
        return True

    def delete_by_name(self, lock_name: str, holder: str | None = None) -> bool:
        """Delete the row for ``lock_name``.

        Args:
            lock_name: Lock to remove.
            holder: If given, only a row held by this token is removed.

        Returns:
            True if a row was deleted.
        """
        stmt = delete(IngestionLockDB).where(IngestionLockDB.lock_name == lock_name)
        if holder is not None:
            stmt = stmt.where(IngestionLockDB.locked_by == holder)
        with self._session() as session:
            return session.execute(stmt).rowcount > 0
