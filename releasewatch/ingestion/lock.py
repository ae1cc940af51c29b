"""Named, expiring mutual-exclusion locks for ingestion runs."""

from __future__ import annotations

import os
import socket
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from releasewatch.core.config import get_config
from releasewatch.core.exceptions import StoreUnavailable
from releasewatch.core.logger import get_logger
from releasewatch.core.models import IngestionLock
from releasewatch.storage.lock_repository import IngestionLockRepository

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_holder_token() -> str:
    """Identify the calling process: ``host:pid:random``."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass(slots=True)
class LockLease:
    """A lock held by this process until ``expires_at``."""

    lock_name: str
    holder: str
    acquired_at: datetime
    expires_at: datetime


class IngestionLockManager:
    """Serialize ingestion runs through a named lock row with a TTL.

    A crashed holder never releases its lock; the next ``acquire`` after
    ``expires_at`` sweeps the stale row and takes over. Storage failures
    propagate as ``StoreUnavailable``, so a caller never proceeds as if
    it held a lock it could not confirm.

    Args:
        repository: Lock row store.
        ttl: Default lease length; defaults to the configured TTL.
        clock: Returns the current UTC time; injectable for tests.
        default_lock_name: Name used when callers pass none.
    """

    def __init__(
        self,
        repository: IngestionLockRepository | None = None,
        ttl: timedelta | None = None,
        clock: Clock | None = None,
        default_lock_name: str | None = None,
    ) -> None:
        if ttl is None or default_lock_name is None:
            locking = get_config().locking
            ttl = ttl or locking.ttl
            default_lock_name = default_lock_name or locking.default_lock_name
        if ttl <= timedelta(0):
            raise ValueError("Lock TTL must be positive")
        self._repository = repository or IngestionLockRepository()
        self._ttl = ttl
        self._clock = clock or _utcnow
        self._default_lock_name = default_lock_name

    @property
    def default_lock_name(self) -> str:
        return self._default_lock_name

    def acquire(
        self,
        lock_name: str | None = None,
        holder: str | None = None,
        ttl: timedelta | None = None,
    ) -> bool:
        """Try to take ``lock_name`` without waiting.

        Expired rows (of any name) are deleted first, then a new row is
        inserted; the unique lock name makes the insert fail for every
        contender but one.

        Returns:
            True if this call now holds the lock, False if someone else does.

        Raises:
            StoreUnavailable: If the lock store cannot be reached.
        """
        return self._take(lock_name, holder, ttl) is not None

    def release(self, lock_name: str | None = None, holder: str | None = None) -> bool:
        """Release ``lock_name``. Idempotent.

        Without ``holder`` any holder's lock is removed; with it, only a
        row held by that token is.

        Returns:
            True if a row was deleted.
        """
        name = lock_name or self._default_lock_name
        released = self._repository.delete_by_name(name, holder=holder)
        logger.info("lock_released", lock_name=name, holder=holder, released=released)
        return released

    def status(self, lock_name: str | None = None) -> IngestionLock | None:
        """Return the unexpired lock row for ``lock_name``, if any."""
        lock = self._repository.get_by_name(lock_name or self._default_lock_name)
        if lock is None or lock.is_expired(self._clock()):
            return None
        return lock

    @contextmanager
    def hold(
        self,
        lock_name: str | None = None,
        ttl: timedelta | None = None,
    ) -> Iterator[LockLease | None]:
        """Hold ``lock_name`` for the duration of the block.

        Yields ``None`` when the lock is taken by someone else. The lock is
        released with this lease's holder token on exit; if that release
        fails the row is left to expire.
        """
        lease = self._take(lock_name, new_holder_token(), ttl)
        try:
            yield lease
        finally:
            if lease is not None:
                try:
                    self.release(lease.lock_name, holder=lease.holder)
                except StoreUnavailable as e:
                    logger.warning(
                        "lock_release_failed",
                        lock_name=lease.lock_name,
                        expires_at=lease.expires_at.isoformat(),
                        error=str(e),
                    )

    def _take(
        self,
        lock_name: str | None,
        holder: str | None,
        ttl: timedelta | None,
    ) -> LockLease | None:
        name = lock_name or self._default_lock_name
        ttl = ttl or self._ttl
        if ttl <= timedelta(0):
            raise ValueError("Lock TTL must be positive")
        holder = holder or new_holder_token()
        now = self._clock()

        self._repository.delete_expired(now)
        lock = IngestionLock(
            lock_name=name,
            locked_by=holder,
            locked_at=now,
            expires_at=now + ttl,
        )
        if not self._repository.try_insert(lock):
            logger.info("lock_busy", lock_name=name)
            return None

        logger.info(
            "lock_acquired",
            lock_name=name,
            holder=holder,
            expires_at=lock.expires_at.isoformat(),
        )
        return LockLease(
            lock_name=name,
            holder=holder,
            acquired_at=lock.locked_at,
            expires_at=lock.expires_at,
        )
