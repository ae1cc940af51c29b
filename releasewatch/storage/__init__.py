"""Storage layer: repositories for releases, attributions and locks.

Usage::

    from releasewatch.storage import ReleaseRepository
    repo = ReleaseRepository()
    live = repo.list_live()
"""

from releasewatch.storage.base import BaseRepository
from releasewatch.storage.lock_repository import IngestionLockRepository
from releasewatch.storage.release_repository import ReleaseRepository
from releasewatch.storage.source_repository import ReleaseSourceRepository

__all__ = [
    "BaseRepository",
    "ReleaseRepository",
    "ReleaseSourceRepository",
    "IngestionLockRepository",
]
