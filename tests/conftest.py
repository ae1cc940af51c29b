"""Shared fixtures: a throwaway SQLite store per test."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from releasewatch.core.config import DedupConfig
from releasewatch.core.database import build_engine, init_db
from releasewatch.core.models import ReleaseRecord
from releasewatch.dedup.normalizer import TitleNormalizer
from releasewatch.dedup.resolver import DuplicateResolver
from releasewatch.ingestion.lock import IngestionLockManager
from releasewatch.storage import (
    IngestionLockRepository,
    ReleaseRepository,
    ReleaseSourceRepository,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'releases.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def broken_session_factory():
    """Session factory whose database file can never be opened."""
    engine = build_engine("sqlite:////nonexistent-dir/releasewatch/x.db")
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def normalizer():
    return TitleNormalizer()


@pytest.fixture
def settings():
    return DedupConfig()


@pytest.fixture
def repo(session_factory, normalizer):
    return ReleaseRepository(session_factory, normalizer=normalizer)


@pytest.fixture
def source_repo(session_factory):
    return ReleaseSourceRepository(session_factory)


@pytest.fixture
def resolver(repo, normalizer, settings):
    return DuplicateResolver(repository=repo, normalizer=normalizer, settings=settings)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lock_manager(session_factory, clock):
    return IngestionLockManager(
        repository=IngestionLockRepository(session_factory),
        ttl=timedelta(minutes=30),
        clock=clock,
        default_lock_name="feed_processing",
    )


@pytest.fixture
def add_release(repo):
    """Insert a release with an explicit creation time offset (minutes)."""

    def _add(title, source_url=None, image_url=None, minutes=0):
        return repo.create(ReleaseRecord(
            title=title,
            source_url=source_url,
            image_url=image_url,
            created_at=T0 + timedelta(minutes=minutes),
        ))

    return _add
